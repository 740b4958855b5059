"""
Keyword metrics from raw DataForSEO search volume rows.

Difficulty is estimated from the Ads competition index (SERP analysis costs
an extra call per keyword). Trend compares the last 3 months with the 3
before; a keyword with 12+ months of data and a coefficient of variation
above 0.3 is flagged seasonal.
"""

import math
from typing import Any, Dict, List, Optional

from opportunity_engine.core.logging_config import get_logger
from opportunity_engine.integrations.dataforseo import DataForSEOClient
from opportunity_engine.schemas import KeywordMetrics, Trend
from opportunity_engine.services.scoring import round_half_up

logger = get_logger(__name__)

TREND_CHANGE_PERCENT = 20
SEASONALITY_CV = 0.3
SEASONALITY_MIN_MONTHS = 12


def estimate_difficulty(competition: float, search_volume: int) -> int:
    difficulty = competition * 100
    if search_volume > 10000:
        difficulty += 10
    elif search_volume < 100:
        difficulty -= 10
    return max(0, min(100, round_half_up(difficulty)))


def analyze_trend(monthly: List[int]) -> Trend:
    if len(monthly) < 3:
        return "stable"
    recent = monthly[-3:]
    previous = monthly[-6:-3]
    if not previous:
        return "stable"

    previous_avg = sum(previous) / len(previous)
    recent_avg = sum(recent) / len(recent)
    if previous_avg == 0:
        return "rising" if recent_avg > 0 else "stable"

    change = (recent_avg - previous_avg) / previous_avg * 100
    if change > TREND_CHANGE_PERCENT:
        return "rising"
    if change < -TREND_CHANGE_PERCENT:
        return "declining"
    return "stable"


def detect_seasonality(monthly: List[int]) -> bool:
    if len(monthly) < SEASONALITY_MIN_MONTHS:
        return False
    mean = sum(monthly) / len(monthly)
    if mean == 0:
        return False
    variance = sum((v - mean) ** 2 for v in monthly) / len(monthly)
    return math.sqrt(variance) / mean > SEASONALITY_CV


def competition_level(value: Any, competition: float) -> Optional[str]:
    if isinstance(value, str) and value.upper() in ("LOW", "MEDIUM", "HIGH"):
        return value.upper()
    if value is None and competition:
        if competition >= 0.67:
            return "HIGH"
        if competition >= 0.34:
            return "MEDIUM"
        return "LOW"
    return None


def monthly_volumes(row: Dict[str, Any]) -> List[int]:
    """Monthly search volumes, oldest first."""
    months = row.get("monthly_searches") or []
    if all("year" in m and "month" in m for m in months):
        months = sorted(months, key=lambda m: (m["year"], m["month"]))
    return [int(m.get("search_volume") or 0) for m in months]


def to_keyword_metrics(row: Dict[str, Any]) -> KeywordMetrics:
    volume = int(row.get("search_volume") or 0)
    competition = float(row.get("competition") or 0)
    monthly = monthly_volumes(row)
    return KeywordMetrics(
        keyword=row.get("keyword") or "",
        search_volume=volume,
        difficulty=estimate_difficulty(competition, volume),
        cpc=float(row.get("cpc") or 0),
        competition=competition,
        competition_level=competition_level(row.get("competition_level"), competition),
        trend=analyze_trend(monthly),
        seasonality=detect_seasonality(monthly),
        monthly_trends=monthly or None,
    )


class KeywordResearchService:
    """KeywordMetricsGateway over DataForSEO bulk search volume."""

    def __init__(self, client: Optional[DataForSEOClient] = None):
        self.client = client or DataForSEOClient()

    def get_bulk_metrics(self, keywords: List[str]) -> List[KeywordMetrics]:
        if not keywords:
            return []
        rows = self.client.get_bulk_search_volume(keywords)
        metrics = [to_keyword_metrics(row) for row in rows if row.get("keyword")]
        logger.info("Keyword metrics fetched", requested=len(keywords), returned=len(metrics))
        return metrics
