"""
Priority scoring and projected value.

Pure functions: the same inputs always give the same integer score.

Score components at default weights (max points):
    volume       35  log10 of cluster volume, saturating at 1M searches/mo
    difficulty   20  inverse of keyword difficulty
    cpc          20  commercial intent, saturating at $5
    inventory    10  3 point floor + up to 7 for 30+ products
    trend         5  rising 5 / stable 3 / declining 1
    domain        5  available 5 / alternative 3 / none 0 / unchecked 2.5
    density       5  competition index < 0.3 -> 5, < 0.6 -> 3, else 1

The sum is multiplied by a confidence factor in [0.85, 1.15] from the AI's
confidenceScore, clamped to [0, 100] and rounded.
"""

import math
from dataclasses import dataclass
from typing import Optional

from opportunity_engine.schemas import ProjectedValue, ValidatedOpportunity

# Projected value model
PRIMARY_CTR = 0.05  # primary keyword around position 5
CLUSTER_CTR = 0.03  # cluster keywords around position 7-8
CONVERSION_RATE = 0.02
AVERAGE_ORDER_VALUE = 75  # GBP
SETUP_COST = 500  # domain + initial content
NO_REVENUE_PAYBACK = 999
MAX_PAYBACK_MONTHS = 36


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class ScoringWeights:
    """Maximum points per component. Tuned defaults, not derived."""

    volume: float = 35
    difficulty: float = 20
    cpc: float = 20
    inventory: float = 10
    trend: float = 5
    domain: float = 5
    density: float = 5

    # Shape constants
    volume_log_ceiling: float = 6  # log10(1,000,000)
    cpc_ceiling: float = 5.0
    inventory_floor_share: float = 0.3  # zero inventory still earns 3 of 10
    inventory_saturation: int = 30
    confidence_base: float = 0.85
    confidence_span: float = 0.3


DEFAULT_WEIGHTS = ScoringWeights()

_TREND_SHARE = {"rising": 1.0, "stable": 0.6, "declining": 0.2}


@dataclass(frozen=True)
class ScoreInputs:
    search_volume: int
    difficulty: float
    cpc: float
    competition: float
    trend: str
    inventory_count: int
    confidence_score: float
    cluster_total_volume: Optional[int] = None
    cluster_avg_cpc: Optional[float] = None
    domain_available: Optional[bool] = None  # None = not checked
    alternatives_available: int = 0


def calculate_priority_score(data: ScoreInputs, weights: ScoringWeights = DEFAULT_WEIGHTS) -> int:
    effective_volume = data.cluster_total_volume or data.search_volume
    log_volume = math.log10(effective_volume) if effective_volume > 0 else 0.0
    volume_score = min(log_volume / weights.volume_log_ceiling * weights.volume, weights.volume)

    difficulty_score = (100 - data.difficulty) / 100 * weights.difficulty

    effective_cpc = data.cluster_avg_cpc or data.cpc
    cpc_score = min(effective_cpc / weights.cpc_ceiling * weights.cpc, weights.cpc)

    inventory_floor = weights.inventory * weights.inventory_floor_share
    inventory_bonus_max = weights.inventory - inventory_floor
    inventory_score = inventory_floor + min(
        data.inventory_count / weights.inventory_saturation * inventory_bonus_max, inventory_bonus_max
    )

    trend_score = _TREND_SHARE.get(data.trend, _TREND_SHARE["stable"]) * weights.trend

    if data.domain_available is None:
        domain_score = weights.domain * 0.5
    elif data.domain_available:
        domain_score = weights.domain
    elif data.alternatives_available > 0:
        domain_score = weights.domain * 0.6
    else:
        domain_score = 0.0

    if data.competition < 0.3:
        density_score = weights.density
    elif data.competition < 0.6:
        density_score = weights.density * 0.6
    else:
        density_score = weights.density * 0.2

    total = (
        volume_score
        + difficulty_score
        + cpc_score
        + inventory_score
        + trend_score
        + domain_score
        + density_score
    )
    confidence_factor = weights.confidence_base + data.confidence_score / 100 * weights.confidence_span

    return round_half_up(max(0.0, min(total * confidence_factor, 100.0)))


def calculate_projected_value(opp: ValidatedOpportunity) -> ProjectedValue:
    """Blended-CTR traffic model: primary keyword ranks higher than its cluster."""
    primary_volume = opp.data_for_seo.search_volume
    cluster_total = (opp.cluster_data.cluster_total_volume if opp.cluster_data else 0) or primary_volume
    secondary_volume = cluster_total - primary_volume

    monthly_traffic = round_half_up(primary_volume * PRIMARY_CTR + secondary_volume * CLUSTER_CTR)
    monthly_revenue = round_half_up(monthly_traffic * CONVERSION_RATE * AVERAGE_ORDER_VALUE)
    payback = math.ceil(SETUP_COST / monthly_revenue) if monthly_revenue > 0 else NO_REVENUE_PAYBACK

    return ProjectedValue(
        monthly_traffic=monthly_traffic,
        monthly_revenue=monthly_revenue,
        payback_period=min(payback, MAX_PAYBACK_MONTHS),
    )
