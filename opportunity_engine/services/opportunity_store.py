"""
Durable opportunity store and the per-run "already known" pre-filter.

The pre-filter loads existing (keyword, location) keys once per run and drops
suggestions that match, so nothing already stored costs a keyword-metrics call.
"""

from typing import List, Optional, Set, Tuple

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from opportunity_engine.core.logging_config import get_logger
from opportunity_engine.core.typing import col, utc_now
from opportunity_engine.models.opportunity import SeoOpportunity
from opportunity_engine.schemas import OpportunitySuggestion, RankedOpportunity
from opportunity_engine.services.gateways import DurableOpportunityStore, opportunity_key

logger = get_logger(__name__)


def build_source_data(ranked: RankedOpportunity, source: str) -> dict:
    opp = ranked.opportunity
    return {
        "scanMode": opp.suggestion.scan_mode or source,
        "optimizationRank": ranked.rank,
        "optimizationJourney": ranked.journey.model_dump(mode="json", by_alias=True),
        "domainSuggestions": ranked.domain_suggestions.model_dump(mode="json", by_alias=True),
        "projectedValue": ranked.projected_value.model_dump(mode="json", by_alias=True),
        "dataForSeo": opp.data_for_seo.model_dump(mode="json", by_alias=True),
        "clusterData": opp.cluster_data.model_dump(mode="json", by_alias=True) if opp.cluster_data else None,
        "holibobInventory": opp.holibob_inventory.model_dump(mode="json", by_alias=True),
        "iterationCount": len(ranked.journey.iteration_scores),
    }


class SqlOpportunityStore:
    """SeoOpportunity table adapter."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def find_existing_keys(self) -> Set[Tuple[str, str]]:
        with Session(self.engine) as session:
            rows = session.exec(select(SeoOpportunity.keyword, SeoOpportunity.location)).all()
        return {opportunity_key(keyword, location) for keyword, location in rows}

    def upsert(
        self,
        opportunity: RankedOpportunity,
        source: str = "optimized_scan",
        site_id: Optional[str] = None,
        total_api_cost: Optional[float] = None,
    ) -> SeoOpportunity:
        opp = opportunity.opportunity
        keyword = opp.suggestion.keyword.strip().lower()
        location = opp.suggestion.destination.strip()
        source_data = build_source_data(opportunity, source)
        if total_api_cost is not None:
            source_data["totalApiCost"] = total_api_cost

        values = dict(
            niche=opp.suggestion.niche,
            search_volume=opp.data_for_seo.search_volume,
            difficulty=opp.data_for_seo.difficulty,
            cpc=opp.data_for_seo.cpc,
            intent="TRANSACTIONAL",
            priority_score=opp.priority_score,
            source=source,
            explanation=opportunity.explanation,
            source_data=source_data,
            site_id=site_id,
        )

        with Session(self.engine) as session:
            row = session.exec(
                select(SeoOpportunity).where(SeoOpportunity.keyword == keyword, SeoOpportunity.location == location)
            ).first()
            if row:
                for field, value in values.items():
                    setattr(row, field, value)
                row.updated_at = utc_now()
            else:
                row = SeoOpportunity(keyword=keyword, location=location, status="IDENTIFIED", **values)
            session.add(row)
            session.commit()
            session.refresh(row)
            return row

    def list_top(self, limit: int = 20) -> List[SeoOpportunity]:
        with Session(self.engine) as session:
            return list(
                session.exec(
                    select(SeoOpportunity).order_by(col(SeoOpportunity.priority_score).desc()).limit(limit)
                ).all()
            )


class ExistingOpportunityFilter:
    """
    Run-scoped pre-filter.

    Keys are fetched lazily on first use and cached until clear(); the
    optimizer creates a fresh filter for every run.
    """

    def __init__(self, store: Optional[DurableOpportunityStore]):
        self.store = store
        self._keys: Optional[Set[Tuple[str, str]]] = None

    def clear(self) -> None:
        self._keys = None

    def existing_keys(self) -> Set[Tuple[str, str]]:
        if self._keys is None:
            if self.store is None:
                self._keys = set()
            else:
                logger.info("Fetching existing opportunities for pre-filter")
                self._keys = set(self.store.find_existing_keys())
                logger.info("Pre-filter loaded existing opportunities", count=len(self._keys))
        return self._keys

    def filter(self, suggestions: List[OpportunitySuggestion]) -> List[OpportunitySuggestion]:
        keys = self.existing_keys()
        kept = [s for s in suggestions if opportunity_key(s.keyword, s.destination) not in keys]
        skipped = len(suggestions) - len(kept)
        if skipped:
            logger.info("Skipped suggestions matching existing opportunities", skipped=skipped, remaining=len(kept))
        return kept
