"""
Batch validation of AI suggestions against real keyword metrics and inventory.

One bulk keyword-metrics call covers every primary and cluster keyword in the
batch. If that call fails the batch contributes nothing: no estimated or
synthetic metrics are ever substituted. Inventory lookups are per suggestion
and a failed lookup counts as zero inventory.
"""

import math
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional

from opportunity_engine.core.circuit_breaker import CircuitBreakerConfig, CircuitBreakerRegistry
from opportunity_engine.core.errors import ValidationBatchError
from opportunity_engine.core.logging_config import get_logger
from opportunity_engine.core.typing import utc_now
from opportunity_engine.schemas import (
    ApiCostBreakdown,
    ClusterData,
    ClusterKeyword,
    DomainAvailability,
    InventoryFilter,
    InventorySnapshot,
    KeywordMetrics,
    OpportunitySuggestion,
    ValidatedOpportunity,
)
from opportunity_engine.services.gateways import (
    InventoryFeasibilityGateway,
    KeywordMetricsGateway,
    unique_lower,
)
from opportunity_engine.services.scoring import (
    DEFAULT_WEIGHTS,
    ScoreInputs,
    ScoringWeights,
    calculate_priority_score,
)

logger = get_logger(__name__)

KEYWORD_BREAKER = "dataforseo-api"
INVENTORY_BREAKER = "holibob-api"
KEYWORD_BREAKER_CONFIG = CircuitBreakerConfig(failure_threshold=5, timeout=60000)

COST_PER_KEYWORD_USD = 0.002

DomainChecker = Callable[[OpportunitySuggestion], DomainAvailability]


def build_cluster_data(suggestion: OpportunitySuggestion, primary: KeywordMetrics, metrics: Dict[str, KeywordMetrics]) -> ClusterData:
    """Aggregate primary + cluster keywords that individually have volume."""
    cluster: List[ClusterKeyword] = []
    seen = {suggestion.keyword.lower()}
    for keyword in suggestion.cluster_keywords:
        key = keyword.lower()
        if key in seen:
            continue
        seen.add(key)
        m = metrics.get(key)
        if m is not None and m.search_volume > 0:
            cluster.append(ClusterKeyword(keyword=m.keyword, search_volume=m.search_volume, cpc=m.cpc))

    total_volume = primary.search_volume + sum(c.search_volume for c in cluster)
    weighted_cpc = primary.search_volume * primary.cpc + sum(c.search_volume * c.cpc for c in cluster)

    return ClusterData(
        primary_keyword=suggestion.keyword,
        primary_volume=primary.search_volume,
        cluster_keywords=cluster,
        cluster_total_volume=total_volume,
        cluster_keyword_count=len(cluster) + 1,
        cluster_avg_cpc=weighted_cpc / total_volume if total_volume > 0 else 0.0,
    )


class OpportunityValidator:
    """
    Validate a batch of suggestions.

    Usage:
        validator = OpportunityValidator(keywords, inventory, registry)
        validated = validator.validate(suggestions, api_cost, batch_size=100)
    """

    def __init__(
        self,
        keyword_gateway: KeywordMetricsGateway,
        inventory_gateway: Optional[InventoryFeasibilityGateway],
        registry: CircuitBreakerRegistry,
        weights: ScoringWeights = DEFAULT_WEIGHTS,
        domain_checker: Optional[DomainChecker] = None,
        inventory_page_size: int = 10,
        inventory_workers: int = 1,
        call_timeout: Optional[float] = None,
    ):
        self.keyword_gateway = keyword_gateway
        self.inventory_gateway = inventory_gateway
        self.weights = weights
        self.domain_checker = domain_checker
        self.inventory_page_size = inventory_page_size
        self.inventory_workers = max(1, inventory_workers)
        self.call_timeout = call_timeout
        self.keyword_breaker = registry.get_breaker(KEYWORD_BREAKER, KEYWORD_BREAKER_CONFIG)
        self.inventory_breaker = registry.get_breaker(INVENTORY_BREAKER)

    def fetch_metrics(self, keywords: List[str], api_cost: ApiCostBreakdown, batch_size: int) -> Dict[str, KeywordMetrics]:
        """
        One bulk call for the whole batch.

        Raises:
            ValidationBatchError: the call failed or the breaker rejected it
        """
        try:
            results = self.keyword_breaker.execute(
                lambda: self.keyword_gateway.get_bulk_metrics(keywords), timeout=self.call_timeout
            )
        except Exception as e:
            raise ValidationBatchError(len(keywords), e) from e

        api_cost.keyword_data.search_volume_calls += math.ceil(len(keywords) / max(1, batch_size))
        api_cost.keyword_data.search_volume_cost += len(keywords) * COST_PER_KEYWORD_USD
        return {m.keyword.lower(): m for m in results}

    def lookup_inventory(self, suggestion: OpportunitySuggestion) -> InventorySnapshot:
        """Products for destination + category; any failure means zero inventory."""
        if self.inventory_gateway is None:
            return InventorySnapshot()
        gateway = self.inventory_gateway
        inventory_filter = InventoryFilter(free_text=suggestion.destination or None, search_term=suggestion.category or None)
        try:
            result = self.inventory_breaker.execute(
                lambda: gateway.discover(inventory_filter, self.inventory_page_size), timeout=self.call_timeout
            )
        except Exception as e:
            logger.warning("Inventory lookup failed, using zero inventory", keyword=suggestion.keyword, error=str(e))
            return InventorySnapshot()

        categories: List[str] = []
        for product in result.products:
            names = [product.category] if product.category else product.categories
            for name in names:
                if name and name not in categories:
                    categories.append(name)
        return InventorySnapshot(product_count=len(result.products), categories=categories)

    def _inventory_for(self, suggestions: List[OpportunitySuggestion]) -> List[InventorySnapshot]:
        if self.inventory_workers == 1 or len(suggestions) <= 1:
            return [self.lookup_inventory(s) for s in suggestions]
        with ThreadPoolExecutor(max_workers=self.inventory_workers, thread_name_prefix="inventory") as pool:
            return list(pool.map(self.lookup_inventory, suggestions))

    def _check_domains(self, suggestion: OpportunitySuggestion) -> Optional[DomainAvailability]:
        if self.domain_checker is None:
            return None
        try:
            return self.domain_checker(suggestion)
        except Exception as e:
            logger.warning("Domain check failed", keyword=suggestion.keyword, error=str(e))
            return None

    def validate(
        self,
        suggestions: List[OpportunitySuggestion],
        api_cost: ApiCostBreakdown,
        batch_size: int,
    ) -> List[ValidatedOpportunity]:
        """Validated opportunities, best score first."""
        if not suggestions:
            return []

        keywords = unique_lower(
            [s.keyword for s in suggestions] + [k for s in suggestions for k in s.cluster_keywords]
        )
        logger.info("Validating keywords", keywords=len(keywords), suggestions=len(suggestions))
        metrics = self.fetch_metrics(keywords, api_cost, batch_size)

        candidates = []
        skipped_zero_cluster = 0
        for suggestion in suggestions:
            primary = metrics.get(suggestion.keyword.lower())
            if primary is None:
                continue
            cluster = build_cluster_data(suggestion, primary, metrics)
            if cluster.cluster_total_volume == 0:
                skipped_zero_cluster += 1
                continue
            candidates.append((suggestion, primary, cluster))

        if skipped_zero_cluster:
            logger.info("Skipped zero cluster volume", skipped=skipped_zero_cluster, total=len(suggestions))

        inventories = self._inventory_for([c[0] for c in candidates])

        validated: List[ValidatedOpportunity] = []
        for (suggestion, primary, cluster), inventory in zip(candidates, inventories):
            domains = self._check_domains(suggestion)
            score = calculate_priority_score(
                ScoreInputs(
                    search_volume=primary.search_volume,
                    cluster_total_volume=cluster.cluster_total_volume,
                    difficulty=primary.difficulty,
                    cpc=primary.cpc,
                    cluster_avg_cpc=cluster.cluster_avg_cpc,
                    competition=primary.competition,
                    trend=primary.trend,
                    inventory_count=inventory.product_count,
                    confidence_score=suggestion.confidence_score,
                    domain_available=domains.primary_available if domains else None,
                    alternatives_available=domains.alternatives_available if domains else 0,
                ),
                self.weights,
            )
            validated.append(
                ValidatedOpportunity(
                    suggestion=suggestion.model_copy(update={"domain_availability": domains}),
                    data_for_seo=primary.to_seo_metrics(),
                    cluster_data=cluster,
                    holibob_inventory=inventory,
                    priority_score=score,
                    validated_at=utc_now(),
                )
            )

        validated.sort(key=lambda v: v.priority_score, reverse=True)
        if validated:
            top = sorted(validated, key=lambda v: v.effective_volume, reverse=True)[:5]
            logger.info(
                "Top cluster volumes",
                clusters=[f"{v.suggestion.keyword}: primary={v.data_for_seo.search_volume}, cluster={v.effective_volume}" for v in top],
            )
        return validated
