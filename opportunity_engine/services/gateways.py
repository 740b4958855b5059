"""
Collaborator ports used by the optimizer.

Concrete adapters live in services/suggestion_generator.py,
services/keyword_research.py, integrations/holibob.py and
services/opportunity_store.py; tests substitute in-memory fakes.
"""

from typing import Iterable, List, Optional, Protocol, Set, Tuple

from opportunity_engine.schemas import (
    InventoryFilter,
    InventoryResult,
    KeywordMetrics,
    RankedOpportunity,
    TokenUsage,
)


class SuggestionGenerator(Protocol):
    """Single-shot text completion. Output is untrusted text."""

    # Usage of the most recent call, None when the backend does not report it
    last_usage: Optional[TokenUsage]

    def generate(self, prompt: str) -> str: ...

    def explain(self, prompt: str) -> str: ...


class KeywordMetricsGateway(Protocol):
    def get_bulk_metrics(self, keywords: List[str]) -> List[KeywordMetrics]: ...


class InventoryFeasibilityGateway(Protocol):
    def discover(self, filter: InventoryFilter, page_size: int = 10) -> InventoryResult: ...


class DurableOpportunityStore(Protocol):
    def find_existing_keys(self) -> Set[Tuple[str, str]]:
        """Lowercased (keyword, location) pairs already stored."""
        ...

    def upsert(
        self,
        opportunity: RankedOpportunity,
        source: str = ...,
        site_id: Optional[str] = ...,
        total_api_cost: Optional[float] = ...,
    ) -> object: ...


def opportunity_key(keyword: str, location: Optional[str]) -> Tuple[str, str]:
    """Normalized (keyword, location) key shared by the store and the pre-filter."""
    return (keyword.strip().lower(), (location or "").strip().lower())


def unique_lower(values: Iterable[str]) -> List[str]:
    """Lowercase and dedupe, keeping first-seen order."""
    seen: dict = {}
    for value in values:
        key = value.strip().lower()
        if key and key not in seen:
            seen[key] = None
    return list(seen)
