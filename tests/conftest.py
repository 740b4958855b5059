"""
Test fixtures for opportunity engine tests.

Provides database fixtures, a controllable clock and in-memory fakes for the
AI generator, keyword metrics and inventory gateways.
"""

import json
import os
from typing import Callable, Dict, Generator, List, Optional, Sequence, Union

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import opportunity_engine.models  # noqa: F401  (registers tables)
from opportunity_engine.core.circuit_breaker import CircuitBreakerRegistry
from opportunity_engine.core.state_store import InMemoryStateStore
from opportunity_engine.schemas import (
    ClusterData,
    InventoryFilter,
    InventoryProduct,
    InventoryResult,
    KeywordMetrics,
    OpportunitySuggestion,
    SeoMetrics,
    TokenUsage,
    ValidatedOpportunity,
)


def pytest_collection_modifyitems(config, items):
    """Skip tests that call real external services in CI."""
    if os.environ.get("CI") == "true":
        skip_integration = pytest.mark.skip(reason="Integration tests skipped in CI (no credentials)")
        for item in items:
            if "integration" in item.keywords:
                item.add_marker(skip_integration)


# Use in-memory SQLite for unit tests (fast, isolated)
TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def test_engine():
    """Create a test database engine with in-memory SQLite."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def test_session(test_engine) -> Generator[Session, None, None]:
    """Provide a test database session."""
    with Session(test_engine) as session:
        yield session


class FakeClock:
    """Manually advanced clock. Call for epoch ms; `.seconds()` for seconds."""

    def __init__(self, start_ms: int = 1_700_000_000_000):
        self.now_ms = start_ms

    def __call__(self) -> int:
        return self.now_ms

    def seconds(self) -> float:
        return self.now_ms / 1000

    def advance(self, ms: int) -> None:
        self.now_ms += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry(clock) -> CircuitBreakerRegistry:
    """Isolated registry (no shared store) on the fake clock."""
    return CircuitBreakerRegistry(clock=clock)


@pytest.fixture
def shared_store(clock) -> InMemoryStateStore:
    return InMemoryStateStore(timer=clock.seconds)


def suggestion_json(
    keyword: str,
    destination: str = "London",
    category: str = "Food Tours",
    cluster: Sequence[str] = (),
    confidence: int = 80,
    **extra,
) -> dict:
    return {
        "destination": destination,
        "category": category,
        "niche": category.lower(),
        "keyword": keyword,
        "clusterKeywords": list(cluster),
        "rationale": f"{category} demand in {destination}",
        "suggestedDomain": keyword.replace(" ", "-") + ".com",
        "alternativeDomains": [],
        "confidenceScore": confidence,
        **extra,
    }


Response = Union[str, Exception, Callable[[str], str]]


class FakeGenerator:
    """
    SuggestionGenerator fake.

    `responses` are consumed one per generate() call; the last one repeats.
    An Exception instance is raised instead of returned.
    """

    def __init__(self, responses: Sequence[Response], usage: Optional[TokenUsage] = None, explanation: Union[str, Exception] = "Strong fit."):
        self.responses = list(responses)
        self.usage = usage or TokenUsage(input_tokens=1000, output_tokens=2000)
        self.explanation = explanation
        self.prompts: List[str] = []
        self.explain_prompts: List[str] = []
        self.last_usage: Optional[TokenUsage] = None

    def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        index = min(len(self.prompts) - 1, len(self.responses) - 1)
        response = self.responses[index]
        self.last_usage = self.usage
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(prompt)
        return response

    def explain(self, prompt: str) -> str:
        self.explain_prompts.append(prompt)
        self.last_usage = TokenUsage(input_tokens=200, output_tokens=100)
        if isinstance(self.explanation, Exception):
            raise self.explanation
        return self.explanation


def generator_returning(*batches: List[dict], **kwargs) -> FakeGenerator:
    """FakeGenerator whose successive calls return the given suggestion lists."""
    return FakeGenerator([json.dumps(batch) for batch in batches], **kwargs)


class FakeKeywordGateway:
    """KeywordMetricsGateway fake keyed by lowercase keyword."""

    def __init__(self, metrics: Optional[Dict[str, dict]] = None, default: Optional[dict] = None, error: Optional[Exception] = None):
        self.metrics = {k.lower(): v for k, v in (metrics or {}).items()}
        self.default = default
        self.error = error
        self.calls: List[List[str]] = []

    def get_bulk_metrics(self, keywords: List[str]) -> List[KeywordMetrics]:
        self.calls.append(list(keywords))
        if self.error is not None:
            raise self.error
        results = []
        for keyword in keywords:
            data = self.metrics.get(keyword.lower(), self.default)
            if data is not None:
                results.append(KeywordMetrics(keyword=keyword, **data))
        return results


class FakeInventoryGateway:
    """InventoryFeasibilityGateway fake: product count per destination."""

    def __init__(self, counts: Optional[Dict[str, int]] = None, default: int = 3, error: Optional[Exception] = None):
        self.counts = counts or {}
        self.default = default
        self.error = error
        self.calls: List[InventoryFilter] = []

    def discover(self, filter: InventoryFilter, page_size: int = 10) -> InventoryResult:
        self.calls.append(filter)
        if self.error is not None:
            raise self.error
        count = min(page_size, self.counts.get(filter.free_text or "", self.default))
        products = [
            InventoryProduct(id=f"p{i}", name=f"Product {i}", category=filter.search_term)
            for i in range(count)
        ]
        return InventoryResult(products=products, total_count=count)


LONDON_METRICS = dict(search_volume=5000, difficulty=40, cpc=2.0, competition=0.3, trend="stable")


@pytest.fixture
def keyword_gateway() -> FakeKeywordGateway:
    return FakeKeywordGateway(default=LONDON_METRICS)


@pytest.fixture
def inventory_gateway() -> FakeInventoryGateway:
    return FakeInventoryGateway()


def make_validated(
    keyword: str,
    score: int,
    destination: str = "London",
    category: str = "Food Tours",
    volume: int = 5000,
    difficulty: int = 40,
    trend: str = "stable",
    cluster_total: Optional[int] = None,
) -> ValidatedOpportunity:
    return ValidatedOpportunity(
        suggestion=OpportunitySuggestion(keyword=keyword, destination=destination, category=category),
        data_for_seo=SeoMetrics(search_volume=volume, difficulty=difficulty, cpc=2.0, competition=0.3, trend=trend),
        cluster_data=ClusterData(
            primary_keyword=keyword,
            primary_volume=volume,
            cluster_total_volume=volume if cluster_total is None else cluster_total,
            cluster_keyword_count=1,
            cluster_avg_cpc=2.0,
        ),
        priority_score=score,
    )
