from datetime import datetime
from enum import Enum
from typing import Any, List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from opportunity_engine.core.typing import utc_now

Trend = Literal["rising", "stable", "declining"]


class CamelModel(BaseModel):
    """Accepts and emits camelCase keys (AI output, persisted sourceData)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ScanMode(str, Enum):
    HYPER_LOCAL = "hyper_local"
    GENERIC_ACTIVITY = "generic_activity"
    DEMOGRAPHIC = "demographic"
    OCCASION = "occasion"
    EXPERIENCE_LEVEL = "experience_level"
    REGIONAL = "regional"


# === INPUTS ===

class OpportunitySeed(CamelModel):
    keyword: str
    cluster_keywords: List[str] = []
    destination: Optional[str] = None
    category: str = ""
    niche: str = ""
    scan_mode: ScanMode = ScanMode.GENERIC_ACTIVITY
    rationale: str = ""
    inventory_count: int = 0
    destination_count: Optional[int] = None  # regional/generic seeds span several


class DestinationCount(CamelModel):
    name: str
    country: str = ""
    product_count: int = 0


class CategoryCount(CamelModel):
    name: str
    product_count: int = 0


class SampleProduct(CamelModel):
    name: str
    category: Optional[str] = None
    tags: List[str] = []


class ProductSample(CamelModel):
    city: str
    country: str = ""
    product_count: int = 0
    sample_products: List[SampleProduct] = []


class InventoryLandscape(CamelModel):
    """Pre-computed summary of available inventory, fed into prompts."""

    total_countries: int = 0
    total_cities: int = 0
    total_categories: int = 0
    top_destinations: List[DestinationCount] = []
    categories: List[CategoryCount] = []
    product_samples: List[ProductSample] = []


# === SUGGESTIONS ===

class DomainCheck(CamelModel):
    domain: str
    available: bool


class DomainAvailability(CamelModel):
    primary_available: bool
    alternatives_available: int = 0
    checked_domains: List[DomainCheck] = []


class OpportunitySuggestion(CamelModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    destination: str = ""
    category: str = ""
    niche: str = ""
    keyword: str
    cluster_keywords: List[str] = []
    rationale: str = ""
    suggested_domain: Optional[str] = None
    alternative_domains: List[str] = []
    confidence_score: float = 50.0  # 0-100, AI self-assessed
    iteration_source: int = 1
    scan_mode: Optional[str] = None
    domain_availability: Optional[DomainAvailability] = None  # filled during validation

    @field_validator("keyword")
    @classmethod
    def _keyword_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("keyword must not be blank")
        return value

    @field_validator("destination", "category", "niche", "rationale", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("cluster_keywords", "alternative_domains", mode="before")
    @classmethod
    def _coerce_string_list(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, (list, tuple)):
            return []
        return [v.strip() for v in value if isinstance(v, str) and v.strip()]

    @field_validator("confidence_score", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        try:
            score = float(value)
        except (TypeError, ValueError):
            return 50.0
        return max(0.0, min(100.0, score))


# === VALIDATION ===

class SeoMetrics(CamelModel):
    search_volume: int = 0
    difficulty: int = 0  # 0-100
    cpc: float = 0.0
    competition: float = 0.0  # 0-1
    competition_level: Optional[Literal["LOW", "MEDIUM", "HIGH"]] = None
    trend: Trend = "stable"
    seasonality: bool = False
    monthly_trends: Optional[List[int]] = None  # oldest first


class KeywordMetrics(SeoMetrics):
    keyword: str

    def to_seo_metrics(self) -> SeoMetrics:
        return SeoMetrics(**self.model_dump(exclude={"keyword"}))


class ClusterKeyword(CamelModel):
    keyword: str
    search_volume: int
    cpc: float


class ClusterData(CamelModel):
    primary_keyword: str
    primary_volume: int
    cluster_keywords: List[ClusterKeyword] = []  # only keywords with volume > 0
    cluster_total_volume: int
    cluster_keyword_count: int  # cluster keywords + primary
    cluster_avg_cpc: float  # volume-weighted


class InventorySnapshot(CamelModel):
    product_count: int = 0
    categories: List[str] = []


class ValidatedOpportunity(CamelModel):
    suggestion: OpportunitySuggestion
    data_for_seo: SeoMetrics
    cluster_data: Optional[ClusterData] = None
    holibob_inventory: InventorySnapshot = Field(default_factory=InventorySnapshot)
    priority_score: int
    validated_at: datetime = Field(default_factory=utc_now)

    @property
    def keyword_key(self) -> str:
        return self.suggestion.keyword.lower()

    @property
    def effective_volume(self) -> int:
        """Cluster total when known, else the primary keyword volume."""
        if self.cluster_data and self.cluster_data.cluster_total_volume:
            return self.cluster_data.cluster_total_volume
        return self.data_for_seo.search_volume


# === LEARNING ===

class NumericRange(CamelModel):
    min: float
    max: float


class LearningPatterns(CamelModel):
    high_score_patterns: List[str] = []
    low_score_patterns: List[str] = []
    optimal_difficulty_range: NumericRange
    optimal_volume_range: NumericRange
    best_destinations: List[str] = []
    best_categories: List[str] = []
    avoid_destinations: List[str] = []
    avoid_categories: List[str] = []


class IterationLearnings(CamelModel):
    top_performers: List[ValidatedOpportunity] = []
    bottom_performers: List[ValidatedOpportunity] = []
    patterns: LearningPatterns
    recommendations: List[str] = []
    metrics_summary: str = ""


class ScoreDistribution(CamelModel):
    excellent: int = 0  # >= 85
    good: int = 0  # 70-85
    moderate: int = 0  # 50-70
    poor: int = 0  # < 50


class IterationMetrics(CamelModel):
    total_suggestions: int
    validated_count: int
    above_threshold: int
    average_score: float
    median_score: float
    max_score: int
    min_score: int
    score_distribution: ScoreDistribution
    improvement_from_previous: float  # percent
    api_calls_made: int
    api_cost_usd: float  # running total at iteration end
    execution_time_ms: int


class IterationResult(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    iteration_number: int
    suggestions: List[OpportunitySuggestion]
    validated_opportunities: List[ValidatedOpportunity]
    learnings: IterationLearnings
    metrics: IterationMetrics
    timestamp: datetime = Field(default_factory=utc_now)


# === OUTPUT ===

class DomainSuggestions(CamelModel):
    primary: str
    alternatives: List[str] = []


class OpportunityJourney(CamelModel):
    first_seen_iteration: int
    iteration_scores: List[int]
    was_refined: bool
    refinement_source: Optional[str] = None


class ProjectedValue(CamelModel):
    monthly_traffic: int
    monthly_revenue: int
    payback_period: int  # months, capped


class RankedOpportunity(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    rank: int
    opportunity: ValidatedOpportunity
    domain_suggestions: DomainSuggestions
    journey: OpportunityJourney
    explanation: str
    projected_value: ProjectedValue


class AiCost(CamelModel):
    primary_calls: int = 0
    primary_tokens: int = 0
    primary_cost: float = 0.0
    explanation_calls: int = 0
    explanation_tokens: int = 0
    explanation_cost: float = 0.0


class KeywordDataCost(CamelModel):
    search_volume_calls: int = 0
    search_volume_cost: float = 0.0
    serp_calls: int = 0
    serp_cost: float = 0.0


class ApiCostBreakdown(CamelModel):
    ai: AiCost = Field(default_factory=AiCost)
    keyword_data: KeywordDataCost = Field(default_factory=KeywordDataCost)
    total_cost: float = 0.0

    def recalculate_total(self) -> float:
        self.total_cost = (
            self.ai.primary_cost
            + self.ai.explanation_cost
            + self.keyword_data.search_volume_cost
            + self.keyword_data.serp_cost
        )
        return self.total_cost

    @property
    def calls_made(self) -> int:
        return self.ai.primary_calls + self.keyword_data.search_volume_calls


class OptimizationResult(CamelModel):
    success: bool
    cancelled: bool = False
    iterations: List[IterationResult] = []
    failed_iterations: List[int] = []
    final_opportunities: List[RankedOpportunity] = []
    total_api_cost: ApiCostBreakdown = Field(default_factory=ApiCostBreakdown)
    improvement_history: List[float] = []
    execution_time_ms: int = 0
    summary: str = ""


# === GATEWAY PAYLOADS ===

class InventoryFilter(CamelModel):
    free_text: Optional[str] = None  # destination
    search_term: Optional[str] = None  # category
    currency: str = "GBP"


class InventoryProduct(CamelModel):
    id: str
    name: str
    category: Optional[str] = None
    categories: List[str] = []


class InventoryResult(CamelModel):
    products: List[InventoryProduct] = []
    total_count: int = 0


class TokenUsage(CamelModel):
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total(self) -> int:
        return self.input_tokens + self.output_tokens
