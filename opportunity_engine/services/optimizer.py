"""
Recursive opportunity optimizer.

Each iteration runs generate -> pre-filter -> validate -> score -> learn and
feeds its learnings into the next prompt. The number of suggestions requested
shrinks geometrically (initial * narrowing_factor ** (i - 1)). A failed
iteration is logged and skipped; it never discards earlier iterations. After
the last iteration (or an early stop, or cancellation) everything validated is
merged and ranked.

Usage:
    registry = CircuitBreakerRegistry(store=SqlStateStore(engine))
    optimizer = OpportunityOptimizer(
        generator=OpenAISuggestionGenerator(),
        keyword_gateway=KeywordResearchService(),
        inventory_gateway=HolibobClient(),
        registry=registry,
        opportunity_store=SqlOpportunityStore(engine),
        domain_checker=DomainChecker(),
    )
    result = optimizer.run(OptimizationConfig(max_iterations=3))
    optimizer.persist(result, SqlOpportunityStore(engine))
"""

import time
from dataclasses import dataclass, field
from typing import List, Optional

from opportunity_engine.core.cancellation import CancellationToken
from opportunity_engine.core.circuit_breaker import CircuitBreakerConfig, CircuitBreakerRegistry
from opportunity_engine.core.context import clear_context, set_iteration, start_run_context
from opportunity_engine.core.errors import (
    ConfigurationError,
    ErrorHandler,
    capture_exception,
    capture_message,
)
from opportunity_engine.core.logging_config import get_logger
from opportunity_engine.schemas import (
    ApiCostBreakdown,
    InventoryLandscape,
    IterationLearnings,
    IterationResult,
    OpportunitySeed,
    OpportunitySuggestion,
    OptimizationResult,
    ValidatedOpportunity,
)
from opportunity_engine.services.gateways import (
    DurableOpportunityStore,
    InventoryFeasibilityGateway,
    KeywordMetricsGateway,
    SuggestionGenerator,
)
from opportunity_engine.services.json_repair import decode_suggestions
from opportunity_engine.services.learnings import (
    calculate_iteration_metrics,
    extract_iteration_learnings,
    should_stop_early,
)
from opportunity_engine.services.opportunity_store import ExistingOpportunityFilter
from opportunity_engine.services.prompts import build_explanation_prompt, build_iteration_prompt
from opportunity_engine.services.ranking import rank_opportunities
from opportunity_engine.services.scoring import ScoringWeights, round_half_up
from opportunity_engine.services.validation import DomainChecker, OpportunityValidator

logger = get_logger(__name__)

AI_BREAKER = "ai-suggestions-api"
AI_EXPLANATION_BREAKER = "ai-explanations-api"
AI_BREAKER_CONFIG = CircuitBreakerConfig(failure_threshold=3, timeout=120000)

# USD per 1K tokens
PRIMARY_INPUT_COST = 0.003
PRIMARY_OUTPUT_COST = 0.015
EXPLANATION_INPUT_COST = 0.00025
EXPLANATION_OUTPUT_COST = 0.00125


@dataclass
class OptimizationConfig:
    max_iterations: int = 5
    initial_suggestions_count: int = 60
    narrowing_factor: float = 0.7
    min_score_threshold: float = 40
    target_score_threshold: float = 75
    early_stop_improvement_threshold: float = 2  # percent
    batch_size: int = 100
    seeds: Optional[List[OpportunitySeed]] = None
    inventory_landscape: Optional[InventoryLandscape] = None

    # Final ranking
    min_cluster_volume: int = 1000
    final_min_score: int = 40
    explanation_top_k: int = 20  # AI explanations only for the top K

    # Validation
    inventory_page_size: int = 10
    inventory_workers: int = 1  # 1 = sequential lookups
    check_domains: bool = True
    call_timeout: Optional[float] = None  # seconds, per guarded call
    scoring_weights: ScoringWeights = field(default_factory=ScoringWeights)

    def suggestions_for(self, iteration: int) -> int:
        return round_half_up(self.initial_suggestions_count * self.narrowing_factor ** (iteration - 1))


class OpportunityOptimizer:
    def __init__(
        self,
        generator: Optional[SuggestionGenerator],
        keyword_gateway: KeywordMetricsGateway,
        inventory_gateway: Optional[InventoryFeasibilityGateway],
        registry: CircuitBreakerRegistry,
        opportunity_store: Optional[DurableOpportunityStore] = None,
        domain_checker: Optional[DomainChecker] = None,
    ):
        self.generator = generator
        self.keyword_gateway = keyword_gateway
        self.inventory_gateway = inventory_gateway
        self.registry = registry
        self.opportunity_store = opportunity_store
        self.domain_checker = domain_checker
        self.ai_breaker = registry.get_breaker(AI_BREAKER, AI_BREAKER_CONFIG)
        self.explanation_breaker = registry.get_breaker(AI_EXPLANATION_BREAKER)

    def run(
        self,
        config: Optional[OptimizationConfig] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> OptimizationResult:
        """
        Run the optimization loop.

        Raises:
            ConfigurationError: no suggestion generator is configured
        """
        config = config or OptimizationConfig()
        if self.generator is None:
            raise ConfigurationError("Suggestion generator not configured (set OPENROUTER_API_KEY)")

        start_run_context()
        try:
            return self._run(config, cancel_token)
        finally:
            clear_context()

    def _run(self, config: OptimizationConfig, cancel_token: Optional[CancellationToken]) -> OptimizationResult:
        start = time.monotonic()
        # "Already known" keys are scoped to this run
        prefilter = ExistingOpportunityFilter(self.opportunity_store)
        validator = OpportunityValidator(
            keyword_gateway=self.keyword_gateway,
            inventory_gateway=self.inventory_gateway,
            registry=self.registry,
            weights=config.scoring_weights,
            domain_checker=self.domain_checker if config.check_domains else None,
            inventory_page_size=config.inventory_page_size,
            inventory_workers=config.inventory_workers,
            call_timeout=config.call_timeout,
        )

        api_cost = ApiCostBreakdown()
        iterations: List[IterationResult] = []
        improvement_history: List[float] = []
        failed_iterations: List[int] = []
        previous_learnings: Optional[IterationLearnings] = None
        cancelled = False

        landscape = config.inventory_landscape
        logger.info(
            "Starting optimization",
            max_iterations=config.max_iterations,
            initial_suggestions=config.initial_suggestions_count,
            seeds=len(config.seeds or []),
            inventory_context=f"{landscape.total_cities} cities, {landscape.total_categories} categories" if landscape else "none",
        )

        for i in range(1, config.max_iterations + 1):
            if cancel_token is not None and cancel_token.is_cancelled:
                cancelled = True
                logger.warning("Optimization cancelled", before_iteration=i, reason=cancel_token.reason)
                break

            set_iteration(i)
            iteration_start = time.monotonic()
            count = config.suggestions_for(i)
            logger.info("Iteration started", iteration=i, max_iterations=config.max_iterations, requested=count)

            try:
                raw = self._generate(i, previous_learnings, count, config, api_cost)
                suggestions = prefilter.filter(raw)
                if not suggestions:
                    logger.info("All suggestions already exist, skipping validation", generated=len(raw))
                    continue

                validated = validator.validate(suggestions, api_cost, config.batch_size)
                learnings = extract_iteration_learnings(
                    validated, config.min_score_threshold, config.target_score_threshold
                )
                api_cost.recalculate_total()
                metrics = calculate_iteration_metrics(
                    suggestions,
                    validated,
                    iterations[-1] if iterations else None,
                    int((time.monotonic() - iteration_start) * 1000),
                    api_cost.calls_made,
                    api_cost.total_cost,
                    config.target_score_threshold,
                )
                result = IterationResult(
                    iteration_number=i,
                    suggestions=suggestions,
                    validated_opportunities=validated,
                    learnings=learnings,
                    metrics=metrics,
                )
            except ConfigurationError:
                raise
            except Exception as e:
                failed_iterations.append(i)
                capture_exception(e, context={"operation": "optimizer_iteration", "iteration": i}, level="warning")
                continue

            iterations.append(result)
            improvement_history.append(result.metrics.improvement_from_previous)
            previous_learnings = result.learnings
            logger.info(
                "Iteration complete",
                avg_score=round(result.metrics.average_score, 1),
                above_threshold=result.metrics.above_threshold,
                improvement=f"{result.metrics.improvement_from_previous:.1f}%",
                validated=result.metrics.validated_count,
            )

            if should_stop_early(iterations, config.early_stop_improvement_threshold):
                logger.info("Early stopping: improvement below threshold", iterations=len(iterations))
                break

        set_iteration(None)

        final = rank_opportunities(
            iterations,
            explainer=lambda opp: self._explain(opp, api_cost),
            min_cluster_volume=config.min_cluster_volume,
            min_score=config.final_min_score,
            explanation_top_k=config.explanation_top_k,
        )
        api_cost.recalculate_total()
        execution_time_ms = int((time.monotonic() - start) * 1000)

        summary = (
            f"Completed {len(iterations)} iterations in {execution_time_ms / 1000:.1f}s. "
            f"Found {len(final)} high-value opportunities. Total API cost: ${api_cost.total_cost:.2f}"
        )
        if failed_iterations:
            summary += f". Failed iterations: {', '.join(str(i) for i in failed_iterations)}"
        if cancelled:
            summary += ". Cancelled before completion"

        result = OptimizationResult(
            success=bool(iterations) or not failed_iterations,
            cancelled=cancelled,
            iterations=iterations,
            failed_iterations=failed_iterations,
            final_opportunities=final,
            total_api_cost=api_cost,
            improvement_history=improvement_history,
            execution_time_ms=execution_time_ms,
            summary=summary,
        )

        if failed_iterations or cancelled:
            capture_message("Optimization finished with partial results", level="warning", context={"summary": summary})
        else:
            logger.info("Optimization complete", summary=summary)
        return result

    def _generate(
        self,
        iteration: int,
        previous_learnings: Optional[IterationLearnings],
        count: int,
        config: OptimizationConfig,
        api_cost: ApiCostBreakdown,
    ) -> List[OpportunitySuggestion]:
        generator = self.generator
        if generator is None:
            raise ConfigurationError("Suggestion generator not configured (set OPENROUTER_API_KEY)")
        prompt = build_iteration_prompt(
            iteration,
            config.max_iterations,
            previous_learnings,
            count,
            config.inventory_landscape,
            config.seeds,
        )
        text = self.ai_breaker.execute(lambda: generator.generate(prompt), timeout=config.call_timeout)

        api_cost.ai.primary_calls += 1
        usage = getattr(generator, "last_usage", None)
        if usage is not None:
            api_cost.ai.primary_tokens += usage.total
            api_cost.ai.primary_cost += (
                usage.input_tokens * PRIMARY_INPUT_COST + usage.output_tokens * PRIMARY_OUTPUT_COST
            ) / 1000

        suggestions = decode_suggestions(text, iteration)
        logger.info("Generated suggestions", count=len(suggestions))
        return suggestions

    def _explain(self, opp: ValidatedOpportunity, api_cost: ApiCostBreakdown) -> Optional[str]:
        generator = self.generator
        explain = getattr(generator, "explain", None)
        if explain is None:
            return None
        prompt = build_explanation_prompt(opp)
        try:
            text = self.explanation_breaker.execute(lambda: explain(prompt))
        except Exception as e:
            logger.warning("Explanation failed, using fallback", keyword=opp.suggestion.keyword, error=str(e))
            return None

        api_cost.ai.explanation_calls += 1
        usage = getattr(generator, "last_usage", None)
        if usage is not None:
            api_cost.ai.explanation_tokens += usage.total
            api_cost.ai.explanation_cost += (
                usage.input_tokens * EXPLANATION_INPUT_COST + usage.output_tokens * EXPLANATION_OUTPUT_COST
            ) / 1000
        return (text or "").strip() or None

    def persist(
        self,
        result: OptimizationResult,
        store: DurableOpportunityStore,
        source: str = "optimized_scan",
        site_id: Optional[str] = None,
    ) -> int:
        """Upsert every ranked opportunity. Per-row failures are logged and skipped."""
        stored = 0
        for ranked in result.final_opportunities:
            with ErrorHandler(
                "persist_opportunity",
                context={"keyword": ranked.opportunity.suggestion.keyword, "rank": ranked.rank},
            ) as handler:
                store.upsert(ranked, source=source, site_id=site_id, total_api_cost=result.total_api_cost.total_cost)
            if handler.error is None:
                stored += 1
        logger.info("Stored opportunities", stored=stored, total=len(result.final_opportunities), source=source)
        return stored
