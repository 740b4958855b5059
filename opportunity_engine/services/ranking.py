"""
Final ranking across iterations.

Validated opportunities are merged by lowercase keyword (best score wins, the
full score history is kept), cut at a cluster-volume floor and a score floor,
sorted, explained, and valued.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from opportunity_engine.core.logging_config import get_logger
from opportunity_engine.integrations.domains import keyword_domain
from opportunity_engine.schemas import (
    DomainSuggestions,
    IterationResult,
    OpportunityJourney,
    RankedOpportunity,
    ValidatedOpportunity,
)
from opportunity_engine.services.scoring import calculate_projected_value

logger = get_logger(__name__)

# AI explanation for one opportunity; returns None when unavailable
Explainer = Callable[[ValidatedOpportunity], Optional[str]]


@dataclass
class MergedOpportunity:
    opportunity: ValidatedOpportunity
    first_seen: int
    iteration_scores: List[int] = field(default_factory=list)


def merge_iterations(iterations: Sequence[IterationResult]) -> Dict[str, MergedOpportunity]:
    merged: Dict[str, MergedOpportunity] = {}
    for iteration in iterations:
        for validated in iteration.validated_opportunities:
            key = validated.keyword_key
            existing = merged.get(key)
            if existing is None:
                merged[key] = MergedOpportunity(
                    opportunity=validated,
                    first_seen=iteration.iteration_number,
                    iteration_scores=[validated.priority_score],
                )
                continue
            existing.iteration_scores.append(validated.priority_score)
            if validated.priority_score > existing.opportunity.priority_score:
                existing.opportunity = validated
    return merged


def templated_explanation(opp: ValidatedOpportunity) -> str:
    cluster_count = opp.cluster_data.cluster_keyword_count if opp.cluster_data else 1
    return (
        f"Score {opp.priority_score}: {opp.effective_volume:,}/mo cluster volume ({cluster_count} keywords), "
        f"difficulty {opp.data_for_seo.difficulty}, CPC ${opp.data_for_seo.cpc:.2f}"
    )


def fallback_explanation(opp: ValidatedOpportunity) -> str:
    return (
        f"High-value opportunity with {opp.data_for_seo.search_volume} monthly searches "
        f"and {opp.data_for_seo.difficulty} difficulty score."
    )


def rank_opportunities(
    iterations: Sequence[IterationResult],
    explainer: Optional[Explainer] = None,
    min_cluster_volume: int = 1000,
    min_score: int = 40,
    explanation_top_k: int = 20,
) -> List[RankedOpportunity]:
    merged = merge_iterations(iterations)

    by_volume = sorted(merged.values(), key=lambda m: m.opportunity.effective_volume, reverse=True)
    logger.info(
        "Volume distribution",
        top=[f"{m.opportunity.suggestion.keyword}: {m.opportunity.effective_volume}/mo (score {m.opportunity.priority_score})" for m in by_volume[:10]],
    )

    survivors = [m for m in merged.values() if m.opportunity.effective_volume >= min_cluster_volume]
    survivors.sort(key=lambda m: m.opportunity.priority_score, reverse=True)
    survivors = [m for m in survivors if m.opportunity.priority_score >= min_score]

    logger.info(
        "Final ranking",
        kept=len(survivors),
        dropped=len(merged) - len(survivors),
        min_score=min_score,
        min_cluster_volume=min_cluster_volume,
    )

    ranked: List[RankedOpportunity] = []
    for index, item in enumerate(survivors):
        opp = item.opportunity
        if index < explanation_top_k:
            explanation = (explainer(opp) if explainer else None) or fallback_explanation(opp)
        else:
            explanation = templated_explanation(opp)

        refined = len(item.iteration_scores) > 1
        ranked.append(
            RankedOpportunity(
                rank=index + 1,
                opportunity=opp,
                domain_suggestions=DomainSuggestions(
                    primary=opp.suggestion.suggested_domain or keyword_domain(opp.suggestion.keyword),
                    alternatives=list(opp.suggestion.alternative_domains),
                ),
                journey=OpportunityJourney(
                    first_seen_iteration=item.first_seen,
                    iteration_scores=list(item.iteration_scores),
                    was_refined=refined,
                    refinement_source=opp.suggestion.keyword if refined else None,
                ),
                explanation=explanation,
                projected_value=calculate_projected_value(opp),
            )
        )
    return ranked
