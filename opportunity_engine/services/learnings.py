"""
Per-iteration learning extraction, metrics and the early-stop rule.

Learnings (not raw opportunities) are what the next iteration's prompt sees:
top and bottom performers, textual patterns, optimal difficulty/volume ranges
among acceptable opportunities, best/avoid destinations and categories, and
free-text recommendations.
"""

from statistics import mean
from typing import Dict, List, Optional, Sequence

from opportunity_engine.schemas import (
    IterationLearnings,
    IterationMetrics,
    IterationResult,
    LearningPatterns,
    NumericRange,
    OpportunitySuggestion,
    ScoreDistribution,
    ValidatedOpportunity,
)

PERFORMER_COUNT = 5
BEST_COUNT = 3
AVOID_COUNT = 2
COMPETITIVE_DIFFICULTY = 70
LOW_VOLUME = 500

# Used when no acceptable opportunity exists to derive a range from
DEFAULT_DIFFICULTY_MIN = 20
DEFAULT_DIFFICULTY_MAX = 60
DEFAULT_VOLUME_MIN = 500
DEFAULT_VOLUME_MAX = 10000


def _unique(values: Sequence[str]) -> List[str]:
    return list(dict.fromkeys(values))


def _ranked_by_average(groups: Dict[str, List[int]]) -> List[str]:
    """Group keys, best average score first (ties keep first-seen order)."""
    averages = [(key, mean(scores)) for key, scores in groups.items()]
    return [key for key, _ in sorted(averages, key=lambda item: item[1], reverse=True)]


def _optimal_ranges(acceptable: List[ValidatedOpportunity]) -> tuple:
    difficulties = [v.data_for_seo.difficulty for v in acceptable]
    volumes = [v.data_for_seo.search_volume for v in acceptable]
    beatable = [d for d in difficulties if d < COMPETITIVE_DIFFICULTY]

    difficulty_range = NumericRange(
        min=min(difficulties) if difficulties and min(difficulties) > 0 else DEFAULT_DIFFICULTY_MIN,
        max=max(beatable) if beatable and max(beatable) > 0 else DEFAULT_DIFFICULTY_MAX,
    )
    volume_range = NumericRange(
        min=max(DEFAULT_VOLUME_MIN, min(volumes) if volumes else DEFAULT_VOLUME_MIN),
        max=max(volumes) if volumes and max(volumes) > 0 else DEFAULT_VOLUME_MAX,
    )
    return difficulty_range, volume_range


def extract_iteration_learnings(
    validated: List[ValidatedOpportunity],
    min_score_threshold: float,
    target_score_threshold: float,
) -> IterationLearnings:
    ranked = sorted(validated, key=lambda v: v.priority_score, reverse=True)
    top = [v for v in ranked if v.priority_score >= target_score_threshold][:PERFORMER_COUNT]
    bottom = [v for v in ranked if v.priority_score < min_score_threshold][-PERFORMER_COUNT:]

    high_patterns: List[str] = []
    if top:
        high_patterns.append(f"Destinations that work: {', '.join(_unique([t.suggestion.destination for t in top]))}")
        high_patterns.append(f"Categories that work: {', '.join(_unique([t.suggestion.category for t in top]))}")
        high_patterns.append(f"Average difficulty of winners: {mean(t.data_for_seo.difficulty for t in top):.0f}")
        high_patterns.append(f"Average volume of winners: {mean(t.data_for_seo.search_volume for t in top):.0f}/mo")

    low_patterns: List[str] = []
    if bottom:
        low_patterns.append(f"Destinations to avoid: {', '.join(_unique([b.suggestion.destination for b in bottom]))}")
        low_patterns.append(f"Categories to avoid: {', '.join(_unique([b.suggestion.category for b in bottom]))}")
        for b in bottom:
            m = b.data_for_seo
            if m.difficulty > COMPETITIVE_DIFFICULTY:
                low_patterns.append(f'"{b.suggestion.keyword}" failed: too competitive ({m.difficulty})')
            if m.search_volume < LOW_VOLUME:
                low_patterns.append(f'"{b.suggestion.keyword}" failed: low volume ({m.search_volume})')

    acceptable = [v for v in validated if v.priority_score >= min_score_threshold]
    difficulty_range, volume_range = _optimal_ranges(acceptable)

    destination_scores: Dict[str, List[int]] = {}
    category_scores: Dict[str, List[int]] = {}
    for v in validated:
        destination_scores.setdefault(v.suggestion.destination, []).append(v.priority_score)
        category_scores.setdefault(v.suggestion.category, []).append(v.priority_score)

    destinations_by_score = _ranked_by_average(destination_scores)
    categories_by_score = _ranked_by_average(category_scores)
    best_destinations = destinations_by_score[:BEST_COUNT]
    best_categories = categories_by_score[:BEST_COUNT]
    avoid_destinations = list(reversed(destinations_by_score))[:AVOID_COUNT]
    avoid_categories = list(reversed(categories_by_score))[:AVOID_COUNT]

    recommendations: List[str] = []
    if best_destinations:
        recommendations.append(f"Focus on {', '.join(best_destinations)} - these destinations scored highest")
    if best_categories:
        recommendations.append(f"Prioritize {', '.join(best_categories)} categories")
    recommendations.append(
        f"Target difficulty {difficulty_range.min:.0f}-{difficulty_range.max:.0f} for best results"
    )
    recommendations.append(f"Look for keywords with {volume_range.min:.0f}+ monthly searches")
    if any(t.data_for_seo.trend == "rising" for t in top):
        recommendations.append("Rising trends correlate with higher scores - look for growing niches")

    average = mean(v.priority_score for v in validated) if validated else 0.0
    metrics_summary = "\n".join(
        [
            "Iteration Results:",
            f"- Total validated: {len(validated)}",
            f"- Above threshold ({target_score_threshold:g}+): {len(top)}",
            f"- Average score: {average:.1f}",
            f"- Best score: {ranked[0].priority_score if ranked else 0}",
            f"- Optimal difficulty range: {difficulty_range.min:.0f}-{difficulty_range.max:.0f}",
            f"- Optimal volume range: {volume_range.min:.0f}+/mo",
        ]
    )

    return IterationLearnings(
        top_performers=top,
        bottom_performers=bottom,
        patterns=LearningPatterns(
            high_score_patterns=high_patterns,
            low_score_patterns=low_patterns,
            optimal_difficulty_range=difficulty_range,
            optimal_volume_range=volume_range,
            best_destinations=best_destinations,
            best_categories=best_categories,
            avoid_destinations=avoid_destinations,
            avoid_categories=avoid_categories,
        ),
        recommendations=recommendations,
        metrics_summary=metrics_summary,
    )


def score_distribution(scores: Sequence[int]) -> ScoreDistribution:
    return ScoreDistribution(
        excellent=sum(1 for s in scores if s >= 85),
        good=sum(1 for s in scores if 70 <= s < 85),
        moderate=sum(1 for s in scores if 50 <= s < 70),
        poor=sum(1 for s in scores if s < 50),
    )


def calculate_iteration_metrics(
    suggestions: List[OpportunitySuggestion],
    validated: List[ValidatedOpportunity],
    previous: Optional[IterationResult],
    execution_time_ms: int,
    api_calls_made: int,
    api_cost_usd: float,
    target_score_threshold: float,
) -> IterationMetrics:
    scores = [v.priority_score for v in validated]
    ordered = sorted(scores)

    average = mean(scores) if scores else 0.0
    previous_average = previous.metrics.average_score if previous else 0.0
    # No baseline to compare against: report zero rather than dividing by it
    if previous and previous_average > 0:
        improvement = (average - previous_average) / previous_average * 100
    else:
        improvement = 0.0

    return IterationMetrics(
        total_suggestions=len(suggestions),
        validated_count=len(validated),
        above_threshold=sum(1 for s in scores if s >= target_score_threshold),
        average_score=average,
        median_score=ordered[len(ordered) // 2] if ordered else 0,
        max_score=max(scores) if scores else 0,
        min_score=min(scores) if scores else 0,
        score_distribution=score_distribution(scores),
        improvement_from_previous=improvement,
        api_calls_made=api_calls_made,
        api_cost_usd=api_cost_usd,
        execution_time_ms=execution_time_ms,
    )


def should_stop_early(iterations: Sequence[IterationResult], threshold: float) -> bool:
    """True once 3+ iterations completed and the last two barely moved the mean."""
    if len(iterations) < 3:
        return False
    return all(abs(it.metrics.improvement_from_previous) < threshold for it in iterations[-2:])
