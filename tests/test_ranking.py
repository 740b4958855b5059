"""
Tests for final ranking across iterations.
"""

from unittest.mock import MagicMock

from opportunity_engine.schemas import IterationResult
from opportunity_engine.services.learnings import calculate_iteration_metrics, extract_iteration_learnings
from opportunity_engine.services.ranking import (
    fallback_explanation,
    merge_iterations,
    rank_opportunities,
    templated_explanation,
)

from conftest import make_validated


def iteration(number, validated):
    suggestions = [v.suggestion for v in validated]
    return IterationResult(
        iteration_number=number,
        suggestions=suggestions,
        validated_opportunities=validated,
        learnings=extract_iteration_learnings(validated, 40, 75),
        metrics=calculate_iteration_metrics(suggestions, validated, None, 0, 0, 0.0, 75),
    )


class TestMergeIterations:
    def test_best_score_wins_and_history_kept(self):
        merged = merge_iterations(
            [
                iteration(1, [make_validated("London Food Tours", 60)]),
                iteration(2, [make_validated("london food tours", 72)]),
                iteration(3, [make_validated("london food tours", 65)]),
            ]
        )

        item = merged["london food tours"]
        assert item.opportunity.priority_score == 72
        assert item.first_seen == 1
        assert item.iteration_scores == [60, 72, 65]


class TestRankOpportunities:
    def test_filters_and_orders(self):
        results = rank_opportunities(
            [
                iteration(
                    1,
                    [
                        make_validated("a", 55),
                        make_validated("b", 80),
                        make_validated("low volume", 90, volume=400),
                        make_validated("low score", 30),
                    ],
                )
            ]
        )

        assert [r.opportunity.suggestion.keyword for r in results] == ["b", "a"]
        assert [r.rank for r in results] == [1, 2]

    def test_cluster_volume_counts_towards_floor(self):
        results = rank_opportunities([iteration(1, [make_validated("small primary", 60, volume=300, cluster_total=1500)])])
        assert len(results) == 1

    def test_journey(self):
        results = rank_opportunities(
            [iteration(1, [make_validated("a", 50)]), iteration(2, [make_validated("a", 70), make_validated("b", 60)])]
        )
        by_keyword = {r.opportunity.suggestion.keyword: r for r in results}

        assert by_keyword["a"].journey.was_refined
        assert by_keyword["a"].journey.iteration_scores == [50, 70]
        assert by_keyword["b"].journey.first_seen_iteration == 2
        assert not by_keyword["b"].journey.was_refined
        assert by_keyword["b"].journey.refinement_source is None

    def test_explanations_top_k(self):
        explainer = MagicMock(side_effect=["AI says yes", None])
        validated = [make_validated(f"kw {i}", 90 - i) for i in range(3)]

        results = rank_opportunities([iteration(1, validated)], explainer=explainer, explanation_top_k=2)

        assert explainer.call_count == 2
        assert results[0].explanation == "AI says yes"
        assert results[1].explanation == fallback_explanation(results[1].opportunity)
        assert results[2].explanation == templated_explanation(results[2].opportunity)

    def test_no_explainer_uses_fallback(self):
        results = rank_opportunities([iteration(1, [make_validated("a", 60)])])
        assert results[0].explanation.startswith("High-value opportunity with 5000 monthly searches")

    def test_domain_suggestions_default_to_keyword(self):
        results = rank_opportunities([iteration(1, [make_validated("London Food Tours", 60)])])
        assert results[0].domain_suggestions.primary == "london-food-tours.com"

    def test_projected_value_attached(self):
        results = rank_opportunities([iteration(1, [make_validated("a", 60)])])
        assert results[0].projected_value.monthly_traffic == 250

    def test_empty(self):
        assert rank_opportunities([]) == []
