"""
Tests for prompt selection and content.
"""

from opportunity_engine.schemas import (
    CategoryCount,
    DestinationCount,
    InventoryLandscape,
    OpportunitySeed,
    ScanMode,
)
from opportunity_engine.services.learnings import extract_iteration_learnings
from opportunity_engine.services.prompts import (
    build_explanation_prompt,
    build_iteration_prompt,
    issue_label,
)

from conftest import make_validated

LEARNINGS = extract_iteration_learnings(
    [make_validated("london food tours", 88), make_validated("rome segway tours", 20, destination="Rome", difficulty=85)],
    40,
    75,
)
SEEDS = [
    OpportunitySeed(keyword="london food tours", destination="London", rationale="120 products"),
    OpportunitySeed(keyword="wine tasting experiences", scan_mode=ScanMode.GENERIC_ACTIVITY, rationale="global"),
]
LANDSCAPE = InventoryLandscape(
    total_countries=4,
    total_cities=12,
    total_categories=30,
    top_destinations=[DestinationCount(name="London", country="UK", product_count=120)],
    categories=[CategoryCount(name="Food Tours", product_count=40)],
)


class TestPromptSelection:
    def test_first_iteration_without_seeds_is_exploratory(self):
        prompt = build_iteration_prompt(1, 5, None, 60)
        assert "Be broad and exploratory" in prompt
        assert "Return exactly 60 items" in prompt

    def test_first_iteration_with_seeds(self):
        prompt = build_iteration_prompt(1, 5, None, 60, seeds=SEEDS, landscape=LANDSCAPE)
        assert "Seeds by Scan Mode" in prompt
        assert '"london food tours" [London]' in prompt
        assert "[Global]" in prompt
        assert "12 cities in 4 countries" in prompt

    def test_middle_iteration_refines(self):
        prompt = build_iteration_prompt(2, 5, LEARNINGS, 42)
        assert "Iteration 2/5" in prompt
        assert '"london food tours" (score 88)' in prompt
        assert "Issue: Too competitive" in prompt
        assert "Produce 42 REFINED suggestions" in prompt

    def test_last_iteration_is_final(self):
        prompt = build_iteration_prompt(5, 5, LEARNINGS, 14)
        assert "FINAL optimization round" in prompt
        assert "Produce 14 FINAL" in prompt

    def test_missing_learnings_falls_back_to_first_round(self):
        prompt = build_iteration_prompt(3, 5, None, 29)
        assert "Be broad and exploratory" in prompt

    def test_single_iteration_run_uses_seeds(self):
        prompt = build_iteration_prompt(1, 1, None, 60, seeds=SEEDS)
        assert "Seeds by Scan Mode" in prompt

    def test_landscape_json_in_exploratory(self):
        prompt = build_iteration_prompt(1, 5, None, 60, landscape=LANDSCAPE)
        assert '"totalCities": 12' in prompt


class TestExplanationPrompt:
    def test_contains_metrics(self):
        prompt = build_explanation_prompt(make_validated("london food tours", 80))
        assert '"london food tours"' in prompt
        assert "5000/mo searches" in prompt
        assert "$2.00 CPC" in prompt

    def test_issue_labels(self):
        assert issue_label(make_validated("a", 10, difficulty=90)) == "Too competitive"
        assert issue_label(make_validated("a", 10, volume=100)) == "Low volume"
        assert issue_label(make_validated("a", 10)) == "Poor commercial fit"
