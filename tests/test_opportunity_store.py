"""
Tests for the durable opportunity store and the run-scoped pre-filter.
"""

from unittest.mock import MagicMock

from sqlmodel import select

from opportunity_engine.models import SeoOpportunity
from opportunity_engine.schemas import IterationResult, OpportunitySuggestion
from opportunity_engine.services.learnings import calculate_iteration_metrics, extract_iteration_learnings
from opportunity_engine.services.opportunity_store import ExistingOpportunityFilter, SqlOpportunityStore
from opportunity_engine.services.ranking import rank_opportunities

from conftest import make_validated


def ranked(*validated):
    suggestions = [v.suggestion for v in validated]
    result = IterationResult(
        iteration_number=1,
        suggestions=suggestions,
        validated_opportunities=list(validated),
        learnings=extract_iteration_learnings(list(validated), 40, 75),
        metrics=calculate_iteration_metrics(suggestions, list(validated), None, 0, 0, 0.0, 75),
    )
    return rank_opportunities([result])


class TestSqlOpportunityStore:
    def test_upsert_inserts_row(self, test_engine, test_session):
        store = SqlOpportunityStore(test_engine)
        store.upsert(ranked(make_validated("London Food Tours", 70, destination=" London "))[0], total_api_cost=1.5)

        row = test_session.exec(select(SeoOpportunity)).one()
        assert row.keyword == "london food tours"
        assert row.location == "London"
        assert row.priority_score == 70
        assert row.status == "IDENTIFIED"
        assert row.intent == "TRANSACTIONAL"
        assert row.source == "optimized_scan"
        assert row.source_data["optimizationRank"] == 1
        assert row.source_data["totalApiCost"] == 1.5
        assert row.source_data["dataForSeo"]["searchVolume"] == 5000
        assert row.source_data["projectedValue"]["monthlyTraffic"] == 250

    def test_upsert_updates_existing(self, test_engine, test_session):
        store = SqlOpportunityStore(test_engine)
        store.upsert(ranked(make_validated("london food tours", 60))[0])
        store.upsert(ranked(make_validated("London Food Tours", 80))[0], source="integrated_scan", site_id="site-1")

        rows = test_session.exec(select(SeoOpportunity)).all()
        assert len(rows) == 1
        assert rows[0].priority_score == 80
        assert rows[0].source == "integrated_scan"
        assert rows[0].site_id == "site-1"

    def test_same_keyword_other_location_is_separate(self, test_engine):
        store = SqlOpportunityStore(test_engine)
        store.upsert(ranked(make_validated("food tours", 60, destination="London"))[0])
        store.upsert(ranked(make_validated("food tours", 60, destination="Paris"))[0])

        assert store.find_existing_keys() == {("food tours", "london"), ("food tours", "paris")}

    def test_list_top(self, test_engine):
        store = SqlOpportunityStore(test_engine)
        for row in ranked(make_validated("a", 50), make_validated("b", 90), make_validated("c", 70)):
            store.upsert(row)

        assert [o.keyword for o in store.list_top(2)] == ["b", "c"]


class TestExistingOpportunityFilter:
    def test_drops_known_keys_case_insensitive(self):
        store = MagicMock()
        store.find_existing_keys.return_value = {("london food tours", "london")}
        prefilter = ExistingOpportunityFilter(store)

        kept = prefilter.filter(
            [
                OpportunitySuggestion(keyword="London Food Tours", destination="LONDON"),
                OpportunitySuggestion(keyword="London Food Tours", destination="Paris"),
            ]
        )

        assert [s.destination for s in kept] == ["Paris"]

    def test_keys_loaded_once_until_cleared(self):
        store = MagicMock()
        store.find_existing_keys.return_value = set()
        prefilter = ExistingOpportunityFilter(store)

        prefilter.filter([OpportunitySuggestion(keyword="a")])
        prefilter.filter([OpportunitySuggestion(keyword="b")])
        assert store.find_existing_keys.call_count == 1

        prefilter.clear()
        prefilter.filter([OpportunitySuggestion(keyword="c")])
        assert store.find_existing_keys.call_count == 2

    def test_without_store_keeps_everything(self):
        suggestions = [OpportunitySuggestion(keyword="a"), OpportunitySuggestion(keyword="b")]
        assert ExistingOpportunityFilter(None).filter(suggestions) == suggestions
