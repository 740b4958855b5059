"""
Tests for keyword metric derivation from DataForSEO rows.
"""

from unittest.mock import MagicMock

import pytest

from opportunity_engine.services.keyword_research import (
    KeywordResearchService,
    analyze_trend,
    competition_level,
    detect_seasonality,
    estimate_difficulty,
    monthly_volumes,
    to_keyword_metrics,
)


class TestEstimateDifficulty:
    @pytest.mark.parametrize(
        "competition,volume,expected",
        [
            (0.3, 5000, 30),
            (0.455, 500, 46),
            (0.5, 20000, 60),  # high volume bonus
            (0.95, 20000, 100),  # clamped
            (0.2, 50, 10),  # low volume discount
            (0.05, 50, 0),  # clamped
        ],
    )
    def test_estimate(self, competition, volume, expected):
        assert estimate_difficulty(competition, volume) == expected


class TestAnalyzeTrend:
    def test_rising(self):
        assert analyze_trend([100, 100, 100, 130, 130, 130]) == "rising"

    def test_declining(self):
        assert analyze_trend([100, 100, 100, 70, 70, 70]) == "declining"

    def test_small_change_is_stable(self):
        assert analyze_trend([100, 100, 100, 110, 110, 110]) == "stable"

    def test_from_zero(self):
        assert analyze_trend([0, 0, 0, 5, 5, 5]) == "rising"
        assert analyze_trend([0, 0, 0, 0, 0, 0]) == "stable"

    def test_not_enough_history(self):
        assert analyze_trend([1, 2]) == "stable"
        assert analyze_trend([10, 50, 90]) == "stable"


class TestDetectSeasonality:
    def test_flat_year(self):
        assert not detect_seasonality([100] * 12)

    def test_summer_peak(self):
        assert detect_seasonality([10] * 6 + [200] * 6)

    def test_needs_a_full_year(self):
        assert not detect_seasonality([10] * 5 + [200] * 6)

    def test_all_zero(self):
        assert not detect_seasonality([0] * 12)


class TestCompetitionLevel:
    def test_passthrough(self):
        assert competition_level("low", 0.9) == "LOW"

    def test_derived(self):
        assert competition_level(None, 0.7) == "HIGH"
        assert competition_level(None, 0.5) == "MEDIUM"
        assert competition_level(None, 0.1) == "LOW"

    def test_unknown(self):
        assert competition_level(None, 0) is None
        assert competition_level("UNSPECIFIED", 0.5) is None


class TestRowConversion:
    ROW = {
        "keyword": "london food tours",
        "search_volume": 5400,
        "competition": 0.31,
        "competition_level": "LOW",
        "cpc": 2.15,
        # DataForSEO returns the newest month first
        "monthly_searches": [
            {"year": 2024, "month": 6, "search_volume": 9000},
            {"year": 2024, "month": 5, "search_volume": 8000},
            {"year": 2024, "month": 4, "search_volume": 7000},
            {"year": 2024, "month": 3, "search_volume": 3000},
            {"year": 2024, "month": 2, "search_volume": 3000},
            {"year": 2024, "month": 1, "search_volume": 3000},
        ],
    }

    def test_monthly_oldest_first(self):
        assert monthly_volumes(self.ROW) == [3000, 3000, 3000, 7000, 8000, 9000]

    def test_to_keyword_metrics(self):
        metrics = to_keyword_metrics(self.ROW)

        assert metrics.keyword == "london food tours"
        assert metrics.search_volume == 5400
        assert metrics.difficulty == 31
        assert metrics.cpc == 2.15
        assert metrics.competition_level == "LOW"
        assert metrics.trend == "rising"
        assert not metrics.seasonality
        assert metrics.monthly_trends == [3000, 3000, 3000, 7000, 8000, 9000]

    def test_nulls(self):
        metrics = to_keyword_metrics({"keyword": "obscure", "search_volume": None, "cpc": None, "competition": None})

        assert metrics.search_volume == 0
        assert metrics.cpc == 0
        assert metrics.difficulty == 0
        assert metrics.trend == "stable"
        assert metrics.monthly_trends is None


class TestKeywordResearchService:
    def test_bulk_metrics(self):
        client = MagicMock()
        client.get_bulk_search_volume.return_value = [
            {"keyword": "a", "search_volume": 100, "competition": 0.5, "cpc": 1.0},
            {"search_volume": 50},
        ]
        service = KeywordResearchService(client=client)

        metrics = service.get_bulk_metrics(["a", "b"])

        client.get_bulk_search_volume.assert_called_once_with(["a", "b"])
        assert [m.keyword for m in metrics] == ["a"]
        assert metrics[0].difficulty == 50

    def test_empty_input_skips_call(self):
        client = MagicMock()
        assert KeywordResearchService(client=client).get_bulk_metrics([]) == []
        client.get_bulk_search_volume.assert_not_called()
