"""
Tests for the tolerant AI output decoder.

Covers each step of the repair ladder, wrapped arrays, invalid items and
the failure modes that must surface as GeneratorParseError.
"""

import json

import pytest

from opportunity_engine.core.errors import GeneratorParseError
from opportunity_engine.services.json_repair import decode_json_array, decode_suggestions

from conftest import suggestion_json

ITEMS = [
    suggestion_json("london food tours", cluster=["food tour london"]),
    suggestion_json("paris wine tasting", destination="Paris", category="Wine Tasting"),
]


class TestDecodeJsonArray:
    def test_strict_json(self):
        items, step = decode_json_array(json.dumps(ITEMS))
        assert step == "strict"
        assert len(items) == 2

    def test_markdown_fences(self):
        text = "```json\n" + json.dumps(ITEMS) + "\n```"
        items, step = decode_json_array(text)
        assert step == "unfenced"
        assert items[0]["keyword"] == "london food tours"

    def test_array_inside_prose(self):
        text = "Here are the opportunities:\n" + json.dumps(ITEMS) + "\nLet me know if you need more."
        items, step = decode_json_array(text)
        assert step == "extracted"
        assert len(items) == 2

    def test_truncated_response_is_repaired(self):
        full = json.dumps(ITEMS)
        # Cut off inside the second object
        truncated = full[: full.index('"paris wine tasting"') + 5]
        items, step = decode_json_array(truncated)
        assert step == "repaired"
        assert [i["keyword"] for i in items] == ["london food tours"]

    def test_wrapped_array(self):
        items, step = decode_json_array(json.dumps({"opportunities": ITEMS}))
        assert step == "strict"
        assert len(items) == 2

    @pytest.mark.parametrize("text", ["", "   \n"])
    def test_empty_response(self, text):
        with pytest.raises(GeneratorParseError):
            decode_json_array(text)

    def test_unparseable_response_carries_preview(self):
        text = "I'm sorry, I can't help with that. " * 40
        with pytest.raises(GeneratorParseError) as exc_info:
            decode_json_array(text)
        assert exc_info.value.preview == text[:500]


class TestDecodeSuggestions:
    def test_stamps_iteration_and_fresh_ids(self):
        items = [dict(ITEMS[0], id="dup", iterationSource=9), dict(ITEMS[1], id="dup")]
        suggestions = decode_suggestions(json.dumps(items), iteration=3)

        assert [s.iteration_source for s in suggestions] == [3, 3]
        assert suggestions[0].id != suggestions[1].id
        assert "dup" not in {s.id for s in suggestions}

    def test_camel_case_fields_are_mapped(self):
        suggestion = decode_suggestions(json.dumps(ITEMS[:1]), iteration=1)[0]
        assert suggestion.cluster_keywords == ["food tour london"]
        assert suggestion.suggested_domain == "london-food-tours.com"
        assert suggestion.confidence_score == 80

    def test_invalid_items_are_skipped(self):
        items = [ITEMS[0], {"keyword": "   "}, "not an object", {"destination": "Rome"}]
        suggestions = decode_suggestions(json.dumps(items), iteration=1)
        assert [s.keyword for s in suggestions] == ["london food tours"]

    def test_loose_values_are_coerced(self):
        item = dict(ITEMS[0], clusterKeywords="food tour london", confidenceScore="high", destination=None)
        suggestion = decode_suggestions(json.dumps([item]), iteration=1)[0]

        assert suggestion.cluster_keywords == ["food tour london"]
        assert suggestion.confidence_score == 50
        assert suggestion.destination == ""

    def test_confidence_is_clamped(self):
        item = dict(ITEMS[0], confidenceScore=140)
        assert decode_suggestions(json.dumps([item]), iteration=1)[0].confidence_score == 100

    def test_no_valid_items_raises(self):
        with pytest.raises(GeneratorParseError):
            decode_suggestions(json.dumps([{"keyword": ""}]), iteration=1)
