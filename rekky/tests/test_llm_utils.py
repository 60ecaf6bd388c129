"""Tests for shared LLM response parsing utilities."""

import pytest
from rekky.common.llm_utils import parse_llm_json


class TestParseLlmJson:
    def test_valid_json(self):
        assert parse_llm_json('{"isRelevant": true}') == {"isRelevant": True}

    def test_json_with_markdown_fences(self):
        raw = '```json\n{"isRelevant": false, "reason": "hotel vs restaurant"}\n```'
        result = parse_llm_json(raw)
        assert result == {"isRelevant": False, "reason": "hotel vs restaurant"}

    def test_json_embedded_in_text(self):
        raw = 'Sure! {"summary": "Blue Tokai is a favourite"} Hope that helps.'
        assert parse_llm_json(raw) == {"summary": "Blue Tokai is a favourite"}

    def test_no_json_returns_empty_dict(self):
        assert parse_llm_json("These results look relevant.") == {}

    def test_empty_string_returns_empty_dict(self):
        assert parse_llm_json("") == {}

    def test_json_list_is_not_an_object(self):
        assert parse_llm_json("[1, 2, 3]") == {}

    def test_invalid_json_with_braces_returns_empty(self):
        assert parse_llm_json('{"broken: json') == {}
