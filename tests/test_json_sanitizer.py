"""
Tests for lenient JSON parsing of model output.
"""

import json

import pytest

from codecrew.utils.json_sanitizer import (
    safe_parse_json,
    sanitize_json_response,
    strict_parse_json,
)


class TestSanitize:
    """Test structural cleanup."""

    def test_strips_markdown_fence(self):
        raw = 'Here is the plan:\n```json\n{"a": 1}\n```'
        assert sanitize_json_response(raw) == '{"a": 1}'

    def test_strips_thinking_tags(self):
        raw = '<think>let me plan {not json}</think>{"a": 1}'
        assert json.loads(sanitize_json_response(raw)) == {"a": 1}

    def test_removes_line_comments_but_keeps_urls(self):
        raw = '{\n  "url": "https://example.com", // homepage\n  "b": 2\n}'
        assert json.loads(sanitize_json_response(raw)) == {"url": "https://example.com", "b": 2}

    def test_keeps_double_slash_inside_strings(self):
        raw = '{"note": "a // b"}'
        assert json.loads(sanitize_json_response(raw)) == {"note": "a // b"}

    def test_removes_trailing_commas(self):
        raw = '{"items": [1, 2, 3,], "b": 1,}'
        assert json.loads(sanitize_json_response(raw)) == {"items": [1, 2, 3], "b": 1}

    def test_extracts_outermost_object_from_prose(self):
        raw = 'Sure! {"a": {"b": 1}} Hope this helps.'
        assert sanitize_json_response(raw) == '{"a": {"b": 1}}'

    def test_replaces_control_characters(self):
        raw = '{"a":\x01 1}'
        assert json.loads(sanitize_json_response(raw)) == {"a": 1}


class TestParse:
    """Test strict and safe parsing."""

    def test_strict_accepts_raw_newlines_in_strings(self):
        assert strict_parse_json('{"code": "line1\nline2"}') == {"code": "line1\nline2"}

    def test_strict_repairs_smart_quotes(self):
        assert strict_parse_json("{“a”: “b”}") == {"a": "b"}

    def test_strict_raises_on_garbage(self):
        with pytest.raises(json.JSONDecodeError):
            strict_parse_json("no json here")

    def test_safe_returns_fallback(self):
        assert safe_parse_json("no json here", fallback={}) == {}
        assert safe_parse_json("no json here") is None

    def test_safe_parses_array(self):
        assert safe_parse_json("```json\n[1, 2]\n```") == [1, 2]
