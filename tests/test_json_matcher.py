"""Tests for JSON subset matching, tree search and envelope matching."""

from __future__ import annotations

import json
import sys

import pytest

from harness.matching.json_matcher import (
    contains_json_data,
    extract_event_data,
    find_key_value_in_tree,
    load_pattern,
    matches,
)


def _envelope(data) -> str:
    """Serialized request envelope as stored by the telemetry receiver."""
    body = json.dumps({"meta": {"app": "test"}, "event": {"name": "x", "data": data}})
    return json.dumps({"uri": "/m/batch", "headers": {}, "query": {}, "body": body})


def _nested(depth: int) -> list:
    root: list = []
    for _ in range(depth):
        root = [root]
    return root


def _nested_text(depth: int) -> str:
    return "[" * depth + "]" * depth


# ---------------------------------------------------------------------------
# Primitive rules
# ---------------------------------------------------------------------------


class TestPrimitives:
    @pytest.mark.parametrize("candidate", ["abc", "", 0, 12.5, True, False, None])
    def test_wildcard_matches_every_primitive(self, candidate):
        assert matches(candidate, "*") is True

    def test_substring(self):
        assert matches("hello world", "~world") is True
        assert matches("hello", "~world") is False

    def test_empty_pattern_only_matches_empty_string(self):
        assert matches("", "") is True
        assert matches("x", "") is False

    def test_exact_after_stringification(self):
        assert matches(42, "42") is True
        assert matches("42", 42) is True
        assert matches(True, "true") is True
        assert matches(None, "null") is True
        assert matches(1.0, 1) is True
        assert matches("abc", "abd") is False

    def test_substring_on_number(self):
        assert matches(12345, "~234") is True


# ---------------------------------------------------------------------------
# Structures
# ---------------------------------------------------------------------------


class TestStructures:
    @pytest.mark.parametrize("candidate", [{}, {"a": 1}, [], [1, 2], [{"a": 1}]])
    def test_empty_object_matches_any_object_or_array(self, candidate):
        assert matches(candidate, {}) is True

    def test_empty_object_does_not_match_primitive(self):
        assert matches(5, {}) is False

    def test_object_subset(self):
        assert matches({"a": 1, "b": 2}, {"a": 1}) is True
        assert matches({"a": 1}, {"a": 1, "b": 2}) is False
        assert matches({"a": {"b": {"c": "deep"}}}, {"a": {"b": {"c": "~ee"}}}) is True

    def test_missing_key_is_not_a_wildcard(self):
        assert matches({"a": 1}, {"b": "*"}) is False

    def test_array_existential(self):
        assert matches([{"a": 1}, {"a": 2}], [{"a": 2}]) is True
        assert matches([{"a": 1}], [{"a": 1}, {"a": 2}]) is False

    def test_array_not_injective(self):
        # Two pattern elements may be satisfied by the same candidate element
        assert matches([{"a": 1, "b": 2}], [{"a": 1}, {"b": 2}]) is True

    def test_shape_mismatch(self):
        assert matches({"a": 1}, [{"a": 1}]) is False
        assert matches([1], {"a": 1}) is False
        assert matches({"a": 1}, "a") is False

    def test_nested_string_json_coercion(self):
        assert matches({"body": "{\"x\":1}"}, {"body": {"x": 1}}) is True
        assert matches({"body": "{\"x\":2}"}, {"body": {"x": 1}}) is False

    def test_doubly_encoded_json(self):
        inner = json.dumps({"k": "v"})
        outer = json.dumps({"payload": inner})
        assert matches(outer, {"payload": {"k": "v"}}) is True

    def test_unparsable_string_against_structure(self):
        assert matches("not json", {"a": 1}) is False


# ---------------------------------------------------------------------------
# Tree search
# ---------------------------------------------------------------------------


class TestFindKeyValueInTree:
    def test_finds_nested_key(self):
        tree = {"screen": {"blocks": [{"id": 7, "title": "Deals"}]}}
        assert find_key_value_in_tree(tree, "title", "Deals") is True

    def test_value_must_match(self):
        tree = {"items": [{"name": "A"}, {"name": "B"}]}
        assert find_key_value_in_tree(tree, "name", "C") is False
        assert find_key_value_in_tree(tree, "name", "~B") is True

    def test_structured_value(self):
        tree = [{"meta": {"price": {"amount": 10, "currency": "EUR"}}}]
        assert find_key_value_in_tree(tree, "price", {"currency": "EUR"}) is True

    def test_primitives_have_no_keys(self):
        assert find_key_value_in_tree("name", "name", "*") is False


# ---------------------------------------------------------------------------
# Envelope entry point
# ---------------------------------------------------------------------------


class TestContainsJsonData:
    def test_every_key_found_anywhere(self):
        env = _envelope({"screen": "home", "items": [{"name": "Milk", "id": 3}]})
        assert contains_json_data(env, '{"screen": "home", "id": 3}') is True

    def test_one_key_missing(self):
        env = _envelope({"screen": "home"})
        assert contains_json_data(env, '{"screen": "home", "id": 3}') is False

    def test_empty_search_matches(self):
        assert contains_json_data(_envelope({"a": 1}), "{}") is True

    @pytest.mark.parametrize("event_json", ["", "nope", "[]", '{"body": 3}', '{"body": "{]"}'])
    def test_bad_envelope_is_false(self, event_json):
        assert contains_json_data(event_json, '{"a": 1}') is False

    @pytest.mark.parametrize("search", ["", "{bad", "[1]", '"text"'])
    def test_bad_search_is_false(self, search):
        assert contains_json_data(_envelope({"a": 1}), search) is False

    def test_extract_requires_event_data(self):
        body = json.dumps({"event": {"name": "x"}})
        with pytest.raises(ValueError):
            extract_event_data(json.dumps({"body": body}))


# ---------------------------------------------------------------------------
# Deep nesting
# ---------------------------------------------------------------------------


class TestDeepNesting:
    def test_matches_too_deep_is_false(self):
        depth = sys.getrecursionlimit() + 100
        assert matches(_nested(depth), _nested(depth)) is False

    def test_tree_search_too_deep_is_false(self):
        deep = {"a": _nested(sys.getrecursionlimit() + 100)}
        assert find_key_value_in_tree(deep, "k", "v") is False

    @pytest.mark.parametrize("depth", [600, 5000])
    def test_envelope_too_deep_is_false(self, depth):
        data = '{"deep": ' + _nested_text(depth) + "}"
        body = '{"event": {"name": "x", "data": ' + data + "}}"
        assert contains_json_data(json.dumps({"body": body}), '{"k": "v"}') is False

    def test_string_candidate_too_deep_is_false(self):
        assert matches(_nested_text(5000), [{"k": "v"}]) is False


class TestLoadPattern:
    def test_existing_file_is_read(self, tmp_path):
        p = tmp_path / "pattern.json"
        p.write_text('{"screen": "home"}')
        assert load_pattern(str(p)) == '{"screen": "home"}'

    def test_literal_is_returned(self):
        assert load_pattern('{"screen": "home"}') == '{"screen": "home"}'

    def test_none(self):
        assert load_pattern(None) is None

    def test_very_long_literal(self):
        literal = json.dumps({"k": "x" * 5000})
        assert load_pattern(literal) == literal
