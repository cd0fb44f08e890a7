"""
Tests for tolerant JSON parsing of model output.
"""

import json

import pytest

from shodhak.agent.repair import (
    extract_json_array,
    extract_json_object,
    loads_lenient,
    parse_text_tool_call,
    repair_json,
)


def test_repairs_stray_quote_and_equals_sign():
    raw = '{name":"search_papers, "parameters"={"query":"x"}}'

    repaired = json.loads(repair_json(raw))

    assert repaired == {"name": "search_papers", "parameters": {"query": "x"}}


def test_repairs_escaped_quotes():
    raw = '{\\"name\\": \\"get_current_papers\\", \\"parameters\\": {}}'
    assert loads_lenient(raw) == {"name": "get_current_papers", "parameters": {}}


def test_repairs_repeated_colons():
    raw = '{"name":: "search_papers", "parameters":: {"query": "x"}}'
    assert loads_lenient(raw) == {"name": "search_papers", "parameters": {"query": "x"}}


def test_repairs_missing_comma_between_members():
    raw = '{"name": "search_papers" "parameters": {"query": "x"}}'
    assert loads_lenient(raw) == {"name": "search_papers", "parameters": {"query": "x"}}


def test_repairs_missing_colon_before_object():
    raw = '{"name": "search_papers", "parameters" {"query": "x"}}'
    assert loads_lenient(raw) == {"name": "search_papers", "parameters": {"query": "x"}}


def test_repairs_adjacent_objects_in_array():
    raw = '[{"type": "decision", "content": "a"}{"type": "entity", "content": "b"}]'
    assert loads_lenient(raw) == [
        {"type": "decision", "content": "a"},
        {"type": "entity", "content": "b"},
    ]


def test_valid_json_is_parsed_strictly():
    raw = '{"query": "deep learning, note: transformers"}'
    assert loads_lenient(raw) == {"query": "deep learning, note: transformers"}


def test_unrepairable_text_raises():
    with pytest.raises(ValueError):
        loads_lenient("{this is not json at all")


def test_extract_array_from_code_fence():
    raw = 'Here are the facts:\n```json\n[{"type": "entity", "content": "BERT"}]\n```\nHope that helps.'
    assert extract_json_array(raw) == [{"type": "entity", "content": "BERT"}]


def test_extract_array_from_surrounding_prose():
    raw = 'Sure! [{"type": "decision", "content": "Focus on 2020+"}] Let me know.'
    assert extract_json_array(raw) == [{"type": "decision", "content": "Focus on 2020+"}]


def test_extract_returns_none_without_brackets():
    assert extract_json_array("no json here") is None
    assert extract_json_object("no json here") is None


def test_parse_text_tool_call_with_parameters():
    call = parse_text_tool_call('I will search now. {"name": "search_papers", "parameters": {"query": "rlhf", "limit": 5}}')

    assert call is not None
    assert call.name == "search_papers"
    assert call.parameters == {"query": "rlhf", "limit": 5}


def test_parse_text_tool_call_with_string_arguments():
    call = parse_text_tool_call('{"name": "summarize_paper", "arguments": "{\\"paper_index\\": 2}"}')

    assert call is not None
    assert call.name == "summarize_paper"
    assert call.parameters == {"paper_index": 2}


def test_parse_text_tool_call_repairs_malformed_payload():
    call = parse_text_tool_call('{name":"search_papers, "parameters"={"query":"x"}}')

    assert call is not None
    assert call.name == "search_papers"
    assert call.parameters == {"query": "x"}


@pytest.mark.parametrize("text", [
    "",
    "Here is a summary of the papers you found.",
    '{"title": "A paper", "year": 2020}',
    '{"name": "search_papers"}',
])
def test_parse_text_tool_call_ignores_ordinary_text(text):
    assert parse_text_tool_call(text) is None
