"""
Tests for LLM provider adapters.
"""

import pytest

from shodhak.config import LLMConfig
from shodhak.llm import (
    AnthropicLLM,
    LLMMessage,
    OpenAILLM,
    ToolCall,
    ToolDefinition,
    create_llm,
    create_llms,
    strip_thinking,
)
from shodhak.llm.openai import to_openai_message, to_openai_tool

CONVERSATION = [
    LLMMessage(role="system", content="You are helpful."),
    LLMMessage(role="system", content="[Previous conversation summary (messages 0-3)]: earlier"),
    LLMMessage(role="user", content="find papers"),
    LLMMessage(
        role="assistant",
        content="Searching.",
        tool_calls=[ToolCall(id="c1", name="search_papers", arguments='{"query": "rl"}')],
    ),
    LLMMessage(role="tool", content='{"success": true}', tool_call_id="c1", name="search_papers"),
]


def test_create_llm_routes_providers():
    assert isinstance(create_llm(LLMConfig(provider="anthropic", model="claude", api_key="k")), AnthropicLLM)

    groq = create_llm(LLMConfig(provider="groq", model="qwen", api_key="k", base_url="https://api.groq.com/openai/v1"))
    assert isinstance(groq, OpenAILLM)
    assert groq.provider_name == "groq"


def test_create_llms_builds_each_role(settings):
    settings.reasoning_model = "qwen/qwen3-32b"
    settings.fast_model = "llama-3.3-70b-versatile"

    llms = create_llms(settings)

    assert llms.chat.model == "gpt-4o-mini"
    assert llms.reasoning.model == "qwen/qwen3-32b"
    assert llms.fast.model == "llama-3.3-70b-versatile"


def test_openai_message_conversion():
    converted = [to_openai_message(m) for m in CONVERSATION]

    assert [m["role"] for m in converted] == ["system", "system", "user", "assistant", "tool"]
    assert converted[3]["tool_calls"][0] == {
        "id": "c1",
        "type": "function",
        "function": {"name": "search_papers", "arguments": '{"query": "rl"}'},
    }
    assert converted[4] == {"role": "tool", "tool_call_id": "c1", "content": '{"success": true}'}


def test_openai_tool_conversion():
    tool = ToolDefinition(name="t", description="d", parameters={"type": "object", "properties": {}})

    assert to_openai_tool(tool) == {
        "type": "function",
        "function": {"name": "t", "description": "d", "parameters": {"type": "object", "properties": {}}},
    }


@pytest.mark.parametrize("raw,expected", [
    ("<think>plan the search</think>\n\nHere are the papers.", "Here are the papers."),
    ("<think>cut off by the token limit", ""),
    ("No reasoning here.", "No reasoning here."),
])
def test_strip_thinking(raw, expected):
    assert strip_thinking(raw) == expected


def test_anthropic_message_conversion():
    llm = AnthropicLLM(api_key="test")

    converted = llm._convert_messages(CONVERSATION)

    assert [m["role"] for m in converted] == ["user", "assistant", "user"]
    assert converted[1]["content"][1] == {
        "type": "tool_use",
        "id": "c1",
        "name": "search_papers",
        "input": {"query": "rl"},
    }
    assert converted[2]["content"][0]["type"] == "tool_result"
    assert llm._extract_system_prompt(CONVERSATION) == (
        "You are helpful.\n\n[Previous conversation summary (messages 0-3)]: earlier"
    )


def test_anthropic_merges_consecutive_roles():
    llm = AnthropicLLM(api_key="test")
    messages = [
        LLMMessage(role="user", content="first"),
        LLMMessage(role="user", content='Tool "search_papers" result: {}'),
    ]

    converted = llm._convert_messages(messages)

    assert len(converted) == 1
    assert [b["text"] for b in converted[0]["content"]] == ["first", 'Tool "search_papers" result: {}']


@pytest.mark.parametrize("arguments,expected", [('{"a": 1}', {"a": 1}), ("", {}), ("[1]", {}), ("{bad", {})])
def test_anthropic_tool_input(arguments, expected):
    assert AnthropicLLM._tool_input(arguments) == expected
