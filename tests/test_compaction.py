"""
Tests for conversation compaction module.
"""

import json

import pytest

from shodhak.agent.compaction import (
    MemoryCompressor,
    drop_orphan_tool_results,
    estimate_tokens,
    render_transcript,
)
from shodhak.agent.context import (
    AgentContext,
    Author,
    ChatMessage,
    ConversationSummary,
    KeyFact,
    KeyFactType,
    MessageRange,
    Paper,
)
from shodhak.llm.base import LLMResponse, ToolCall

from conftest import ScriptedLLM


def _append(ctx: AgentContext, content: str, role: str = "user") -> ChatMessage:
    message = ChatMessage(role=role, content=content, order=ctx.next_message_order)
    ctx.next_message_order += 1
    ctx.conversation_history.append(message)
    return message


def _ranges(ctx: AgentContext) -> list[tuple[int, int]]:
    return [(s.message_range.start, s.message_range.end) for s in ctx.memory_state.summaries]


def test_estimate_tokens():
    """Test token estimation rounds up at four characters per token."""
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2


def test_drop_orphan_tool_results():
    messages = [
        ChatMessage(role="tool", content="{}", tool_call_id="a"),
        ChatMessage(role="tool", content="{}", tool_call_id="b"),
        ChatMessage(role="assistant", content="ok"),
        ChatMessage(role="tool", content="{}", tool_call_id="c"),
    ]
    kept = drop_orphan_tool_results(messages)
    assert [m.role for m in kept] == ["assistant", "tool"]


def test_render_transcript_truncates_tool_results():
    """Test that long tool results are cut to the preview length."""
    messages = [
        ChatMessage(role="user", content="find papers"),
        ChatMessage(
            role="assistant",
            content="",
            tool_calls=[ToolCall(id="c1", name="search_papers"), ToolCall(id="c2", name="get_current_papers")],
        ),
        ChatMessage(role="tool", content="x" * 50, tool_call_id="c1"),
    ]

    transcript = render_transcript(messages, tool_preview_chars=10)

    lines = transcript.split("\n")
    assert lines[0] == "user: find papers"
    assert lines[1] == "Assistant [called tools: search_papers, get_current_papers]: "
    assert lines[2] == "[Tool result for c1]: " + "x" * 10 + "..."


@pytest.mark.asyncio
async def test_below_threshold_is_noop():
    llm = ScriptedLLM()
    compressor = MemoryCompressor(llm, threshold=25, recent_buffer_size=10)
    ctx = AgentContext(user_id="u1")
    for i in range(24):
        _append(ctx, f"m{i}")

    assert await compressor.maybe_compress(ctx) is False
    assert len(ctx.conversation_history) == 24
    assert llm.calls == []


@pytest.mark.asyncio
async def test_compresses_oldest_messages_at_threshold():
    """Test the 25-message threshold with a 10-message recent buffer."""
    compressor = MemoryCompressor(ScriptedLLM(), threshold=25, recent_buffer_size=10)
    ctx = AgentContext(user_id="u1")

    for i in range(25):
        _append(ctx, f"m{i}")
        await compressor.maybe_compress(ctx)

    history = ctx.conversation_history
    assert len(history) == 11
    assert history[0].role == "system"
    assert history[0].content.startswith("[SUMMARY of messages 0-14]")
    assert [m.order for m in history[1:]] == list(range(15, 25))
    assert ctx.memory_state.recent_buffer_start == 15
    assert _ranges(ctx) == [(0, 14)]

    for i in range(25, 30):
        _append(ctx, f"m{i}")
        await compressor.maybe_compress(ctx)

    assert len(ctx.conversation_history) == 16
    assert len(ctx.memory_state.summaries) == 1


@pytest.mark.asyncio
async def test_compress_is_idempotent_without_new_messages():
    llm = ScriptedLLM()
    compressor = MemoryCompressor(llm, threshold=25, recent_buffer_size=10)
    ctx = AgentContext(user_id="u1")
    for i in range(25):
        _append(ctx, f"m{i}")

    assert await compressor.maybe_compress(ctx) is True
    calls = len(llm.calls)
    assert await compressor.maybe_compress(ctx) is False
    assert len(llm.calls) == calls
    assert len(ctx.memory_state.summaries) == 1


@pytest.mark.asyncio
async def test_summary_ranges_are_contiguous_and_disjoint():
    compressor = MemoryCompressor(ScriptedLLM(), threshold=6, recent_buffer_size=2)
    ctx = AgentContext(user_id="u1")

    for i in range(11):
        _append(ctx, f"m{i}")
        await compressor.maybe_compress(ctx)

    assert _ranges(ctx) == [(0, 3), (4, 6), (7, 8)]
    assert ctx.memory_state.recent_buffer_start == 9
    assert [m.order for m in ctx.conversation_history] == [None, None, None, 9, 10]


@pytest.mark.asyncio
async def test_llm_failure_leaves_state_untouched(mock_store):
    llm = ScriptedLLM(responses=[RuntimeError("provider down")])
    compressor = MemoryCompressor(llm, store=mock_store, threshold=25, recent_buffer_size=10)
    ctx = AgentContext(user_id="u1")
    for i in range(25):
        _append(ctx, f"m{i}")
    before = list(ctx.conversation_history)

    assert await compressor.maybe_compress(ctx) is False

    assert ctx.conversation_history == before
    assert ctx.memory_state.summaries == []
    assert ctx.memory_state.recent_buffer_start == 0
    mock_store.save_summary.assert_not_awaited()
    mock_store.delete_messages_by_order_range.assert_not_awaited()


@pytest.mark.asyncio
async def test_compression_persists_summary_facts_and_deletes_range(mock_store):
    facts = json.dumps([
        {"type": "user_preference", "content": "Prefers papers after 2019", "relatedPaperIndices": []},
        {"type": "entity", "content": "BERT", "relatedPaperIndices": [0]},
    ])
    llm = ScriptedLLM(responses=[LLMResponse(content="They searched for NLP papers."), LLMResponse(content=facts)])
    compressor = MemoryCompressor(llm, store=mock_store, threshold=25, recent_buffer_size=10)
    ctx = AgentContext(user_id="u1")
    for i in range(25):
        _append(ctx, f"m{i}")

    assert await compressor.maybe_compress(ctx) is True

    summary = mock_store.save_summary.await_args.args[1]
    assert summary.content == "They searched for NLP papers."
    assert summary.message_range == MessageRange(0, 14)
    assert summary.token_estimate == estimate_tokens(summary.content)
    assert mock_store.save_key_fact.await_count == 2
    mock_store.delete_messages_by_order_range.assert_awaited_once_with(ctx.session_id, 0, 14)

    assert [f.type for f in ctx.memory_state.key_facts] == [KeyFactType.USER_PREFERENCE, KeyFactType.ENTITY]
    assert ctx.memory_state.key_facts[1].related_paper_indices == [0]


@pytest.mark.asyncio
async def test_failed_summary_save_keeps_raw_messages(mock_store):
    mock_store.save_summary.side_effect = RuntimeError("disk full")
    compressor = MemoryCompressor(ScriptedLLM(), store=mock_store, threshold=25, recent_buffer_size=10)
    ctx = AgentContext(user_id="u1")
    for i in range(25):
        _append(ctx, f"m{i}")

    assert await compressor.maybe_compress(ctx) is True

    assert len(ctx.conversation_history) == 11
    mock_store.delete_messages_by_order_range.assert_not_awaited()


@pytest.mark.asyncio
async def test_summary_prompt_uses_transcript():
    llm = ScriptedLLM()
    compressor = MemoryCompressor(llm, threshold=25, recent_buffer_size=10)

    summary = await compressor.summarize_messages([ChatMessage(role="user", content="find RLHF papers")])

    assert summary == "Done."
    prompt = llm.calls[0]["messages"][0].content
    assert prompt.startswith("Summarize this conversation segment into a dense paragraph:")
    assert "user: find RLHF papers" in prompt


@pytest.mark.asyncio
async def test_empty_summary_is_replaced():
    compressor = MemoryCompressor(ScriptedLLM(default=LLMResponse(content="  ")))
    summary = await compressor.summarize_messages([ChatMessage(role="user", content="hi")])
    assert summary == "Unable to generate summary."


@pytest.mark.asyncio
async def test_key_fact_extraction_skips_tool_only_batches():
    llm = ScriptedLLM()
    compressor = MemoryCompressor(llm)

    facts = await compressor.extract_key_facts([ChatMessage(role="tool", content="{}", tool_call_id="c1")])

    assert facts == []
    assert llm.calls == []


def test_parse_key_facts_skips_bad_entries():
    raw = json.dumps([
        {"type": "Decision", "content": "Focus on transformers"},
        {"type": "unknown_kind", "content": "ignored"},
        {"type": "entity"},
        "not an object",
        {"type": "paper_conclusion", "content": "Scaling helps", "related_paper_indices": [1, "2", True]},
    ])

    facts = MemoryCompressor.parse_key_facts(raw)

    assert [(f.type, f.content) for f in facts] == [
        (KeyFactType.DECISION, "Focus on transformers"),
        (KeyFactType.PAPER_CONCLUSION, "Scaling helps"),
    ]
    assert facts[1].related_paper_indices == [1]


def test_parse_key_facts_from_fenced_output():
    raw = '```json\n[{"type": "research_direction", "content": "Look at RLHF"}]\n```'
    facts = MemoryCompressor.parse_key_facts(raw)
    assert facts[0].type is KeyFactType.RESEARCH_DIRECTION


def test_parse_key_facts_unparseable_returns_empty():
    assert MemoryCompressor.parse_key_facts("I could not find any facts.") == []


def test_build_compressed_context():
    """Test the message layout once a summary exists."""
    compressor = MemoryCompressor(ScriptedLLM(), recent_buffer_size=2)
    ctx = AgentContext(user_id="u1")
    ctx.add_papers([Paper(external_id="p1", title="Paper One", authors=[Author("A. Author")], year=2021)])
    ctx.memory_state.summaries.append(
        ConversationSummary(content="Searched for RL.", message_range=MessageRange(0, 14))
    )
    ctx.memory_state.key_facts.append(KeyFact(type=KeyFactType.DECISION, content="Use 2020+ papers"))
    ctx.memory_state.recent_buffer_start = 15
    ctx.next_message_order = 15
    ctx.conversation_history = [ChatMessage(role="system", content="[SUMMARY of messages 0-14]: Searched for RL.")]
    _append(ctx, "a")
    _append(ctx, "call", role="assistant")
    ctx.conversation_history.append(ChatMessage(role="tool", content="{}", tool_call_id="c1", order=17))
    ctx.next_message_order = 18
    _append(ctx, "b")

    messages = compressor.build_compressed_context("BASE", ctx)

    system = messages[0].content
    assert system.startswith("BASE\n\n## Key Facts from Conversation\n- [decision] Use 2020+ papers")
    assert '[0] "Paper One" by A. Author (2021)' in system
    assert messages[1].role == "system"
    assert messages[1].content == "[Previous conversation summary (messages 0-14)]: Searched for RL."
    # the last two ordered messages are the tool result and "b"; the orphan result is dropped
    assert [m.content for m in messages[2:]] == ["b"]
