"""
Tests for the SQLAlchemy session store.
"""

from datetime import timedelta

import pytest

from shodhak.agent.context import (
    Author,
    ChatMessage,
    ConversationSummary,
    KeyFact,
    KeyFactType,
    MessageRange,
    Paper,
    utcnow,
)
from shodhak.llm.base import ToolCall
from shodhak.models import SessionStatus

from conftest import make_store


@pytest.mark.asyncio
async def test_session_lifecycle(tmp_path):
    store = await make_store(tmp_path)

    await store.create_session("s1", "user-1")
    record = await store.load_session("s1")
    assert record is not None
    assert record.user_id == "user-1"
    assert record.status == SessionStatus.ACTIVE.value
    assert record.session_metadata == {}

    await store.update_session_metadata("s1", {"totalIterations": 2, "lastQuery": "rl"})
    record = await store.load_session("s1")
    assert record.session_metadata == {"totalIterations": 2, "lastQuery": "rl"}

    await store.end_session("s1")
    assert await store.load_session("s1") is None


@pytest.mark.asyncio
async def test_messages_round_trip_in_order(tmp_path):
    store = await make_store(tmp_path)
    await store.create_session("s1", "user-1")

    await store.save_message("s1", ChatMessage(role="tool", content="{}", tool_call_id="c1", name="search_papers"), 2)
    await store.save_message("s1", ChatMessage(role="user", content="find papers"), 0)
    await store.save_message("s1", ChatMessage(
        role="assistant",
        content="",
        tool_calls=[ToolCall(id="c1", name="search_papers", arguments='{"query": "x"}')],
    ), 1)

    messages = await store.load_messages("s1")

    assert [m.order for m in messages] == [0, 1, 2]
    assert messages[1].tool_calls == [ToolCall(id="c1", name="search_papers", arguments='{"query": "x"}')]
    assert messages[2].tool_call_id == "c1"
    assert messages[2].name == "search_papers"
    assert await store.get_message_count("s1") == 3


@pytest.mark.asyncio
async def test_delete_messages_by_order_range(tmp_path):
    store = await make_store(tmp_path)
    await store.create_session("s1", "user-1")
    for order in range(6):
        await store.save_message("s1", ChatMessage(role="user", content=f"m{order}"), order)

    assert await store.delete_messages_by_order_range("s1", 1, 3) == 3
    assert [m.order for m in await store.load_messages("s1")] == [0, 4, 5]


@pytest.mark.asyncio
async def test_expire_stale_sessions(tmp_path):
    store = await make_store(tmp_path)
    await store.create_session("old", "user-1")
    await store.create_session("new", "user-1")
    await store.touch_session("old", at=utcnow() - timedelta(hours=3))

    assert await store.expire_stale_sessions(timedelta(minutes=60)) == 1

    assert await store.load_session("old") is None
    assert await store.load_session("new") is not None
    assert [r.id for r in await store.get_user_active_sessions("user-1")] == ["new"]


@pytest.mark.asyncio
async def test_active_sessions_most_recent_first(tmp_path):
    store = await make_store(tmp_path)
    await store.create_session("a", "user-1")
    await store.create_session("b", "user-1")
    await store.create_session("c", "user-2")
    await store.touch_session("a", at=utcnow() - timedelta(minutes=5))

    sessions = await store.get_user_active_sessions("user-1")

    assert [r.id for r in sessions] == ["b", "a"]


@pytest.mark.asyncio
async def test_papers_are_saved_once_and_linked_once(tmp_path):
    store = await make_store(tmp_path)
    await store.create_session("s1", "user-1")
    paper = Paper(
        external_id="openalex:W1",
        title="Attention Is All You Need",
        authors=[Author("Ashish Vaswani", "A1")],
        doi="10.5555/3295222.3295349",
        year=2017,
    )

    first = await store.save_paper(paper)
    second = await store.save_paper(Paper(external_id="openalex:W1", title="duplicate"))
    assert first == second

    await store.add_session_paper("s1", first)
    await store.add_session_paper("s1", first)

    papers = await store.load_session_papers("s1")
    assert len(papers) == 1
    assert papers[0].id == first
    assert papers[0].title == "Attention Is All You Need"
    assert papers[0].authors == [Author("Ashish Vaswani", "A1")]

    await store.clear_session_papers("s1")
    assert await store.load_session_papers("s1") == []


@pytest.mark.asyncio
async def test_summaries_and_key_facts_round_trip(tmp_path):
    store = await make_store(tmp_path)
    await store.create_session("s1", "user-1")

    await store.save_summary("s1", ConversationSummary(content="second", message_range=MessageRange(15, 20)))
    await store.save_summary("s1", ConversationSummary(content="first", message_range=MessageRange(0, 14), token_estimate=2))
    await store.save_key_fact("s1", KeyFact(type=KeyFactType.ENTITY, content="GPT-3", related_paper_indices=[0, 2]))

    summaries = await store.load_summaries("s1")
    assert [s.content for s in summaries] == ["first", "second"]
    assert summaries[0].message_range == MessageRange(0, 14)
    assert summaries[0].token_estimate == 2
    assert summaries[0].created_at.tzinfo is not None

    facts = await store.load_key_facts("s1")
    assert len(facts) == 1
    assert facts[0].type is KeyFactType.ENTITY
    assert facts[0].related_paper_indices == [0, 2]


@pytest.mark.asyncio
async def test_search_annotations_ranks_by_term_overlap(tmp_path):
    store = await make_store(tmp_path)
    paper_id = await store.save_paper(Paper(external_id="openalex:W1", title="A paper"))

    await store.add_annotation("user-1", paper_id, "Great results on reinforcement learning benchmarks")
    await store.add_annotation("user-1", paper_id, "Learning rate schedule matters", note_type="highlight")
    await store.add_annotation("user-1", paper_id, "Unrelated note about datasets")
    await store.add_annotation("user-2", paper_id, "reinforcement learning from another user")

    results = await store.search_annotations("user-1", "reinforcement learning", limit=10)

    assert [(note.content, score) for note, score in results] == [
        ("Great results on reinforcement learning benchmarks", 1.0),
        ("Learning rate schedule matters", 0.5),
    ]
    assert results[1][0].note_type == "highlight"

    assert len(await store.search_annotations("user-1", "reinforcement learning", limit=1)) == 1
