"""
Tests for the session data model.
"""

from shodhak.agent.context import (
    AgentContext,
    Author,
    ChatMessage,
    ConversationSummary,
    MessageRange,
    Paper,
    SessionMetadata,
    make_summary_message,
)


def _paper(external_id: str, title: str = "A paper") -> Paper:
    return Paper(external_id=external_id, title=title, authors=[Author("Ada Lovelace")], year=2020)


def test_add_papers_deduplicates_by_external_id():
    ctx = AgentContext(user_id="u1")

    added = ctx.add_papers([_paper("p1"), _paper("p2"), _paper("p1")])
    assert [p.external_id for p in added] == ["p1", "p2"]

    added = ctx.add_papers([_paper("p2"), _paper("p3")])
    assert [p.external_id for p in added] == ["p3"]
    assert [p.external_id for p in ctx.papers] == ["p1", "p2", "p3"]
    assert ctx.paper_index("p3") == 2
    assert ctx.paper_index("missing") == -1


def test_clear_papers_returns_count():
    ctx = AgentContext(user_id="u1")
    ctx.add_papers([_paper("p1"), _paper("p2")])

    assert ctx.clear_papers() == 2
    assert ctx.papers == []


def test_session_ids_are_unique():
    assert AgentContext(user_id="u1").session_id != AgentContext(user_id="u1").session_id


def test_owned_by_compares_as_strings():
    ctx = AgentContext(user_id="42")
    assert ctx.owned_by("42")
    assert ctx.owned_by(42)  # type: ignore[arg-type]
    assert not ctx.owned_by("43")


def test_render_paper_roster():
    ctx = AgentContext(user_id="u1")
    assert "No papers currently in the context" in ctx.render_paper_roster()

    ctx.add_papers([_paper("p1", "Attention Is All You Need")])
    roster = ctx.render_paper_roster()
    assert "Current Papers in Context (1 papers)" in roster
    assert '[0] "Attention Is All You Need" by Ada Lovelace (2020)' in roster


def test_recent_buffer_position_skips_summary_placeholders():
    ctx = AgentContext(user_id="u1")
    summary = ConversationSummary(content="earlier", message_range=MessageRange(0, 14))
    ctx.conversation_history = [make_summary_message(summary)] + [
        ChatMessage(role="user", content=f"m{i}", order=i) for i in range(15, 20)
    ]
    ctx.memory_state.recent_buffer_start = 15

    assert ctx.recent_buffer_position() == 1


def test_recent_buffer_position_without_summaries():
    ctx = AgentContext(user_id="u1")
    ctx.conversation_history = [ChatMessage(role="user", content="hi", order=0)]
    assert ctx.recent_buffer_position() == 0


def test_summary_message_format():
    summary = ConversationSummary(content="they searched", message_range=MessageRange(0, 14))
    message = make_summary_message(summary)

    assert message.role == "system"
    assert message.order is None
    assert message.content == "[SUMMARY of messages 0-14]: they searched"
    assert len(summary.message_range) == 15


def test_metadata_json_shape():
    meta = SessionMetadata(total_iterations=3, search_count=1, analysis_count=2)
    assert meta.to_json() == {"totalIterations": 3, "searchCount": 1, "analysisCount": 2}

    meta.last_query = "graph neural networks"
    assert meta.to_json()["lastQuery"] == "graph neural networks"
