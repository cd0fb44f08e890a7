"""
Conversation state for an agent session.

An AgentContext is the unit of state for one session: the papers collected
by tools, the live conversation history, counters, and the tiered memory
(summaries + key facts) produced by compression.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from ..llm.base import LLMMessage

# A ChatMessage is the provider-neutral message type used across the agent.
ChatMessage = LLMMessage


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Normalize a timestamp to an aware UTC datetime."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class Author:
    name: str
    author_id: str | None = None


@dataclass
class Paper:
    """A paper record accumulated into a session by a tool call."""

    external_id: str
    title: str
    authors: list[Author] = field(default_factory=list)
    abstract: str = ""
    url: str = ""
    doi: str | None = None
    year: int | None = None
    venue: str | None = None
    citation_count: int = 0
    source: str = "openalex"
    metadata: dict[str, Any] = field(default_factory=dict)
    id: int | None = None  # store row id, set once persisted

    @property
    def author_names(self) -> str:
        return ", ".join(a.name for a in self.authors)

    def citation_line(self) -> str:
        return f'"{self.title}" by {self.author_names} ({self.year or "N/A"})'


class KeyFactType(str, Enum):
    PAPER_CONCLUSION = "paper_conclusion"
    USER_PREFERENCE = "user_preference"
    RESEARCH_DIRECTION = "research_direction"
    DECISION = "decision"
    ENTITY = "entity"


@dataclass
class KeyFact:
    type: KeyFactType
    content: str
    related_paper_indices: list[int] = field(default_factory=list)
    extracted_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class MessageRange:
    """Closed interval [start, end] of durable message order keys."""

    start: int
    end: int

    def __len__(self) -> int:
        return self.end - self.start + 1


@dataclass
class ConversationSummary:
    content: str
    message_range: MessageRange
    created_at: datetime = field(default_factory=utcnow)
    token_estimate: int = 0


@dataclass
class MemoryState:
    summaries: list[ConversationSummary] = field(default_factory=list)
    key_facts: list[KeyFact] = field(default_factory=list)
    # First order key not yet covered by a summary.
    recent_buffer_start: int = 0


@dataclass
class SessionMetadata:
    created_at: datetime = field(default_factory=utcnow)
    last_activity_at: datetime = field(default_factory=utcnow)
    total_iterations: int = 0
    search_count: int = 0
    analysis_count: int = 0
    last_query: str | None = None

    def to_json(self) -> dict[str, Any]:
        """Shape stored in the session row's metadata column."""
        data: dict[str, Any] = {
            "totalIterations": self.total_iterations,
            "searchCount": self.search_count,
            "analysisCount": self.analysis_count,
        }
        if self.last_query:
            data["lastQuery"] = self.last_query
        return data


@dataclass
class AgentContext:
    """State of one conversation session."""

    user_id: str
    session_id: str = field(default_factory=lambda: str(uuid4()))
    papers: list[Paper] = field(default_factory=list)
    conversation_history: list[ChatMessage] = field(default_factory=list)
    metadata: SessionMetadata = field(default_factory=SessionMetadata)
    memory_state: MemoryState = field(default_factory=MemoryState)
    # Next durable order key. Only grows, so keys are never reused.
    next_message_order: int = 0

    def owned_by(self, user_id: str) -> bool:
        return str(self.user_id) == str(user_id)

    def paper_index(self, external_id: str) -> int:
        for idx, paper in enumerate(self.papers):
            if paper.external_id == external_id:
                return idx
        return -1

    def add_papers(self, papers: list[Paper]) -> list[Paper]:
        """Append papers not already in context. Returns the ones added."""
        existing = {p.external_id for p in self.papers}
        added = []
        for paper in papers:
            if paper.external_id in existing:
                continue
            existing.add(paper.external_id)
            self.papers.append(paper)
            added.append(paper)
        return added

    def clear_papers(self) -> int:
        count = len(self.papers)
        self.papers = []
        return count

    def render_paper_roster(self) -> str:
        if not self.papers:
            return (
                "\n## No papers currently in the context. "
                "Use search_papers or lookup_paper_by_doi to find papers."
            )
        lines = [f"\n## Current Papers in Context ({len(self.papers)} papers):"]
        for idx, paper in enumerate(self.papers):
            lines.append(f"[{idx}] {paper.citation_line()}")
        return "\n".join(lines)

    def recent_buffer_position(self) -> int:
        """Live history index of the first raw message not yet summarized."""
        start = self.memory_state.recent_buffer_start
        for idx, message in enumerate(self.conversation_history):
            if message.order is not None and message.order >= start:
                return idx
        return len(self.conversation_history)


def make_summary_message(summary: ConversationSummary) -> ChatMessage:
    """Synthetic system message that stands in for a compressed range."""
    rng = summary.message_range
    return ChatMessage(
        role="system",
        content=f"[SUMMARY of messages {rng.start}-{rng.end}]: {summary.content}",
    )
