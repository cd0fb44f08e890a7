"""
Durable session storage.

SessionStore is the CRUD layer behind the agent: sessions, ordered messages,
papers linked to sessions, compression summaries, key facts and user
annotations. Every method raises on failure; the caller decides whether a
failure is fatal (cold-path reads) or best-effort (writes).
"""

from datetime import datetime, timedelta, timezone
from typing import Any

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from .agent.context import (
    Author,
    ChatMessage,
    ConversationSummary,
    KeyFact,
    KeyFactType,
    MessageRange,
    Paper,
    as_utc,
)
from .llm.base import ToolCall
from .models import (
    AgentSessionPaper,
    AgentSessionRecord,
    PaperRecord,
    SessionKeyFactRecord,
    SessionMessage,
    SessionStatus,
    SessionSummaryRecord,
    UserKnowledge,
)

logger = structlog.get_logger()


def _paper_from_record(record: PaperRecord) -> Paper:
    return Paper(
        id=record.id,
        external_id=record.external_id,
        title=record.title,
        authors=[Author(name=a.get("name", ""), author_id=a.get("id")) for a in record.authors or []],
        abstract=record.abstract or "",
        url=record.url or "",
        doi=record.doi,
        year=record.year,
        venue=record.venue,
        citation_count=record.citation_count or 0,
        source=record.source,
        metadata=record.extra or {},
    )


class SessionStore:
    """SQLAlchemy-backed store for agent sessions."""

    def __init__(self, session_maker: async_sessionmaker):
        self.session_maker = session_maker

    # ------------------------------------------------------------------ #
    # Sessions
    # ------------------------------------------------------------------ #
    async def create_session(
        self,
        session_id: str,
        user_id: str,
        created_at: datetime | None = None,
    ) -> None:
        now = created_at or datetime.now(timezone.utc)
        async with self.session_maker() as db:
            db.add(AgentSessionRecord(
                id=session_id,
                user_id=str(user_id),
                status=SessionStatus.ACTIVE.value,
                session_metadata={},
                created_at=now,
                last_activity_at=now,
            ))
            await db.commit()
        logger.info("Persisted new agent session", session_id=session_id, user_id=user_id)

    async def load_session(self, session_id: str) -> AgentSessionRecord | None:
        """Load an active session row, or None."""
        async with self.session_maker() as db:
            result = await db.execute(
                select(AgentSessionRecord).where(
                    AgentSessionRecord.id == session_id,
                    AgentSessionRecord.status == SessionStatus.ACTIVE.value,
                )
            )
            return result.scalar_one_or_none()

    async def update_session_metadata(
        self,
        session_id: str,
        metadata: dict[str, Any],
        last_activity_at: datetime | None = None,
    ) -> None:
        async with self.session_maker() as db:
            await db.execute(
                update(AgentSessionRecord)
                .where(AgentSessionRecord.id == session_id)
                .values(
                    session_metadata=metadata,
                    last_activity_at=last_activity_at or datetime.now(timezone.utc),
                )
            )
            await db.commit()

    async def touch_session(self, session_id: str, at: datetime | None = None) -> None:
        async with self.session_maker() as db:
            await db.execute(
                update(AgentSessionRecord)
                .where(AgentSessionRecord.id == session_id)
                .values(last_activity_at=at or datetime.now(timezone.utc))
            )
            await db.commit()

    async def end_session(self, session_id: str) -> None:
        async with self.session_maker() as db:
            await db.execute(
                update(AgentSessionRecord)
                .where(AgentSessionRecord.id == session_id)
                .values(status=SessionStatus.ENDED.value, last_activity_at=datetime.now(timezone.utc))
            )
            await db.commit()
        logger.info("Ended agent session", session_id=session_id)

    async def get_user_active_sessions(self, user_id: str) -> list[AgentSessionRecord]:
        async with self.session_maker() as db:
            result = await db.execute(
                select(AgentSessionRecord)
                .where(
                    AgentSessionRecord.user_id == str(user_id),
                    AgentSessionRecord.status == SessionStatus.ACTIVE.value,
                )
                .order_by(AgentSessionRecord.last_activity_at.desc())
            )
            return list(result.scalars().all())

    async def expire_stale_sessions(self, ttl: timedelta) -> int:
        """Mark every active session idle for longer than ``ttl`` as expired."""
        cutoff = datetime.now(timezone.utc) - ttl
        async with self.session_maker() as db:
            result = await db.execute(
                update(AgentSessionRecord)
                .where(
                    AgentSessionRecord.status == SessionStatus.ACTIVE.value,
                    AgentSessionRecord.last_activity_at < cutoff,
                )
                .values(status=SessionStatus.EXPIRED.value)
            )
            await db.commit()
        count = result.rowcount or 0
        if count > 0:
            logger.info("Expired stale agent sessions", count=count)
        return count

    # ------------------------------------------------------------------ #
    # Messages
    # ------------------------------------------------------------------ #
    async def save_message(self, session_id: str, message: ChatMessage, order: int) -> None:
        async with self.session_maker() as db:
            db.add(SessionMessage(
                session_id=session_id,
                role=message.role,
                content=message.content,
                tool_calls=[tc.to_dict() for tc in message.tool_calls] if message.tool_calls else None,
                tool_call_id=message.tool_call_id,
                name=message.name,
                message_order=order,
            ))
            await db.execute(
                update(AgentSessionRecord)
                .where(AgentSessionRecord.id == session_id)
                .values(last_activity_at=datetime.now(timezone.utc))
            )
            await db.commit()

    async def load_messages(self, session_id: str) -> list[ChatMessage]:
        """Load raw messages ordered by their durable order key."""
        async with self.session_maker() as db:
            result = await db.execute(
                select(SessionMessage)
                .where(SessionMessage.session_id == session_id)
                .order_by(SessionMessage.message_order.asc())
            )
            rows = result.scalars().all()

        return [
            ChatMessage(
                role=row.role,  # type: ignore
                content=row.content or "",
                tool_calls=[ToolCall.from_dict(tc) for tc in row.tool_calls] if row.tool_calls else None,
                tool_call_id=row.tool_call_id,
                name=row.name,
                order=row.message_order,
            )
            for row in rows
        ]

    async def delete_messages_by_order_range(self, session_id: str, start: int, end: int) -> int:
        async with self.session_maker() as db:
            result = await db.execute(
                delete(SessionMessage).where(
                    SessionMessage.session_id == session_id,
                    SessionMessage.message_order >= start,
                    SessionMessage.message_order <= end,
                )
            )
            await db.commit()
        return result.rowcount or 0

    async def get_message_count(self, session_id: str) -> int:
        async with self.session_maker() as db:
            count = await db.scalar(
                select(func.count(SessionMessage.id)).where(SessionMessage.session_id == session_id)
            )
        return int(count or 0)

    # ------------------------------------------------------------------ #
    # Papers
    # ------------------------------------------------------------------ #
    async def save_paper(self, paper: Paper) -> int:
        """Insert a paper if its external id is unknown. Returns the row id."""
        async with self.session_maker() as db:
            existing = await db.scalar(
                select(PaperRecord.id).where(PaperRecord.external_id == paper.external_id)
            )
            if existing is not None:
                return existing

            record = PaperRecord(
                external_id=paper.external_id,
                title=paper.title,
                authors=[{"name": a.name, "id": a.author_id} for a in paper.authors],
                abstract=paper.abstract,
                url=paper.url,
                doi=paper.doi,
                year=paper.year,
                venue=paper.venue,
                citation_count=paper.citation_count,
                source=paper.source,
                extra=paper.metadata,
            )
            db.add(record)
            await db.commit()
            return record.id

    async def add_session_paper(self, session_id: str, paper_id: int) -> None:
        async with self.session_maker() as db:
            linked = await db.scalar(
                select(AgentSessionPaper.id).where(
                    AgentSessionPaper.session_id == session_id,
                    AgentSessionPaper.paper_id == paper_id,
                )
            )
            if linked is not None:
                return
            db.add(AgentSessionPaper(session_id=session_id, paper_id=paper_id))
            await db.commit()

    async def load_session_papers(self, session_id: str) -> list[Paper]:
        async with self.session_maker() as db:
            result = await db.execute(
                select(PaperRecord)
                .join(AgentSessionPaper, AgentSessionPaper.paper_id == PaperRecord.id)
                .where(AgentSessionPaper.session_id == session_id)
                .order_by(AgentSessionPaper.id.asc())
            )
            return [_paper_from_record(r) for r in result.scalars().all()]

    async def clear_session_papers(self, session_id: str) -> None:
        async with self.session_maker() as db:
            await db.execute(delete(AgentSessionPaper).where(AgentSessionPaper.session_id == session_id))
            await db.commit()

    # ------------------------------------------------------------------ #
    # Compression persistence
    # ------------------------------------------------------------------ #
    async def save_summary(self, session_id: str, summary: ConversationSummary) -> None:
        async with self.session_maker() as db:
            db.add(SessionSummaryRecord(
                session_id=session_id,
                content=summary.content,
                message_range_from=summary.message_range.start,
                message_range_to=summary.message_range.end,
                token_estimate=summary.token_estimate,
                created_at=summary.created_at,
            ))
            await db.commit()

    async def load_summaries(self, session_id: str) -> list[ConversationSummary]:
        async with self.session_maker() as db:
            result = await db.execute(
                select(SessionSummaryRecord)
                .where(SessionSummaryRecord.session_id == session_id)
                .order_by(SessionSummaryRecord.message_range_from.asc())
            )
            rows = result.scalars().all()

        return [
            ConversationSummary(
                content=row.content,
                message_range=MessageRange(row.message_range_from, row.message_range_to),
                created_at=as_utc(row.created_at),
                token_estimate=row.token_estimate,
            )
            for row in rows
        ]

    async def save_key_fact(self, session_id: str, fact: KeyFact) -> None:
        async with self.session_maker() as db:
            db.add(SessionKeyFactRecord(
                session_id=session_id,
                fact_type=fact.type.value,
                content=fact.content,
                related_paper_indices=list(fact.related_paper_indices),
                extracted_at=fact.extracted_at,
            ))
            await db.commit()

    async def load_key_facts(self, session_id: str) -> list[KeyFact]:
        async with self.session_maker() as db:
            result = await db.execute(
                select(SessionKeyFactRecord)
                .where(SessionKeyFactRecord.session_id == session_id)
                .order_by(SessionKeyFactRecord.extracted_at.asc(), SessionKeyFactRecord.id.asc())
            )
            rows = result.scalars().all()

        return [
            KeyFact(
                type=KeyFactType(row.fact_type),
                content=row.content,
                related_paper_indices=list(row.related_paper_indices or []),
                extracted_at=as_utc(row.extracted_at),
            )
            for row in rows
        ]

    # ------------------------------------------------------------------ #
    # User knowledge
    # ------------------------------------------------------------------ #
    async def add_annotation(
        self,
        user_id: str,
        paper_id: int,
        content: str,
        note_type: str = "annotation",
    ) -> UserKnowledge:
        async with self.session_maker() as db:
            note = UserKnowledge(
                user_id=str(user_id),
                paper_id=paper_id,
                content=content,
                note_type=note_type,
            )
            db.add(note)
            await db.commit()
            await db.refresh(note)
        logger.info("Added user annotation", user_id=user_id, paper_id=paper_id, note_type=note_type)
        return note

    async def search_annotations(
        self,
        user_id: str,
        query: str,
        limit: int = 10,
    ) -> list[tuple[UserKnowledge, float]]:
        """Rank a user's notes by the share of query terms they contain."""
        terms = [t for t in query.lower().split() if t]
        async with self.session_maker() as db:
            result = await db.execute(
                select(UserKnowledge)
                .where(UserKnowledge.user_id == str(user_id))
                .order_by(UserKnowledge.created_at.desc())
            )
            notes = result.scalars().all()

        scored = []
        for note in notes:
            text = note.content.lower()
            hits = sum(1 for t in terms if t in text)
            if terms and hits == 0:
                continue
            scored.append((note, hits / len(terms) if terms else 1.0))

        scored.sort(key=lambda item: item[1], reverse=True)
        return scored[:limit]
