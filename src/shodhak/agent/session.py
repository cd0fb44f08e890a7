"""
Session management for agent conversations.

ContextManager is the single accessor for AgentContext objects. It keeps a
TTL-bounded in-process cache in front of the durable SessionStore and rebuilds
contexts from the store on a cache miss.
"""

import asyncio
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Awaitable

import structlog

from .context import (
    AgentContext,
    ChatMessage,
    MemoryState,
    Paper,
    SessionMetadata,
    as_utc,
    make_summary_message,
    utcnow,
)

if TYPE_CHECKING:
    from ..store import SessionStore

logger = structlog.get_logger()

DEFAULT_SESSION_TTL = timedelta(minutes=60)


class ContextCache:
    """In-process map of session id to live AgentContext."""

    def __init__(self):
        self._contexts: dict[str, AgentContext] = {}

    def get(self, session_id: str) -> AgentContext | None:
        return self._contexts.get(session_id)

    def put(self, context: AgentContext) -> None:
        self._contexts[context.session_id] = context

    def pop(self, session_id: str) -> AgentContext | None:
        return self._contexts.pop(session_id, None)

    def expired(self, now: datetime, ttl: timedelta) -> list[str]:
        """Session ids whose last activity is older than ``ttl``."""
        return [
            session_id
            for session_id, ctx in self._contexts.items()
            if now - ctx.metadata.last_activity_at > ttl
        ]

    def clear(self) -> None:
        self._contexts.clear()

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._contexts

    def __len__(self) -> int:
        return len(self._contexts)


class ContextManager:
    """Owns live AgentContext objects and their durable mirror."""

    def __init__(
        self,
        store: "SessionStore",
        cache: ContextCache | None = None,
        ttl: timedelta = DEFAULT_SESSION_TTL,
    ):
        self.store = store
        self.cache = cache if cache is not None else ContextCache()
        self.ttl = ttl
        self._locks: dict[str, asyncio.Lock] = {}

    def _is_expired(self, last_activity_at: datetime) -> bool:
        return utcnow() - last_activity_at > self.ttl

    async def _best_effort(self, action: str, session_id: str, write: Awaitable[Any]) -> None:
        try:
            await write
        except Exception as e:
            logger.error("Session store write failed", action=action, session_id=session_id, error=str(e))

    def session_lock(self, session_id: str) -> asyncio.Lock:
        """Lock serializing turns against one session."""
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    def discard_lock(self, session_id: str) -> None:
        """Forget the lock of an id that has no live context."""
        if session_id in self.cache:
            return
        lock = self._locks.get(session_id)
        if lock is not None and not lock.locked():
            del self._locks[session_id]

    async def create_context(self, user_id: str) -> AgentContext:
        ctx = AgentContext(user_id=str(user_id))
        self.cache.put(ctx)
        await self._best_effort(
            "create_session",
            ctx.session_id,
            self.store.create_session(ctx.session_id, ctx.user_id, ctx.metadata.created_at),
        )
        logger.info("Created agent context", session_id=ctx.session_id, user_id=ctx.user_id)
        return ctx

    async def get_context(self, session_id: str) -> AgentContext | None:
        """Return a live context, restoring it from the store on a cache miss.

        Expired sessions are ended and never come back. A failed store read
        yields None rather than a partially rebuilt context.
        """
        ctx = self.cache.get(session_id)
        if ctx is not None:
            if self._is_expired(ctx.metadata.last_activity_at):
                self.cache.pop(session_id)
                self._locks.pop(session_id, None)
                await self._best_effort("end_session", session_id, self.store.end_session(session_id))
                logger.info("Agent context expired", session_id=session_id)
                return None
            return ctx

        return await self._restore(session_id)

    async def _restore(self, session_id: str) -> AgentContext | None:
        try:
            record = await self.store.load_session(session_id)
        except Exception as e:
            logger.error("Failed to load session", session_id=session_id, error=str(e))
            return None

        if record is None:
            return None

        last_activity_at = as_utc(record.last_activity_at)
        if self._is_expired(last_activity_at):
            await self._best_effort("end_session", session_id, self.store.end_session(session_id))
            logger.info("Stored session past TTL", session_id=session_id)
            return None

        try:
            messages = await self.store.load_messages(session_id)
            papers = await self.store.load_session_papers(session_id)
            summaries = await self.store.load_summaries(session_id)
            key_facts = await self.store.load_key_facts(session_id)
        except Exception as e:
            logger.error("Failed to restore session", session_id=session_id, error=str(e))
            return None

        # Persisted summaries decide where the raw tail begins.
        covered_to = summaries[-1].message_range.end if summaries else -1
        raw = [m for m in messages if m.order is not None and m.order > covered_to]
        last_order = max(raw[-1].order if raw else -1, covered_to)

        stored = record.session_metadata or {}
        ctx = AgentContext(
            user_id=record.user_id,
            session_id=record.id,
            papers=papers,
            conversation_history=[make_summary_message(s) for s in summaries] + raw,
            metadata=SessionMetadata(
                created_at=as_utc(record.created_at),
                last_activity_at=last_activity_at,
                total_iterations=int(stored.get("totalIterations", 0)),
                search_count=int(stored.get("searchCount", 0)),
                analysis_count=int(stored.get("analysisCount", 0)),
                last_query=stored.get("lastQuery"),
            ),
            memory_state=MemoryState(
                summaries=summaries,
                key_facts=key_facts,
                recent_buffer_start=covered_to + 1,
            ),
            next_message_order=last_order + 1,
        )
        self.cache.put(ctx)

        logger.info(
            "Restored agent context from store",
            session_id=session_id,
            messages=len(raw),
            summaries=len(summaries),
            papers=len(papers),
        )
        return ctx

    async def add_message(self, ctx: AgentContext, message: ChatMessage) -> None:
        message.order = ctx.next_message_order
        ctx.next_message_order += 1
        ctx.conversation_history.append(message)
        self.update_activity(ctx)
        await self._best_effort(
            "save_message",
            ctx.session_id,
            self.store.save_message(ctx.session_id, message, message.order),
        )

    async def delete_context(self, session_id: str) -> bool:
        existed = self.cache.pop(session_id) is not None
        self._locks.pop(session_id, None)
        await self._best_effort("end_session", session_id, self.store.end_session(session_id))
        return existed

    def increment_iterations(self, ctx: AgentContext) -> None:
        ctx.metadata.total_iterations += 1
        self.update_activity(ctx)

    def update_activity(self, ctx: AgentContext) -> None:
        ctx.metadata.last_activity_at = utcnow()

    async def persist_metadata(self, ctx: AgentContext, last_query: str | None = None) -> None:
        if last_query:
            ctx.metadata.last_query = last_query[:200]
        self.update_activity(ctx)
        await self._best_effort(
            "update_session_metadata",
            ctx.session_id,
            self.store.update_session_metadata(
                ctx.session_id,
                ctx.metadata.to_json(),
                ctx.metadata.last_activity_at,
            ),
        )

    async def add_paper_to_session(self, ctx: AgentContext, paper: Paper) -> None:
        """Persist a paper row and link it to the session."""
        try:
            if paper.id is None:
                paper.id = await self.store.save_paper(paper)
            await self.store.add_session_paper(ctx.session_id, paper.id)
        except Exception as e:
            logger.error(
                "Failed to persist session paper",
                session_id=ctx.session_id,
                external_id=paper.external_id,
                error=str(e),
            )

    async def clear_session_papers(self, ctx: AgentContext) -> None:
        await self._best_effort(
            "clear_session_papers",
            ctx.session_id,
            self.store.clear_session_papers(ctx.session_id),
        )

    def build_context_summary(self, ctx: AgentContext) -> str:
        return ctx.render_paper_roster()

    async def cleanup(self) -> int:
        """Evict expired cached contexts and expire stale stored sessions."""
        expired = self.cache.expired(utcnow(), self.ttl)
        for session_id in expired:
            self.cache.pop(session_id)
            self._locks.pop(session_id, None)

        if expired:
            logger.info("Evicted expired agent contexts", count=len(expired))

        try:
            await self.store.expire_stale_sessions(self.ttl)
        except Exception as e:
            logger.error("Failed to expire stale sessions", error=str(e))

        return len(expired)
