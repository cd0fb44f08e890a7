"""
Conversation Compaction - tiered memory for long research sessions.

When the live history grows past a threshold, the older part of it is
replaced by an LLM-written summary. Three tiers are kept:

- Recent buffer: the newest messages, verbatim
- Summaries: digests of older contiguous ranges of durable order keys
- Key facts: typed facts extracted from compressed ranges, append-only

Compaction never surfaces errors to the user. A failed LLM call leaves the
conversation untouched so the next turn can retry.
"""

import math
from typing import TYPE_CHECKING

import structlog

from ..llm.base import BaseLLM, LLMMessage
from .context import (
    AgentContext,
    ConversationSummary,
    KeyFact,
    KeyFactType,
    MessageRange,
    make_summary_message,
)
from .repair import extract_json_array

if TYPE_CHECKING:
    from ..store import SessionStore

logger = structlog.get_logger()

# Approximate characters per token
CHARS_PER_TOKEN = 4

DEFAULT_COMPRESSION_THRESHOLD = 25
DEFAULT_RECENT_BUFFER_SIZE = 10
DEFAULT_TOOL_PREVIEW_CHARS = 500

SUMMARY_SYSTEM_PROMPT = (
    "You are a conversation summarizer. Create a dense, information-preserving summary "
    "of the following conversation segment. Focus on: what the user asked, what was "
    "searched or found, what analyses were performed, key findings, and any decisions "
    "made. Keep paper references by their index numbers."
)

KEY_FACTS_SYSTEM_PROMPT = """Extract key facts from this conversation segment. Return a JSON array of objects with:
- "type": one of "paper_conclusion", "user_preference", "research_direction", "decision", "entity"
- "content": the fact itself (concise)
- "relatedPaperIndices": array of paper index numbers mentioned (empty if none)

Only extract genuinely important facts. Return a valid JSON array only, no other text."""


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def drop_orphan_tool_results(messages: list[LLMMessage]) -> list[LLMMessage]:
    """Drop leading tool results whose assistant tool call was cut off."""
    start = 0
    while start < len(messages) and messages[start].role == "tool":
        start += 1
    return messages[start:]


def render_transcript(messages: list[LLMMessage], tool_preview_chars: int = DEFAULT_TOOL_PREVIEW_CHARS) -> str:
    """Render messages as plain text for the summarizer."""
    lines = []
    for msg in messages:
        content = msg.content or ""
        if msg.role == "tool":
            if len(content) > tool_preview_chars:
                content = content[:tool_preview_chars] + "..."
            lines.append(f"[Tool result for {msg.tool_call_id}]: {content}")
        elif msg.tool_calls:
            names = ", ".join(tc.name for tc in msg.tool_calls)
            lines.append(f"Assistant [called tools: {names}]: {content}")
        else:
            lines.append(f"{msg.role}: {content}")
    return "\n".join(lines)


class MemoryCompressor:
    """Keeps a session's live history bounded."""

    def __init__(
        self,
        llm: BaseLLM,
        store: "SessionStore | None" = None,
        threshold: int = DEFAULT_COMPRESSION_THRESHOLD,
        recent_buffer_size: int = DEFAULT_RECENT_BUFFER_SIZE,
        tool_preview_chars: int = DEFAULT_TOOL_PREVIEW_CHARS,
    ):
        self.llm = llm
        self.store = store
        self.threshold = threshold
        self.recent_buffer_size = recent_buffer_size
        self.tool_preview_chars = tool_preview_chars

    async def maybe_compress(self, ctx: AgentContext) -> bool:
        """Compress the oldest uncompressed messages if the history is too long.

        Returns True when a new summary was produced.
        """
        history = ctx.conversation_history
        total = len(history)
        if total < self.threshold:
            return False

        live_start = ctx.recent_buffer_position()
        boundary = total - self.recent_buffer_size
        if boundary <= live_start:
            return False

        batch = history[live_start:boundary]
        orders = [m.order for m in batch if m.order is not None]
        if not orders:
            return False

        message_range = MessageRange(ctx.memory_state.recent_buffer_start, orders[-1])

        logger.info(
            "Compressing conversation history",
            session_id=ctx.session_id,
            compressing_from=message_range.start,
            compressing_to=message_range.end,
            message_count=len(batch),
        )

        try:
            content = await self.summarize_messages(batch)
            facts = await self.extract_key_facts(batch)
        except Exception as e:
            logger.error("Context compression failed", session_id=ctx.session_id, error=str(e))
            return False

        summary = ConversationSummary(
            content=content,
            message_range=message_range,
            token_estimate=estimate_tokens(content),
        )
        ctx.memory_state.summaries.append(summary)
        ctx.memory_state.key_facts.extend(facts)
        history[live_start:boundary] = [make_summary_message(summary)]
        ctx.memory_state.recent_buffer_start = message_range.end + 1

        await self._persist(ctx, summary, facts)

        logger.info(
            "Compression complete",
            session_id=ctx.session_id,
            summary_length=len(content),
            facts_extracted=len(facts),
            history_size=len(history),
        )
        return True

    async def _persist(self, ctx: AgentContext, summary: ConversationSummary, facts: list[KeyFact]) -> None:
        if self.store is None:
            return

        try:
            await self.store.save_summary(ctx.session_id, summary)
        except Exception as e:
            # Raw messages stay in the store until their summary is durable.
            logger.error("Failed to persist summary", session_id=ctx.session_id, error=str(e))
            return

        for fact in facts:
            try:
                await self.store.save_key_fact(ctx.session_id, fact)
            except Exception as e:
                logger.error("Failed to persist key fact", session_id=ctx.session_id, error=str(e))

        try:
            await self.store.delete_messages_by_order_range(
                ctx.session_id,
                summary.message_range.start,
                summary.message_range.end,
            )
        except Exception as e:
            logger.error("Failed to delete compressed messages", session_id=ctx.session_id, error=str(e))

    async def summarize_messages(self, messages: list[LLMMessage]) -> str:
        transcript = render_transcript(messages, self.tool_preview_chars)
        response = await self.llm.generate(
            messages=[LLMMessage(
                role="user",
                content=f"Summarize this conversation segment into a dense paragraph:\n\n{transcript}",
            )],
            system_prompt=SUMMARY_SYSTEM_PROMPT,
            max_tokens=1024,
        )
        return (response.content or "").strip() or "Unable to generate summary."

    async def extract_key_facts(self, messages: list[LLMMessage]) -> list[KeyFact]:
        conversation = "\n".join(
            f"{m.role}: {m.content or ''}" for m in messages if m.role != "tool"
        )
        if not conversation:
            return []

        response = await self.llm.generate(
            messages=[LLMMessage(role="user", content=conversation)],
            system_prompt=KEY_FACTS_SYSTEM_PROMPT,
            max_tokens=1024,
        )
        return self.parse_key_facts(response.content or "")

    @staticmethod
    def parse_key_facts(raw: str) -> list[KeyFact]:
        """Parse the extractor's output, skipping malformed entries."""
        items = extract_json_array(raw)
        if items is None:
            logger.warning("Failed to parse key facts from LLM response", raw=raw[:200])
            return []

        facts = []
        for item in items:
            if not isinstance(item, dict):
                continue
            fact_type = item.get("type")
            content = item.get("content")
            if not fact_type or not content:
                continue
            try:
                kind = KeyFactType(str(fact_type).strip().lower())
            except ValueError:
                continue

            indices = item.get("relatedPaperIndices", item.get("related_paper_indices", []))
            if not isinstance(indices, list):
                indices = []

            facts.append(KeyFact(
                type=kind,
                content=str(content).strip(),
                related_paper_indices=[i for i in indices if isinstance(i, int) and not isinstance(i, bool)],
            ))
        return facts

    def build_compressed_context(self, system_prompt: str, ctx: AgentContext) -> list[LLMMessage]:
        """Message array for the LLM once at least one summary exists."""
        prompt = system_prompt
        if ctx.memory_state.key_facts:
            prompt += "\n\n## Key Facts from Conversation\n"
            prompt += "\n".join(f"- [{f.type.value}] {f.content}" for f in ctx.memory_state.key_facts)
        if ctx.papers:
            prompt += "\n" + ctx.render_paper_roster()

        messages = [LLMMessage(role="system", content=prompt)]
        for summary in ctx.memory_state.summaries:
            rng = summary.message_range
            messages.append(LLMMessage(
                role="system",
                content=f"[Previous conversation summary (messages {rng.start}-{rng.end})]: {summary.content}",
            ))

        recent = [m for m in ctx.conversation_history if m.order is not None][-self.recent_buffer_size:]
        messages.extend(drop_orphan_tool_results(recent))
        return messages
