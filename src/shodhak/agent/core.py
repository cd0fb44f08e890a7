"""
Core agent implementation.

This is the brain of the system. For each user turn it:
1. Resolves the session context through the ContextManager
2. Compacts older history into summaries when it grows too long
3. Runs a bounded tool-calling loop against the LLM
4. Falls back to a plain completion when the model cannot call tools
"""

import asyncio
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

import structlog

from ..config import Settings, get_settings
from ..llm.base import BaseLLM, LLMMessage, ToolCall
from ..tools.registry import ToolRegistry
from .compaction import MemoryCompressor, drop_orphan_tool_results
from .context import AgentContext, Paper, as_utc, utcnow
from .repair import parse_text_tool_call
from .session import ContextManager

logger = structlog.get_logger()

SYSTEM_PROMPT = """You are Shodhak, an intelligent research assistant specialized in academic literature research. You help users find, analyze, and synthesize academic papers.

## Your Capabilities
You have access to tools for:
1. **Searching papers**: Find papers by keywords or look them up by DOI
2. **Analyzing papers**: Summarize individual papers, compare multiple papers, generate literature reviews
3. **Answering questions**: Answer research questions based on collected papers with citations
4. **Knowledge management**: Save and search the user's annotations

## Guidelines
- When a user explicitly asks to search or find papers, do it immediately using search_papers.
- Only ask clarifying questions when the request is genuinely ambiguous or very broad.
- After finding papers, offer to summarize, compare, or analyze them.
- Always cite papers by their index [0], [1], etc. when discussing their content.
- Use the available tools for reviews and comparisons rather than writing them unaided.

## Important
- Check current papers with get_current_papers before assuming what's available.
- When users reference papers by number, those are 0-based indices.
- If no papers are in context and analysis is requested, search for papers first.
"""

FALLBACK_SYSTEM_PROMPT = (
    "You are Shodhak, a research assistant. Tool calling is not available with this model. "
    "Provide helpful guidance about research. Current papers in context: {paper_count}"
)

MAX_ITERATIONS_MESSAGE = (
    "I apologize, but I was unable to complete the task within the allowed number of steps. "
    "Could you please simplify your request or break it into smaller parts?"
)

TIMEOUT_MESSAGE = "The language model did not respond in time. Please try again in a moment."

# Provider error fragments meaning the model cannot use tools at all.
TOOL_UNSUPPORTED_MARKERS = (
    "does not support tools",
    "does not support tool",
    "tool use is not supported",
    "tools are not supported",
    "tool calling is not supported",
    "function calling is not supported",
    "does not support function calling",
)


class TurnOutcome(str, Enum):
    """Terminal state of one agent turn."""
    DONE = "done"
    ERROR = "error"
    MAX_ITERATIONS = "max_iterations"


@dataclass
class AgentResponse:
    """Result of one user turn."""

    session_id: str
    message: str
    papers: list[Paper]
    tools_used: list[str]
    iteration_count: int
    done: bool
    outcome: TurnOutcome


def is_tool_unsupported_error(error: BaseException) -> bool:
    text = str(error).lower()
    return any(marker in text for marker in TOOL_UNSUPPORTED_MARKERS)


def parse_tool_arguments(tool_call: ToolCall) -> dict[str, Any]:
    """Decode a tool call's JSON arguments, or {} when they are unusable."""
    try:
        args = json.loads(tool_call.arguments or "{}")
    except ValueError:
        logger.warning("Failed to parse tool arguments", tool_name=tool_call.name, arguments=tool_call.arguments)
        return {}
    if not isinstance(args, dict):
        logger.warning("Tool arguments are not an object", tool_name=tool_call.name)
        return {}
    return args


class Agent:
    """Runs user turns against an LLM with research tools."""

    def __init__(
        self,
        llm: BaseLLM,
        tool_registry: ToolRegistry,
        context_manager: ContextManager,
        compressor: MemoryCompressor | None = None,
        settings: Settings | None = None,
        system_prompt: str = SYSTEM_PROMPT,
    ):
        self.settings = settings or get_settings()
        self.llm = llm
        self.tool_registry = tool_registry
        self.context_manager = context_manager
        self.compressor = compressor or MemoryCompressor(
            llm,
            context_manager.store,
            threshold=self.settings.compression_threshold,
            recent_buffer_size=self.settings.recent_buffer_size,
            tool_preview_chars=self.settings.tool_result_preview_chars,
        )
        self.system_prompt = system_prompt
        self.max_iterations = self.settings.max_iterations

    async def chat(self, user_id: str, message: str, session_id: str | None = None) -> AgentResponse:
        """Process one user message. Always returns a response, never raises."""
        if session_id:
            async with self.context_manager.session_lock(session_id):
                ctx = await self.context_manager.get_context(session_id)
                if ctx is not None and not ctx.owned_by(user_id):
                    logger.warning("Session owned by another user", session_id=session_id)
                    ctx = None
                if ctx is not None:
                    return await self._run_turn(ctx, message)
            self.context_manager.discard_lock(session_id)

        ctx = await self.context_manager.create_context(user_id)
        async with self.context_manager.session_lock(ctx.session_id):
            return await self._run_turn(ctx, message)

    async def _run_turn(self, ctx: AgentContext, message: str) -> AgentResponse:
        try:
            await self.context_manager.add_message(ctx, LLMMessage(role="user", content=message))
            await self.compressor.maybe_compress(ctx)

            messages = self.build_messages(ctx)
            response = await self.run_agent_loop(ctx, messages, user_message=message)
        except Exception as e:
            logger.exception("Unexpected agent failure", session_id=ctx.session_id)
            response = self._response(ctx, f"Error: {e}", [], 0, TurnOutcome.ERROR)

        await self.context_manager.persist_metadata(ctx, last_query=message)
        return response

    def build_messages(self, ctx: AgentContext) -> list[LLMMessage]:
        """Message array sent to the LLM at the start of a turn."""
        if ctx.memory_state.summaries:
            return self.compressor.build_compressed_context(self.system_prompt, ctx)

        system = LLMMessage(
            role="system",
            content=self.system_prompt + self.context_manager.build_context_summary(ctx),
        )
        recent = ctx.conversation_history[-self.settings.fallback_history_messages:]
        return [system] + drop_orphan_tool_results(recent)

    async def _append(self, ctx: AgentContext, messages: list[LLMMessage], message: LLMMessage) -> None:
        await self.context_manager.add_message(ctx, message)
        messages.append(message)

    def _response(
        self,
        ctx: AgentContext,
        message: str,
        tools_used: list[str],
        iterations: int,
        outcome: TurnOutcome,
    ) -> AgentResponse:
        return AgentResponse(
            session_id=ctx.session_id,
            message=message,
            papers=list(ctx.papers),
            tools_used=list(dict.fromkeys(tools_used)),
            iteration_count=iterations,
            done=outcome is TurnOutcome.DONE,
            outcome=outcome,
        )

    async def run_agent_loop(
        self,
        ctx: AgentContext,
        messages: list[LLMMessage],
        user_message: str | None = None,
    ) -> AgentResponse:
        """Call the LLM and execute tools until a final answer or a limit."""
        tools = self.tool_registry.get_definitions()
        tools_used: list[str] = []
        iterations = 0

        while iterations < self.max_iterations:
            iterations += 1
            self.context_manager.increment_iterations(ctx)

            logger.info("Agent loop iteration", iteration=iterations, session_id=ctx.session_id)

            try:
                response = await asyncio.wait_for(
                    self.llm.generate(
                        messages=messages,
                        tools=tools or None,
                        tool_choice="auto" if tools else None,
                    ),
                    timeout=self.settings.llm_timeout_seconds,
                )
            except asyncio.TimeoutError:
                logger.error("LLM call timed out", iteration=iterations, session_id=ctx.session_id)
                return self._response(ctx, TIMEOUT_MESSAGE, tools_used, iterations, TurnOutcome.ERROR)
            except Exception as e:
                logger.error(
                    "Agent loop error",
                    error=str(e),
                    error_type=type(e).__name__,
                    iteration=iterations,
                    session_id=ctx.session_id,
                )
                if is_tool_unsupported_error(e):
                    return await self._fallback_without_tools(ctx, user_message, iterations)
                return self._response(
                    ctx,
                    f"Error: {e}. Please check your LLM provider configuration and API keys.",
                    tools_used,
                    iterations,
                    TurnOutcome.ERROR,
                )

            if response.tool_calls:
                await self._append(ctx, messages, LLMMessage(
                    role="assistant",
                    content=response.content or "",
                    tool_calls=response.tool_calls,
                ))

                for tool_call in response.tool_calls:
                    args = parse_tool_arguments(tool_call)
                    tools_used.append(tool_call.name)
                    result = await self.tool_registry.execute(tool_call.name, args, ctx)
                    await self._append(ctx, messages, LLMMessage(
                        role="tool",
                        content=json.dumps(result.to_dict(), default=str),
                        tool_call_id=tool_call.id,
                        name=tool_call.name,
                    ))
                continue

            content = response.content or ""

            text_call = parse_text_tool_call(content)
            if text_call is not None and text_call.name in self.tool_registry:
                logger.info("Detected text-based tool call", tool_name=text_call.name, session_id=ctx.session_id)
                tools_used.append(text_call.name)
                result = await self.tool_registry.execute(text_call.name, text_call.parameters, ctx)

                payload = result.data if result.data is not None else result.error
                await self._append(ctx, messages, LLMMessage(role="assistant", content=content))
                await self._append(ctx, messages, LLMMessage(
                    role="user",
                    content=f'Tool "{text_call.name}" result: {json.dumps(payload, indent=2, default=str)}',
                ))
                continue

            await self.context_manager.add_message(ctx, LLMMessage(role="assistant", content=content))
            await self.compressor.maybe_compress(ctx)
            return self._response(ctx, content, tools_used, iterations, TurnOutcome.DONE)

        logger.warning("Agent reached max iterations", session_id=ctx.session_id, iterations=iterations)
        return self._response(ctx, MAX_ITERATIONS_MESSAGE, tools_used, iterations, TurnOutcome.MAX_ITERATIONS)

    async def _fallback_without_tools(
        self,
        ctx: AgentContext,
        user_message: str | None,
        iterations: int,
    ) -> AgentResponse:
        """Single tool-less completion for models without tool support."""
        logger.info("Using fallback mode without tools", session_id=ctx.session_id)

        if user_message is None:
            user_message = next(
                (m.content for m in reversed(ctx.conversation_history) if m.role == "user"),
                "",
            )

        try:
            response = await asyncio.wait_for(
                self.llm.generate(
                    messages=[LLMMessage(role="user", content=user_message)],
                    system_prompt=FALLBACK_SYSTEM_PROMPT.format(paper_count=len(ctx.papers)),
                    max_tokens=2048,
                ),
                timeout=self.settings.llm_timeout_seconds,
            )
        except Exception as e:
            logger.error("Fallback completion failed", error=str(e), session_id=ctx.session_id)
            return self._response(ctx, f"Error: {e}", [], iterations, TurnOutcome.ERROR)

        content = response.content or "I apologize, I encountered an issue processing your request."
        await self.context_manager.add_message(ctx, LLMMessage(role="assistant", content=content))
        return self._response(ctx, content, [], iterations, TurnOutcome.DONE)

    async def get_session(self, session_id: str, user_id: str) -> AgentContext | None:
        """Session owned by ``user_id``, or None."""
        ctx = await self.context_manager.get_context(session_id)
        if ctx is None or not ctx.owned_by(user_id):
            return None
        return ctx

    async def end_session(self, session_id: str, user_id: str) -> bool:
        """End a session once any in-flight turn on it has finished."""
        async with self.context_manager.session_lock(session_id):
            ctx = await self.get_session(session_id, user_id)
            if ctx is not None:
                await self.context_manager.delete_context(session_id)

        if ctx is None:
            self.context_manager.discard_lock(session_id)
            return False
        logger.info("Session ended by user", session_id=session_id, user_id=user_id)
        return True

    async def list_sessions(self, user_id: str) -> list[dict[str, Any]]:
        """Active, unexpired sessions of a user, most recent first."""
        records = await self.context_manager.store.get_user_active_sessions(user_id)
        now = utcnow()
        sessions = []
        for record in records:
            last_activity_at = as_utc(record.last_activity_at)
            if now - last_activity_at > self.context_manager.ttl:
                continue
            metadata = record.session_metadata or {}
            sessions.append({
                "session_id": record.id,
                "created_at": as_utc(record.created_at).isoformat(),
                "last_activity_at": last_activity_at.isoformat(),
                "last_query": metadata.get("lastQuery"),
                "total_iterations": metadata.get("totalIterations", 0),
            })
        return sessions
