"""
Agent module - the brain of the system.

Includes:
- Agent: Turn processing with LLM + tools
- ContextManager: Cached, store-backed session contexts
- MemoryCompressor: Tiered memory (recent buffer, summaries, key facts)
"""

from .context import AgentContext, ChatMessage, KeyFact, KeyFactType, Paper
from .session import ContextCache, ContextManager
from .compaction import MemoryCompressor
from .core import Agent, AgentResponse, TurnOutcome

__all__ = [
    "Agent",
    "AgentContext",
    "AgentResponse",
    "ChatMessage",
    "ContextCache",
    "ContextManager",
    "KeyFact",
    "KeyFactType",
    "MemoryCompressor",
    "Paper",
    "TurnOutcome",
]
