"""
Tools module for agent capabilities.
"""

from typing import TYPE_CHECKING

from .base import BaseTool, NoArgs, Tool, ToolResult
from .registry import ToolRegistry
from .openalex import OpenAlexClient
from .search_tools import LookupPaperByDoiTool, SearchPapersTool
from .analysis_tools import (
    AnswerQuestionTool,
    ComparePapersTool,
    LiteratureReviewTool,
    PaperAnalyzer,
    SummarizePaperTool,
)
from .knowledge_tools import SaveAnnotationTool, SearchUserKnowledgeTool
from .context_tools import create_context_tools

if TYPE_CHECKING:
    from ..agent.session import ContextManager
    from ..config import Settings
    from ..llm.base import BaseLLM
    from ..store import SessionStore


def create_default_registry(
    settings: "Settings",
    llm: "BaseLLM",
    store: "SessionStore",
    context_manager: "ContextManager | None" = None,
    fast_llm: "BaseLLM | None" = None,
    openalex: OpenAlexClient | None = None,
) -> ToolRegistry:
    """Build the registry with every research tool."""
    registry = ToolRegistry(timeout=settings.tool_timeout_seconds)

    client = openalex or OpenAlexClient(
        base_url=settings.openalex_base_url,
        email=settings.openalex_email,
    )
    analyzer = PaperAnalyzer(llm, fast_llm)

    registry.register(SearchPapersTool(client, context_manager, max_results=settings.search_max_results))
    registry.register(LookupPaperByDoiTool(client, context_manager))
    registry.register(SummarizePaperTool(analyzer))
    registry.register(ComparePapersTool(analyzer))
    registry.register(LiteratureReviewTool(analyzer))
    registry.register(AnswerQuestionTool(analyzer))
    registry.register(SaveAnnotationTool(store))
    registry.register(SearchUserKnowledgeTool(store))
    for tool in create_context_tools(context_manager):
        registry.register(tool)

    return registry


__all__ = [
    "BaseTool",
    "NoArgs",
    "Tool",
    "ToolResult",
    "ToolRegistry",
    "OpenAlexClient",
    "PaperAnalyzer",
    "create_default_registry",
]
