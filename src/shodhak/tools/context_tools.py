"""
Tools that inspect or reset the papers held in a session.
"""

from typing import TYPE_CHECKING

from ..agent.context import AgentContext
from .base import NoArgs, Tool, ToolResult

if TYPE_CHECKING:
    from ..agent.session import ContextManager


def create_context_tools(context_manager: "ContextManager | None" = None) -> list[Tool]:
    """Create the get_current_papers and clear_papers tools."""

    async def get_current_papers(args: NoArgs, context: AgentContext) -> ToolResult:
        return ToolResult(
            success=True,
            data={
                "totalPapers": len(context.papers),
                "papers": [
                    {
                        "index": idx,
                        "title": p.title,
                        "authors": p.author_names,
                        "year": p.year,
                        "doi": p.doi,
                    }
                    for idx, p in enumerate(context.papers)
                ],
            },
        )

    async def clear_papers(args: NoArgs, context: AgentContext) -> ToolResult:
        cleared = context.clear_papers()
        if context_manager is not None:
            await context_manager.clear_session_papers(context)
        return ToolResult(success=True, data={"message": f"Cleared {cleared} papers from context"})

    return [
        Tool(
            name="get_current_papers",
            description="Get the list of papers currently in context with their indices.",
            handler=get_current_papers,
        ),
        Tool(
            name="clear_papers",
            description="Clear all papers from the current context to start fresh.",
            handler=clear_papers,
        ),
    ]
