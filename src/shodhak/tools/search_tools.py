"""
Paper search tools backed by OpenAlex.
"""

from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, Field, field_validator

from ..agent.context import AgentContext, Paper
from .base import BaseTool, ToolResult, coerce_limit
from .openalex import OpenAlexClient

if TYPE_CHECKING:
    from ..agent.session import ContextManager

logger = structlog.get_logger()

SEARCH_MAX_RESULTS = 20


class SearchPapersArgs(BaseModel):
    query: str = Field(min_length=1, description="The search query for finding relevant papers")
    limit: int = Field(
        default=10,
        description=f"Maximum number of papers to return (default: 10, max: {SEARCH_MAX_RESULTS})",
    )

    @field_validator("limit", mode="before")
    @classmethod
    def clamp_limit(cls, v):
        return coerce_limit(v, 10, SEARCH_MAX_RESULTS)


class LookupDoiArgs(BaseModel):
    doi: str = Field(min_length=1, description="The DOI of the paper to look up")


async def _track_papers(
    context_manager: "ContextManager | None",
    ctx: AgentContext,
    papers: list[Paper],
) -> None:
    if context_manager is None:
        return
    for paper in papers:
        await context_manager.add_paper_to_session(ctx, paper)


class SearchPapersTool(BaseTool):
    """Search OpenAlex and add new papers to the session."""

    args_schema = SearchPapersArgs

    def __init__(
        self,
        client: OpenAlexClient,
        context_manager: "ContextManager | None" = None,
        max_results: int = SEARCH_MAX_RESULTS,
    ):
        self.client = client
        self.context_manager = context_manager
        self.max_results = max_results

    @property
    def name(self) -> str:
        return "search_papers"

    @property
    def description(self) -> str:
        return (
            "Search academic databases for research papers matching a query. "
            "Returns papers with titles, authors, abstracts, and metadata."
        )

    async def execute(self, args: SearchPapersArgs, context: AgentContext) -> ToolResult:
        limit = min(args.limit, self.max_results)
        papers = await self.client.search(args.query, limit)

        new_papers = context.add_papers(papers)
        context.metadata.search_count += 1
        await _track_papers(self.context_manager, context, new_papers)

        logger.info(
            "Paper search completed",
            query=args.query,
            found=len(papers),
            new=len(new_papers),
            session_id=context.session_id,
        )

        return ToolResult(
            success=True,
            data={
                "newPapersFound": len(new_papers),
                "totalPapersInContext": len(context.papers),
                "papers": [
                    {
                        "index": context.paper_index(p.external_id),
                        "title": p.title,
                        "authors": p.author_names,
                        "year": p.year,
                        "abstractPreview": p.abstract[:200] + "..." if len(p.abstract) > 200 else p.abstract,
                    }
                    for p in papers
                ],
            },
        )


class LookupPaperByDoiTool(BaseTool):
    """Fetch a single paper by DOI."""

    args_schema = LookupDoiArgs

    def __init__(self, client: OpenAlexClient, context_manager: "ContextManager | None" = None):
        self.client = client
        self.context_manager = context_manager

    @property
    def name(self) -> str:
        return "lookup_paper_by_doi"

    @property
    def description(self) -> str:
        return "Look up a specific paper by its DOI (Digital Object Identifier)."

    async def execute(self, args: LookupDoiArgs, context: AgentContext) -> ToolResult:
        paper = await self.client.lookup_doi(args.doi)
        if paper is None:
            return ToolResult(success=False, error=f"No paper found with DOI: {args.doi}")

        new_papers = context.add_papers([paper])
        context.metadata.search_count += 1
        await _track_papers(self.context_manager, context, new_papers)

        index = context.paper_index(paper.external_id)
        stored = context.papers[index]
        return ToolResult(
            success=True,
            data={
                "index": index,
                "title": stored.title,
                "authors": stored.author_names,
                "year": stored.year,
                "abstract": stored.abstract,
                "venue": stored.venue,
                "citationCount": stored.citation_count,
            },
        )
