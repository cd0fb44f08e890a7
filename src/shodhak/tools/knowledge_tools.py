"""
Tools for the user's personal knowledge base (annotations and notes).
"""

from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, Field, field_validator

from ..agent.context import AgentContext
from .base import BaseTool, ToolResult, coerce_limit

if TYPE_CHECKING:
    from ..store import SessionStore

KNOWLEDGE_MAX_RESULTS = 50


class SaveAnnotationArgs(BaseModel):
    paper_index: int = Field(description="Index of the paper to annotate")
    content: str = Field(min_length=1, description="The annotation or note content")
    note_type: Literal["annotation", "summary", "highlight"] = Field(
        default="annotation",
        description="Type of note (default: annotation)",
    )


class SearchKnowledgeArgs(BaseModel):
    query: str = Field(min_length=1, description="Search query for finding relevant notes")
    limit: int = Field(default=10, description="Maximum number of results (default: 10)")

    @field_validator("limit", mode="before")
    @classmethod
    def clamp_limit(cls, v):
        return coerce_limit(v, 10, KNOWLEDGE_MAX_RESULTS)


class SaveAnnotationTool(BaseTool):
    args_schema = SaveAnnotationArgs

    def __init__(self, store: "SessionStore"):
        self.store = store

    @property
    def name(self) -> str:
        return "save_annotation"

    @property
    def description(self) -> str:
        return "Save a note or annotation about a paper to the user's knowledge base."

    async def execute(self, args: SaveAnnotationArgs, context: AgentContext) -> ToolResult:
        if not 0 <= args.paper_index < len(context.papers):
            return ToolResult(success=False, error=f"Invalid paper index: {args.paper_index}")

        paper = context.papers[args.paper_index]
        if paper.id is None:
            return ToolResult(success=False, error=f"Paper not saved yet: {args.paper_index}")

        note = await self.store.add_annotation(context.user_id, paper.id, args.content, args.note_type)
        return ToolResult(
            success=True,
            data={"annotationId": note.id, "paperTitle": paper.title, "noteType": args.note_type},
        )


class SearchUserKnowledgeTool(BaseTool):
    args_schema = SearchKnowledgeArgs

    def __init__(self, store: "SessionStore"):
        self.store = store

    @property
    def name(self) -> str:
        return "search_user_knowledge"

    @property
    def description(self) -> str:
        return "Search through the user's saved annotations and notes from previous research."

    async def execute(self, args: SearchKnowledgeArgs, context: AgentContext) -> ToolResult:
        results = await self.store.search_annotations(context.user_id, args.query, args.limit)
        return ToolResult(
            success=True,
            data={
                "resultsFound": len(results),
                "notes": [
                    {
                        "content": note.content,
                        "noteType": note.note_type,
                        "relevanceScore": round(score, 3),
                        "paperId": note.paper_id,
                    }
                    for note, score in results
                ],
            },
        )
