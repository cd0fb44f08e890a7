"""
LLM-backed analysis tools over the papers in a session.
"""

from pydantic import BaseModel, Field

from ..agent.context import AgentContext, Paper
from ..llm.base import BaseLLM, LLMMessage
from .base import BaseTool, ToolResult


class PaperAnalyzer:
    """Prompts for summarizing, comparing and synthesizing papers."""

    def __init__(self, reasoning_llm: BaseLLM, fast_llm: BaseLLM | None = None):
        self.reasoning_llm = reasoning_llm
        self.fast_llm = fast_llm or reasoning_llm

    async def _complete(self, llm: BaseLLM, prompt: str, max_tokens: int | None = None) -> str:
        response = await llm.generate(
            messages=[LLMMessage(role="user", content=prompt)],
            max_tokens=max_tokens,
        )
        return (response.content or "").strip()

    async def summarize_paper(self, paper: Paper) -> str:
        prompt = f"""Summarize this academic paper in 2-3 sentences, focusing on the key contributions and findings:

Title: {paper.title}
Authors: {paper.author_names}
Year: {paper.year or "Unknown"}
Abstract: {paper.abstract}

Provide a concise summary."""
        return await self._complete(self.fast_llm, prompt, max_tokens=512)

    async def compare_papers(self, papers: list[Paper]) -> str:
        context = "\n--\n".join(
            f"Paper {i + 1}: {p.title}\nAuthors: {p.author_names}\nYear: {p.year or 'N/A'}\nAbstract: {p.abstract}"
            for i, p in enumerate(papers)
        )
        prompt = f"""Compare and contrast these academic papers:

{context}

Provide a structured comparison covering:
1. Research objectives and questions
2. Methodological approaches
3. Key findings and conclusions
4. Strengths and limitations of each
5. How they complement or contradict each other

Be specific and cite which paper you're referring to."""
        return await self._complete(self.reasoning_llm, prompt)

    async def generate_literature_review(self, papers: list[Paper], topic: str) -> str:
        context = "\n---\n".join(
            f"[{i + 1}] Title: {p.title}\nAuthors: {p.author_names}\n"
            f"Year: {p.year or 'N/A'}\nVenue: {p.venue or 'N/A'}\nAbstract: {p.abstract}"
            for i, p in enumerate(papers)
        )
        prompt = f"""You are an academic research assistant writing a literature review.

Research Topic: "{topic}"

Available Papers:
{context}

Write a comprehensive literature review that:
1. Introduces the research topic and its significance
2. Synthesizes findings across the papers, grouping by themes
3. Identifies key trends, agreements, and contradictions
4. Highlights research gaps and future directions
5. Uses inline citations in the format [1], [2], etc.

Write in academic style with clear paragraphs. Include citations for all claims."""
        return await self._complete(self.reasoning_llm, prompt)

    async def answer_question(self, question: str, papers: list[Paper]) -> str:
        context = "\n".join(f"[{i + 1}] {p.title}\nAbstract: {p.abstract}" for i, p in enumerate(papers))
        prompt = f"""Based on these research papers, answer the following question.

Papers:
{context}

Question: {question}

Provide a clear, well-cited answer using [1], [2], etc. to reference papers. If the papers don't contain enough information to answer, say so."""
        return await self._complete(self.reasoning_llm, prompt, max_tokens=1024)


def _resolve(context: AgentContext, indices: list[int]) -> tuple[list[Paper], int | None]:
    """Papers at ``indices``, or the first invalid index."""
    papers = []
    for idx in indices:
        if idx < 0 or idx >= len(context.papers):
            return [], idx
        papers.append(context.papers[idx])
    return papers, None


class SummarizePaperArgs(BaseModel):
    paper_index: int = Field(description="Index of the paper in the current context (0-based)")


class ComparePapersArgs(BaseModel):
    paper_indices: list[int] = Field(description="Indices of papers to compare (at least 2 required)")


class LiteratureReviewArgs(BaseModel):
    focus_topic: str | None = Field(default=None, description="Specific topic or angle to focus the review on")
    paper_indices: list[int] | None = Field(
        default=None,
        description="Indices of papers to include (optional, defaults to all)",
    )


class AnswerQuestionArgs(BaseModel):
    question: str = Field(min_length=1, description="The question to answer based on the papers")
    paper_indices: list[int] | None = Field(
        default=None,
        description="Indices of papers to use for answering (optional, defaults to all)",
    )


class SummarizePaperTool(BaseTool):
    args_schema = SummarizePaperArgs

    def __init__(self, analyzer: PaperAnalyzer):
        self.analyzer = analyzer

    @property
    def name(self) -> str:
        return "summarize_paper"

    @property
    def description(self) -> str:
        return "Generate a concise summary of a specific paper from the current context."

    async def execute(self, args: SummarizePaperArgs, context: AgentContext) -> ToolResult:
        papers, invalid = _resolve(context, [args.paper_index])
        if invalid is not None:
            return ToolResult(success=False, error=f"Invalid paper index: {invalid}")

        paper = papers[0]
        summary = await self.analyzer.summarize_paper(paper)
        context.metadata.analysis_count += 1
        return ToolResult(success=True, data={"paperTitle": paper.title, "summary": summary})


class ComparePapersTool(BaseTool):
    args_schema = ComparePapersArgs

    def __init__(self, analyzer: PaperAnalyzer):
        self.analyzer = analyzer

    @property
    def name(self) -> str:
        return "compare_papers"

    @property
    def description(self) -> str:
        return (
            "Compare and contrast multiple papers, analyzing their methodologies, "
            "findings, and relationships."
        )

    async def execute(self, args: ComparePapersArgs, context: AgentContext) -> ToolResult:
        if len(args.paper_indices) < 2:
            return ToolResult(success=False, error="Need at least 2 papers to compare")

        papers, invalid = _resolve(context, args.paper_indices)
        if invalid is not None:
            return ToolResult(success=False, error=f"Invalid paper index: {invalid}")

        comparison = await self.analyzer.compare_papers(papers)
        context.metadata.analysis_count += 1
        return ToolResult(
            success=True,
            data={
                "comparedPapers": [
                    {"index": idx, "title": p.title}
                    for idx, p in zip(args.paper_indices, papers)
                ],
                "comparison": comparison,
            },
        )


class LiteratureReviewTool(BaseTool):
    args_schema = LiteratureReviewArgs

    def __init__(self, analyzer: PaperAnalyzer):
        self.analyzer = analyzer

    @property
    def name(self) -> str:
        return "generate_literature_review"

    @property
    def description(self) -> str:
        return "Generate a comprehensive literature review synthesizing papers around a research topic."

    async def execute(self, args: LiteratureReviewArgs, context: AgentContext) -> ToolResult:
        if args.paper_indices:
            papers = [context.papers[i] for i in args.paper_indices if 0 <= i < len(context.papers)]
        else:
            papers = list(context.papers)

        if not papers:
            return ToolResult(success=False, error="No papers available for literature review")

        review = await self.analyzer.generate_literature_review(papers, args.focus_topic or "the research topic")
        context.metadata.analysis_count += 1
        return ToolResult(
            success=True,
            data={
                "papersIncluded": len(papers),
                "content": review,
                "citations": [
                    {"index": i + 1, "title": p.title, "authors": p.author_names, "year": p.year, "venue": p.venue}
                    for i, p in enumerate(papers)
                ],
            },
        )


class AnswerQuestionTool(BaseTool):
    args_schema = AnswerQuestionArgs

    def __init__(self, analyzer: PaperAnalyzer):
        self.analyzer = analyzer

    @property
    def name(self) -> str:
        return "answer_question"

    @property
    def description(self) -> str:
        return "Answer a specific research question based on the collected papers with citations."

    async def execute(self, args: AnswerQuestionArgs, context: AgentContext) -> ToolResult:
        if args.paper_indices:
            papers = [context.papers[i] for i in args.paper_indices if 0 <= i < len(context.papers)]
        else:
            papers = list(context.papers)

        if not papers:
            return ToolResult(success=False, error="No papers available to answer the question")

        answer = await self.analyzer.answer_question(args.question, papers)
        context.metadata.analysis_count += 1
        return ToolResult(
            success=True,
            data={"question": args.question, "answer": answer, "papersUsed": len(papers)},
        )
