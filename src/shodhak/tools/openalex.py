"""
OpenAlex client for paper search and DOI lookup.
"""

from typing import Any

import httpx
import structlog

from ..agent.context import Author, Paper

logger = structlog.get_logger()

OPENALEX_PREFIX = "https://openalex.org/"
DOI_PREFIX = "https://doi.org/"


def reconstruct_abstract(inverted_index: dict[str, list[int]] | None) -> str:
    """Rebuild abstract text from OpenAlex's inverted index format."""
    if not inverted_index:
        return ""
    words = [
        (position, word)
        for word, positions in inverted_index.items()
        for position in positions
    ]
    words.sort()
    return " ".join(word for _, word in words)


def _strip_prefix(value: str | None, prefix: str) -> str | None:
    if value and value.startswith(prefix):
        return value[len(prefix):]
    return value


def normalize_work(work: dict[str, Any]) -> Paper:
    """Convert an OpenAlex work into a Paper."""
    work_id = _strip_prefix(work.get("id", ""), OPENALEX_PREFIX) or ""
    location = work.get("primary_location") or {}
    source = location.get("source") or {}
    open_access = work.get("open_access") or {}

    authors = []
    for authorship in work.get("authorships") or []:
        author = authorship.get("author") or {}
        authors.append(Author(
            name=author.get("display_name") or "Unknown",
            author_id=_strip_prefix(author.get("id"), OPENALEX_PREFIX),
        ))

    return Paper(
        external_id=f"openalex:{work_id}",
        title=work.get("title") or "Untitled",
        authors=authors,
        abstract=reconstruct_abstract(work.get("abstract_inverted_index")),
        url=location.get("landing_page_url") or open_access.get("oa_url") or f"{OPENALEX_PREFIX}{work_id}",
        doi=_strip_prefix(work.get("doi"), DOI_PREFIX),
        year=work.get("publication_year"),
        venue=source.get("display_name"),
        citation_count=work.get("cited_by_count") or 0,
        source="openalex",
        metadata={"open_access_url": open_access.get("oa_url")},
    )


class OpenAlexClient:
    """Thin async client over the OpenAlex works API."""

    def __init__(
        self,
        base_url: str = "https://api.openalex.org",
        email: str = "",
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.params = {"mailto": email} if email else {}
        self.timeout = timeout
        self._client = client

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        return self._client

    async def search(self, query: str, limit: int = 10) -> list[Paper]:
        try:
            response = await self._http().get(
                f"{self.base_url}/works",
                params={
                    **self.params,
                    "search": query,
                    "per_page": limit,
                    "filter": "has_abstract:true",
                },
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("OpenAlex search failed", query=query, error=str(e))
            raise

        results = response.json().get("results") or []
        logger.debug("OpenAlex search completed", query=query, result_count=len(results))
        return [normalize_work(work) for work in results]

    async def lookup_doi(self, doi: str) -> Paper | None:
        doi = _strip_prefix(doi.strip(), DOI_PREFIX) or ""
        try:
            response = await self._http().get(f"{self.base_url}/works/{DOI_PREFIX}{doi}", params=self.params)
            if response.status_code == 404:
                return None
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("OpenAlex DOI lookup failed", doi=doi, error=str(e))
            raise

        return normalize_work(response.json())

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
