"""
RAG Client Module

Adapter around an external retrieval (RAG) search service.

The search service itself is not part of this project: anything exposing
`search(query, limit, filter) -> list[dict]` can be plugged in. Each raw
result looks like:

    {
        "score": 0.87,
        "payload": {
            "chunk_text": "...",
            "content_id": 12,               # optional
            "metadata": {
                "source_url": "https://...",  # optional
                "title": "...",               # optional
                "post_id": 12,                # optional
            },
        },
    }

RAG is an enhancement, never a hard dependency: when no search backend is
configured, or the backend reports it is unavailable, search() returns an
empty list and the chat carries on without context.

Usage:
    client = RAGClient(backend=HTTPSearchBackend("http://rag.local"))
    results = client.search("What are office hours?", content_types=["page"])
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import httpx

from config.settings import get_settings, RetrievalConfig
from ragchat.exceptions import RetrievalUnavailable

logger = logging.getLogger(__name__)

UNKNOWN_SOURCE = "Unknown Source"
DEFAULT_SOURCE_URL = "#"

# content_type is a single string for one restriction, a list for several
SearchFilter = Dict[str, Union[str, List[str]]]
TitleResolver = Callable[[Any], Optional[str]]


@dataclass
class SearchResult:
    """A single normalized search hit."""
    score: float
    text: str
    source_url: str
    title: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "text": self.text,
            "source_url": self.source_url,
            "title": self.title,
        }


class BaseSearchBackend(ABC):
    """Abstract search capability offered by the external RAG service."""

    @abstractmethod
    def search(
        self,
        query: str,
        limit: int,
        search_filter: Optional[SearchFilter] = None,
    ) -> List[Dict[str, Any]]:
        """
        Run a search.

        Raises:
            RetrievalUnavailable: The service cannot be used right now
        """
        pass


class HTTPSearchBackend(BaseSearchBackend):
    """
    Search backend that talks to a RAG service over HTTP.

    POSTs {"query", "limit", "filter"} to <base_url>/search and accepts
    either {"results": [...]} or a bare list in reply.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 60.0,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._client = client

        logger.info(f"HTTPSearchBackend initialized: url={self.base_url}")

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self._api_key:
                headers["Authorization"] = f"Bearer {self._api_key}"
            self._client = httpx.Client(headers=headers, timeout=self._timeout)
        return self._client

    def search(
        self,
        query: str,
        limit: int,
        search_filter: Optional[SearchFilter] = None,
    ) -> List[Dict[str, Any]]:
        body = {"query": query, "limit": limit, "filter": search_filter or {}}

        try:
            response = self._get_client().post(f"{self.base_url}/search", json=body)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise RetrievalUnavailable(f"RAG search failed: {e}") from e

        if isinstance(data, dict):
            data = data.get("results", [])
        if not isinstance(data, list):
            raise RetrievalUnavailable("RAG search returned an unexpected payload")
        return data


def build_filter(content_types: Optional[Sequence[str]]) -> SearchFilter:
    """
    Build the search filter for a content-type restriction.

    One type is sent as a plain string, several as a list; the RAG service
    accepts either form.
    """
    if not content_types:
        return {}
    types = list(content_types)
    if len(types) == 1:
        return {"content_type": types[0]}
    return {"content_type": types}


class RAGClient:
    """
    Normalizes search results from the configured backend.

    Example:
        client = RAGClient.from_settings()
        for result in client.search("parking permits"):
            print(result.score, result.title, result.source_url)
    """

    def __init__(
        self,
        backend: Optional[BaseSearchBackend] = None,
        title_resolver: Optional[TitleResolver] = None,
    ):
        """
        Initialize the RAG client.

        Args:
            backend: Search backend; None disables retrieval
            title_resolver: Maps a content ID to a title, used when a
                result carries no title of its own
        """
        self._backend = backend
        self._title_resolver = title_resolver

    @classmethod
    def from_settings(
        cls,
        config: Optional[RetrievalConfig] = None,
        title_resolver: Optional[TitleResolver] = None,
    ) -> "RAGClient":
        config = config or get_settings().retrieval
        backend = None
        if config.search_url:
            backend = HTTPSearchBackend(
                base_url=config.search_url,
                api_key=config.api_key,
                timeout=config.timeout,
            )
        else:
            logger.info("No RAG search service configured; chats will run without context")
        return cls(backend=backend, title_resolver=title_resolver)

    @property
    def available(self) -> bool:
        return self._backend is not None

    def search(
        self,
        query: str,
        limit: int = 5,
        content_types: Optional[Sequence[str]] = None,
    ) -> List[SearchResult]:
        """
        Search the RAG service.

        Args:
            query: Text to search for
            limit: Maximum number of results
            content_types: Optional content-type restriction

        Returns:
            Results in ranking order; empty when retrieval is unavailable
        """
        if self._backend is None:
            logger.debug("RAG search skipped: no backend configured")
            return []

        try:
            raw_results = self._backend.search(query, limit, build_filter(content_types))
        except RetrievalUnavailable as e:
            logger.warning(f"RAG unavailable, continuing without context: {e}")
            return []

        results = []
        for raw in raw_results or []:
            try:
                results.append(self._normalize(raw))
            except (AttributeError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed RAG result {raw!r}: {e}")
        logger.debug(f"RAG search returned {len(results)} results")
        return results

    def _normalize(self, raw: Dict[str, Any]) -> SearchResult:
        payload = raw.get("payload") or {}
        metadata = payload.get("metadata") or {}

        return SearchResult(
            score=float(raw.get("score", 0.0)),
            text=str(payload.get("chunk_text") or ""),
            source_url=metadata.get("source_url") or DEFAULT_SOURCE_URL,
            title=self._resolve_title(payload, metadata),
        )

    def _resolve_title(self, payload: Dict[str, Any], metadata: Dict[str, Any]) -> str:
        """Metadata title, then a title looked up by content ID, then a placeholder."""
        title = metadata.get("title")
        if title:
            return title

        content_id = payload.get("content_id") or metadata.get("post_id")
        if content_id and self._title_resolver is not None:
            title = self._title_resolver(content_id)
            if title:
                return title

        return UNKNOWN_SOURCE
