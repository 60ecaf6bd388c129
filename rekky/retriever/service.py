"""
Search Service

End-to-end read path:
1. Embed the query (cached per trimmed query text)
2. Nearest-neighbour search with threshold and network filters
3. Group hits by entity
4. Summarize the best groups (bounded by a timeout, template on failure)

An embedding failure raises SearchUnavailableError, which callers must keep
distinct from "no results".
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..common.config import SearchConfig
from ..common.embedding_service import EmbeddingService
from ..common.errors import EmbeddingServiceError, InvalidVectorError, SearchUnavailableError
from ..common.schemas.records import SearchFilters, SearchHit
from ..common.schemas.templates import render_search_query
from ..common.ttl_cache import TTLCache
from .aggregator import EntityGroup, aggregate
from .searcher import Searcher, clamp_limit, clamp_threshold
from .synthesizer import Synthesizer, fallback_summary, no_results_summary

logger = logging.getLogger("rekky.retriever.service")


@dataclass
class SearchResponse:
    """Ranked, grouped results with their summary"""
    query: str
    summary: Optional[str]
    groups: List[EntityGroup]
    total_groups: int
    total_hits: int
    threshold: float
    limit: int
    qna: Dict[str, List[SearchHit]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "summary": self.summary,
            "results": [g.to_dict() for g in self.groups],
            "qna": {k: [h.to_dict() for h in v] for k, v in self.qna.items()},
            "total_groups": self.total_groups,
            "total_recommendations": self.total_hits,
            "search_metadata": {
                "threshold": self.threshold,
                "limit": self.limit,
            },
        }


class SearchService:
    """Turns a raw text query into a SearchResponse."""

    def __init__(
        self,
        embedding_service: EmbeddingService,
        searcher: Searcher,
        synthesizer: Synthesizer,
        embedding_cache: Optional[TTLCache] = None,
        config: Optional[SearchConfig] = None,
        summary_timeout: float = 25.0,
    ):
        self._embedding = embedding_service
        self._searcher = searcher
        self._synthesizer = synthesizer
        self._embedding_cache = embedding_cache
        self._config = config or SearchConfig()
        self._summary_timeout = summary_timeout

    async def embed_query(self, query: str) -> List[float]:
        """Embed a trimmed query, consulting the embedding cache first."""
        if self._embedding_cache is not None:
            cached = self._embedding_cache.get(query)
            if cached is not None:
                logger.debug("Query embedding cache hit for %r", query)
                return cached

        try:
            vector = await asyncio.to_thread(self._embedding.embed, render_search_query(query))
        except (EmbeddingServiceError, InvalidVectorError) as e:
            logger.error("Could not embed search query %r: %s", query, e)
            raise SearchUnavailableError(f"Search is temporarily unavailable: {e}") from e

        if self._embedding_cache is not None:
            self._embedding_cache.set(query, vector)
        return vector

    async def search(
        self,
        query: str,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
        filters: Optional[SearchFilters] = None,
        include_summary: bool = True,
        include_qna: bool = False,
    ) -> SearchResponse:
        """
        Run a semantic search.

        Args:
            query: Raw user text
            limit: Max groups (and hits), default from config
            threshold: Similarity cut, default from config
            filters: content type / viewer network / friend groups
            include_summary: Generate the natural-language summary
            include_qna: Also search questions and answers in the viewer's network

        Raises:
            SearchUnavailableError: if the query could not be embedded
        """
        started = time.perf_counter()
        query = (query or "").strip()
        limit = clamp_limit(limit, self._config.limit)
        threshold = clamp_threshold(threshold, self._config.threshold)

        if not query:
            return SearchResponse(
                query=query,
                summary=no_results_summary(query),
                groups=[],
                total_groups=0,
                total_hits=0,
                threshold=threshold,
                limit=limit,
            )

        vector = await self.embed_query(query)
        embedded = time.perf_counter()

        hits = await self._searcher.search(vector, limit=limit, threshold=threshold, filters=filters)
        groups = aggregate(hits, max_groups=limit)

        qna: Dict[str, List[SearchHit]] = {}
        if include_qna and filters is not None and filters.viewer_id is not None:
            qna = await self._searcher.search_questions_and_answers(vector, filters.viewer_id, limit)
        searched = time.perf_counter()

        summary = None
        if include_summary and self._config.summary_enabled:
            summary = await self._summarize(query, groups[:self._config.max_results_for_summary])

        logger.info(
            "Search %r: %d hits in %d groups (embed %.0fms, search %.0fms, total %.0fms)",
            query, len(hits), len(groups),
            (embedded - started) * 1000, (searched - embedded) * 1000,
            (time.perf_counter() - started) * 1000,
        )
        return SearchResponse(
            query=query,
            summary=summary,
            groups=groups,
            total_groups=len(groups),
            total_hits=len(hits),
            threshold=threshold,
            limit=limit,
            qna=qna,
        )

    async def _summarize(self, query: str, groups: List[EntityGroup]) -> str:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._synthesizer.summarize, query, groups),
                timeout=self._summary_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Summary for %r timed out after %.1fs, using fallback", query, self._summary_timeout)
            return fallback_summary(query, groups)
