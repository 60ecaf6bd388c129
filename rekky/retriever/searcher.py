"""
Searcher

Nearest-neighbour search over record embeddings.
Similarity is 1 - cosine distance. Every predicate (threshold, content type,
social graph, friend groups) is pushed into the store query so it applies
before the limit.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from ..common.record_store import RecordStore
from ..common.schemas.records import RecordKind, SearchFilters, SearchHit

logger = logging.getLogger("rekky.retriever.searcher")

MAX_LIMIT = 50


def clamp_limit(limit: Optional[int], default: int = 10) -> int:
    if limit is None:
        return default
    return max(1, min(MAX_LIMIT, int(limit)))


def clamp_threshold(threshold: Optional[float], default: float = 0.7) -> float:
    if threshold is None:
        return default
    return max(0.0, min(1.0, float(threshold)))


def qna_limit(limit: int) -> int:
    """Questions/answers get roughly half the main limit, between 5 and 20"""
    return max(5, min(20, limit // 2))


class Searcher:
    """
    Searches recommendation embeddings through a RecordStore.

    Store calls are blocking, so they run in a worker thread.
    """

    def __init__(self, store: RecordStore):
        """
        Initialize searcher.

        Args:
            store: Record store that owns the vector column
        """
        self._store = store

    async def search(
        self,
        query_vector: List[float],
        limit: Optional[int] = 10,
        threshold: Optional[float] = 0.7,
        filters: Optional[SearchFilters] = None,
    ) -> List[SearchHit]:
        """
        Find recommendations similar to a query vector.

        Args:
            query_vector: Embedded search query
            limit: Max hits, clamped to [1, 50]
            threshold: Hits must have similarity strictly above this, clamped to [0, 1]
            filters: content type / social graph / group predicates

        Returns:
            SearchHits sorted by descending similarity
        """
        limit = clamp_limit(limit)
        threshold = clamp_threshold(threshold)

        hits = await asyncio.to_thread(
            self._store.nearest,
            query_vector,
            kind=RecordKind.RECOMMENDATION,
            limit=limit,
            threshold=threshold,
            filters=filters,
        )
        hits.sort(key=lambda h: h.similarity, reverse=True)
        logger.info("Vector search returned %d hits (limit=%d, threshold=%.2f)",
                    len(hits), limit, threshold)
        return hits

    async def search_questions_and_answers(
        self,
        query_vector: List[float],
        viewer_id: Optional[str],
        limit: int = 10,
    ) -> Dict[str, List[SearchHit]]:
        """
        Find questions and answers from the viewer's network.

        No similarity threshold is applied; the closest items are returned.
        Without a viewer there is no network, so nothing is returned.
        """
        if viewer_id is None:
            return {"questions": [], "answers": []}

        per_kind = qna_limit(clamp_limit(limit))
        network = SearchFilters(viewer_id=viewer_id)
        answers_filter = SearchFilters(viewer_id=viewer_id, answers_only=True)

        questions, answers = await asyncio.gather(
            asyncio.to_thread(
                self._store.nearest, query_vector,
                kind=RecordKind.QUESTION, limit=per_kind, threshold=None, filters=network,
            ),
            asyncio.to_thread(
                self._store.nearest, query_vector,
                kind=RecordKind.RECOMMENDATION, limit=per_kind, threshold=None, filters=answers_filter,
            ),
        )
        logger.debug("Q&A search: %d questions, %d answers", len(questions), len(answers))
        return {"questions": questions, "answers": answers}
