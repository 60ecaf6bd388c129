"""
Rekky application

Builds every component once and exposes the two entry points the platform
calls: enqueue an embedding after a record write, and run a search.
"""

import logging
from typing import Any, Dict, Optional, Union

from .common.config import RekkyConfig, load_config
from .common.embedding_service import EmbeddingService
from .common.llm_client import LLMClient
from .common.record_store import InMemoryRecordStore, RecordStore
from .common.schemas.records import Priority, RecordKind, SearchFilters
from .common.ttl_cache import TTLCache
from .indexer.embedding_queue import EmbeddingQueue, QueueStatus
from .retriever.relevance import RelevanceValidator
from .retriever.searcher import Searcher
from .retriever.service import SearchResponse, SearchService
from .retriever.synthesizer import Synthesizer

logger = logging.getLogger("rekky.app")


class RekkyApp:
    """
    Container for the embedding pipeline and the search engine.

    Components:
    - queue: EmbeddingQueue (write path)
    - search_service: SearchService (read path)
    - embedding_cache / summary_cache: process-lifetime TTL caches
    """

    def __init__(
        self,
        config: RekkyConfig,
        store: RecordStore,
        embedding_service: EmbeddingService,
        llm_client: Optional[LLMClient] = None,
    ):
        self.config = config
        self.store = store
        self.embedding_service = embedding_service
        self.llm_client = llm_client

        self.embedding_cache = TTLCache(config.cache.embedding_ttl, config.cache.max_entries)
        self.summary_cache = TTLCache(config.cache.summary_ttl, config.cache.max_entries)

        self.queue = EmbeddingQueue(store, embedding_service, config.queue)
        self.searcher = Searcher(store)
        self.synthesizer = Synthesizer(
            llm_client=llm_client,
            cache=self.summary_cache,
            relevance=RelevanceValidator(
                llm_client=llm_client,
                min_threshold=config.search.relevance_threshold,
                timeout=config.llm.timeout,
            ),
            temperature=config.llm.temperature,
            max_tokens=config.llm.max_tokens,
            timeout=config.llm.timeout,
        )
        # Relevance check and summary both call the LLM, so allow for both
        self.search_service = SearchService(
            embedding_service=embedding_service,
            searcher=self.searcher,
            synthesizer=self.synthesizer,
            embedding_cache=self.embedding_cache,
            config=config.search,
            summary_timeout=config.llm.timeout * 2 + 5,
        )

    @classmethod
    def from_config(cls, config: Optional[RekkyConfig] = None) -> "RekkyApp":
        """Build the application from ~/.rekky/config.json and the environment."""
        config = config or load_config()

        if config.database.url:
            from .common.pg_store import PgVectorRecordStore

            store = PgVectorRecordStore(config.database.url)
            logger.info("Using PostgreSQL record store")
        else:
            store = InMemoryRecordStore()
            logger.warning("DATABASE_URL not set, using in-memory record store")

        embedding_service = EmbeddingService(
            api_key=config.embedding.api_key,
            model=config.embedding.model,
            dimensions=config.embedding.dimensions,
            timeout=config.embedding.timeout,
        )
        llm_client = LLMClient.from_config(config.llm)
        if not llm_client.is_available:
            logger.info("Summaries will use the fallback template (no %s key)", config.llm.provider)

        return cls(config, store, embedding_service, llm_client)

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def enqueue_embedding(
        self,
        kind: Union[RecordKind, str],
        record_id: str,
        payload: Optional[Dict[str, Any]] = None,
        priority: Union[Priority, str] = Priority.NORMAL,
    ) -> str:
        return self.queue.enqueue(kind, record_id, payload, priority)

    def record_saved(
        self,
        kind: Union[RecordKind, str],
        record_id: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Optional[str]:
        """
        Hook for record create/update. Never raises: a record write must
        succeed even when its embedding cannot be scheduled.
        """
        try:
            return self.queue.enqueue(kind, record_id, payload, Priority.HIGH)
        except Exception as e:
            logger.error("Failed to enqueue embedding for %s %s: %s", kind, record_id, e)
            return None

    def queue_status(self) -> QueueStatus:
        return self.queue.get_status()

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    async def search(
        self,
        query: str,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
        filters: Optional[SearchFilters] = None,
        include_summary: bool = True,
        include_qna: bool = False,
    ) -> SearchResponse:
        return await self.search_service.search(
            query,
            limit=limit,
            threshold=threshold,
            filters=filters,
            include_summary=include_summary,
            include_qna=include_qna,
        )

    async def close(self) -> None:
        await self.queue.close()
