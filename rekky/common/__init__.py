"""
Rekky Common Module

Shared infrastructure for the indexer (write path) and retriever (read path).
"""

from .config import RekkyConfig, load_config
from .embedding_service import EmbeddingService, validate_embedding
from .llm_client import LLMClient
from .record_store import RecordStore, SocialGraph, InMemoryRecordStore, InMemorySocialGraph
from .ttl_cache import TTLCache, CacheEntry

__all__ = [
    "RekkyConfig",
    "load_config",
    "EmbeddingService",
    "validate_embedding",
    "LLMClient",
    "RecordStore",
    "SocialGraph",
    "InMemoryRecordStore",
    "InMemorySocialGraph",
    "TTLCache",
    "CacheEntry",
]
