"""
Retriever - Semantic Search

Searches recommendation embeddings and summarizes what the network said.

Key Components:
- Searcher: Nearest-neighbour search with threshold and network filters
- aggregate: Groups hits by place / service / content type
- RelevanceValidator: Checks the top groups actually match the query intent
- Synthesizer: LLM summary with a deterministic fallback
- SearchService: The full read path

Pipeline:
1. Embed the query (cached)
2. Search the vector index
3. Group hits by entity
4. Summarize (cached, bounded, never fails)
"""

from .aggregator import EntityGroup, GroupType, aggregate
from .relevance import RelevanceValidator, RelevanceResult
from .searcher import Searcher
from .service import SearchService, SearchResponse
from .synthesizer import Synthesizer, fallback_summary

__all__ = [
    "EntityGroup",
    "GroupType",
    "aggregate",
    "RelevanceValidator",
    "RelevanceResult",
    "Searcher",
    "SearchService",
    "SearchResponse",
    "Synthesizer",
    "fallback_summary",
]
