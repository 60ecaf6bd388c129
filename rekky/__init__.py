"""
Rekky

Embedding pipeline and semantic search for a social recommendation network.

Philosophy:
- Every record is searchable by meaning, not keywords
- Vectors converge to the latest record content (eventually consistent)
- Search degrades gracefully: no LLM still means ranked, grouped results

Usage:
    from rekky.app import RekkyApp
    from rekky.common import load_config, EmbeddingService
    from rekky.indexer import EmbeddingQueue
    from rekky.retriever import Searcher, Synthesizer, aggregate
"""

__version__ = "0.1.0"
