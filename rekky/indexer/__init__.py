"""
Indexer - Write Path

Keeps record embeddings in step with record content.

Key Components:
- EmbeddingQueue: bounded-concurrency background queue with retry
- EmbeddingTask: one pending vector (re)computation

Pipeline:
1. Record saved → task enqueued (high priority for fresh user content)
2. Full record + entity context loaded
3. Text rendered and embedded
4. Vector validated and persisted
"""

from .embedding_queue import EmbeddingQueue, EmbeddingTask, QueueStatus

__all__ = [
    "EmbeddingQueue",
    "EmbeddingTask",
    "QueueStatus",
]
