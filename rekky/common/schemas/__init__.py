"""
Rekky Record Schemas

Normalized record model plus the text templates used for embedding.
"""

from .records import (
    Record,
    RecordKind,
    ContentType,
    Visibility,
    Priority,
    EntityContext,
    SearchHit,
    SearchFilters,
)
from .templates import render_embedding_text, render_place_text, render_search_query, price_tier

__all__ = [
    "Record",
    "RecordKind",
    "ContentType",
    "Visibility",
    "Priority",
    "EntityContext",
    "SearchHit",
    "SearchFilters",
    "render_embedding_text",
    "render_place_text",
    "render_search_query",
    "price_tier",
]
