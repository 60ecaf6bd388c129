"""
Embedding Text Templates

Renders records to the single text string that gets embedded.
Segments are labelled ("Tags: ...", "Rating: 4/5") and joined with ". ".
Absent segments are skipped; the order within each template is fixed so
that the same record always produces the same text.
"""

import json
from typing import Any, Callable, Dict, List, Optional, Union

from ..errors import EmptyContentError
from .records import ContentType, EntityContext, Record, RecordKind


SEGMENT_SEPARATOR = ". "
SEARCH_QUERY_TEMPLATE = "Looking for: {query}. Search query for recommendations."

PRICE_LABELS = {1: "budget", 2: "moderate", 3: "higher-end", 4: "luxury"}
PRICE_SYMBOLS = {1: "₹", 2: "₹₹", 3: "₹₹₹", 4: "₹₹₹₹"}


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, dict)):
        return len(value) > 0
    return True


def _flatten(data: Optional[Dict[str, Any]]) -> str:
    """Flatten a JSON object to "key: value, key: value" in insertion order"""
    if not data:
        return ""
    entries = []
    for key, value in data.items():
        if value is None or not str(value).strip():
            continue
        text = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)
        entries.append(f"{key}: {text}")
    return ", ".join(entries)


def price_tier(content_data: Optional[Dict[str, Any]]) -> Optional[str]:
    """Describe a price tier from ``price_level`` (1-4), ``price_label`` or ``price_text``.

    Explicit label/text win over the values derived from the level.
    """
    if not content_data:
        return None
    level = content_data.get("price_level") or content_data.get("priceLevel")
    if isinstance(level, bool) or not isinstance(level, int):
        level = None
    label = content_data.get("price_label") or PRICE_LABELS.get(level)
    symbol = content_data.get("price_text") or PRICE_SYMBOLS.get(level)

    parts = []
    if symbol:
        parts.append(f"Price {symbol}")
    if label:
        parts.append(f"Pricing {label}")
    return " ".join(parts) or None


def _join(segments: List[Optional[str]]) -> str:
    text = SEGMENT_SEPARATOR.join(s for s in segments if s)
    if not text.strip():
        raise EmptyContentError("No embeddable content in record")
    return text


def _labelled(label: str, value: Any) -> Optional[str]:
    if not _present(value):
        return None
    if isinstance(value, (list, tuple)):
        value = ", ".join(str(v) for v in value)
    return f"{label}: {value}"


# ============================================================================
# Per-type templates
# ============================================================================

def _common_head(record: Record) -> List[Optional[str]]:
    return [
        _labelled("Type", record.content_type.value),
        _labelled("Title", record.title),
        _labelled("Description", record.notes),
        _labelled("Tags", record.labels),
        _labelled("Went with", record.went_with),
        f"Rating: {record.rating}/5" if record.rating else None,
        _labelled("Visited", record.visit_date),
    ]


def _common_tail(record: Record, context: EntityContext) -> List[Optional[str]]:
    return [
        _labelled("By", context.author_name),
        price_tier(record.content_data),
        _labelled("Details", _flatten(record.content_data)),
        _labelled("Metadata", _flatten(record.metadata)),
    ]


def _place_recommendation(record: Record, context: EntityContext) -> str:
    return _join(
        _common_head(record)
        + [
            _labelled("Place", context.place_name),
            _labelled("Address", context.place_address),
            _labelled("Features", _flatten(context.place_features)),
        ]
        + _common_tail(record, context)
    )


def _service_recommendation(record: Record, context: EntityContext) -> str:
    return _join(
        _common_head(record)
        + [
            _labelled("Service", context.service_name),
            _labelled("Service Type", context.service_type),
            _labelled("Business", context.business_name),
            _labelled("Service Address", context.service_address),
        ]
        + _common_tail(record, context)
    )


def _generic_recommendation(record: Record, context: EntityContext) -> str:
    # Tips and contacts may still mention a place or service
    return _join(
        _common_head(record)
        + [
            _labelled("Place", context.place_name),
            _labelled("Service", context.service_name),
        ]
        + _common_tail(record, context)
    )


def _annotation(record: Record, context: EntityContext) -> str:
    return _join([
        _labelled("Place", context.place_name),
        _labelled("Address", context.place_address),
        _labelled("Features", _flatten(context.place_features)),
        _labelled("Reviewer", context.author_name),
        _labelled("Review", record.notes),
        _labelled("Tags", record.labels),
        _labelled("Went with", record.went_with),
        f"Rating: {record.rating}/5 stars" if record.rating else None,
        _labelled("Visited", record.visit_date),
        _labelled("Details", _flatten(record.metadata)),
    ])


def _question(record: Record, context: EntityContext) -> str:
    return _join([
        _labelled("Question", record.notes or record.title),
        _labelled("Tags", record.labels),
        _labelled("Asked by", context.author_name),
        _labelled("Details", _flatten(record.metadata)),
    ])


_RECOMMENDATION_TEMPLATES: Dict[ContentType, Callable[[Record, EntityContext], str]] = {
    ContentType.PLACE: _place_recommendation,
    ContentType.SERVICE: _service_recommendation,
}


# ============================================================================
# Public API
# ============================================================================

def render_embedding_text(
    kind: Union[RecordKind, str],
    record: Union[Record, Dict[str, Any]],
    context: Optional[EntityContext] = None,
) -> str:
    """
    Render a record to the text that is embedded for it.

    Args:
        kind: annotation, recommendation or question
        record: Record (or a raw row dict, normalized here)
        context: Joined place/service/author fields

    Returns:
        Non-empty text

    Raises:
        EmptyContentError: if no segment is present
    """
    if not isinstance(record, Record):
        record = Record.model_validate(record)
    context = context or EntityContext()
    kind = RecordKind(kind)

    if kind == RecordKind.ANNOTATION:
        return _annotation(record, context)
    if kind == RecordKind.QUESTION:
        return _question(record, context)

    template = _RECOMMENDATION_TEMPLATES.get(record.content_type, _generic_recommendation)
    return template(record, context)


def render_place_text(name: str, address: Optional[str] = None, features: Optional[Dict[str, Any]] = None) -> str:
    """Render a place (name, address, features) for embedding"""
    return _join([
        _labelled("Place", name),
        _labelled("Address", address),
        _labelled("Features", _flatten(features)),
    ])


def render_search_query(query: str) -> str:
    """Wrap a raw user query in the search template"""
    query = (query or "").strip()
    if not query:
        raise EmptyContentError("Search query is empty")
    return SEARCH_QUERY_TEMPLATE.format(query=query)
