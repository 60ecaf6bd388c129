"""
Record Schemas

Core principle: every searchable record is rendered to text, and the embedding
is generated from that text. Records arrive in several historical shapes
(``notes`` vs ``description`` vs ``content_data.notes``, ``labels`` vs
``tags``); they are normalized once here so downstream code reads one shape.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field

from pydantic import BaseModel, Field, field_validator, model_validator

from ..embedding_service import EMBEDDING_DIMENSIONS, validate_embedding


# ============================================================================
# Enums
# ============================================================================

class RecordKind(str, Enum):
    """Which table a record (and its embedding task) belongs to"""
    ANNOTATION = "annotation"
    RECOMMENDATION = "recommendation"
    QUESTION = "question"


class ContentType(str, Enum):
    """What a recommendation is about"""
    PLACE = "place"
    SERVICE = "service"
    TIP = "tip"
    CONTACT = "contact"
    UNCLEAR = "unclear"


class Visibility(str, Enum):
    FRIENDS = "friends"
    PUBLIC = "public"


class Priority(str, Enum):
    """Embedding task priority"""
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


# ============================================================================
# Record
# ============================================================================

class Record(BaseModel):
    """A review, annotation, question or answer as stored by the platform."""
    id: str
    user_id: Optional[str] = None
    content_type: ContentType = Field(default=ContentType.UNCLEAR)
    title: str = ""
    notes: str = Field(default="", description="Free text, normalized from notes/description/content_data.notes")
    place_id: Optional[str] = None
    service_id: Optional[str] = None
    question_id: Optional[str] = Field(default=None, description="Set when the record answers a question")
    content_data: Dict[str, Any] = Field(default_factory=dict)
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    visibility: Visibility = Field(default=Visibility.FRIENDS)
    labels: List[str] = Field(default_factory=list)
    went_with: List[str] = Field(default_factory=list)
    visit_date: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    embedding: Optional[List[float]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def _normalize_shape(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)

        content_data = data.get("content_data") or {}
        notes = (
            data.get("notes")
            or data.get("description")
            or data.get("text")
            or (content_data.get("notes") if isinstance(content_data, dict) else None)
        )
        data["notes"] = notes or ""
        data.pop("description", None)
        data.pop("text", None)

        if not data.get("labels") and data.get("tags"):
            data["labels"] = data["tags"]
        data.pop("tags", None)

        for key in ("content_data", "metadata"):
            if data.get(key) is None:
                data[key] = {}
        for key in ("labels", "went_with"):
            if data.get(key) is None:
                data[key] = []
        if data.get("content_type") is None:
            data["content_type"] = ContentType.UNCLEAR
        for key in ("id", "user_id", "place_id", "service_id", "question_id"):
            if data.get(key) is not None:
                data[key] = str(data[key])
        visit_date = data.get("visit_date")
        if visit_date is not None and not isinstance(visit_date, str):
            data["visit_date"] = visit_date.isoformat()
        return data

    @field_validator("labels")
    @classmethod
    def _dedupe_labels(cls, labels: List[str]) -> List[str]:
        seen = []
        for label in labels:
            label = str(label).strip()
            if label and label not in seen:
                seen.append(label)
        return seen

    @field_validator("embedding")
    @classmethod
    def _check_embedding(cls, embedding: Optional[List[float]]) -> Optional[List[float]]:
        if embedding is not None and not validate_embedding(embedding, EMBEDDING_DIMENSIONS):
            raise ValueError(f"embedding must be {EMBEDDING_DIMENSIONS} finite numbers")
        return embedding

    @property
    def is_answer(self) -> bool:
        return self.question_id is not None


# ============================================================================
# Runtime objects (not persisted)
# ============================================================================

@dataclass
class EntityContext:
    """Denormalized place/service/author fields used for text synthesis"""
    place_name: Optional[str] = None
    place_address: Optional[str] = None
    place_features: Dict[str, Any] = field(default_factory=dict)
    service_name: Optional[str] = None
    service_type: Optional[str] = None
    business_name: Optional[str] = None
    service_address: Optional[str] = None
    author_name: Optional[str] = None


@dataclass
class SearchHit:
    """A single nearest-neighbour match, with its entity fields joined in"""
    record_id: str
    similarity: float
    content_type: str = ContentType.UNCLEAR.value
    title: str = ""
    notes: str = ""
    rating: Optional[int] = None
    labels: List[str] = field(default_factory=list)
    user_id: Optional[str] = None
    author_name: str = "Anonymous"
    place_id: Optional[str] = None
    place_name: Optional[str] = None
    place_address: Optional[str] = None
    place_lat: Optional[float] = None
    place_lng: Optional[float] = None
    service_id: Optional[str] = None
    service_name: Optional[str] = None
    service_type: Optional[str] = None
    business_name: Optional[str] = None
    service_address: Optional[str] = None
    question_id: Optional[str] = None
    visit_date: Optional[str] = None
    created_at: Optional[datetime] = None
    content_data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.record_id,
            "similarity": round(self.similarity, 4),
            "content_type": self.content_type,
            "title": self.title,
            "notes": self.notes,
            "rating": self.rating,
            "labels": list(self.labels),
            "user_id": self.user_id,
            "user_name": self.author_name,
            "place_id": self.place_id,
            "place_name": self.place_name,
            "service_id": self.service_id,
            "service_name": self.service_name,
            "question_id": self.question_id,
            "visit_date": self.visit_date,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class SearchFilters:
    """Predicates applied inside the nearest-neighbour query.

    ``viewer_id`` restricts results to authors the viewer follows (and the
    viewer's own records). ``group_ids`` restricts to members of any listed
    friend group.
    """
    content_type: Optional[str] = None
    viewer_id: Optional[str] = None
    group_ids: List[str] = field(default_factory=list)
    answers_only: bool = False  # only recommendations that answer a question
