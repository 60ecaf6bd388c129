"""
Record Store

Boundary to the relational store that owns records, entities and the social
graph. The embedding queue reads records and writes vectors through it; the
searcher runs nearest-neighbour queries through it.

``InMemoryRecordStore`` is a numpy-backed implementation used by tests and
local runs. ``PgVectorRecordStore`` (pg_store.py) is the PostgreSQL one.
"""

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set, Union

import numpy as np

from .errors import RecordNotFoundError
from .schemas.records import (
    EntityContext,
    Record,
    RecordKind,
    SearchFilters,
    SearchHit,
)

logger = logging.getLogger("rekky.common.record_store")


class SocialGraph(ABC):
    """Follow edges and friend-group membership."""

    @abstractmethod
    def followed_user_ids(self, user_id: str) -> Set[str]:
        """Users that ``user_id`` follows"""

    @abstractmethod
    def group_member_ids(self, group_id: str) -> Set[str]:
        """Members of a friend group"""


class RecordStore(ABC):
    """Interface every record store must implement."""

    @abstractmethod
    def fetch_full_record(self, kind: RecordKind, record_id: str) -> Record:
        """Load a record. Raises RecordNotFoundError if it no longer exists."""

    @abstractmethod
    def persist_vector(self, kind: RecordKind, record_id: str, vector: List[float]) -> None:
        """Write a record's embedding and stamp ``updated_at``."""

    @abstractmethod
    def fetch_entity_context(
        self,
        place_id: Optional[str] = None,
        service_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> EntityContext:
        """Join place, service and author fields for text synthesis."""

    @abstractmethod
    def nearest(
        self,
        query_vector: List[float],
        *,
        kind: RecordKind = RecordKind.RECOMMENDATION,
        limit: int = 10,
        threshold: Optional[float] = None,
        filters: Optional[SearchFilters] = None,
    ) -> List[SearchHit]:
        """Nearest records by cosine similarity, descending.

        All predicates (``similarity > threshold`` and ``filters``) are applied
        before ``limit``. ``threshold=None`` disables the similarity cut.
        """

    @abstractmethod
    def list_record_ids(self, kind: RecordKind) -> List[str]:
        """Ids of every record of a kind (bulk regeneration)."""


# ============================================================================
# In-memory implementation
# ============================================================================

class InMemorySocialGraph(SocialGraph):
    def __init__(self):
        self._follows: Dict[str, Set[str]] = {}
        self._groups: Dict[str, Set[str]] = {}

    def follow(self, follower_id: str, following_id: str) -> None:
        self._follows.setdefault(follower_id, set()).add(following_id)

    def add_group_member(self, group_id: str, user_id: str) -> None:
        self._groups.setdefault(group_id, set()).add(user_id)

    def followed_user_ids(self, user_id: str) -> Set[str]:
        return set(self._follows.get(user_id, set()))

    def group_member_ids(self, group_id: str) -> Set[str]:
        return set(self._groups.get(group_id, set()))


def cosine_similarity(query: np.ndarray, vector: Iterable[float]) -> float:
    """1 - cosine distance, as pgvector's ``<=>`` operator defines it"""
    v = np.asarray(vector, dtype=float)
    norm = float(np.linalg.norm(query) * np.linalg.norm(v))
    if norm == 0.0:
        return 0.0
    return float(np.dot(query, v) / norm)


class InMemoryRecordStore(RecordStore):
    """
    Dictionary-backed record store.

    Thread-safe: the embedding queue writes vectors from worker threads while
    searches read them.
    """

    def __init__(self, social_graph: Optional[SocialGraph] = None):
        self.social_graph = social_graph or InMemorySocialGraph()
        self._records: Dict[RecordKind, Dict[str, Record]] = {kind: {} for kind in RecordKind}
        self._places: Dict[str, Dict[str, Any]] = {}
        self._services: Dict[str, Dict[str, Any]] = {}
        self._users: Dict[str, str] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Fixtures
    # ------------------------------------------------------------------

    def add_record(self, kind: Union[RecordKind, str], record: Union[Record, Dict[str, Any]]) -> Record:
        if not isinstance(record, Record):
            record = Record.model_validate(record)
        with self._lock:
            self._records[RecordKind(kind)][record.id] = record
        return record

    def add_place(self, place_id: str, name: str, address: Optional[str] = None,
                  lat: Optional[float] = None, lng: Optional[float] = None,
                  features: Optional[Dict[str, Any]] = None) -> None:
        self._places[place_id] = {
            "name": name, "address": address, "lat": lat, "lng": lng,
            "features": features or {},
        }

    def add_service(self, service_id: str, name: str, service_type: Optional[str] = None,
                    business_name: Optional[str] = None, address: Optional[str] = None) -> None:
        self._services[service_id] = {
            "name": name, "service_type": service_type,
            "business_name": business_name, "address": address,
        }

    def add_user(self, user_id: str, display_name: str) -> None:
        self._users[user_id] = display_name

    def get_record(self, kind: Union[RecordKind, str], record_id: str) -> Optional[Record]:
        with self._lock:
            return self._records[RecordKind(kind)].get(record_id)

    # ------------------------------------------------------------------
    # RecordStore
    # ------------------------------------------------------------------

    def fetch_full_record(self, kind: RecordKind, record_id: str) -> Record:
        record = self.get_record(kind, record_id)
        if record is None:
            raise RecordNotFoundError(f"{RecordKind(kind).value} {record_id} not found")
        return record.model_copy(deep=True)

    def persist_vector(self, kind: RecordKind, record_id: str, vector: List[float]) -> None:
        with self._lock:
            records = self._records[RecordKind(kind)]
            record = records.get(record_id)
            if record is None:
                raise RecordNotFoundError(f"{RecordKind(kind).value} {record_id} not found")
            records[record_id] = record.model_copy(update={
                "embedding": list(vector),
                "updated_at": datetime.now(timezone.utc),
            })

    def fetch_entity_context(
        self,
        place_id: Optional[str] = None,
        service_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> EntityContext:
        context = EntityContext()
        place = self._places.get(place_id) if place_id else None
        if place:
            context.place_name = place["name"]
            context.place_address = place["address"]
            context.place_features = dict(place["features"])
        service = self._services.get(service_id) if service_id else None
        if service:
            context.service_name = service["name"]
            context.service_type = service["service_type"]
            context.business_name = service["business_name"]
            context.service_address = service["address"]
        if user_id:
            context.author_name = self._users.get(user_id)
        return context

    def _allowed_authors(self, filters: SearchFilters) -> Optional[Set[str]]:
        """Author ids permitted by the social/group predicates, None if unrestricted"""
        allowed: Optional[Set[str]] = None
        if filters.viewer_id is not None:
            allowed = self.social_graph.followed_user_ids(filters.viewer_id) | {filters.viewer_id}
        if filters.group_ids:
            members: Set[str] = set()
            for group_id in filters.group_ids:
                members |= self.social_graph.group_member_ids(group_id)
            allowed = members if allowed is None else allowed & members
        return allowed

    def _matches(self, record: Record, filters: SearchFilters, allowed: Optional[Set[str]]) -> bool:
        if filters.content_type and record.content_type.value != filters.content_type:
            return False
        if filters.answers_only and record.question_id is None:
            return False
        if allowed is not None and record.user_id not in allowed:
            return False
        return True

    def similarity(self, query_vector: List[float], record_vector: List[float]) -> float:
        """Similarity exactly as ``nearest`` computes it"""
        return cosine_similarity(np.asarray(query_vector, dtype=float), record_vector)

    def nearest(
        self,
        query_vector: List[float],
        *,
        kind: RecordKind = RecordKind.RECOMMENDATION,
        limit: int = 10,
        threshold: Optional[float] = None,
        filters: Optional[SearchFilters] = None,
    ) -> List[SearchHit]:
        filters = filters or SearchFilters()
        allowed = self._allowed_authors(filters)
        query = np.asarray(query_vector, dtype=float)

        with self._lock:
            candidates = list(self._records[RecordKind(kind)].values())

        scored = []
        for record in candidates:
            if record.embedding is None:
                continue
            if not self._matches(record, filters, allowed):
                continue
            score = cosine_similarity(query, record.embedding)
            if threshold is not None and not score > threshold:
                continue
            scored.append((score, record))

        scored.sort(key=lambda pair: pair[0], reverse=True)
        logger.debug("nearest(%s): %d candidates, %d above threshold", RecordKind(kind).value, len(candidates), len(scored))
        return [self._to_hit(record, score) for score, record in scored[:limit]]

    def list_record_ids(self, kind: RecordKind) -> List[str]:
        with self._lock:
            return list(self._records[RecordKind(kind)].keys())

    def _to_hit(self, record: Record, similarity: float) -> SearchHit:
        place = self._places.get(record.place_id, {}) if record.place_id else {}
        service = self._services.get(record.service_id, {}) if record.service_id else {}
        return SearchHit(
            record_id=record.id,
            similarity=similarity,
            content_type=record.content_type.value,
            title=record.title,
            notes=record.notes,
            rating=record.rating,
            labels=list(record.labels),
            user_id=record.user_id,
            author_name=self._users.get(record.user_id) or "Anonymous",
            place_id=record.place_id,
            place_name=place.get("name"),
            place_address=place.get("address"),
            place_lat=place.get("lat"),
            place_lng=place.get("lng"),
            service_id=record.service_id,
            service_name=service.get("name"),
            service_type=service.get("service_type"),
            business_name=service.get("business_name"),
            service_address=service.get("address"),
            question_id=record.question_id,
            visit_date=record.visit_date,
            created_at=record.created_at,
            content_data=dict(record.content_data),
        )
