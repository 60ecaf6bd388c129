"""
PostgreSQL / pgvector Record Store

Every nearest-neighbour search is one parameterized query: similarity cut,
content type, follow and friend-group predicates all live in the WHERE clause
so they are applied before LIMIT.
"""

import json
import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Tuple

from .errors import RecordNotFoundError
from .record_store import RecordStore
from .schemas.records import EntityContext, Record, RecordKind, SearchFilters, SearchHit

logger = logging.getLogger("rekky.common.pg_store")

# Table names are interpolated into SQL, so only these are ever used
TABLES = {
    RecordKind.ANNOTATION: "annotations",
    RecordKind.RECOMMENDATION: "recommendations",
    RecordKind.QUESTION: "questions",
}

_SELECT_COLUMNS = {
    RecordKind.RECOMMENDATION: """
        r.id, r.user_id, r.content_type, r.title,
        COALESCE(r.notes, r.description, r.content_data->>'notes') AS notes,
        r.rating, r.labels, r.content_data, r.place_id, r.service_id,
        r.question_id, r.visit_date, r.created_at,
        p.name AS place_name, p.address AS place_address, p.lat AS place_lat, p.lng AS place_lng,
        s.name AS service_name, s.service_type, s.business_name, s.address AS service_address,
        u.display_name AS user_name""",
    RecordKind.ANNOTATION: """
        r.id, r.user_id, 'place' AS content_type, '' AS title, r.notes,
        r.rating, r.labels, r.metadata AS content_data, r.place_id, NULL AS service_id,
        NULL AS question_id, r.visit_date, r.created_at,
        p.name AS place_name, p.address AS place_address, p.lat AS place_lat, p.lng AS place_lng,
        NULL AS service_name, NULL AS service_type, NULL AS business_name, NULL AS service_address,
        u.display_name AS user_name""",
    RecordKind.QUESTION: """
        r.id, r.user_id, 'unclear' AS content_type, '' AS title, r.text AS notes,
        NULL AS rating, r.labels, r.metadata AS content_data, NULL AS place_id, NULL AS service_id,
        NULL AS question_id, NULL AS visit_date, r.created_at,
        NULL AS place_name, NULL AS place_address, NULL AS place_lat, NULL AS place_lng,
        NULL AS service_name, NULL AS service_type, NULL AS business_name, NULL AS service_address,
        u.display_name AS user_name""",
}

_JOINS = {
    RecordKind.RECOMMENDATION: """
        LEFT JOIN places p ON p.id = r.place_id
        LEFT JOIN services s ON s.id = r.service_id
        LEFT JOIN users u ON u.id = r.user_id""",
    RecordKind.ANNOTATION: """
        LEFT JOIN places p ON p.id = r.place_id
        LEFT JOIN users u ON u.id = r.user_id""",
    RecordKind.QUESTION: """
        LEFT JOIN users u ON u.id = r.user_id""",
}


def vector_literal(vector: List[float]) -> str:
    """pgvector text form: '[0.1,0.2,...]'"""
    return "[" + ",".join(repr(float(v)) for v in vector) + "]"


def build_nearest_query(
    query_vector: List[float],
    *,
    kind: RecordKind = RecordKind.RECOMMENDATION,
    limit: int = 10,
    threshold: Optional[float] = None,
    filters: Optional[SearchFilters] = None,
) -> Tuple[str, Dict[str, Any]]:
    """Build the nearest-neighbour SQL and its named parameters."""
    kind = RecordKind(kind)
    filters = filters or SearchFilters()
    params: Dict[str, Any] = {"vec": vector_literal(query_vector), "limit": int(limit)}

    where = ["r.embedding IS NOT NULL"]
    if threshold is not None:
        where.append("1 - (r.embedding <=> %(vec)s::vector) > %(threshold)s")
        params["threshold"] = float(threshold)
    if filters.content_type and kind == RecordKind.RECOMMENDATION:
        where.append("r.content_type = %(content_type)s")
        params["content_type"] = filters.content_type
    if filters.answers_only and kind == RecordKind.RECOMMENDATION:
        where.append("r.question_id IS NOT NULL")
    if filters.viewer_id is not None:
        where.append(
            "(r.user_id = %(viewer_id)s OR r.user_id IN "
            "(SELECT following_id FROM user_follows WHERE follower_id = %(viewer_id)s))"
        )
        params["viewer_id"] = filters.viewer_id
    if filters.group_ids:
        where.append(
            "r.user_id IN (SELECT user_id FROM friend_group_members "
            "WHERE group_id = ANY(%(group_ids)s))"
        )
        params["group_ids"] = list(filters.group_ids)

    sql = (
        f"SELECT {_SELECT_COLUMNS[kind].strip()},\n"
        f"        1 - (r.embedding <=> %(vec)s::vector) AS similarity\n"
        f"FROM {TABLES[kind]} r{_JOINS[kind]}\n"
        f"WHERE {' AND '.join(where)}\n"
        f"ORDER BY r.embedding <=> %(vec)s::vector\n"
        f"LIMIT %(limit)s"
    )
    return sql, params


def _row_to_hit(row: Dict[str, Any]) -> SearchHit:
    labels = row.get("labels") or []
    content_data = row.get("content_data") or {}
    if isinstance(content_data, str):
        content_data = json.loads(content_data)
    visit_date = row.get("visit_date")
    return SearchHit(
        record_id=str(row["id"]),
        similarity=float(row["similarity"]),
        content_type=row.get("content_type") or "unclear",
        title=row.get("title") or "",
        notes=row.get("notes") or "",
        rating=row.get("rating"),
        labels=list(labels),
        user_id=str(row["user_id"]) if row.get("user_id") is not None else None,
        author_name=row.get("user_name") or "Anonymous",
        place_id=str(row["place_id"]) if row.get("place_id") is not None else None,
        place_name=row.get("place_name"),
        place_address=row.get("place_address"),
        place_lat=row.get("place_lat"),
        place_lng=row.get("place_lng"),
        service_id=str(row["service_id"]) if row.get("service_id") is not None else None,
        service_name=row.get("service_name"),
        service_type=row.get("service_type"),
        business_name=row.get("business_name"),
        service_address=row.get("service_address"),
        question_id=str(row["question_id"]) if row.get("question_id") is not None else None,
        visit_date=visit_date.isoformat() if hasattr(visit_date, "isoformat") else visit_date,
        created_at=row.get("created_at"),
        content_data=content_data,
    )


class PgVectorRecordStore(RecordStore):
    """
    Record store over PostgreSQL with the pgvector extension.

    Opens a short-lived connection per call; callers run these methods in
    worker threads.
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("database_url is required")
        self._database_url = database_url

    @contextmanager
    def _cursor(self):
        """Dict-row cursor; commits on success, rolls back on error"""
        import psycopg2
        from psycopg2.extras import RealDictCursor

        conn = psycopg2.connect(self._database_url)
        try:
            with conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cur:
                    yield cur
        finally:
            conn.close()

    def fetch_full_record(self, kind: RecordKind, record_id: str) -> Record:
        table = TABLES[RecordKind(kind)]
        with self._cursor() as cur:
            cur.execute(f"SELECT * FROM {table} WHERE id = %s", (record_id,))
            row = cur.fetchone()
        if row is None:
            raise RecordNotFoundError(f"{RecordKind(kind).value} {record_id} not found")
        row = dict(row)
        row.pop("embedding", None)
        return Record.model_validate(row)

    def persist_vector(self, kind: RecordKind, record_id: str, vector: List[float]) -> None:
        table = TABLES[RecordKind(kind)]
        with self._cursor() as cur:
            cur.execute(
                f"UPDATE {table} SET embedding = %s::vector, updated_at = CURRENT_TIMESTAMP WHERE id = %s",
                (vector_literal(vector), record_id),
            )
            if cur.rowcount == 0:
                raise RecordNotFoundError(f"{RecordKind(kind).value} {record_id} not found")

    def fetch_entity_context(
        self,
        place_id: Optional[str] = None,
        service_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> EntityContext:
        context = EntityContext()
        with self._cursor() as cur:
            if place_id:
                cur.execute("SELECT name, address, metadata FROM places WHERE id = %s", (place_id,))
                place = cur.fetchone()
                if place:
                    context.place_name = place["name"]
                    context.place_address = place["address"]
                    context.place_features = place.get("metadata") or {}
            if service_id:
                cur.execute(
                    "SELECT name, service_type, business_name, address FROM services WHERE id = %s",
                    (service_id,),
                )
                service = cur.fetchone()
                if service:
                    context.service_name = service["name"]
                    context.service_type = service["service_type"]
                    context.business_name = service["business_name"]
                    context.service_address = service["address"]
            if user_id:
                cur.execute("SELECT display_name FROM users WHERE id = %s", (user_id,))
                user = cur.fetchone()
                if user:
                    context.author_name = user["display_name"]
        return context

    def nearest(
        self,
        query_vector: List[float],
        *,
        kind: RecordKind = RecordKind.RECOMMENDATION,
        limit: int = 10,
        threshold: Optional[float] = None,
        filters: Optional[SearchFilters] = None,
    ) -> List[SearchHit]:
        sql, params = build_nearest_query(
            query_vector, kind=kind, limit=limit, threshold=threshold, filters=filters
        )
        with self._cursor() as cur:
            cur.execute(sql, params)
            rows = cur.fetchall()
        logger.debug("nearest(%s) returned %d rows", RecordKind(kind).value, len(rows))
        return [_row_to_hit(row) for row in rows]

    def list_record_ids(self, kind: RecordKind) -> List[str]:
        table = TABLES[RecordKind(kind)]
        with self._cursor() as cur:
            cur.execute(f"SELECT id FROM {table} ORDER BY id")
            rows = cur.fetchall()
        return [str(row["id"]) for row in rows]
