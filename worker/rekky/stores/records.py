"""Record lookups and embedding write-back for the embedding queue."""

import logging
from typing import Any, Dict, List, Optional, Sequence

from psycopg2 import extras

from rekky.core.db import transaction
from rekky.models import RECORD_KINDS

logger = logging.getLogger(__name__)

_TABLES = {
    "annotation": "annotations",
    "recommendation": "recommendations",
}


class RecordNotFoundError(LookupError):
    """Raised when a record referenced by an embedding task no longer exists."""


def _table_for(kind: str) -> str:
    try:
        return _TABLES[kind]
    except KeyError:
        raise ValueError(f"Unknown record kind {kind!r}; expected one of {', '.join(RECORD_KINDS)}") from None


def to_vector_literal(vector: Sequence[float]) -> str:
    """Render a vector the way pgvector parses it: ``[0.1,0.2,...]``."""
    return "[" + ",".join(repr(float(value)) for value in vector) + "]"


class RecordStore:
    """Reads records plus their place/service/user context; writes embeddings back."""

    def _fetch_one(self, query: str, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with transaction() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(query, params)
                row = cur.fetchone()
        return dict(row) if row else None

    def get_record(self, kind: str, record_id: Any) -> Dict[str, Any]:
        table = _table_for(kind)
        row = self._fetch_one(f"SELECT * FROM {table} WHERE id = %(id)s;", {"id": record_id})
        if row is None:
            raise RecordNotFoundError(f"{kind} {record_id} not found")
        return row

    def get_place(self, place_id: Any) -> Optional[Dict[str, Any]]:
        return self._fetch_one("SELECT * FROM places WHERE id = %(id)s;", {"id": place_id})

    def get_service(self, service_id: Any) -> Optional[Dict[str, Any]]:
        return self._fetch_one("SELECT * FROM services WHERE id = %(id)s;", {"id": service_id})

    def get_user(self, user_id: Any) -> Optional[Dict[str, Any]]:
        return self._fetch_one("SELECT display_name, email FROM users WHERE id = %(id)s;", {"id": user_id})

    def write_embedding(self, kind: str, record_id: Any, vector: Sequence[float]) -> None:
        table = _table_for(kind)
        with transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"UPDATE {table} SET embedding = %(embedding)s, updated_at = NOW() WHERE id = %(id)s;",
                    {"embedding": to_vector_literal(vector), "id": record_id},
                )
        logger.info("Updated %s %s with embedding", kind, record_id)

    def list_record_ids(self, kind: str, missing_only: bool = False) -> List[Any]:
        table = _table_for(kind)
        query = f"SELECT id FROM {table}"
        if missing_only:
            query += " WHERE embedding IS NULL"
        query += " ORDER BY id;"
        with transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(query, {})
                rows = cur.fetchall()
        return [row[0] for row in rows]
