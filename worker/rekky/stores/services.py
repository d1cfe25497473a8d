"""Persistence for services and their observed name variants."""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Mapping, Optional

from psycopg2 import extras

from rekky.core import db
from rekky.etl.normalize import DEFAULT_PHONE_REGION, normalize_email, normalize_phone_number
from rekky.models import Service, ServiceNameVariant

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = (
    "phone_number",
    "email",
    "name",
    "service_type",
    "business_name",
    "address",
    "website",
    "metadata",
)

_INSERT_SERVICE = """
INSERT INTO services (
    phone_number,
    email,
    name,
    service_type,
    business_name,
    address,
    website,
    metadata
) VALUES (
    %(phone_number)s,
    %(email)s,
    %(name)s,
    %(service_type)s,
    %(business_name)s,
    %(address)s,
    %(website)s,
    %(metadata)s
)
RETURNING id;
"""

_INSERT_NAME = """
INSERT INTO service_names (service_id, name, frequency, confidence, last_seen)
VALUES (%(service_id)s, %(name)s, 1, %(confidence)s, NOW());
"""

_BUMP_NAME = """
UPDATE service_names
SET frequency = frequency + 1,
    confidence = GREATEST(confidence, %(confidence)s),
    last_seen = NOW()
WHERE id = %(id)s;
"""

_PICK_CANONICAL = """
SELECT name, frequency, confidence, (frequency * confidence) AS score
FROM service_names
WHERE service_id = %(service_id)s
ORDER BY score DESC, frequency DESC, confidence DESC
LIMIT 1;
"""

_SEARCH_BY_NAME = """
SELECT DISTINCT s.*
FROM services s
LEFT JOIN service_names sn ON s.id = sn.service_id
WHERE s.name ILIKE %(pattern)s ESCAPE '\\' OR sn.name ILIKE %(pattern)s ESCAPE '\\'
ORDER BY s.updated_at DESC
LIMIT %(limit)s;
"""

_INSERT_CONFLICT = """
INSERT INTO service_conflicts (service_id, submitted_name, submission, reasoning, created_at)
VALUES (%(service_id)s, %(submitted_name)s, %(submission)s, %(reasoning)s, NOW())
RETURNING id;
"""


def _escape_like(value: str) -> str:
    """Escape LIKE wildcards so user text only matches literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class ServiceStore:
    """SQL access to ``services`` / ``service_names``.

    An unbound store runs every call in its own pooled transaction. Inside
    ``with store.transaction() as tx`` all calls made through ``tx`` share
    one connection and commit or roll back together.
    """

    def __init__(self, connection=None, *, phone_region: Optional[str] = DEFAULT_PHONE_REGION) -> None:
        self._connection = connection
        self.phone_region = phone_region

    @contextmanager
    def transaction(self) -> Iterator["ServiceStore"]:
        if self._connection is not None:
            yield self
            return
        with db.transaction() as conn:
            yield ServiceStore(conn, phone_region=self.phone_region)

    @contextmanager
    def _cursor(self):
        with self.transaction() as tx:
            with tx._connection.cursor(cursor_factory=extras.RealDictCursor) as cur:
                yield cur

    def _fetch_one(self, query: str, params: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        with self._cursor() as cur:
            cur.execute(query, params)
            row = cur.fetchone()
        return dict(row) if row else None

    def _fetch_all(self, query: str, params: Mapping[str, Any]) -> List[Dict[str, Any]]:
        with self._cursor() as cur:
            cur.execute(query, params)
            rows = cur.fetchall()
        return [dict(row) for row in rows]

    # Lookups

    def get_service_by_id(self, service_id: int) -> Optional[Service]:
        row = self._fetch_one("SELECT * FROM services WHERE id = %(id)s;", {"id": service_id})
        return Service.from_row(row) if row else None

    def get_service_by_phone(self, phone_number: str) -> Optional[Service]:
        normalized = normalize_phone_number(phone_number, self.phone_region)
        if not normalized:
            return None
        row = self._fetch_one("SELECT * FROM services WHERE phone_number = %(phone)s;", {"phone": normalized})
        return Service.from_row(row) if row else None

    def get_service_by_email(self, email: str) -> Optional[Service]:
        normalized = normalize_email(email)
        if not normalized:
            return None
        row = self._fetch_one("SELECT * FROM services WHERE email = %(email)s;", {"email": normalized})
        return Service.from_row(row) if row else None

    def get_service_with_names(self, service_id: int) -> Optional[Service]:
        service = self.get_service_by_id(service_id)
        if service is None:
            return None
        rows = self._fetch_all(
            "SELECT * FROM service_names WHERE service_id = %(id)s ORDER BY frequency DESC, confidence DESC;",
            {"id": service_id},
        )
        service.names = [ServiceNameVariant.from_row(row) for row in rows]
        return service

    def search_services_by_name(self, query: str, limit: int = 10) -> List[Service]:
        rows = self._fetch_all(_SEARCH_BY_NAME, {"pattern": f"%{_escape_like(query)}%", "limit": limit})
        return [Service.from_row(row) for row in rows]

    def find_services_by_phone_suffix(self, suffix: str, exclude_phone: Optional[str] = None) -> List[Service]:
        rows = self._fetch_all(
            "SELECT * FROM services WHERE phone_number LIKE %(pattern)s AND phone_number IS DISTINCT FROM %(exclude)s;",
            {"pattern": f"%{suffix}", "exclude": exclude_phone},
        )
        return [Service.from_row(row) for row in rows]

    def count_recommendations(self, service_id: int) -> int:
        row = self._fetch_one(
            "SELECT COUNT(*) AS count FROM recommendations WHERE service_id = %(id)s;", {"id": service_id}
        )
        return int(row["count"]) if row else 0

    # Writes

    def create_service(self, data: Mapping[str, Any]) -> int:
        """Insert a service and seed its first name variant; returns the new id."""
        phone = normalize_phone_number(data.get("phone_number"), self.phone_region) or None
        email = normalize_email(data.get("email")) or None
        if not phone and not email:
            raise ValueError("Service must have either phone number or email")

        params = {
            "phone_number": phone,
            "email": email,
            "name": data["name"],
            "service_type": data.get("service_type"),
            "business_name": data.get("business_name"),
            "address": data.get("address"),
            "website": data.get("website"),
            "metadata": extras.Json(data.get("metadata") or {}),
        }
        with self.transaction() as tx:
            row = tx._fetch_one(_INSERT_SERVICE, params)
            service_id = row["id"]
            with tx._cursor() as cur:
                cur.execute(_INSERT_NAME, {"service_id": service_id, "name": data["name"], "confidence": 1.0})
        logger.debug("Created service %s (%s)", service_id, data["name"])
        return service_id

    def update_service(self, service_id: int, updates: Mapping[str, Any]) -> bool:
        assignments: List[str] = []
        params: Dict[str, Any] = {"id": service_id}
        for field_name in UPDATABLE_FIELDS:
            if field_name not in updates:
                continue
            value = updates[field_name]
            if field_name == "phone_number":
                value = normalize_phone_number(value, self.phone_region) or None
            elif field_name == "email":
                value = normalize_email(value) or None
            elif field_name == "metadata":
                value = extras.Json(value or {})
            assignments.append(f"{field_name} = %({field_name})s")
            params[field_name] = value

        if not assignments:
            return False

        assignments.append("updated_at = NOW()")
        query = f"UPDATE services SET {', '.join(assignments)} WHERE id = %(id)s RETURNING id;"
        return self._fetch_one(query, params) is not None

    def add_service_name(self, service_id: int, name: str, confidence: float = 1.0) -> None:
        """Record a sighting of ``name``; repeats (case-insensitive) bump frequency."""
        with self.transaction() as tx:
            existing = tx._fetch_one(
                "SELECT id, frequency FROM service_names "
                "WHERE service_id = %(service_id)s AND LOWER(name) = LOWER(%(name)s);",
                {"service_id": service_id, "name": name},
            )
            with tx._cursor() as cur:
                if existing:
                    cur.execute(_BUMP_NAME, {"id": existing["id"], "confidence": confidence})
                else:
                    cur.execute(_INSERT_NAME, {"service_id": service_id, "name": name, "confidence": confidence})

    def update_canonical_name(self, service_id: int) -> Optional[str]:
        """Set the service name to the variant with the best frequency x confidence."""
        with self.transaction() as tx:
            best = tx._fetch_one(_PICK_CANONICAL, {"service_id": service_id})
            if not best:
                return None
            with tx._cursor() as cur:
                cur.execute(
                    "UPDATE services SET name = %(name)s, updated_at = NOW() WHERE id = %(id)s;",
                    {"name": best["name"], "id": service_id},
                )
        return best["name"]

    def reassign_service_names(self, from_id: int, to_id: int) -> None:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE service_names SET service_id = %(to_id)s WHERE service_id = %(from_id)s;",
                {"from_id": from_id, "to_id": to_id},
            )

    def reassign_service_references(self, from_id: int, to_id: int) -> None:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE recommendations SET service_id = %(to_id)s WHERE service_id = %(from_id)s;",
                {"from_id": from_id, "to_id": to_id},
            )

    def delete_service(self, service_id: int) -> None:
        with self._cursor() as cur:
            cur.execute("DELETE FROM services WHERE id = %(id)s;", {"id": service_id})

    def flag_conflict(
        self, service_id: int, submitted_name: str, submission: Mapping[str, Any], reasoning: str
    ) -> int:
        """Queue a same-identifier/different-name submission for manual review."""
        row = self._fetch_one(
            _INSERT_CONFLICT,
            {
                "service_id": service_id,
                "submitted_name": submitted_name,
                "submission": extras.Json(dict(submission)),
                "reasoning": reasoning,
            },
        )
        return row["id"]
