"""Durable lease/ack journal for embedding tasks.

The in-memory queue stays the scheduler; this table only remembers which
tasks were accepted so a restart can pick up what it lost. Rows move
``pending -> leased -> (deleted | pending | dead)``.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

from psycopg2 import extras

from rekky.core.db import transaction
from rekky.models import EmbeddingTask

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_LEASED = "leased"
STATUS_DEAD = "dead"

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS embedding_tasks (
    id TEXT PRIMARY KEY,
    kind TEXT NOT NULL,
    record_id BIGINT NOT NULL,
    payload JSONB NOT NULL DEFAULT '{}'::jsonb,
    priority TEXT NOT NULL DEFAULT 'normal',
    retry_count INTEGER NOT NULL DEFAULT 0,
    max_retries INTEGER NOT NULL DEFAULT 3,
    status TEXT NOT NULL DEFAULT 'pending',
    last_error TEXT,
    lease_expires_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""

_INSERT_TASK = """
INSERT INTO embedding_tasks (id, kind, record_id, payload, priority, retry_count, max_retries, status, created_at)
VALUES (
    %(id)s,
    %(kind)s,
    %(record_id)s,
    %(payload)s,
    %(priority)s,
    %(retry_count)s,
    %(max_retries)s,
    'pending',
    %(created_at)s
)
ON CONFLICT (id) DO NOTHING;
"""

_LEASE_TASK = """
UPDATE embedding_tasks
SET status = 'leased',
    lease_expires_at = NOW() + make_interval(secs => %(lease_seconds)s),
    updated_at = NOW()
WHERE id = %(id)s;
"""

_RELEASE_TASK = """
UPDATE embedding_tasks
SET status = 'pending',
    retry_count = %(retry_count)s,
    last_error = %(error)s,
    lease_expires_at = NULL,
    updated_at = NOW()
WHERE id = %(id)s;
"""

_BURY_TASK = """
UPDATE embedding_tasks
SET status = 'dead',
    retry_count = %(retry_count)s,
    last_error = %(error)s,
    lease_expires_at = NULL,
    updated_at = NOW()
WHERE id = %(id)s;
"""

_CLAIM_PENDING = """
UPDATE embedding_tasks
SET status = 'leased',
    lease_expires_at = NOW() + make_interval(secs => %(lease_seconds)s),
    updated_at = NOW()
WHERE id IN (
    SELECT id FROM embedding_tasks
    WHERE status = 'pending'
       OR (status = 'leased' AND lease_expires_at < NOW())
    ORDER BY created_at
    LIMIT %(limit)s
    FOR UPDATE SKIP LOCKED
)
RETURNING *;
"""

_REVIVE_DEAD = """
UPDATE embedding_tasks
SET status = 'pending',
    retry_count = 0,
    lease_expires_at = NULL,
    updated_at = NOW()
WHERE id IN (
    SELECT id FROM embedding_tasks
    WHERE status = 'dead'
    ORDER BY created_at
    LIMIT %(limit)s
)
RETURNING id;
"""


def task_from_row(row: Mapping[str, Any]) -> EmbeddingTask:
    return EmbeddingTask(
        id=row["id"],
        kind=row["kind"],
        record_id=row["record_id"],
        data=dict(row.get("payload") or {}),
        retry_count=int(row.get("retry_count") or 0),
        max_retries=int(row.get("max_retries") or 0),
        priority=row.get("priority") or "normal",
        created_at=row["created_at"],
    )


class PostgresTaskJournal:
    """Persists embedding tasks in ``embedding_tasks`` with lease/ack semantics."""

    def ensure_table(self) -> None:
        with transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(_CREATE_TABLE)

    def _execute(self, query: str, params: Dict[str, Any]) -> None:
        with transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)

    def record(self, task: EmbeddingTask) -> None:
        self._execute(
            _INSERT_TASK,
            {
                "id": task.id,
                "kind": task.kind,
                "record_id": task.record_id,
                "payload": extras.Json(task.data),
                "priority": task.priority,
                "retry_count": task.retry_count,
                "max_retries": task.max_retries,
                "created_at": task.created_at,
            },
        )

    def lease(self, task_id: str, lease_seconds: float) -> None:
        self._execute(_LEASE_TASK, {"id": task_id, "lease_seconds": lease_seconds})

    def ack(self, task_id: str) -> None:
        self._execute("DELETE FROM embedding_tasks WHERE id = %(id)s;", {"id": task_id})

    def release(self, task: EmbeddingTask, error: str) -> None:
        self._execute(_RELEASE_TASK, {"id": task.id, "retry_count": task.retry_count, "error": error})

    def bury(self, task: EmbeddingTask, error: str) -> None:
        self._execute(_BURY_TASK, {"id": task.id, "retry_count": task.retry_count, "error": error})

    def claim_pending(self, lease_seconds: float, limit: int = 1000) -> List[EmbeddingTask]:
        """Lease every pending (or lease-expired) row and return them oldest first."""
        with transaction() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(_CLAIM_PENDING, {"lease_seconds": lease_seconds, "limit": limit})
                rows = cur.fetchall()
        tasks = sorted((task_from_row(row) for row in rows), key=lambda task: task.created_at)
        if tasks:
            logger.info("Claimed %d journaled embedding tasks", len(tasks))
        return tasks

    def revive_dead(self, limit: Optional[int] = None) -> int:
        with transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(_REVIVE_DEAD, {"limit": limit})
                rows = cur.fetchall()
        logger.info("Returned %d dead embedding tasks to pending", len(rows))
        return len(rows)
