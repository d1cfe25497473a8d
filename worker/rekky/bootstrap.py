"""Composition root: wires settings, stores, the resolver and the embedding queue."""

import logging
from dataclasses import dataclass
from typing import Optional

from rekky.core import db
from rekky.core.config import Settings, get_settings
from rekky.services.embedding_queue import EmbeddingTaskQueue, QueueConfig
from rekky.services.identity import ServiceIdentityResolver
from rekky.services.task_journal import PostgresTaskJournal
from rekky.stores.records import RecordStore
from rekky.stores.services import ServiceStore
from rekky.vendors.openai_embeddings import EmbeddingGenerator

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    settings: Settings
    service_store: ServiceStore
    record_store: RecordStore
    resolver: ServiceIdentityResolver
    queue: EmbeddingTaskQueue

    def close(self, wait: bool = True) -> None:
        self.queue.shutdown(wait=wait)
        db.close_pool()


def build_context(settings: Optional[Settings] = None, *, recover: bool = False) -> AppContext:
    """Wire the worker's collaborators.

    Only the long-running worker passes ``recover=True``; one-shot CLI jobs
    must not claim journal rows that a live worker is about to run.
    """
    settings = settings or get_settings()

    service_store = ServiceStore(phone_region=settings.default_phone_region)
    record_store = RecordStore()
    resolver = ServiceIdentityResolver(service_store, conflict_policy=settings.conflict_policy)

    journal = None
    if settings.queue_durable:
        journal = PostgresTaskJournal()
        journal.ensure_table()

    queue = EmbeddingTaskQueue(
        record_store,
        EmbeddingGenerator(settings),
        config=QueueConfig.from_settings(settings),
        journal=journal,
    )
    if journal is not None and recover:
        queue.recover()

    logger.info(
        "Context ready: conflict_policy=%s max_concurrent=%d durable=%s",
        settings.conflict_policy,
        settings.queue_max_concurrent,
        settings.queue_durable,
    )
    return AppContext(
        settings=settings,
        service_store=service_store,
        record_store=record_store,
        resolver=resolver,
        queue=queue,
    )
