"""CLI job that re-queues stored records for embedding generation."""

import argparse
import logging
from typing import Dict, Optional

from rekky.bootstrap import build_context
from rekky.models import RECORD_KINDS
from rekky.services.embedding_queue import EmbeddingTaskQueue
from rekky.stores.records import RecordStore

logger = logging.getLogger(__name__)


def regenerate_embeddings(
    record_store: RecordStore,
    queue: EmbeddingTaskQueue,
    *,
    kind: str = "recommendation",
    missing_only: bool = False,
) -> Dict[str, int]:
    """Queue every matching record at low priority; the queue fetches full rows itself."""
    record_ids = record_store.list_record_ids(kind, missing_only=missing_only)
    logger.info("Queuing embedding regeneration for %d %ss", len(record_ids), kind)

    success = 0
    failed = 0
    for record_id in record_ids:
        try:
            queue.enqueue(kind, record_id, {"id": record_id}, "low")
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to queue embedding regeneration for %s %s: %s", kind, record_id, exc)
            failed += 1
            continue
        success += 1

    logger.info("Embedding regeneration queued. Success: %d, Failed: %d", success, failed)
    return {"success": success, "failed": failed}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Re-queue records for embedding generation")
    parser.add_argument(
        "--kind",
        dest="kind",
        choices=RECORD_KINDS,
        default="recommendation",
        help="Record kind to regenerate",
    )
    parser.add_argument(
        "--missing-only",
        dest="missing_only",
        action="store_true",
        help="Only queue records that have no embedding yet",
    )
    parser.add_argument(
        "--wait",
        dest="wait",
        type=float,
        nargs="?",
        const=0.0,
        default=None,
        help="Block until the queue drains (optional timeout in seconds, 0 waits forever)",
    )
    return parser


def main(argv: Optional[list] = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)

    context = build_context()
    try:
        counts = regenerate_embeddings(
            context.record_store,
            context.queue,
            kind=args.kind,
            missing_only=args.missing_only,
        )
        print(f"success={counts['success']} failed={counts['failed']}")
        if args.wait is not None:
            drained = context.queue.join(timeout=args.wait or None)
            if not drained:
                logger.warning("Timed out waiting for the embedding queue: %s", context.queue.get_status())
        elif not context.settings.queue_durable:
            logger.warning("Exiting without --wait and without EMBED_QUEUE_DURABLE; queued tasks are dropped")
    finally:
        context.close(wait=args.wait is not None)


if __name__ == "__main__":
    main()
