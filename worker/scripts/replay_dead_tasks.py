"""Return dead-lettered embedding tasks to pending so the next recover() runs them."""

import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from rekky.core.db import close_pool  # noqa: E402
from rekky.services.task_journal import PostgresTaskJournal  # noqa: E402

logger = logging.getLogger(__name__)


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    parser = argparse.ArgumentParser(description="Replay dead embedding tasks")
    parser.add_argument("--limit", type=int, default=None, help="Maximum number of tasks to revive")
    args = parser.parse_args()

    try:
        revived = PostgresTaskJournal().revive_dead(limit=args.limit)
    finally:
        close_pool()
    print("Revived", revived, "dead embedding tasks")


if __name__ == "__main__":
    main()
