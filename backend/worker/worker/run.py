"""Curation worker entrypoint.

Each pass refreshes the "Curated for You" collection of every actor whose
engagement changed since their collection was last written. Runs forever
unless --once is given.
"""
from __future__ import annotations

import argparse
import logging
import time
from typing import Optional, Sequence

from engagement.collection_manager import CollectionManager
from engagement.config import get_settings
from engagement.curation import CurationEngine
from engagement.db import get_engine
from engagement.errors import CoreError

logger = logging.getLogger("worker")


def run_once(curation: CurationEngine) -> int:
    """Refresh every stale actor. Returns how many were refreshed."""
    refreshed = 0
    for actor_id in curation.stale_actors():
        try:
            curation.refresh(actor_id)
        except CoreError as e:
            # One actor failing must not stop the pass; it stays stale for next time.
            logger.warning("Curation failed for actor %s: %s", actor_id, e)
            continue
        refreshed += 1
    return refreshed


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Refresh curated collections.")
    parser.add_argument("--once", action="store_true", help="run a single pass and exit")
    args = parser.parse_args(argv)

    settings = get_settings()
    logging.basicConfig(level=settings.log_level)

    engine = get_engine()
    curation = CurationEngine(
        engine,
        CollectionManager(engine),
        limit=settings.curated_limit,
        top_topics=settings.curated_top_topics,
    )

    logger.info("Worker started (interval=%ss)", settings.worker_interval)
    while True:
        refreshed = run_once(curation)
        logger.info("Curation pass refreshed %d actors", refreshed)
        if args.once:
            return
        time.sleep(settings.worker_interval)


if __name__ == "__main__":
    main()
