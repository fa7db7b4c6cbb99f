"""Rolling retention window for tracked-link telemetry.

The job runs in two phases and the order matters:

1. Prune ``TrackedLink`` rows whose Visit no longer exists. The links table
   has no enforced foreign key, so nothing else removes them.
2. Delete Visits older than the retention window, together with their
   links in the same transaction. Phase 1 is what catches links whose Visit
   disappeared any other way.

Both phases are plain predicate DELETEs (existence and timestamp), so the
job can run while ingestion is writing: a Visit created mid-run is newer
than the threshold and is never touched.

Usage::

    from retention import RetentionJob
    from database import SessionLocal

    result = RetentionJob(SessionLocal).run()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

import crud
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


@dataclass
class RetentionResult:
    orphans_deleted: int
    visits_deleted: int


class RetentionJob:
    """Two-phase cleanup over a session factory.

    Each phase opens its own session and commits independently; a failure
    in phase 2 leaves phase 1's work in place.
    """

    def __init__(self, session_factory: Callable[[], Session], retention_days: int = crud.RETENTION_DAYS):
        self.session_factory = session_factory
        self.retention_days = retention_days

    def prune_orphans(self) -> int:
        with self.session_factory() as db:
            deleted = crud.delete_orphaned_links(db)
        logger.info("Retention: pruned %d orphaned links", deleted)
        return deleted

    def delete_expired_visits(self, now: datetime | None = None) -> int:
        threshold = crud.window_start(now, self.retention_days)
        with self.session_factory() as db:
            deleted = crud.delete_old_visits(db, now=now, days=self.retention_days)
        logger.info("Retention: deleted %d visits older than %s", deleted, threshold.isoformat())
        return deleted

    def run(self, now: datetime | None = None) -> RetentionResult:
        orphans = self.prune_orphans()
        visits = self.delete_expired_visits(now)
        return RetentionResult(orphans_deleted=orphans, visits_deleted=visits)


def main() -> None:
    """Entry point for an external scheduler (cron, systemd timer, ...)."""
    import database

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
    )
    database.create_tables()
    result = RetentionJob(database.SessionLocal).run()
    logger.info("Retention finished: %s", result)


if __name__ == "__main__":
    main()
