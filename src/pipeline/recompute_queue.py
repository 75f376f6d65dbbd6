"""Recompute queue: pending work created when versioned artifacts go stale.

State lives in SQLite. Items move pending → processing → completed | failed;
a failed item goes back to pending while retry_count < max_retries and is
terminal afterwards. Every transition is a conditional UPDATE on the
current status, so concurrent workers can never claim the same item twice.
"""

import logging
import sqlite3
from datetime import datetime

from src.core import db
from src.core.errors import InvalidStateTransition
from src.core.schemas import QueueStatus, RecomputeItemType, RecomputeQueueItem

logger = logging.getLogger(__name__)


class RecomputeQueue:
    """Priority queue of recompute items (priority 1 is served first).

    Usage::

        queue = RecomputeQueue(conn)
        queue.enqueue("team", "user", "search_spec", triggered_by_version=4, priority=2)
        item = queue.claim_next()
        if item is not None:
            ...  # do the work
            queue.complete(item.id)
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        max_retries: int = 3,
        default_priority: int = 5,
    ) -> None:
        self._conn = conn
        self._max_retries = max_retries
        self._default_priority = default_priority

    def enqueue(
        self,
        team_id: str,
        user_id: str,
        item_type: RecomputeItemType,
        triggered_by_version: int,
        item_id: str | None = None,
        priority: int | None = None,
    ) -> RecomputeQueueItem:
        """Add a pending item, or return the identical one already pending.

        A unique index over pending items backs the lookup, so an insert
        that loses a race with another process resolves to the winner's row.
        """
        existing = db.find_pending_queue_item(
            self._conn, user_id, item_type, item_id, triggered_by_version
        )
        if existing is None:
            item = RecomputeQueueItem(
                team_id=team_id,
                user_id=user_id,
                item_type=item_type,
                item_id=item_id,
                triggered_by_version=triggered_by_version,
                priority=priority if priority is not None else self._default_priority,
                max_retries=self._max_retries,
            )
            new_id = db.insert_queue_item(self._conn, item)
            if new_id is not None:
                logger.info(
                    "Enqueued %s for user %s (v%d, priority %d) as item %d",
                    item_type, user_id, triggered_by_version, item.priority, new_id,
                )
                return self.get(new_id)
            existing = db.find_pending_queue_item(
                self._conn, user_id, item_type, item_id, triggered_by_version
            )
            if existing is None:
                msg = f"Pending {item_type} item for user {user_id} vanished during enqueue"
                raise InvalidStateTransition(msg)

        logger.debug(
            "Coalesced %s/%s for user %s (v%d) into item %s",
            item_type, item_id, user_id, triggered_by_version, existing.id,
        )
        return existing

    def claim_next(self, user_id: str | None = None) -> RecomputeQueueItem | None:
        """Move the highest-priority pending item to processing and return it.

        Returns None when nothing is pending. A claim lost to another worker
        is retried with the next candidate.
        """
        while True:
            candidate = db.next_pending_queue_id(self._conn, user_id)
            if candidate is None:
                return None
            if db.transition_queue_item(
                self._conn, candidate, "pending", "processing", started_at=datetime.now()
            ):
                logger.debug("Claimed queue item %d", candidate)
                return self.get(candidate)
            logger.debug("Queue item %d claimed elsewhere, trying next", candidate)

    def complete(self, item_id: int) -> RecomputeQueueItem:
        self._transition(item_id, "processing", "completed", completed_at=datetime.now())
        logger.info("Queue item %d completed", item_id)
        return self.get(item_id)

    def fail(self, item_id: int, error: str) -> RecomputeQueueItem:
        """Record a failure; requeue if the item has retries left."""
        item = self.get(item_id)
        retry_count = item.retry_count + 1
        self._transition(
            item_id,
            "processing",
            "failed",
            error=error,
            retry_count=retry_count,
            completed_at=datetime.now(),
        )
        if retry_count < item.max_retries:
            try:
                self._transition(
                    item_id, "failed", "pending", started_at=None, completed_at=None
                )
            except sqlite3.IntegrityError:
                # An identical item was enqueued meanwhile; it carries the retry.
                logger.warning(
                    "Queue item %d failed (%d/%d), identical item already pending: %s",
                    item_id, retry_count, item.max_retries, error,
                )
                return self.get(item_id)
            logger.warning(
                "Queue item %d failed (%d/%d), requeued: %s",
                item_id, retry_count, item.max_retries, error,
            )
        else:
            logger.error(
                "Queue item %d failed permanently after %d attempts: %s",
                item_id, retry_count, error,
            )
        return self.get(item_id)

    def get(self, item_id: int) -> RecomputeQueueItem:
        item = db.get_queue_item(self._conn, item_id)
        if item is None:
            msg = f"Queue item not found: {item_id}"
            raise LookupError(msg)
        return item

    def list_items(
        self, status: QueueStatus | None = None, user_id: str | None = None
    ) -> list[RecomputeQueueItem]:
        return db.list_queue_items(self._conn, status=status, user_id=user_id)

    def _transition(
        self, item_id: int, from_status: QueueStatus, to_status: QueueStatus, **fields: object
    ) -> None:
        if db.transition_queue_item(self._conn, item_id, from_status, to_status, **fields):
            return
        current = self.get(item_id)
        msg = (
            f"Queue item {item_id} cannot move {from_status} -> {to_status}: "
            f"status is {current.status}"
        )
        raise InvalidStateTransition(msg)
