"""Turn profile changes into recompute work.

A profile mutation bumps the version through the ledger, which makes every
artifact computed under the old version stale. The handler then enqueues
the recomputations in dependency order: the normalized profile first, then
the search spec and embedding derived from it, then the job scores.
"""

import logging
import sqlite3
from typing import Any

from src.core.schemas import ChangeType, RecomputeQueueItem
from src.pipeline.recompute_queue import RecomputeQueue
from src.versioning.ledger import ProfileVersionLedger
from src.versioning.staleness import STALE_QUERY_MAX_LIMIT, find_stale_items

logger = logging.getLogger(__name__)

PRIORITY_NORMALIZED_PROFILE = 1
PRIORITY_SEARCH_SPEC = 2
PRIORITY_PROFILE_EMBEDDING = 3
PRIORITY_JOB_SCORES = 5


class ProfileUpdateHandler:
    """Version bump plus recompute scheduling for one profile mutation."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        ledger: ProfileVersionLedger,
        queue: RecomputeQueue,
    ) -> None:
        self._conn = conn
        self._ledger = ledger
        self._queue = queue

    def on_profile_changed(
        self,
        team_id: str,
        user_id: str,
        change_type: ChangeType,
        change_details: dict[str, Any] | None = None,
    ) -> list[RecomputeQueueItem]:
        """Bump the profile version and enqueue everything it invalidates."""
        version = self._ledger.bump(team_id, user_id, change_type, change_details)
        items = [
            self._queue.enqueue(
                team_id, user_id, "normalized_profile", version,
                priority=PRIORITY_NORMALIZED_PROFILE,
            ),
            self._queue.enqueue(
                team_id, user_id, "search_spec", version, priority=PRIORITY_SEARCH_SPEC
            ),
            self._queue.enqueue(
                team_id, user_id, "profile_embedding", version,
                priority=PRIORITY_PROFILE_EMBEDDING,
            ),
        ]
        items.extend(self._enqueue_stale_scores(team_id, user_id, version))
        logger.info(
            "Profile %s/%s now at v%d: %d recompute item(s) queued",
            team_id, user_id, version, len(items),
        )
        return items

    def sweep_stale(self, team_id: str, user_id: str) -> list[RecomputeQueueItem]:
        """Enqueue recomputation for any artifact still behind the current version.

        Safe to run repeatedly: items already pending are coalesced.
        """
        version = self._ledger.current_version(team_id, user_id)
        items: list[RecomputeQueueItem] = []
        if find_stale_items(self._conn, team_id, user_id, version, "search_spec", limit=1):
            items.append(
                self._queue.enqueue(
                    team_id, user_id, "search_spec", version, priority=PRIORITY_SEARCH_SPEC
                )
            )
        if find_stale_items(self._conn, team_id, user_id, version, "embedding", limit=1):
            items.append(
                self._queue.enqueue(
                    team_id, user_id, "profile_embedding", version,
                    priority=PRIORITY_PROFILE_EMBEDDING,
                )
            )
        items.extend(self._enqueue_stale_scores(team_id, user_id, version))
        if items:
            logger.info("Sweep for %s/%s queued %d item(s)", team_id, user_id, len(items))
        return items

    def _enqueue_stale_scores(
        self, team_id: str, user_id: str, version: int
    ) -> list[RecomputeQueueItem]:
        stale = find_stale_items(
            self._conn, team_id, user_id, version, "score", limit=STALE_QUERY_MAX_LIMIT
        )
        return [
            self._queue.enqueue(
                team_id, user_id, "job_scores", version,
                item_id=item.job_id, priority=PRIORITY_JOB_SCORES,
            )
            for item in stale
        ]
