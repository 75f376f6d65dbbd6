"""Profile version ledger: the only write path for profile_version.

Versions start at 1 and move by exactly +1 per accepted profile mutation.
Every bump runs read → validate → compare-and-swap → audit insert inside one
SQLite transaction, so two concurrent writers cannot both claim the same
next version.
"""

import logging
import sqlite3
from datetime import datetime
from typing import Any

from src.core import db
from src.core.errors import InvalidVersionTransition, VersionOverflow
from src.core.schemas import (
    MAX_PROFILE_VERSION,
    MIN_PROFILE_VERSION,
    ChangeType,
    ProfileVersionChange,
    VersionValidation,
)

logger = logging.getLogger(__name__)


def next_version(current: int) -> int:
    return current + 1


def validate_version_update(old_version: int, new_version: int) -> VersionValidation:
    """Check a proposed version change without raising."""
    if new_version <= old_version:
        return VersionValidation(
            valid=False,
            error=f"Version cannot decrement: {old_version} -> {new_version}",
        )
    if new_version != old_version + 1:
        return VersionValidation(
            valid=False,
            error=(
                f"Version must increment by 1: {old_version} -> {new_version} "
                f"(expected {old_version + 1})"
            ),
        )
    if new_version > MAX_PROFILE_VERSION:
        return VersionValidation(
            valid=False,
            error=f"Version exceeds maximum ({MAX_PROFILE_VERSION}): {new_version}",
        )
    return VersionValidation(valid=True)


def validate_transition(old_version: int, new_version: int) -> None:
    """Raise if old_version → new_version is not a legal step.

    Raises:
        InvalidVersionTransition: decrement, repeat, or skip.
        VersionOverflow: new_version past MAX_PROFILE_VERSION.
    """
    result = validate_version_update(old_version, new_version)
    if result.valid:
        return
    logger.error("Rejected profile version update: %s", result.error)
    if new_version > MAX_PROFILE_VERSION and new_version == old_version + 1:
        raise VersionOverflow(new_version, MAX_PROFILE_VERSION)
    raise InvalidVersionTransition(old_version, new_version, result.error or "")


class ProfileVersionLedger:
    """SQLite-backed counter of profile versions per (team, user)."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def ensure_profile(self, team_id: str, user_id: str) -> int:
        """Create the ledger row at version 1 if absent. Returns current version."""
        if db.insert_profile_version(self._conn, team_id, user_id):
            logger.info("Registered profile %s/%s at version %d", team_id, user_id,
                        MIN_PROFILE_VERSION)
        return self.current_version(team_id, user_id)

    def current_version(self, team_id: str, user_id: str) -> int:
        version = db.get_profile_version(self._conn, team_id, user_id)
        if version is None:
            msg = f"No profile version recorded for {team_id}/{user_id}"
            raise LookupError(msg)
        return version

    def bump(
        self,
        team_id: str,
        user_id: str,
        change_type: ChangeType,
        change_details: dict[str, Any] | None = None,
    ) -> int:
        """Advance the profile version by one and record why.

        Returns the new version.

        Raises:
            InvalidVersionTransition: another writer bumped concurrently.
            VersionOverflow: the profile is already at MAX_PROFILE_VERSION.
        """
        self.ensure_profile(team_id, user_id)
        self._conn.execute("BEGIN IMMEDIATE")
        try:
            old = self.current_version(team_id, user_id)
            new = next_version(old)
            validate_transition(old, new)
            if not db.compare_and_set_profile_version(
                self._conn, team_id, user_id, expected=old, new_version=new
            ):
                reason = f"Concurrent profile version update lost: {old} -> {new}"
                logger.error(reason)
                raise InvalidVersionTransition(old, new, reason)
            db.insert_version_change(
                self._conn,
                ProfileVersionChange(
                    team_id=team_id,
                    user_id=user_id,
                    from_version=old,
                    to_version=new,
                    change_type=change_type,
                    change_details=change_details,
                    changed_at=datetime.now(),
                ),
            )
        except Exception:
            self._conn.execute("ROLLBACK")
            raise
        self._conn.execute("COMMIT")

        logger.info(
            "Profile %s/%s version %d -> %d (%s)", team_id, user_id, old, new, change_type
        )
        return new

    def history(self, team_id: str, user_id: str) -> list[ProfileVersionChange]:
        return db.list_version_changes(self._conn, team_id, user_id)
