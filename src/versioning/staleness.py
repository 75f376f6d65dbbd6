"""Staleness checks for versioned artifacts."""

import sqlite3
from datetime import datetime

from src.core import db
from src.core.schemas import StaleDataType, StaleItem, StalenessVerdict

STALE_QUERY_DEFAULT_LIMIT = 100
STALE_QUERY_MAX_LIMIT = 1000

_DATA_TYPES: tuple[StaleDataType, ...] = ("search_spec", "embedding", "score")


def check_staleness(data_version: int, current_version: int) -> StalenessVerdict:
    """Compare an artifact's version with the profile's current version."""
    stale = data_version < current_version
    gap = max(0, current_version - data_version)
    reason = None
    if stale:
        noun = "version" if gap == 1 else "versions"
        reason = (
            f"Data version ({data_version}) is {gap} {noun} behind "
            f"current ({current_version})"
        )
    return StalenessVerdict(
        is_stale=stale,
        data_version=data_version,
        current_version=current_version,
        version_gap=gap,
        reason=reason,
    )


def is_stale(data_version: int, current_version: int) -> bool:
    return data_version < current_version


def is_fresh(data_version: int, current_version: int) -> bool:
    return data_version >= current_version


def find_stale_items(
    conn: sqlite3.Connection,
    team_id: str,
    user_id: str,
    current_version: int,
    data_type: StaleDataType,
    limit: int = STALE_QUERY_DEFAULT_LIMIT,
) -> list[StaleItem]:
    """Return live artifacts of one type that lag behind current_version.

    Only the newest artifact per key is considered (the user for specs and
    embeddings, the job for scores); older rows are already superseded.
    Results are ordered oldest profile_version first.
    """
    if data_type not in _DATA_TYPES:
        msg = f"data_type must be one of {list(_DATA_TYPES)}, got '{data_type}'"
        raise ValueError(msg)
    if not 1 <= limit <= STALE_QUERY_MAX_LIMIT:
        msg = f"limit must be between 1 and {STALE_QUERY_MAX_LIMIT}, got {limit}"
        raise ValueError(msg)

    rows = db.query_stale_rows(conn, team_id, user_id, current_version, data_type, limit)
    return [
        StaleItem(
            id=str(row["id"]),
            data_type=data_type,
            profile_version=row["profile_version"],
            version_gap=current_version - row["profile_version"],
            created_at=datetime.fromisoformat(row["created_at"]),
            job_id=row["job_id"],
        )
        for row in rows
    ]
