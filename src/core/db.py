"""SQLite persistence for versions, artifacts, queue items, and agent runs.

Every artifact table is append-only: rows are stamped with the
profile_version they were computed under and are never updated or deleted.
The "live" row is always the newest one for its key.
"""

import json
import sqlite3
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any

from src.core.schemas import (
    AgentRun,
    EnrichedJob,
    JobScore,
    ProfileEmbedding,
    ProfileVersionChange,
    RawJob,
    RecomputeQueueItem,
    ScoreBreakdown,
    SearchSpec,
    StaleDataType,
)

_PROFILE_VERSIONS_TABLE = """
CREATE TABLE IF NOT EXISTS profile_versions (
    team_id     TEXT    NOT NULL,
    user_id     TEXT    NOT NULL,
    version     INTEGER NOT NULL DEFAULT 1,
    updated_at  TEXT    NOT NULL,
    PRIMARY KEY (team_id, user_id)
);
"""

_PROFILE_VERSION_HISTORY_TABLE = """
CREATE TABLE IF NOT EXISTS profile_version_history (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    team_id         TEXT    NOT NULL,
    user_id         TEXT    NOT NULL,
    from_version    INTEGER NOT NULL,
    to_version      INTEGER NOT NULL,
    change_type     TEXT    NOT NULL,
    change_details  TEXT,
    changed_at      TEXT    NOT NULL
);
"""

_SEARCH_SPEC_CACHE_TABLE = """
CREATE TABLE IF NOT EXISTS search_spec_cache (
    key         TEXT PRIMARY KEY,
    value_json  TEXT NOT NULL,
    expires_at  REAL
);
"""

_SEARCH_SPECS_TABLE = """
CREATE TABLE IF NOT EXISTS search_specs (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    team_id          TEXT    NOT NULL,
    user_id          TEXT    NOT NULL,
    profile_version  INTEGER NOT NULL,
    spec_json        TEXT    NOT NULL,
    created_at       TEXT    NOT NULL
);
"""

_PROFILE_EMBEDDINGS_TABLE = """
CREATE TABLE IF NOT EXISTS profile_embeddings (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    team_id          TEXT    NOT NULL,
    user_id          TEXT    NOT NULL,
    profile_version  INTEGER NOT NULL,
    model            TEXT    NOT NULL,
    embedding_json   TEXT    NOT NULL,
    created_at       TEXT    NOT NULL
);
"""

_RAW_JOBS_TABLE = """
CREATE TABLE IF NOT EXISTS raw_jobs (
    job_id           TEXT PRIMARY KEY,
    platform         TEXT NOT NULL,
    platform_job_id  TEXT NOT NULL,
    title            TEXT NOT NULL,
    description      TEXT NOT NULL DEFAULT '',
    raw_json         TEXT NOT NULL,
    fetched_at       TEXT NOT NULL,
    UNIQUE(platform, platform_job_id)
);
"""

_JOB_EMBEDDINGS_TABLE = """
CREATE TABLE IF NOT EXISTS job_embeddings (
    job_id          TEXT PRIMARY KEY,
    model           TEXT NOT NULL,
    embedding_json  TEXT NOT NULL,
    created_at      TEXT NOT NULL
);
"""

_ENRICHED_JOBS_TABLE = """
CREATE TABLE IF NOT EXISTS enriched_jobs (
    job_id              TEXT PRIMARY KEY,
    ai_seniority        TEXT NOT NULL,
    ai_summary          TEXT NOT NULL,
    description_md      TEXT NOT NULL,
    enrichment_version  TEXT NOT NULL,
    enriched_at         TEXT NOT NULL
);
"""

_JOB_SCORES_TABLE = """
CREATE TABLE IF NOT EXISTS job_scores (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    team_id          TEXT    NOT NULL,
    user_id          TEXT    NOT NULL,
    job_id           TEXT    NOT NULL,
    profile_version  INTEGER NOT NULL,
    tightness        INTEGER NOT NULL,
    score            REAL    NOT NULL,
    breakdown_json   TEXT    NOT NULL,
    reasoning        TEXT    NOT NULL DEFAULT '',
    agent_run_id     TEXT,
    created_at       TEXT    NOT NULL
);
"""

_RECOMPUTE_QUEUE_TABLE = """
CREATE TABLE IF NOT EXISTS recompute_queue (
    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
    team_id               TEXT    NOT NULL,
    user_id               TEXT    NOT NULL,
    item_type             TEXT    NOT NULL,
    item_id               TEXT,
    triggered_by_version  INTEGER NOT NULL,
    priority              INTEGER NOT NULL DEFAULT 5,
    status                TEXT    NOT NULL DEFAULT 'pending',
    error                 TEXT,
    retry_count           INTEGER NOT NULL DEFAULT 0,
    max_retries           INTEGER NOT NULL DEFAULT 3,
    created_at            TEXT    NOT NULL,
    started_at            TEXT,
    completed_at          TEXT
);
"""

_AGENT_RUNS_TABLE = """
CREATE TABLE IF NOT EXISTS agent_runs (
    id              TEXT PRIMARY KEY,
    team_id         TEXT NOT NULL,
    user_id         TEXT,
    agent_type      TEXT NOT NULL,
    trigger         TEXT NOT NULL,
    status          TEXT NOT NULL DEFAULT 'queued',
    inputs_json     TEXT NOT NULL,
    outputs_json    TEXT,
    error_text      TEXT,
    trigger_run_id  TEXT,
    started_at      TEXT,
    finished_at     TEXT,
    created_at      TEXT NOT NULL
);
"""

_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_job_scores_live "
    "ON job_scores(user_id, job_id, tightness, id)",
    "CREATE INDEX IF NOT EXISTS idx_queue_pending "
    "ON recompute_queue(status, priority, id)",
    # At most one pending item per coalescing key, across connections
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_queue_pending_key "
    "ON recompute_queue(user_id, item_type, IFNULL(item_id, ''), triggered_by_version) "
    "WHERE status = 'pending'",
    "CREATE INDEX IF NOT EXISTS idx_agent_runs_team "
    "ON agent_runs(team_id, agent_type, created_at)",
)

_TABLES = (
    _PROFILE_VERSIONS_TABLE,
    _PROFILE_VERSION_HISTORY_TABLE,
    _SEARCH_SPEC_CACHE_TABLE,
    _SEARCH_SPECS_TABLE,
    _PROFILE_EMBEDDINGS_TABLE,
    _RAW_JOBS_TABLE,
    _JOB_EMBEDDINGS_TABLE,
    _ENRICHED_JOBS_TABLE,
    _JOB_SCORES_TABLE,
    _RECOMPUTE_QUEUE_TABLE,
    _AGENT_RUNS_TABLE,
)


def init_db(path: str | Path) -> sqlite3.Connection:
    """Create the database and tables, returning a connection.

    ``":memory:"`` is accepted for throwaway databases.
    """
    if str(path) != ":memory:":
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    for ddl in _TABLES:
        conn.execute(ddl)
    for ddl in _INDEXES:
        conn.execute(ddl)
    return conn


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat(timespec="microseconds")


def _parse_dt(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _now() -> str:
    return datetime.now().isoformat(timespec="microseconds")


# ---------------------------------------------------------------------------
# Profile versions
# ---------------------------------------------------------------------------


def get_profile_version(conn: sqlite3.Connection, team_id: str, user_id: str) -> int | None:
    """Return the stored profile_version, or None if the profile is unknown."""
    row = conn.execute(
        "SELECT version FROM profile_versions WHERE team_id = ? AND user_id = ?",
        (team_id, user_id),
    ).fetchone()
    return None if row is None else int(row["version"])


def insert_profile_version(conn: sqlite3.Connection, team_id: str, user_id: str) -> bool:
    """Create the version row at 1. Returns False if it already existed."""
    cursor = conn.execute(
        """
        INSERT OR IGNORE INTO profile_versions (team_id, user_id, version, updated_at)
        VALUES (?, ?, 1, ?)
        """,
        (team_id, user_id, _now()),
    )
    return cursor.rowcount == 1


def compare_and_set_profile_version(
    conn: sqlite3.Connection,
    team_id: str,
    user_id: str,
    expected: int,
    new_version: int,
) -> bool:
    """Set version to new_version only if it still equals expected."""
    cursor = conn.execute(
        """
        UPDATE profile_versions SET version = ?, updated_at = ?
        WHERE team_id = ? AND user_id = ? AND version = ?
        """,
        (new_version, _now(), team_id, user_id, expected),
    )
    return cursor.rowcount == 1


def insert_version_change(conn: sqlite3.Connection, change: ProfileVersionChange) -> int:
    cursor = conn.execute(
        """
        INSERT INTO profile_version_history
            (team_id, user_id, from_version, to_version, change_type, change_details, changed_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            change.team_id,
            change.user_id,
            change.from_version,
            change.to_version,
            change.change_type,
            json.dumps(change.change_details) if change.change_details is not None else None,
            _iso(change.changed_at),
        ),
    )
    return cursor.lastrowid or 0


def list_version_changes(
    conn: sqlite3.Connection, team_id: str, user_id: str
) -> list[ProfileVersionChange]:
    rows = conn.execute(
        """
        SELECT * FROM profile_version_history
        WHERE team_id = ? AND user_id = ?
        ORDER BY id
        """,
        (team_id, user_id),
    ).fetchall()
    return [
        ProfileVersionChange(
            id=row["id"],
            team_id=row["team_id"],
            user_id=row["user_id"],
            from_version=row["from_version"],
            to_version=row["to_version"],
            change_type=row["change_type"],
            change_details=json.loads(row["change_details"]) if row["change_details"] else None,
            changed_at=_parse_dt(row["changed_at"]),
        )
        for row in rows
    ]


# ---------------------------------------------------------------------------
# Search-spec cache entries (key/value backend)
# ---------------------------------------------------------------------------


def cache_get(conn: sqlite3.Connection, key: str) -> tuple[str, float | None] | None:
    row = conn.execute(
        "SELECT value_json, expires_at FROM search_spec_cache WHERE key = ?", (key,)
    ).fetchone()
    if row is None:
        return None
    return row["value_json"], row["expires_at"]


def cache_put(
    conn: sqlite3.Connection, key: str, value_json: str, expires_at: float | None
) -> None:
    conn.execute(
        """
        INSERT INTO search_spec_cache (key, value_json, expires_at) VALUES (?, ?, ?)
        ON CONFLICT(key) DO UPDATE SET
            value_json = excluded.value_json,
            expires_at = excluded.expires_at
        """,
        (key, value_json, expires_at),
    )


def cache_delete(conn: sqlite3.Connection, key: str) -> None:
    conn.execute("DELETE FROM search_spec_cache WHERE key = ?", (key,))


def cache_purge_expired(conn: sqlite3.Connection, now: float) -> int:
    cursor = conn.execute(
        "DELETE FROM search_spec_cache WHERE expires_at IS NOT NULL AND expires_at <= ?",
        (now,),
    )
    return cursor.rowcount


# ---------------------------------------------------------------------------
# Versioned artifacts
# ---------------------------------------------------------------------------


def insert_search_spec(conn: sqlite3.Connection, spec: SearchSpec) -> int:
    """Archive a generated spec. Returns the row ID."""
    cursor = conn.execute(
        """
        INSERT INTO search_specs (team_id, user_id, profile_version, spec_json, created_at)
        VALUES (?, ?, ?, ?, ?)
        """,
        (spec.team_id, spec.user_id, spec.profile_version, spec.model_dump_json(), _now()),
    )
    return cursor.lastrowid or 0


def latest_search_spec(
    conn: sqlite3.Connection,
    team_id: str,
    user_id: str,
    below_version: int | None = None,
) -> SearchSpec | None:
    """Return the newest archived spec, optionally restricted to older versions."""
    query = "SELECT spec_json FROM search_specs WHERE team_id = ? AND user_id = ?"
    params: list[Any] = [team_id, user_id]
    if below_version is not None:
        query += " AND profile_version < ?"
        params.append(below_version)
    query += " ORDER BY profile_version DESC, id DESC LIMIT 1"
    row = conn.execute(query, params).fetchone()
    if row is None:
        return None
    return SearchSpec.model_validate_json(row["spec_json"])


def insert_profile_embedding(conn: sqlite3.Connection, embedding: ProfileEmbedding) -> int:
    cursor = conn.execute(
        """
        INSERT INTO profile_embeddings
            (team_id, user_id, profile_version, model, embedding_json, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (
            embedding.team_id,
            embedding.user_id,
            embedding.profile_version,
            embedding.model,
            json.dumps(embedding.embedding),
            _iso(embedding.created_at),
        ),
    )
    return cursor.lastrowid or 0


def latest_profile_embedding(
    conn: sqlite3.Connection, team_id: str, user_id: str, profile_version: int
) -> ProfileEmbedding | None:
    """Return the embedding computed for exactly this profile_version, if any."""
    row = conn.execute(
        """
        SELECT * FROM profile_embeddings
        WHERE team_id = ? AND user_id = ? AND profile_version = ?
        ORDER BY id DESC LIMIT 1
        """,
        (team_id, user_id, profile_version),
    ).fetchone()
    if row is None:
        return None
    return ProfileEmbedding(
        id=row["id"],
        team_id=row["team_id"],
        user_id=row["user_id"],
        profile_version=row["profile_version"],
        model=row["model"],
        embedding=json.loads(row["embedding_json"]),
        created_at=_parse_dt(row["created_at"]),
    )


def insert_job_score(conn: sqlite3.Connection, score: JobScore) -> int:
    cursor = conn.execute(
        """
        INSERT INTO job_scores
            (team_id, user_id, job_id, profile_version, tightness, score,
             breakdown_json, reasoning, agent_run_id, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            score.team_id,
            score.user_id,
            score.job_id,
            score.profile_version,
            score.tightness,
            score.score,
            score.breakdown.model_dump_json(),
            score.reasoning,
            score.agent_run_id,
            _iso(score.created_at),
        ),
    )
    return cursor.lastrowid or 0


def _row_to_job_score(row: sqlite3.Row) -> JobScore:
    return JobScore(
        id=row["id"],
        team_id=row["team_id"],
        user_id=row["user_id"],
        job_id=row["job_id"],
        profile_version=row["profile_version"],
        tightness=row["tightness"],
        score=row["score"],
        breakdown=ScoreBreakdown.model_validate_json(row["breakdown_json"]),
        reasoning=row["reasoning"],
        agent_run_id=row["agent_run_id"],
        created_at=_parse_dt(row["created_at"]),
    )


def live_job_scores(
    conn: sqlite3.Connection,
    user_id: str,
    profile_version: int,
    tightness: int,
) -> list[JobScore]:
    """Newest score per job for this version and tightness, best first."""
    rows = conn.execute(
        """
        SELECT s.* FROM job_scores s
        JOIN (
            SELECT job_id, MAX(id) AS max_id FROM job_scores
            WHERE user_id = ? AND profile_version = ? AND tightness = ?
            GROUP BY job_id
        ) latest ON s.id = latest.max_id
        ORDER BY s.score DESC, s.id
        """,
        (user_id, profile_version, tightness),
    ).fetchall()
    return [_row_to_job_score(row) for row in rows]


# Each stale query returns the newest row per logical key (the user for
# specs and embeddings, the job for scores) when that row is behind.
_STALE_QUERIES: dict[str, str] = {
    "search_spec": """
        SELECT a.id, a.profile_version, a.created_at, NULL AS job_id
        FROM search_specs a
        WHERE a.team_id = :team_id AND a.user_id = :user_id
          AND a.id = (SELECT MAX(id) FROM search_specs
                      WHERE team_id = :team_id AND user_id = :user_id)
          AND a.profile_version < :current
        LIMIT :limit
    """,
    "embedding": """
        SELECT a.id, a.profile_version, a.created_at, NULL AS job_id
        FROM profile_embeddings a
        WHERE a.team_id = :team_id AND a.user_id = :user_id
          AND a.id = (SELECT MAX(id) FROM profile_embeddings
                      WHERE team_id = :team_id AND user_id = :user_id)
          AND a.profile_version < :current
        LIMIT :limit
    """,
    "score": """
        SELECT a.id, a.profile_version, a.created_at, a.job_id
        FROM job_scores a
        JOIN (
            SELECT job_id, MAX(id) AS max_id FROM job_scores
            WHERE team_id = :team_id AND user_id = :user_id
            GROUP BY job_id
        ) latest ON a.id = latest.max_id
        WHERE a.profile_version < :current
        ORDER BY a.profile_version ASC, a.id ASC
        LIMIT :limit
    """,
}


def query_stale_rows(
    conn: sqlite3.Connection,
    team_id: str,
    user_id: str,
    current_version: int,
    data_type: StaleDataType,
    limit: int,
) -> list[sqlite3.Row]:
    """Raw rows for the stale-item query of one artifact type."""
    sql = _STALE_QUERIES[data_type]
    return conn.execute(
        sql,
        {"team_id": team_id, "user_id": user_id, "current": current_version, "limit": limit},
    ).fetchall()


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


def insert_raw_job(conn: sqlite3.Connection, job: RawJob) -> bool:
    """Store a raw job once. Returns False if (platform, platform_job_id) exists."""
    cursor = conn.execute(
        """
        INSERT OR IGNORE INTO raw_jobs
            (job_id, platform, platform_job_id, title, description, raw_json, fetched_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            job.job_id,
            job.platform,
            job.platform_job_id,
            job.title,
            job.description,
            job.model_dump_json(),
            _now(),
        ),
    )
    return cursor.rowcount == 1


def get_raw_jobs(conn: sqlite3.Connection, job_ids: list[str] | None = None) -> list[RawJob]:
    if job_ids is None:
        rows = conn.execute("SELECT raw_json FROM raw_jobs ORDER BY fetched_at, job_id").fetchall()
    else:
        if not job_ids:
            return []
        placeholders = ", ".join("?" for _ in job_ids)
        rows = conn.execute(
            f"SELECT raw_json FROM raw_jobs WHERE job_id IN ({placeholders}) "  # noqa: S608
            "ORDER BY fetched_at, job_id",
            job_ids,
        ).fetchall()
    return [RawJob.model_validate_json(row["raw_json"]) for row in rows]


def upsert_job_embedding(
    conn: sqlite3.Connection, job_id: str, model: str, embedding: list[float]
) -> None:
    conn.execute(
        """
        INSERT INTO job_embeddings (job_id, model, embedding_json, created_at)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(job_id) DO UPDATE SET
            model = excluded.model,
            embedding_json = excluded.embedding_json,
            created_at = excluded.created_at
        """,
        (job_id, model, json.dumps(embedding), _now()),
    )


def get_job_embeddings(conn: sqlite3.Connection, model: str) -> dict[str, list[float]]:
    rows = conn.execute(
        "SELECT job_id, embedding_json FROM job_embeddings WHERE model = ?", (model,)
    ).fetchall()
    return {row["job_id"]: json.loads(row["embedding_json"]) for row in rows}


def upsert_enriched_job(
    conn: sqlite3.Connection, enriched: EnrichedJob, enrichment_version: str
) -> None:
    """Enrichment is profile-independent, so one row per job is kept."""
    conn.execute(
        """
        INSERT INTO enriched_jobs
            (job_id, ai_seniority, ai_summary, description_md, enrichment_version, enriched_at)
        VALUES (?, ?, ?, ?, ?, ?)
        ON CONFLICT(job_id) DO UPDATE SET
            ai_seniority = excluded.ai_seniority,
            ai_summary = excluded.ai_summary,
            description_md = excluded.description_md,
            enrichment_version = excluded.enrichment_version,
            enriched_at = excluded.enriched_at
        """,
        (
            enriched.id,
            enriched.ai_seniority,
            enriched.ai_summary,
            enriched.description_md,
            enrichment_version,
            _now(),
        ),
    )


def get_enriched_job(conn: sqlite3.Connection, job_id: str) -> tuple[EnrichedJob, str] | None:
    """Return (enriched job, enrichment_version) or None."""
    row = conn.execute("SELECT * FROM enriched_jobs WHERE job_id = ?", (job_id,)).fetchone()
    if row is None:
        return None
    enriched = EnrichedJob(
        id=row["job_id"],
        ai_seniority=row["ai_seniority"],
        ai_summary=row["ai_summary"],
        description_md=row["description_md"],
    )
    return enriched, row["enrichment_version"]


def job_ids_needing_enrichment(
    conn: sqlite3.Connection, enrichment_version: str, job_ids: list[str]
) -> list[str]:
    """Subset of job_ids never enriched or enriched under another prompt version."""
    if not job_ids:
        return []
    placeholders = ", ".join("?" for _ in job_ids)
    rows = conn.execute(
        f"SELECT job_id FROM enriched_jobs WHERE enrichment_version = ? "  # noqa: S608
        f"AND job_id IN ({placeholders})",
        [enrichment_version, *job_ids],
    ).fetchall()
    done = {row["job_id"] for row in rows}
    return [job_id for job_id in job_ids if job_id not in done]


# ---------------------------------------------------------------------------
# Recompute queue
# ---------------------------------------------------------------------------


def _row_to_queue_item(row: sqlite3.Row) -> RecomputeQueueItem:
    return RecomputeQueueItem(
        id=row["id"],
        team_id=row["team_id"],
        user_id=row["user_id"],
        item_type=row["item_type"],
        item_id=row["item_id"],
        triggered_by_version=row["triggered_by_version"],
        priority=row["priority"],
        status=row["status"],
        error=row["error"],
        retry_count=row["retry_count"],
        max_retries=row["max_retries"],
        created_at=_parse_dt(row["created_at"]),
        started_at=_parse_dt(row["started_at"]),
        completed_at=_parse_dt(row["completed_at"]),
    )


def insert_queue_item(conn: sqlite3.Connection, item: RecomputeQueueItem) -> int | None:
    """Insert a queue item; None when an identical item is already pending."""
    cursor = conn.execute(
        """
        INSERT OR IGNORE INTO recompute_queue
            (team_id, user_id, item_type, item_id, triggered_by_version, priority,
             status, error, retry_count, max_retries, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            item.team_id,
            item.user_id,
            item.item_type,
            item.item_id,
            item.triggered_by_version,
            item.priority,
            item.status,
            item.error,
            item.retry_count,
            item.max_retries,
            _iso(item.created_at),
        ),
    )
    if cursor.rowcount == 0:
        return None
    return cursor.lastrowid


def find_pending_queue_item(
    conn: sqlite3.Connection,
    user_id: str,
    item_type: str,
    item_id: str | None,
    triggered_by_version: int,
) -> RecomputeQueueItem | None:
    row = conn.execute(
        """
        SELECT * FROM recompute_queue
        WHERE user_id = ? AND item_type = ? AND item_id IS ? AND triggered_by_version = ?
          AND status = 'pending'
        ORDER BY id LIMIT 1
        """,
        (user_id, item_type, item_id, triggered_by_version),
    ).fetchone()
    return None if row is None else _row_to_queue_item(row)


def get_queue_item(conn: sqlite3.Connection, item_id: int) -> RecomputeQueueItem | None:
    row = conn.execute("SELECT * FROM recompute_queue WHERE id = ?", (item_id,)).fetchone()
    return None if row is None else _row_to_queue_item(row)


def next_pending_queue_id(conn: sqlite3.Connection, user_id: str | None = None) -> int | None:
    """Highest-priority (lowest number), oldest pending item id."""
    query = "SELECT id FROM recompute_queue WHERE status = 'pending'"
    params: list[Any] = []
    if user_id is not None:
        query += " AND user_id = ?"
        params.append(user_id)
    query += " ORDER BY priority ASC, id ASC LIMIT 1"
    row = conn.execute(query, params).fetchone()
    return None if row is None else int(row["id"])


def transition_queue_item(
    conn: sqlite3.Connection,
    item_id: int,
    from_status: str,
    to_status: str,
    **fields: Any,
) -> bool:
    """Conditionally move an item between statuses.

    The WHERE clause on ``from_status`` makes this the atomic claim step:
    of two workers racing on the same row, exactly one sees rowcount 1.
    """
    assignments = ["status = ?"]
    params: list[Any] = [to_status]
    for column, value in fields.items():
        assignments.append(f"{column} = ?")
        params.append(_iso(value) if isinstance(value, datetime) else value)
    params.extend([item_id, from_status])
    cursor = conn.execute(
        f"UPDATE recompute_queue SET {', '.join(assignments)} "  # noqa: S608
        "WHERE id = ? AND status = ?",
        params,
    )
    return cursor.rowcount == 1


def list_queue_items(
    conn: sqlite3.Connection,
    status: str | None = None,
    user_id: str | None = None,
) -> list[RecomputeQueueItem]:
    query = "SELECT * FROM recompute_queue WHERE 1 = 1"
    params: list[Any] = []
    if status is not None:
        query += " AND status = ?"
        params.append(status)
    if user_id is not None:
        query += " AND user_id = ?"
        params.append(user_id)
    query += " ORDER BY priority ASC, id ASC"
    return [_row_to_queue_item(row) for row in conn.execute(query, params).fetchall()]


# ---------------------------------------------------------------------------
# Agent runs
# ---------------------------------------------------------------------------


def _row_to_agent_run(row: sqlite3.Row) -> AgentRun:
    return AgentRun(
        id=row["id"],
        team_id=row["team_id"],
        user_id=row["user_id"],
        agent_type=row["agent_type"],
        trigger=row["trigger"],
        status=row["status"],
        inputs=json.loads(row["inputs_json"]),
        outputs=json.loads(row["outputs_json"]) if row["outputs_json"] else None,
        error_text=row["error_text"],
        trigger_run_id=row["trigger_run_id"],
        started_at=_parse_dt(row["started_at"]),
        finished_at=_parse_dt(row["finished_at"]),
        created_at=_parse_dt(row["created_at"]),
    )


def insert_agent_run(
    conn: sqlite3.Connection,
    team_id: str,
    user_id: str | None,
    agent_type: str,
    trigger: str,
    inputs: dict[str, Any],
) -> str:
    """Create a queued run and return its id."""
    run_id = str(uuid.uuid4())
    conn.execute(
        """
        INSERT INTO agent_runs
            (id, team_id, user_id, agent_type, trigger, status, inputs_json, created_at)
        VALUES (?, ?, ?, ?, ?, 'queued', ?, ?)
        """,
        (run_id, team_id, user_id, agent_type, trigger, json.dumps(inputs), _now()),
    )
    return run_id


def get_agent_run(conn: sqlite3.Connection, run_id: str) -> AgentRun | None:
    row = conn.execute("SELECT * FROM agent_runs WHERE id = ?", (run_id,)).fetchone()
    return None if row is None else _row_to_agent_run(row)


def latest_agent_run(
    conn: sqlite3.Connection, team_id: str, agent_type: str
) -> AgentRun | None:
    row = conn.execute(
        """
        SELECT * FROM agent_runs WHERE team_id = ? AND agent_type = ?
        ORDER BY created_at DESC, rowid DESC LIMIT 1
        """,
        (team_id, agent_type),
    ).fetchone()
    return None if row is None else _row_to_agent_run(row)


def mark_agent_run_running(
    conn: sqlite3.Connection, run_id: str, trigger_run_id: str, started_at: datetime
) -> bool:
    cursor = conn.execute(
        """
        UPDATE agent_runs SET status = 'running', trigger_run_id = ?, started_at = ?
        WHERE id = ? AND status = 'queued'
        """,
        (trigger_run_id, _iso(started_at), run_id),
    )
    return cursor.rowcount == 1


def finish_agent_run(
    conn: sqlite3.Connection,
    run_id: str,
    status: str,
    finished_at: datetime,
    outputs: dict[str, Any] | None = None,
    error_text: str | None = None,
) -> bool:
    """Record a terminal status. Only non-terminal rows are touched."""
    cursor = conn.execute(
        """
        UPDATE agent_runs
        SET status = ?, outputs_json = ?, error_text = ?, finished_at = ?,
            started_at = COALESCE(started_at, ?)
        WHERE id = ? AND status IN ('queued', 'running')
        """,
        (
            status,
            json.dumps(outputs) if outputs is not None else None,
            error_text,
            _iso(finished_at),
            _iso(finished_at),
            run_id,
        ),
    )
    return cursor.rowcount == 1
