"""Tests for the database layer: versions, artifacts, jobs, queue rows, runs."""

from datetime import datetime

import pytest

from src.core.db import (
    cache_delete,
    cache_get,
    cache_purge_expired,
    cache_put,
    compare_and_set_profile_version,
    finish_agent_run,
    get_agent_run,
    get_enriched_job,
    get_job_embeddings,
    get_profile_version,
    get_raw_jobs,
    init_db,
    insert_agent_run,
    insert_job_score,
    insert_profile_embedding,
    insert_profile_version,
    insert_raw_job,
    insert_search_spec,
    job_ids_needing_enrichment,
    latest_agent_run,
    latest_profile_embedding,
    latest_search_spec,
    live_job_scores,
    mark_agent_run_running,
    query_stale_rows,
    upsert_enriched_job,
    upsert_job_embedding,
)
from src.core.schemas import (
    EnrichedJob,
    JobScore,
    ProfileEmbedding,
    RawJob,
    ScoreBreakdown,
    SearchSpec,
    WeightedKeyword,
)


def _spec(version: int, user_id: str = "u1") -> SearchSpec:
    return SearchSpec(
        user_id=user_id,
        team_id="t1",
        profile_version=version,
        title_keywords=[WeightedKeyword(keyword="python developer", weight=9)],
        skill_keywords=[WeightedKeyword(keyword="python", weight=10)],
        remote_preference="remote_only",
        contract_types=["freelance"],
    )


def _score(job_id: str, version: int, score: float = 50.0, tightness: int = 3) -> JobScore:
    return JobScore(
        team_id="t1",
        user_id="u1",
        job_id=job_id,
        profile_version=version,
        tightness=tightness,
        score=score,
        breakdown=ScoreBreakdown(
            skill_match=score, budget_fit=score, client_quality=score,
            scope_fit=score, win_probability=score,
        ),
    )


def _job(platform_job_id: str, title: str = "Python developer") -> RawJob:
    return RawJob(platform="upwork", platform_job_id=platform_job_id, title=title)


@pytest.fixture()
def db(tmp_path):  # type: ignore[no-untyped-def]
    return init_db(tmp_path / "test.db")


class TestInitDb:
    def test_creates_tables(self, db) -> None:  # type: ignore[no-untyped-def]
        tables = {
            row[0]
            for row in db.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
        }
        for name in (
            "profile_versions",
            "profile_version_history",
            "search_spec_cache",
            "search_specs",
            "profile_embeddings",
            "raw_jobs",
            "job_embeddings",
            "enriched_jobs",
            "job_scores",
            "recompute_queue",
            "agent_runs",
        ):
            assert name in tables

    def test_idempotent(self, tmp_path) -> None:  # type: ignore[no-untyped-def]
        p = tmp_path / "double.db"
        init_db(p).close()
        init_db(p).close()

    def test_creates_parent_dirs(self, tmp_path) -> None:  # type: ignore[no-untyped-def]
        p = tmp_path / "nested" / "dir" / "x.db"
        init_db(p).close()
        assert p.exists()

    def test_memory_database(self) -> None:
        conn = init_db(":memory:")
        assert get_profile_version(conn, "t", "u") is None


class TestProfileVersions:
    def test_insert_starts_at_one(self, db) -> None:  # type: ignore[no-untyped-def]
        assert insert_profile_version(db, "t1", "u1") is True
        assert get_profile_version(db, "t1", "u1") == 1

    def test_insert_twice_keeps_row(self, db) -> None:  # type: ignore[no-untyped-def]
        insert_profile_version(db, "t1", "u1")
        compare_and_set_profile_version(db, "t1", "u1", 1, 2)
        assert insert_profile_version(db, "t1", "u1") is False
        assert get_profile_version(db, "t1", "u1") == 2

    def test_cas_fails_on_wrong_expected(self, db) -> None:  # type: ignore[no-untyped-def]
        insert_profile_version(db, "t1", "u1")
        assert compare_and_set_profile_version(db, "t1", "u1", 5, 6) is False
        assert get_profile_version(db, "t1", "u1") == 1


class TestCacheRows:
    def test_put_get_overwrite_delete(self, db) -> None:  # type: ignore[no-untyped-def]
        cache_put(db, "k", '{"a": 1}', None)
        assert cache_get(db, "k") == ('{"a": 1}', None)
        cache_put(db, "k", '{"a": 2}', 100.0)
        assert cache_get(db, "k") == ('{"a": 2}', 100.0)
        cache_delete(db, "k")
        assert cache_get(db, "k") is None

    def test_purge_expired(self, db) -> None:  # type: ignore[no-untyped-def]
        cache_put(db, "old", "{}", 10.0)
        cache_put(db, "new", "{}", 1000.0)
        cache_put(db, "forever", "{}", None)
        assert cache_purge_expired(db, now=500.0) == 1
        assert cache_get(db, "old") is None
        assert cache_get(db, "new") is not None
        assert cache_get(db, "forever") is not None


class TestSearchSpecs:
    def test_latest_spec(self, db) -> None:  # type: ignore[no-untyped-def]
        insert_search_spec(db, _spec(1))
        insert_search_spec(db, _spec(2))
        latest = latest_search_spec(db, "t1", "u1")
        assert latest is not None
        assert latest.profile_version == 2

    def test_below_version(self, db) -> None:  # type: ignore[no-untyped-def]
        insert_search_spec(db, _spec(1))
        insert_search_spec(db, _spec(2))
        older = latest_search_spec(db, "t1", "u1", below_version=2)
        assert older is not None
        assert older.profile_version == 1
        assert latest_search_spec(db, "t1", "u1", below_version=1) is None


class TestProfileEmbeddings:
    def test_exact_version_lookup(self, db) -> None:  # type: ignore[no-untyped-def]
        insert_profile_embedding(
            db,
            ProfileEmbedding(team_id="t1", user_id="u1", profile_version=1, model="m",
                             embedding=[0.1, 0.2]),
        )
        found = latest_profile_embedding(db, "t1", "u1", 1)
        assert found is not None
        assert found.embedding == [0.1, 0.2]
        assert latest_profile_embedding(db, "t1", "u1", 2) is None


class TestJobScores:
    def test_append_only(self, db) -> None:  # type: ignore[no-untyped-def]
        insert_job_score(db, _score("upwork:1", 1, 40.0))
        insert_job_score(db, _score("upwork:1", 2, 60.0))
        rows = db.execute(
            "SELECT profile_version FROM job_scores WHERE job_id = ? ORDER BY id", ("upwork:1",)
        ).fetchall()
        assert [r["profile_version"] for r in rows] == [1, 2]

    def test_live_scores_newest_per_job(self, db) -> None:  # type: ignore[no-untyped-def]
        insert_job_score(db, _score("upwork:1", 2, 40.0))
        insert_job_score(db, _score("upwork:1", 2, 70.0))
        insert_job_score(db, _score("upwork:2", 2, 55.0))
        insert_job_score(db, _score("upwork:3", 1, 99.0))
        insert_job_score(db, _score("upwork:2", 2, 80.0, tightness=5))

        live = live_job_scores(db, "u1", 2, 3)
        assert [(s.job_id, s.score) for s in live] == [("upwork:1", 70.0), ("upwork:2", 55.0)]
        assert live[0].breakdown.skill_match == 70.0


class TestStaleRows:
    def test_score_only_newest_row_per_job_counts(self, db) -> None:  # type: ignore[no-untyped-def]
        insert_job_score(db, _score("upwork:1", 1))
        insert_job_score(db, _score("upwork:1", 3))
        insert_job_score(db, _score("upwork:2", 2))
        rows = query_stale_rows(db, "t1", "u1", 3, "score", 100)
        assert [row["job_id"] for row in rows] == ["upwork:2"]

    def test_spec_stale_when_newest_behind(self, db) -> None:  # type: ignore[no-untyped-def]
        insert_search_spec(db, _spec(1))
        insert_search_spec(db, _spec(2))
        assert [r["profile_version"] for r in query_stale_rows(db, "t1", "u1", 3, "search_spec", 10)] == [2]
        assert query_stale_rows(db, "t1", "u1", 2, "search_spec", 10) == []

    def test_limit(self, db) -> None:  # type: ignore[no-untyped-def]
        for i in range(5):
            insert_job_score(db, _score(f"upwork:{i}", 1))
        assert len(query_stale_rows(db, "t1", "u1", 2, "score", 3)) == 3


class TestRawJobs:
    def test_insert_once(self, db) -> None:  # type: ignore[no-untyped-def]
        assert insert_raw_job(db, _job("1")) is True
        assert insert_raw_job(db, _job("1", title="Changed")) is False
        [stored] = get_raw_jobs(db)
        assert stored.title == "Python developer"

    def test_extra_fields_survive(self, db) -> None:  # type: ignore[no-untyped-def]
        job = RawJob.model_validate(
            {"platform": "upwork", "platform_job_id": "9", "title": "T", "country": "BR"}
        )
        insert_raw_job(db, job)
        [stored] = get_raw_jobs(db)
        assert stored.model_extra == {"country": "BR"}

    def test_get_by_ids(self, db) -> None:  # type: ignore[no-untyped-def]
        insert_raw_job(db, _job("1"))
        insert_raw_job(db, _job("2"))
        assert [j.job_id for j in get_raw_jobs(db, ["upwork:2"])] == ["upwork:2"]
        assert get_raw_jobs(db, []) == []


class TestJobEnrichmentAndEmbeddings:
    def test_embeddings_filtered_by_model(self, db) -> None:  # type: ignore[no-untyped-def]
        upsert_job_embedding(db, "upwork:1", "m1", [1.0])
        upsert_job_embedding(db, "upwork:2", "m2", [2.0])
        assert get_job_embeddings(db, "m1") == {"upwork:1": [1.0]}

    def test_enrichment_version_tracking(self, db) -> None:  # type: ignore[no-untyped-def]
        enriched = EnrichedJob(
            id="upwork:1", ai_seniority="mid", ai_summary="s", description_md="d"
        )
        upsert_enriched_job(db, enriched, "v1")
        assert get_enriched_job(db, "upwork:1") == (enriched, "v1")
        assert job_ids_needing_enrichment(db, "v1", ["upwork:1", "upwork:2"]) == ["upwork:2"]
        assert job_ids_needing_enrichment(db, "v2", ["upwork:1"]) == ["upwork:1"]
        assert job_ids_needing_enrichment(db, "v1", []) == []


class TestAgentRuns:
    def test_lifecycle(self, db) -> None:  # type: ignore[no-untyped-def]
        run_id = insert_agent_run(db, "t1", "u1", "job_enrichment", "manual", {"k": 1})
        run = get_agent_run(db, run_id)
        assert run is not None
        assert run.status == "queued"
        assert run.inputs == {"k": 1}

        assert mark_agent_run_running(db, run_id, "local_1", datetime.now()) is True
        assert finish_agent_run(db, run_id, "succeeded", datetime.now(), outputs={"n": 2})
        finished = get_agent_run(db, run_id)
        assert finished is not None
        assert finished.status == "succeeded"
        assert finished.outputs == {"n": 2}
        assert finished.trigger_run_id == "local_1"

    def test_terminal_is_sticky(self, db) -> None:  # type: ignore[no-untyped-def]
        run_id = insert_agent_run(db, "t1", "u1", "job_enrichment", "manual", {})
        finish_agent_run(db, run_id, "failed", datetime.now(), error_text="boom")
        assert finish_agent_run(db, run_id, "succeeded", datetime.now()) is False
        assert mark_agent_run_running(db, run_id, "x", datetime.now()) is False
        run = get_agent_run(db, run_id)
        assert run is not None
        assert run.status == "failed"
        assert run.error_text == "boom"

    def test_latest_run(self, db) -> None:  # type: ignore[no-untyped-def]
        assert latest_agent_run(db, "t1", "search_spec") is None
        insert_agent_run(db, "t1", "u1", "search_spec", "manual", {})
        second = insert_agent_run(db, "t1", "u1", "search_spec", "manual", {})
        latest = latest_agent_run(db, "t1", "search_spec")
        assert latest is not None
        assert latest.id == second
