"""Tests for ProfileUpdateHandler: version bumps feeding the recompute queue."""

import sqlite3

import pytest

from src.core.db import init_db, insert_job_score, insert_search_spec
from src.core.schemas import JobScore, ScoreBreakdown, SearchSpec, WeightedKeyword
from src.pipeline.invalidation import (
    PRIORITY_JOB_SCORES,
    PRIORITY_NORMALIZED_PROFILE,
    PRIORITY_SEARCH_SPEC,
    ProfileUpdateHandler,
)
from src.pipeline.recompute_queue import RecomputeQueue
from src.versioning.ledger import ProfileVersionLedger

_BREAKDOWN = ScoreBreakdown(
    skill_match=70, budget_fit=70, client_quality=70, scope_fit=70, win_probability=70
)


@pytest.fixture
def db(tmp_path: pytest.TempPathFactory) -> sqlite3.Connection:  # type: ignore[type-arg]
    return init_db(tmp_path / "test.db")


@pytest.fixture
def handler(db: sqlite3.Connection) -> ProfileUpdateHandler:
    return ProfileUpdateHandler(db, ProfileVersionLedger(db), RecomputeQueue(db))


def _score(db: sqlite3.Connection, job_id: str, version: int) -> None:
    insert_job_score(
        db,
        JobScore(team_id="t1", user_id="u1", job_id=job_id, profile_version=version,
                 tightness=3, score=70, breakdown=_BREAKDOWN),
    )


class TestOnProfileChanged:
    def test_bumps_and_enqueues_profile_artifacts(
        self, db: sqlite3.Connection, handler: ProfileUpdateHandler
    ) -> None:
        ProfileVersionLedger(db).ensure_profile("t1", "u1")
        items = handler.on_profile_changed("t1", "u1", "skill_added", {"skill": "go"})

        assert ProfileVersionLedger(db).current_version("t1", "u1") == 2
        assert [(i.item_type, i.priority) for i in items] == [
            ("normalized_profile", PRIORITY_NORMALIZED_PROFILE),
            ("search_spec", PRIORITY_SEARCH_SPEC),
            ("profile_embedding", 3),
        ]
        assert all(i.triggered_by_version == 2 for i in items)

    def test_stale_scores_enqueued_per_job(
        self, db: sqlite3.Connection, handler: ProfileUpdateHandler
    ) -> None:
        ProfileVersionLedger(db).ensure_profile("t1", "u1")
        _score(db, "upwork:a", 1)
        _score(db, "upwork:b", 1)

        items = handler.on_profile_changed("t1", "u1", "bulk_update")
        score_items = [i for i in items if i.item_type == "job_scores"]
        assert sorted(i.item_id for i in score_items if i.item_id) == ["upwork:a", "upwork:b"]
        assert all(i.priority == PRIORITY_JOB_SCORES for i in score_items)

    def test_claim_order_follows_dependencies(
        self, db: sqlite3.Connection, handler: ProfileUpdateHandler
    ) -> None:
        _score(db, "upwork:a", 1)
        handler.on_profile_changed("t1", "u1", "bulk_update")
        queue = RecomputeQueue(db)
        order = []
        while (item := queue.claim_next()) is not None:
            order.append(item.item_type)
        assert order == ["normalized_profile", "search_spec", "profile_embedding", "job_scores"]

    def test_repeat_changes_queue_each_version(
        self, db: sqlite3.Connection, handler: ProfileUpdateHandler
    ) -> None:
        handler.on_profile_changed("t1", "u1", "skill_added")
        handler.on_profile_changed("t1", "u1", "skill_removed")
        versions = {i.triggered_by_version for i in RecomputeQueue(db).list_items()}
        assert versions == {2, 3}


class TestSweepStale:
    def test_nothing_stale(self, db: sqlite3.Connection, handler: ProfileUpdateHandler) -> None:
        ProfileVersionLedger(db).ensure_profile("t1", "u1")
        assert handler.sweep_stale("t1", "u1") == []

    def test_sweep_finds_spec_and_scores(
        self, db: sqlite3.Connection, handler: ProfileUpdateHandler
    ) -> None:
        ledger = ProfileVersionLedger(db)
        ledger.ensure_profile("t1", "u1")
        insert_search_spec(
            db,
            SearchSpec(
                user_id="u1", team_id="t1", profile_version=1,
                title_keywords=[WeightedKeyword(keyword="dev", weight=5)],
                skill_keywords=[WeightedKeyword(keyword="python", weight=5)],
                remote_preference="flexible", contract_types=["contract"],
            ),
        )
        _score(db, "upwork:a", 1)
        ledger.bump("t1", "u1", "bulk_update")

        items = handler.sweep_stale("t1", "u1")
        assert [i.item_type for i in items] == ["search_spec", "job_scores"]
        assert all(i.triggered_by_version == 2 for i in items)

    def test_sweep_is_idempotent(
        self, db: sqlite3.Connection, handler: ProfileUpdateHandler
    ) -> None:
        _score(db, "upwork:a", 1)
        ProfileVersionLedger(db).bump("t1", "u1", "bulk_update")
        first = handler.sweep_stale("t1", "u1")
        second = handler.sweep_stale("t1", "u1")
        assert [i.id for i in first] == [i.id for i in second]
        assert len(RecomputeQueue(db).list_items()) == 1

    def test_unknown_profile(self, handler: ProfileUpdateHandler) -> None:
        with pytest.raises(LookupError):
            handler.sweep_stale("t1", "ghost")
