"""Tests for the command-line entry point."""

import json
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from main import build_pipeline, load_profile, main, parse_args
from src.core.config import LLMConfig, Settings
from src.core.db import init_db, insert_job_score
from src.core.schemas import JobScore, ScoreBreakdown
from src.llm.base import LLMProvider
from src.pipeline.enrichment import ENRICH_SYSTEM_PROMPT
from src.versioning.ledger import ProfileVersionLedger

_PROFILE_YAML = """\
user_id: u1
team_id: t1
profile_version: 1
display_name: Ana
preferences:
  tightness: 3
"""


@pytest.fixture
def config(tmp_path: Path) -> Path:
    path = tmp_path / "settings.yaml"
    path.write_text(
        f"database:\n  path: {tmp_path / 'cli.db'}\n"
        "cache:\n  backend: sqlite\n"
        "matching:\n  shortlist_enabled: false\n"
        "orchestrator:\n  poll_interval_seconds: 0.01\n  poll_timeout_seconds: 5\n"
    )
    return path


def _run(config: Path, *argv: str) -> None:
    main([*argv, "--config", str(config)])


def _fake_provider() -> MagicMock:
    """Answers enrichment and ranking prompts for every job id it sees."""
    provider = MagicMock(spec=LLMProvider)

    def complete(prompt: str, model: str | None = None, **kwargs: Any) -> str:
        ids = [line.split("(id: ")[1].rstrip(")") for line in prompt.splitlines()
               if line.startswith("### Job ")]
        if kwargs.get("system") == ENRICH_SYSTEM_PROMPT:
            entries = [{"id": i, "ai_seniority": "mid", "ai_summary": "s",
                        "description_md": "d"} for i in ids]
        else:
            breakdown = dict.fromkeys(
                ["skill_match", "budget_fit", "client_quality", "scope_fit", "win_probability"],
                70.0,
            )
            entries = [{"id": i, "score": 70, "breakdown": breakdown, "reasoning": "good"}
                       for i in ids]
        return json.dumps({"jobs": entries})

    provider.complete.side_effect = complete
    return provider


class TestParseArgs:
    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            parse_args([])

    def test_bump_defaults(self) -> None:
        args = parse_args(["bump-version", "--team", "t1", "--user", "u1"])
        assert args.change_type == "bulk_update"
        assert args.config == "config/settings.yaml"
        assert args.verbose is False

    def test_invalid_change_type(self) -> None:
        with pytest.raises(SystemExit):
            parse_args(["bump-version", "--team", "t1", "--user", "u1", "--change-type", "oops"])


# ---------------------------------------------------------------------------
# Versioning commands
# ---------------------------------------------------------------------------


class TestVersioningCommands:
    def test_bump_version(self, config: Path, capsys: pytest.CaptureFixture[str]) -> None:
        _run(config, "bump-version", "--team", "t1", "--user", "u1",
             "--change-type", "skill_added", "--details", '{"skill": "go"}')
        out = capsys.readouterr().out
        assert "Profile t1/u1 is now at version 2" in out
        assert "normalized_profile priority 1" in out
        assert "search_spec priority 2" in out

    def test_bump_invalid_details(self, config: Path, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as exc:
            _run(config, "bump-version", "--team", "t1", "--user", "u1", "--details", "{bad")
        assert exc.value.code == 1
        assert "Error:" in capsys.readouterr().err

    def test_compare_versions(self, config: Path, capsys: pytest.CaptureFixture[str]) -> None:
        _run(config, "check-staleness", "--data-version", "1", "--current-version", "3")
        assert "Data version (1) is 2 versions behind current (3)" in capsys.readouterr().out

    def test_compare_fresh(self, config: Path, capsys: pytest.CaptureFixture[str]) -> None:
        _run(config, "check-staleness", "--data-version", "3", "--current-version", "3")
        assert "Fresh (version 3)" in capsys.readouterr().out

    def test_list_stale_scores(
        self, config: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        conn = init_db(tmp_path / "cli.db")
        insert_job_score(conn, JobScore(
            team_id="t1", user_id="u1", job_id="upwork:1", profile_version=1, tightness=3,
            score=50, breakdown=ScoreBreakdown(skill_match=50, budget_fit=50, client_quality=50,
                                               scope_fit=50, win_probability=50),
        ))
        conn.close()
        _run(config, "bump-version", "--team", "t1", "--user", "u1")
        capsys.readouterr()

        _run(config, "check-staleness", "--team", "t1", "--user", "u1", "--type", "score")
        out = capsys.readouterr().out
        assert "1 stale score item(s) at current version 2" in out
        assert "job upwork:1: v1 (1 behind)" in out

    def test_staleness_needs_arguments(
        self, config: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        with pytest.raises(SystemExit):
            _run(config, "check-staleness")
        assert "--team and --user" in capsys.readouterr().err

    def test_unknown_profile(self, config: Path, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit):
            _run(config, "check-staleness", "--team", "t1", "--user", "ghost")
        assert "No profile version recorded for t1/ghost" in capsys.readouterr().err

    def test_queue_listing(self, config: Path, capsys: pytest.CaptureFixture[str]) -> None:
        _run(config, "bump-version", "--team", "t1", "--user", "u1")
        capsys.readouterr()
        _run(config, "queue", "--status", "pending")
        out = capsys.readouterr().out
        assert "3 queue item(s)" in out
        assert "[pending] p1 normalized_profile user u1 v2 retries 0/3" in out


# ---------------------------------------------------------------------------
# Jobs and runs
# ---------------------------------------------------------------------------


class TestJobsAndRuns:
    def _write_jobs(self, tmp_path: Path) -> Path:
        path = tmp_path / "jobs.json"
        path.write_text(json.dumps([
            {"platform": "upwork", "platform_job_id": "1", "title": "Python API"},
            {"platform": "upwork", "platform_job_id": "2", "title": "Data pipeline"},
        ]))
        return path

    def test_import_jobs_deduplicates(
        self, config: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        jobs = self._write_jobs(tmp_path)
        _run(config, "import-jobs", "--file", str(jobs))
        _run(config, "import-jobs", "--file", str(jobs))
        out = capsys.readouterr().out
        assert "Imported 2 new job(s), 0 already stored; 2 total." in out
        assert "Imported 0 new job(s), 2 already stored; 2 total." in out

    def test_import_requires_array(
        self, config: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        path = tmp_path / "jobs.json"
        path.write_text("{}")
        with pytest.raises(SystemExit):
            _run(config, "import-jobs", "--file", str(path))
        assert "JSON array" in capsys.readouterr().err

    def test_import_missing_file(self, config: Path, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit):
            _run(config, "import-jobs", "--file", "/nonexistent/jobs.json")
        assert "Jobs file not found" in capsys.readouterr().err

    def test_run_pipeline_and_scores(
        self, config: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        _run(config, "import-jobs", "--file", str(self._write_jobs(tmp_path)))
        _run(config, "bump-version", "--team", "t1", "--user", "u1")
        profile = tmp_path / "profile.yaml"
        profile.write_text(_PROFILE_YAML.replace("profile_version: 1", "profile_version: 2"))
        capsys.readouterr()

        with patch("main.get_provider", return_value=_fake_provider()):
            _run(config, "run-pipeline", "--profile", str(profile))
        out = capsys.readouterr().out
        assert "succeeded" in out
        assert '"jobs_ranked": 2' in out

        _run(config, "scores", "--team", "t1", "--user", "u1")
        out = capsys.readouterr().out
        assert "2 live score(s) for u1 at v2, tightness 3" in out
        assert " 70.00  upwork:1  good" in out

    def test_run_pipeline_stamps_ledger_version(
        self, config: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        _run(config, "import-jobs", "--file", str(self._write_jobs(tmp_path)))
        _run(config, "bump-version", "--team", "t1", "--user", "u1")
        profile = tmp_path / "profile.yaml"
        profile.write_text(_PROFILE_YAML)  # still says profile_version: 1
        capsys.readouterr()

        with patch("main.get_provider", return_value=_fake_provider()):
            _run(config, "run-pipeline", "--profile", str(profile))
        _run(config, "scores", "--team", "t1", "--user", "u1")
        out = capsys.readouterr().out
        assert "2 live score(s) for u1 at v2, tightness 3" in out

    def test_run_status_unknown(self, config: Path, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit):
            _run(config, "run-status", "--run-id", "missing")
        assert "Agent run not found: missing" in capsys.readouterr().err


# ---------------------------------------------------------------------------
# Config loading
# ---------------------------------------------------------------------------


class TestConfigLoading:
    def test_invalid_config(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("engine:\n  enrich_batch_size: 0\n")
        with pytest.raises(SystemExit):
            _run(path, "queue")
        assert "Error loading config" in capsys.readouterr().err


# ---------------------------------------------------------------------------
# Wiring helpers
# ---------------------------------------------------------------------------


class TestLoadProfile:
    def test_unknown_profile_registered_at_first_version(self, tmp_path: Path) -> None:
        conn = init_db(tmp_path / "test.db")
        path = tmp_path / "profile.yaml"
        path.write_text(_PROFILE_YAML.replace("profile_version: 1", "profile_version: 3"))

        profile = load_profile(str(path), conn)
        assert profile.profile_version == 1
        assert ProfileVersionLedger(conn).current_version("t1", "u1") == 1

    def test_ledger_version_wins(self, tmp_path: Path) -> None:
        conn = init_db(tmp_path / "test.db")
        ledger = ProfileVersionLedger(conn)
        ledger.ensure_profile("t1", "u1")
        ledger.bump("t1", "u1", "skill_added")
        path = tmp_path / "profile.yaml"
        path.write_text(_PROFILE_YAML)

        profile = load_profile(str(path), conn)
        assert profile.profile_version == 2
        assert profile.display_name == "Ana"


class TestBuildPipeline:
    def test_embedder_uses_provider_default(self, tmp_path: Path) -> None:
        settings = Settings(llm=LLMConfig(provider="gemini"))
        pipeline = build_pipeline(settings, init_db(tmp_path / "test.db"))
        assert pipeline._embedder is not None
        assert pipeline._embedder.model_name == "text-embedding-004"

    def test_configured_embedding_model(self, tmp_path: Path) -> None:
        settings = Settings(llm=LLMConfig(provider="ollama", embedding_model="mxbai-embed-large"))
        pipeline = build_pipeline(settings, init_db(tmp_path / "test.db"))
        assert pipeline._embedder is not None
        assert pipeline._embedder.model_name == "mxbai-embed-large"

    def test_provider_without_embeddings_skips_shortlist(self, tmp_path: Path) -> None:
        settings = Settings(llm=LLMConfig(provider="anthropic"))
        pipeline = build_pipeline(settings, init_db(tmp_path / "test.db"))
        assert pipeline._embedder is None
