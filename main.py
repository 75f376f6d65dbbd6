"""CLI entry point for the job matching engine."""

import argparse
import asyncio
import json
import logging
import sqlite3
import sys
from pathlib import Path
from typing import get_args

from pydantic import ValidationError

from src.core.config import Settings
from src.core.db import get_raw_jobs, init_db, insert_raw_job, live_job_scores
from src.core.errors import MatchingError
from src.core.schemas import ChangeType, RawJob, StaleDataType
from src.llm import available_providers, get_provider
from src.pipeline.embedding import Embedder
from src.pipeline.enrichment import JobEnricher
from src.pipeline.invalidation import ProfileUpdateHandler
from src.pipeline.matching import MATCHING_TASK_NAME, MatchingPipeline
from src.pipeline.orchestrator import RunOrchestrator
from src.pipeline.ranking import JobRanker
from src.pipeline.recompute_queue import RecomputeQueue
from src.profile.schema import NormalizedProfile
from src.runners.base import TaskRunner
from src.runners.local import LocalTaskRunner
from src.runners.trigger_dev import TriggerDevRunner
from src.search_spec.cache import (
    CacheStorage,
    InMemoryCacheStorage,
    SearchSpecCache,
    SqliteCacheStorage,
)
from src.search_spec.generator import SearchSpecGenerator, SearchSpecService
from src.versioning.ledger import ProfileVersionLedger
from src.versioning.staleness import check_staleness, find_stale_items

_EXPECTED_ERRORS = (FileNotFoundError, ImportError, ValueError, LookupError, MatchingError)


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        default="config/settings.yaml",
        help="Path to settings YAML file (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )


def _add_identity(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--team", required=True, help="Team ID")
    parser.add_argument("--user", required=True, help="User ID")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Job matching engine - profile-versioned search specs, ranking and runs",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # --- bump-version ---
    bump_parser = subparsers.add_parser(
        "bump-version",
        help="Record a profile change: bump the version and queue recomputation",
    )
    _add_identity(bump_parser)
    bump_parser.add_argument(
        "--change-type",
        default="bulk_update",
        choices=list(get_args(ChangeType)),
        help="Kind of profile change (default: bulk_update)",
    )
    bump_parser.add_argument("--details", help="JSON object with change details")
    _add_common(bump_parser)

    # --- check-staleness ---
    stale_parser = subparsers.add_parser(
        "check-staleness",
        help="Compare two versions, or list a user's stale artifacts",
    )
    stale_parser.add_argument("--data-version", type=int, help="Artifact version")
    stale_parser.add_argument("--current-version", type=int, help="Current profile version")
    stale_parser.add_argument("--team", help="Team ID (list mode)")
    stale_parser.add_argument("--user", help="User ID (list mode)")
    stale_parser.add_argument(
        "--type",
        dest="data_type",
        default="score",
        choices=list(get_args(StaleDataType)),
        help="Artifact type to list (default: score)",
    )
    stale_parser.add_argument("--limit", type=int, default=100, help="Max items (1-1000)")
    _add_common(stale_parser)

    # --- import-jobs ---
    import_parser = subparsers.add_parser(
        "import-jobs", help="Store raw job postings from a JSON array file",
    )
    import_parser.add_argument("--file", required=True, help="Path to JSON file")
    _add_common(import_parser)

    # --- generate-spec ---
    spec_parser = subparsers.add_parser(
        "generate-spec", help="Get or generate the search spec for a profile",
    )
    spec_parser.add_argument(
        "--profile",
        default="config/profile.yaml",
        help="Path to normalized profile YAML (default: config/profile.yaml)",
    )
    spec_parser.add_argument(
        "--provider",
        choices=available_providers(),
        help="Override the configured LLM provider",
    )
    spec_parser.add_argument(
        "--allow-stale",
        action="store_true",
        help="Serve the newest older spec if generation fails",
    )
    _add_common(spec_parser)

    # --- queue ---
    queue_parser = subparsers.add_parser("queue", help="List recompute queue items")
    queue_parser.add_argument(
        "--status",
        choices=["pending", "processing", "completed", "failed"],
        help="Only show items with this status",
    )
    queue_parser.add_argument("--user", help="Only show items for this user")
    _add_common(queue_parser)

    # --- run-pipeline ---
    run_parser = subparsers.add_parser(
        "run-pipeline", help="Start a matching run for a profile and wait for it",
    )
    run_parser.add_argument(
        "--profile",
        default="config/profile.yaml",
        help="Path to normalized profile YAML (default: config/profile.yaml)",
    )
    run_parser.add_argument(
        "--no-wait", action="store_true", help="Return after triggering the run",
    )
    _add_common(run_parser)

    # --- run-status ---
    status_parser = subparsers.add_parser("run-status", help="Show an agent run")
    status_parser.add_argument("--run-id", required=True, help="Agent run ID")
    _add_common(status_parser)

    # --- scores ---
    scores_parser = subparsers.add_parser("scores", help="Show live job scores for a user")
    _add_identity(scores_parser)
    scores_parser.add_argument("--tightness", type=int, default=3, help="Tightness 1-5")
    scores_parser.add_argument("--top", type=int, default=20, help="Rows to show")
    _add_common(scores_parser)

    return parser.parse_args(argv)


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def load_settings(path: str) -> Settings:
    """Load settings, falling back to defaults when the file does not exist."""
    if not Path(path).exists():
        logging.getLogger(__name__).debug("No config at %s, using defaults", path)
        return Settings()
    return Settings.from_yaml(path)


def build_runner(settings: Settings) -> TaskRunner:
    if settings.runner.kind == "trigger_dev":
        return TriggerDevRunner(settings.runner.base_url, settings.runner.timeout_seconds)
    return LocalTaskRunner()


def load_profile(path: str, conn: sqlite3.Connection) -> NormalizedProfile:
    """Load a profile file, stamped with the ledger's current version.

    Unknown profiles are registered at version 1; the file's own
    profile_version is only a hint.
    """
    profile = NormalizedProfile.from_yaml(path)
    version = ProfileVersionLedger(conn).ensure_profile(profile.team_id, profile.user_id)
    if version != profile.profile_version:
        logging.getLogger(__name__).info(
            "Profile file %s says v%d, ledger is at v%d",
            path, profile.profile_version, version,
        )
        profile = profile.model_copy(update={"profile_version": version})
    return profile


def build_pipeline(settings: Settings, conn: sqlite3.Connection) -> MatchingPipeline:
    provider = get_provider(settings.llm.provider)
    engine = settings.engine
    engine_kwargs = {
        "mode": engine.batch_mode,
        "timeout_seconds": engine.timeout_seconds,
        "bisect_on_failure": engine.bisect_on_failure,
    }
    embedder = None
    if settings.matching.shortlist_enabled:
        if provider.default_embedding_model is None:
            logging.getLogger(__name__).warning(
                "Provider %s has no embeddings, shortlisting disabled", provider.provider_id
            )
        else:
            embedder = Embedder(provider, settings.llm.embedding_model)
    return MatchingPipeline(
        conn,
        JobEnricher(provider, settings.llm.model, **engine_kwargs),
        JobRanker(provider, settings.llm.model, **engine_kwargs),
        embedder=embedder,
        matching=settings.matching,
        engine=engine,
    )


def cmd_bump_version(args: argparse.Namespace, settings: Settings) -> None:
    details = json.loads(args.details) if args.details else None
    conn = init_db(settings.database.path)
    ledger = ProfileVersionLedger(conn)
    queue = RecomputeQueue(conn, settings.queue.max_retries, settings.queue.default_priority)
    items = ProfileUpdateHandler(conn, ledger, queue).on_profile_changed(
        args.team, args.user, args.change_type, details
    )
    print(f"Profile {args.team}/{args.user} is now at version "
          f"{ledger.current_version(args.team, args.user)}")
    for item in items:
        target = f" ({item.item_id})" if item.item_id else ""
        print(f"  queued #{item.id} {item.item_type}{target} priority {item.priority}")
    conn.close()


def cmd_check_staleness(args: argparse.Namespace, settings: Settings) -> None:
    if args.data_version is not None and args.current_version is not None:
        verdict = check_staleness(args.data_version, args.current_version)
        print(verdict.reason or f"Fresh (version {verdict.current_version})")
        return

    if not (args.team and args.user):
        msg = "Pass --data-version and --current-version, or --team and --user"
        raise ValueError(msg)
    conn = init_db(settings.database.path)
    current = ProfileVersionLedger(conn).current_version(args.team, args.user)
    items = find_stale_items(conn, args.team, args.user, current, args.data_type, args.limit)
    print(f"{len(items)} stale {args.data_type} item(s) at current version {current}")
    for item in items:
        target = f" job {item.job_id}" if item.job_id else ""
        print(f"  #{item.id}{target}: v{item.profile_version} "
              f"({item.version_gap} behind)")
    conn.close()


def cmd_import_jobs(args: argparse.Namespace, settings: Settings) -> None:
    path = Path(args.file)
    if not path.exists():
        msg = f"Jobs file not found: {path}"
        raise FileNotFoundError(msg)
    records = json.loads(path.read_text())
    if not isinstance(records, list):
        msg = "Jobs file must contain a JSON array"
        raise ValueError(msg)

    conn = init_db(settings.database.path)
    new_count = sum(insert_raw_job(conn, RawJob.model_validate(r)) for r in records)
    print(f"Imported {new_count} new job(s), {len(records) - new_count} already stored; "
          f"{len(get_raw_jobs(conn))} total.")
    conn.close()


async def cmd_generate_spec(args: argparse.Namespace, settings: Settings) -> None:
    conn = init_db(settings.database.path)
    profile = load_profile(args.profile, conn)
    storage: CacheStorage
    if settings.cache.backend == "sqlite":
        storage = SqliteCacheStorage(conn)
    else:
        storage = InMemoryCacheStorage()
    service = SearchSpecService(
        SearchSpecGenerator(get_provider(args.provider or settings.llm.provider), settings.llm.model),
        SearchSpecCache(storage),
        ttl_seconds=settings.cache.ttl_seconds,
        conn=conn,
        allow_stale_fallback=args.allow_stale,
    )
    result = await service.get_or_generate(profile)
    source = "cache" if result.from_cache else "generated"
    if result.stale:
        source = f"stale fallback (v{result.spec.profile_version})"
    print(f"Search spec {result.cache_key} [{source}]")
    print(result.spec.model_dump_json(indent=2))
    conn.close()


def cmd_queue(args: argparse.Namespace, settings: Settings) -> None:
    conn = init_db(settings.database.path)
    items = RecomputeQueue(conn).list_items(status=args.status, user_id=args.user)
    print(f"{len(items)} queue item(s)")
    for item in items:
        target = f" ({item.item_id})" if item.item_id else ""
        error = f" - {item.error}" if item.error else ""
        print(f"  #{item.id} [{item.status}] p{item.priority} {item.item_type}{target} "
              f"user {item.user_id} v{item.triggered_by_version} "
              f"retries {item.retry_count}/{item.max_retries}{error}")
    conn.close()


async def cmd_run_pipeline(args: argparse.Namespace, settings: Settings) -> None:
    conn = init_db(settings.database.path)
    profile = load_profile(args.profile, conn)
    runner = build_runner(settings)
    if isinstance(runner, LocalTaskRunner):
        runner.register(MATCHING_TASK_NAME, build_pipeline(settings, conn).as_task_handler())

    orchestrator = RunOrchestrator(
        conn,
        runner,
        poll_interval_seconds=settings.orchestrator.poll_interval_seconds,
        poll_timeout_seconds=settings.orchestrator.poll_timeout_seconds,
    )
    run = await orchestrator.start_run(
        profile.team_id,
        profile.user_id,
        "job_enrichment",
        MATCHING_TASK_NAME,
        {"profile": profile.model_dump(mode="json")},
    )
    print(f"Run {run.id} started ({run.trigger_run_id})")
    if args.no_wait:
        if isinstance(runner, LocalTaskRunner):
            print("Local runs stop when the CLI exits; waiting anyway.")
        else:
            conn.close()
            return

    outcome = await orchestrator.poll_until_terminal(run.id)
    final = outcome.run
    if outcome.abandoned:
        print(f"Stopped waiting; run {final.id} is still {final.status}.")
    elif final.status == "succeeded":
        print(f"Run {final.id} succeeded: {json.dumps(final.outputs)}")
    else:
        print(f"Run {final.id} failed: {final.error_text}")
    conn.close()


async def cmd_run_status(args: argparse.Namespace, settings: Settings) -> None:
    conn = init_db(settings.database.path)
    orchestrator = RunOrchestrator(conn, build_runner(settings))
    run = orchestrator.get_status(args.run_id)
    if not run.is_terminal and settings.runner.kind == "trigger_dev":
        run = await orchestrator.refresh(args.run_id)
    print(run.model_dump_json(indent=2))
    conn.close()


def cmd_scores(args: argparse.Namespace, settings: Settings) -> None:
    conn = init_db(settings.database.path)
    version = ProfileVersionLedger(conn).current_version(args.team, args.user)
    scores = live_job_scores(conn, args.user, version, args.tightness)
    print(f"{len(scores)} live score(s) for {args.user} at v{version}, "
          f"tightness {args.tightness}")
    for score in scores[: args.top]:
        print(f"  {score.score:6.2f}  {score.job_id}  {score.reasoning}")
    conn.close()


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging(args.verbose)

    try:
        settings = load_settings(args.config)
    except (FileNotFoundError, ValueError, ValidationError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        if args.command == "bump-version":
            cmd_bump_version(args, settings)
        elif args.command == "check-staleness":
            cmd_check_staleness(args, settings)
        elif args.command == "import-jobs":
            cmd_import_jobs(args, settings)
        elif args.command == "generate-spec":
            asyncio.run(cmd_generate_spec(args, settings))
        elif args.command == "queue":
            cmd_queue(args, settings)
        elif args.command == "run-pipeline":
            asyncio.run(cmd_run_pipeline(args, settings))
        elif args.command == "run-status":
            asyncio.run(cmd_run_status(args, settings))
        elif args.command == "scores":
            cmd_scores(args, settings)
    except _EXPECTED_ERRORS as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
