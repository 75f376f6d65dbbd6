"""Matching task: shortlist → enrich → rank → store, for one profile version.

Data flow:
  1. Load stored raw jobs (capped per run)
  2. Embed the profile and any jobs without an embedding, then shortlist by
     cosine similarity (skipped when no embedder is configured)
  3. Enrich shortlisted jobs whose enrichment is missing or outdated
  4. Rank shortlisted jobs against the profile's user context
  5. Append JobScores stamped with the profile version and tightness

Scores are written under the version of the profile the run was started
with. If the profile changes mid-run those scores are born stale and the
next run supersedes them.
"""

import logging
import sqlite3
from typing import Any

from src.core import db
from src.core.config import EngineConfig, MatchingConfig
from src.core.schemas import JobScore, ProfileEmbedding, RawJob
from src.pipeline.embedding import Embedder, job_embedding_text, shortlist
from src.pipeline.enrichment import ENRICHMENT_VERSION, JobEnricher
from src.pipeline.ranking import JobRanker
from src.profile.context import build_user_context
from src.profile.schema import NormalizedProfile
from src.runners.local import TaskHandler

logger = logging.getLogger(__name__)

MATCHING_TASK_NAME = "job-enrichment"


class MatchingPipeline:
    def __init__(
        self,
        conn: sqlite3.Connection,
        enricher: JobEnricher,
        ranker: JobRanker,
        embedder: Embedder | None = None,
        matching: MatchingConfig | None = None,
        engine: EngineConfig | None = None,
    ) -> None:
        self._conn = conn
        self._enricher = enricher
        self._ranker = ranker
        self._embedder = embedder
        self._matching = matching or MatchingConfig()
        self._engine = engine or EngineConfig()

    async def run(
        self,
        team_id: str,
        user_id: str,
        profile: NormalizedProfile,
        agent_run_id: str | None = None,
    ) -> dict[str, Any]:
        """Score stored jobs for this profile version. Returns run outputs."""
        if (profile.team_id, profile.user_id) != (team_id, user_id):
            msg = f"Profile belongs to {profile.team_id}/{profile.user_id}, not {team_id}/{user_id}"
            raise ValueError(msg)

        jobs = db.get_raw_jobs(self._conn)[: self._matching.max_jobs_per_run]
        user_context = build_user_context(profile)
        logger.info(
            "Matching %d job(s) for %s/%s at v%d", len(jobs), team_id, user_id,
            profile.profile_version,
        )

        # Step 1-2: embed and shortlist
        jobs_embedded = 0
        candidates = jobs
        if self._embedder is not None and self._matching.shortlist_enabled and jobs:
            jobs_embedded, candidates = await self._shortlist(
                self._embedder, profile, user_context, jobs
            )

        # Step 3: enrich what is missing or outdated
        stale_ids = set(
            db.job_ids_needing_enrichment(
                self._conn, ENRICHMENT_VERSION, [job.job_id for job in candidates]
            )
        )
        to_enrich = [job for job in candidates if job.job_id in stale_ids]
        enriched = await self._enricher.enrich_in_batches(to_enrich, self._engine.enrich_batch_size)
        for item in enriched.items:
            db.upsert_enriched_job(self._conn, item, ENRICHMENT_VERSION)

        # Step 4-5: rank and store
        ranked = await self._ranker.rank_in_batches(
            candidates, user_context, self._engine.rank_batch_size
        )
        tightness = profile.preferences.tightness
        for item in ranked.items:
            db.insert_job_score(
                self._conn,
                JobScore(
                    team_id=team_id,
                    user_id=user_id,
                    job_id=item.id,
                    profile_version=profile.profile_version,
                    tightness=tightness,
                    score=item.score,
                    breakdown=item.breakdown,
                    reasoning=item.reasoning,
                    agent_run_id=agent_run_id,
                ),
            )

        outputs = {
            "jobs_embedded": jobs_embedded,
            "jobs_shortlisted": len(candidates),
            "jobs_enriched": len(enriched.items),
            "jobs_ranked": len(ranked.items),
            "profile_version": profile.profile_version,
        }
        logger.info(
            "Matching complete: %d embedded, %d shortlisted, %d enriched, %d ranked",
            jobs_embedded, len(candidates), len(enriched.items), len(ranked.items),
        )
        return outputs

    async def _shortlist(
        self,
        embedder: Embedder,
        profile: NormalizedProfile,
        user_context: str,
        jobs: list[RawJob],
    ) -> tuple[int, list[RawJob]]:
        model = embedder.model_name

        stored = db.latest_profile_embedding(
            self._conn, profile.team_id, profile.user_id, profile.profile_version
        )
        if stored is not None and stored.model == model:
            profile_vector = stored.embedding
        else:
            [profile_vector] = await embedder.embed([user_context])
            db.insert_profile_embedding(
                self._conn,
                ProfileEmbedding(
                    team_id=profile.team_id,
                    user_id=profile.user_id,
                    profile_version=profile.profile_version,
                    model=model,
                    embedding=profile_vector,
                ),
            )

        known = db.get_job_embeddings(self._conn, model)
        missing = [job for job in jobs if job.job_id not in known]
        if missing:
            vectors = await embedder.embed([job_embedding_text(job) for job in missing])
            for job, vector in zip(missing, vectors, strict=True):
                db.upsert_job_embedding(self._conn, job.job_id, model, vector)
                known[job.job_id] = vector

        matches = shortlist(
            profile_vector,
            {job.job_id: known[job.job_id] for job in jobs},
            limit=self._matching.shortlist_size,
            threshold=self._matching.similarity_threshold,
        )
        by_id = {job.job_id: job for job in jobs}
        logger.info("Shortlisted %d of %d job(s)", len(matches), len(jobs))
        return len(missing), [by_id[job_id] for job_id, _ in matches]

    def as_task_handler(self) -> TaskHandler:
        """Adapt the pipeline to a runner handler.

        The payload must carry ``team_id``, ``user_id``, ``agent_run_id`` and
        the serialized ``profile``.
        """

        async def handler(payload: dict[str, Any]) -> dict[str, Any]:
            profile = NormalizedProfile.model_validate(payload["profile"])
            return await self.run(
                payload["team_id"],
                payload["user_id"],
                profile,
                agent_run_id=payload.get("agent_run_id"),
            )

        return handler
