"""LLM-assisted match scoring of jobs against a freelancer profile.

The model returns five 0-100 sub-scores per job. Sub-scores are validated
strictly (out-of-range values are rejected, not clamped) and the overall
score is always recomputed locally from them, so a model that misreports
its own weighted sum cannot skew the ranking.
"""

import logging
from typing import Any

from src.core.config import BatchMode
from src.core.errors import InvalidGenerationOutput
from src.core.schemas import RankedJob, RawJob, ScoreBreakdown
from src.llm.base import LLMProvider
from src.llm.structured import validate_payload
from src.pipeline.batch import BatchResult, call_structured_batch, run_in_batches

logger = logging.getLogger(__name__)

RANK_BATCH_SIZE = 5
_DESCRIPTION_LIMIT = 1500

SCORE_WEIGHTS: dict[str, float] = {
    "skill_match": 0.30,
    "budget_fit": 0.25,
    "client_quality": 0.15,
    "scope_fit": 0.15,
    "win_probability": 0.15,
}

RANK_SYSTEM_PROMPT = """You are a job-candidate match scorer. For each job, evaluate how well it matches the freelancer's profile.

## Scoring Weights
- **skill_match (30%)** — How well do the job's required skills overlap with the freelancer's skills?
- **budget_fit (25%)** — Does the job's budget/rate align with the freelancer's rate expectations?
- **client_quality (15%)** — Client rating, hire count, payment verification, company reputation
- **scope_fit (15%)** — Does the project scope/type match the freelancer's preferred work style?
- **win_probability (15%)** — Given competition level and the freelancer's experience, how likely are they to win?

## Overall Score
The overall score is a weighted average: skill_match*0.30 + budget_fit*0.25 + client_quality*0.15 + scope_fit*0.15 + win_probability*0.15

## Rules
- Each sub-score is 0-100
- The reasoning should be 1-2 sentences explaining the main factors
- Be honest — a poor match should score low
- Always return the same job IDs you received"""

_BREAKDOWN_KEYS = list(SCORE_WEIGHTS)

RANK_JSON_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "jobs": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "id": {"type": "string"},
                    "score": {"type": "number"},
                    "breakdown": {
                        "type": "object",
                        "properties": {key: {"type": "number"} for key in _BREAKDOWN_KEYS},
                        "required": _BREAKDOWN_KEYS,
                        "additionalProperties": False,
                    },
                    "reasoning": {"type": "string"},
                },
                "required": ["id", "score", "breakdown", "reasoning"],
                "additionalProperties": False,
            },
        },
    },
    "required": ["jobs"],
    "additionalProperties": False,
}


def weighted_score(breakdown: ScoreBreakdown) -> float:
    """Overall 0-100 score from the five sub-scores."""
    total = sum(getattr(breakdown, key) * weight for key, weight in SCORE_WEIGHTS.items())
    return round(max(0.0, min(100.0, total)), 2)


def _amount(value: float | None) -> str:
    return "?" if value is None else f"{value:g}"


def _format_budget(job: RawJob) -> str:
    if job.budget_type == "hourly":
        return f"${_amount(job.hourly_min)}–{_amount(job.hourly_max)}/hr"
    if job.budget_type == "fixed":
        return f"Fixed ${_amount(job.fixed_budget_min)}–{_amount(job.fixed_budget_max)}"
    return "Not specified"


def _format_job(index: int, job: RawJob) -> str:
    rating = job.client_rating if job.client_rating is not None else "N/A"
    payment = "verified" if job.client_payment_verified else "unverified"
    return (
        f"### Job {index} (id: {job.job_id})\n"
        f"**Title:** {job.title}\n"
        f"**Skills:** {', '.join(job.skills)}\n"
        f"**Budget:** {_format_budget(job)}\n"
        f"**Client:** Rating {rating}, {job.client_hires or 0} hires, Payment {payment}\n"
        f"**Description:**\n{job.description[:_DESCRIPTION_LIMIT]}"
    )


def build_rank_prompt(jobs: list[RawJob], user_context: str) -> str:
    sections = [_format_job(i, job) for i, job in enumerate(jobs, start=1)]
    return (
        f"## Freelancer Profile\n{user_context}\n\n## Jobs to Score\n\n"
        + "\n\n---\n\n".join(sections)
    )


def _parse_ranked(entry: dict[str, Any]) -> RankedJob:
    breakdown = validate_payload(entry.get("breakdown"), ScoreBreakdown, what="Score breakdown")
    reasoning = entry.get("reasoning", "")
    if not isinstance(reasoning, str):
        msg = "Ranked job reasoning must be a string"
        raise InvalidGenerationOutput(msg)

    score = weighted_score(breakdown)
    reported = entry.get("score")
    if isinstance(reported, int | float) and abs(float(reported) - score) > 1.0:
        logger.debug(
            "Job %s: model reported score %.2f, recomputed %.2f", entry.get("id"), reported, score
        )
    return RankedJob(id=str(entry["id"]), score=score, breakdown=breakdown, reasoning=reasoning)


class JobRanker:
    """Batched ranking calls against one LLM provider."""

    def __init__(
        self,
        provider: LLMProvider,
        model: str | None = None,
        *,
        mode: BatchMode = BatchMode.STRICT,
        timeout_seconds: float | None = None,
        bisect_on_failure: bool = False,
    ) -> None:
        self._provider = provider
        self._model = model
        self._mode = mode
        self._timeout_seconds = timeout_seconds
        self._bisect_on_failure = bisect_on_failure

    async def rank_batch(self, jobs: list[RawJob], user_context: str) -> BatchResult[RankedJob]:
        """Score one batch in a single call. Results follow input order."""
        if not jobs:
            return BatchResult()
        return await call_structured_batch(
            self._provider,
            operation="rank",
            system=RANK_SYSTEM_PROMPT,
            prompt=build_rank_prompt(jobs, user_context),
            schema=RANK_JSON_SCHEMA,
            expected_ids=[job.job_id for job in jobs],
            parse_entry=_parse_ranked,
            mode=self._mode,
            model=self._model,
            timeout_seconds=self._timeout_seconds,
        )

    async def rank(self, jobs: list[RawJob], user_context: str) -> list[RankedJob]:
        """One ranked entry per job, in input order; use rank_batch for partial results."""
        return (await self.rank_batch(jobs, user_context)).require_complete("rank")

    async def rank_in_batches(
        self, jobs: list[RawJob], user_context: str, batch_size: int = RANK_BATCH_SIZE
    ) -> BatchResult[RankedJob]:
        async def call(batch: list[RawJob]) -> BatchResult[RankedJob]:
            return await self.rank_batch(batch, user_context)

        result = await run_in_batches(
            jobs, batch_size, call, bisect_on_failure=self._bisect_on_failure
        )
        logger.info("Ranked %d/%d jobs", len(result.items), len(jobs))
        return result
