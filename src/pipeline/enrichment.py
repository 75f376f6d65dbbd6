"""AI enrichment of raw job postings.

Each job gets a seniority class, a short summary, and a cleaned-up markdown
description. Enrichment does not depend on the profile, so results are
stored once per job and tagged with ENRICHMENT_VERSION; changing the prompt
means bumping that tag.
"""

import logging
from typing import Any

from src.core.config import BatchMode
from src.core.schemas import EnrichedJob, RawJob
from src.llm.base import LLMProvider
from src.llm.structured import validate_payload
from src.pipeline.batch import BatchResult, call_structured_batch, run_in_batches

logger = logging.getLogger(__name__)

ENRICHMENT_VERSION = "enrich-v1"
ENRICH_BATCH_SIZE = 5

ENRICH_SYSTEM_PROMPT = """You are a job posting enrichment assistant. For each job, you must:

1. **ai_seniority** — Classify as "junior", "mid", or "senior" based on:
   - Years of experience required (0-2 = junior, 3-5 = mid, 6+ = senior)
   - Skill complexity and leadership expectations
   - Budget/rate (higher rates suggest senior)
   - If unclear, default to "mid"

2. **ai_summary** — Write 2-3 concise sentences covering:
   - What the role does day-to-day
   - Key technologies or skills required
   - Any standout details (remote, equity, growth potential)

3. **description_md** — Rewrite the raw description as clean Markdown with proper structure:
   - Use ## headings: "Role", "Responsibilities", "Requirements", "Nice to Have", "About the Company"
   - Use bullet lists for items
   - Remove duplicate info, fix formatting, preserve all meaningful content
   - If a section has no content, omit it entirely
   - Keep it professional and scannable

Always return the same job IDs you received."""

ENRICH_JSON_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "jobs": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "id": {"type": "string"},
                    "ai_seniority": {"type": "string", "enum": ["junior", "mid", "senior"]},
                    "ai_summary": {"type": "string"},
                    "description_md": {"type": "string"},
                },
                "required": ["id", "ai_seniority", "ai_summary", "description_md"],
                "additionalProperties": False,
            },
        },
    },
    "required": ["jobs"],
    "additionalProperties": False,
}


def build_enrich_prompt(jobs: list[RawJob]) -> str:
    sections = [
        f"### Job {i} (id: {job.job_id})\n**Title:** {job.title}\n"
        f"**Description:**\n{job.description}"
        for i, job in enumerate(jobs, start=1)
    ]
    return f"Enrich the following {len(jobs)} job(s):\n\n" + "\n\n---\n\n".join(sections)


def _parse_enriched(entry: dict[str, Any]) -> EnrichedJob:
    return validate_payload(entry, EnrichedJob, what="Enriched job")


class JobEnricher:
    """Batched enrichment calls against one LLM provider."""

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

    async def enrich_batch(self, jobs: list[RawJob]) -> BatchResult[EnrichedJob]:
        """Enrich one batch in a single call. Results follow input order."""
        if not jobs:
            return BatchResult()
        return await call_structured_batch(
            self._provider,
            operation="enrich",
            system=ENRICH_SYSTEM_PROMPT,
            prompt=build_enrich_prompt(jobs),
            schema=ENRICH_JSON_SCHEMA,
            expected_ids=[job.job_id for job in jobs],
            parse_entry=_parse_enriched,
            mode=self._mode,
            model=self._model,
            timeout_seconds=self._timeout_seconds,
        )

    async def enrich(self, jobs: list[RawJob]) -> list[EnrichedJob]:
        """One enriched entry per job, in input order; use enrich_batch for partial results."""
        return (await self.enrich_batch(jobs)).require_complete("enrich")

    async def enrich_in_batches(
        self, jobs: list[RawJob], batch_size: int = ENRICH_BATCH_SIZE
    ) -> BatchResult[EnrichedJob]:
        result = await run_in_batches(
            jobs, batch_size, self.enrich_batch, bisect_on_failure=self._bisect_on_failure
        )
        logger.info("Enriched %d/%d jobs", len(result.items), len(jobs))
        return result
