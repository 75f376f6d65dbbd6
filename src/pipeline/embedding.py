"""Embedding-based shortlisting ahead of the LLM enrichment and ranking calls."""

import asyncio
import logging
import math

from src.core.schemas import RawJob
from src.llm.base import LLMProvider
from src.pipeline.batch import chunked

logger = logging.getLogger(__name__)

EMBED_BATCH_SIZE = 100
_EMBED_DESCRIPTION_LIMIT = 2000


def job_embedding_text(job: RawJob) -> str:
    return f"{job.title}\n{job.description[:_EMBED_DESCRIPTION_LIMIT]}"


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine of the angle between two vectors; 0.0 if either is all zeros."""
    if len(a) != len(b):
        msg = f"Embedding dimensions differ: {len(a)} != {len(b)}"
        raise ValueError(msg)
    dot = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (norm_a * norm_b)


def shortlist(
    profile_embedding: list[float],
    job_embeddings: dict[str, list[float]],
    limit: int,
    threshold: float,
) -> list[tuple[str, float]]:
    """Top ``limit`` (job_id, similarity) pairs at or above ``threshold``, best first."""
    scored = [
        (job_id, cosine_similarity(profile_embedding, vector))
        for job_id, vector in job_embeddings.items()
    ]
    kept = [pair for pair in scored if pair[1] >= threshold]
    kept.sort(key=lambda pair: (-pair[1], pair[0]))
    return kept[:limit]


class Embedder:
    """Batched embedding calls against one provider."""

    def __init__(self, provider: LLMProvider, model: str | None = None) -> None:
        resolved = model or provider.default_embedding_model
        if resolved is None:
            msg = f"Provider '{provider.provider_id}' does not support embeddings"
            raise ValueError(msg)
        self._provider = provider
        self._model = resolved

    @property
    def model_name(self) -> str:
        return self._model

    async def embed(self, texts: list[str]) -> list[list[float]]:
        vectors: list[list[float]] = []
        for batch in chunked(texts, EMBED_BATCH_SIZE):
            result = await asyncio.to_thread(self._provider.embed, batch, self._model)
            if len(result) != len(batch):
                msg = f"Embedding call returned {len(result)} vectors for {len(batch)} inputs"
                raise ValueError(msg)
            vectors.extend(result)
            logger.debug("Embedded %d/%d texts", len(vectors), len(texts))
        return vectors
