"""Search-spec generation from a normalized profile.

SearchSpecGenerator performs one structured LLM call and validates the
result. SearchSpecService adds the version-keyed cache lookup and the
archive write around it.
"""

import asyncio
import logging
import sqlite3
from datetime import datetime

from pydantic import BaseModel, ConfigDict, ValidationError

from src.core import db
from src.core.errors import InvalidGenerationOutput
from src.core.schemas import SearchSpec
from src.llm.base import LLMProvider
from src.llm.structured import format_validation_errors, parse_structured
from src.profile.schema import NormalizedProfile
from src.search_spec.cache import SearchSpecCache
from src.search_spec.prompt import (
    SEARCH_SPEC_SYSTEM_PROMPT,
    format_user_message,
    serialize_profile,
)
from src.search_spec.schema import SEARCH_SPEC_JSON_SCHEMA, SearchSpecLLMOutput

logger = logging.getLogger(__name__)


class SearchSpecGenerator:
    """One structured-output request per call. No caching, no retries."""

    def __init__(self, provider: LLMProvider, model: str | None = None) -> None:
        self._provider = provider
        self._model = model

    async def generate(self, profile: NormalizedProfile) -> SearchSpecLLMOutput:
        """Ask the model for search parameters.

        Raises:
            InvalidGenerationOutput: response is not JSON or fails the schema.
        """
        prompt = format_user_message(serialize_profile(profile))
        logger.info(
            "Generating search spec for user %s (v%d)", profile.user_id, profile.profile_version
        )
        raw = await asyncio.to_thread(
            self._provider.complete,
            prompt,
            self._model,
            system=SEARCH_SPEC_SYSTEM_PROMPT,
            schema=SEARCH_SPEC_JSON_SCHEMA,
        )
        return parse_structured(raw, SearchSpecLLMOutput, what="Search spec output")


def build_search_spec(
    output: SearchSpecLLMOutput,
    profile: NormalizedProfile,
    now: datetime | None = None,
) -> SearchSpec:
    """Attach identity and platform fields to generated search parameters."""
    try:
        return SearchSpec(
            **output.model_dump(),
            user_id=profile.user_id,
            team_id=profile.team_id,
            profile_version=profile.profile_version,
            platforms=list(profile.preferences.platforms),
            max_results_per_platform=100,
            generated_at=now or datetime.now(),
        )
    except ValidationError as e:
        msg = "Assembled search spec failed validation"
        raise InvalidGenerationOutput(msg, format_validation_errors(e)) from e


class GenerateSearchSpecResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    spec: SearchSpec
    from_cache: bool
    cache_key: str
    stale: bool = False


class SearchSpecService:
    """Cache-first access to the search spec for a profile version."""

    def __init__(
        self,
        generator: SearchSpecGenerator,
        cache: SearchSpecCache,
        ttl_seconds: int | None = None,
        conn: sqlite3.Connection | None = None,
        allow_stale_fallback: bool = False,
    ) -> None:
        self._generator = generator
        self._cache = cache
        self._ttl_seconds = ttl_seconds
        self._conn = conn
        self._allow_stale_fallback = allow_stale_fallback

    async def get_or_generate(self, profile: NormalizedProfile) -> GenerateSearchSpecResult:
        """Return the cached spec for this version, generating it on a miss.

        Two concurrent misses may both generate; the last write wins, which
        is harmless because both specs belong to the same version.
        """
        key = SearchSpecCache.cache_key(profile.user_id, profile.profile_version)
        cached = await self._cache.get(profile.user_id, profile.profile_version)
        if cached is not None:
            logger.debug("Search spec cache hit: %s", key)
            return GenerateSearchSpecResult(spec=cached, from_cache=True, cache_key=key)

        try:
            output = await self._generator.generate(profile)
            spec = build_search_spec(output, profile)
        except InvalidGenerationOutput:
            fallback = self._stale_fallback(profile)
            if fallback is None:
                raise
            logger.warning(
                "Search spec generation failed for %s; serving v%d spec",
                key,
                fallback.profile_version,
                exc_info=True,
            )
            return GenerateSearchSpecResult(
                spec=fallback, from_cache=True, cache_key=key, stale=True
            )

        await self._cache.set(spec, self._ttl_seconds)
        if self._conn is not None:
            db.insert_search_spec(self._conn, spec)
        logger.info("Generated search spec %s", key)
        return GenerateSearchSpecResult(spec=spec, from_cache=False, cache_key=key)

    def _stale_fallback(self, profile: NormalizedProfile) -> SearchSpec | None:
        if not self._allow_stale_fallback or self._conn is None:
            return None
        return db.latest_search_spec(
            self._conn, profile.team_id, profile.user_id, below_version=profile.profile_version
        )
