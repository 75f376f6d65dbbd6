"""Shared batch plumbing for the enrichment and ranking calls."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterator, Sequence
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from src.core.config import BatchMode
from src.core.errors import BatchIdentityMismatch, InvalidGenerationOutput
from src.llm.base import LLMProvider
from src.llm.structured import parse_json_response

logger = logging.getLogger(__name__)

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """Yield consecutive slices of at most ``size`` items."""
    if size < 1:
        msg = f"batch size must be >= 1, got {size}"
        raise ValueError(msg)
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def check_batch_identity(
    operation: str,
    expected_ids: Sequence[str],
    returned_ids: Sequence[str],
    *,
    allow_missing: bool = False,
) -> None:
    """Require the returned id set to match the requested one.

    Duplicated ids in the response count as unexpected. With
    ``allow_missing`` only unexpected ids are an error.
    """
    expected = set(expected_ids)
    seen: set[str] = set()
    unexpected: set[str] = set()
    for job_id in returned_ids:
        if job_id not in expected or job_id in seen:
            unexpected.add(job_id)
        seen.add(job_id)
    missing = set() if allow_missing else expected - seen
    if missing or unexpected:
        error = BatchIdentityMismatch(operation, missing, unexpected)
        logger.error("%s", error)
        raise error


class RejectedItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    reason: str


class BatchResult(BaseModel, Generic[T]):
    """Accepted results in input order, plus entries dropped in best-effort mode."""

    items: list[T] = Field(default_factory=list)
    rejected: list[RejectedItem] = Field(default_factory=list)

    def extend(self, other: "BatchResult[T]") -> None:
        self.items.extend(other.items)
        self.rejected.extend(other.rejected)

    def require_complete(self, operation: str) -> list[T]:
        """Return the items, or raise if any entry was rejected."""
        if self.rejected:
            error = BatchIdentityMismatch(operation, {r.id for r in self.rejected}, set())
            logger.error("%s", error)
            raise error
        return self.items


def _entry_id(entry: Any) -> str:
    if isinstance(entry, dict) and "id" in entry:
        return str(entry["id"])
    return "<no id>"


async def call_structured_batch(
    provider: LLMProvider,
    *,
    operation: str,
    system: str,
    prompt: str,
    schema: dict[str, Any],
    expected_ids: Sequence[str],
    parse_entry: Callable[[dict[str, Any]], T],
    mode: BatchMode = BatchMode.STRICT,
    model: str | None = None,
    timeout_seconds: float | None = None,
) -> BatchResult[T]:
    """Run one structured LLM call over a batch and validate every entry.

    The response must be ``{"jobs": [...]}``. In STRICT mode any missing,
    unexpected, or malformed entry fails the batch. In BEST_EFFORT mode
    missing and malformed entries are reported as rejected; unexpected ids
    still fail, since they mean the response cannot be trusted.

    Raises:
        InvalidGenerationOutput: unparseable response or (STRICT) bad entry.
        BatchIdentityMismatch: returned id set differs from expected_ids.
        TimeoutError: the call exceeded timeout_seconds.
    """
    call = asyncio.to_thread(provider.complete, prompt, model, system=system, schema=schema)
    if timeout_seconds is not None:
        raw = await asyncio.wait_for(call, timeout=timeout_seconds)
    else:
        raw = await call

    data = parse_json_response(raw)
    if not isinstance(data, dict) or not isinstance(data.get("jobs"), list):
        msg = f"{operation} response must be an object with a 'jobs' array"
        raise InvalidGenerationOutput(msg)
    entries: list[Any] = data["jobs"]

    best_effort = mode is BatchMode.BEST_EFFORT
    check_batch_identity(
        operation,
        expected_ids,
        [_entry_id(e) for e in entries],
        allow_missing=best_effort,
    )

    parsed: dict[str, T] = {}
    rejected: list[RejectedItem] = []
    diagnostics: list[str] = []
    for entry in entries:
        job_id = _entry_id(entry)
        try:
            parsed[job_id] = parse_entry(entry)
        except InvalidGenerationOutput as e:
            diagnostics.extend(f"{job_id}: {line}" for line in e.diagnostics or [str(e)])
            rejected.append(RejectedItem(id=job_id, reason=str(e)))

    if diagnostics and not best_effort:
        msg = f"{operation} returned malformed entries"
        raise InvalidGenerationOutput(msg, diagnostics)

    for job_id in expected_ids:
        if job_id not in parsed and all(r.id != job_id for r in rejected):
            rejected.append(RejectedItem(id=job_id, reason="missing from response"))
    if rejected:
        logger.warning(
            "%s dropped %d of %d entries: %s",
            operation,
            len(rejected),
            len(expected_ids),
            ", ".join(r.id for r in rejected),
        )

    items = [parsed[job_id] for job_id in expected_ids if job_id in parsed]
    return BatchResult(items=items, rejected=rejected)


async def run_in_batches(
    items: Sequence[T],
    batch_size: int,
    call: Callable[[list[T]], Awaitable[BatchResult[Any]]],
    *,
    bisect_on_failure: bool = False,
) -> BatchResult[Any]:
    """Apply ``call`` to consecutive batches and merge the results in order.

    With ``bisect_on_failure`` a batch that times out is split in half and
    each half retried, recursively, down to single items.
    """
    total: BatchResult[Any] = BatchResult()
    for batch in chunked(items, batch_size):
        total.extend(await _call_with_bisect(batch, call, bisect_on_failure))
    return total


async def _call_with_bisect(
    batch: list[T],
    call: Callable[[list[T]], Awaitable[BatchResult[Any]]],
    bisect: bool,
) -> BatchResult[Any]:
    try:
        return await call(batch)
    except TimeoutError:
        if not bisect or len(batch) < 2:
            raise
        middle = len(batch) // 2
        logger.warning("Batch of %d timed out; splitting into %d + %d",
                       len(batch), middle, len(batch) - middle)
        result = await _call_with_bisect(batch[:middle], call, bisect)
        result.extend(await _call_with_bisect(batch[middle:], call, bisect))
        return result
