"""Tests for batch plumbing: chunking, id checks, structured calls, bisection."""

import json
import time
from typing import Any
from unittest.mock import MagicMock

import pytest

from src.core.config import BatchMode
from src.core.errors import BatchIdentityMismatch, InvalidGenerationOutput
from src.core.schemas import EnrichedJob
from src.llm.base import LLMProvider
from src.llm.structured import validate_payload
from src.pipeline.batch import (
    BatchResult,
    RejectedItem,
    call_structured_batch,
    check_batch_identity,
    chunked,
    run_in_batches,
)


def _provider(payload: Any) -> MagicMock:
    provider = MagicMock(spec=LLMProvider)
    provider.complete.return_value = payload if isinstance(payload, str) else json.dumps(payload)
    return provider


def _entry(job_id: str, seniority: str = "mid") -> dict[str, str]:
    return {
        "id": job_id,
        "ai_seniority": seniority,
        "ai_summary": "Summary.",
        "description_md": "Body",
    }


def _parse(entry: dict[str, Any]) -> EnrichedJob:
    return validate_payload(entry, EnrichedJob, what="entry")


async def _call(provider: MagicMock, ids: list[str], mode: BatchMode = BatchMode.STRICT,
                **kwargs: Any) -> BatchResult[EnrichedJob]:
    return await call_structured_batch(
        provider,
        operation="enrich",
        system="sys",
        prompt="prompt",
        schema={"type": "object"},
        expected_ids=ids,
        parse_entry=_parse,
        mode=mode,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# chunked / check_batch_identity
# ---------------------------------------------------------------------------


class TestChunked:
    def test_splits_with_remainder(self) -> None:
        assert list(chunked([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]

    def test_empty(self) -> None:
        assert list(chunked([], 3)) == []

    def test_invalid_size(self) -> None:
        with pytest.raises(ValueError, match="batch size"):
            list(chunked([1], 0))


class TestCheckBatchIdentity:
    def test_exact_match_in_any_order(self) -> None:
        check_batch_identity("rank", ["a", "b"], ["b", "a"])

    def test_missing(self) -> None:
        with pytest.raises(BatchIdentityMismatch) as exc:
            check_batch_identity("rank", ["a", "b"], ["a"])
        assert exc.value.missing == {"b"}
        assert exc.value.unexpected == set()

    def test_unexpected(self) -> None:
        with pytest.raises(BatchIdentityMismatch, match="unexpected") as exc:
            check_batch_identity("rank", ["a"], ["a", "z"])
        assert exc.value.unexpected == {"z"}

    def test_duplicate_counts_as_unexpected(self) -> None:
        with pytest.raises(BatchIdentityMismatch) as exc:
            check_batch_identity("rank", ["a", "b"], ["a", "a", "b"])
        assert exc.value.unexpected == {"a"}

    def test_allow_missing_still_rejects_unexpected(self) -> None:
        check_batch_identity("rank", ["a", "b"], ["a"], allow_missing=True)
        with pytest.raises(BatchIdentityMismatch):
            check_batch_identity("rank", ["a"], ["x"], allow_missing=True)


# ---------------------------------------------------------------------------
# call_structured_batch
# ---------------------------------------------------------------------------


class TestCallStructuredBatch:
    async def test_results_follow_input_order(self) -> None:
        provider = _provider({"jobs": [_entry("b"), _entry("a")]})
        result = await _call(provider, ["a", "b"])
        assert [item.id for item in result.items] == ["a", "b"]
        assert result.rejected == []

    async def test_passes_system_schema_and_model(self) -> None:
        provider = _provider({"jobs": [_entry("a")]})
        await _call(provider, ["a"], model="m1")
        args, kwargs = provider.complete.call_args
        assert args == ("prompt", "m1")
        assert kwargs == {"system": "sys", "schema": {"type": "object"}}

    async def test_missing_jobs_array(self) -> None:
        with pytest.raises(InvalidGenerationOutput, match="'jobs' array"):
            await _call(_provider({"results": []}), ["a"])

    async def test_strict_malformed_entry_fails_batch(self) -> None:
        provider = _provider({"jobs": [_entry("a"), _entry("b", seniority="wizard")]})
        with pytest.raises(InvalidGenerationOutput) as exc:
            await _call(provider, ["a", "b"])
        assert any(line.startswith("b: ai_seniority") for line in exc.value.diagnostics)

    async def test_strict_missing_entry_fails_batch(self) -> None:
        with pytest.raises(BatchIdentityMismatch):
            await _call(_provider({"jobs": [_entry("a")]}), ["a", "b"])

    async def test_best_effort_rejects_malformed_and_missing(self) -> None:
        provider = _provider({"jobs": [_entry("a"), _entry("b", seniority="wizard")]})
        result = await _call(provider, ["a", "b", "c"], BatchMode.BEST_EFFORT)
        assert [item.id for item in result.items] == ["a"]
        assert {r.id for r in result.rejected} == {"b", "c"}
        missing = next(r for r in result.rejected if r.id == "c")
        assert missing.reason == "missing from response"

    async def test_best_effort_unexpected_id_still_fails(self) -> None:
        provider = _provider({"jobs": [_entry("a"), _entry("zzz")]})
        with pytest.raises(BatchIdentityMismatch):
            await _call(provider, ["a"], BatchMode.BEST_EFFORT)

    async def test_timeout(self) -> None:
        provider = MagicMock(spec=LLMProvider)
        provider.complete.side_effect = lambda *a, **kw: time.sleep(0.3) or "{}"
        with pytest.raises(TimeoutError):
            await _call(provider, ["a"], timeout_seconds=0.01)


# ---------------------------------------------------------------------------
# run_in_batches
# ---------------------------------------------------------------------------


class TestRunInBatches:
    async def test_merges_in_order(self) -> None:
        seen: list[list[int]] = []

        async def call(batch: list[int]) -> BatchResult[int]:
            seen.append(batch)
            return BatchResult(items=[x * 10 for x in batch])

        result = await run_in_batches([1, 2, 3, 4, 5], 2, call)
        assert seen == [[1, 2], [3, 4], [5]]
        assert result.items == [10, 20, 30, 40, 50]

    async def test_bisects_timed_out_batches(self) -> None:
        calls: list[list[int]] = []

        async def call(batch: list[int]) -> BatchResult[int]:
            calls.append(batch)
            if len(batch) > 1:
                raise TimeoutError
            return BatchResult(items=batch)

        result = await run_in_batches([1, 2, 3], 3, call, bisect_on_failure=True)
        assert result.items == [1, 2, 3]
        assert calls[0] == [1, 2, 3]
        assert [1] in calls and [2, 3] in calls

    async def test_single_item_timeout_propagates(self) -> None:
        async def call(batch: list[int]) -> BatchResult[int]:
            raise TimeoutError

        with pytest.raises(TimeoutError):
            await run_in_batches([1], 5, call, bisect_on_failure=True)

    async def test_no_bisect_by_default(self) -> None:
        async def call(batch: list[int]) -> BatchResult[int]:
            raise TimeoutError

        with pytest.raises(TimeoutError):
            await run_in_batches([1, 2], 2, call)

    async def test_rejections_accumulate(self) -> None:
        async def call(batch: list[int]) -> BatchResult[int]:
            return BatchResult(rejected=[RejectedItem(id=str(x), reason="bad") for x in batch])

        result = await run_in_batches([1, 2, 3], 2, call)
        assert [r.id for r in result.rejected] == ["1", "2", "3"]
