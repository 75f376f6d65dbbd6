"""Task runner backed by the trigger.dev REST API."""

import logging
import os
from typing import Any

import httpx

from src.runners.base import TaskHandle, TaskRunner, TaskRunStatus, TaskState

logger = logging.getLogger(__name__)

_DEFAULT_BASE_URL = "https://api.trigger.dev"

_SUCCEEDED = {"COMPLETED"}
_FAILED = {"FAILED", "CRASHED", "SYSTEM_FAILURE", "CANCELED", "EXPIRED", "TIMED_OUT"}


def map_run_status(raw_status: str) -> TaskState:
    """Collapse trigger.dev run statuses into running / succeeded / failed."""
    status = raw_status.upper()
    if status in _SUCCEEDED:
        return "succeeded"
    if status in _FAILED:
        return "failed"
    return "running"


class TriggerDevRunner(TaskRunner):
    """Triggers and inspects trigger.dev runs.

    The secret key comes from ``TRIGGER_SECRET_KEY``. A preconfigured
    ``httpx.AsyncClient`` may be injected; otherwise one is created per call.
    """

    def __init__(
        self,
        base_url: str = _DEFAULT_BASE_URL,
        timeout_seconds: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._client = client

    @property
    def runner_id(self) -> str:
        return "trigger_dev"

    def _headers(self) -> dict[str, str]:
        api_key = os.environ.get("TRIGGER_SECRET_KEY")
        if not api_key:
            msg = "TRIGGER_SECRET_KEY environment variable is required"
            raise ValueError(msg)
        return {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        headers = self._headers()
        if self._client is not None:
            response = await self._client.request(method, url, headers=headers, **kwargs)
        else:
            async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                response = await client.request(method, url, headers=headers, **kwargs)
        response.raise_for_status()
        return response.json()  # type: ignore[no-any-return]

    async def trigger(self, task_name: str, payload: dict[str, Any]) -> TaskHandle:
        data = await self._request(
            "POST", f"/api/v1/tasks/{task_name}/trigger", json={"payload": payload}
        )
        run_id = data.get("id")
        if not run_id:
            msg = f"trigger.dev response for '{task_name}' has no run id"
            raise ValueError(msg)
        logger.info("Triggered trigger.dev task %s (%s)", task_name, run_id)
        return TaskHandle(id=str(run_id))

    async def retrieve(self, run_id: str) -> TaskRunStatus:
        data = await self._request("GET", f"/api/v3/runs/{run_id}")
        raw_status = str(data.get("status", ""))
        status = map_run_status(raw_status)

        error = None
        if status == "failed":
            err = data.get("error")
            if isinstance(err, dict):
                error = err.get("message") or raw_status
            else:
                error = str(err) if err else raw_status

        output = data.get("output")
        return TaskRunStatus(
            id=run_id,
            status=status,
            output=output if isinstance(output, dict) else None,
            error=error,
        )
