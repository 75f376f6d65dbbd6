"""In-process task runner backed by asyncio tasks.

Handlers are coroutine functions registered by task name. A handler's
return value becomes the run output; an exception marks the run failed.
Runs only live as long as the event loop, so this runner suits the CLI
and tests rather than production.
"""

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from src.runners.base import TaskHandle, TaskRunner, TaskRunStatus

logger = logging.getLogger(__name__)

TaskHandler = Callable[[dict[str, Any]], Awaitable[dict[str, Any] | None]]


class LocalTaskRunner(TaskRunner):
    def __init__(self) -> None:
        self._handlers: dict[str, TaskHandler] = {}
        self._tasks: dict[str, asyncio.Task[dict[str, Any] | None]] = {}

    @property
    def runner_id(self) -> str:
        return "local"

    def register(self, task_name: str, handler: TaskHandler) -> None:
        self._handlers[task_name] = handler

    async def trigger(self, task_name: str, payload: dict[str, Any]) -> TaskHandle:
        handler = self._handlers.get(task_name)
        if handler is None:
            valid = ", ".join(sorted(self._handlers)) or "none"
            msg = f"Unknown task '{task_name}'. Registered: {valid}"
            raise ValueError(msg)

        run_id = f"local_{uuid.uuid4().hex}"
        self._tasks[run_id] = asyncio.create_task(handler(dict(payload)), name=run_id)
        logger.info("Started local task %s (%s)", task_name, run_id)
        return TaskHandle(id=run_id)

    async def retrieve(self, run_id: str) -> TaskRunStatus:
        task = self._tasks.get(run_id)
        if task is None:
            msg = f"Unknown local run: {run_id}"
            raise LookupError(msg)
        if not task.done():
            return TaskRunStatus(id=run_id, status="running")
        if task.cancelled():
            return TaskRunStatus(id=run_id, status="failed", error="cancelled")
        exc = task.exception()
        if exc is not None:
            return TaskRunStatus(id=run_id, status="failed", error=str(exc) or type(exc).__name__)
        return TaskRunStatus(id=run_id, status="succeeded", output=task.result())

    async def wait(self, run_id: str) -> TaskRunStatus:
        """Block until the run finishes, without raising its exception."""
        task = self._tasks.get(run_id)
        if task is None:
            msg = f"Unknown local run: {run_id}"
            raise LookupError(msg)
        await asyncio.wait({task})
        return await self.retrieve(run_id)
