"""Run orchestrator: agent_runs bookkeeping around a task-execution substrate.

Lifecycle of one run:
  1. Insert agent_runs row as queued, with frozen inputs
  2. Hand the task to the runner
  3. Move the row to running with the substrate's run id
  4. Record succeeded or failed exactly once (terminal states are sticky)

A failed run is a status, not an exception. Only a failed handoff in step 2
raises, after the row has been marked failed.
"""

import asyncio
import logging
import sqlite3
import time
from collections.abc import Callable
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

from src.core import db
from src.core.errors import RunNotFound
from src.core.schemas import AgentRun, AgentType, RunTrigger
from src.runners.base import TaskRunner

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 5.0
DEFAULT_POLL_TIMEOUT_SECONDS = 600.0


class PollOutcome(BaseModel):
    """Last observed run state. ``abandoned`` means the client stopped waiting."""

    model_config = ConfigDict(frozen=True)

    run: AgentRun
    abandoned: bool = False


class RunOrchestrator:
    def __init__(
        self,
        conn: sqlite3.Connection,
        runner: TaskRunner,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        poll_timeout_seconds: float = DEFAULT_POLL_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._conn = conn
        self._runner = runner
        self._poll_interval_seconds = poll_interval_seconds
        self._poll_timeout_seconds = poll_timeout_seconds
        self._clock = clock

    async def start_run(
        self,
        team_id: str,
        user_id: str | None,
        agent_type: AgentType,
        task_name: str,
        inputs: dict[str, Any],
        trigger: RunTrigger = "manual",
    ) -> AgentRun:
        """Record a queued run and trigger it on the substrate.

        The task payload carries the inputs plus ``team_id``, ``user_id``
        and ``agent_run_id`` so the task can report back.
        """
        run_id = db.insert_agent_run(self._conn, team_id, user_id, agent_type, trigger, inputs)
        payload = {**inputs, "team_id": team_id, "user_id": user_id, "agent_run_id": run_id}

        try:
            handle = await self._runner.trigger(task_name, payload)
        except Exception as e:
            logger.error("Failed to trigger %s for run %s: %s", task_name, run_id, e)
            db.finish_agent_run(
                self._conn, run_id, "failed", datetime.now(), error_text=f"Trigger failed: {e}"
            )
            raise

        db.mark_agent_run_running(self._conn, run_id, handle.id, datetime.now())
        logger.info("Run %s (%s) started as %s on %s", run_id, agent_type, handle.id,
                    self._runner.runner_id)
        return self.get_status(run_id)

    def get_status(self, run_id: str) -> AgentRun:
        run = db.get_agent_run(self._conn, run_id)
        if run is None:
            msg = f"Agent run not found: {run_id}"
            raise RunNotFound(msg)
        return run

    def latest_run(self, team_id: str, agent_type: AgentType) -> AgentRun | None:
        return db.latest_agent_run(self._conn, team_id, agent_type)

    def mark_succeeded(self, run_id: str, outputs: dict[str, Any] | None = None) -> AgentRun:
        return self._finish(run_id, "succeeded", outputs=outputs)

    def mark_failed(self, run_id: str, error_text: str) -> AgentRun:
        return self._finish(run_id, "failed", error_text=error_text)

    def _finish(
        self,
        run_id: str,
        status: str,
        outputs: dict[str, Any] | None = None,
        error_text: str | None = None,
    ) -> AgentRun:
        current = self.get_status(run_id)
        if current.is_terminal:
            logger.debug("Run %s already %s; ignoring %s", run_id, current.status, status)
            return current
        if db.finish_agent_run(
            self._conn, run_id, status, datetime.now(), outputs=outputs, error_text=error_text
        ):
            log = logger.info if status == "succeeded" else logger.warning
            log("Run %s %s%s", run_id, status, f": {error_text}" if error_text else "")
        return self.get_status(run_id)

    async def refresh(self, run_id: str) -> AgentRun:
        """Pull the substrate's view and record a terminal state if reached."""
        run = self.get_status(run_id)
        if run.is_terminal or run.trigger_run_id is None:
            return run

        status = await self._runner.retrieve(run.trigger_run_id)
        if status.status == "succeeded":
            return self.mark_succeeded(run_id, status.output)
        if status.status == "failed":
            return self.mark_failed(run_id, status.error or "Task failed")
        return self.get_status(run_id)

    async def poll_until_terminal(
        self,
        run_id: str,
        interval_seconds: float | None = None,
        timeout_seconds: float | None = None,
    ) -> PollOutcome:
        """Refresh every interval until the run is terminal or time runs out.

        Timing out only stops this client from waiting; the run itself is
        left untouched and may still finish later.
        """
        interval = self._poll_interval_seconds if interval_seconds is None else interval_seconds
        timeout = self._poll_timeout_seconds if timeout_seconds is None else timeout_seconds
        deadline = self._clock() + timeout

        while True:
            run = await self.refresh(run_id)
            if run.is_terminal:
                return PollOutcome(run=run, abandoned=False)
            remaining = deadline - self._clock()
            if remaining <= 0:
                logger.warning("Stopped polling run %s after %.0fs (still %s)",
                               run_id, timeout, run.status)
                return PollOutcome(run=run, abandoned=True)
            await asyncio.sleep(min(interval, remaining))
