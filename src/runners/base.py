"""Abstract base class for task-execution substrates."""

from abc import ABC, abstractmethod
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

TaskState = Literal["running", "succeeded", "failed"]


class TaskHandle(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str


class TaskRunStatus(BaseModel):
    """Substrate-side view of one task run."""

    model_config = ConfigDict(frozen=True)

    id: str
    status: TaskState
    output: dict[str, Any] | None = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status != "running"


class TaskRunner(ABC):
    """Base class that every task-execution substrate must implement."""

    @property
    @abstractmethod
    def runner_id(self) -> str:
        """Unique identifier for this substrate (e.g. 'local')."""

    @abstractmethod
    async def trigger(self, task_name: str, payload: dict[str, Any]) -> TaskHandle:
        """Hand a task off for background execution and return its handle."""

    @abstractmethod
    async def retrieve(self, run_id: str) -> TaskRunStatus:
        """Return the current status of a previously triggered run."""
