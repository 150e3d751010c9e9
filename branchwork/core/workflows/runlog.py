"""Append-only run log: per-task and workflow-level lifecycle events."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class LogEvent(str, Enum):
    """Event kinds recorded in the run log."""

    STARTED_WORKFLOW = 'StartedWorkflow'
    WORKFLOW_COMPLETED = 'WorkflowCompleted'
    TASK_ADDED = 'TaskAdded'
    TASK_ALREADY_EXISTS = 'TaskAlreadyExists'
    DEPENDENCIES_REGISTERED = 'DependenciesRegistered'
    TASK_STARTED = 'TaskStarted'
    TASK_COMPLETED = 'TaskCompleted'
    TASK_FAILED = 'TaskFailed'
    TASK_RETRYING = 'TaskRetrying'
    TASK_SKIPPED = 'TaskSkipped'


class LogEntry(BaseModel):
    """A single run-log record."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    event: LogEvent
    status: str
    details: str
    attempt: Optional[int] = None
    error: Optional[str] = None


class WorkflowLog(BaseModel):
    """Snapshot returned by Workflow.get_log()."""

    model_config = ConfigDict(frozen=True)

    workflow_id: str
    workflow: list[LogEntry] = Field(default_factory=list)
    tasks: dict[str, list[LogEntry]] = Field(default_factory=dict)

    def for_task(self, name: str) -> list[LogEntry]:
        return self.tasks.get(name, [])

    def events_for(self, name: str) -> list[LogEvent]:
        return [entry.event for entry in self.for_task(name)]

    def count(self, name: str, event: LogEvent) -> int:
        return sum(1 for entry in self.for_task(name) if entry.event == event)


class RunLog:
    """Mutable store behind WorkflowLog; written only by the engine."""

    def __init__(self, workflow_id: str, *, enabled: bool = True) -> None:
        self.workflow_id = workflow_id
        self.enabled = enabled
        self._workflow: list[LogEntry] = []
        self._tasks: dict[str, list[LogEntry]] = {}

    def task(
        self,
        task_name: str,
        event: LogEvent,
        status: str,
        details: str,
        *,
        attempt: int | None = None,
        error: BaseException | str | None = None,
    ) -> None:
        if not self.enabled:
            return
        self._tasks.setdefault(task_name, []).append(
            LogEntry(
                event=event,
                status=status,
                details=details,
                attempt=attempt,
                error=_error_text(error),
            )
        )

    def workflow(self, event: LogEvent, status: str, details: str) -> None:
        if not self.enabled:
            return
        self._workflow.append(LogEntry(event=event, status=status, details=details))

    def snapshot(self) -> WorkflowLog:
        return WorkflowLog(
            workflow_id=self.workflow_id,
            workflow=list(self._workflow),
            tasks={name: list(entries) for name, entries in self._tasks.items()},
        )


def _error_text(error: BaseException | str | None) -> str | None:
    if error is None or isinstance(error, str):
        return error
    text = str(error)
    return f'{type(error).__name__}: {text}' if text else type(error).__name__
