"""Execution pipeline: run_if gate, retry loop, timeout, lifecycle hooks."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from branchwork.core.errors import BranchworkError, TaskTimeoutError
from branchwork.core.logging import workflow_logger
from branchwork.core.models.config import WorkflowConfig
from branchwork.core.models.tasks import RetryPolicy, Task
from branchwork.core.types.status import TaskState
from branchwork.core.workflows.runlog import LogEvent, RunLog


@dataclass(frozen=True)
class WorkflowHooks:
    """Workflow-scoped callbacks, invoked after the task-scoped ones."""

    on_task_start: Callable[[Task], Any] | None = None
    on_task_complete: Callable[[Task], Any] | None = None
    on_task_error: Callable[[BaseException, Task, Mapping[str, Any]], Any] | None = None


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class TaskExecutor:
    """
    Runs the attempt cycle for one eligible task.

    Failures never escape: every attempt outcome ends up in the run log and
    the returned TaskState is COMPLETED, FAILED, or SKIPPED. The only
    exception that propagates is the cancellation of the scheduler's own
    task.
    """

    def __init__(
        self,
        *,
        run_log: RunLog,
        config: WorkflowConfig,
        hooks: WorkflowHooks,
        results: Mapping[str, Any],
        record_result: Callable[[Task, Any], None],
        insert_task: Callable[[Task], bool],
    ) -> None:
        self.run_log = run_log
        self.config = config
        self.hooks = hooks
        self.results = results
        self.logger = workflow_logger(
            'workflow.pipeline', run_log.workflow_id, verbose=config.verbose
        )
        self._record_result = record_result
        self._insert_task = insert_task
        self._limiter: asyncio.Semaphore | None = (
            asyncio.Semaphore(config.max_concurrency)
            if config.max_concurrency is not None
            else None
        )

    def retry_policy_for(self, task: Task) -> RetryPolicy:
        return task.retry or self.config.default_retry

    def timeout_for(self, task: Task) -> int | None:
        return task.timeout_ms if task.timeout_ms is not None else self.config.default_timeout_ms

    async def execute(self, task: Task) -> TaskState:
        # 1. run_if gate
        if task.run_if is not None:
            try:
                should_run = await _resolve(task.run_if(self.results))
            except Exception as exc:
                self.logger.warning(f"run_if evaluation failed for task '{task.name}': {exc}")
                task.last_error = exc
                task.state = TaskState.FAILED
                self.run_log.task(
                    task.name,
                    LogEvent.TASK_FAILED,
                    'Failed',
                    f'Task {task.name} failed: run_if raised',
                    error=exc,
                )
                return TaskState.FAILED
            if not should_run:
                task.state = TaskState.SKIPPED
                self.logger.progress(f'Task skipped: {task.name} (run_if returned False)')
                self.run_log.task(
                    task.name,
                    LogEvent.TASK_SKIPPED,
                    'Skipped',
                    f'Task {task.name} skipped because run_if returned False',
                )
                return TaskState.SKIPPED

        # 2. Running + start hooks
        task.state = TaskState.RUNNING
        await self._call_hook('on_start', task, task.on_start, task)
        await self._call_hook('on_task_start', task, self.hooks.on_task_start, task)

        # 3. Attempt loop
        policy = self.retry_policy_for(task)
        for attempt in range(1, policy.max_attempts + 1):
            task.attempts = attempt
            self.logger.progress(f'Starting task: {task.name}, attempt: {attempt}')
            self.run_log.task(
                task.name,
                LogEvent.TASK_STARTED,
                'Started',
                f'Task {task.name} execution started',
                attempt=attempt,
            )

            try:
                value = await self._attempt(task)
            except asyncio.CancelledError as exc:
                # Cancellation aimed at the scheduler propagates; one raised
                # by the action itself is an ordinary failed attempt.
                current = asyncio.current_task()
                if current is not None and current.cancelling():
                    raise
                await self._handle_attempt_failure(task, attempt, exc)
            except Exception as exc:
                await self._handle_attempt_failure(task, attempt, exc)
            else:
                await self._handle_success(task, attempt, value)
                return TaskState.COMPLETED

            if attempt < policy.max_attempts:
                delay_ms = policy.delay_after(attempt)
                self.run_log.task(
                    task.name,
                    LogEvent.TASK_RETRYING,
                    'Retrying',
                    f'Task {task.name} will retry in {delay_ms}ms',
                    attempt=attempt,
                )
                await asyncio.sleep(delay_ms / 1000.0)

        # 4. Exhausted
        task.state = TaskState.FAILED
        self.logger.warning(
            f"Task '{task.name}' failed after {policy.max_attempts} attempt(s): {task.last_error}"
        )
        return TaskState.FAILED

    async def _attempt(self, task: Task) -> Any:
        timeout_ms = self.timeout_for(task)
        limiter = self._limiter if self._limiter is not None else contextlib.nullcontext()
        async with limiter:
            if timeout_ms is None:
                return await self._invoke(task)

            action = asyncio.ensure_future(self._invoke(task))
            try:
                done, _ = await asyncio.wait({action}, timeout=timeout_ms / 1000.0)
            except asyncio.CancelledError:
                action.cancel()
                raise
            if not done:
                # The deadline bounds the attempt, not the action: whatever
                # the cancelled action does afterwards is discarded.
                action.cancel()
                action.add_done_callback(self._discard_late_outcome)
                raise TaskTimeoutError(task.name, timeout_ms)
            return action.result()

    def _discard_late_outcome(self, action: asyncio.Future[Any]) -> None:
        if action.cancelled():
            return
        exc = action.exception()
        if exc is not None:
            self.logger.debug(f'Timed-out action finished late with {type(exc).__name__}: {exc}')
        else:
            self.logger.debug('Timed-out action finished late; result discarded')

    async def _invoke(self, task: Task) -> Any:
        if task.input is not None:
            return await _resolve(task.action(task.input(self.results)))
        return await _resolve(task.action())

    async def _handle_success(self, task: Task, attempt: int, value: Any) -> None:
        self._record_result(task, value)
        task.state = TaskState.COMPLETED
        task.last_error = None
        self.logger.progress(f'Task completed: {task.name}')
        self.run_log.task(
            task.name,
            LogEvent.TASK_COMPLETED,
            'Completed',
            f'Task {task.name} completed successfully',
            attempt=attempt,
        )
        returned = await self._call_hook('on_complete', task, task.on_complete, value)
        self._insert_returned(task, returned)
        await self._call_hook('on_task_complete', task, self.hooks.on_task_complete, task)

    async def _handle_attempt_failure(
        self, task: Task, attempt: int, exc: BaseException
    ) -> None:
        task.last_error = exc
        self.logger.progress(f'Task "{task.name}", attempt {attempt} failed: {exc!r}')
        self.run_log.task(
            task.name,
            LogEvent.TASK_FAILED,
            'Failed',
            f'Task {task.name} failed',
            attempt=attempt,
            error=exc,
        )
        returned = await self._call_hook('on_error', task, task.on_error, exc, task, self.results)
        self._insert_returned(task, returned)
        await self._call_hook(
            'on_task_error', task, self.hooks.on_task_error, exc, task, self.results
        )

    async def _call_hook(
        self,
        label: str,
        task: Task,
        hook: Callable[..., Any] | None,
        *args: Any,
    ) -> Any:
        """Invoke a hook; a failing hook is logged and does not change task state."""
        if hook is None:
            return None
        try:
            return await _resolve(hook(*args))
        except Exception:
            self.logger.exception(f"{label} hook failed for task '{task.name}'")
            return None

    def _insert_returned(self, task: Task, returned: Any) -> None:
        """Insert Task(s) returned by on_complete/on_error; other values are ignored."""
        if isinstance(returned, Task):
            new_tasks = [returned]
        elif isinstance(returned, (list, tuple)):
            new_tasks = [t for t in returned if isinstance(t, Task)]
        else:
            return

        for new_task in new_tasks:
            try:
                self._insert_task(new_task)
            except BranchworkError as exc:
                self.logger.error(
                    f"Task '{new_task.name}' returned by '{task.name}' was rejected: "
                    f'{exc.message}'
                )
