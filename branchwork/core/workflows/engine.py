"""Workflow scheduler: eligibility, edge propagation, completion, dynamic insertion."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable, Mapping, Sequence
from types import MappingProxyType
from typing import Any

from branchwork.core.errors import (
    ErrorCode,
    ValidationReport,
    WorkflowValidationError,
    raise_collected,
)
from branchwork.core.logging import workflow_logger
from branchwork.core.models.config import WorkflowConfig
from branchwork.core.models.tasks import Task
from branchwork.core.types.status import (
    WORKFLOW_TERMINAL_STATES,
    TaskState,
    WorkflowStatus,
)
from branchwork.core.workflows.graph import (
    DependencyGraph,
    OutgoingEdges,
    build_graph,
    collect_graph_errors,
    missing_dependency_errors,
)
from branchwork.core.workflows.pipeline import TaskExecutor, WorkflowHooks
from branchwork.core.workflows.render import describe, visualize
from branchwork.core.workflows.runlog import LogEvent, RunLog, WorkflowLog

class Workflow:
    """
    A set of named tasks and the scheduler that drives them.

    A task starts once it has been triggered and every required predecessor
    (declared dependencies plus sources of `next` edges into it) is COMPLETED.
    Tasks that no edge points at are triggered implicitly.

    Example:
        ```python
        wf = Workflow('signup', [init, fetch_premium, fetch_basic, fallback])
        status = await wf.run(timeout_ms=30_000)
        print(wf.get_results())
        ```
    """

    def __init__(
        self,
        workflow_id: str,
        tasks: Sequence[Task] = (),
        *,
        on_task_start: Callable[[Task], Any] | None = None,
        on_task_complete: Callable[[Task], Any] | None = None,
        on_task_error: Callable[[BaseException, Task, Mapping[str, Any]], Any]
        | None = None,
        verbose: bool | None = None,
        config: WorkflowConfig | None = None,
    ) -> None:
        report = ValidationReport('workflow')
        has_id = isinstance(workflow_id, str) and bool(workflow_id.strip())
        if not has_id:
            report.add(
                WorkflowValidationError(
                    message='workflow id must be a non-empty string',
                    code=ErrorCode.WORKFLOW_NO_ID,
                    notes=[f'got {workflow_id!r}'],
                )
            )

        self._tasks: dict[str, Task] = {}
        for task in tasks:
            if task.name in self._tasks:
                report.add(
                    WorkflowValidationError(
                        message=f"duplicate task name '{task.name}'",
                        code=ErrorCode.WORKFLOW_DUPLICATE_TASK,
                        task_name=task.name,
                        help_text='task names must be unique within a workflow',
                    )
                )
                continue
            self._tasks[task.name] = task
        raise_collected(report, workflow_id if has_id else None)

        config = config or WorkflowConfig()
        if verbose is not None:
            config = config.model_copy(update={'verbose': verbose})

        self.id = workflow_id
        self.config = config
        self._status = WorkflowStatus.PENDING
        self._results: dict[str, Any] = {}
        self._results_view: Mapping[str, Any] = MappingProxyType(self._results)
        self._graph: DependencyGraph = build_graph(self._tasks.values())
        self._log = RunLog(workflow_id, enabled=config.store_logs)
        self._logger = workflow_logger('workflow.engine', workflow_id, verbose=config.verbose)

        self._triggered: set[str] = set()
        self._started: set[str] = set()
        self._completed: set[str] = set()
        self._failed: set[str] = set()
        self._skipped: set[str] = set()
        self._active: set[str] = set()
        self._inflight: set[asyncio.Task[None]] = set()
        self._done = asyncio.Event()

        self._executor = TaskExecutor(
            run_log=self._log,
            config=config,
            hooks=WorkflowHooks(
                on_task_start=on_task_start,
                on_task_complete=on_task_complete,
                on_task_error=on_task_error,
            ),
            results=self._results_view,
            record_result=self._record_result,
            insert_task=self.add_task,
        )

    def __repr__(self) -> str:
        return f'Workflow(id={self.id!r}, status={self._status.value}, tasks={len(self._tasks)})'

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def status(self) -> WorkflowStatus:
        return self._status

    def get_task(self, name: str) -> Task | None:
        return self._tasks.get(name)

    def task_states(self) -> dict[str, TaskState]:
        return {name: task.state for name, task in self._tasks.items()}

    def get_results(self) -> dict[str, Any]:
        """Copy of results for COMPLETED tasks, keyed by task name."""
        return dict(self._results)

    def get_log(self) -> WorkflowLog:
        return self._log.snapshot()

    def get_dependency_map(self) -> dict[str, frozenset[str]]:
        """Required predecessors per task, as consulted by the join gate."""
        return self._graph.dependency_map()

    def describe(self) -> str:
        return describe(self.id, self._status, self._tasks, self._graph)

    def visualize(self) -> str:
        return visualize(self._tasks, self._graph)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """
        Validate the graph and dispatch every eligible task.

        Returns once the initial tasks are dispatched; use wait() or run()
        to block until a terminal status.

        Raises:
            WorkflowValidationError: unknown dependency, self-dependency or
                cycle among required predecessors. Status stays PENDING.
        """
        if self._status != WorkflowStatus.PENDING:
            self._logger.warning(f'Workflow already started (status={self._status.value})')
            return

        self._graph = build_graph(self._tasks.values())
        report = ValidationReport(f"workflow '{self.id}'")
        report.extend(collect_graph_errors(self._tasks, self._graph))
        raise_collected(report, self.id)

        self._status = WorkflowStatus.RUNNING
        self._log.workflow(
            LogEvent.STARTED_WORKFLOW,
            'Started',
            f'Workflow {self.id} started with {len(self._tasks)} task(s)',
        )
        self._logger.info(f'Workflow started with {len(self._tasks)} task(s)')

        self._triggered.update(self._graph.implicitly_triggered(self._tasks))

        for name in list(self._tasks):
            self._try_start(name)

        self._check_completion()

    async def wait(self, timeout_ms: int | None = None) -> WorkflowStatus:
        """Wait for a terminal status; on timeout return the current status."""
        if timeout_ms is None:
            await self._done.wait()
            return self._status
        try:
            await asyncio.wait_for(self._done.wait(), timeout=timeout_ms / 1000.0)
        except asyncio.TimeoutError:
            self._logger.debug(f'Workflow not finished after {timeout_ms}ms')
        return self._status

    async def wait_idle(self) -> None:
        """Wait until no task is in flight. A stalled workflow stays RUNNING."""
        while self._inflight:
            await asyncio.wait(set(self._inflight))

    async def run(self, timeout_ms: int | None = None) -> WorkflowStatus:
        await self.start()
        return await self.wait(timeout_ms)

    def run_sync(self, timeout_ms: int | None = None) -> WorkflowStatus:
        """Blocking wrapper around run() for callers without an event loop."""
        return asyncio.run(self.run(timeout_ms))

    # ------------------------------------------------------------------
    # Dynamic insertion
    # ------------------------------------------------------------------

    def add_task(self, task: Task) -> bool:
        """
        Insert a task into this workflow, before or during execution.

        Returns False (and records TaskAlreadyExists) when the name is taken.
        A task whose dependencies are already COMPLETED starts right away
        if nothing else points at it.

        Raises:
            WorkflowValidationError: a declared dependency is not in the workflow.
        """
        if task.name in self._tasks:
            self._logger.warning(f"Task '{task.name}' already exists")
            self._log.task(
                task.name,
                LogEvent.TASK_ALREADY_EXISTS,
                'Skipped',
                f'Task {task.name} already exists',
            )
            return False

        report = ValidationReport(f"add_task('{task.name}')")
        if task.name in task.dependencies or task.name in task.next:
            report.add(
                WorkflowValidationError(
                    message=f"task '{task.name}' depends on itself",
                    code=ErrorCode.WORKFLOW_SELF_DEPENDENCY,
                    task_name=task.name,
                )
            )
        report.extend(missing_dependency_errors(task, self._tasks))
        raise_collected(report, self.id)

        self._tasks[task.name] = task
        self._graph.extend(task)
        self._log.task(task.name, LogEvent.TASK_ADDED, 'Pending', f'Task {task.name} added')
        if task.dependencies:
            self._log.task(
                task.name,
                LogEvent.DEPENDENCIES_REGISTERED,
                'Pending',
                f'Dependencies registered: {", ".join(task.dependencies)}',
            )
        self._logger.progress(f"Task added: {task.name}")

        if self._status == WorkflowStatus.PENDING:
            return True

        if self._status in WORKFLOW_TERMINAL_STATES:
            self._logger.info(f"Workflow reopened by add_task('{task.name}')")
            self._status = WorkflowStatus.RUNNING
            self._done.clear()

        if not self._graph.has_incoming_edges(task.name):
            self._triggered.add(task.name)
        self._try_start(task.name)
        return True

    # ------------------------------------------------------------------
    # Scheduling internals
    # ------------------------------------------------------------------

    def _trigger(self, name: str, source: str) -> None:
        self._triggered.add(name)
        if name not in self._tasks:
            self._logger.progress(f"Trigger from '{source}' recorded for '{name}', not added yet")
            return
        self._try_start(name)

    def _try_start(self, name: str) -> None:
        """Dispatch `name` if triggered, not started, and every required predecessor completed."""
        if self._status != WorkflowStatus.RUNNING:
            return
        task = self._tasks.get(name)
        if task is None or name in self._started or name not in self._triggered:
            return
        preds = self._graph.required_predecessors.get(name, set())
        if not preds <= self._completed:
            return

        self._started.add(name)
        self._active.add(name)
        handle = asyncio.create_task(self._run_task(task), name=f'branchwork:{self.id}:{name}')
        self._inflight.add(handle)
        handle.add_done_callback(self._inflight.discard)

    def _record_result(self, task: Task, value: Any) -> None:
        self._results[task.name] = value
        self._completed.add(task.name)

    async def _run_task(self, task: Task) -> None:
        try:
            state = await self._executor.execute(task)
            match state:
                case TaskState.COMPLETED:
                    await self._propagate(task)
                case TaskState.FAILED:
                    self._failed.add(task.name)
                case TaskState.SKIPPED:
                    self._skipped.add(task.name)
        finally:
            self._active.discard(task.name)
        self._check_completion()

    async def _propagate(self, task: Task) -> None:
        """Fire outgoing edges of a completed task, then re-check its dependents."""
        edges = self._graph.outgoing.get(task.name, OutgoingEdges())
        targets = list(edges.unconditional)

        matched = False
        for index, branch in enumerate(edges.branches, start=1):
            if await self._branch_matches(task.name, index, branch.condition):
                matched = True
                targets.extend(branch.targets)
        if not matched:
            targets.extend(edges.fallback)

        for target in targets:
            self._trigger(target, task.name)
        for dependent in sorted(self._graph.dependents.get(task.name, set())):
            self._try_start(dependent)

    async def _branch_matches(
        self,
        task_name: str,
        index: int,
        condition: Callable[[Mapping[str, Any]], Any],
    ) -> bool:
        try:
            value = condition(self._results_view)
            if inspect.isawaitable(value):
                value = await value
        except Exception as e:
            self._logger.warning(f'Branch {index} condition failed for task {task_name}: {e}')
            return False
        return bool(value)

    def _check_completion(self) -> None:
        if self._status != WorkflowStatus.RUNNING or self._active:
            return
        finished = self._completed | self._failed | self._skipped
        if any(name not in finished for name in self._tasks):
            return

        if self._failed:
            self._status = WorkflowStatus.FAILED
            details = (
                f'The workflow finished with {len(self._failed)} failed task(s): '
                f'{", ".join(sorted(self._failed))}'
            )
        else:
            self._status = WorkflowStatus.COMPLETED
            details = 'The workflow has completed all tasks.'

        self._log.workflow(LogEvent.WORKFLOW_COMPLETED, self._status.value, details)
        self._logger.info(f'Workflow {self._status.value.lower()}: {details}')
        self._done.set()
