# core/types/status.py
"""
Status enums shared by the engine, models, and run log.
This module should not import from other application modules.
"""

from enum import Enum


class TaskState(str, Enum):
    """
    State of a single task within a workflow.

    State machine:
        PENDING → RUNNING → COMPLETED
                          → FAILED (all attempts exhausted)
                → SKIPPED (run_if returned False)
    """

    PENDING = 'Pending'  # Waiting for a trigger and/or its required predecessors.

    RUNNING = 'Running'  # An attempt is in flight or a retry delay is pending.

    COMPLETED = 'Completed'  # An attempt succeeded; its result is recorded.

    FAILED = 'Failed'  # Every attempt failed or timed out.
    SKIPPED = 'Skipped'  # run_if returned False; the action never ran.

    @property
    def is_terminal(self) -> bool:
        """Whether this state is final (no further transitions)."""
        return self in TASK_TERMINAL_STATES


TASK_TERMINAL_STATES: frozenset[TaskState] = frozenset({
    TaskState.COMPLETED,
    TaskState.FAILED,
    TaskState.SKIPPED,
})


class WorkflowStatus(str, Enum):
    """
    Status of a workflow.

    State machine:
        PENDING → RUNNING → COMPLETED (every task terminal, none failed)
                          → FAILED (every task terminal, at least one failed)

    CANCELLED exists for callers layering cancellation above the engine;
    the engine never enters it.
    """

    PENDING = 'Pending'
    RUNNING = 'Running'
    COMPLETED = 'Completed'
    FAILED = 'Failed'
    CANCELLED = 'Cancelled'

    @property
    def is_terminal(self) -> bool:
        """Whether this status represents a final state."""
        return self in WORKFLOW_TERMINAL_STATES


WORKFLOW_TERMINAL_STATES: frozenset[WorkflowStatus] = frozenset({
    WorkflowStatus.COMPLETED,
    WorkflowStatus.FAILED,
    WorkflowStatus.CANCELLED,
})
