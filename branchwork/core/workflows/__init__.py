"""Workflow execution engine for branching task graphs."""

from branchwork.core.workflows.engine import Workflow
from branchwork.core.workflows.graph import (
    DependencyGraph,
    OutgoingEdges,
    build_graph,
    collect_graph_errors,
)
from branchwork.core.workflows.pipeline import TaskExecutor, WorkflowHooks
from branchwork.core.workflows.runlog import LogEntry, LogEvent, RunLog, WorkflowLog

__all__ = [
    'Workflow',
    'DependencyGraph',
    'OutgoingEdges',
    'build_graph',
    'collect_graph_errors',
    'TaskExecutor',
    'WorkflowHooks',
    'LogEntry',
    'LogEvent',
    'RunLog',
    'WorkflowLog',
]
