"""Human-readable renderings of a workflow. Not consulted by the scheduler."""

from __future__ import annotations

from collections.abc import Mapping

from branchwork.core.models.tasks import Task
from branchwork.core.types.status import WorkflowStatus
from branchwork.core.workflows.graph import DependencyGraph

_INDENT = '    '


def _join(names: tuple[str, ...] | list[str]) -> str:
    return ', '.join(names) if names else '-'


def describe(
    workflow_id: str,
    status: WorkflowStatus,
    tasks: Mapping[str, Task],
    graph: DependencyGraph,
) -> str:
    lines = [f"Workflow '{workflow_id}' [{status.value}]"]
    for task in tasks.values():
        lines.append(f'  {task.name} [{task.state.value}]')
        waits_on = sorted(graph.required_predecessors.get(task.name, set()))
        lines.append(f'    dependencies: {_join(list(task.dependencies))}')
        if waits_on != sorted(task.dependencies):
            lines.append(f'    waits for: {_join(waits_on)}')
        if task.next:
            lines.append(f'    next: {_join(task.next)}')
        for index, branch in enumerate(task.branches, start=1):
            lines.append(f'    branch {index}: {_join(branch.targets)}')
        if task.default_targets:
            lines.append(f'    default: {_join(task.default_targets)}')
        if task.timeout_ms is not None:
            lines.append(f'    timeout: {task.timeout_ms}ms')
        if task.retry is not None and task.retry.max_attempts > 1:
            lines.append(
                f'    retry: {task.retry.max_attempts} attempts, '
                f'{task.retry.delay_ms}ms {task.retry.backoff_strategy}'
            )
    return '\n'.join(lines)


def visualize(tasks: Mapping[str, Task], graph: DependencyGraph) -> str:
    """
    ASCII tree of the edges, starting from tasks nothing points at.

    Example output:
        init
            (Branch 1)
                └── fetch_premium
            (Default)
                └── fallback
    """
    lines: list[str] = []
    visited: set[str] = set()

    def draw_children(name: str, prefix: str) -> None:
        task = tasks.get(name)
        if task is None:
            return
        for target in task.next:
            draw(target, prefix)
        for index, branch in enumerate(task.branches, start=1):
            lines.append(f'{prefix}(Branch {index})')
            for target in branch.targets:
                draw(target, prefix + _INDENT)
        if task.default_targets:
            lines.append(f'{prefix}(Default)')
            for target in task.default_targets:
                draw(target, prefix + _INDENT)

    def draw(name: str, prefix: str) -> None:
        if name not in tasks:
            lines.append(f'{prefix}└── {name} (not added)')
            return
        if name in visited:
            lines.append(f'{prefix}└── {name} (see above)')
            return
        visited.add(name)
        lines.append(f'{prefix}└── {name}')
        draw_children(name, prefix + _INDENT)

    roots = graph.implicitly_triggered(tasks)
    # Tasks only reachable through a cycle of edges still get drawn.
    roots.extend(name for name in tasks if name not in roots)

    for root in roots:
        if root in visited:
            continue
        visited.add(root)
        lines.append(root)
        draw_children(root, _INDENT)

    return '\n'.join(lines)
