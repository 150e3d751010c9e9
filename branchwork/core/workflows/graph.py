"""Dependency graph: AND-join gates and OR-trigger edges derived from a task set."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from branchwork.core.errors import ErrorCode, WorkflowValidationError
from branchwork.core.models.tasks import Branch, Task


@dataclass(frozen=True)
class OutgoingEdges:
    """Edges a task can fire once it completes."""

    unconditional: tuple[str, ...] = ()
    branches: tuple[Branch, ...] = ()
    fallback: tuple[str, ...] = ()

    @classmethod
    def of(cls, task: Task) -> OutgoingEdges:
        return cls(
            unconditional=tuple(task.next),
            branches=tuple(task.branches),
            fallback=tuple(task.default_targets),
        )


@dataclass
class DependencyGraph:
    """
    Derived structures consulted by the scheduler.

    - required_predecessors: consulted only as the AND-join gate
      (declared dependencies plus sources of unconditional `next` edges)
    - outgoing: consulted only as the OR-trigger source
    - incoming: sources of any edge kind (next, branch, default); a task with
      no incoming edges is triggered implicitly
    - dependents: reverse of required_predecessors, used to re-evaluate
      waiting tasks when a predecessor completes
    """

    required_predecessors: dict[str, set[str]] = field(default_factory=lambda: {})
    outgoing: dict[str, OutgoingEdges] = field(default_factory=lambda: {})
    incoming: dict[str, set[str]] = field(default_factory=lambda: {})
    dependents: dict[str, set[str]] = field(default_factory=lambda: {})

    def extend(self, task: Task) -> None:
        """Add one task's edges and predecessor set without touching the rest.

        Edge targets may name tasks that do not exist yet; their entries are
        created here and filled in when the target is added.
        """
        name = task.name
        preds = self.required_predecessors.setdefault(name, set())
        preds.update(task.dependencies)
        self.incoming.setdefault(name, set())
        self.dependents.setdefault(name, set())
        self.outgoing[name] = OutgoingEdges.of(task)

        for dep in task.dependencies:
            self.dependents.setdefault(dep, set()).add(name)

        for target in task.next:
            self.required_predecessors.setdefault(target, set()).add(name)
            self.dependents[name].add(target)

        for target in task.edge_targets():
            self.incoming.setdefault(target, set()).add(name)

    def has_incoming_edges(self, name: str) -> bool:
        return bool(self.incoming.get(name))

    def implicitly_triggered(self, names: Iterable[str]) -> list[str]:
        """Names no next, branch or default edge points at, in input order."""
        return [n for n in names if not self.has_incoming_edges(n)]

    def dependency_map(self) -> dict[str, frozenset[str]]:
        """Read-only snapshot of required_predecessors."""
        return {name: frozenset(preds) for name, preds in self.required_predecessors.items()}


def build_graph(tasks: Iterable[Task]) -> DependencyGraph:
    """Build the graph for a full task set. Pure; safe to call repeatedly."""
    graph = DependencyGraph()
    for task in tasks:
        graph.extend(task)
    return graph


def collect_graph_errors(
    tasks: Mapping[str, Task],
    graph: DependencyGraph,
) -> list[WorkflowValidationError]:
    """Validate declared dependencies and look for join cycles.

    Edge targets are not checked: they may name tasks added later.
    """
    errors: list[WorkflowValidationError] = []

    for task in tasks.values():
        if task.name in task.dependencies or task.name in task.next:
            errors.append(
                WorkflowValidationError(
                    message=f"task '{task.name}' depends on itself",
                    code=ErrorCode.WORKFLOW_SELF_DEPENDENCY,
                    help_text=f"remove '{task.name}' from its own dependencies and next",
                    task_name=task.name,
                )
            )
        errors.extend(missing_dependency_errors(task, tasks))

    cycle = _join_cycle_members(tasks, graph)
    if cycle:
        errors.append(
            WorkflowValidationError(
                message='cycle detected among required predecessors',
                code=ErrorCode.WORKFLOW_CYCLE_DETECTED,
                notes=[
                    f'tasks involved: {sorted(cycle)}',
                    'dependencies and next edges both count toward the join',
                ],
                help_text='break the cycle or route one edge through branches/default_targets',
            )
        )

    return errors


def missing_dependency_errors(
    task: Task,
    tasks: Mapping[str, Task],
) -> list[WorkflowValidationError]:
    missing = [dep for dep in task.dependencies if dep not in tasks and dep != task.name]
    return [
        WorkflowValidationError(
            message=f"dependency '{dep}' for task '{task.name}' does not exist",
            code=ErrorCode.WORKFLOW_UNKNOWN_DEPENDENCY,
            notes=[f'known tasks: {sorted(tasks)}'],
            help_text='add the dependency to the workflow before the task that needs it',
            task_name=task.name,
        )
        for dep in missing
    ]


def _join_cycle_members(tasks: Mapping[str, Task], graph: DependencyGraph) -> set[str]:
    """Kahn's algorithm over required_predecessors restricted to known tasks."""
    in_degree: dict[str, int] = {}
    for name in tasks:
        preds = graph.required_predecessors.get(name, set())
        in_degree[name] = sum(1 for p in preds if p in tasks and p != name)

    queue = [name for name, degree in in_degree.items() if degree == 0]
    while queue:
        current = queue.pop(0)
        for dependent in graph.dependents.get(current, set()):
            if dependent not in in_degree or dependent == current:
                continue
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                queue.append(dependent)

    return {name for name, degree in in_degree.items() if degree > 0}
