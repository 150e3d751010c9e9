# branchwork/core/models/tasks.py
from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Annotated, Any, Literal, Self, TypeAlias

from pydantic import BaseModel, ConfigDict, Field, model_validator

from branchwork.core.defaults import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_RETRY_DELAY_MS,
)
from branchwork.core.errors import ErrorCode, task_definition_error
from branchwork.core.types.status import TaskState

Results: TypeAlias = Mapping[str, Any]
"""Read-only view of accumulated results, keyed by task name."""

Predicate: TypeAlias = Callable[[Results], 'bool | Awaitable[bool]']

TaskNames: TypeAlias = 'str | Sequence[str]'
"""A single task name or a sequence of names."""


class RetryPolicy(BaseModel):
    """
    Retry policy for a task.

    Two strategies supported:
    1. Fixed: waits delay_ms before every re-attempt
    2. Exponential: waits delay_ms * 2**(k-1) before attempt k+1

    Fields:
        max_attempts: total attempts, including the first one
        delay_ms: base delay in milliseconds between attempts
        backoff_strategy: 'fixed' or 'exponential'
        max_delay_ms: optional upper bound for a single delay
    """

    model_config = ConfigDict(extra='forbid', frozen=True)

    max_attempts: Annotated[
        int,
        Field(ge=1, description='Total attempts, including the first'),
    ] = DEFAULT_MAX_ATTEMPTS
    delay_ms: Annotated[
        int,
        Field(ge=0, description='Delay between attempts in ms'),
    ] = DEFAULT_RETRY_DELAY_MS
    backoff_strategy: Literal['fixed', 'exponential'] = 'fixed'
    max_delay_ms: Annotated[int, Field(ge=0)] | None = None

    @model_validator(mode='after')
    def validate_delay_bounds(self) -> Self:
        if self.max_delay_ms is not None and self.max_delay_ms < self.delay_ms:
            raise ValueError(
                f'max_delay_ms ({self.max_delay_ms}) must be >= delay_ms ({self.delay_ms})'
            )
        return self

    def delay_after(self, attempt: int) -> int:
        """Milliseconds to wait after failed attempt `attempt` (1-based)."""
        if self.backoff_strategy == 'exponential':
            delay = self.delay_ms * (2 ** (attempt - 1))
        else:
            delay = self.delay_ms
        if self.max_delay_ms is None:
            return delay
        return min(delay, self.max_delay_ms)

    @classmethod
    def fixed(cls, max_attempts: int, delay_ms: int = 0) -> 'RetryPolicy':
        """Same delay before every re-attempt."""
        return cls(max_attempts=max_attempts, delay_ms=delay_ms, backoff_strategy='fixed')

    @classmethod
    def exponential(
        cls,
        base_delay_ms: int,
        *,
        max_attempts: int,
        max_delay_ms: int | None = None,
    ) -> 'RetryPolicy':
        """Doubling delay: base_delay_ms * 2**(attempt-1), capped at max_delay_ms when given."""
        return cls(
            max_attempts=max_attempts,
            delay_ms=base_delay_ms,
            backoff_strategy='exponential',
            max_delay_ms=max_delay_ms,
        )


def _names(value: TaskNames | None) -> tuple[str, ...]:
    """Normalize a name or sequence of names to an ordered, de-duplicated tuple."""
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(dict.fromkeys(value))


@dataclass(frozen=True)
class Branch:
    """
    Conditional edge set, evaluated after the owning task completes.

    Example:
        Branch(lambda r: r['init']['type'] == 'A', ['handle_a', 'audit'])
    """

    condition: Predicate
    """
    - Called with the read-only results mapping
    - May be a coroutine function
    """

    targets: TaskNames
    """
    - Names triggered when condition returns True
    """

    def __post_init__(self) -> None:
        if not callable(self.condition):
            raise task_definition_error(
                'branch condition must be callable',
                code=ErrorCode.TASK_NOT_CALLABLE,
                notes=[f'got {type(self.condition).__name__}'],
            )
        object.__setattr__(self, 'targets', _names(self.targets))


@dataclass(eq=False)
class Task:
    """
    A named unit of work and its routing metadata.

    Example:
        ```python
        init = Task(
            name='init',
            action=load_user,
            branches=[
                Branch(lambda r: r['init']['tier'] == 'premium', ['fetch_premium']),
                Branch(lambda r: r['init']['tier'] == 'basic', ['fetch_basic']),
            ],
            default_targets='fallback',
            timeout_ms=5_000,
            retry=RetryPolicy.fixed(2, delay_ms=1_000),
        )
        report = Task(name='report', action=build_report, dependencies=['fetch_premium'])
        ```
    """

    name: str
    action: Callable[..., Any]
    """
    - Invoked once per attempt; may return a value or an awaitable
    - Called with input(results) when `input` is set, otherwise with no arguments
    """

    dependencies: TaskNames = ()
    """
    - Names that must be COMPLETED before this task may start (AND join)
    - Must exist in the workflow when the task is added or started
    """

    next: TaskNames = ()
    """
    - Names triggered unconditionally when this task completes
    - Each target also waits for this task (counts as a required predecessor)
    """

    branches: Sequence[Branch] = ()
    """
    - Evaluated in order after completion; every matching branch fires
    """

    default_targets: TaskNames = ()
    """
    - Triggered after completion only if no branch matched
    """

    timeout_ms: int | None = None
    """
    - Bound for a single attempt; None means no timeout
    """

    retry: RetryPolicy | None = None
    """
    - None uses the workflow's default_retry
    """

    run_if: Predicate | None = field(default=None, repr=False)
    """
    - Evaluated once the task is eligible; False marks it SKIPPED
    """

    input: Callable[[Results], Any] | None = field(default=None, repr=False)
    """
    - Builds the action argument from accumulated results
    """

    on_start: Callable[[Task], Any] | None = field(default=None, repr=False)
    on_complete: Callable[[Any], Any] | None = field(default=None, repr=False)
    """
    - Receives the result; may return a Task or list of Tasks to insert
    """
    on_error: Callable[[BaseException, Task, Results], Any] | None = field(
        default=None, repr=False
    )
    """
    - Called after every failed attempt; may return a Task or list of Tasks to insert
    """

    metadata: dict[str, Any] = field(default_factory=lambda: {})

    # Mutated by the engine only
    state: TaskState = field(default=TaskState.PENDING, init=False)
    attempts: int = field(default=0, init=False)
    last_error: BaseException | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise task_definition_error(
                'task name must be a non-empty string',
                code=ErrorCode.TASK_INVALID_NAME,
                notes=[f'got {self.name!r}'],
            )
        if not callable(self.action):
            raise task_definition_error(
                f"task '{self.name}' action must be callable",
                task_name=self.name,
                code=ErrorCode.TASK_NOT_CALLABLE,
                notes=[f'got {type(self.action).__name__}'],
            )
        for hook_name in ('run_if', 'input', 'on_start', 'on_complete', 'on_error'):
            hook = getattr(self, hook_name)
            if hook is not None and not callable(hook):
                raise task_definition_error(
                    f"task '{self.name}' {hook_name} must be callable",
                    task_name=self.name,
                    code=ErrorCode.TASK_NOT_CALLABLE,
                    fn=self.action,
                    notes=[f'{hook_name} is {type(hook).__name__}'],
                )
        if self.timeout_ms is not None and self.timeout_ms <= 0:
            raise task_definition_error(
                f"task '{self.name}' timeout_ms must be positive",
                task_name=self.name,
                code=ErrorCode.TASK_INVALID_TIMEOUT,
                fn=self.action,
                notes=[f'got timeout_ms={self.timeout_ms}'],
                help_text='use a positive number of milliseconds, or None for no timeout',
            )

        self.dependencies = _names(self.dependencies)
        self.next = _names(self.next)
        self.default_targets = _names(self.default_targets)
        self.branches = tuple(self.branches)

    def edge_targets(self) -> set[str]:
        """Every name this task can trigger (next, branches, default)."""
        targets = set(self.next) | set(self.default_targets)
        for branch in self.branches:
            targets.update(branch.targets)
        return targets
