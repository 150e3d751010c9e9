"""Unit tests for Task, Branch and RetryPolicy definitions."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from branchwork.core.errors import ErrorCode, TaskDefinitionError
from branchwork.core.models.tasks import Branch, RetryPolicy, Task
from branchwork.core.types.status import TaskState

pytestmark = pytest.mark.unit


def _noop() -> None:
    return None


class TestRetryPolicy:
    """Tests for RetryPolicy validation and delay computation."""

    def test_defaults_single_attempt(self) -> None:
        policy = RetryPolicy()
        assert policy.max_attempts == 1
        assert policy.delay_ms == 0
        assert policy.backoff_strategy == 'fixed'

    def test_fixed_delay_is_constant(self) -> None:
        policy = RetryPolicy.fixed(3, delay_ms=1_000)
        assert [policy.delay_after(k) for k in (1, 2)] == [1_000, 1_000]

    def test_exponential_doubles_and_caps(self) -> None:
        policy = RetryPolicy.exponential(100, max_attempts=6, max_delay_ms=500)
        assert [policy.delay_after(k) for k in (1, 2, 3, 4)] == [100, 200, 400, 500]

    def test_exponential_without_cap_keeps_doubling(self) -> None:
        policy = RetryPolicy.exponential(1_000, max_attempts=30)
        assert policy.delay_after(25) == 1_000 * 2**24

    def test_accepts_large_attempt_counts_and_delays(self) -> None:
        policy = RetryPolicy.fixed(500, delay_ms=7_200_000)
        assert policy.max_attempts == 500
        assert policy.delay_after(1) == 7_200_000

    def test_rejects_zero_attempts(self) -> None:
        with pytest.raises(ValidationError):
            RetryPolicy(max_attempts=0)

    def test_rejects_negative_delay(self) -> None:
        with pytest.raises(ValidationError):
            RetryPolicy.fixed(2, delay_ms=-1)

    def test_rejects_max_delay_below_delay(self) -> None:
        with pytest.raises(ValidationError, match='max_delay_ms'):
            RetryPolicy(max_attempts=2, delay_ms=1_000, max_delay_ms=10)

    def test_rejects_unknown_fields(self) -> None:
        with pytest.raises(ValidationError):
            RetryPolicy(max_attempts=2, jitter=True)  # type: ignore[call-arg]

    def test_frozen(self) -> None:
        policy = RetryPolicy.fixed(2)
        with pytest.raises(ValidationError):
            policy.max_attempts = 5  # type: ignore[misc]


class TestBranch:
    """Tests for Branch normalization."""

    def test_single_target_normalized_to_tuple(self) -> None:
        branch = Branch(lambda r: True, 'handle_a')
        assert branch.targets == ('handle_a',)

    def test_duplicate_targets_collapsed_in_order(self) -> None:
        branch = Branch(lambda r: True, ['b', 'a', 'b'])
        assert branch.targets == ('b', 'a')

    def test_non_callable_condition_rejected(self) -> None:
        with pytest.raises(TaskDefinitionError) as exc_info:
            Branch(True, ['x'])  # type: ignore[arg-type]
        assert exc_info.value.code == ErrorCode.TASK_NOT_CALLABLE


class TestTaskDefinition:
    """Tests for Task construction-time validation."""

    def test_names_normalized(self) -> None:
        task = Task(
            name='init',
            action=_noop,
            dependencies='setup',
            next=['a', 'b', 'a'],
            default_targets='fallback',
        )
        assert task.dependencies == ('setup',)
        assert task.next == ('a', 'b')
        assert task.default_targets == ('fallback',)
        assert task.branches == ()

    def test_initial_engine_state(self) -> None:
        task = Task(name='init', action=_noop)
        assert task.state == TaskState.PENDING
        assert task.attempts == 0
        assert task.last_error is None
        assert task.retry is None

    def test_edge_targets_union(self) -> None:
        task = Task(
            name='init',
            action=_noop,
            next='n',
            branches=[Branch(lambda r: True, ['b1', 'n'])],
            default_targets='d',
        )
        assert task.edge_targets() == {'n', 'b1', 'd'}

    def test_dependencies_are_not_edges(self) -> None:
        task = Task(name='report', action=_noop, dependencies=['a'])
        assert task.edge_targets() == set()

    @pytest.mark.parametrize('name', ['', '   '])
    def test_blank_name_rejected(self, name: str) -> None:
        with pytest.raises(TaskDefinitionError) as exc_info:
            Task(name=name, action=_noop)
        assert exc_info.value.code == ErrorCode.TASK_INVALID_NAME

    def test_non_callable_action_rejected(self) -> None:
        with pytest.raises(TaskDefinitionError) as exc_info:
            Task(name='bad', action='run')  # type: ignore[arg-type]
        assert exc_info.value.code == ErrorCode.TASK_NOT_CALLABLE

    def test_non_callable_hook_rejected(self) -> None:
        with pytest.raises(TaskDefinitionError, match='on_error') as exc_info:
            Task(name='bad', action=_noop, on_error='log')  # type: ignore[arg-type]
        assert exc_info.value.code == ErrorCode.TASK_NOT_CALLABLE

    @pytest.mark.parametrize('timeout_ms', [0, -5])
    def test_non_positive_timeout_rejected(self, timeout_ms: int) -> None:
        with pytest.raises(TaskDefinitionError) as exc_info:
            Task(name='slow', action=_noop, timeout_ms=timeout_ms)
        err = exc_info.value
        assert err.code == ErrorCode.TASK_INVALID_TIMEOUT
        assert err.location is not None
        assert err.location.line == _noop.__code__.co_firstlineno

    def test_metadata_carried_untouched(self) -> None:
        task = Task(name='m', action=_noop, metadata={'owner': 'billing'})
        assert task.metadata == {'owner': 'billing'}

    def test_identity_equality(self) -> None:
        """Two tasks with the same fields are still distinct entries."""
        assert Task(name='x', action=_noop) != Task(name='x', action=_noop)
