"""Unit tests for branchwork logging module."""

from __future__ import annotations

import logging
import sys
import uuid
from collections.abc import Iterator

import pytest

from branchwork.core.logging import (
    ColoredFormatter,
    WorkflowLogger,
    get_logger,
    set_default_level,
    workflow_logger,
)

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def _restore_default_level() -> Iterator[None]:
    """Save and restore the module-level _default_level after each test."""
    from branchwork.core import logging as branchwork_logging

    original = branchwork_logging._default_level
    yield
    set_default_level(original)


def _unique_component() -> str:
    return f'test_{uuid.uuid4().hex[:8]}'


class TestSetDefaultLevel:
    """Tests for set_default_level()."""

    def test_changes_module_variable(self) -> None:
        from branchwork.core import logging as branchwork_logging

        set_default_level(logging.DEBUG)
        assert branchwork_logging._default_level == logging.DEBUG

    def test_new_logger_and_handler_use_default_level(self) -> None:
        set_default_level(logging.WARNING)
        logger = get_logger(_unique_component())

        assert logger.level == logging.WARNING
        assert logger.handlers
        for handler in logger.handlers:
            assert handler.level == logging.WARNING


class TestGetLogger:
    """Tests for get_logger()."""

    def test_namespaced_under_branchwork(self) -> None:
        component = _unique_component()
        logger = get_logger(component)
        assert logger.name == f'branchwork.{component}'

    def test_does_not_propagate(self) -> None:
        assert get_logger(_unique_component()).propagate is False

    def test_repeated_calls_do_not_stack_handlers(self) -> None:
        component = _unique_component()
        first = get_logger(component)
        second = get_logger(component)
        assert first is second
        assert len(second.handlers) == 1
        assert isinstance(second.handlers[0].formatter, ColoredFormatter)

    def test_engine_components(self) -> None:
        names = {get_logger(c).name for c in ('workflow.engine', 'workflow.pipeline')}
        assert names == {'branchwork.workflow.engine', 'branchwork.workflow.pipeline'}


class TestColoredFormatter:
    """Tests for ColoredFormatter output layout."""

    def _record(self, name: str, level: int, msg: str) -> logging.LogRecord:
        return logging.LogRecord(name, level, __file__, 1, msg, None, None)

    def test_uses_last_name_segment_as_component(self) -> None:
        record = self._record('branchwork.workflow.engine', logging.INFO, 'hello')
        output = ColoredFormatter().format(record)
        assert '[engine]' in output
        assert '[INFO]' in output
        assert 'hello' in output

    def test_includes_exception_text(self) -> None:
        try:
            raise RuntimeError('boom')
        except RuntimeError:
            record = logging.LogRecord(
                'branchwork.workflow.pipeline',
                logging.ERROR,
                __file__,
                1,
                'hook failed',
                None,
                sys.exc_info(),
            )
        output = ColoredFormatter().format(record)
        assert 'RuntimeError: boom' in output

    def test_workflow_column_only_when_bound(self) -> None:
        record = self._record('branchwork.workflow.engine', logging.INFO, 'started')
        assert '<' not in ColoredFormatter().format(record)

        record.workflow_id = 'signup'
        output = ColoredFormatter().format(record)
        assert '<signup>' in output
        assert output.index('[INFO]') < output.index('<signup>') < output.index('started')


class _Capture(logging.Handler):
    def __init__(self) -> None:
        super().__init__(logging.DEBUG)
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


@pytest.fixture
def capture() -> Iterator[tuple[logging.Logger, _Capture]]:
    logger = get_logger(_unique_component())
    logger.setLevel(logging.DEBUG)
    handler = _Capture()
    logger.addHandler(handler)
    yield logger, handler
    logger.removeHandler(handler)


class TestWorkflowLogger:
    """Tests for the workflow-bound adapter."""

    def test_records_carry_workflow_id(self, capture: tuple[logging.Logger, _Capture]) -> None:
        logger, handler = capture
        WorkflowLogger(logger, 'signup').warning('task stalled')

        [record] = handler.records
        assert record.workflow_id == 'signup'  # type: ignore[attr-defined]
        assert record.getMessage() == 'task stalled'

    def test_explicit_extra_is_kept(self, capture: tuple[logging.Logger, _Capture]) -> None:
        logger, handler = capture
        WorkflowLogger(logger, 'signup').info('hello', extra={'attempt': 2})

        [record] = handler.records
        assert record.workflow_id == 'signup'  # type: ignore[attr-defined]
        assert record.attempt == 2  # type: ignore[attr-defined]

    @pytest.mark.parametrize(
        ('verbose', 'level'),
        [(True, logging.INFO), (False, logging.DEBUG)],
    )
    def test_progress_level_follows_verbosity(
        self,
        capture: tuple[logging.Logger, _Capture],
        verbose: bool,
        level: int,
    ) -> None:
        logger, handler = capture
        WorkflowLogger(logger, 'wf', verbose=verbose).progress('Task added: a')

        [record] = handler.records
        assert record.levelno == level

    def test_workflow_logger_wraps_component_logger(self) -> None:
        component = _unique_component()
        adapter = workflow_logger(component, 'signup', verbose=True)
        assert adapter.logger is get_logger(component)
        assert adapter.workflow_id == 'signup'
        assert adapter.verbose is True
