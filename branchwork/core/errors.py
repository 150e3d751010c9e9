"""Workflow, task and config errors, rendered as compiler-style diagnostics."""

from __future__ import annotations

import inspect
import linecache
import os
import sys
import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, NamedTuple

# Frames under this directory belong to branchwork, not to the caller.
_PACKAGE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


class ErrorCode(str, Enum):
    """Error codes for configuration errors.

    - E001-E099: workflow graph
    - E100-E199: task definition
    - E200-E299: workflow config
    """

    WORKFLOW_NO_ID = 'E001'
    WORKFLOW_DUPLICATE_TASK = 'E002'
    WORKFLOW_UNKNOWN_DEPENDENCY = 'E003'
    WORKFLOW_CYCLE_DETECTED = 'E004'
    WORKFLOW_SELF_DEPENDENCY = 'E005'

    TASK_INVALID_NAME = 'E100'
    TASK_INVALID_TIMEOUT = 'E101'
    TASK_NOT_CALLABLE = 'E102'

    CONFIG_INVALID_VALUE = 'E200'


class _Palette(NamedTuple):
    reset: str = ''
    bold: str = ''
    red: str = ''
    blue: str = ''
    cyan: str = ''
    green: str = ''
    dim: str = ''


_PLAIN = _Palette()
_ANSI = _Palette(
    reset='\033[0m',
    bold='\033[1m',
    red='\033[91m',
    blue='\033[94m',
    cyan='\033[96m',
    green='\033[92m',
    dim='\033[2m',
)


def _env_flag(name: str) -> bool:
    return os.environ.get(name, '').lower() in ('1', 'true', 'yes')


def _should_use_colors() -> bool:
    """BRANCHWORK_FORCE_COLOR wins, then NO_COLOR, then whether stderr is a TTY."""
    if _env_flag('BRANCHWORK_FORCE_COLOR'):
        return True
    if os.environ.get('NO_COLOR') is not None:
        return False
    return hasattr(sys.stderr, 'isatty') and sys.stderr.isatty()


def _should_show_verbose() -> bool:
    return _env_flag('BRANCHWORK_VERBOSE')


def _should_use_plain_errors() -> bool:
    return _env_flag('BRANCHWORK_PLAIN_ERRORS')


def _palette(use_colors: bool | None) -> _Palette:
    if use_colors is None:
        use_colors = _should_use_colors()
    return _ANSI if use_colors else _PLAIN


@dataclass
class SourceLocation:
    """Where in user code a bad task or workflow was declared."""

    file: str
    line: int

    @classmethod
    def from_frame(cls, frame: Any) -> SourceLocation:
        return cls(file=frame.f_code.co_filename, line=frame.f_lineno)

    @classmethod
    def from_function(cls, fn: Callable[..., Any]) -> SourceLocation | None:
        """Location of a task action; None for callables without `__code__`."""
        code = getattr(fn, '__code__', None)
        if code is None:
            return None
        return cls(file=code.co_filename, line=code.co_firstlineno)

    def get_source_line(self) -> str | None:
        line = linecache.getline(self.file, self.line)
        return line.rstrip('\n') if line else None

    def __str__(self) -> str:
        return f'{self.file}:{self.line}'


@dataclass
class BranchworkError(Exception):
    """Base exception for invalid workflows, tasks and config.

    Rendered as:
        error[E003]: dependency 'ghost' of task 'report' is not in the workflow
          --> flows/signup.py:41
           |
         41|     Task(name='report', action=build, dependencies=['ghost'])
           |     ^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^
           = workflow: signup
           = task: report
           = note: known tasks: init

           = help:
                add 'ghost' before 'report', or drop the dependency
    """

    message: str
    code: ErrorCode | None = None
    location: SourceLocation | None = None
    notes: list[str] = field(default_factory=lambda: [])
    help_text: str | None = None
    workflow_id: str | None = None
    task_name: str | None = None

    def __post_init__(self) -> None:
        super().__init__(self.message)
        if self.location is None:
            frame = _find_user_frame()
            if frame is not None:
                self.location = SourceLocation.from_frame(frame)

    def in_workflow(self, workflow_id: str) -> BranchworkError:
        """Attach the owning workflow unless the error already names one."""
        if self.workflow_id is None:
            self.workflow_id = workflow_id
        return self

    def format_rust_style(self, use_colors: bool | None = None) -> str:
        c = _palette(use_colors)
        code = f'[{self.code.value}]' if self.code else ''
        lines = ['', f'{c.bold}{c.red}error{code}:{c.reset} {self.message}']
        lines.extend(self._source_lines(c))

        for label, value in (('workflow', self.workflow_id), ('task', self.task_name)):
            if value is not None:
                lines.append(f'   {c.blue}={c.reset} {c.bold}{label}{c.reset}: {value}')

        for note in self.notes:
            first, *rest = note.split('\n')
            lines.append(f'   {c.blue}={c.reset} {c.bold}{c.blue}note{c.reset}: {first}')
            lines.extend(f'          {extra}' for extra in rest)

        if self.help_text:
            lines.append('')
            lines.append(f'   {c.blue}={c.reset} {c.bold}{c.green}help{c.reset}:')
            lines.extend(f'        {text}' for text in self.help_text.split('\n'))

        return '\n'.join(lines)

    def _source_lines(self, c: _Palette) -> list[str]:
        if self.location is None:
            return []
        lines = [f'  {c.blue}-->{c.reset} {c.cyan}{self.location}{c.reset}']
        source = self.location.get_source_line()
        if not source:
            return lines
        gutter = str(self.location.line)
        blank = ' ' * len(gutter)
        code = source.lstrip()
        underline = ' ' * (len(source) - len(code)) + '^' * len(code)
        lines.append(f'   {c.blue}{blank}|{c.reset}')
        lines.append(f'   {c.blue}{gutter}|{c.reset} {source}')
        lines.append(f'   {c.blue}{blank}|{c.reset} {c.red}{underline}{c.reset}')
        return lines

    def __str__(self) -> str:
        return self.format_rust_style(use_colors=False)


_original_excepthook = sys.excepthook


def _branchwork_excepthook(
    exc_type: type[BaseException],
    exc_value: BaseException,
    exc_tb: Any,
) -> None:
    if _should_use_plain_errors() or not isinstance(exc_value, BranchworkError):
        _original_excepthook(exc_type, exc_value, exc_tb)
        return

    print(exc_value.format_rust_style(), file=sys.stderr)
    if _should_show_verbose():
        c = _palette(None)
        print(file=sys.stderr)
        print(f'{c.dim}Full traceback (BRANCHWORK_VERBOSE=1):{c.reset}', file=sys.stderr)
        traceback.print_exception(exc_type, exc_value, exc_tb, file=sys.stderr)


def install_error_handler() -> None:
    """Render uncaught BranchworkErrors as diagnostics instead of tracebacks."""
    sys.excepthook = _branchwork_excepthook


@dataclass
class WorkflowValidationError(BranchworkError):
    """The task graph of a workflow is invalid."""


@dataclass
class TaskDefinitionError(BranchworkError):
    """A Task was constructed with invalid fields."""


@dataclass
class ConfigurationError(BranchworkError):
    """WorkflowConfig is invalid."""


class TaskTimeoutError(Exception):
    """An attempt did not finish within the task's timeout.

    Never raised to callers; recorded as the failure of that attempt.
    """

    def __init__(self, task_name: str, timeout_ms: int) -> None:
        self.task_name = task_name
        self.timeout_ms = timeout_ms
        super().__init__(f"Task '{task_name}' timed out after {timeout_ms}ms")


class ValidationReport:
    """Errors collected during one validation phase (construction, start, add_task, config)."""

    def __init__(self, phase_name: str) -> None:
        self.phase_name = phase_name
        self.errors: list[BranchworkError] = []

    def add(self, error: BranchworkError) -> None:
        self.errors.append(error)

    def extend(self, errors: list[WorkflowValidationError]) -> None:
        self.errors.extend(errors)

    def format_rust_style(self, use_colors: bool | None = None) -> str:
        c = _palette(use_colors)
        parts = [error.format_rust_style(use_colors=use_colors) for error in self.errors]
        parts.append(
            f'\n{c.bold}{c.red}error{c.reset}: {self.phase_name}: '
            f'aborting due to {len(self.errors)} previous errors'
        )
        return '\n'.join(parts)

    def __str__(self) -> str:
        return self.format_rust_style(use_colors=False)


@dataclass
class MultipleValidationErrors(BranchworkError):
    """Raised in place of a report holding two or more errors."""

    report: ValidationReport = field(default_factory=lambda: ValidationReport(''))

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f'aborting due to {len(self.report.errors)} previous errors'
        # each collected error carries its own location
        Exception.__init__(self, self.message)

    def format_rust_style(self, use_colors: bool | None = None) -> str:
        return self.report.format_rust_style(use_colors=use_colors)


def raise_collected(report: ValidationReport, workflow_id: str | None = None) -> None:
    """Raise what `report` collected: nothing, the single error, or MultipleValidationErrors.

    With `workflow_id`, every collected error is tagged with that workflow first.
    """
    if workflow_id is not None:
        for error in report.errors:
            error.in_workflow(workflow_id)
    count = len(report.errors)
    if count == 0:
        return
    if count == 1:
        raise report.errors[0]
    raise MultipleValidationErrors(
        message=f'aborting due to {count} previous errors',
        report=report,
        workflow_id=workflow_id,
    )


def _find_user_frame() -> Any | None:
    """Innermost frame outside branchwork and installed packages."""
    frame = inspect.currentframe()
    while frame is not None:
        filename = frame.f_code.co_filename
        internal = filename.startswith(('<', _PACKAGE_DIR)) or '/site-packages/' in filename
        if not internal:
            return frame
        frame = frame.f_back
    return None


def task_definition_error(
    message: str,
    *,
    task_name: str | None = None,
    code: ErrorCode | None = None,
    fn: Callable[..., Any] | None = None,
    notes: list[str] | None = None,
    help_text: str | None = None,
) -> TaskDefinitionError:
    """TaskDefinitionError pointing at `fn` (the task's action) when one is given."""
    location = SourceLocation.from_function(fn) if fn is not None else None
    return TaskDefinitionError(
        message=message,
        code=code,
        location=location,
        notes=notes or [],
        help_text=help_text,
        task_name=task_name,
    )
