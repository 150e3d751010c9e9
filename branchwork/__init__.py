"""branchwork - in-process scheduler for branching task workflows"""

# Install Rust-style error handler on import
from .core.errors import install_error_handler as _install_error_handler

_install_error_handler()

from .core.errors import (
    BranchworkError,
    ConfigurationError,
    ErrorCode,
    MultipleValidationErrors,
    TaskDefinitionError,
    TaskTimeoutError,
    ValidationReport,
    WorkflowValidationError,
)
from .core.logging import get_logger, set_default_level
from .core.models.config import WorkflowConfig
from .core.models.tasks import Branch, RetryPolicy, Task
from .core.types.status import (
    TASK_TERMINAL_STATES,
    WORKFLOW_TERMINAL_STATES,
    TaskState,
    WorkflowStatus,
)
from .core.workflows import (
    DependencyGraph,
    LogEntry,
    LogEvent,
    Workflow,
    WorkflowLog,
    build_graph,
)

__all__ = [
    # Core
    'Workflow',
    'Task',
    'Branch',
    'RetryPolicy',
    'WorkflowConfig',
    'TaskState',
    'WorkflowStatus',
    'TASK_TERMINAL_STATES',
    'WORKFLOW_TERMINAL_STATES',
    # Graph
    'DependencyGraph',
    'build_graph',
    # Run log
    'LogEntry',
    'LogEvent',
    'WorkflowLog',
    # Errors
    'BranchworkError',
    'ConfigurationError',
    'ErrorCode',
    'MultipleValidationErrors',
    'TaskDefinitionError',
    'TaskTimeoutError',
    'ValidationReport',
    'WorkflowValidationError',
    # Logging
    'get_logger',
    'set_default_level',
]
