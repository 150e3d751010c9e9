# branchwork/core/logging.py
import logging
import sys
from collections.abc import MutableMapping
from datetime import datetime
from typing import Any

_default_level: int = logging.INFO

_RESET = '\033[0m'
_TIME = '\033[94m'
_TEXT = '\033[97m'
_WORKFLOW = '\033[96m'

_LEVEL_COLORS = {
    'DEBUG': '\033[90m',
    'INFO': '\033[92m',
    'WARNING': '\033[93m',
    'ERROR': '\033[91m',
    'CRITICAL': '\033[1;91m',
}


class ColoredFormatter(logging.Formatter):
    """
    One line per record:

        [14:02:11] [engine]    [INFO]    <signup> Task 'fetch' completed

    The `<workflow id>` column only appears on records logged through a
    WorkflowLogger.
    """

    def format(self, record: logging.LogRecord) -> str:
        time_str = datetime.fromtimestamp(record.created).strftime('%H:%M:%S')
        component = record.name.rsplit('.', 1)[-1]
        level_color = _LEVEL_COLORS.get(record.levelname, _TEXT)

        parts = [
            f'{_TIME}[{time_str}]{_RESET} ',
            f'{_TEXT}{f"[{component}]":<12}{_RESET}',
            f'{level_color}{f"[{record.levelname}]":<10}{_RESET}',
        ]
        workflow_id = getattr(record, 'workflow_id', None)
        if workflow_id is not None:
            parts.append(f'{_WORKFLOW}<{workflow_id}>{_RESET} ')
        parts.append(f'{_TEXT}{record.getMessage()}{_RESET}')

        formatted = ''.join(parts)
        if record.exc_info:
            formatted += '\n' + self.formatException(record.exc_info)
        return formatted


class WorkflowLogger(logging.LoggerAdapter):  # type: ignore[type-arg]
    """
    Component logger bound to one workflow.

    Every record carries `workflow_id` so concurrent workflows sharing a
    process stay distinguishable. `progress()` is the scheduler's trace
    channel: INFO for verbose workflows, DEBUG otherwise.
    """

    def __init__(self, logger: logging.Logger, workflow_id: str, *, verbose: bool = False) -> None:
        super().__init__(logger, {'workflow_id': workflow_id})
        self.workflow_id = workflow_id
        self.verbose = verbose

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        extra = kwargs.setdefault('extra', {})
        extra.setdefault('workflow_id', self.workflow_id)
        return msg, kwargs

    def progress(self, msg: str) -> None:
        self.log(logging.INFO if self.verbose else logging.DEBUG, msg)


def set_default_level(level: int) -> None:
    """Set the level applied to loggers created after this call."""
    global _default_level
    _default_level = level


def get_logger(component_name: str) -> logging.Logger:
    """Logger named `branchwork.<component_name>` with its own stdout handler."""
    logger = logging.getLogger(f'branchwork.{component_name}')

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(ColoredFormatter())
        handler.setLevel(_default_level)
        logger.addHandler(handler)
        logger.setLevel(_default_level)
        logger.propagate = False

    return logger


def workflow_logger(component_name: str, workflow_id: str, *, verbose: bool = False) -> WorkflowLogger:
    """get_logger(component_name) bound to `workflow_id`."""
    return WorkflowLogger(get_logger(component_name), workflow_id, verbose=verbose)
