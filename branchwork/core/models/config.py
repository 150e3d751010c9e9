# branchwork/core/models/config.py
from __future__ import annotations

from typing import Optional, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from branchwork.core.errors import (
    ConfigurationError,
    ErrorCode,
    ValidationReport,
    raise_collected,
)
from branchwork.core.models.tasks import RetryPolicy


class WorkflowConfig(BaseModel):
    """
    Workflow-wide settings.

    Fields:
    - verbose: promote per-task progress logs from DEBUG to INFO
    - store_logs: keep run-log entries for get_log(); stdlib logging is unaffected
    - max_concurrency: cap on concurrently executing actions; None = unlimited
    - default_timeout_ms: timeout for tasks that do not set timeout_ms
    - default_retry: retry policy for tasks that do not set retry
    """

    model_config = ConfigDict(frozen=True)

    verbose: bool = False
    store_logs: bool = True
    max_concurrency: Optional[int] = None
    default_timeout_ms: Optional[int] = None
    default_retry: RetryPolicy = Field(default_factory=RetryPolicy)

    @model_validator(mode='after')
    def validate_limits(self) -> Self:
        """Collects all independent errors and raises them together."""
        report = ValidationReport('config')

        if self.max_concurrency is not None and self.max_concurrency <= 0:
            report.add(
                ConfigurationError(
                    message='max_concurrency must be positive',
                    code=ErrorCode.CONFIG_INVALID_VALUE,
                    notes=[f'got max_concurrency={self.max_concurrency}'],
                    help_text='use a positive integer, or None for unlimited',
                )
            )

        if self.default_timeout_ms is not None and self.default_timeout_ms <= 0:
            report.add(
                ConfigurationError(
                    message='default_timeout_ms must be positive',
                    code=ErrorCode.CONFIG_INVALID_VALUE,
                    notes=[f'got default_timeout_ms={self.default_timeout_ms}'],
                    help_text='use a positive number of milliseconds, or None for no timeout',
                )
            )

        raise_collected(report)
        return self
