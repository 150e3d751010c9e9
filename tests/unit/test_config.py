"""Unit tests for WorkflowConfig validation."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from branchwork.core.errors import (
    ConfigurationError,
    ErrorCode,
    MultipleValidationErrors,
)
from branchwork.core.models.config import WorkflowConfig
from branchwork.core.models.tasks import RetryPolicy


@pytest.mark.unit
class TestWorkflowConfig:
    """Tests for WorkflowConfig defaults and limits."""

    def test_defaults(self) -> None:
        config = WorkflowConfig()
        assert config.verbose is False
        assert config.store_logs is True
        assert config.max_concurrency is None
        assert config.default_timeout_ms is None
        assert config.default_retry == RetryPolicy()

    def test_accepts_positive_limits(self) -> None:
        config = WorkflowConfig(
            max_concurrency=4,
            default_timeout_ms=2_000,
            default_retry=RetryPolicy.fixed(3, delay_ms=50),
        )
        assert config.max_concurrency == 4
        assert config.default_retry.max_attempts == 3

    def test_zero_concurrency_rejected(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            WorkflowConfig(max_concurrency=0)
        assert exc_info.value.code == ErrorCode.CONFIG_INVALID_VALUE
        assert 'max_concurrency' in exc_info.value.message

    def test_negative_timeout_rejected(self) -> None:
        with pytest.raises(ConfigurationError, match='default_timeout_ms'):
            WorkflowConfig(default_timeout_ms=-1)

    def test_errors_collected_together(self) -> None:
        with pytest.raises(MultipleValidationErrors) as exc_info:
            WorkflowConfig(max_concurrency=-2, default_timeout_ms=0)
        assert len(exc_info.value.report.errors) == 2

    def test_frozen(self) -> None:
        config = WorkflowConfig()
        with pytest.raises(ValidationError):
            config.verbose = True  # type: ignore[misc]
