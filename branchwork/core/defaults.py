"""Shared default constants for the branchwork library."""

# A task without a retry policy gets exactly one attempt.
DEFAULT_MAX_ATTEMPTS: int = 1

# Delay between attempts when a retry policy does not set one.
DEFAULT_RETRY_DELAY_MS: int = 0
