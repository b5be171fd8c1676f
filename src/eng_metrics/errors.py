"""Custom exception types for the engineering metrics collector."""

from __future__ import annotations

from typing import Any, List, Optional


class MetricsCollectorError(Exception):
    """Base exception for all metrics collector errors."""


class ConfigurationError(MetricsCollectorError):
    """Raised when runtime configuration values are missing or invalid."""


class AuthenticationError(MetricsCollectorError):
    """Raised when GitHub credentials are unavailable."""


class ApiError(MetricsCollectorError):
    """Raised when a GitHub API request fails or returns an unexpected response."""


class RateLimitError(ApiError):
    """Raised when the GitHub rate limit is exhausted and the wait is out of bounds."""

    def __init__(self, message: str, wait_seconds: Optional[float] = None) -> None:
        super().__init__(message)
        self.wait_seconds = wait_seconds


class WarehouseError(MetricsCollectorError):
    """Raised when a BigQuery operation fails."""

    def __init__(self, message: str, errors: Optional[List[Any]] = None) -> None:
        super().__init__(message)
        self.errors = list(errors or [])


class DataValidationError(MetricsCollectorError):
    """Raised when inputs or computed metric data do not meet expected constraints."""
