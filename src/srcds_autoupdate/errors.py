"""
Error types for the update orchestrator.

This module defines the UpdaterError base class and subclasses for domain-specific
errors. Registry and console failures are expressed with these types internally
and downgraded to log lines at the component boundary; only ConfigurationError is
allowed to reach the command line entry point.
"""

from __future__ import annotations

from typing import Any


class UpdaterError(Exception):
    """
    Base exception class for orchestrator errors.

    Attributes:
        error_code: Internal error code string (e.g., "invalid_argument",
            "unavailable", "invalid_response").
        message: Human-readable error message.
        details: Optional structured details (e.g., app id, command, path).

    Example:
        >>> raise UpdaterError(
        ...     error_code="unavailable",
        ...     message="steamcmd timed out",
        ...     details={"app_id": "232250"},
        ... )
    """

    def __init__(
        self,
        error_code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize an UpdaterError.

        Args:
            error_code: Internal error code string identifying the error category.
            message: Human-readable error message.
            details: Optional dictionary with structured error details.
        """
        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.details = details or {}

    def __repr__(self) -> str:
        """Return a detailed string representation."""
        return (
            f"{self.__class__.__name__}("
            f"error_code={self.error_code!r}, "
            f"message={self.message!r}, "
            f"details={self.details!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the error to a dictionary for logging.

        Returns:
            Dictionary with error_code, message, and details.
        """
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(UpdaterError):
    """
    Error raised when the orchestrator cannot be configured.

    This is the only error class that prevents the orchestrator from running;
    it is raised before the poll loop starts.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a ConfigurationError."""
        super().__init__(
            error_code="invalid_argument", message=message, details=details
        )


class UnavailableError(UpdaterError):
    """
    Error raised when an external collaborator cannot be reached.

    Used for registry timeouts, a missing steamcmd or tmux binary, and
    HTTP transport failures.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an UnavailableError."""
        super().__init__(error_code="unavailable", message=message, details=details)


class RegistryResponseError(UpdaterError):
    """Error raised when the registry answers with an empty or malformed payload."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a RegistryResponseError."""
        super().__init__(
            error_code="invalid_response", message=message, details=details
        )
