"""
Custom exceptions for cgmctl.

Provides specific exception types with associated exit codes
for the failure modes of a provider fetch. All exceptions support JSON
serialization for scripting via the --json-errors flag.
"""

import json
from dataclasses import dataclass
from typing import Any, Optional


class ExitCode:
    """Standard exit codes for cgmctl."""
    SUCCESS = 0
    GENERAL_ERROR = 1
    NOT_CONFIGURED = 2
    AUTH_FAILED = 3
    NETWORK_FAILED = 4
    BAD_DATA = 5


class FetchError(Exception):
    """Base class for failures raised by providers."""

    @property
    def exit_code(self) -> int:
        return ExitCode.GENERAL_ERROR

    @property
    def retryable(self) -> bool:
        return True


@dataclass
class ConfigError(FetchError):
    """Raised when a provider is missing required configuration.

    Not retried: the poller shows a persistent "No Config" state instead.

    Attributes:
        provider: Provider name
        missing: Config keys that are absent
    """
    provider: str
    missing: Optional[list[str]] = None

    def __str__(self) -> str:
        if self.missing:
            return f"{self.provider} is not configured (missing: {', '.join(self.missing)})"
        return f"{self.provider} is not configured"

    @property
    def exit_code(self) -> int:
        return ExitCode.NOT_CONFIGURED

    @property
    def retryable(self) -> bool:
        return False


@dataclass
class AuthError(FetchError):
    """Raised when login or token validation fails.

    Attributes:
        provider: Provider name
        details: Server-supplied reason, if any
        status_code: HTTP status of the rejected request
    """
    provider: str
    details: str = "authentication failed"
    status_code: Optional[int] = None

    def __str__(self) -> str:
        status = f" (HTTP {self.status_code})" if self.status_code else ""
        return f"{self.provider} auth error{status}: {self.details}"

    @property
    def exit_code(self) -> int:
        return ExitCode.AUTH_FAILED


@dataclass
class NetworkError(FetchError):
    """Raised on connection failures, timeouts and non-auth HTTP errors.

    Attributes:
        provider: Provider name
        details: Human-readable explanation
        status_code: HTTP status, when a response was received
    """
    provider: str
    details: str
    status_code: Optional[int] = None

    def __str__(self) -> str:
        status = f" (HTTP {self.status_code})" if self.status_code else ""
        return f"{self.provider} network error{status}: {self.details}"

    @property
    def exit_code(self) -> int:
        return ExitCode.NETWORK_FAILED


@dataclass
class DataError(FetchError):
    """Raised when a response is empty, malformed or semantically invalid.

    Attributes:
        provider: Provider name
        details: Human-readable explanation
        response_preview: First characters of the offending payload
    """
    provider: str
    details: str
    response_preview: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.provider} data error: {self.details}"

    @property
    def exit_code(self) -> int:
        return ExitCode.BAD_DATA


def exception_to_json(exc: Exception, context: Optional[dict[str, Any]] = None) -> dict[str, Any]:
    """Convert an exception to a JSON-serializable dictionary.

    Args:
        exc: The exception to convert
        context: Optional additional context (provider, fetch kind, etc.)

    Returns:
        JSON-serializable dict with error details
    """
    error_dict: dict[str, Any] = {
        "type": type(exc).__name__,
        "message": str(exc),
    }

    if hasattr(exc, "exit_code"):
        error_dict["exit_code"] = exc.exit_code
    else:
        error_dict["exit_code"] = ExitCode.GENERAL_ERROR

    if isinstance(exc, ConfigError):
        error_dict["provider"] = exc.provider
        if exc.missing:
            error_dict["missing"] = exc.missing

    elif isinstance(exc, (AuthError, NetworkError)):
        error_dict["provider"] = exc.provider
        error_dict["details"] = exc.details
        if exc.status_code is not None:
            error_dict["status_code"] = exc.status_code

    elif isinstance(exc, DataError):
        error_dict["provider"] = exc.provider
        error_dict["details"] = exc.details
        if exc.response_preview:
            error_dict["response_preview"] = exc.response_preview[:200]

    if context:
        error_dict["context"] = context

    return {"error": error_dict}


def format_json_error(exc: Exception, context: Optional[dict[str, Any]] = None) -> str:
    """Format an exception as a JSON string."""
    return json.dumps(exception_to_json(exc, context), indent=2, default=str)
