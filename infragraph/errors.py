"""Exception taxonomy for InfraGraph.

Discovery and monitoring degrade gracefully: expected failures (missing
credentials, throttling, an unreachable destination) are turned into
structured results and logged. Exceptions are raised for programmer errors
and for storage failures, which abort the current cycle only.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class InfraGraphError(Exception):
    """Base exception for InfraGraph errors.

    Usage:
        raise InfraGraphError("Something failed", details={"provider": "aws"})
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(InfraGraphError):
    """Raised for invalid configuration values."""

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(message, details=details)
        self.field = field


class StorageError(InfraGraphError):
    """Raised when the graph storage backend fails."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        message = f"Storage operation '{operation}' failed"
        if cause is not None:
            message = f"{message}: {type(cause).__name__}: {cause}"
        super().__init__(message, details={"operation": operation})
        self.operation = operation
        self.cause = cause


class AdapterUnavailable(InfraGraphError):
    """Raised inside an adapter when no usable provider client exists."""

    def __init__(self, provider: str, reason: str = "client unavailable"):
        super().__init__(f"{provider} adapter unavailable: {reason}", details={"provider": provider})
        self.provider = provider
        self.reason = reason


class DispatchError(InfraGraphError):
    """Raised when an alert destination fails to deliver."""

    def __init__(self, destination: str, cause: Optional[BaseException] = None):
        message = f"Delivery to '{destination}' failed"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message, details={"destination": destination})
        self.destination = destination
        self.cause = cause
