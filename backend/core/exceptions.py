"""Custom exceptions for the workflow automation engine."""

from typing import Any, Optional


class AutomationError(Exception):
    """Base exception for the workflow automation engine."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code.

        Args:
            message: Exception message
            status_code: HTTP status code
        """
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundError(AutomationError):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize NotFoundError with 404 status code."""
        super().__init__(message, 404)


class UnauthorizedError(AutomationError):
    """Unauthorized access exception."""

    def __init__(self, message: str = "Unauthorized"):
        """Initialize UnauthorizedError with 401 status code."""
        super().__init__(message, 401)


class ForbiddenError(AutomationError):
    """Forbidden access exception."""

    def __init__(self, message: str = "Forbidden"):
        """Initialize ForbiddenError with 403 status code."""
        super().__init__(message, 403)


class ValidationError(AutomationError):
    """Validation error exception."""

    def __init__(self, message: str = "Validation failed"):
        """Initialize ValidationError with 422 status code."""
        super().__init__(message, 422)


class PayloadTooLargeError(AutomationError):
    """Inbound payload exceeds the configured size limit."""

    def __init__(self, message: str = "Payload too large"):
        """Initialize PayloadTooLargeError with 413 status code."""
        super().__init__(message, 413)


# ─── Step errors (never escape the graph walker) ──────────────


class StepExecutionError(Exception):
    """A step failed in a way that may succeed on a later attempt."""


class NonRetryableStepError(StepExecutionError):
    """A step failed deterministically; retrying cannot help.

    ``error`` is the short machine-readable code surfaced in the step
    output, ``details`` are merged into that output next to it.
    """

    def __init__(self, error: str, details: Optional[dict[str, Any]] = None):
        self.error = error
        self.details = details or {}
        super().__init__(error)

    def to_output(self) -> dict[str, Any]:
        return {"error": self.error, **self.details}


class InsufficientPermissionsError(NonRetryableStepError):
    """The triggering actor's role does not grant the step's required action."""

    def __init__(self, required_action: str, actor_role: Optional[str]):
        super().__init__(
            "insufficient_permissions",
            {"required_action": required_action, "actor_role": actor_role},
        )
