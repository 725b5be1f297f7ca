"""Errors raised by cdpbrowser.

Every error derives from CDPError. The branches follow who is at fault:

- CDPConnectionError: the transport (could not open, or went away)
- CDPCommandError: the browser rejected one command
- CDPTimeoutError: a bounded wait expired
- ContractViolationError: the browser's notifications contradict tracked state
- InvalidArgumentError: the caller passed something unusable
- TargetClosedError: the target behind an object is gone
"""

from typing import Any, Dict, Optional


class CDPError(Exception):
    """Root of the hierarchy.

    Attributes:
        message: Human-readable error message
        details: Extra context, rendered as ``message (k=v, ...)``
    """

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if not self.details:
            return self.message
        rendered = ", ".join(f"{k}={v}" for k, v in self.details.items())
        return f"{self.message} ({rendered})"


class CDPConnectionError(CDPError):
    pass


class ConnectionFailedError(CDPConnectionError):
    """The transport could not be opened (wrong URL, browser not listening)."""

    pass


class ConnectionClosedError(CDPConnectionError):
    """The transport is gone.

    Pending commands fail with this instead of hanging, and so does any
    command sent afterwards.
    """

    pass


class SessionClosedError(ConnectionClosedError):
    """The addressed session was detached, or its target went away."""

    pass


class CDPCommandError(CDPError):
    """The browser answered a command with an error object.

    Attributes:
        method: Protocol method that failed
        error_code: JSON-RPC error code reported by the browser
    """

    def __init__(
        self,
        message: str,
        method: Optional[str] = None,
        error_code: Optional[int] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details)
        self.method = method
        self.error_code = error_code

    def __str__(self):
        if self.method:
            return f"Protocol error ({self.method}): {self.message}"
        return super().__str__()


class CommandFailedError(CDPCommandError):
    """Only the caller of the failed command sees this; other commands in flight are unaffected."""

    @classmethod
    def from_response(cls, method: str, error: Dict[str, Any]) -> "CommandFailedError":
        return cls(
            error.get("message", "Unknown protocol error"),
            method=method,
            error_code=error.get("code"),
            details={"data": error["data"]} if "data" in error else None,
        )


class CDPTimeoutError(CDPError):
    """wait_for_target, or a command sent with a timeout, ran out of time.

    Attributes:
        operation: What was being waited for (method name or operation)
        timeout: The limit that expired, in seconds
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        timeout: Optional[float] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details)
        self.operation = operation
        self.timeout = timeout

    def __str__(self):
        if self.operation and self.timeout:
            return f"{self.message}: '{self.operation}' timed out after {self.timeout}s"
        return self.message


class ContractViolationError(CDPError, AssertionError):
    """A lifecycle notification contradicts the target table.

    Duplicate targetCreated, or targetDestroyed / targetInfoChanged for an
    id never announced. Never swallowed.
    """

    pass


class InvalidArgumentError(CDPError, ValueError):
    """Rejected before anything is sent to the browser."""

    pass


class TargetClosedError(CDPError):
    """The target was destroyed, discarded, or orphaned by its context closing."""

    def __init__(
        self,
        message: str,
        target_id: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details)
        self.target_id = target_id

    def __str__(self):
        if self.target_id:
            return f"{self.message}: {self.target_id}"
        return self.message
