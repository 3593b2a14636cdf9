"""
Custom exceptions for puff sync.

All components raise these exceptions so callers can handle
ledger, channel and reconciliation failures uniformly.
"""


class PuffSyncError(Exception):
    """Base exception for all puff sync errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigError(PuffSyncError):
    """Raised when a configuration value is invalid."""

    def __init__(self, field: str, reason: str, value: str | None = None):
        details = {"field": field, "reason": reason}
        if value is not None:
            details["value"] = value
        super().__init__(f"Invalid configuration for {field}: {reason}", details)
        self.field = field
        self.reason = reason
        self.value = value


class LedgerIOError(PuffSyncError):
    """Raised when the local puff ledger cannot be read or written."""

    def __init__(self, operation: str, path: str | None = None, cause: Exception | None = None):
        details = {"operation": operation}
        if path:
            details["path"] = path
        if cause:
            details["cause"] = str(cause)
        message = f"Ledger I/O error during {operation}"
        if path:
            message += f": {path}"
        super().__init__(message, details)
        self.operation = operation
        self.path = path
        self.cause = cause


class ChannelError(PuffSyncError):
    """Base exception for session channel failures."""


class ChannelConnectionError(ChannelError):
    """Raised when the connection to the sync server fails or drops.

    These failures are transient; the channel reconnects without
    clearing credentials.
    """

    def __init__(self, endpoint: str, cause: Exception | str | None = None):
        details = {"endpoint": endpoint}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Connection failed to {endpoint}", details)
        self.endpoint = endpoint
        self.cause = cause


class ChannelNotConnectedError(ChannelError):
    """Raised when an operation needs a connected channel."""

    def __init__(self, status: str):
        super().__init__(f"Channel is not connected (status={status})", {"status": status})
        self.status = status


class ChannelClosedError(ChannelError):
    """Raised on pending waiters when the channel disconnects."""

    def __init__(self, event: str | None = None):
        details = {}
        if event:
            details["event"] = event
        message = "Channel closed"
        if event:
            message += f" while waiting for {event}"
        super().__init__(message, details)
        self.event = event


class AuthenticationError(PuffSyncError):
    """Raised when the server rejects the credential.

    Authentication failures are never retried automatically.
    """

    def __init__(self, endpoint: str, reason: str | None = None):
        details = {"endpoint": endpoint}
        if reason:
            details["reason"] = reason
        super().__init__(f"Authentication failed for {endpoint}", details)
        self.endpoint = endpoint
        self.reason = reason


class ReconciliationError(PuffSyncError):
    """Raised when a reconciliation run aborts."""

    def __init__(self, step: str, cause: Exception | str | None = None):
        details = {"step": step}
        if cause:
            details["cause"] = str(cause)
        message = f"Reconciliation aborted at {step}"
        if cause:
            message += f": {cause}"
        super().__init__(message, details)
        self.step = step
        self.cause = cause
