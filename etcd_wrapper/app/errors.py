# etcd_wrapper/app/errors.py
from __future__ import annotations

from typing import Optional


class WrapperError(Exception):
    """Base class for every error raised by the wrapper."""


class OperationCancelledError(WrapperError):
    """
    The shared cancellation token fired before the operation completed.

    Kept apart from domain errors so callers can treat shutdown as a normal
    outcome instead of logging it as a failure.
    """

    def __init__(self, operation: str = "operation"):
        super().__init__(f"{operation} cancelled")
        self.operation = operation


class SidecarError(WrapperError):
    """Transport level failure talking to the backup-restore sidecar."""


class SidecarResponseError(SidecarError):
    """The sidecar answered with a status code outside the accepted OK codes."""

    def __init__(self, operation: str, status_code: int, body: str = ""):
        message = f"server returned error response code {status_code} when attempting to {operation}"
        if body:
            message = f"{message}: {body[:200]}"
        super().__init__(message)
        self.operation = operation
        self.status_code = status_code


class ConfigurationError(WrapperError):
    """Invalid flags, unreadable TLS material or a malformed etcd config document."""


class ReadinessServerError(WrapperError):
    """The readiness/control HTTP server could not start or stopped unexpectedly."""


class EtcdStartError(WrapperError):
    """The embedded etcd process failed to start or to become ready."""

    def __init__(self, message: str, exit_code: Optional[int] = None):
        super().__init__(message)
        self.exit_code = exit_code
