"""
Error taxonomy for reconciliation.

ValidationError and StagingError are operator-facing: the reconcile aborts and
the previous registry stays authoritative. FatalError marks a defect and is
never expected in correct operation.
"""

from typing import Optional


class WsgiwardError(Exception):
    """Base class for all wsgiward errors."""


class ConfigError(WsgiwardError):
    """The declaration file could not be read or has the wrong shape."""


class ValidationError(WsgiwardError):
    """A declared application is invalid or conflicts with another one."""

    def __init__(self, application: Optional[str], field: str, message: str):
        self.application = application
        self.field = field
        self.message = message
        app = application or "<unnamed>"
        super().__init__(f"{app}: {field}: {message}")


class StagingError(WsgiwardError):
    """Secret material could not be staged safely."""

    def __init__(self, user: str, path: str, message: str):
        self.user = user
        self.path = path
        self.message = message
        super().__init__(f"cannot stage secrets for {user} at {path}: {message}")


class FatalError(WsgiwardError):
    """An internal invariant was violated."""
