from __future__ import annotations


class PortalError(Exception):
    """Base class for judging portal errors."""


class ValidationError(PortalError):
    """Malformed identity or missing required field. Raised before any mutation."""


class RemoteError(PortalError):
    """The durable backend could not complete a call."""


class RemoteReadFailure(RemoteError):
    pass


class RemoteWriteFailure(RemoteError):
    pass


class PermissionDenied(RemoteWriteFailure):
    """Backend is reachable but rejected the write by policy."""
