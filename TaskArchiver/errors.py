from __future__ import annotations


class TaskArchiverError(Exception):
    """Base class for everything this cog raises on purpose."""


class GatewayError(TaskArchiverError):
    """A single Discord call failed (HTTP error, missing permission, not found)."""

    def __init__(self, action: str, detail: str = ""):
        self.action = action
        self.detail = detail
        super().__init__(f"{action} failed: {detail}" if detail else f"{action} failed")


class ChannelResolutionError(TaskArchiverError):
    """A configured channel could not be found by id or by name."""


class CorrelationError(TaskArchiverError, ValueError):
    """A reopen control id could not be decoded."""
