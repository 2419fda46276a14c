"""Exception types raised by the sync engine."""

from typing import Optional


class SyncError(Exception):
    """Base class for sync engine failures."""


class ConfigurationError(SyncError, ValueError):
    """A sync configuration is invalid or incomplete."""


class SyncConnectionError(SyncError, ConnectionError):
    """The remote peer could not be reached or refused the request."""

    kind = "Unreachable"


class PeerUnreachableError(SyncConnectionError):
    kind = "Unreachable"


class PeerUnauthorizedError(SyncConnectionError):
    kind = "Unauthorized"


class PeerTimeoutError(SyncConnectionError):
    kind = "Timeout"


class ApplyError(SyncError):
    """The remote rolled back a transactional apply."""

    def __init__(self, message: str, failed_index: Optional[int] = None):
        super().__init__(message)
        self.failed_index = failed_index


class SyncInProgressError(SyncError, RuntimeError):
    """A run is already active for the configuration."""
