"""
Error taxonomy for the relay.

Per-item errors (one send task, one resume link) are raised inside the
per-item code and caught at the loop boundary. Only registry errors raised
while listing the pending batch escape ``ResumeBatchExtractor.run_batch``.
"""

from typing import Optional


class RelayError(Exception):
    """Base class for all relay errors."""


class NoActiveTabError(RelayError):
    """A current-tab send was requested but no tab is active."""


class InvalidResourceUrlError(RelayError):
    """The URL does not contain a resume identifier."""

    def __init__(self, url: str):
        super().__init__(f"Invalid resume URL: {url}")
        self.url = url


class TabOperationError(RelayError):
    """A tab could not be created, navigated or injected."""

    def __init__(self, message: str, tab_id: Optional[int] = None):
        super().__init__(message)
        self.tab_id = tab_id


class WorkerProtocolError(RelayError):
    """The worker answered with a malformed message or an explicit failure."""


class WorkerTimeoutError(WorkerProtocolError):
    """The worker did not answer in time."""

    def __init__(self, request_type: str, timeout: float, tab_id: Optional[int] = None):
        super().__init__(f"Worker did not answer '{request_type}' within {timeout:.1f}s")
        self.request_type = request_type
        self.timeout = timeout
        self.tab_id = tab_id


class RegistryError(RelayError):
    """The Resource Registry answered with an error status."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class RegistryUnavailableError(RegistryError):
    """The Resource Registry could not be reached."""
