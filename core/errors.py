"""
Error taxonomy for flowsrc-sync.

Every failure the sync engine reports derives from FlowSyncError so that a
single except clause in the coordinator can record it and return to idle.
"""

from pathlib import Path
from typing import Optional, Union


class FlowSyncError(Exception):
    """Base class for all sync errors"""
    pass


class ConfigurationError(FlowSyncError):
    """Invalid or missing configuration. Fatal at startup."""
    pass


class TransportError(FlowSyncError):
    """Fetching from or pushing to the Node-RED server failed"""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ConflictError(TransportError):
    """
    The remote revision advanced since the local revision was captured.

    Expected during normal operation; the coordinator answers it with a
    forced remote-to-local pass instead of retrying the push.
    """
    pass


class FilesystemError(FlowSyncError):
    """A directory or file under the source tree could not be created, written or read"""

    def __init__(self, message: str, path: Optional[Union[str, Path]] = None):
        super().__init__(message)
        self.path = Path(path) if path is not None else None
