from __future__ import annotations


class IngestError(Exception):
    """Base class for errors raised by the ingest core."""


class ConfigError(IngestError):
    pass


class ScanError(IngestError):
    """A source directory could not be read."""

    def __init__(self, path, cause: Exception | None = None):
        self.path = path
        self.cause = cause
        msg = f"cannot read directory {path}"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)


class ScanCancelled(IngestError):
    """The scan was cancelled through its cancellation event."""
