"""Error kinds raised by the parsers, the store and the importer.

Handler shims turn these into error envelopes at the RPC boundary and the
HTTP layer maps them onto status codes.
"""

from typing import Any


class SSGError(Exception):
    """Base class for all ssgkb errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFoundError(SSGError):
    """Raised when a queried primary key is absent."""


class InvalidFormatError(SSGError):
    """Raised on filename mismatch, unparseable JSON, malformed XML or missing benchmark."""


class IOReadError(SSGError):
    """Raised when a source file cannot be read."""


class IOWriteError(SSGError):
    """Raised when the store fails to persist."""


class ListFailedError(SSGError):
    """Raised when a source directory cannot be listed."""


class FetchFailedError(SSGError):
    """Raised when the source snapshot cannot be refreshed."""


class ImportTimeoutError(SSGError):
    """Raised when a single file import exceeds its deadline."""


class JobStateError(SSGError):
    """Raised when an import job transition is not legal from the current state."""


class RPCError(SSGError):
    """Raised when an RPC cannot be delivered."""
