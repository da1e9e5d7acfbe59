"""
Exceptions raised by the milksync client.

Every failure of a remote call is one of the ``RemoteCallError`` kinds, and
``str(error)`` is the normalized message routed to the error sink.
"""

from typing import Optional


class SyncError(Exception):
    """Base exception for sync operations."""
    pass


class RemoteCallError(SyncError):
    """A remote call did not produce a usable successful response."""
    pass


class TransportError(RemoteCallError):
    """No response, or an HTTP-level failure."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ProtocolError(RemoteCallError):
    """The response body is not the expected JSON envelope."""
    pass


class RemoteServiceError(RemoteCallError):
    """The service answered with a well-formed failure envelope."""

    def __init__(self, code: Optional[str], msg: Optional[str]):
        if code is None and msg is None:
            super().__init__("Unknown RTM error")
        else:
            super().__init__(f"RTM error {code}: {msg}")
        self.code = code
        self.msg = msg


class StoreError(SyncError):
    """The local store could not be read or written."""
    pass
