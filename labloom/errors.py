class LabloomError(Exception):
    """Base class for all errors raised by labloom."""


class NoteValidationError(LabloomError):
    """A note or attachment failed validation before any write."""


class ImageEncodeError(LabloomError):
    """An image could not be decoded or re-encoded."""


class StorageError(LabloomError):
    """The local key-value store could not be read or written."""


class StorageQuotaExceeded(StorageError):
    """The local key-value store rejected a write for lack of space."""


class ControllerBusyError(LabloomError):
    """A mutation was requested while another one is still in flight."""


class RemoteStoreError(LabloomError):
    """Base class for remote note store failures."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class RemoteTransportError(RemoteStoreError):
    """The remote store was unreachable or answered with an unusable response."""


class RemoteNotFoundError(RemoteStoreError):
    """The remote store has no note with the requested id."""


class RemoteValidationError(RemoteStoreError):
    """The remote store rejected the payload."""
