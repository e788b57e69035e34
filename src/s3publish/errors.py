"""
Exception hierarchy for publish operations.

Transport failures, cache persistence failures and configuration problems
each get their own type so callers can decide which ones are fatal. Every
error that concerns a single remote object carries its key.
"""

from typing import Optional


class PublishError(Exception):
    """Base exception for all publish errors."""
    pass


class TransportError(PublishError):
    """
    Raised when a call to the remote store fails.

    Covers network failures, authentication/permission failures, remote
    service errors and adapter timeouts on head, put, delete or list. The
    core never retries these; they are reported against the key they
    concern.

    Attributes:
        key: Remote key the failed call targeted
        operation: Adapter operation name (head, put, delete, list)
        original_error: Exception raised by the underlying client
    """

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        operation: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.key = key
        self.operation = operation
        self.original_error = original_error

        full_message = message
        if key:
            full_message += f"\n  Key: {key}"
        if operation:
            full_message += f"\n  Operation: {operation}"
        if original_error:
            full_message += f"\n  Reason: {original_error}"

        super().__init__(full_message)


class NotFoundError(TransportError):
    """
    Raised when a remote object does not exist.

    This is a control-flow signal rather than a failure: a missing object
    on head drives the ``create`` branch, and a missing object on delete
    means someone else already removed it.
    """

    def __init__(self, key: str, operation: Optional[str] = None):
        super().__init__("Remote object not found", key=key, operation=operation)


class CachePersistenceError(PublishError):
    """
    Raised when the metadata cache cannot be loaded or flushed.

    Non-fatal by default: a cache that fails to load degrades to an empty
    cache, which only costs extra head requests.
    """

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.path = path
        self.original_error = original_error

        full_message = message
        if path:
            full_message += f"\n  File: {path}"
        if original_error:
            full_message += f"\n  Reason: {original_error}"

        super().__init__(full_message)


class ConfigurationError(PublishError, ValueError):
    """
    Raised when publish options are invalid.

    Reasons may include:
    - Mutually exclusive options enabled together (force and conservative)
    - Missing bucket name or unknown storage provider
    - Non-positive worker or batch counts
    - Header overrides that are not string pairs
    """
    pass
