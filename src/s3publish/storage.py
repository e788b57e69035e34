"""
Remote store adapter contract.

The publisher and reconciler only talk to object storage through this
interface. Implementations own transport concerns (credentials, retries,
rate limiting, timeouts) and must report failures as TransportError.
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterator, Optional, Sequence

from .artifacts import RemoteObjectMeta


class RemoteStore(ABC):
    """Abstract base class for remote object stores."""

    #: Bucket identifier, used to key the metadata cache
    bucket: str

    def connect(self) -> None:
        """Establish connection to the store. No-op by default."""
        pass

    def disconnect(self) -> None:
        """Close connection to the store. No-op by default."""
        pass

    @abstractmethod
    def head(self, key: str) -> Optional[RemoteObjectMeta]:
        """
        Fetch metadata for a remote object.

        Returns:
            RemoteObjectMeta, or None if the object does not exist

        Raises:
            TransportError: If the request fails
        """
        pass

    @abstractmethod
    def put(self, key: str, body: bytes, headers: Dict[str, str]) -> RemoteObjectMeta:
        """
        Write an object, returning its metadata once acknowledged.

        The returned metadata must carry the resulting integrity token.

        Raises:
            TransportError: If the write fails
        """
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """
        Delete a single object.

        Raises:
            NotFoundError: If the object does not exist (when detectable)
            TransportError: If the request fails
        """
        pass

    @abstractmethod
    def delete_multiple(self, keys: Sequence[str]) -> Dict[str, Optional[Exception]]:
        """
        Delete several objects.

        Returns:
            Mapping of every requested key to None on success or to the
            exception describing its failure

        Raises:
            TransportError: If the request as a whole fails
        """
        pass

    @abstractmethod
    def list_objects(self, prefix: str = "") -> Iterator[RemoteObjectMeta]:
        """
        Lazily list every object under ``prefix``.

        Each call starts a fresh listing from the beginning; pages are
        fetched as the iterator is consumed.

        Raises:
            TransportError: If fetching a page fails
        """
        pass

    def __enter__(self) -> "RemoteStore":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.disconnect()
