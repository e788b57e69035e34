"""Remote store implementations."""

from .memory import InMemoryRemoteStore
from .s3 import S3RemoteStore

__all__ = [
    "InMemoryRemoteStore",
    "S3RemoteStore",
]
