"""
Data model for publish sessions.

Provides:
- Artifact: a local body with its target remote key
- PublishState: the closed set of states an artifact or remote key can end in
- PublishRecord / PublishFailure: per-key outcome of a publish or sync pass
- CacheEntry and RemoteObjectMeta: cached and remote views of an object
- collect_artifacts: build an artifact stream from a local directory
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

logger = logging.getLogger(__name__)


# ============================================================================
# Enums
# ============================================================================

class ContentEncoding(str, Enum):
    """Encoding applied to an artifact body."""
    IDENTITY = "identity"
    GZIP = "gzip"


class PublishState(str, Enum):
    """Outcome assigned to a key during a publish or sync pass."""
    CREATE = "create"    # Object was missing remotely and has been written
    UPDATE = "update"    # Object existed remotely and has been overwritten
    SKIP = "skip"        # Nothing written; not recorded in the cache either
    CACHE = "cache"      # Cache entry matched; remote store not consulted
    DELETE = "delete"    # Remote object had no local counterpart

    @property
    def writes(self) -> bool:
        """Whether reaching this state involves a remote put."""
        return self in (PublishState.CREATE, PublishState.UPDATE)


# ============================================================================
# Data Classes
# ============================================================================

@dataclass(frozen=True)
class Artifact:
    """
    A local unit of content bound for a remote key.

    Attributes:
        key: Remote object key
        body: Raw bytes to publish
        headers: Caller supplied headers for this artifact
        encoding: Encoding already applied to ``body``
        source_key: Key of the artifact this one was derived from, used
            for content-type inference on transformed artifacts
    """
    key: str
    body: bytes
    headers: Dict[str, str] = field(default_factory=dict)
    encoding: ContentEncoding = ContentEncoding.IDENTITY
    source_key: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.body)


@dataclass(frozen=True)
class PublishRecord:
    """
    Outcome of classifying one artifact, or of deleting one remote key.

    ``fingerprint`` is the artifact's content fingerprint; for ``delete``
    records it is the integrity token of the removed remote object.
    ``etag`` is the token acknowledged by the remote store after a put.
    """
    key: str
    state: PublishState
    fingerprint: Optional[str]
    headers: Dict[str, str] = field(default_factory=dict)
    etag: Optional[str] = None
    simulated: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "key": self.key,
            "state": self.state.value,
            "fingerprint": self.fingerprint,
            "headers": dict(self.headers),
            "etag": self.etag,
            "simulated": self.simulated,
        }


@dataclass(frozen=True)
class PublishFailure:
    """A transport failure attached to the key it concerns."""
    key: str
    operation: str
    error: Exception

    @property
    def message(self) -> str:
        return str(self.error)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "key": self.key,
            "operation": self.operation,
            "error": type(self.error).__name__,
            "message": self.message,
        }


PublishResult = Union[PublishRecord, PublishFailure]


@dataclass(frozen=True)
class CacheEntry:
    """Last published fingerprint and headers for a key."""
    key: str
    fingerprint: str
    headers: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the persisted form (the key is stored as the mapping key)."""
        return {
            "fingerprint": self.fingerprint,
            "headers": dict(self.headers),
        }

    @classmethod
    def from_dict(cls, key: str, data: Dict[str, Any]) -> "CacheEntry":
        return cls(
            key=key,
            fingerprint=str(data["fingerprint"]),
            headers={str(k): str(v) for k, v in (data.get("headers") or {}).items()},
        )


@dataclass(frozen=True)
class RemoteObjectMeta:
    """Read-only view of a remote object."""
    key: str
    etag: Optional[str]
    size: int
    last_modified: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "key": self.key,
            "etag": self.etag,
            "size": self.size,
            "last_modified": self.last_modified.isoformat() if self.last_modified else None,
        }


# ============================================================================
# Local collection
# ============================================================================

def collect_artifacts(
    root: Path,
    pattern: str = "**/*",
    exclude_patterns: Optional[List[str]] = None,
    prefix: str = "",
    headers: Optional[Dict[str, str]] = None,
) -> Iterator[Artifact]:
    """
    Yield artifacts for every file under ``root`` matching ``pattern``.

    Args:
        root: Local directory to walk
        pattern: Glob pattern relative to ``root``
        exclude_patterns: Path patterns (``Path.match`` syntax) to leave out
        prefix: Remote key prefix prepended to each relative path
        headers: Headers attached to every artifact

    Returns:
        Iterator of Artifact, keyed by POSIX relative path, in sorted order

    Raises:
        ValueError: If ``root`` is not a directory
    """
    root = Path(root)
    if not root.is_dir():
        raise ValueError(f"Not a directory: {root}")

    exclude_patterns = exclude_patterns or []
    prefix = prefix.strip("/")

    for file_path in sorted(root.glob(pattern)):
        if not file_path.is_file():
            continue
        if any(file_path.match(p) for p in exclude_patterns):
            logger.debug(f"Excluded {file_path}")
            continue

        relative = file_path.relative_to(root).as_posix()
        key = f"{prefix}/{relative}" if prefix else relative
        yield Artifact(
            key=key,
            body=file_path.read_bytes(),
            headers=dict(headers or {}),
        )
