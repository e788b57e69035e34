"""
Metadata cache tracking what has already been published.

Provides:
- MetadataCache: per-bucket mapping of key -> fingerprint/headers, with an
  explicit load/flush lifecycle and per-key locks
- CacheWriter: commits confirmed publish records into a MetadataCache

Persistence layout is a single JSON document keyed by bucket identifier:

    {
      "my-bucket": {
        "index.html": {"fingerprint": "...", "headers": {...}}
      }
    }

Flushing rewrites only the owning bucket's section.
"""

import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional

from .artifacts import CacheEntry, PublishRecord, PublishResult, PublishState
from .errors import CachePersistenceError

logger = logging.getLogger(__name__)

DEFAULT_CACHE_PATH = Path(".s3publish-cache.json")

# States whose records may be committed
COMMITTABLE_STATES = {PublishState.CREATE, PublishState.UPDATE, PublishState.CACHE}


class MetadataCache:
    """Last-published fingerprints for one bucket."""

    def __init__(self, bucket: str, path: Optional[Path] = None):
        """
        Initialize metadata cache. Nothing is read until load() is called.

        Args:
            bucket: Bucket identifier; entries of other buckets are never visible
            path: JSON file holding the cache, ``.s3publish-cache.json`` by default
        """
        self.bucket = bucket
        self.path = Path(path) if path else DEFAULT_CACHE_PATH
        self.load_error: Optional[CachePersistenceError] = None
        self._entries: Dict[str, CacheEntry] = {}
        self._dirty = False
        self._lock = threading.Lock()
        # key -> [lock, holders]; dropped when the last holder leaves
        self._key_locks: Dict[str, List] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __enter__(self) -> "MetadataCache":
        self.load()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.flush()

    @property
    def dirty(self) -> bool:
        return self._dirty

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _read_document(self) -> Dict[str, Dict]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                document = json.load(f)
        except (OSError, ValueError) as e:
            raise CachePersistenceError(
                "Failed to read metadata cache", path=str(self.path), original_error=e
            ) from e
        if not isinstance(document, dict):
            raise CachePersistenceError(
                "Metadata cache is not a JSON object", path=str(self.path)
            )
        return document

    def load(self, strict: bool = False) -> None:
        """
        Load this bucket's entries from disk, replacing in-memory state.

        Args:
            strict: Raise on failure instead of degrading to an empty cache

        Raises:
            CachePersistenceError: If ``strict`` and the file cannot be read
        """
        self.load_error = None
        error: Optional[CachePersistenceError] = None
        entries: Dict[str, CacheEntry] = {}
        try:
            section = self._read_document().get(self.bucket) or {}
            entries = {
                key: CacheEntry.from_dict(key, data) for key, data in section.items()
            }
        except CachePersistenceError as e:
            error = e
        except (KeyError, TypeError, AttributeError, ValueError) as e:
            error = CachePersistenceError(
                "Malformed metadata cache entry", path=str(self.path), original_error=e
            )

        if error is not None:
            if strict:
                raise error
            self.load_error = error
            logger.warning(f"Metadata cache unavailable, every artifact will be checked remotely: {error}")
            entries = {}

        with self._lock:
            self._entries = entries
            self._dirty = False
        logger.info(f"Loaded {len(entries)} cache entries for bucket {self.bucket}")

    def flush(self, force: bool = False) -> None:
        """
        Write this bucket's entries to disk.

        Other buckets' sections already in the file are preserved. The file
        is replaced atomically.

        Raises:
            CachePersistenceError: If the file cannot be written
        """
        if not self._dirty and not force:
            return

        try:
            document = self._read_document()
        except CachePersistenceError as e:
            logger.warning(f"Overwriting unreadable metadata cache: {e}")
            document = {}

        with self._lock:
            document[self.bucket] = {
                key: entry.to_dict() for key, entry in sorted(self._entries.items())
            }
            count = len(self._entries)

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=self.path.name, suffix=".tmp", dir=str(self.path.parent)
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(document, f, indent=2, sort_keys=True)
                os.replace(tmp_name, self.path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise CachePersistenceError(
                "Failed to write metadata cache", path=str(self.path), original_error=e
            ) from e

        self._dirty = False
        logger.info(f"Flushed {count} cache entries for bucket {self.bucket} to {self.path}")

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    def get(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def put(self, entry: CacheEntry) -> bool:
        """
        Store an entry.

        Returns:
            True if the cache changed, False if an identical entry was present
        """
        with self._lock:
            if self._entries.get(entry.key) == entry:
                return False
            self._entries[entry.key] = entry
            self._dirty = True
        return True

    def remove(self, key: str) -> bool:
        with self._lock:
            if self._entries.pop(key, None) is None:
                return False
            self._dirty = True
        return True

    def clear(self) -> None:
        with self._lock:
            if self._entries:
                self._dirty = True
            self._entries = {}

    def keys(self):
        return sorted(self._entries)

    @contextmanager
    def key_lock(self, key: str) -> Iterator[None]:
        """
        Serialize work on one key.

        Reentrant, so a caller holding the lock may commit through a
        CacheWriter sharing this cache.
        """
        with self._lock:
            slot = self._key_locks.get(key)
            if slot is None:
                slot = self._key_locks[key] = [threading.RLock(), 0]
            slot[1] += 1
        try:
            with slot[0]:
                yield
        finally:
            with self._lock:
                slot[1] -= 1
                if slot[1] == 0:
                    del self._key_locks[key]


class CacheWriter:
    """Commits successfully published artifacts into a MetadataCache."""

    def __init__(self, cache: MetadataCache):
        self.cache = cache

    @staticmethod
    def is_committable(result: PublishResult) -> bool:
        """
        Whether a result describes a confirmed remote state.

        Only non-simulated create/update records (acknowledged puts) and
        cache records qualify. Skip, delete and failures never do.
        """
        return (
            isinstance(result, PublishRecord)
            and result.state in COMMITTABLE_STATES
            and not result.simulated
            and result.fingerprint is not None
        )

    def commit(self, result: PublishResult) -> bool:
        """
        Commit one result.

        Returns:
            True if the cache changed
        """
        if not self.is_committable(result):
            return False

        entry = CacheEntry(
            key=result.key,
            fingerprint=result.fingerprint,
            headers=dict(result.headers),
        )
        with self.cache.key_lock(result.key):
            changed = self.cache.put(entry)
        if changed:
            logger.debug(f"Cached {result.key} ({result.fingerprint})")
        return changed

    def consume(self, results: Iterable[PublishResult]) -> Iterator[PublishResult]:
        """Commit each result as it passes, yielding it unchanged."""
        for result in results:
            self.commit(result)
            yield result
