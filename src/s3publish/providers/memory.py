"""
In-memory remote store.

Behaves like an S3 bucket from the publisher's point of view: entity tags
are MD5 digests of the stored body, listings are lexicographic and paged.
Useful for dry runs and tests; call counts are kept per operation and
failures can be injected per key.
"""

import logging
import threading
from collections import Counter
from datetime import datetime, timezone
from typing import Dict, Iterator, Optional, Sequence, Set, Tuple

from ..artifacts import RemoteObjectMeta
from ..errors import NotFoundError, TransportError
from ..fingerprint import fingerprint
from ..storage import RemoteStore

logger = logging.getLogger(__name__)


class InMemoryRemoteStore(RemoteStore):
    """Dict-backed implementation of RemoteStore."""

    def __init__(self, bucket: str = "memory", page_size: int = 1000):
        """
        Initialize in-memory store.

        Args:
            bucket: Bucket identifier reported to the metadata cache
            page_size: Number of objects fetched per listing page
        """
        if page_size < 1:
            raise ValueError(f"Invalid page size: {page_size}")

        self.bucket = bucket
        self.page_size = page_size
        self.calls: Counter = Counter()
        self._objects: Dict[str, Tuple[bytes, Dict[str, str], RemoteObjectMeta]] = {}
        self._failures: Set[Tuple[str, str]] = set()
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def fail_on(self, operation: str, key: str) -> None:
        """Make ``operation`` raise TransportError for ``key``."""
        self._failures.add((operation, key))

    def get_body(self, key: str) -> bytes:
        with self._lock:
            return self._objects[key][0]

    def get_headers(self, key: str) -> Dict[str, str]:
        with self._lock:
            return dict(self._objects[key][1])

    def keys(self):
        with self._lock:
            return sorted(self._objects)

    def _check_failure(self, operation: str, key: str) -> None:
        if (operation, key) in self._failures:
            raise TransportError("Injected failure", key=key, operation=operation)

    # ------------------------------------------------------------------
    # RemoteStore
    # ------------------------------------------------------------------

    def head(self, key: str) -> Optional[RemoteObjectMeta]:
        self.calls["head"] += 1
        self._check_failure("head", key)
        with self._lock:
            stored = self._objects.get(key)
        return stored[2] if stored else None

    def put(self, key: str, body: bytes, headers: Dict[str, str]) -> RemoteObjectMeta:
        self.calls["put"] += 1
        self._check_failure("put", key)
        meta = RemoteObjectMeta(
            key=key,
            etag=fingerprint(body),
            size=len(body),
            last_modified=datetime.now(timezone.utc),
        )
        with self._lock:
            self._objects[key] = (bytes(body), dict(headers), meta)
        logger.debug(f"Stored memory://{self.bucket}/{key} (ETag: {meta.etag})")
        return meta

    def delete(self, key: str) -> None:
        self.calls["delete"] += 1
        self._check_failure("delete", key)
        with self._lock:
            if key not in self._objects:
                raise NotFoundError(key, operation="delete")
            del self._objects[key]

    def delete_multiple(self, keys: Sequence[str]) -> Dict[str, Optional[Exception]]:
        self.calls["delete_multiple"] += 1
        outcomes: Dict[str, Optional[Exception]] = {}
        for key in keys:
            if ("delete", key) in self._failures:
                outcomes[key] = TransportError("Injected failure", key=key, operation="delete")
                continue
            with self._lock:
                # S3 reports missing keys as deleted
                self._objects.pop(key, None)
            outcomes[key] = None
        return outcomes

    def list_objects(self, prefix: str = "") -> Iterator[RemoteObjectMeta]:
        self.calls["list"] += 1
        start_after = ""
        while True:
            self._check_failure("list", prefix)
            with self._lock:
                page = sorted(
                    key for key in self._objects
                    if key.startswith(prefix) and key > start_after
                )[:self.page_size]
                metas = [self._objects[key][2] for key in page]
            if not metas:
                return
            yield from metas
            if len(metas) < self.page_size:
                return
            start_after = metas[-1].key
