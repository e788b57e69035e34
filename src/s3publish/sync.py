"""
Reconciliation of a remote bucket against a published key set.

Remote keys that no published artifact accounts for are deleted, except
those protected by an ExclusionSet. Deletes are batched through the
store's delete_multiple and reported per key; one failing key or batch
never stops the remaining ones.
"""

import logging
import re
from typing import Iterable, Iterator, List, Optional, Pattern, Set, Union

from .artifacts import PublishFailure, PublishRecord, PublishResult, PublishState, RemoteObjectMeta
from .errors import ConfigurationError, NotFoundError, TransportError
from .storage import RemoteStore

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 1000

ExclusionItem = Union[str, Pattern]


class ExclusionSet:
    """
    Keys the reconciler must never delete.

    Plain strings match exactly. Compiled regular expressions (or strings
    passed through ``patterns``) are matched against the whole key; this is
    the extension point for pattern-based protection.
    """

    def __init__(
        self,
        keys: Optional[Iterable[ExclusionItem]] = None,
        patterns: Optional[Iterable[Union[str, Pattern]]] = None,
    ):
        self.keys: Set[str] = set()
        self.patterns: List[Pattern] = []

        for item in keys or []:
            if isinstance(item, re.Pattern):
                self.patterns.append(item)
            elif isinstance(item, str):
                self.keys.add(item)
            else:
                raise ConfigurationError(f"Invalid exclusion: {item!r}")

        for pattern in patterns or []:
            try:
                self.patterns.append(re.compile(pattern) if isinstance(pattern, str) else pattern)
            except re.error as e:
                raise ConfigurationError(f"Invalid exclusion pattern {pattern!r}: {e}") from e

    @classmethod
    def coerce(cls, value: Union["ExclusionSet", Iterable[ExclusionItem], None]) -> "ExclusionSet":
        if isinstance(value, ExclusionSet):
            return value
        return cls(value)

    def __len__(self) -> int:
        return len(self.keys) + len(self.patterns)

    def matches(self, key: str) -> bool:
        if key in self.keys:
            return True
        return any(p.fullmatch(key) for p in self.patterns)


def _delete_batch(
    batch: List[RemoteObjectMeta],
    store: RemoteStore,
    simulate: bool,
) -> Iterator[PublishResult]:
    keys = [meta.key for meta in batch]

    if simulate:
        for meta in batch:
            logger.info(f"[simulate] delete {meta.key}")
            yield PublishRecord(
                key=meta.key, state=PublishState.DELETE, fingerprint=meta.etag, simulated=True
            )
        return

    try:
        outcomes = store.delete_multiple(keys)
    except TransportError as e:
        logger.error(f"Batch delete of {len(keys)} keys failed: {e}")
        for key in keys:
            yield PublishFailure(key=key, operation="delete", error=e)
        return

    for meta in batch:
        if meta.key not in outcomes:
            error: Optional[Exception] = TransportError(
                "No outcome reported for delete", key=meta.key, operation="delete"
            )
        else:
            error = outcomes[meta.key]

        if error is None or isinstance(error, NotFoundError):
            logger.info(f"delete {meta.key}")
            yield PublishRecord(key=meta.key, state=PublishState.DELETE, fingerprint=meta.etag)
        else:
            logger.error(f"Failed to delete {meta.key}: {error}")
            yield PublishFailure(key=meta.key, operation="delete", error=error)


def reconcile(
    local_keys: Iterable[str],
    remote_listing: Iterable[RemoteObjectMeta],
    store: RemoteStore,
    exclusions: Union[ExclusionSet, Iterable[ExclusionItem], None] = None,
    simulate: bool = False,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> Iterator[PublishResult]:
    """
    Delete remote objects absent from the local key set.

    The listing is consumed lazily; deletions are issued whenever
    ``batch_size`` candidates have accumulated and once more at the end.
    Results come out in listing order.

    Args:
        local_keys: Keys published (or otherwise accounted for) locally
        remote_listing: Remote objects, typically ``store.list_objects(prefix)``
        store: Store the deletes are issued against
        exclusions: Keys or patterns that are never deleted
        simulate: Emit delete records without deleting anything
        batch_size: Maximum keys per delete_multiple call

    Returns:
        Iterator of delete PublishRecords and per-key PublishFailures

    Raises:
        ConfigurationError: If ``batch_size`` is not positive
    """
    if batch_size < 1:
        raise ConfigurationError(f"Invalid delete batch size: {batch_size}")

    local = set(local_keys)
    excluded = ExclusionSet.coerce(exclusions)
    pending: List[RemoteObjectMeta] = []
    listed = 0

    listing = iter(remote_listing)
    while True:
        try:
            meta = next(listing)
        except StopIteration:
            break
        except TransportError as e:
            logger.error(f"Remote listing failed after {listed} objects: {e}")
            if pending:
                yield from _delete_batch(pending, store, simulate)
            yield PublishFailure(key=e.key or "", operation="list", error=e)
            return

        listed += 1
        # Exclusion wins over everything else
        if excluded.matches(meta.key):
            logger.debug(f"Excluded from sync: {meta.key}")
            continue
        if meta.key in local:
            continue

        pending.append(meta)
        if len(pending) >= batch_size:
            yield from _delete_batch(pending, store, simulate)
            pending = []

    if pending:
        yield from _delete_batch(pending, store, simulate)
    logger.info(f"Reconciled {listed} remote objects against {len(local)} local keys")
