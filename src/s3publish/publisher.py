"""
Publish sessions: classify artifacts against the cache and the remote store.

Provides:
- Publisher: one publish session over a RemoteStore and a MetadataCache
- Classification of each artifact into create / update / skip / cache
- A bounded, concurrent publish pipeline with per-key serialization
- Sync of the bucket against the keys published in the session

Classification of one artifact:

    fingerprint F of the body
    cache entry for the key has fingerprint F (and not forced) -> cache
    otherwise head(key)
        missing                                   -> create (put)
        present, forced                           -> update (put)
        present, etag != F, not conservative      -> update (put)
        present, etag != F, conservative          -> skip
        present, etag == F                        -> skip
"""

import logging
import threading
from collections import OrderedDict
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Dict, Iterable, Iterator, Optional, Set, Union

from .artifacts import Artifact, PublishFailure, PublishRecord, PublishResult, PublishState
from .cache import CacheWriter, MetadataCache
from .errors import ConfigurationError, TransportError
from .fingerprint import fingerprint
from .headers import compute_headers, merge_headers
from .report import PublishReport
from .storage import RemoteStore
from .sync import DEFAULT_BATCH_SIZE, ExclusionItem, ExclusionSet, reconcile

logger = logging.getLogger(__name__)


class Publisher:
    """Publishes artifact streams to one bucket."""

    def __init__(
        self,
        store: RemoteStore,
        cache: Optional[MetadataCache] = None,
        cache_path: Optional[Path] = None,
        force_republish: bool = False,
        conservative: bool = False,
        simulate: bool = False,
        header_overrides: Optional[Dict[str, str]] = None,
        exclusions: Union[ExclusionSet, Iterable[ExclusionItem], None] = None,
        charset: Optional[str] = None,
        max_workers: int = 4,
        max_in_flight: Optional[int] = None,
    ):
        """
        Initialize a publish session. Call open() (or use as a context
        manager) to load the cache before publishing.

        Args:
            store: Remote store adapter
            cache: Metadata cache; created for ``store.bucket`` if omitted
            cache_path: Cache file used when ``cache`` is omitted
            force_republish: Always put, even when cache or remote match
            conservative: Never overwrite an existing remote object
            simulate: Classify but perform no remote writes
            header_overrides: Headers applied to every artifact
            exclusions: Keys or patterns sync must never delete
            charset: Charset appended to text content types
            max_workers: Threads classifying artifacts concurrently
            max_in_flight: Artifacts pulled from the input ahead of the
                consumer; defaults to twice ``max_workers``

        Raises:
            ConfigurationError: If the options are inconsistent
        """
        if force_republish and conservative:
            raise ConfigurationError("force_republish and conservative are mutually exclusive")
        if max_workers < 1:
            raise ConfigurationError(f"max_workers must be positive, got {max_workers}")
        if max_in_flight is not None and max_in_flight < 1:
            raise ConfigurationError(f"max_in_flight must be positive, got {max_in_flight}")
        for name, value in (header_overrides or {}).items():
            if not isinstance(name, str) or not isinstance(value, str):
                raise ConfigurationError(f"Header overrides must be strings: {name!r}={value!r}")
        if not getattr(store, "bucket", None):
            raise ConfigurationError("Remote store has no bucket identifier")
        if cache is not None and cache.bucket != store.bucket:
            raise ConfigurationError(
                f"Cache belongs to bucket {cache.bucket!r}, store to {store.bucket!r}"
            )

        self.store = store
        self.cache = cache if cache is not None else MetadataCache(store.bucket, cache_path)
        self.cache_writer = CacheWriter(self.cache)
        self.force_republish = force_republish
        self.conservative = conservative
        self.simulate = simulate
        self.header_overrides = dict(header_overrides or {})
        self.exclusions = ExclusionSet.coerce(exclusions)
        self.charset = charset
        self.max_workers = max_workers
        self.max_in_flight = max_in_flight or 2 * max_workers
        self.report = PublishReport()

        self._published_keys: Set[str] = set()
        # key -> fingerprint of the last body this session put
        self._written: Dict[str, str] = {}
        self._lock = threading.Lock()

    @property
    def bucket(self) -> str:
        return self.store.bucket

    @property
    def published_keys(self) -> Set[str]:
        """Keys of every artifact processed by this session so far."""
        with self._lock:
            return set(self._published_keys)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> "Publisher":
        """Connect the store and load the cache."""
        self.store.connect()
        self.cache.load()
        return self

    def close(self) -> None:
        """Flush the cache and disconnect the store."""
        try:
            if not self.simulate:
                self.cache.flush()
        finally:
            self.store.disconnect()

    def __enter__(self) -> "Publisher":
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def classify(
        self,
        artifact: Artifact,
        headers: Optional[Dict[str, str]] = None,
        force: Optional[bool] = None,
    ) -> PublishRecord:
        """
        Classify one artifact and perform the put its state calls for.

        Args:
            artifact: Artifact to publish
            headers: Extra headers for this call, on top of the session's
            force: Override the session's force_republish

        Returns:
            PublishRecord for the artifact

        Raises:
            TransportError: If head or put fails
        """
        force = self.force_republish if force is None else force
        key = artifact.key
        fp = fingerprint(artifact.body)
        computed = compute_headers(
            artifact,
            merge_headers(self.header_overrides, headers),
            charset=self.charset,
        )

        cached = self.cache.get(key)
        with self._lock:
            written = self._written.get(key, fp)
        # The session's last put for a key wins over its cache entry
        if cached is not None and cached.fingerprint == fp and written == fp and not force:
            logger.debug(f"Cache hit for {key} ({fp})")
            return PublishRecord(key=key, state=PublishState.CACHE, fingerprint=fp, headers=computed)

        remote = self.store.head(key)
        if remote is None:
            state = PublishState.CREATE
        elif force:
            state = PublishState.UPDATE
        elif remote.etag != fp:
            state = PublishState.SKIP if self.conservative else PublishState.UPDATE
        else:
            state = PublishState.SKIP
        logger.debug(
            f"Remote {key}: {'missing' if remote is None else remote.etag}, local {fp} -> {state.value}"
        )

        if not state.writes:
            return PublishRecord(key=key, state=state, fingerprint=fp, headers=computed)

        if self.simulate:
            return PublishRecord(
                key=key, state=state, fingerprint=fp, headers=computed, simulated=True
            )

        meta = self.store.put(key, artifact.body, computed)
        with self.cache.key_lock(key):
            # The entry describes the replaced body until this record is committed
            self.cache.remove(key)
        with self._lock:
            self._written[key] = fp
        return PublishRecord(key=key, state=state, fingerprint=fp, headers=computed, etag=meta.etag)

    def _process(
        self,
        artifact: Artifact,
        headers: Optional[Dict[str, str]],
        force: Optional[bool],
        commit: bool,
        after: Optional[Future],
    ) -> PublishResult:
        # An earlier artifact with the same key must land first
        if after is not None:
            wait([after])

        with self.cache.key_lock(artifact.key):
            try:
                result: PublishResult = self.classify(artifact, headers, force)
            except TransportError as e:
                logger.error(f"Failed to publish {artifact.key}: {e}")
                result = PublishFailure(
                    key=artifact.key, operation=e.operation or "publish", error=e
                )
            else:
                if commit:
                    self.cache_writer.commit(result)

        with self._lock:
            self._published_keys.add(artifact.key)

        if isinstance(result, PublishRecord):
            prefix = "[simulate] " if result.simulated else ""
            logger.info(f"{prefix}{result.state.value} {result.key}")
        return result

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def publish(
        self,
        artifacts: Iterable[Artifact],
        headers: Optional[Dict[str, str]] = None,
        force: Optional[bool] = None,
        commit: bool = False,
        ordered: bool = False,
    ) -> Iterator[PublishResult]:
        """
        Publish a stream of artifacts.

        At most ``max_in_flight`` artifacts are pulled from ``artifacts``
        ahead of the consumer. A failing artifact produces a PublishFailure
        and the stream carries on. Closing the returned generator stops
        submitting work; puts already running are allowed to finish.

        Args:
            artifacts: Artifacts to publish
            headers: Extra headers for every artifact of this call
            force: Override the session's force_republish
            commit: Commit confirmed records to the cache as they complete,
                under the same key lock as their classification
            ordered: Yield results in input order instead of completion order

        Returns:
            Iterator of PublishRecord / PublishFailure, one per artifact
        """
        iterator = iter(artifacts)
        pending: "OrderedDict[Future, str]" = OrderedDict()
        tails: Dict[str, Future] = {}
        exhausted = False

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="s3publish") as executor:
            try:
                while True:
                    while not exhausted and len(pending) < self.max_in_flight:
                        try:
                            artifact = next(iterator)
                        except StopIteration:
                            exhausted = True
                            break
                        future = executor.submit(
                            self._process, artifact, headers, force, commit, tails.get(artifact.key)
                        )
                        tails[artifact.key] = future
                        pending[future] = artifact.key

                    if not pending:
                        break

                    if ordered:
                        ready = [next(iter(pending))]
                    else:
                        done, _ = wait(list(pending), return_when=FIRST_COMPLETED)
                        ready = [f for f in pending if f in done]

                    for future in ready:
                        key = pending.pop(future)
                        if tails.get(key) is future:
                            del tails[key]
                        result = future.result()
                        self.report.add(result)
                        yield result
            finally:
                for future in pending:
                    future.cancel()

    def publish_all(self, artifacts: Iterable[Artifact], **kwargs) -> PublishReport:
        """Publish every artifact and return a report of this call."""
        report = PublishReport()
        for result in self.publish(artifacts, **kwargs):
            report.add(result)
        return report

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def sync(
        self,
        local: Optional[Iterable[Union[str, PublishResult]]] = None,
        prefix: str = "",
        exclusions: Union[ExclusionSet, Iterable[ExclusionItem], None] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> Iterator[PublishResult]:
        """
        Delete remote objects under ``prefix`` that were not published.

        Args:
            local: Keys or publish results accounting for the local set;
                defaults to every key processed by this session
            prefix: Only remote keys under this prefix are considered
            exclusions: Extra keys/patterns to protect, on top of the session's
            batch_size: Maximum keys per delete request

        Returns:
            Iterator of delete records and per-key failures
        """
        if local is None:
            local_keys = self.published_keys
        else:
            local_keys = {item if isinstance(item, str) else item.key for item in local}

        extra = ExclusionSet.coerce(exclusions)
        protected = ExclusionSet(
            keys=self.exclusions.keys | extra.keys,
            patterns=self.exclusions.patterns + extra.patterns,
        )

        logger.info(f"Syncing s3://{self.bucket}/{prefix} against {len(local_keys)} local keys")
        for result in reconcile(
            local_keys,
            self.store.list_objects(prefix),
            self.store,
            exclusions=protected,
            simulate=self.simulate,
            batch_size=batch_size,
        ):
            # A deleted object can no longer satisfy a cache hit
            if isinstance(result, PublishRecord) and not result.simulated:
                with self.cache.key_lock(result.key):
                    self.cache.remove(result.key)
            self.report.add(result)
            yield result
