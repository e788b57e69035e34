"""
Publish local artifacts to an S3 bucket and keep the bucket in sync.

Provides:
- Classification of artifacts into create / update / skip / cache states
- A persistent per-bucket metadata cache to avoid needless remote requests
- Header policy (content-type, content-length, ACL, content-encoding)
- Gzip transform for derived artifacts
- Reconciliation deleting remote objects without a local counterpart
- Remote store adapters for AWS S3 and an in-memory bucket
- YAML configuration and reporting
"""

from .artifacts import (
    Artifact,
    CacheEntry,
    ContentEncoding,
    PublishFailure,
    PublishRecord,
    PublishResult,
    PublishState,
    RemoteObjectMeta,
    collect_artifacts,
)
from .cache import CacheWriter, MetadataCache
from .compression import gzip_artifact, gzip_stream
from .config import (
    ConfigManager,
    PublishConfig,
    PublisherBuilder,
    RemoteStoreFactory,
    StorageConfig,
)
from .errors import (
    CachePersistenceError,
    ConfigurationError,
    NotFoundError,
    PublishError,
    TransportError,
)
from .fingerprint import fingerprint
from .headers import compute_headers
from .providers.memory import InMemoryRemoteStore
from .providers.s3 import S3RemoteStore
from .publisher import Publisher
from .report import PublishReport
from .storage import RemoteStore
from .sync import ExclusionSet, reconcile

__all__ = [
    # Data model
    "Artifact",
    "CacheEntry",
    "ContentEncoding",
    "PublishFailure",
    "PublishRecord",
    "PublishResult",
    "PublishState",
    "RemoteObjectMeta",
    "collect_artifacts",
    # Core
    "Publisher",
    "MetadataCache",
    "CacheWriter",
    "ExclusionSet",
    "reconcile",
    "fingerprint",
    "compute_headers",
    "gzip_artifact",
    "gzip_stream",
    "PublishReport",
    # Stores
    "RemoteStore",
    "InMemoryRemoteStore",
    "S3RemoteStore",
    # Configuration
    "StorageConfig",
    "PublishConfig",
    "RemoteStoreFactory",
    "ConfigManager",
    "PublisherBuilder",
    # Errors
    "PublishError",
    "TransportError",
    "NotFoundError",
    "CachePersistenceError",
    "ConfigurationError",
]
