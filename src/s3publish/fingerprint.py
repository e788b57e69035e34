"""
Content fingerprints for change detection.

MD5 hex digests are used because they equal the entity tag S3 returns for a
single-part upload, so the same value can be compared against the metadata
cache and against remote objects.
"""

import hashlib
from typing import Optional


def fingerprint(body: bytes) -> str:
    """Return the lowercase hex MD5 digest of ``body``."""
    return hashlib.md5(body).hexdigest()


def normalize_etag(etag: Optional[str]) -> Optional[str]:
    """Strip the quotes S3 wraps entity tags in."""
    if etag is None:
        return None
    return etag.strip().strip('"').lower()
