"""
Header policy applied to artifacts before they are published.

Computes content-type, content-length, the canned ACL header and
content-encoding, then layers caller supplied headers on top. Header names
are matched case-insensitively when an override replaces a computed value.
"""

import mimetypes
from typing import Dict, Optional

from .artifacts import Artifact, ContentEncoding

DEFAULT_CONTENT_TYPE = "application/octet-stream"
DEFAULT_ACL = "public-read"

ACL_HEADER = "x-amz-acl"
CONTENT_TYPE_HEADER = "Content-Type"
CONTENT_LENGTH_HEADER = "Content-Length"
CONTENT_ENCODING_HEADER = "Content-Encoding"


def guess_content_type(key: str, charset: Optional[str] = None) -> str:
    """
    Infer a content type from the key's file extension.

    Args:
        key: Remote key or file name
        charset: Charset appended to ``text/*`` types when given

    Returns:
        MIME type, ``application/octet-stream`` when unknown
    """
    content_type, _ = mimetypes.guess_type(key, strict=False)
    if not content_type:
        return DEFAULT_CONTENT_TYPE
    if charset and content_type.startswith("text/"):
        return f"{content_type}; charset={charset}"
    return content_type


def merge_headers(base: Dict[str, str], overrides: Optional[Dict[str, str]]) -> Dict[str, str]:
    """Return ``base`` updated with ``overrides``; overrides win regardless of case."""
    merged = dict(base)
    for name, value in (overrides or {}).items():
        for existing in [k for k in merged if k.lower() == name.lower()]:
            del merged[existing]
        merged[name] = value
    return merged


def compute_headers(
    artifact: Artifact,
    override_headers: Optional[Dict[str, str]] = None,
    encoding: Optional[ContentEncoding] = None,
    charset: Optional[str] = None,
) -> Dict[str, str]:
    """
    Compute the full header set for an artifact.

    Args:
        artifact: Artifact about to be published
        override_headers: Session-level headers; win over everything else
        encoding: Encoding of the body, defaults to ``artifact.encoding``
        charset: Optional charset for text content types

    Returns:
        New header mapping; the artifact is not modified
    """
    encoding = encoding or artifact.encoding

    headers = {
        CONTENT_TYPE_HEADER: guess_content_type(artifact.source_key or artifact.key, charset),
        CONTENT_LENGTH_HEADER: str(len(artifact.body)),
        ACL_HEADER: DEFAULT_ACL,
    }
    if encoding == ContentEncoding.GZIP:
        headers[CONTENT_ENCODING_HEADER] = "gzip"

    headers = merge_headers(headers, artifact.headers)
    return merge_headers(headers, override_headers)
