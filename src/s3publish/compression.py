"""Gzip transform producing derived artifacts."""

import gzip
import logging
from dataclasses import replace
from typing import Iterable, Iterator

from .artifacts import Artifact, ContentEncoding
from .headers import CONTENT_ENCODING_HEADER, merge_headers

logger = logging.getLogger(__name__)

DEFAULT_EXTENSION = "gz"


def gzip_artifact(artifact: Artifact, ext: str = DEFAULT_EXTENSION) -> Artifact:
    """
    Compress an artifact into a new one keyed ``artifact.key + ext``.

    The original is left untouched. The derived artifact remembers the
    original key so its content type is still inferred from it.
    """
    if artifact.encoding == ContentEncoding.GZIP:
        raise ValueError(f"Artifact already gzip encoded: {artifact.key}")

    # mtime=0 keeps the output, and so the fingerprint, stable across runs
    body = gzip.compress(artifact.body, mtime=0)
    logger.debug(f"Compressed {artifact.key}: {len(artifact.body)} -> {len(body)} bytes")

    return replace(
        artifact,
        key=artifact.key + ext,
        body=body,
        headers=merge_headers(artifact.headers, {CONTENT_ENCODING_HEADER: "gzip"}),
        encoding=ContentEncoding.GZIP,
        source_key=artifact.source_key or artifact.key,
    )


def gzip_stream(artifacts: Iterable[Artifact], ext: str = DEFAULT_EXTENSION) -> Iterator[Artifact]:
    """Replace every artifact in a stream by its gzip derivative."""
    for artifact in artifacts:
        yield gzip_artifact(artifact, ext)
