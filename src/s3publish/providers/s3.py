"""
AWS S3 remote store implementation.

Features:
- Header mapping from HTTP header names to put_object parameters
- Paginated, lazy listings via list_objects_v2
- Batched deletes (1000 keys per delete_objects request)
- botocore errors reported as TransportError against the key concerned
"""

import logging
from typing import Any, Dict, Iterator, Optional, Sequence

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from ..artifacts import RemoteObjectMeta
from ..errors import ConfigurationError, NotFoundError, TransportError
from ..fingerprint import normalize_etag
from ..storage import RemoteStore

logger = logging.getLogger(__name__)

# HTTP header name (lowercase) -> put_object parameter
HEADER_PARAMS = {
    "content-type": "ContentType",
    "content-length": "ContentLength",
    "content-encoding": "ContentEncoding",
    "content-disposition": "ContentDisposition",
    "content-language": "ContentLanguage",
    "content-md5": "ContentMD5",
    "cache-control": "CacheControl",
    "expires": "Expires",
    "x-amz-acl": "ACL",
    "x-amz-storage-class": "StorageClass",
    "x-amz-website-redirect-location": "WebsiteRedirectLocation",
    "x-amz-server-side-encryption": "ServerSideEncryption",
    "x-amz-tagging": "Tagging",
}

META_PREFIX = "x-amz-meta-"
NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


def headers_to_params(headers: Dict[str, str]) -> Dict[str, Any]:
    """
    Translate publish headers into put_object keyword arguments.

    Unknown headers are dropped with a warning.
    """
    params: Dict[str, Any] = {}
    metadata: Dict[str, str] = {}

    for name, value in headers.items():
        lowered = name.lower()
        if lowered.startswith(META_PREFIX):
            metadata[lowered[len(META_PREFIX):]] = value
        elif lowered == "content-length":
            params["ContentLength"] = int(value)
        elif lowered in HEADER_PARAMS:
            params[HEADER_PARAMS[lowered]] = value
        else:
            logger.warning(f"Header not supported by S3 put_object, dropped: {name}")

    if metadata:
        params["Metadata"] = metadata
    return params


class S3RemoteStore(RemoteStore):
    """AWS S3 implementation of RemoteStore."""

    # S3 limit for a single delete_objects request
    MAX_DELETE_BATCH = 1000

    def __init__(
        self,
        bucket: str,
        region: str = "us-east-1",
        aws_access_key_id: Optional[str] = None,
        aws_secret_access_key: Optional[str] = None,
        aws_session_token: Optional[str] = None,
        endpoint_url: Optional[str] = None,
    ):
        """
        Initialize S3 remote store.

        Args:
            bucket: S3 bucket name
            region: AWS region
            aws_access_key_id: AWS access key (uses env if not provided)
            aws_secret_access_key: AWS secret key (uses env if not provided)
            aws_session_token: Optional session token for temporary credentials
            endpoint_url: Custom endpoint for S3-compatible services

        Raises:
            ConfigurationError: If bucket name is empty
        """
        if not bucket:
            raise ConfigurationError("S3 bucket name is required")

        self.bucket = bucket
        self.region = region
        self.endpoint_url = endpoint_url
        self.aws_access_key_id = aws_access_key_id
        self.aws_secret_access_key = aws_secret_access_key
        self.aws_session_token = aws_session_token
        self._client = None

    @property
    def client(self):
        """boto3 S3 client, connecting lazily."""
        if self._client is None:
            self.connect()
        return self._client

    def connect(self) -> None:
        """Create the boto3 session and client."""
        if self._client is not None:
            return

        session_kwargs: Dict[str, Any] = {"region_name": self.region}
        if self.aws_access_key_id and self.aws_secret_access_key:
            session_kwargs["aws_access_key_id"] = self.aws_access_key_id
            session_kwargs["aws_secret_access_key"] = self.aws_secret_access_key
        if self.aws_session_token:
            session_kwargs["aws_session_token"] = self.aws_session_token

        session = boto3.Session(**session_kwargs)
        config = Config(
            signature_version="s3v4",
            max_pool_connections=32,
        )
        client_kwargs: Dict[str, Any] = {"config": config}
        if self.endpoint_url:
            client_kwargs["endpoint_url"] = self.endpoint_url

        self._client = session.client("s3", **client_kwargs)
        logger.info(f"Connected to S3 bucket: {self.bucket}")

    def disconnect(self) -> None:
        """Close connection to S3."""
        if self._client is not None:
            self._client.close()
            self._client = None
            logger.info("Disconnected from S3")

    def _transport_error(self, error: Exception, key: Optional[str], operation: str) -> TransportError:
        if isinstance(error, NoCredentialsError):
            message = "AWS credentials not found"
        else:
            message = f"S3 {operation} failed"
        return TransportError(message, key=key, operation=operation, original_error=error)

    def head(self, key: str) -> Optional[RemoteObjectMeta]:
        """Get metadata for an object, None if it does not exist."""
        try:
            response = self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in NOT_FOUND_CODES:
                return None
            raise self._transport_error(e, key, "head") from e
        except BotoCoreError as e:
            raise self._transport_error(e, key, "head") from e

        return RemoteObjectMeta(
            key=key,
            etag=normalize_etag(response.get("ETag")),
            size=response.get("ContentLength", 0),
            last_modified=response.get("LastModified"),
        )

    def put(self, key: str, body: bytes, headers: Dict[str, str]) -> RemoteObjectMeta:
        """Upload an object with the given headers."""
        params = headers_to_params(headers)
        logger.debug(f"Uploading s3://{self.bucket}/{key} ({len(body)} bytes)")

        try:
            response = self.client.put_object(Bucket=self.bucket, Key=key, Body=body, **params)
        except (ClientError, BotoCoreError) as e:
            raise self._transport_error(e, key, "put") from e

        etag = normalize_etag(response.get("ETag"))
        logger.debug(f"Uploaded s3://{self.bucket}/{key} (ETag: {etag})")
        return RemoteObjectMeta(key=key, etag=etag, size=len(body))

    def delete(self, key: str) -> None:
        """Delete an object, raising NotFoundError if it is absent."""
        if self.head(key) is None:
            raise NotFoundError(key, operation="delete")

        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise self._transport_error(e, key, "delete") from e
        logger.info(f"Deleted s3://{self.bucket}/{key}")

    def delete_multiple(self, keys: Sequence[str]) -> Dict[str, Optional[Exception]]:
        """
        Delete keys in batches, returning the outcome of each key.

        A failed delete_objects request is reported against every key of
        its batch; the remaining batches are still sent.
        """
        outcomes: Dict[str, Optional[Exception]] = {}
        keys = list(keys)

        for start in range(0, len(keys), self.MAX_DELETE_BATCH):
            batch = keys[start:start + self.MAX_DELETE_BATCH]
            try:
                response = self.client.delete_objects(
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
                )
            except (ClientError, BotoCoreError) as e:
                error = self._transport_error(e, None, "delete_multiple")
                logger.error(f"Batch delete of {len(batch)} keys failed: {error}")
                for k in batch:
                    outcomes[k] = error
                continue

            errors: Dict[str, Exception] = {}
            for error in response.get("Errors", []):
                errors[error["Key"]] = TransportError(
                    f"S3 delete failed: {error.get('Code')} {error.get('Message', '')}".rstrip(),
                    key=error["Key"],
                    operation="delete",
                )
            for k in batch:
                outcomes[k] = errors.get(k)

        return outcomes

    def list_objects(self, prefix: str = "") -> Iterator[RemoteObjectMeta]:
        """Lazily list objects, one page request at a time."""
        logger.info(f"Listing objects in s3://{self.bucket}/{prefix}")
        paginator = self.client.get_paginator("list_objects_v2")
        pages = paginator.paginate(Bucket=self.bucket, Prefix=prefix)

        try:
            for page in pages:
                for obj in page.get("Contents", []):
                    # Skip directory placeholders
                    if obj["Key"].endswith("/"):
                        continue
                    yield RemoteObjectMeta(
                        key=obj["Key"],
                        etag=normalize_etag(obj.get("ETag")),
                        size=obj.get("Size", 0),
                        last_modified=obj.get("LastModified"),
                    )
        except (ClientError, BotoCoreError) as e:
            raise self._transport_error(e, prefix or None, "list") from e
