"""S3-compatible storage backend.

Supports:
- AWS S3
- MinIO
- Any S3-compatible object storage

Keys ending in ``/`` are treated as directories. Listing uses ``/`` as the
delimiter, so nested prefixes come back as :class:`Directory` entries.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime
from pathlib import PurePosixPath
from typing import Any

import aioboto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    HTTPClientError,
    NoCredentialsError,
)
from botocore.exceptions import ConnectionError as BotoConnectionError

from stowage.blob import Blob, Directory, File, blob_path
from stowage.config import S3Config
from stowage.content_type import ContentTypeResolver, ResolverLike, as_resolver
from stowage.exceptions import (
    MetadataError,
    NotAFileError,
    StorageError,
    StorageIOError,
    StoragePermissionError,
    TransientStorageError,
    UnrecognizedBackendError,
)
from stowage.observability.tracing import traced
from stowage.options import ListBlobsRequest, UploadRequest
from stowage.service import StoragePath, StorageService, object_key

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = frozenset({"NoSuchKey", "NotFound", "404"})
_PERMISSION_CODES = frozenset(
    {
        "AccessDenied",
        "AllAccessDisabled",
        "InvalidAccessKeyId",
        "SignatureDoesNotMatch",
        "AccountProblem",
        "403",
    }
)
_TRANSIENT_CODES = frozenset(
    {
        "SlowDown",
        "Throttling",
        "ThrottlingException",
        "RequestTimeout",
        "RequestTimeTooSkewed",
        "ServiceUnavailable",
        "InternalError",
    }
)
_PRECONDITION_CODES = frozenset({"PreconditionFailed", "412"})
_BUCKET_EXISTS_CODES = frozenset({"BucketAlreadyOwnedByYou"})


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


def _status_code(exc: ClientError) -> int:
    return int(exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0))


def _is_not_found(exc: ClientError) -> bool:
    return _error_code(exc) in _NOT_FOUND_CODES


def to_botocore_config(config: S3Config) -> Config:
    """Build the botocore client configuration for ``config``."""
    options: dict[str, Any] = {"user_agent_extra": config.app_name}
    if config.enforce_path_access_style:
        options["s3"] = {"addressing_style": "path"}
    if config.enable_signer_v4_requests:
        options["signature_version"] = "s3v4"
    return Config(**options)


def _millis(value: datetime | None, field_name: str, key: str) -> int | None:
    if value is None:
        return None
    millis = int(value.timestamp() * 1000)
    if millis < 0:
        raise MetadataError(
            f"{field_name} timestamp is before the unix epoch", backend="s3", path=key
        )
    return millis


class S3StorageService(StorageService):
    """S3-compatible storage implementation.

    Uses aioboto3 for async S3 operations. Credentials come from the config
    or, when unset, from the AWS SDK defaults.
    """

    name = "stowage:s3"
    scheme = "s3"

    def __init__(self, config: S3Config, resolver: ResolverLike | None = None) -> None:
        """Initialize S3 storage.

        Args:
            config: Bucket, credentials and client options
            resolver: Content-type resolver used when an upload has none
        """
        self.config = config
        self.resolver: ContentTypeResolver = as_resolver(resolver)
        self.prefix = config.prefix.strip("/") if config.prefix else ""
        self._client_config = to_botocore_config(config)
        self._session: aioboto3.Session | None = None

    def _get_session(self) -> aioboto3.Session:
        """Get or create aioboto3 session."""
        if self._session is None:
            self._session = aioboto3.Session(
                aws_access_key_id=self.config.access_key_id,
                aws_secret_access_key=self.config.secret_access_key,
                region_name=self.config.region,
            )
        return self._session

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[Any]:
        session = self._get_session()
        async with session.client(
            "s3",
            endpoint_url=self.config.endpoint,
            config=self._client_config,
        ) as s3:
            yield s3

    def _key(self, path: StoragePath) -> str:
        """Build the object key, prepending the configured prefix."""
        key = object_key(path, self.name)
        if self.prefix:
            return f"{self.prefix}/{key.lstrip('/')}"
        return key

    def _search_prefix(self, path: StoragePath | None, options: ListBlobsRequest) -> str:
        if path is None:
            search = f"{self.prefix}/" if self.prefix else ""
        else:
            search = self._key(path)
            if search and not search.endswith("/"):
                search += "/"
        if options.prefix:
            search += options.prefix.lstrip("/")
        return search

    @contextmanager
    def _sdk_errors(self, key: str | None = None) -> Iterator[None]:
        """Translate botocore errors into the storage error hierarchy."""
        try:
            yield
        except StorageError:
            raise
        except ClientError as exc:
            code = _error_code(exc)
            status = _status_code(exc)
            message = exc.response.get("Error", {}).get("Message") or str(exc)
            if code in _PERMISSION_CODES or status == 403:
                raise StoragePermissionError(message, backend=self.name, path=key) from exc
            if code in _TRANSIENT_CODES or status == 429 or status >= 500:
                raise TransientStorageError(message, backend=self.name, path=key) from exc
            raise StorageIOError(message, backend=self.name, path=key) from exc
        except NoCredentialsError as exc:
            raise StoragePermissionError(str(exc), backend=self.name, path=key) from exc
        except (BotoConnectionError, HTTPClientError) as exc:
            raise TransientStorageError(str(exc), backend=self.name, path=key) from exc
        except BotoCoreError as exc:
            raise UnrecognizedBackendError(str(exc), backend=self.name, path=key) from exc

    # -------------------------------------------------------------------------
    # Object helpers
    # -------------------------------------------------------------------------

    async def _get_object(self, s3: Any, key: str) -> dict[str, Any] | None:
        try:
            response: dict[str, Any] = await s3.get_object(Bucket=self.config.bucket, Key=key)
        except ClientError as exc:
            if _is_not_found(exc):
                logger.debug(f"Object {key} doesn't exist")
                return None
            raise
        return response

    async def _read_body(self, response: dict[str, Any]) -> bytes:
        async with response["Body"] as stream:
            data: bytes = await stream.read()
        return data

    async def _file_blob(self, s3: Any, key: str) -> File | None:
        response = await self._get_object(s3, key)
        if response is None:
            return None

        data = await self._read_body(response)
        content_type = response.get("ContentType") or await asyncio.to_thread(
            self.resolver.resolve, data
        )
        return File(
            name=PurePosixPath(key).name,
            path=blob_path(self.scheme, key),
            data=data,
            content_type=content_type,
            last_modified_at=_millis(response.get("LastModified"), "last_modified_at", key),
            metadata=dict(response.get("Metadata") or {}),
        )

    def _directory_blob(self, key: str) -> Directory:
        return Directory(name=PurePosixPath(key).name, path=blob_path(self.scheme, key))

    async def _has_objects(self, s3: Any, prefix: str) -> bool:
        response = await s3.list_objects_v2(Bucket=self.config.bucket, Prefix=prefix, MaxKeys=1)
        return bool(response.get("KeyCount", 0))

    async def _head(self, s3: Any, key: str) -> dict[str, Any] | None:
        try:
            response: dict[str, Any] = await s3.head_object(Bucket=self.config.bucket, Key=key)
        except ClientError as exc:
            if _is_not_found(exc):
                return None
            raise
        return response

    # -------------------------------------------------------------------------
    # StorageService
    # -------------------------------------------------------------------------

    @traced("init")
    async def init(self) -> None:
        """Create the bucket if it doesn't exist."""
        bucket = self.config.bucket
        with self._sdk_errors():
            async with self._client() as s3:
                response = await s3.list_buckets()
                if any(entry.get("Name") == bucket for entry in response.get("Buckets", [])):
                    logger.debug(f"Bucket {bucket} already exists")
                    return

                logger.info(f"Creating bucket {bucket} since it doesn't exist")
                params: dict[str, Any] = {"Bucket": bucket, "ACL": self.config.default_bucket_acl}
                if self.config.region != "us-east-1":
                    params["CreateBucketConfiguration"] = {
                        "LocationConstraint": self.config.region
                    }
                try:
                    await s3.create_bucket(**params)
                except ClientError as exc:
                    if _error_code(exc) not in _BUCKET_EXISTS_CODES:
                        raise
                    logger.debug(f"Bucket {bucket} was created concurrently")

    @traced("open")
    async def open(self, path: StoragePath) -> bytes | None:
        key = self._key(path)
        if key.endswith("/"):
            raise NotAFileError("path is a directory, not a file", backend=self.name, path=key)

        with self._sdk_errors(key):
            async with self._client() as s3:
                response = await self._get_object(s3, key)
                if response is None:
                    return None
                return await self._read_body(response)

    @traced("blob")
    async def blob(self, path: StoragePath) -> Blob | None:
        key = self._key(path)

        with self._sdk_errors(key):
            async with self._client() as s3:
                if key.endswith("/"):
                    if not await self._has_objects(s3, key):
                        return None
                    return self._directory_blob(key)
                return await self._file_blob(s3, key)

    @traced("blobs")
    async def blobs(
        self,
        path: StoragePath | None = None,
        options: ListBlobsRequest | None = None,
    ) -> list[Blob]:
        options = options or ListBlobsRequest()
        search = self._search_prefix(path, options)
        logger.debug(f"Searching for objects under {search!r}")

        blobs: list[Blob] = []
        with self._sdk_errors(search):
            async with self._client() as s3:
                paginator = s3.get_paginator("list_objects_v2")
                async for page in paginator.paginate(
                    Bucket=self.config.bucket, Prefix=search, Delimiter="/"
                ):
                    if options.include_dirs:
                        for common in page.get("CommonPrefixes", []):
                            directory = self._directory_blob(common["Prefix"])
                            if not options.is_dir_excluded(directory.name):
                                blobs.append(directory)

                    for entry in page.get("Contents", []):
                        key = entry["Key"]
                        # Directory marker of the listed prefix itself
                        if key.endswith("/"):
                            continue

                        name = PurePosixPath(key).name
                        if not options.allows_file(name, PurePosixPath(name).suffix or None):
                            continue

                        file = await self._file_blob(s3, key)
                        if file is not None:
                            blobs.append(file)

        return blobs

    @traced("delete")
    async def delete(self, path: StoragePath) -> None:
        key = self._key(path)
        with self._sdk_errors(key):
            async with self._client() as s3:
                logger.debug(f"Deleting object {key}")
                await s3.delete_object(Bucket=self.config.bucket, Key=key)

    @traced("exists")
    async def exists(self, path: StoragePath) -> bool:
        key = self._key(path)
        with self._sdk_errors(key):
            async with self._client() as s3:
                response = await self._head(s3, key)
        if response is None:
            return False
        return not response.get("DeleteMarker", False)

    @traced("upload")
    async def upload(self, path: StoragePath, request: UploadRequest) -> None:
        """Store ``request.data`` unless the object already exists."""
        key = self._key(path)
        content_type = request.content_type or await asyncio.to_thread(
            self.resolver.resolve, request.data
        )

        with self._sdk_errors(key):
            async with self._client() as s3:
                if await self._head(s3, key) is not None:
                    logger.warning(f"Object {key} already exists, leaving it untouched")
                    return

                logger.debug(f"Uploading object {key} ({len(request.data)} bytes)")
                try:
                    await s3.put_object(
                        Bucket=self.config.bucket,
                        Key=key,
                        Body=request.data,
                        ContentType=content_type,
                        ACL=self.config.default_object_acl,
                        Metadata=dict(request.metadata),
                        IfNoneMatch="*",
                    )
                except ClientError as exc:
                    if _error_code(exc) not in _PRECONDITION_CODES and _status_code(exc) != 412:
                        raise
                    logger.warning(f"Object {key} was created concurrently, leaving it untouched")

    @traced("healthcheck")
    async def healthcheck(self) -> None:
        with self._sdk_errors():
            async with self._client() as s3:
                await s3.head_bucket(Bucket=self.config.bucket)

    async def close(self) -> None:
        """Drop the session; clients are scoped to each call."""
        self._session = None
