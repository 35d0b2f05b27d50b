"""MongoDB GridFS storage backend.

GridFS has no directories: every entry is a file addressed by its
``filename``. A file may have several revisions; reads return the latest
and deletes remove all of them.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import PurePosixPath
from typing import Any

from gridfs import AsyncGridFSBucket
from gridfs.errors import CorruptGridFile, NoFile
from pymongo import AsyncMongoClient
from pymongo.errors import ConnectionFailure, ExecutionTimeout, OperationFailure, PyMongoError
from pymongo.read_concern import ReadConcern
from pymongo.write_concern import WriteConcern

from stowage.blob import Blob, File, blob_path
from stowage.config import GridfsConfig
from stowage.content_type import ContentTypeResolver, ResolverLike, as_resolver
from stowage.exceptions import (
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

# Metadata key holding the content type, as written by the MongoDB drivers
CONTENT_TYPE_KEY = "contentType"

# Unauthorized, AuthenticationFailed
_PERMISSION_ERROR_CODES = frozenset({13, 18})


class GridfsStorageService(StorageService):
    """GridFS storage implementation using PyMongo's async API."""

    name = "stowage:gridfs"
    scheme = "gridfs"

    def __init__(self, config: GridfsConfig, resolver: ResolverLike | None = None) -> None:
        self.config = config
        self.resolver: ContentTypeResolver = as_resolver(resolver)
        self._client: AsyncMongoClient[dict[str, Any]] | None = None
        self._bucket: AsyncGridFSBucket | None = None

    async def _get_client(self) -> AsyncMongoClient[dict[str, Any]]:
        if self._client is None:
            self._client = AsyncMongoClient(self.config.uri)
        return self._client

    async def _get_database(self) -> Any:
        client = await self._get_client()
        read_concern = ReadConcern(self.config.read_concern) if self.config.read_concern else None
        write_concern = (
            WriteConcern(w=self.config.write_concern)
            if self.config.write_concern is not None
            else None
        )
        return client.get_database(
            self.config.database, read_concern=read_concern, write_concern=write_concern
        )

    async def _get_bucket(self) -> AsyncGridFSBucket:
        """Get or create the GridFS bucket."""
        if self._bucket is None:
            database = await self._get_database()
            self._bucket = AsyncGridFSBucket(
                database,
                bucket_name=self.config.bucket,
                chunk_size_bytes=self.config.chunk_size,
            )
        return self._bucket

    def _filename(self, path: StoragePath) -> str:
        return object_key(path, self.name)

    @contextmanager
    def _driver_errors(self, filename: str | None = None) -> Iterator[None]:
        """Translate PyMongo errors into the storage error hierarchy."""
        try:
            yield
        except StorageError:
            raise
        except (ConnectionFailure, ExecutionTimeout) as exc:
            raise TransientStorageError(str(exc), backend=self.name, path=filename) from exc
        except OperationFailure as exc:
            if exc.code in _PERMISSION_ERROR_CODES:
                raise StoragePermissionError(str(exc), backend=self.name, path=filename) from exc
            raise UnrecognizedBackendError(str(exc), backend=self.name, path=filename) from exc
        except CorruptGridFile as exc:
            raise StorageIOError(str(exc), backend=self.name, path=filename) from exc
        except PyMongoError as exc:
            raise UnrecognizedBackendError(str(exc), backend=self.name, path=filename) from exc

    def _created_millis(self, upload_date: datetime | None, filename: str) -> int | None:
        if upload_date is None:
            return None
        millis = int(upload_date.timestamp() * 1000)
        if millis < 0:
            logger.warning(f"File {filename} has an upload date before the unix epoch, ignoring it")
            return None
        return millis

    async def _to_file(self, grid_out: Any) -> File:
        filename: str = grid_out.filename
        data: bytes = await grid_out.read()
        stored = dict(grid_out.metadata or {})
        content_type = stored.pop(CONTENT_TYPE_KEY, None)
        if not isinstance(content_type, str):
            content_type = await asyncio.to_thread(self.resolver.resolve, data)

        return File(
            name=PurePosixPath(filename).name,
            path=blob_path(self.scheme, filename),
            data=data,
            content_type=content_type,
            created_at=self._created_millis(grid_out.upload_date, filename),
            metadata={key: value for key, value in stored.items() if isinstance(value, str)},
        )

    async def _exists(self, bucket: AsyncGridFSBucket, filename: str) -> bool:
        async for _ in bucket.find({"filename": filename}).limit(1):
            return True
        return False

    # -------------------------------------------------------------------------
    # StorageService
    # -------------------------------------------------------------------------

    @traced("open")
    async def open(self, path: StoragePath) -> bytes | None:
        filename = self._filename(path)
        with self._driver_errors(filename):
            bucket = await self._get_bucket()
            try:
                grid_out = await bucket.open_download_stream_by_name(filename)
            except NoFile:
                logger.debug(f"File {filename} doesn't exist")
                return None
            data: bytes = await grid_out.read()
            return data

    @traced("blob")
    async def blob(self, path: StoragePath) -> Blob | None:
        filename = self._filename(path)
        with self._driver_errors(filename):
            bucket = await self._get_bucket()
            try:
                grid_out = await bucket.open_download_stream_by_name(filename)
            except NoFile:
                logger.debug(f"File {filename} doesn't exist")
                return None
            return await self._to_file(grid_out)

    @traced("blobs")
    async def blobs(
        self,
        path: StoragePath | None = None,
        options: ListBlobsRequest | None = None,
    ) -> list[Blob]:
        """List files, optionally only those whose filename starts with ``path``."""
        options = options or ListBlobsRequest()
        prefix = self._filename(path) if path is not None else ""
        if options.prefix:
            prefix += options.prefix
        query: dict[str, Any] = {}
        if prefix:
            query["filename"] = {"$regex": f"^{re.escape(prefix)}"}

        blobs: list[Blob] = []
        with self._driver_errors(prefix or None):
            bucket = await self._get_bucket()
            async for grid_out in bucket.find(query):
                name = PurePosixPath(grid_out.filename).name
                if not options.allows_file(name, PurePosixPath(name).suffix or None):
                    continue
                blobs.append(await self._to_file(grid_out))

        return blobs

    @traced("delete")
    async def delete(self, path: StoragePath) -> None:
        """Delete every revision of the file."""
        filename = self._filename(path)
        with self._driver_errors(filename):
            bucket = await self._get_bucket()
            async for grid_out in bucket.find({"filename": filename}):
                try:
                    await bucket.delete(grid_out._id)
                except NoFile:
                    logger.debug(f"Revision {grid_out._id} of {filename} was already deleted")

    @traced("exists")
    async def exists(self, path: StoragePath) -> bool:
        filename = self._filename(path)
        with self._driver_errors(filename):
            bucket = await self._get_bucket()
            return await self._exists(bucket, filename)

    @traced("upload")
    async def upload(self, path: StoragePath, request: UploadRequest) -> None:
        filename = self._filename(path)
        content_type = request.content_type or await asyncio.to_thread(
            self.resolver.resolve, request.data
        )
        metadata: dict[str, Any] = {**request.metadata, CONTENT_TYPE_KEY: content_type}

        with self._driver_errors(filename):
            bucket = await self._get_bucket()
            if await self._exists(bucket, filename):
                logger.warning(f"File {filename} already exists, leaving it untouched")
                return

            logger.debug(f"Uploading file {filename} ({len(request.data)} bytes)")
            await bucket.upload_from_stream(
                filename,
                request.data,
                chunk_size_bytes=self.config.chunk_size,
                metadata=metadata,
            )

    @traced("healthcheck")
    async def healthcheck(self) -> None:
        with self._driver_errors():
            database = await self._get_database()
            await database.command("ping")

    async def close(self) -> None:
        """Close the underlying client."""
        if self._client is not None:
            await self._client.close()
            self._client = None
            self._bucket = None
