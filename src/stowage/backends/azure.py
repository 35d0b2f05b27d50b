"""Azure Blob Storage backend.

Blob names ending in ``/`` are treated as directories; listing walks the
container with ``/`` as the delimiter.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import PurePosixPath
from typing import Any

from azure.core.credentials import AccessToken, AzureNamedKeyCredential, AzureSasCredential
from azure.core.exceptions import (
    AzureError,
    ClientAuthenticationError,
    HttpResponseError,
    ResourceExistsError,
    ResourceNotFoundError,
    ServiceRequestError,
    ServiceResponseError,
)
from azure.storage.blob import ContentSettings
from azure.storage.blob.aio import BlobServiceClient, ContainerClient

from stowage.blob import Blob, Directory, File, blob_path
from stowage.config import AZURITE_ACCOUNT, AzureConfig
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

# Static tokens carry no expiry; report one far enough away that the SDK never refreshes
_STATIC_TOKEN_LIFETIME = 365 * 24 * 60 * 60


class StaticTokenCredential:
    """Async token credential that always returns one pre-issued bearer token."""

    def __init__(self, token: str) -> None:
        self._token = token

    async def get_token(self, *scopes: str, **kwargs: Any) -> AccessToken:
        return AccessToken(self._token, int(time.time()) + _STATIC_TOKEN_LIFETIME)

    async def close(self) -> None:
        pass

    async def __aenter__(self) -> StaticTokenCredential:
        return self

    async def __aexit__(self, *args: Any) -> None:
        pass


def _millis(value: datetime | None, field_name: str, name: str) -> int | None:
    if value is None:
        return None
    millis = int(value.timestamp() * 1000)
    if millis < 0:
        raise MetadataError(
            f"{field_name} timestamp is before the unix epoch", backend="azure", path=name
        )
    return millis


class AzureStorageService(StorageService):
    """Azure Blob Storage implementation using azure-storage-blob aio client."""

    name = "stowage:azure"
    scheme = "azure"

    def __init__(self, config: AzureConfig, resolver: ResolverLike | None = None) -> None:
        self.config = config
        self.resolver: ContentTypeResolver = as_resolver(resolver)
        self._client: BlobServiceClient | None = None

    def _credential(self) -> Any:
        """Pick a credential: access key, SAS token, bearer token, then anonymous."""
        config = self.config
        if config.access_key:
            return AzureNamedKeyCredential(config.account or AZURITE_ACCOUNT, config.access_key)
        if config.sas_token:
            return AzureSasCredential(config.sas_token)
        if config.bearer_token:
            return StaticTokenCredential(config.bearer_token)
        return None

    async def _get_client(self) -> BlobServiceClient:
        """Get or create BlobServiceClient."""
        if self._client is None:
            if self.config.connection_string:
                self._client = BlobServiceClient.from_connection_string(
                    self.config.connection_string
                )
            else:
                self._client = BlobServiceClient(
                    account_url=self.config.account_url(), credential=self._credential()
                )
        return self._client

    async def _container(self) -> ContainerClient:
        client = await self._get_client()
        return client.get_container_client(self.config.container)

    def _name(self, path: StoragePath) -> str:
        return object_key(path, self.name)

    @contextmanager
    def _sdk_errors(self, name: str | None = None) -> Iterator[None]:
        """Translate Azure SDK errors into the storage error hierarchy."""
        try:
            yield
        except StorageError:
            raise
        except ClientAuthenticationError as exc:
            raise StoragePermissionError(exc.message, backend=self.name, path=name) from exc
        except HttpResponseError as exc:
            status = exc.status_code or 0
            if status == 403:
                raise StoragePermissionError(exc.message, backend=self.name, path=name) from exc
            if status == 429 or status >= 500:
                raise TransientStorageError(exc.message, backend=self.name, path=name) from exc
            raise StorageIOError(exc.message, backend=self.name, path=name) from exc
        except (ServiceRequestError, ServiceResponseError) as exc:
            raise TransientStorageError(exc.message, backend=self.name, path=name) from exc
        except AzureError as exc:
            raise UnrecognizedBackendError(str(exc), backend=self.name, path=name) from exc

    # -------------------------------------------------------------------------
    # Blob helpers
    # -------------------------------------------------------------------------

    async def _download(self, container: ContainerClient, name: str) -> Any | None:
        try:
            return await container.get_blob_client(name).download_blob()
        except ResourceNotFoundError:
            logger.debug(f"Blob {name} doesn't exist")
            return None

    async def _file_blob(self, container: ContainerClient, name: str) -> File | None:
        downloader = await self._download(container, name)
        if downloader is None:
            return None

        data: bytes = await downloader.readall()
        properties = downloader.properties
        content_settings = getattr(properties, "content_settings", None)
        content_type = getattr(content_settings, "content_type", None)
        if not content_type:
            content_type = await asyncio.to_thread(self.resolver.resolve, data)

        return File(
            name=PurePosixPath(name).name,
            path=blob_path(self.scheme, name),
            data=data,
            content_type=content_type,
            created_at=_millis(getattr(properties, "creation_time", None), "created_at", name),
            last_modified_at=_millis(
                getattr(properties, "last_modified", None), "last_modified_at", name
            ),
            metadata=dict(getattr(properties, "metadata", None) or {}),
        )

    def _directory_blob(self, name: str) -> Directory:
        return Directory(name=PurePosixPath(name).name, path=blob_path(self.scheme, name))

    async def _has_blobs(self, container: ContainerClient, prefix: str) -> bool:
        async for _ in container.list_blobs(name_starts_with=prefix):
            return True
        return False

    # -------------------------------------------------------------------------
    # StorageService
    # -------------------------------------------------------------------------

    @traced("init")
    async def init(self) -> None:
        """Create the container if it doesn't exist."""
        with self._sdk_errors():
            container = await self._container()
            try:
                await container.create_container()
                logger.info(f"Created container {self.config.container}")
            except ResourceExistsError:
                logger.debug(f"Container {self.config.container} already exists")

    @traced("open")
    async def open(self, path: StoragePath) -> bytes | None:
        name = self._name(path)
        if name.endswith("/"):
            raise NotAFileError("path is a directory, not a file", backend=self.name, path=name)

        with self._sdk_errors(name):
            container = await self._container()
            downloader = await self._download(container, name)
            if downloader is None:
                return None
            data: bytes = await downloader.readall()
            return data

    @traced("blob")
    async def blob(self, path: StoragePath) -> Blob | None:
        name = self._name(path)

        with self._sdk_errors(name):
            container = await self._container()
            if name.endswith("/"):
                if not await self._has_blobs(container, name):
                    return None
                return self._directory_blob(name)
            return await self._file_blob(container, name)

    @traced("blobs")
    async def blobs(
        self,
        path: StoragePath | None = None,
        options: ListBlobsRequest | None = None,
    ) -> list[Blob]:
        options = options or ListBlobsRequest()
        search = ""
        if path is not None:
            search = self._name(path)
            if search and not search.endswith("/"):
                search += "/"
        if options.prefix:
            search += options.prefix.lstrip("/")

        blobs: list[Blob] = []
        with self._sdk_errors(search):
            container = await self._container()
            async for item in container.walk_blobs(name_starts_with=search or None, delimiter="/"):
                name: str = item.name
                if name.endswith("/"):
                    if options.include_dirs:
                        directory = self._directory_blob(name)
                        if not options.is_dir_excluded(directory.name):
                            blobs.append(directory)
                    continue

                entry_name = PurePosixPath(name).name
                if not options.allows_file(entry_name, PurePosixPath(entry_name).suffix or None):
                    continue

                file = await self._file_blob(container, name)
                if file is not None:
                    blobs.append(file)

        return blobs

    @traced("delete")
    async def delete(self, path: StoragePath) -> None:
        name = self._name(path)
        with self._sdk_errors(name):
            container = await self._container()
            try:
                await container.get_blob_client(name).delete_blob()
            except ResourceNotFoundError:
                logger.debug(f"Blob {name} was already deleted")

    @traced("exists")
    async def exists(self, path: StoragePath) -> bool:
        name = self._name(path)
        with self._sdk_errors(name):
            container = await self._container()
            return bool(await container.get_blob_client(name).exists())

    @traced("upload")
    async def upload(self, path: StoragePath, request: UploadRequest) -> None:
        """Store ``request.data`` unless the blob already exists."""
        name = self._name(path)
        content_type = request.content_type or await asyncio.to_thread(
            self.resolver.resolve, request.data
        )

        with self._sdk_errors(name):
            container = await self._container()
            logger.debug(f"Uploading blob {name} ({len(request.data)} bytes)")
            try:
                await container.get_blob_client(name).upload_blob(
                    request.data,
                    overwrite=False,
                    content_settings=ContentSettings(content_type=content_type),
                    metadata=dict(request.metadata) or None,
                )
            except ResourceExistsError:
                logger.warning(f"Blob {name} already exists, leaving it untouched")

    @traced("healthcheck")
    async def healthcheck(self) -> None:
        with self._sdk_errors():
            container = await self._container()
            await container.get_container_properties()

    async def close(self) -> None:
        """Close the underlying client."""
        if self._client is not None:
            await self._client.close()
            self._client = None
