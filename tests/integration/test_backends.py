"""Integration tests for object-store backends against real services."""

from __future__ import annotations

from uuid import uuid4

import pytest

from stowage.backends.azure import AzureStorageService
from stowage.backends.gridfs import GridfsStorageService
from stowage.backends.s3 import S3StorageService
from stowage.blob import File
from stowage.config import AzureConfig, GridfsConfig, S3Config
from stowage.options import ListBlobsRequest, UploadRequest
from stowage.service import StorageService
from tests.integration.docker_utils import (
    AZURITE_ACCOUNT_KEY,
    MINIO_ACCESS_KEY,
    MINIO_SECRET_KEY,
    DockerService,
    wait_until_ready,
)

pytestmark = pytest.mark.integration


async def _exercise(storage: StorageService) -> None:
    """Run the shared upload/read/list/delete scenario."""
    await storage.init()

    request = UploadRequest().with_data(b"weow fluff").with_content_type("text/plain")
    await storage.upload("weow.txt", request)
    assert await storage.exists("weow.txt")
    assert await storage.open("weow.txt") == b"weow fluff"

    await storage.upload("weow.txt", UploadRequest(data=b"overwritten"))
    assert await storage.open("weow.txt") == b"weow fluff"

    blob = await storage.blob("weow.txt")
    assert isinstance(blob, File)
    assert blob.size == 10
    assert blob.content_type == "text/plain"
    assert blob.path == f"{storage.scheme}://weow.txt"

    await storage.upload("docs/a.json", UploadRequest(data=b'{"a": 1}'))
    listed = await storage.blobs(options=ListBlobsRequest().with_extensions(".txt"))
    assert [entry.name for entry in listed] == ["weow.txt"]

    await storage.delete("weow.txt")
    await storage.delete("weow.txt")
    assert not await storage.exists("weow.txt")
    assert await storage.open("weow.txt") is None

    await storage.healthcheck()


@pytest.mark.asyncio
async def test_s3_backend(minio_container: DockerService) -> None:
    """Exercise the S3 backend against MinIO."""
    storage = S3StorageService(
        S3Config(
            bucket=f"stowage-test-{uuid4().hex[:12]}",
            endpoint=minio_container.endpoint(9000),
            access_key_id=MINIO_ACCESS_KEY,
            secret_access_key=MINIO_SECRET_KEY,
            enforce_path_access_style=True,
        )
    )
    async with storage:
        await wait_until_ready(storage.init)
        await _exercise(storage)


@pytest.mark.asyncio
async def test_azure_backend(azurite_container: DockerService) -> None:
    """Exercise the Azure backend against Azurite."""
    storage = AzureStorageService(
        AzureConfig(
            container=f"stowage-test-{uuid4().hex[:12]}",
            location="emulator",
            address=azurite_container.host,
            port=azurite_container.port(10000),
            access_key=AZURITE_ACCOUNT_KEY,
        )
    )
    async with storage:
        await wait_until_ready(storage.init)
        await _exercise(storage)


@pytest.mark.asyncio
async def test_gridfs_backend(mongo_container: DockerService) -> None:
    """Exercise the GridFS backend against MongoDB."""
    storage = GridfsStorageService(
        GridfsConfig(
            uri=f"mongodb://{mongo_container.host}:{mongo_container.port(27017)}",
            database=f"stowage_test_{uuid4().hex[:12]}",
        )
    )
    async with storage:
        await wait_until_ready(storage.healthcheck)
        await _exercise(storage)
