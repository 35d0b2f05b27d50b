"""Unit tests for the Azure Blob Storage backend."""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any

import pytest
from azure.core.credentials import AzureNamedKeyCredential, AzureSasCredential
from azure.core.exceptions import (
    AzureError,
    ClientAuthenticationError,
    HttpResponseError,
    ResourceExistsError,
    ResourceNotFoundError,
    ServiceRequestError,
)

from stowage.backends.azure import AzureStorageService, StaticTokenCredential
from stowage.blob import Directory, File
from stowage.config import AzureConfig
from stowage.exceptions import (
    NotAFileError,
    StorageIOError,
    StoragePermissionError,
    TransientStorageError,
    UnrecognizedBackendError,
)
from stowage.options import ListBlobsRequest, UploadRequest

CREATED = datetime(2024, 1, 1, tzinfo=timezone.utc)
MODIFIED = datetime(2024, 1, 2, tzinfo=timezone.utc)


def _http_error(status: int) -> HttpResponseError:
    error = HttpResponseError(message=f"status {status}")
    error.status_code = status
    return error


class FakeAzureDownload:
    def __init__(self, stored: dict[str, Any]) -> None:
        self._data = stored["data"]
        self.properties = SimpleNamespace(
            content_settings=SimpleNamespace(content_type=stored.get("content_type")),
            creation_time=CREATED,
            last_modified=MODIFIED,
            metadata=stored.get("metadata") or {},
        )

    async def readall(self) -> bytes:
        return self._data


class FakeAzureBlobClient:
    def __init__(self, container: FakeAzureContainerClient, name: str) -> None:
        self._container = container
        self._name = name

    async def download_blob(self) -> FakeAzureDownload:
        self._container.check()
        if self._name not in self._container.blobs:
            raise ResourceNotFoundError("The specified blob does not exist.")
        return FakeAzureDownload(self._container.blobs[self._name])

    async def upload_blob(self, data: bytes, **kwargs: Any) -> None:
        self._container.check()
        self._container.uploads.append((self._name, kwargs))
        if self._name in self._container.blobs and not kwargs.get("overwrite"):
            raise ResourceExistsError("The specified blob already exists.")
        self._container.blobs[self._name] = {
            "data": data,
            "content_type": kwargs["content_settings"].content_type,
            "metadata": kwargs.get("metadata"),
        }

    async def delete_blob(self) -> None:
        self._container.check()
        if self._name not in self._container.blobs:
            raise ResourceNotFoundError("The specified blob does not exist.")
        del self._container.blobs[self._name]

    async def exists(self) -> bool:
        self._container.check()
        return self._name in self._container.blobs


class FakeAzureContainerClient:
    """In-memory stand-in for an aio ContainerClient."""

    def __init__(self) -> None:
        self.blobs: dict[str, dict[str, Any]] = {}
        self.uploads: list[tuple[str, dict[str, Any]]] = []
        self.created = 0
        self.fail_with: BaseException | None = None

    def check(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    async def create_container(self) -> None:
        self.check()
        if self.created:
            raise ResourceExistsError("The specified container already exists.")
        self.created += 1

    async def get_container_properties(self) -> dict[str, Any]:
        self.check()
        return {"name": "weow"}

    def get_blob_client(self, blob: str) -> FakeAzureBlobClient:
        return FakeAzureBlobClient(self, blob)

    async def list_blobs(self, name_starts_with: str | None = None) -> AsyncIterator[Any]:
        for name in sorted(self.blobs):
            if name.startswith(name_starts_with or ""):
                yield SimpleNamespace(name=name)

    async def walk_blobs(
        self, name_starts_with: str | None = None, delimiter: str = "/"
    ) -> AsyncIterator[Any]:
        prefix = name_starts_with or ""
        seen: set[str] = set()
        for name in sorted(self.blobs):
            if not name.startswith(prefix):
                continue
            rest = name[len(prefix) :]
            if delimiter in rest:
                name = prefix + rest.split(delimiter, 1)[0] + delimiter
                if name in seen:
                    continue
                seen.add(name)
            yield SimpleNamespace(name=name)


class FakeAzureServiceClient:
    def __init__(self) -> None:
        self.container = FakeAzureContainerClient()
        self.requested: list[str] = []

    def get_container_client(self, container: str) -> FakeAzureContainerClient:
        self.requested.append(container)
        return self.container


def _storage(
    monkeypatch: pytest.MonkeyPatch, client: FakeAzureServiceClient
) -> AzureStorageService:
    storage = AzureStorageService(
        AzureConfig(container="weow", connection_string="UseDevelopmentStorage=true")
    )

    async def get_client() -> Any:
        return client

    monkeypatch.setattr(storage, "_get_client", get_client)
    return storage


def _put(client: FakeAzureServiceClient, name: str, data: bytes, **extra: Any) -> None:
    client.container.blobs[name] = {"data": data, **extra}


@pytest.mark.asyncio
async def test_weow_scenario(monkeypatch: pytest.MonkeyPatch) -> None:
    """Upload, read and delete using mocked Azure storage."""
    client = FakeAzureServiceClient()
    storage = _storage(monkeypatch, client)

    request = UploadRequest().with_data(b"weow fluff").with_content_type("text/plain")
    await storage.upload("weow.txt", request)

    assert await storage.exists("weow.txt")
    assert await storage.open("weow.txt") == b"weow fluff"
    assert client.requested[0] == "weow"

    name, kwargs = client.container.uploads[0]
    assert name == "weow.txt"
    assert kwargs["overwrite"] is False
    assert kwargs["content_settings"].content_type == "text/plain"

    await storage.delete("weow.txt")
    assert not await storage.exists("weow.txt")


@pytest.mark.asyncio
async def test_upload_never_overwrites(monkeypatch: pytest.MonkeyPatch) -> None:
    client = FakeAzureServiceClient()
    storage = _storage(monkeypatch, client)
    _put(client, "a.txt", b"first")

    await storage.upload("./a.txt", UploadRequest(data=b"second"))

    assert await storage.open("a.txt") == b"first"


@pytest.mark.asyncio
async def test_missing_blobs(monkeypatch: pytest.MonkeyPatch) -> None:
    storage = _storage(monkeypatch, FakeAzureServiceClient())

    assert await storage.open("nope") is None
    assert await storage.blob("nope") is None
    assert not await storage.exists("nope")
    await storage.delete("nope")


@pytest.mark.asyncio
async def test_open_directory_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    storage = _storage(monkeypatch, FakeAzureServiceClient())

    with pytest.raises(NotAFileError):
        await storage.open("docs/")


@pytest.mark.asyncio
async def test_blob_metadata(monkeypatch: pytest.MonkeyPatch) -> None:
    client = FakeAzureServiceClient()
    storage = _storage(monkeypatch, client)
    _put(client, "docs/a.json", b"[1]", metadata={"owner": "noel"})

    blob = await storage.blob("docs/a.json")

    assert isinstance(blob, File)
    assert blob.name == "a.json"
    assert blob.path == "azure://docs/a.json"
    # No stored content type, so the resolver decides
    assert blob.content_type == "application/json; charset=utf-8"
    assert blob.created_at == int(CREATED.timestamp() * 1000)
    assert blob.last_modified_at == int(MODIFIED.timestamp() * 1000)
    assert blob.metadata == {"owner": "noel"}


@pytest.mark.asyncio
async def test_blob_directory(monkeypatch: pytest.MonkeyPatch) -> None:
    client = FakeAzureServiceClient()
    storage = _storage(monkeypatch, client)
    _put(client, "docs/a.json", b"[1]")

    assert await storage.blob("docs/") == Directory(name="docs", path="azure://docs/")
    assert await storage.blob("empty/") is None


@pytest.mark.asyncio
async def test_blobs_filters(monkeypatch: pytest.MonkeyPatch) -> None:
    client = FakeAzureServiceClient()
    storage = _storage(monkeypatch, client)
    for name in ("a.json", "b.txt", "sub/c.json", "cache/d.json"):
        _put(client, name, b"{}")

    files = await storage.blobs()
    assert sorted(blob.name for blob in files) == ["a.json", "b.txt"]

    options = ListBlobsRequest().with_include_dirs().with_extensions(".json").exclude("dir:cache")
    with_dirs = await storage.blobs(options=options)
    assert sorted(blob.name for blob in with_dirs) == ["a.json", "sub"]

    nested = await storage.blobs("sub")
    assert [blob.path for blob in nested] == ["azure://sub/c.json"]


@pytest.mark.asyncio
async def test_init_is_idempotent(monkeypatch: pytest.MonkeyPatch) -> None:
    client = FakeAzureServiceClient()
    storage = _storage(monkeypatch, client)

    await storage.init()
    await storage.init()

    assert client.container.created == 1


@pytest.mark.asyncio
async def test_healthcheck(monkeypatch: pytest.MonkeyPatch) -> None:
    storage = _storage(monkeypatch, FakeAzureServiceClient())

    await storage.healthcheck()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (ClientAuthenticationError("denied"), StoragePermissionError),
        (_http_error(403), StoragePermissionError),
        (_http_error(503), TransientStorageError),
        (_http_error(400), StorageIOError),
        (ServiceRequestError("connection refused"), TransientStorageError),
        (AzureError("something odd"), UnrecognizedBackendError),
    ],
)
async def test_error_translation(
    monkeypatch: pytest.MonkeyPatch, error: BaseException, expected: type[Exception]
) -> None:
    client = FakeAzureServiceClient()
    client.container.fail_with = error
    storage = _storage(monkeypatch, client)

    with pytest.raises(expected) as exc_info:
        await storage.open("a.txt")

    assert exc_info.value.__cause__ is error


class TestCredentials:
    """Tests for credential selection."""

    def test_access_key(self) -> None:
        storage = AzureStorageService(
            AzureConfig(container="c", location="emulator", access_key="secret")
        )
        credential = storage._credential()

        assert isinstance(credential, AzureNamedKeyCredential)
        assert credential.named_key.name == "devstoreaccount1"
        assert credential.named_key.key == "secret"

    def test_sas_token(self) -> None:
        storage = AzureStorageService(AzureConfig(container="c", account="a", sas_token="sv=1"))
        credential = storage._credential()

        assert isinstance(credential, AzureSasCredential)
        assert credential.signature == "sv=1"

    @pytest.mark.asyncio
    async def test_bearer_token(self) -> None:
        storage = AzureStorageService(AzureConfig(container="c", account="a", bearer_token="t0k"))
        credential = storage._credential()

        assert isinstance(credential, StaticTokenCredential)
        token = await credential.get_token("https://storage.azure.com/.default")
        assert token.token == "t0k"

    def test_anonymous(self) -> None:
        storage = AzureStorageService(AzureConfig(container="c", account="a"))

        assert storage._credential() is None

    def test_access_key_wins(self) -> None:
        storage = AzureStorageService(
            AzureConfig(container="c", account="a", access_key="k", sas_token="s")
        )

        assert isinstance(storage._credential(), AzureNamedKeyCredential)
