"""Storage service contract.

Defines the abstract interface every storage backend implements. Callers
program against :class:`StorageService` and pick a backend at construction
time (see :mod:`stowage.factory`).
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from types import TracebackType
from typing import TypeAlias

from stowage.blob import Blob
from stowage.exceptions import InvalidPathError
from stowage.options import ListBlobsRequest, UploadRequest

StoragePath: TypeAlias = str | bytes | os.PathLike[str]


def path_to_str(path: StoragePath, backend: str | None = None) -> str:
    """Convert a caller-supplied path to ``str``, rejecting non-UTF-8 input.

    Raises:
        InvalidPathError: If the path is not valid UTF-8
    """
    if isinstance(path, bytes):
        try:
            return path.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidPathError(
                "path is not valid utf-8", backend=backend, path=repr(path)
            ) from exc

    text = os.fspath(path)
    try:
        # Undecodable bytes from the OS survive as lone surrogates
        text.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise InvalidPathError(
            "path is not valid utf-8", backend=backend, path=repr(text)
        ) from exc
    return text


def object_key(path: StoragePath, backend: str | None = None) -> str:
    """Convert a path to an object-store key.

    Leading ``./`` and ``~/`` segments are dropped; object stores have no
    working or home directory.
    """
    key = path_to_str(path, backend)
    while key.startswith(("./", "~/")):
        key = key[2:]
    return key


class StorageService(ABC):
    """Abstract base class for storage backends.

    Every operation is a coroutine. Absence is never an error for reads:
    ``open``/``blob`` return ``None``, ``exists`` returns ``False`` and
    ``blobs`` returns an empty list. ``delete`` is idempotent and ``upload``
    never overwrites an existing object.
    """

    # Human-readable service name, e.g. "stowage:fs"
    name: str = "stowage"

    # Scheme used in every returned blob path ({scheme}://{location})
    scheme: str = ""

    async def init(self) -> None:
        """Prepare the backend (create directory, bucket, container).

        Must be safe to call repeatedly.
        """

    @abstractmethod
    async def open(self, path: StoragePath) -> bytes | None:
        """Read a file's full contents.

        Args:
            path: Location of the file

        Returns:
            File contents, or None if the path does not exist
        """
        ...

    @abstractmethod
    async def blob(self, path: StoragePath) -> Blob | None:
        """Read a file or directory together with its metadata.

        Args:
            path: Location of the entry

        Returns:
            File or Directory, or None if the path does not exist
        """
        ...

    @abstractmethod
    async def blobs(
        self,
        path: StoragePath | None = None,
        options: ListBlobsRequest | None = None,
    ) -> list[Blob]:
        """List entries under ``path`` (or the backend root).

        Args:
            path: Directory or key prefix to list; None lists the root
            options: Filters to apply; None applies no filter

        Returns:
            Matching blobs in backend enumeration order
        """
        ...

    @abstractmethod
    async def delete(self, path: StoragePath) -> None:
        """Delete an entry. Succeeds when the entry is already absent."""
        ...

    @abstractmethod
    async def exists(self, path: StoragePath) -> bool:
        """Check whether an entry exists."""
        ...

    @abstractmethod
    async def upload(self, path: StoragePath, request: UploadRequest) -> None:
        """Write ``request.data`` to ``path``.

        If the target already exists it is left untouched and the call
        still succeeds.
        """
        ...

    async def healthcheck(self) -> None:
        """Lightweight liveness probe. Raises on an unhealthy backend."""

    async def close(self) -> None:
        """Release SDK clients held by the backend."""

    async def __aenter__(self) -> StorageService:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
