"""Error hierarchy shared by every storage backend.

Not-found is never raised for read-type operations; it is reported as
``None``, ``False`` or an empty list instead. Everything else surfaces as a
subclass of :class:`StorageError`:

- InvalidPathError: malformed or non-UTF-8 path, or a path that cannot be
  normalized for a write/delete/exists call
- NotAFileError: a directory was given where a file is required
- StoragePermissionError: the backend refused access
- StorageIOError: disk or transport failure unrelated to existence
- TransientStorageError: network, timeout or throttling failure
- MetadataError: a timestamp could not be represented
- UnrecognizedBackendError: an SDK error this library does not classify
- ConfigurationError: backend configuration is invalid or incomplete
"""

from __future__ import annotations


class StorageError(Exception):
    """Base exception for all storage operations."""

    def __init__(
        self,
        message: str,
        *,
        backend: str | None = None,
        path: str | None = None,
    ) -> None:
        self.message = message
        self.backend = backend
        self.path = path
        super().__init__(message)

    def __str__(self) -> str:
        parts = []
        if self.backend:
            parts.append(f"[{self.backend}]")
        parts.append(self.message)
        if self.path:
            parts.append(f"(path: {self.path})")
        return " ".join(parts)


class InvalidPathError(StorageError):
    """Path is malformed, not UTF-8, or cannot be normalized."""


class NotAFileError(StorageError):
    """A directory was given to an operation that only accepts files."""


class StoragePermissionError(StorageError):
    """The backend denied access to the resource."""


class StorageIOError(StorageError):
    """Disk or transport failure unrelated to existence."""


class TransientStorageError(StorageIOError):
    """Network, timeout or throttling failure; a later attempt may succeed."""


class MetadataError(StorageError):
    """A timestamp was negative or otherwise unrepresentable."""


class UnrecognizedBackendError(StorageError):
    """An SDK error that is not mapped onto a known error kind.

    The original error's description is kept in ``payload``.
    """

    def __init__(
        self,
        payload: str,
        *,
        backend: str | None = None,
        path: str | None = None,
    ) -> None:
        self.payload = payload
        super().__init__(f"unrecognized backend error: {payload}", backend=backend, path=path)


class ConfigurationError(StorageError):
    """Backend configuration is invalid or incomplete."""
