"""Tests for the storage error hierarchy."""

from __future__ import annotations

import pytest

from stowage.exceptions import (
    ConfigurationError,
    InvalidPathError,
    MetadataError,
    NotAFileError,
    StorageError,
    StorageIOError,
    StoragePermissionError,
    TransientStorageError,
    UnrecognizedBackendError,
)


@pytest.mark.parametrize(
    "error_class",
    [
        InvalidPathError,
        NotAFileError,
        StoragePermissionError,
        StorageIOError,
        TransientStorageError,
        MetadataError,
        ConfigurationError,
    ],
)
def test_all_errors_are_storage_errors(error_class: type[StorageError]) -> None:
    error = error_class("boom", backend="stowage:fs", path="/data/a")

    assert isinstance(error, StorageError)
    assert error.message == "boom"
    assert error.backend == "stowage:fs"
    assert error.path == "/data/a"


def test_transient_errors_are_io_errors() -> None:
    assert issubclass(TransientStorageError, StorageIOError)


def test_str_includes_backend_and_path() -> None:
    error = NotAFileError("path is a directory, not a file", backend="stowage:fs", path="/d")

    assert str(error) == "[stowage:fs] path is a directory, not a file (path: /d)"
    assert str(StorageError("plain")) == "plain"


def test_unrecognized_keeps_payload() -> None:
    error = UnrecognizedBackendError("SomethingOdd: details", backend="stowage:s3")

    assert error.payload == "SomethingOdd: details"
    assert error.message == "unrecognized backend error: SomethingOdd: details"
    assert error.backend == "stowage:s3"
