"""Tests for the blob model."""

from __future__ import annotations

import dataclasses

import pytest

from stowage.blob import Directory, File, blob_path


class TestBlobPath:
    def test_joins_scheme_and_location(self) -> None:
        assert blob_path("fs", "/data/weow.txt") == "fs:///data/weow.txt"
        assert blob_path("s3", "docs/a.json") == "s3://docs/a.json"


class TestFile:
    """Tests for the File dataclass."""

    def test_size_tracks_data(self) -> None:
        """size is always the length of data."""
        file = File(name="weow.txt", path="fs:///data/weow.txt", data=b"weow fluff")

        assert file.size == 10
        assert file.metadata == {}
        assert file.is_symlink is False
        assert file.created_at is None

    def test_size_is_not_an_init_argument(self) -> None:
        with pytest.raises(TypeError):
            File(name="a", path="fs://a", size=3)  # type: ignore[call-arg]

    def test_scheme(self) -> None:
        assert File(name="a", path="s3://a").scheme == "s3"
        assert File(name="a", path="a").scheme == ""

    def test_is_frozen(self) -> None:
        file = File(name="a", path="fs://a")
        with pytest.raises(dataclasses.FrozenInstanceError):
            file.name = "b"  # type: ignore[misc]

    def test_str(self) -> None:
        file = File(
            name="weow.txt",
            path="fs:///data/weow.txt",
            data=b"weow fluff",
            content_type="text/plain",
        )
        assert str(file) == "file [fs:///data/weow.txt] (10 bytes) | text/plain"
        assert str(File(name="a", path="fs://a")) == "file [fs://a] (0 bytes)"


class TestDirectory:
    def test_defaults(self) -> None:
        directory = Directory(name="sub", path="fs:///data/sub")

        assert directory.created_at is None
        assert directory.scheme == "fs"

    def test_str(self) -> None:
        assert str(Directory(name="sub", path="fs:///data/sub")) == "directory fs:///data/sub"
