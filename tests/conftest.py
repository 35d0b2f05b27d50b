"""Global pytest configuration and fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from stowage.backends.filesystem import FilesystemStorageService


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: test starts containers through Docker")


@pytest.fixture
def root(tmp_path: Path) -> Path:
    """Canonical storage root (symlinks in the temp dir resolved)."""
    return tmp_path.resolve()


@pytest.fixture
def fs(root: Path) -> FilesystemStorageService:
    """Filesystem storage rooted at a fresh temporary directory."""
    return FilesystemStorageService(root)
