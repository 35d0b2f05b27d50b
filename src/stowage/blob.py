"""Blob model returned by every storage backend.

A blob is either a :class:`File` or a :class:`Directory`. Both are frozen;
backends build a fresh value per call and the caller owns it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TypeAlias

SCHEME_SEPARATOR = "://"


def blob_path(scheme: str, location: str) -> str:
    """Build the ``{scheme}://{location}`` identifier of a blob."""
    return f"{scheme}{SCHEME_SEPARATOR}{location}"


def _scheme_of(path: str) -> str:
    scheme, sep, _ = path.partition(SCHEME_SEPARATOR)
    return scheme if sep else ""


@dataclass(frozen=True)
class File:
    """A stored file together with its full contents.

    Timestamps are epoch milliseconds and are ``None`` when the backend
    cannot supply them. ``size`` is always ``len(data)``.
    """

    name: str
    path: str
    data: bytes = b""
    content_type: str | None = None
    created_at: int | None = None
    last_modified_at: int | None = None
    is_symlink: bool = False
    metadata: dict[str, str] = field(default_factory=dict)
    size: int = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "size", len(self.data))

    @property
    def scheme(self) -> str:
        """Backend scheme this file was read from (``fs``, ``s3``, ...)."""
        return _scheme_of(self.path)

    def __str__(self) -> str:
        text = f"file [{self.path}] ({self.size} bytes)"
        if self.content_type:
            text += f" | {self.content_type}"
        return text


@dataclass(frozen=True)
class Directory:
    """A directory (or directory-like key prefix)."""

    name: str
    path: str
    created_at: int | None = None

    @property
    def scheme(self) -> str:
        return _scheme_of(self.path)

    def __str__(self) -> str:
        return f"directory {self.path}"


Blob: TypeAlias = File | Directory
