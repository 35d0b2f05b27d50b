"""Request objects passed to storage backends."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace

# Names in ``ListBlobsRequest.excluded`` with this prefix exclude directories.
DIRECTORY_EXCLUDE_PREFIX = "dir:"


@dataclass(frozen=True)
class ListBlobsRequest:
    """Filter criteria for :meth:`StorageService.blobs`.

    Attributes:
        include_dirs: Return directory blobs as well as files
        extensions: Allowed file suffixes including the dot; empty allows all
        excluded: Exact entry names to drop (``dir:<name>`` for directories)
        prefix: Appended to the search root before listing
    """

    include_dirs: bool = False
    extensions: frozenset[str] = field(default_factory=frozenset)
    excluded: frozenset[str] = field(default_factory=frozenset)
    prefix: str | None = None

    def __post_init__(self) -> None:
        # Accept any iterable of strings for the set fields
        object.__setattr__(self, "extensions", frozenset(self.extensions))
        object.__setattr__(self, "excluded", frozenset(self.excluded))

    def exclude(self, *names: str) -> ListBlobsRequest:
        """Return a copy that also excludes ``names``."""
        return replace(self, excluded=self.excluded | frozenset(names))

    def with_prefix(self, prefix: str | None) -> ListBlobsRequest:
        """Return a copy with ``prefix`` set."""
        return replace(self, prefix=prefix)

    def with_extensions(self, *extensions: str) -> ListBlobsRequest:
        """Return a copy that also allows ``extensions``.

        Entries without a leading dot are ignored.
        """
        allowed = frozenset(ext for ext in extensions if ext.startswith("."))
        return replace(self, extensions=self.extensions | allowed)

    def with_include_dirs(self, yes: bool = True) -> ListBlobsRequest:
        """Return a copy with directory listing switched on or off."""
        return replace(self, include_dirs=yes)

    def is_excluded(self, name: str) -> bool:
        """Check whether a file name is excluded."""
        return name in self.excluded

    def is_dir_excluded(self, name: str) -> bool:
        """Check whether a directory name is excluded via ``dir:<name>``."""
        return f"{DIRECTORY_EXCLUDE_PREFIX}{name}" in self.excluded

    def is_ext_allowed(self, extension: str) -> bool:
        """Check whether a file suffix (e.g. ``.json``) passes the filter."""
        if not self.extensions:
            return True
        return extension in self.extensions

    def allows_file(self, name: str, extension: str | None) -> bool:
        """Apply both the extension and the exclusion filter to a file."""
        if extension and not self.is_ext_allowed(extension):
            return False
        return not self.is_excluded(name)


def _as_bytes(data: bytes | bytearray | memoryview | str) -> bytes:
    if isinstance(data, str):
        return data.encode("utf-8")
    return bytes(data)


@dataclass
class UploadRequest:
    """Payload and metadata for :meth:`StorageService.upload`.

    Attributes:
        data: Bytes to persist
        content_type: Overrides the backend's content-type detection
        metadata: Backend-specific key/values (S3 object metadata,
            Azure blob metadata, GridFS file metadata; ignored on disk)
    """

    data: bytes = b""
    content_type: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.data = _as_bytes(self.data)

    def with_data(self, data: bytes | bytearray | memoryview | str) -> UploadRequest:
        """Replace the payload. Strings are UTF-8 encoded."""
        self.data = _as_bytes(data)
        return self

    def with_content_type(self, content_type: str | None) -> UploadRequest:
        self.content_type = content_type
        return self

    def with_metadata(
        self, metadata: Mapping[str, str] | Iterable[tuple[str, str]]
    ) -> UploadRequest:
        """Merge ``metadata`` into the existing metadata."""
        self.metadata.update(metadata)
        return self
