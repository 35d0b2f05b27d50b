"""Local filesystem storage backend.

Paths are resolved against a configured root directory:

- ``./name`` resolves from the root directory
- ``~/name`` resolves from the current user's home directory
- anything else is used as given

Every blob path is reported as ``fs://{resolved path}``.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import aiofiles  # type: ignore[import-untyped]
import aiofiles.os  # type: ignore[import-untyped]

from stowage.blob import Blob, Directory, File, blob_path
from stowage.config import FilesystemConfig
from stowage.content_type import ContentTypeResolver, ResolverLike, as_resolver
from stowage.exceptions import (
    InvalidPathError,
    MetadataError,
    NotAFileError,
    StorageError,
    StorageIOError,
    StoragePermissionError,
)
from stowage.observability.tracing import traced
from stowage.options import ListBlobsRequest, UploadRequest
from stowage.service import StoragePath, StorageService, path_to_str

logger = logging.getLogger(__name__)

# Name reported for a directory without a final component (/, relative roots)
UNNAMED_DIRECTORY = "<root or relative path>"


def _millis(nanoseconds: int, field_name: str, path: Path) -> int:
    """Convert a stat timestamp to epoch milliseconds."""
    if nanoseconds < 0:
        raise MetadataError(
            f"{field_name} timestamp is before the unix epoch", backend="fs", path=str(path)
        )
    return nanoseconds // 1_000_000


def _created_millis(stat: os.stat_result, path: Path) -> int | None:
    # st_birthtime only exists where the OS records creation time
    birthtime = getattr(stat, "st_birthtime", None)
    if birthtime is None:
        return None
    return _millis(int(birthtime * 1_000_000_000), "created_at", path)


class FilesystemStorageService(StorageService):
    """Storage backend over the local filesystem."""

    name = "stowage:fs"
    scheme = "fs"

    def __init__(
        self,
        directory: str | os.PathLike[str] = "./data",
        resolver: ResolverLike | None = None,
    ) -> None:
        """Initialize filesystem storage.

        Args:
            directory: Root directory; ``./`` paths resolve from here
            resolver: Content-type resolver for files read from disk
        """
        self.directory = Path(directory)
        self.resolver: ContentTypeResolver = as_resolver(resolver)

    @classmethod
    def from_config(
        cls, config: FilesystemConfig, resolver: ResolverLike | None = None
    ) -> FilesystemStorageService:
        return cls(config.directory, resolver=resolver)

    def with_resolver(self, resolver: ResolverLike) -> FilesystemStorageService:
        """Return a copy of this service that uses another resolver."""
        return type(self)(self.directory, resolver=resolver)

    # -------------------------------------------------------------------------
    # Path handling
    # -------------------------------------------------------------------------

    def _canonical_root(self) -> Path | None:
        try:
            return self.directory.expanduser().resolve(strict=True)
        except (OSError, RuntimeError) as exc:
            logger.warning(f"Unable to resolve directory {self.directory}: {exc}")
            return None

    def normalize(self, path: StoragePath) -> Path | None:
        """Resolve ``path`` to an absolute path.

        Returns:
            The resolved path, or None if the root directory or the home
            directory cannot be resolved

        Raises:
            InvalidPathError: If the path is not valid UTF-8
        """
        raw = path_to_str(path, self.name)
        logger.debug(f"Resolving path {raw}")

        if Path(raw) == self.directory:
            return self._canonical_root()

        if raw.startswith("./"):
            directory = self.normalize(self.directory)
            if directory is None:
                return None
            normalized = Path(f"{directory}/{raw[2:]}")
            logger.debug(f"Resolved path {raw} ~> {normalized}")
            return normalized

        if raw.startswith("~/"):
            try:
                home = Path.home()
            except RuntimeError as exc:
                logger.error(f"Failed to get home directory: {exc}")
                return None
            normalized = Path(f"{home}/{raw[2:]}")
            logger.debug(f"Resolved path {raw} ~> {normalized}")
            return normalized

        return Path(raw)

    def _require_normalized(self, path: StoragePath) -> Path:
        normalized = self.normalize(path)
        if normalized is None:
            raise InvalidPathError(
                "unable to normalize given path", backend=self.name, path=str(path)
            )
        return normalized

    @contextmanager
    def _os_errors(self, path: Path) -> Iterator[None]:
        """Translate OSError into the storage error hierarchy."""
        try:
            yield
        except StorageError:
            raise
        except PermissionError as exc:
            raise StoragePermissionError(
                exc.strerror or str(exc), backend=self.name, path=str(path)
            ) from exc
        except IsADirectoryError as exc:
            raise NotAFileError(
                "path is a directory, not a file", backend=self.name, path=str(path)
            ) from exc
        except NotADirectoryError as exc:
            raise InvalidPathError(
                "a component of the path is not a directory", backend=self.name, path=str(path)
            ) from exc
        except OSError as exc:
            raise StorageIOError(exc.strerror or str(exc), backend=self.name, path=str(path)) from exc

    # -------------------------------------------------------------------------
    # Blob construction
    # -------------------------------------------------------------------------

    async def _read_bytes(self, path: Path) -> bytes:
        async with aiofiles.open(path, "rb") as f:
            data: bytes = await f.read()
        return data

    async def _file_blob(self, path: Path) -> File:
        stat = await aiofiles.os.stat(path)
        is_symlink = await aiofiles.os.path.islink(path)
        data = await self._read_bytes(path)
        content_type = await asyncio.to_thread(self.resolver.resolve, data)

        return File(
            name=path.name,
            path=blob_path(self.scheme, str(path)),
            data=data,
            content_type=content_type,
            created_at=_created_millis(stat, path),
            last_modified_at=_millis(stat.st_mtime_ns, "last_modified_at", path),
            is_symlink=is_symlink,
        )

    async def _directory_blob(self, path: Path) -> Directory:
        stat = await aiofiles.os.stat(path)
        return Directory(
            name=path.name or UNNAMED_DIRECTORY,
            path=blob_path(self.scheme, str(path)),
            created_at=_created_millis(stat, path),
        )

    # -------------------------------------------------------------------------
    # StorageService
    # -------------------------------------------------------------------------

    @traced("init")
    async def init(self) -> None:
        """Create the root directory if it doesn't exist."""
        try:
            directory = self.directory.expanduser()
        except RuntimeError as exc:
            raise InvalidPathError(
                "unable to resolve home directory", backend=self.name, path=str(self.directory)
            ) from exc

        with self._os_errors(directory):
            if not await aiofiles.os.path.exists(directory):
                logger.info(f"Creating directory {directory} since it doesn't exist")
                await aiofiles.os.makedirs(directory, exist_ok=True)

            if not await aiofiles.os.path.isdir(directory):
                raise InvalidPathError(
                    "path is a file, not a directory", backend=self.name, path=str(directory)
                )

    @traced("open")
    async def open(self, path: StoragePath) -> bytes | None:
        """Read a whole file into memory."""
        normalized = self.normalize(path)
        if normalized is None:
            logger.warning(f"Path {path!r} couldn't be normalized")
            return None

        with self._os_errors(normalized):
            if not await aiofiles.os.path.exists(normalized):
                logger.debug(f"Path {normalized} doesn't exist")
                return None

            if await aiofiles.os.path.isdir(normalized):
                raise NotAFileError(
                    "path is a directory, not a file", backend=self.name, path=str(normalized)
                )

            logger.debug(f"Opening file {normalized}")
            try:
                return await self._read_bytes(normalized)
            except FileNotFoundError:
                return None

    @traced("blob")
    async def blob(self, path: StoragePath) -> Blob | None:
        """Get a file with its contents, or a directory entry."""
        normalized = self.normalize(path)
        if normalized is None:
            logger.warning(f"Path {path!r} couldn't be normalized")
            return None

        with self._os_errors(normalized):
            try:
                if await aiofiles.os.path.isdir(normalized):
                    return await self._directory_blob(normalized)
                if not await aiofiles.os.path.exists(normalized):
                    logger.debug(f"Path {normalized} doesn't exist")
                    return None
                return await self._file_blob(normalized)
            except FileNotFoundError:
                return None

    @traced("blobs")
    async def blobs(
        self,
        path: StoragePath | None = None,
        options: ListBlobsRequest | None = None,
    ) -> list[Blob]:
        """List the entries of a directory.

        ``options.prefix`` names a subdirectory of the search root, joined as
        a path component rather than prepended to entry names: ``"sub"`` and
        ``"/sub"`` both list ``<root>/sub``, and ``"a"`` does not match
        ``<root>/a.txt``. Special files such as FIFOs and sockets are skipped.
        Results follow the OS enumeration order.
        """
        options = options or ListBlobsRequest()
        root = self.normalize(self.directory if path is None else path)
        if root is None:
            logger.warning(f"Path {path!r} couldn't be normalized")
            return []

        with self._os_errors(root):
            if await aiofiles.os.path.isfile(root):
                logger.warning(f"Path {root} is a file, not a directory")
                return []

            search = root / options.prefix.lstrip("/") if options.prefix else root
            if not await aiofiles.os.path.isdir(search):
                logger.debug(f"Directory {search} doesn't exist")
                return []

            logger.debug(f"Searching for blobs in {search}")
            blobs: list[Blob] = []
            for entry_name in await aiofiles.os.listdir(search):
                entry = search / entry_name
                try:
                    if await aiofiles.os.path.isdir(entry):
                        if options.include_dirs and not options.is_dir_excluded(entry_name):
                            blobs.append(await self._directory_blob(entry))
                        continue

                    if not await aiofiles.os.path.isfile(entry):
                        logger.debug(f"Skipping {entry}, not a regular file")
                        continue

                    if not options.allows_file(entry_name, entry.suffix or None):
                        continue

                    blobs.append(await self._file_blob(entry))
                except FileNotFoundError:
                    # Removed while listing
                    continue

        return blobs

    @traced("delete")
    async def delete(self, path: StoragePath) -> None:
        """Delete a file or an empty directory."""
        normalized = self._require_normalized(path)

        with self._os_errors(normalized):
            try:
                if await aiofiles.os.path.isdir(normalized) and not await aiofiles.os.path.islink(
                    normalized
                ):
                    logger.debug(f"Deleting directory {normalized}")
                    await aiofiles.os.rmdir(normalized)
                    return

                logger.debug(f"Deleting file {normalized}")
                await aiofiles.os.remove(normalized)
            except FileNotFoundError:
                logger.debug(f"Path {normalized} was already deleted")

    @traced("exists")
    async def exists(self, path: StoragePath) -> bool:
        normalized = self._require_normalized(path)
        with self._os_errors(normalized):
            return bool(await aiofiles.os.path.exists(normalized))

    @traced("upload")
    async def upload(self, path: StoragePath, request: UploadRequest) -> None:
        """Create a file with the request's data.

        Missing parent directories are created. An existing file is left
        untouched.
        """
        normalized = self._require_normalized(path)

        with self._os_errors(normalized):
            await aiofiles.os.makedirs(normalized.parent, exist_ok=True)

            logger.debug(f"Uploading file {normalized} ({len(request.data)} bytes)")
            try:
                # "x" mode creates the file atomically and fails if it exists
                async with aiofiles.open(normalized, "xb") as f:
                    await f.write(request.data)
                    await f.flush()
            except FileExistsError:
                logger.warning(f"File {normalized} already exists, leaving it untouched")

    @traced("healthcheck")
    async def healthcheck(self) -> None:
        root = self._canonical_root()
        if root is None or not await aiofiles.os.path.isdir(root):
            raise StorageIOError(
                "root directory is missing", backend=self.name, path=str(self.directory)
            )
