"""Storage service factory."""

from __future__ import annotations

from stowage.config import Settings, settings
from stowage.content_type import ResolverLike
from stowage.exceptions import ConfigurationError
from stowage.service import StorageService

_service: StorageService | None = None


def create_storage_service(
    config: Settings, resolver: ResolverLike | None = None
) -> StorageService:
    """Build the backend selected by ``config.backend``.

    Cloud SDKs are only imported when their backend is selected.

    Raises:
        ConfigurationError: If the backend's required settings are missing
    """
    backend = config.backend
    if backend == "filesystem":
        from stowage.backends.filesystem import FilesystemStorageService

        return FilesystemStorageService.from_config(config.filesystem_config(), resolver=resolver)
    if backend == "s3":
        from stowage.backends.s3 import S3StorageService

        return S3StorageService(config.s3_config(), resolver=resolver)
    if backend == "azure":
        from stowage.backends.azure import AzureStorageService

        return AzureStorageService(config.azure_config(), resolver=resolver)
    if backend == "gridfs":
        from stowage.backends.gridfs import GridfsStorageService

        return GridfsStorageService(config.gridfs_config(), resolver=resolver)

    raise ConfigurationError(
        f"Unsupported backend {backend!r}. Supported values: filesystem, s3, azure, gridfs."
    )


def get_storage_service() -> StorageService:
    """Return a singleton StorageService based on settings."""
    global _service
    if _service is None:
        _service = create_storage_service(settings)
    return _service


def reset_storage_service() -> None:
    """Forget the singleton so the next call rebuilds it from settings."""
    global _service
    _service = None
