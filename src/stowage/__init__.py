"""stowage: one async interface over filesystem, S3, Azure Blob and GridFS storage."""

from stowage.blob import Blob, Directory, File
from stowage.content_type import (
    DEFAULT_CONTENT_TYPE,
    ContentTypeResolver,
    DefaultContentTypeResolver,
    default_resolver,
)
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
from stowage.factory import create_storage_service, get_storage_service
from stowage.options import ListBlobsRequest, UploadRequest
from stowage.service import StorageService

__version__ = "0.1.0"

__all__ = [
    # Blobs
    "Blob",
    "Directory",
    "File",
    # Requests
    "ListBlobsRequest",
    "UploadRequest",
    # Content types
    "DEFAULT_CONTENT_TYPE",
    "ContentTypeResolver",
    "DefaultContentTypeResolver",
    "default_resolver",
    # Services
    "StorageService",
    "create_storage_service",
    "get_storage_service",
    # Errors
    "StorageError",
    "InvalidPathError",
    "NotAFileError",
    "StoragePermissionError",
    "StorageIOError",
    "TransientStorageError",
    "MetadataError",
    "UnrecognizedBackendError",
    "ConfigurationError",
]
