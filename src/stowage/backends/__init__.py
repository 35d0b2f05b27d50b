"""Storage backends.

- filesystem: local directory tree (aiofiles)
- s3: AWS S3 and S3-compatible stores (aioboto3)
- azure: Azure Blob Storage (azure-storage-blob aio)
- gridfs: MongoDB GridFS (PyMongo async)

Cloud backends are imported lazily by :mod:`stowage.factory`.
"""

from stowage.backends.filesystem import FilesystemStorageService

__all__ = ["FilesystemStorageService"]
