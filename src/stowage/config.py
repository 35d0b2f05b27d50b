from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from stowage.exceptions import ConfigurationError

BackendName = Literal["filesystem", "s3", "azure", "gridfs"]
AzureLocation = Literal["public", "china", "emulator", "custom"]

# Well-known Azurite development account
AZURITE_ACCOUNT = "devstoreaccount1"


class FilesystemConfig(BaseModel):
    """Configuration for the local filesystem backend."""

    model_config = ConfigDict(frozen=True)

    # Root directory; paths starting with ./ resolve against it
    directory: Path = Path("./data")


class S3Config(BaseModel):
    """Configuration for S3-compatible object stores."""

    model_config = ConfigDict(frozen=True)

    bucket: str
    access_key_id: str | None = None
    secret_access_key: str | None = None
    region: str = "us-east-1"
    endpoint: str | None = None
    prefix: str | None = None
    app_name: str = "stowage"
    # Recommended for MinIO: https://{host}/{bucket}/... instead of https://{bucket}.{host}/...
    enforce_path_access_style: bool = False
    enable_signer_v4_requests: bool = False
    default_object_acl: str = "bucket-owner-full-control"
    default_bucket_acl: str = "private"


class AzureConfig(BaseModel):
    """Configuration for Azure Blob Storage.

    Either ``connection_string`` or a ``location`` with its account details
    must be given. Credentials are tried in order: access key, SAS token,
    bearer token, anonymous.
    """

    model_config = ConfigDict(frozen=True)

    container: str
    connection_string: str | None = None
    location: AzureLocation = "public"
    account: str | None = None
    address: str = "127.0.0.1"
    port: int = 10000
    uri: str | None = None
    access_key: str | None = None
    sas_token: str | None = None
    bearer_token: str | None = None

    def account_url(self) -> str:
        """Build the blob service endpoint for ``location``."""
        if self.location == "emulator":
            return f"http://{self.address}:{self.port}/{self.account or AZURITE_ACCOUNT}"
        if self.location == "custom":
            if not self.uri:
                raise ConfigurationError("azure location 'custom' requires uri", backend="azure")
            return self.uri
        if not self.account:
            raise ConfigurationError(
                f"azure location '{self.location}' requires account", backend="azure"
            )
        if self.location == "china":
            return f"https://{self.account}.blob.core.chinacloudapi.cn"
        return f"https://{self.account}.blob.core.windows.net"


class GridfsConfig(BaseModel):
    """Configuration for MongoDB GridFS."""

    model_config = ConfigDict(frozen=True)

    uri: str = "mongodb://localhost:27017"
    database: str = "stowage"
    bucket: str = "fs"
    chunk_size: int = Field(default=255 * 1024, gt=0)
    read_concern: str | None = None
    write_concern: str | int | None = None


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="STOWAGE_", env_file=".env", extra="ignore", populate_by_name=True
    )

    backend: BackendName = "filesystem"

    # Observability
    enable_tracing: bool = True
    log_level: str = "INFO"
    log_json: bool = True

    # Filesystem (when backend="filesystem")
    fs_directory: str = "./data"

    # S3 (when backend="s3")
    s3_bucket: str | None = None
    s3_prefix: str | None = None
    s3_endpoint: str | None = None
    s3_region: str = "us-east-1"
    s3_access_key_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("STOWAGE_S3_ACCESS_KEY_ID", "AWS_ACCESS_KEY_ID"),
    )
    s3_secret_access_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("STOWAGE_S3_SECRET_ACCESS_KEY", "AWS_SECRET_ACCESS_KEY"),
    )
    s3_path_style: bool = False
    s3_signer_v4: bool = False
    s3_default_object_acl: str = "bucket-owner-full-control"
    s3_default_bucket_acl: str = "private"

    # Azure (when backend="azure")
    azure_container: str | None = None
    azure_connection_string: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "STOWAGE_AZURE_CONNECTION_STRING", "AZURE_STORAGE_CONNECTION_STRING"
        ),
    )
    azure_location: AzureLocation = "public"
    azure_account: str | None = None
    azure_address: str = "127.0.0.1"
    azure_port: int = 10000
    azure_uri: str | None = None
    azure_access_key: str | None = None
    azure_sas_token: str | None = None
    azure_bearer_token: str | None = None

    # GridFS (when backend="gridfs")
    gridfs_uri: str = "mongodb://localhost:27017"
    gridfs_database: str = "stowage"
    gridfs_bucket: str = "fs"
    gridfs_chunk_size: int = 255 * 1024
    gridfs_read_concern: str | None = None
    gridfs_write_concern: str | None = None

    def filesystem_config(self) -> FilesystemConfig:
        return FilesystemConfig(directory=Path(self.fs_directory))

    def s3_config(self) -> S3Config:
        if not self.s3_bucket:
            raise ConfigurationError("STOWAGE_S3_BUCKET is required for backend='s3'")
        return S3Config(
            bucket=self.s3_bucket,
            access_key_id=self.s3_access_key_id,
            secret_access_key=self.s3_secret_access_key,
            region=self.s3_region,
            endpoint=self.s3_endpoint,
            prefix=self.s3_prefix,
            app_name="stowage",
            enforce_path_access_style=self.s3_path_style,
            enable_signer_v4_requests=self.s3_signer_v4,
            default_object_acl=self.s3_default_object_acl,
            default_bucket_acl=self.s3_default_bucket_acl,
        )

    def azure_config(self) -> AzureConfig:
        if not self.azure_container:
            raise ConfigurationError("STOWAGE_AZURE_CONTAINER is required for backend='azure'")
        return AzureConfig(
            container=self.azure_container,
            connection_string=self.azure_connection_string,
            location=self.azure_location,
            account=self.azure_account,
            address=self.azure_address,
            port=self.azure_port,
            uri=self.azure_uri,
            access_key=self.azure_access_key,
            sas_token=self.azure_sas_token,
            bearer_token=self.azure_bearer_token,
        )

    def gridfs_config(self) -> GridfsConfig:
        write_concern: str | int | None = self.gridfs_write_concern
        if write_concern is not None and write_concern.isdigit():
            write_concern = int(write_concern)
        return GridfsConfig(
            uri=self.gridfs_uri,
            database=self.gridfs_database,
            bucket=self.gridfs_bucket,
            chunk_size=self.gridfs_chunk_size,
            read_concern=self.gridfs_read_concern,
            write_concern=write_concern,
        )


settings = Settings()
