"""Integration test fixtures using Docker.

Provides containerized MinIO, Azurite and MongoDB. Every fixture skips
when Docker is unavailable.
"""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from tests.integration.docker_utils import (
    MINIO_ACCESS_KEY,
    MINIO_SECRET_KEY,
    DockerService,
    get_docker_client,
    run_container,
)


@pytest.fixture(scope="session")
def docker_client():
    """Create a Docker client or skip if Docker is unavailable."""
    try:
        client = get_docker_client()
        client.ping()
    except Exception as exc:
        pytest.skip(f"Docker not available: {exc}")
    yield client
    client.close()


@pytest.fixture(scope="session")
def minio_container(docker_client) -> Iterator[DockerService]:
    """Start MinIO (S3 compatible) for the test session."""
    env = {
        "MINIO_ROOT_USER": MINIO_ACCESS_KEY,
        "MINIO_ROOT_PASSWORD": MINIO_SECRET_KEY,
    }
    with run_container(
        docker_client,
        "minio/minio:latest",
        env=env,
        ports={"9000/tcp": None},
        command="server /data --console-address :9001",
    ) as minio:
        yield minio


@pytest.fixture(scope="session")
def azurite_container(docker_client) -> Iterator[DockerService]:
    """Start the Azurite blob emulator for the test session."""
    with run_container(
        docker_client,
        "mcr.microsoft.com/azure-storage/azurite:latest",
        ports={"10000/tcp": None},
        command="azurite-blob --blobHost 0.0.0.0 --blobPort 10000 --skipApiVersionCheck",
    ) as azurite:
        yield azurite


@pytest.fixture(scope="session")
def mongo_container(docker_client) -> Iterator[DockerService]:
    """Start MongoDB for the test session."""
    with run_container(docker_client, "mongo:7", ports={"27017/tcp": None}) as mongo:
        yield mongo
