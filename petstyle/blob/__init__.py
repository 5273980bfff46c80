"""Blob storage client module."""

from .client import (
    BlobClient,
    create_blob_service_client,
    get_blob_client,
    get_connection_string,
    get_input_blob_path,
    get_output_blob_path,
)
from .store import (
    ArtifactNotFoundError,
    ArtifactStore,
    ArtifactStoreError,
    BlobArtifactStore,
    StorageConfigurationError,
)

__all__ = [
    "ArtifactNotFoundError",
    "ArtifactStore",
    "ArtifactStoreError",
    "BlobArtifactStore",
    "BlobClient",
    "StorageConfigurationError",
    "create_blob_service_client",
    "get_blob_client",
    "get_connection_string",
    "get_input_blob_path",
    "get_output_blob_path",
]
