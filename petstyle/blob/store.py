"""Artifact store gateway used by the job pipeline.

The pipeline only needs two operations, ``download`` and ``upload``, keyed
by an opaque artifact reference (a blob path inside one container).
"""

import asyncio
from typing import Protocol

from azure.core.exceptions import ResourceNotFoundError

from petstyle.blob.client import BlobClient, get_blob_client
from petstyle.logging.config import get_logger
from petstyle.pipeline.errors import ErrorCode, PipelineError

logger = get_logger(__name__)


class ArtifactStoreError(PipelineError):
    """Base class for artifact store failures."""


class ArtifactNotFoundError(ArtifactStoreError):
    """The referenced artifact does not exist."""

    error_code = ErrorCode.INPUT_NOT_FOUND

    def __init__(self, ref: str):
        super().__init__(f"Artifact not found: {ref}")
        self.ref = ref


class StorageConfigurationError(ArtifactStoreError):
    """No container is configured for artifacts."""

    error_code = ErrorCode.BUCKET_NOT_CONFIGURED


class ArtifactStore(Protocol):
    """What the pipeline needs from artifact storage."""

    async def download(self, ref: str) -> bytes:
        ...

    async def upload(self, ref: str, data: bytes, content_type: str) -> str:
        ...


class BlobArtifactStore:
    """Artifact store backed by one Azure Blob Storage container.

    The Azure SDK client is synchronous, so calls run in a worker thread and
    stay cancellable from the pipeline's point of view.
    """

    def __init__(
        self,
        container_name: str | None = None,
        blob_client: BlobClient | None = None,
    ):
        """Initialize the store.

        Args:
            container_name: Container holding inputs and outputs. Defaults to
                ``AZURE_STORAGE_CONTAINER``.
            blob_client: Blob client; defaults to the global one.
        """
        if container_name is None:
            from petstyle.config import get_settings

            container_name = get_settings().storage.container
        self._container_name = container_name
        self._blob_client = blob_client

    @property
    def container_name(self) -> str:
        if not self._container_name:
            raise StorageConfigurationError(
                "Storage bucket name not configured. Set AZURE_STORAGE_CONTAINER env var."
            )
        return self._container_name

    @property
    def blob_client(self) -> BlobClient:
        if self._blob_client is None:
            self._blob_client = get_blob_client()
        return self._blob_client

    async def download(self, ref: str) -> bytes:
        """Fetch an artifact's bytes.

        Raises:
            ArtifactNotFoundError: If no blob exists at ``ref``.
            StorageConfigurationError: If no container is configured.
        """
        container = self.container_name
        try:
            data = await asyncio.to_thread(self.blob_client.download_blob, container, ref)
        except ResourceNotFoundError as e:
            raise ArtifactNotFoundError(ref) from e

        logger.debug("Downloaded artifact", ref=ref, size=len(data))
        return data

    async def upload(self, ref: str, data: bytes, content_type: str) -> str:
        """Store bytes at ``ref`` and return the blob URL."""
        container = self.container_name
        url = await asyncio.to_thread(
            self.blob_client.upload_blob,
            container,
            ref,
            data,
            content_type,
        )
        logger.debug("Uploaded artifact", ref=ref, size=len(data), content_type=content_type)
        return url
