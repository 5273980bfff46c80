"""Azure Blob Storage client wrapper."""

import os
from typing import BinaryIO
from urllib.parse import urlparse

from azure.core.exceptions import ResourceExistsError, ResourceNotFoundError
from azure.identity import DefaultAzureCredential
from azure.storage.blob import BlobServiceClient, ContentSettings
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

# Azurite well-known development account key
AZURITE_ACCOUNT_KEY = "Eby8vdM02xNOcqFlqUwJPLlmEtlCDXJ1OUzFT50uSRZ6IFsuFq2UVErCz4I6tq/K1SZFPTOtr/KBHBeksoGMGw=="


def get_input_blob_path(user_id: str, job_id: str) -> str:
    """Blob path of the photo uploaded for a job."""
    return f"input/{user_id}/{job_id}.jpg"


def get_output_blob_path(user_id: str, generation_id: str) -> str:
    """Blob path of the normalized image produced for a generation."""
    return f"output/{user_id}/{generation_id}.png"


def convert_uri_to_connection_string(uri: str) -> str:
    """Convert an Azurite blob endpoint URI to a connection string.

    For example ``http://127.0.0.1:10000/devstoreaccount1``.

    Args:
        uri: The Azurite endpoint URI.

    Returns:
        A full Azurite connection string.
    """
    parsed = urlparse(uri)
    host = parsed.hostname or "127.0.0.1"
    port = parsed.port or 10000  # Default blob port
    account = parsed.path.strip("/") if parsed.path else "devstoreaccount1"
    account = account or "devstoreaccount1"
    protocol = parsed.scheme or "http"

    blob_endpoint = f"{protocol}://{host}:{port}/{account}"

    return (
        f"DefaultEndpointsProtocol={protocol};"
        f"AccountName={account};"
        f"AccountKey={AZURITE_ACCOUNT_KEY};"
        f"BlobEndpoint={blob_endpoint}"
    )


def get_connection_string() -> str:
    """Get the Azure Storage connection string from AZURE_STORAGE_CONNECTION_STRING.

    An Azurite endpoint URI is accepted in place of a connection string.
    """
    conn_str = os.environ.get("AZURE_STORAGE_CONNECTION_STRING")

    if not conn_str:
        raise ValueError(
            "Azure Storage connection string not found. Set AZURE_STORAGE_CONNECTION_STRING"
        )

    if conn_str.startswith("http://") or conn_str.startswith("https://"):
        conn_str = convert_uri_to_connection_string(conn_str)

    return conn_str


def create_blob_service_client(
    connection_string: str | None = None,
    use_managed_identity: bool = False,
    account_url: str | None = None,
) -> BlobServiceClient:
    """Create a synchronous BlobServiceClient.

    Args:
        connection_string: Azure Storage connection string.
        use_managed_identity: If True, use DefaultAzureCredential.
        account_url: Storage account URL (required if using managed identity).
    """
    if use_managed_identity:
        if not account_url:
            raise ValueError("account_url is required when using managed identity")
        return BlobServiceClient(account_url, credential=DefaultAzureCredential())

    if not connection_string:
        connection_string = get_connection_string()
    elif connection_string.startswith(("http://", "https://")):
        connection_string = convert_uri_to_connection_string(connection_string)

    return BlobServiceClient.from_connection_string(connection_string)


class BlobClient:
    """Wrapper for Azure Blob Storage operations."""

    def __init__(
        self,
        connection_string: str | None = None,
        use_managed_identity: bool = False,
        account_url: str | None = None,
    ):
        self._connection_string = connection_string
        self._use_managed_identity = use_managed_identity
        self._account_url = account_url
        self._client: BlobServiceClient | None = None

    @property
    def client(self) -> BlobServiceClient:
        """Get or create the blob service client."""
        if self._client is None:
            self._client = create_blob_service_client(
                connection_string=self._connection_string,
                use_managed_identity=self._use_managed_identity,
                account_url=self._account_url,
            )
        return self._client

    def ensure_container(self, container_name: str) -> None:
        """Ensure a container exists, creating it if needed."""
        container_client = self.client.get_container_client(container_name)
        try:
            container_client.create_container()
        except ResourceExistsError:
            pass  # Container already exists

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    def upload_blob(
        self,
        container_name: str,
        blob_name: str,
        content: bytes | BinaryIO,
        content_type: str = "application/octet-stream",
        overwrite: bool = True,
    ) -> str:
        """Upload content to a blob.

        Args:
            container_name: Name of the container.
            blob_name: Name of the blob.
            content: Content to upload (bytes or file-like object).
            content_type: MIME type of the content.
            overwrite: If True, overwrite existing blob.

        Returns:
            The blob URI.
        """
        self.ensure_container(container_name)

        blob_client = self.client.get_blob_client(container_name, blob_name)
        blob_client.upload_blob(
            content,
            content_settings=ContentSettings(content_type=content_type),
            overwrite=overwrite,
        )
        return blob_client.url

    @retry(
        retry=retry_if_not_exception_type(ResourceNotFoundError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    def download_blob(self, container_name: str, blob_name: str) -> bytes:
        """Download blob content.

        Raises:
            ResourceNotFoundError: If the blob doesn't exist. Not retried.
        """
        blob_client = self.client.get_blob_client(container_name, blob_name)
        return blob_client.download_blob().readall()

    def close(self) -> None:
        """Close the blob service client."""
        if self._client is not None:
            self._client.close()
            self._client = None


# Global blob client instance
_blob_client: BlobClient | None = None


def get_blob_client() -> BlobClient:
    """Get the global blob client instance."""
    global _blob_client
    if _blob_client is None:
        from petstyle.config import get_settings

        storage = get_settings().storage
        _blob_client = BlobClient(
            connection_string=storage.connection_string or None,
            use_managed_identity=storage.use_managed_identity,
            account_url=storage.account_url or None,
        )
    return _blob_client
