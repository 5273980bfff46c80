"""Tests for blob path helpers and the blob-backed artifact store."""

from unittest.mock import MagicMock, patch

import pytest
from azure.core.exceptions import ResourceNotFoundError

from petstyle.blob.client import (
    AZURITE_ACCOUNT_KEY,
    convert_uri_to_connection_string,
    create_blob_service_client,
    get_connection_string,
    get_input_blob_path,
    get_output_blob_path,
)
from petstyle.blob.store import (
    ArtifactNotFoundError,
    BlobArtifactStore,
    StorageConfigurationError,
)
from petstyle.pipeline.errors import ErrorCode, classify_error


class TestBlobPaths:
    """Tests for blob path helpers."""

    def test_input_path(self):
        assert get_input_blob_path("user-1", "job-1") == "input/user-1/job-1.jpg"

    def test_output_path(self):
        assert get_output_blob_path("user-1", "gen-1") == "output/user-1/gen-1.png"


class TestConvertUri:
    """Tests for Azurite URI conversion."""

    def test_full_uri(self):
        conn_str = convert_uri_to_connection_string("http://127.0.0.1:32773/devstoreaccount1")

        assert "AccountName=devstoreaccount1" in conn_str
        assert f"AccountKey={AZURITE_ACCOUNT_KEY}" in conn_str
        assert "BlobEndpoint=http://127.0.0.1:32773/devstoreaccount1" in conn_str

    def test_defaults(self):
        conn_str = convert_uri_to_connection_string("http://localhost")

        assert "BlobEndpoint=http://localhost:10000/devstoreaccount1" in conn_str


class TestConnectionString:
    """Tests for reading the storage connection string."""

    def test_uri_env_is_converted(self, monkeypatch):
        monkeypatch.setenv("AZURE_STORAGE_CONNECTION_STRING", "http://127.0.0.1:10000/devstoreaccount1")

        assert "BlobEndpoint=http://127.0.0.1:10000/devstoreaccount1" in get_connection_string()

    def test_only_azure_storage_variable_is_read(self, monkeypatch):
        monkeypatch.delenv("AZURE_STORAGE_CONNECTION_STRING", raising=False)
        monkeypatch.setenv("ConnectionStrings__storage", "UseDevelopmentStorage=true")

        with pytest.raises(ValueError, match="AZURE_STORAGE_CONNECTION_STRING"):
            get_connection_string()

    def test_service_client_converts_configured_uri(self):
        with patch("petstyle.blob.client.BlobServiceClient") as service_cls:
            create_blob_service_client("http://127.0.0.1:10000/devstoreaccount1")

        conn_str = service_cls.from_connection_string.call_args.args[0]
        assert conn_str.startswith("DefaultEndpointsProtocol=http;")
        assert "BlobEndpoint=http://127.0.0.1:10000/devstoreaccount1" in conn_str


@pytest.fixture
def mock_blob_client():
    client = MagicMock()
    client.download_blob = MagicMock(return_value=b"photo")
    client.upload_blob = MagicMock(return_value="https://account/pets/output/user-1/gen-1.png")
    return client


class TestBlobArtifactStore:
    """Tests for BlobArtifactStore."""

    @pytest.mark.asyncio
    async def test_download(self, mock_blob_client):
        store = BlobArtifactStore(container_name="pets", blob_client=mock_blob_client)

        assert await store.download("input/user-1/job-1.jpg") == b"photo"
        mock_blob_client.download_blob.assert_called_once_with("pets", "input/user-1/job-1.jpg")

    @pytest.mark.asyncio
    async def test_download_missing_blob(self, mock_blob_client):
        mock_blob_client.download_blob.side_effect = ResourceNotFoundError("The specified blob does not exist.")
        store = BlobArtifactStore(container_name="pets", blob_client=mock_blob_client)

        with pytest.raises(ArtifactNotFoundError) as exc_info:
            await store.download("input/user-1/job-1.jpg")

        assert exc_info.value.ref == "input/user-1/job-1.jpg"
        assert classify_error(exc_info.value) == ErrorCode.INPUT_NOT_FOUND

    @pytest.mark.asyncio
    async def test_upload(self, mock_blob_client):
        store = BlobArtifactStore(container_name="pets", blob_client=mock_blob_client)

        url = await store.upload("output/user-1/gen-1.png", b"png", "image/png")

        assert url.endswith("output/user-1/gen-1.png")
        mock_blob_client.upload_blob.assert_called_once_with(
            "pets", "output/user-1/gen-1.png", b"png", "image/png"
        )

    @pytest.mark.asyncio
    async def test_missing_container(self, mock_blob_client):
        store = BlobArtifactStore(container_name="", blob_client=mock_blob_client)

        with pytest.raises(StorageConfigurationError) as exc_info:
            await store.download("input/user-1/job-1.jpg")

        assert "AZURE_STORAGE_CONTAINER" in str(exc_info.value)
        assert classify_error(exc_info.value) == ErrorCode.BUCKET_NOT_CONFIGURED
        mock_blob_client.download_blob.assert_not_called()

    def test_container_from_settings(self, monkeypatch, mock_blob_client):
        from petstyle.config import refresh_settings

        monkeypatch.setenv("AZURE_STORAGE_CONTAINER", "pet-images")
        refresh_settings()
        try:
            store = BlobArtifactStore(blob_client=mock_blob_client)
            assert store.container_name == "pet-images"
        finally:
            monkeypatch.delenv("AZURE_STORAGE_CONTAINER")
            refresh_settings()
