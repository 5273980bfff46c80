"""Azure Storage Queue client wrapper.

The job-created queue is the trigger substrate for the pipeline. Delivery is
at-least-once: a message may be seen again after its visibility timeout, so
consumers must be idempotent.
"""

import base64
import binascii
import json
import os
from typing import Any
from urllib.parse import urlparse

from azure.core.exceptions import ResourceExistsError
from azure.identity import DefaultAzureCredential
from azure.storage.queue import QueueMessage, QueueServiceClient
from tenacity import retry, stop_after_attempt, wait_exponential

from petstyle.blob.client import AZURITE_ACCOUNT_KEY

# Default queue names
JOB_CREATED_QUEUE = "job-created"

# Default visibility timeout (30 seconds)
DEFAULT_VISIBILITY_TIMEOUT = 30


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


def convert_uri_to_connection_string(uri: str) -> str:
    """Convert an Azurite queue endpoint URI to a connection string."""
    parsed = urlparse(uri)
    host = parsed.hostname or "127.0.0.1"
    port = parsed.port or 10001  # Default queue port
    account = parsed.path.strip("/") or "devstoreaccount1"
    protocol = parsed.scheme or "http"

    queue_endpoint = f"{protocol}://{host}:{port}/{account}"

    return (
        f"DefaultEndpointsProtocol={protocol};"
        f"AccountName={account};"
        f"AccountKey={AZURITE_ACCOUNT_KEY};"
        f"QueueEndpoint={queue_endpoint}"
    )


def create_queue_service_client(
    connection_string: str | None = None,
    use_managed_identity: bool = False,
    account_url: str | None = None,
) -> QueueServiceClient:
    """Create a synchronous QueueServiceClient.

    Args:
        connection_string: Azure Storage connection string.
        use_managed_identity: If True, use DefaultAzureCredential.
        account_url: Storage account URL (required if using managed identity).
    """
    if use_managed_identity:
        if not account_url:
            raise ValueError("account_url is required when using managed identity")
        return QueueServiceClient(account_url, credential=DefaultAzureCredential())

    if not connection_string:
        connection_string = get_connection_string()
    elif connection_string.startswith(("http://", "https://")):
        connection_string = convert_uri_to_connection_string(connection_string)

    return QueueServiceClient.from_connection_string(connection_string)


def encode_message(message: dict[str, Any]) -> str:
    """Encode a message as base64 JSON for queue storage."""
    json_str = json.dumps(message)
    return base64.b64encode(json_str.encode("utf-8")).decode("utf-8")


def decode_message(message_text: str) -> dict[str, Any]:
    """Decode a base64 JSON message from queue storage.

    Plain JSON is accepted too, for messages enqueued by other tools.

    Raises:
        ValueError: If the text is neither base64 JSON nor JSON, or does not
            hold a JSON object.
    """
    try:
        json_str = base64.b64decode(message_text, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        json_str = message_text

    decoded = json.loads(json_str)
    if not isinstance(decoded, dict):
        raise ValueError("Queue message must be a JSON object")
    return decoded


class QueueClient:
    """Wrapper for Azure Storage Queue operations."""

    def __init__(
        self,
        connection_string: str | None = None,
        use_managed_identity: bool = False,
        account_url: str | None = None,
    ):
        self._connection_string = connection_string
        self._use_managed_identity = use_managed_identity
        self._account_url = account_url
        self._client: QueueServiceClient | None = None

    @property
    def client(self) -> QueueServiceClient:
        """Get or create the queue service client."""
        if self._client is None:
            self._client = create_queue_service_client(
                connection_string=self._connection_string,
                use_managed_identity=self._use_managed_identity,
                account_url=self._account_url,
            )
        return self._client

    def ensure_queue(self, queue_name: str) -> None:
        """Ensure a queue exists, creating it if needed."""
        queue_client = self.client.get_queue_client(queue_name)
        try:
            queue_client.create_queue()
        except ResourceExistsError:
            pass  # Queue already exists

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    def send_message(
        self,
        queue_name: str,
        message: dict[str, Any],
        visibility_timeout: int | None = None,
        time_to_live: int | None = None,
    ) -> str:
        """Send a message to a queue.

        Args:
            queue_name: Name of the queue.
            message: Message dictionary to send.
            visibility_timeout: Seconds before message becomes visible.
            time_to_live: Seconds until message expires (default: 7 days).

        Returns:
            The message ID.
        """
        queue_client = self.client.get_queue_client(queue_name)
        result = queue_client.send_message(
            encode_message(message),
            visibility_timeout=visibility_timeout,
            time_to_live=time_to_live,
        )
        return result.id

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    def receive_messages(
        self,
        queue_name: str,
        max_messages: int = 1,
        visibility_timeout: int = DEFAULT_VISIBILITY_TIMEOUT,
    ) -> list[tuple[QueueMessage, str]]:
        """Receive messages from a queue.

        Decoding is left to the caller so one bad message cannot block the
        whole batch.

        Returns:
            List of tuples containing (QueueMessage, raw message text).
        """
        queue_client = self.client.get_queue_client(queue_name)
        messages = queue_client.receive_messages(
            max_messages=max_messages,
            visibility_timeout=visibility_timeout,
        )
        return [(msg, msg.content) for msg in messages]

    def delete_message(self, queue_name: str, message: QueueMessage) -> None:
        """Delete a message from a queue (acknowledge processing complete)."""
        queue_client = self.client.get_queue_client(queue_name)
        queue_client.delete_message(message)

    def close(self) -> None:
        """Close the queue service client."""
        if self._client is not None:
            self._client.close()
            self._client = None


# Global queue client instance
_queue_client: QueueClient | None = None


def get_queue_client() -> QueueClient:
    """Get the global queue client instance."""
    global _queue_client
    if _queue_client is None:
        from petstyle.config import get_settings

        storage = get_settings().storage
        _queue_client = QueueClient(
            connection_string=storage.connection_string or None,
            use_managed_identity=storage.use_managed_identity,
            account_url=storage.account_url or None,
        )
    return _queue_client
