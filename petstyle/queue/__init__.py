"""Queue client module."""

from .client import (
    DEFAULT_VISIBILITY_TIMEOUT,
    JOB_CREATED_QUEUE,
    QueueClient,
    create_queue_service_client,
    decode_message,
    encode_message,
    get_connection_string,
    get_queue_client,
)

__all__ = [
    "DEFAULT_VISIBILITY_TIMEOUT",
    "JOB_CREATED_QUEUE",
    "QueueClient",
    "create_queue_service_client",
    "decode_message",
    "encode_message",
    "get_connection_string",
    "get_queue_client",
]
