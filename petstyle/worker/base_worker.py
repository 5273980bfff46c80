"""Base worker class with queue polling and message processing."""

import asyncio
import signal
import sys
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

from azure.storage.queue import QueueMessage

from petstyle.config import get_settings
from petstyle.logging.config import (
    bind_context,
    configure_logging,
    get_logger,
    set_correlation_id,
    unbind_context,
)
from petstyle.queue.client import QueueClient, decode_message, get_queue_client

T = TypeVar("T")

# Upper bound for requeue back-off (1 hour)
MAX_REQUEUE_DELAY = 3600


class WorkerStatus(str, Enum):
    """Worker processing status."""

    SUCCESS = "success"
    FAILED = "failed"
    RETRY = "retry"
    DEAD_LETTER = "dead_letter"


@dataclass
class WorkerResult:
    """Result of processing a message."""

    status: WorkerStatus
    message: str | None = None
    error: Exception | None = None
    data: dict[str, Any] | None = None

    @classmethod
    def success(cls, message: str | None = None, data: dict[str, Any] | None = None) -> "WorkerResult":
        """Create a success result."""
        return cls(status=WorkerStatus.SUCCESS, message=message, data=data)

    @classmethod
    def failed(cls, error: Exception, message: str | None = None) -> "WorkerResult":
        """Create a failed result."""
        return cls(status=WorkerStatus.FAILED, message=message or str(error), error=error)

    @classmethod
    def retry(cls, message: str | None = None) -> "WorkerResult":
        """Create a retry result."""
        return cls(status=WorkerStatus.RETRY, message=message)

    @classmethod
    def dead_letter(cls, message: str | None = None) -> "WorkerResult":
        """Create a dead letter result."""
        return cls(status=WorkerStatus.DEAD_LETTER, message=message)


def requeue_delay(retry_count: int) -> int:
    """Visibility delay before a requeued message is seen again."""
    return min(60 * (2 ** retry_count), MAX_REQUEUE_DELAY)


class BaseWorker(ABC, Generic[T]):
    """Base class for queue workers with polling and processing logic.

    Subclasses must implement:
    - queue_name: property returning the queue name to poll
    - process_message: method to process a single message

    Optional overrides:
    - parse_message: convert raw message dict to typed payload
    - on_success: called after successful processing
    - on_failure: called after failed processing
    - on_dead_letter: called when max retries exceeded
    """

    def __init__(
        self,
        poll_interval: float = 1.0,
        batch_size: int = 1,
        visibility_timeout: int | None = None,
        max_retries: int | None = None,
        queue_client: QueueClient | None = None,
    ):
        """Initialize the worker.

        Args:
            poll_interval: Seconds between queue polls when empty.
            batch_size: Number of messages to fetch per poll (1-32).
            visibility_timeout: Seconds to hide message while processing.
            max_retries: Maximum retry attempts before dead lettering.
            queue_client: Queue client; defaults to the global one.
        """
        self.poll_interval = poll_interval
        self.batch_size = min(max(batch_size, 1), 32)
        self._settings = get_settings()
        self.visibility_timeout = visibility_timeout or self._settings.queue.visibility_timeout
        self.max_retries = max_retries if max_retries is not None else self._settings.queue.max_retries
        self._running = False
        self._queue_client = queue_client
        self._logger = get_logger(self.__class__.__name__)

    @property
    @abstractmethod
    def queue_name(self) -> str:
        """Return the name of the queue to poll."""
        ...

    @property
    def queue_client(self) -> QueueClient:
        """Get or create the queue client."""
        if self._queue_client is None:
            self._queue_client = get_queue_client()
        return self._queue_client

    def parse_message(self, raw_message: dict[str, Any]) -> T:
        """Parse raw message dict into typed payload.

        Default implementation returns the raw dict.
        """
        return raw_message  # type: ignore

    @abstractmethod
    async def process_message(self, message: T, correlation_id: str) -> WorkerResult:
        """Process a single message.

        Args:
            message: The parsed message payload.
            correlation_id: Correlation ID for tracing.

        Returns:
            WorkerResult indicating success, failure, or retry.
        """
        ...

    async def on_success(self, message: T, result: WorkerResult) -> None:
        """Called after successful message processing."""

    async def on_failure(self, message: T, result: WorkerResult, retry_count: int) -> None:
        """Called after failed message processing."""

    async def on_dead_letter(self, message: T, result: WorkerResult) -> None:
        """Called when message exceeds max retries."""

    async def _process_single_message(self, queue_message: QueueMessage, message_text: str) -> None:
        """Decode, parse and process one message, then settle it on the queue."""
        try:
            raw_message = decode_message(message_text)
        except ValueError as e:
            self._logger.error("Failed to decode message", error=str(e), message_id=queue_message.id)
            self.queue_client.delete_message(self.queue_name, queue_message)
            return

        correlation_id = raw_message.get("correlation_id") or "unknown"
        retry_count = raw_message.get("retry_count", 0)

        set_correlation_id(correlation_id)
        bind_context(
            correlation_id=correlation_id,
            queue=self.queue_name,
            retry_count=retry_count,
        )

        try:
            try:
                message = self.parse_message(raw_message)
            except (KeyError, TypeError, ValueError) as e:
                self._logger.error("Failed to parse message", error=str(e))
                # Malformed messages can never succeed
                self.queue_client.delete_message(self.queue_name, queue_message)
                return

            self._logger.info("Processing message")
            start_time = time.monotonic()

            try:
                result = await self.process_message(message, correlation_id)
            except Exception as e:
                self._logger.exception("Unhandled exception during processing")
                result = WorkerResult.failed(e)

            elapsed = time.monotonic() - start_time
            self._logger.info("Processing complete", elapsed_seconds=elapsed, status=result.status.value)

            if result.status == WorkerStatus.SUCCESS:
                self.queue_client.delete_message(self.queue_name, queue_message)
                await self.on_success(message, result)

            elif result.status == WorkerStatus.RETRY:
                # Left on the queue; visible again once the visibility timeout expires
                await self.on_failure(message, result, retry_count)

            elif result.status == WorkerStatus.FAILED:
                if retry_count >= self.max_retries:
                    self._logger.error("Max retries exceeded, dead lettering")
                    self.queue_client.delete_message(self.queue_name, queue_message)
                    await self.on_dead_letter(message, result)
                else:
                    raw_message["retry_count"] = retry_count + 1
                    self.queue_client.send_message(
                        self.queue_name,
                        raw_message,
                        visibility_timeout=requeue_delay(retry_count),
                    )
                    self.queue_client.delete_message(self.queue_name, queue_message)
                    await self.on_failure(message, result, retry_count + 1)

            elif result.status == WorkerStatus.DEAD_LETTER:
                self.queue_client.delete_message(self.queue_name, queue_message)
                await self.on_dead_letter(message, result)

        finally:
            set_correlation_id(None)
            unbind_context("correlation_id", "queue", "retry_count")

    async def poll_once(self) -> int:
        """Poll the queue once and process any messages.

        Returns:
            Number of messages processed.
        """
        messages = self.queue_client.receive_messages(
            self.queue_name,
            max_messages=self.batch_size,
            visibility_timeout=self.visibility_timeout,
        )

        for queue_message, message_text in messages:
            await self._process_single_message(queue_message, message_text)

        return len(messages)

    async def run(self) -> None:
        """Run the worker loop until stopped."""
        self._running = True
        configure_logging(
            level=self._settings.logging.level,
            json_format=self._settings.logging.json_format,
            service_name=self.__class__.__name__,
        )

        self._logger.info(
            "Worker starting",
            queue=self.queue_name,
            poll_interval=self.poll_interval,
            batch_size=self.batch_size,
            visibility_timeout=self.visibility_timeout,
            max_retries=self.max_retries,
        )

        self.queue_client.ensure_queue(self.queue_name)

        while self._running:
            try:
                processed = await self.poll_once()

                if processed == 0:
                    await asyncio.sleep(self.poll_interval)

            except Exception:
                self._logger.exception("Error during poll loop")
                await asyncio.sleep(self.poll_interval * 2)  # Back off on errors

        self._logger.info("Worker stopped")

    def stop(self) -> None:
        """Stop the worker loop."""
        self._logger.info("Stopping worker")
        self._running = False

    def setup_signal_handlers(self) -> None:
        """Set up signal handlers for graceful shutdown."""
        def handle_signal(signum: int, frame: Any) -> None:
            self._logger.info("Received signal", signal=signum)
            self.stop()

        signal.signal(signal.SIGINT, handle_signal)
        signal.signal(signal.SIGTERM, handle_signal)


def run_worker(worker: BaseWorker) -> None:
    """Run a worker as the main entry point."""
    worker.setup_signal_handlers()

    try:
        asyncio.run(worker.run())
    except KeyboardInterrupt:
        pass
    finally:
        sys.exit(0)
