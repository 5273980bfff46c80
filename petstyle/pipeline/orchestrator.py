"""Pipeline orchestrator for job-created notifications.

One invocation drives one job from ``queued`` to a terminal status:

    guard -> consume quota -> claim -> download -> generate -> normalize
          -> upload -> record generation + done

Notifications are delivered at least once, so every step that writes is
either conditional on the job's current status or undone on failure. A
redelivered notification for a finished job changes nothing. Terminal
writes are retried; if they still fail the notification is deferred and the
redelivery moves the job, stuck in ``processing``, to ``error``.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy.exc import IntegrityError
from tenacity import retry, retry_if_not_exception_type, stop_after_attempt, wait_exponential

from petstyle.blob.client import get_output_blob_path
from petstyle.blob.store import ArtifactStore, BlobArtifactStore
from petstyle.config import get_settings
from petstyle.db.connection import DatabaseConnection, get_db
from petstyle.db.job_service import (
    JobStateConflictError,
    complete_job,
    get_job,
    mark_job_failed,
    mark_job_processing,
)
from petstyle.db.models import Generation, generate_id
from petstyle.generation.normalize import OUTPUT_CONTENT_TYPE, normalize_output
from petstyle.generation.provider import GenerationProvider, create_provider
from petstyle.logging.config import LogContext, get_logger
from petstyle.pipeline.errors import ErrorCode, PipelineError, classify_error, normalize_error_message
from petstyle.pipeline.state import JobStatus, JobType, is_terminal
from petstyle.quota.ledger import LimitExceededError, QuotaCheckError, QuotaLedger

logger = get_logger(__name__)

LIMIT_REACHED_MESSAGE = "Daily job limit reached. Try again tomorrow."
LIMIT_CHECK_FAILED_MESSAGE = "Could not verify the user's daily limit."
PROCESSING_ERROR_PREFIX = "An error occurred while processing the job: "
INTERRUPTED_MESSAGE = "processing was interrupted before its outcome was recorded"

# Terminal writes; a lost status race or a duplicate generation is final.
_retry_terminal_write = retry(
    retry=retry_if_not_exception_type((JobStateConflictError, IntegrityError)),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
    reraise=True,
)


class JobTimeoutError(PipelineError):
    """The job did not finish within the configured time budget."""

    def __init__(self, job_id: str, timeout: float):
        super().__init__(f"Job {job_id} timed out after {timeout:g}s")
        self.job_id = job_id
        self.timeout = timeout


class JobOutcome(str, Enum):
    """What a single invocation did with its job."""

    DONE = "done"
    ERROR = "error"
    LIMIT_REACHED = "limit_reached"
    SKIPPED = "skipped"
    REJECTED = "rejected"
    MISSING = "missing"
    # Job state could not be read or written; the notification should be redelivered.
    DEFERRED = "deferred"


class JobCreatedPayload(BaseModel):
    """Snapshot of the job record carried by a job-created notification.

    Accepts the snake_case names written by ``submit_job`` and the field names
    of the mobile client's job document (``userId``, ``type``,
    ``inputImagePath``).
    """

    model_config = ConfigDict(extra="ignore")

    user_id: str = Field(validation_alias=AliasChoices("user_id", "userId"), min_length=1)
    job_type: JobType = Field(validation_alias=AliasChoices("job_type", "jobType", "type"))
    input_ref: str = Field(
        validation_alias=AliasChoices("input_ref", "inputRef", "inputImagePath"),
        min_length=1,
    )
    style: str = ""
    status: JobStatus | None = None


@dataclass
class _ProducedOutput:
    generation_id: str
    output_ref: str


class PipelineOrchestrator:
    """Drives job-created notifications through the generation pipeline."""

    def __init__(
        self,
        db: DatabaseConnection | None = None,
        ledger: QuotaLedger | None = None,
        store: ArtifactStore | None = None,
        provider: GenerationProvider | None = None,
        timeout: float | None = None,
        max_size: int | None = None,
    ):
        """Initialize the orchestrator.

        Args:
            db: Database connection; defaults to the global one.
            ledger: Quota ledger; defaults to one on ``db``.
            store: Artifact store; defaults to the configured blob container.
            provider: Generation provider; defaults to ``PIPELINE_PROVIDER``.
            timeout: Seconds allowed for download, generation and upload.
            max_size: Longest edge of normalized output images.
        """
        settings = get_settings()
        self._db = db or get_db()
        self._ledger = ledger or QuotaLedger(db=self._db)
        self._store = store or BlobArtifactStore()
        self._provider = provider or create_provider()
        self._timeout = timeout if timeout is not None else settings.pipeline.job_timeout_seconds
        self._max_size = max_size if max_size is not None else settings.pipeline.output_max_size

    async def handle_job_created(
        self,
        job_id: str,
        payload: object,
        recover_processing: bool = False,
    ) -> JobOutcome:
        """Process one job-created notification.

        Never raises for failures of the job itself; those are recorded on
        the job record and reported through the returned outcome.

        Args:
            job_id: ID of the created job.
            payload: Snapshot of the job record at creation time.
            recover_processing: Set on redeliveries of a deferred
                notification. A job found in ``processing`` is then one whose
                outcome could not be recorded, and is moved to ``error``.

        Returns:
            The outcome of this invocation.
        """
        with LogContext(job_id=job_id):
            try:
                job = JobCreatedPayload.model_validate(payload)
            except ValidationError as e:
                logger.error("Rejected malformed job payload", errors=e.errors(include_url=False))
                return JobOutcome.REJECTED

            with LogContext(user_id=job.user_id, job_type=job.job_type.value, style=job.style):
                return await self._handle(job_id, job, recover_processing)

    async def _handle(
        self,
        job_id: str,
        job: JobCreatedPayload,
        recover_processing: bool = False,
    ) -> JobOutcome:
        if job.status is not None and job.status != JobStatus.QUEUED:
            logger.info("Job was not created as queued, skipping", status=job.status.value)
            return JobOutcome.SKIPPED

        try:
            record = await get_job(job_id, db=self._db)
        except Exception:
            logger.exception("Failed to load job")
            return JobOutcome.DEFERRED

        if record is None:
            logger.warning("Job record not found")
            return JobOutcome.MISSING

        try:
            current = JobStatus(record.status)
        except ValueError:
            logger.warning("Job has an unknown status, skipping", status=record.status)
            return JobOutcome.SKIPPED

        if is_terminal(current):
            logger.info("Job already finished, ignoring redelivery", status=current.value)
            return JobOutcome.SKIPPED
        if current == JobStatus.PROCESSING:
            if recover_processing:
                return await self._fail_interrupted(job_id)
            logger.info("Job already in progress, ignoring redelivery")
            return JobOutcome.SKIPPED

        try:
            await self._ledger.consume(job.user_id)
        except LimitExceededError:
            return await self._fail_queued(job_id, ErrorCode.LIMIT_REACHED, LIMIT_REACHED_MESSAGE)
        except QuotaCheckError as e:
            logger.error("Quota check failed", error=str(e))
            return await self._fail_queued(
                job_id, ErrorCode.LIMIT_CHECK_FAILED, LIMIT_CHECK_FAILED_MESSAGE
            )

        try:
            claimed = await mark_job_processing(job_id, db=self._db)
        except Exception:
            logger.exception("Failed to claim job")
            await self._refund(job.user_id)
            return JobOutcome.DEFERRED

        if not claimed:
            logger.info("Job claimed by another invocation, releasing quota")
            await self._refund(job.user_id)
            return JobOutcome.SKIPPED

        try:
            produced = await self._run_with_timeout(job_id, job)
            await self._record_done(
                job_id,
                Generation(
                    generation_id=produced.generation_id,
                    user_id=job.user_id,
                    job_id=job_id,
                    input_ref=job.input_ref,
                    output_ref=produced.output_ref,
                    job_type=job.job_type.value,
                    style=job.style,
                    title=f"Stylized {job.style}",
                ),
            )
        except Exception as e:
            return await self._fail_processing(job_id, job.user_id, e)

        logger.info("Job done", generation_id=produced.generation_id)
        return JobOutcome.DONE

    async def _run_with_timeout(self, job_id: str, job: JobCreatedPayload) -> _ProducedOutput:
        try:
            return await asyncio.wait_for(self._produce(job), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise JobTimeoutError(job_id, self._timeout) from e

    async def _produce(self, job: JobCreatedPayload) -> _ProducedOutput:
        input_bytes = await self._store.download(job.input_ref)
        logger.info("Downloaded input", input_ref=job.input_ref, size_bytes=len(input_bytes))

        generated = await self._provider.generate(input_bytes, job.job_type, job.style)
        output = normalize_output(generated, job.job_type, max_size=self._max_size)

        generation_id = generate_id()
        output_ref = get_output_blob_path(job.user_id, generation_id)
        await self._store.upload(output_ref, output, OUTPUT_CONTENT_TYPE)
        logger.info("Uploaded output", output_ref=output_ref, size_bytes=len(output))

        return _ProducedOutput(generation_id=generation_id, output_ref=output_ref)

    async def _fail_queued(self, job_id: str, code: ErrorCode, message: str) -> JobOutcome:
        try:
            await mark_job_failed(job_id, code, message, expected=JobStatus.QUEUED, db=self._db)
        except Exception:
            logger.exception("Failed to record quota failure", error_code=code.value)
            return JobOutcome.DEFERRED
        if code == ErrorCode.LIMIT_REACHED:
            return JobOutcome.LIMIT_REACHED
        return JobOutcome.ERROR

    async def _fail_processing(self, job_id: str, user_id: str, error: Exception) -> JobOutcome:
        code = classify_error(error)
        cause = normalize_error_message(error)
        logger.error(
            "Job processing failed",
            error_code=code.value,
            error=cause,
            error_type=type(error).__name__,
        )

        await self._refund(user_id)

        try:
            await self._record_failure(job_id, code, PROCESSING_ERROR_PREFIX + cause)
        except Exception:
            logger.exception("Failed to record job failure", error_code=code.value)
            return JobOutcome.DEFERRED
        return JobOutcome.ERROR

    async def _fail_interrupted(self, job_id: str) -> JobOutcome:
        # The interrupted run already settled its quota unit
        logger.warning("Job left in processing by an earlier delivery, marking failed")
        try:
            failed = await self._record_failure(
                job_id,
                ErrorCode.JOB_PROCESSING_ERROR,
                PROCESSING_ERROR_PREFIX + INTERRUPTED_MESSAGE,
            )
        except Exception:
            logger.exception("Failed to record interrupted job")
            return JobOutcome.DEFERRED
        if not failed:
            logger.info("Job left processing concurrently, nothing to recover")
            return JobOutcome.SKIPPED
        return JobOutcome.ERROR

    @_retry_terminal_write
    async def _record_done(self, job_id: str, generation: Generation) -> None:
        await complete_job(job_id, generation, db=self._db)

    @_retry_terminal_write
    async def _record_failure(self, job_id: str, code: ErrorCode, message: str) -> bool:
        return await mark_job_failed(job_id, code, message, db=self._db)

    async def _refund(self, user_id: str) -> None:
        try:
            await self._ledger.refund(user_id)
        except Exception as e:
            logger.warning("Quota refund failed", error=str(e))
