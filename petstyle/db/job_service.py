"""Job record persistence and status transitions.

Status changes are conditional updates (``WHERE status = <expected>``) so a
redelivered or duplicated invocation can never move a job backwards or
overwrite a terminal outcome.
"""

from sqlalchemy import select, update

from petstyle.db.connection import DatabaseConnection, get_db
from petstyle.db.models import Generation, Job, utcnow
from petstyle.logging.config import get_logger
from petstyle.pipeline.errors import ErrorCode, PipelineError
from petstyle.pipeline.state import JobStatus, JobType, ensure_transition

logger = get_logger(__name__)


class JobStateConflictError(PipelineError):
    """The job was no longer in the expected status when we tried to move it."""


async def create_job(
    user_id: str,
    job_type: JobType | str,
    input_ref: str,
    style: str,
    job_id: str | None = None,
    correlation_id: str | None = None,
    db: DatabaseConnection | None = None,
) -> Job:
    """Insert a new job in the ``queued`` state.

    Args:
        user_id: Owner of the job.
        job_type: Sticker or image.
        input_ref: Blob path of the uploaded photo.
        style: Style label chosen by the user.
        job_id: Pre-allocated identifier; generated when omitted.
        correlation_id: Correlation ID for tracing.
        db: Database connection; defaults to the global one.

    Returns:
        The persisted Job.
    """
    db = db or get_db()
    job = Job(
        user_id=user_id,
        job_type=JobType(job_type).value,
        input_ref=input_ref,
        style=style,
        status=JobStatus.QUEUED.value,
        correlation_id=correlation_id,
    )
    if job_id:
        job.job_id = job_id

    async with db.session() as session:
        session.add(job)
        await session.flush()

    logger.info("Created job", job_id=job.job_id, user_id=user_id, job_type=job.job_type)
    return job


async def get_job(job_id: str, db: DatabaseConnection | None = None) -> Job | None:
    """Load a job by ID."""
    db = db or get_db()
    async with db.session() as session:
        result = await session.execute(select(Job).where(Job.job_id == job_id))
        return result.scalar_one_or_none()


async def get_generation_for_job(
    job_id: str,
    db: DatabaseConnection | None = None,
) -> Generation | None:
    """Load the generation produced by a job, if any."""
    db = db or get_db()
    async with db.session() as session:
        result = await session.execute(
            select(Generation).where(Generation.job_id == job_id)
        )
        return result.scalar_one_or_none()


async def transition_job(
    job_id: str,
    expected: JobStatus,
    target: JobStatus,
    db: DatabaseConnection | None = None,
    **fields: object,
) -> bool:
    """Move a job from ``expected`` to ``target`` if it is still in ``expected``.

    Args:
        job_id: The job ID to update.
        expected: Status the job must currently have.
        target: New status.
        db: Database connection; defaults to the global one.
        **fields: Extra columns to set together with the status.

    Returns:
        True if the job was updated, False if it was in another status.

    Raises:
        InvalidTransitionError: If ``expected -> target`` is not a legal edge.
    """
    ensure_transition(expected, target)
    db = db or get_db()
    async with db.session() as session:
        result = await session.execute(
            update(Job)
            .where(Job.job_id == job_id, Job.status == expected.value)
            .values(status=target.value, updated_at=utcnow(), **fields)
        )
        updated = result.rowcount == 1

    if updated:
        logger.info(
            "Updated job status",
            job_id=job_id,
            from_status=expected.value,
            status=target.value,
        )
    else:
        logger.warning(
            "Job not in expected status, transition skipped",
            job_id=job_id,
            expected=expected.value,
            target=target.value,
        )
    return updated


async def mark_job_processing(job_id: str, db: DatabaseConnection | None = None) -> bool:
    """Claim a queued job for processing."""
    return await transition_job(job_id, JobStatus.QUEUED, JobStatus.PROCESSING, db=db)


async def mark_job_failed(
    job_id: str,
    code: ErrorCode,
    message: str,
    expected: JobStatus = JobStatus.PROCESSING,
    db: DatabaseConnection | None = None,
) -> bool:
    """Move a job to ``error`` with a classified code and message."""
    return await transition_job(
        job_id,
        expected,
        JobStatus.ERROR,
        db=db,
        error_code=code.value,
        error_message=message,
    )


async def complete_job(
    job_id: str,
    generation: Generation,
    db: DatabaseConnection | None = None,
) -> None:
    """Persist the generation and mark the job done in a single transaction.

    Raises:
        JobStateConflictError: If the job is no longer ``processing``; the
            generation insert is rolled back with it.
    """
    ensure_transition(JobStatus.PROCESSING, JobStatus.DONE)
    db = db or get_db()
    async with db.session() as session:
        session.add(generation)
        await session.flush()
        result = await session.execute(
            update(Job)
            .where(Job.job_id == job_id, Job.status == JobStatus.PROCESSING.value)
            .values(
                status=JobStatus.DONE.value,
                result_ref=generation.generation_id,
                updated_at=utcnow(),
            )
        )
        if result.rowcount != 1:
            raise JobStateConflictError(f"Job {job_id} is no longer processing")

    logger.info(
        "Job completed",
        job_id=job_id,
        generation_id=generation.generation_id,
    )
