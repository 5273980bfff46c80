"""Job submission.

Stores the uploaded photo, inserts the ``queued`` job and publishes the
job-created notification that starts the pipeline.
"""

import asyncio
from typing import Any
from uuid import uuid4

from petstyle.blob.client import get_input_blob_path
from petstyle.blob.store import ArtifactStore, BlobArtifactStore
from petstyle.db.connection import DatabaseConnection
from petstyle.db.job_service import create_job
from petstyle.db.models import Job, generate_id
from petstyle.logging.config import get_correlation_id, get_logger
from petstyle.pipeline.state import JobStatus, JobType
from petstyle.queue.client import QueueClient, get_queue_client

logger = get_logger(__name__)

INPUT_CONTENT_TYPE = "image/jpeg"


def build_job_created_message(job: Job) -> dict[str, Any]:
    """Queue message announcing a newly created job."""
    return {
        "job_id": job.job_id,
        "correlation_id": job.correlation_id,
        "payload": {
            "user_id": job.user_id,
            "job_type": job.job_type,
            "input_ref": job.input_ref,
            "style": job.style,
            "status": job.status,
        },
    }


async def submit_job(
    user_id: str,
    job_type: JobType | str,
    style: str,
    input_bytes: bytes | None = None,
    input_ref: str | None = None,
    db: DatabaseConnection | None = None,
    store: ArtifactStore | None = None,
    queue_client: QueueClient | None = None,
    queue_name: str | None = None,
) -> Job:
    """Create a job and notify the pipeline.

    Args:
        user_id: Owner of the job.
        job_type: Sticker or image.
        style: Style label chosen by the user.
        input_bytes: Photo to upload to the job's input path.
        input_ref: Existing artifact to use instead of uploading.
        db: Database connection; defaults to the global one.
        store: Artifact store; defaults to the configured blob container.
        queue_client: Queue client; defaults to the global one.
        queue_name: Queue to publish to; defaults to ``JOB_CREATED_QUEUE``.

    Returns:
        The persisted ``queued`` Job.

    Raises:
        ValueError: If neither or both of ``input_bytes`` and ``input_ref``
            are given.
    """
    if (input_bytes is None) == (input_ref is None):
        raise ValueError("Exactly one of input_bytes or input_ref is required")

    job_type = JobType(job_type)
    job_id = generate_id()
    correlation_id = get_correlation_id() or str(uuid4())

    if input_bytes is not None:
        store = store or BlobArtifactStore()
        input_ref = get_input_blob_path(user_id, job_id)
        await store.upload(input_ref, input_bytes, INPUT_CONTENT_TYPE)

    job = await create_job(
        user_id=user_id,
        job_type=job_type,
        input_ref=input_ref,
        style=style,
        job_id=job_id,
        correlation_id=correlation_id,
        db=db,
    )

    if queue_name is None:
        from petstyle.config import get_settings

        queue_name = get_settings().queue.job_created_queue
    queue_client = queue_client or get_queue_client()
    message_id = await asyncio.to_thread(
        queue_client.send_message,
        queue_name,
        build_job_created_message(job),
    )

    logger.info(
        "Submitted job",
        job_id=job_id,
        user_id=user_id,
        job_type=job_type.value,
        status=JobStatus.QUEUED.value,
        message_id=message_id,
    )
    return job
