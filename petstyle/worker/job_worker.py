"""Worker that runs the generation pipeline for job-created notifications."""

from dataclasses import dataclass, field
from typing import Any

from petstyle.blob.client import get_blob_client
from petstyle.db.connection import get_db
from petstyle.pipeline.orchestrator import JobOutcome, PipelineOrchestrator
from petstyle.worker.base_worker import BaseWorker, WorkerResult, run_worker


@dataclass
class JobCreatedMessage:
    """Message payload for job-created notifications."""

    job_id: str
    correlation_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    retry_count: int = 0


class ProcessJobWorker(BaseWorker[JobCreatedMessage]):
    """Worker that hands job-created notifications to the orchestrator.

    Outcomes are recorded on the job itself, so every outcome except
    ``deferred`` settles the message.
    """

    def __init__(self, orchestrator: PipelineOrchestrator | None = None, **kwargs: Any):
        super().__init__(**kwargs)
        self._orchestrator = orchestrator

    @property
    def queue_name(self) -> str:
        """Return the queue name."""
        return self._settings.queue.job_created_queue

    @property
    def orchestrator(self) -> PipelineOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = PipelineOrchestrator()
        return self._orchestrator

    def parse_message(self, raw_message: dict[str, Any]) -> JobCreatedMessage:
        """Parse raw message to JobCreatedMessage."""
        job_id = raw_message["job_id"]
        if not job_id:
            raise ValueError("job_id is empty")
        payload = raw_message.get("payload") or {}
        if not isinstance(payload, dict):
            raise ValueError("payload must be an object")
        return JobCreatedMessage(
            job_id=str(job_id),
            correlation_id=raw_message.get("correlation_id") or "unknown",
            payload=payload,
            retry_count=raw_message.get("retry_count", 0),
        )

    async def process_message(self, message: JobCreatedMessage, correlation_id: str) -> WorkerResult:
        """Run the pipeline for one job.

        A requeued message means an earlier delivery ended without settling,
        so a job it left in ``processing`` is recovered rather than skipped.
        """
        outcome = await self.orchestrator.handle_job_created(
            message.job_id,
            message.payload,
            recover_processing=message.retry_count > 0,
        )

        if outcome == JobOutcome.DEFERRED:
            return WorkerResult.failed(
                RuntimeError(f"Job {message.job_id} state could not be recorded"),
            )
        return WorkerResult.success(
            message=f"Job {message.job_id}: {outcome.value}",
            data={"outcome": outcome.value},
        )

    async def run(self) -> None:
        """Check the database, run the poll loop, then release connections."""
        db = get_db()
        await db.connect()
        try:
            await super().run()
        finally:
            self.queue_client.close()
            get_blob_client().close()
            await db.close()


def main():
    """Run the job worker."""
    worker = ProcessJobWorker()
    run_worker(worker)


if __name__ == "__main__":
    main()
