"""Processing job submission over Redis + RQ."""

import logging
from typing import Protocol

from redis import Redis
from redis.exceptions import RedisError
from rq import Queue
from rq.exceptions import NoSuchJobError
from rq.job import Job, JobStatus

from app.config import get_settings
from app.errors import GatewayUnavailableError

logger = logging.getLogger("allo_ingest")

PROCESS_JOB_FUNC = "app.worker.process_message_job"
_IN_FLIGHT = {JobStatus.QUEUED, JobStatus.STARTED, JobStatus.DEFERRED, JobStatus.SCHEDULED}


def job_id_for(message_id: str) -> str:
    """One job id per message, so resubmission replaces rather than duplicates."""
    return f"audio-{message_id}"


class JobQueue(Protocol):
    def enqueue_processing(self, message_id: str, scope_id: str) -> None: ...

    def retry(self, message_id: str, scope_id: str) -> None: ...


class RQJobQueue:
    """Submits audio processing jobs to an RQ queue."""

    def __init__(self, connection: Redis, queue_name: str, job_timeout: int = 900) -> None:
        self.connection = connection
        self.queue = Queue(queue_name, connection=connection)
        self.job_timeout = job_timeout

    def enqueue_processing(self, message_id: str, scope_id: str) -> None:
        try:
            job = self.queue.enqueue(
                PROCESS_JOB_FUNC,
                message_id,
                scope_id,
                job_id=job_id_for(message_id),
                job_timeout=self.job_timeout,
                result_ttl=24 * 3600,
                failure_ttl=7 * 24 * 3600,
            )
        except RedisError as e:
            logger.error("Failed to enqueue processing job for message %s: %s", message_id, e)
            raise GatewayUnavailableError(f"Job queue unavailable: {e}") from e
        logger.info("Enqueued job %s on queue %s", job.id, self.queue.name)

    def retry(self, message_id: str, scope_id: str) -> None:
        """Resubmit the job for a message.

        A failed job is requeued in place, an in-flight job is left alone, and
        a finished or expired job is enqueued afresh.
        """
        job_id = job_id_for(message_id)
        try:
            try:
                job = Job.fetch(job_id, connection=self.connection)
            except NoSuchJobError:
                job = None

            if job is None:
                logger.info("Job %s no longer exists, enqueueing a new one", job_id)
            else:
                status = job.get_status(refresh=True)
                if status == JobStatus.FAILED:
                    job.requeue()
                    logger.info("Requeued failed job %s", job_id)
                    return
                if status in _IN_FLIGHT:
                    logger.warning("Job %s is already %s, not resubmitting", job_id, status)
                    return
                logger.info("Job %s is %s, enqueueing a new run", job_id, status)
        except RedisError as e:
            logger.error("Failed to retry job %s: %s", job_id, e)
            raise GatewayUnavailableError(f"Job queue unavailable: {e}") from e

        self.enqueue_processing(message_id, scope_id)


_job_queue: JobQueue | None = None


def get_job_queue() -> JobQueue:
    """Get singleton job queue bound to the configured Redis instance."""
    global _job_queue
    if _job_queue is None:
        settings = get_settings()
        _job_queue = RQJobQueue(
            Redis.from_url(settings.REDIS_URL),
            settings.QUEUE_NAME,
            job_timeout=settings.JOB_TIMEOUT_SECONDS,
        )
    return _job_queue
