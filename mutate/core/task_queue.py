"""Job queue — RQ on Redis.

Queued transformations are enqueued as calls to
``mutate.core.job_service.process_task`` with the task payload. Retry and
timeout policy belong to RQ, not to the interpreter.
"""

import logging
from typing import Optional

from rq import Queue

from mutate.core.config import settings
from mutate.core.models import TransformationTask
from mutate.core.redis_client import get_queue_connection

logger = logging.getLogger(__name__)

PROCESS_TASK = "mutate.core.job_service.process_task"

_queue: Optional[Queue] = None


def get_queue() -> Queue:
    global _queue
    if _queue is None:
        _queue = Queue(settings.queue_name, connection=get_queue_connection())
    return _queue


def enqueue_transformation(task: TransformationTask) -> str:
    """Publish a task; returns the RQ job id (same as the transformation job id)."""
    queue = get_queue()
    rq_job = queue.enqueue(
        PROCESS_TASK,
        task.to_payload(),
        job_id=task.job_id,
        job_timeout=settings.job_timeout_seconds,
        result_ttl=24 * 60 * 60,
        failure_ttl=7 * 24 * 60 * 60,
    )
    logger.info(f"Enqueued job {task.job_id} on queue '{queue.name}'")
    return rq_job.id


def queue_stats() -> dict:
    queue = get_queue()
    return {
        "name": queue.name,
        "queued": queue.count,
        "failed": queue.failed_job_registry.count,
        "started": queue.started_job_registry.count,
    }
