"""Job store — Redis persistence for transformation jobs.

Each job is one JSON document under ``mutate:job:{id}``; a per-organization
sorted set indexes jobs by creation time. Status changes go through
``transition``, which enforces the one-directional state machine with an
optimistic WATCH/MULTI transaction so two owners can never both move a job.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

import redis as redis_lib

from mutate.core.errors import InvalidTransition, JobNotFound, MutateError
from mutate.core.models import JobModel, JobStatus
from mutate.core.redis_client import get_redis_client

logger = logging.getLogger(__name__)

KEY_PREFIX = "mutate"

# Creation may start a job in PENDING (queued) or PROCESSING (synchronous).
INITIAL_STATUSES = {JobStatus.PENDING, JobStatus.PROCESSING}

ALLOWED_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    # PENDING -> FAILED covers a queue publish failure before any worker saw the job.
    JobStatus.PENDING: {JobStatus.PROCESSING, JobStatus.FAILED},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


def _job_key(job_id: str) -> str:
    return f"{KEY_PREFIX}:job:{job_id}"


def _org_index_key(organization_id: str) -> str:
    return f"{KEY_PREFIX}:org:{organization_id}:jobs"


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def create_job(job: JobModel) -> JobModel:
    """Persist a new job. A job id is never reused."""
    if job.status not in INITIAL_STATUSES:
        raise InvalidTransition(job.id, None, job.status.value)

    client = get_redis_client()
    created = client.set(_job_key(job.id), job.model_dump_json(), nx=True)
    if not created:
        raise MutateError(f"Job '{job.id}' already exists")
    client.zadd(_org_index_key(job.organization_id), {job.id: job.created_at.timestamp()})
    logger.info(f"Created job {job.id} in status {job.status.value}")
    return job


def get_job(job_id: str, organization_id: Optional[str] = None) -> Optional[JobModel]:
    """Fetch a job; with organization_id, jobs of other organizations are invisible."""
    raw = get_redis_client().get(_job_key(job_id))
    if raw is None:
        return None
    job = JobModel.model_validate_json(raw)
    if organization_id is not None and job.organization_id != organization_id:
        return None
    return job


def list_jobs(organization_id: str, limit: int = 50) -> list[JobModel]:
    """Most recent jobs first."""
    client = get_redis_client()
    job_ids = client.zrevrange(_org_index_key(organization_id), 0, limit - 1)
    if not job_ids:
        return []
    raws = client.mget([_job_key(j) for j in job_ids])
    return [JobModel.model_validate_json(r) for r in raws if r is not None]


def transition(job_id: str, target: JobStatus, **fields) -> JobModel:
    """Atomically move a job to ``target`` and set extra fields.

    Terminal timestamps are filled in automatically. Raises JobNotFound or
    InvalidTransition.
    """
    client = get_redis_client()
    key = _job_key(job_id)
    now = datetime.now(timezone.utc)

    with client.pipeline() as pipe:
        while True:
            try:
                pipe.watch(key)
                raw = pipe.get(key)
                if raw is None:
                    raise JobNotFound(job_id)
                job = JobModel.model_validate_json(raw)
                if not can_transition(job.status, target):
                    raise InvalidTransition(job_id, job.status.value, target.value)

                update = dict(fields)
                update["status"] = target
                if target == JobStatus.PROCESSING and job.started_at is None:
                    update.setdefault("started_at", now)
                if target.is_terminal:
                    update.setdefault("completed_at", now)
                updated = job.model_copy(update=update)

                pipe.multi()
                pipe.set(key, updated.model_dump_json())
                pipe.execute()
                logger.info(f"Job {job_id}: {job.status.value} -> {target.value}")
                return updated
            except redis_lib.WatchError:
                logger.debug(f"Job {job_id} changed during transition, retrying")
                continue
