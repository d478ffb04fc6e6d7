"""Health check endpoint — verifies backend + Redis connectivity."""

from fastapi import APIRouter

from mutate.core import redis_client, task_queue

router = APIRouter()


@router.get("/health")
async def health_check():
    """Check backend status, Redis connectivity and queue depth."""
    redis_ok = redis_client.check_connection()

    queue = None
    if redis_ok:
        try:
            queue = task_queue.queue_stats()
        except Exception:
            redis_ok = False

    return {
        "status": "ok" if redis_ok else "degraded",
        "services": {
            "redis": "ok" if redis_ok else "error",
        },
        "queue": queue,
    }
