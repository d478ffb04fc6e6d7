"""RQ worker entry point for queued transformations.

Run with ``python -m mutate.worker``.
"""

import logging

from rq import Worker

from mutate.core.config import settings
from mutate.core.redis_client import get_queue_connection
from mutate.core.task_queue import get_queue

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def main() -> None:
    queue = get_queue()
    logger.info(f"Starting worker on queue '{settings.queue_name}' ({settings.redis_host}:{settings.redis_port})")
    worker = Worker([queue], connection=get_queue_connection())
    worker.work()


if __name__ == "__main__":
    main()
