"""Run an RQ worker for the audio processing queue.

Usage: python -m app.scripts.worker
"""

import logging

from redis import Redis
from rq import Worker

from app.config import get_settings


def main() -> None:
    settings = get_settings()
    logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logger = logging.getLogger("allo_ingest")

    for warning in settings.validate():
        logger.warning(warning)

    connection = Redis.from_url(settings.REDIS_URL)
    logger.info("Starting worker on queue %s (redis=%s)", settings.QUEUE_NAME, settings.REDIS_URL)
    worker = Worker([settings.QUEUE_NAME], connection=connection)
    worker.work()


if __name__ == "__main__":
    main()
