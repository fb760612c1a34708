"""
RQ worker for the ``nasab`` queue.

    python -m app.worker.worker
"""

import logging

from redis import Redis
from rq import Worker

from app.config import settings
from app.worker.tasks import QUEUE_NAME

logger = logging.getLogger(__name__)


def main() -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    connection = Redis.from_url(settings.redis_url)
    logger.info("Listening on %s (%s)", QUEUE_NAME, settings.redis_url)
    Worker([QUEUE_NAME], connection=connection).work()


if __name__ == "__main__":
    main()
