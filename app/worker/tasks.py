"""
RQ jobs.

Integrity scans record their lifecycle on a ``Run`` row; push deliveries are
plain jobs whose failures RQ keeps in its failed registry.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional
from uuid import UUID

from redis import Redis
from rq import Queue
from sqlmodel import Session

from app.config import settings
from app.database import engine
from app.models import Run
from app.notifications.push import send_push
from app.ontology import JobStatus
from app.validation.validator import Validator

logger = logging.getLogger(__name__)

QUEUE_NAME = "nasab"

redis_conn = Redis.from_url(settings.redis_url)
task_queue = Queue(QUEUE_NAME, connection=redis_conn)


@contextmanager
def tracked_run(session: Session, run_id: str) -> Iterator[Optional[Run]]:
    """Mark a run running, then completed or failed depending on the block."""
    run = session.get(Run, UUID(run_id))
    if run is None:
        logger.warning("Run %s vanished before the worker picked it up", run_id)
        yield None
        return

    run.status = JobStatus.RUNNING
    run.started_at = datetime.utcnow()
    session.add(run)
    session.commit()

    try:
        yield run
    except Exception as exc:
        session.rollback()
        run.status = JobStatus.FAILED
        run.error_message = str(exc)
        run.completed_at = datetime.utcnow()
        session.add(run)
        session.commit()
        logger.exception("Run %s failed", run_id)
        raise

    run.status = JobStatus.COMPLETED
    run.completed_at = datetime.utcnow()
    session.add(run)
    session.commit()


def run_validation(run_id: str) -> dict:
    """Scan the whole tree and store the flag summary on the run."""
    with Session(engine) as session:
        with tracked_run(session, run_id) as run:
            if run is None:
                return {"error": "Run not found"}
            summary = Validator(session).validate_all()
            run.result_summary = summary
            logger.info("Integrity scan %s raised %d flags", run_id, summary["flags_created"])
            return summary


def deliver_notification(payload: dict) -> dict:
    return send_push(payload)


def enqueue_task(task_func, *args, **kwargs) -> str:
    """Put a job on the nasab queue and return its id."""
    job = task_queue.enqueue(task_func, *args, **kwargs, job_timeout=settings.worker_timeout)
    return job.id
