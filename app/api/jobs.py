"""Integrity scan jobs. Admin only."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlmodel import Session, select

from app.api.deps import get_actor_id, respond
from app.database import get_session
from app.models import Flag, Run
from app.mutation.rows import is_admin, require_actor
from app.ontology import JobStatus, JobType
from app.results import NotFoundError, PermissionDenied, run_guarded
from app.worker.tasks import enqueue_task, run_validation

router = APIRouter()


def _require_admin(session: Session, actor_id: Optional[UUID]) -> None:
    if not is_admin(require_actor(session, actor_id)):
        raise PermissionDenied("Integrity scans are restricted to admins")


def _summary(run: Run) -> dict:
    return {
        "run_id": str(run.run_id),
        "job_type": run.job_type.value,
        "status": run.status.value,
        "created_at": run.created_at.isoformat(),
        "completed_at": run.completed_at.isoformat() if run.completed_at else None,
    }


def _get_run(session: Session, run_id: UUID) -> Run:
    run = session.get(Run, run_id)
    if run is None:
        raise NotFoundError(f"Job {run_id} not found", run_id=str(run_id))
    return run


def _start(session: Session, actor_id: Optional[UUID]) -> dict:
    _require_admin(session, actor_id)
    run = Run(job_type=JobType.VALIDATE_TREE, config={"requested_by": str(actor_id)})
    session.add(run)
    # The worker looks the run up by id, so it must be visible before enqueueing
    session.commit()
    job_id = enqueue_task(run_validation, str(run.run_id))
    return {"run_id": str(run.run_id), "job_id": job_id, "status": JobStatus.QUEUED.value}


def _status(session: Session, run_id: UUID, actor_id: Optional[UUID]) -> dict:
    _require_admin(session, actor_id)
    run = _get_run(session, run_id)
    return {
        **_summary(run),
        "started_at": run.started_at.isoformat() if run.started_at else None,
        "config": run.config,
        "result_summary": run.result_summary,
        "error_message": run.error_message,
    }


def _list(session: Session, limit: int, actor_id: Optional[UUID]) -> dict:
    _require_admin(session, actor_id)
    runs = session.exec(select(Run).order_by(Run.created_at.desc()).limit(limit)).all()
    return {"jobs": [_summary(run) for run in runs], "total": len(runs)}


def _delete(session: Session, run_id: UUID, actor_id: Optional[UUID]) -> dict:
    _require_admin(session, actor_id)
    session.delete(_get_run(session, run_id))
    return {"run_id": str(run_id)}


def _flags(session: Session, include_resolved: bool, actor_id: Optional[UUID]) -> dict:
    _require_admin(session, actor_id)
    statement = select(Flag).order_by(Flag.created_at.desc())
    if not include_resolved:
        statement = statement.where(Flag.is_resolved == False)  # noqa: E712
    flags = session.exec(statement).all()
    return {
        "flags": [flag.model_dump(mode="json") for flag in flags],
        "total": len(flags),
    }


@router.post("/validate")
async def start_validation(
    session: Session = Depends(get_session),
    actor_id: Optional[UUID] = Depends(get_actor_id),
) -> JSONResponse:
    """
    Queue a tree integrity scan.

    Findings are stored as flags; nothing is repaired automatically.
    """
    return respond(run_guarded(session, _start, session, actor_id, message="Validation job queued"), 202)


@router.get("/flags")
async def list_flags(
    include_resolved: bool = False,
    session: Session = Depends(get_session),
    actor_id: Optional[UUID] = Depends(get_actor_id),
) -> JSONResponse:
    return respond(run_guarded(session, _flags, session, include_resolved, actor_id))


@router.get("")
async def list_jobs(
    limit: int = Query(default=50, ge=1, le=500),
    session: Session = Depends(get_session),
    actor_id: Optional[UUID] = Depends(get_actor_id),
) -> JSONResponse:
    """List recent scans, newest first."""
    return respond(run_guarded(session, _list, session, limit, actor_id))


@router.get("/{run_id}")
async def get_job_status(
    run_id: UUID,
    session: Session = Depends(get_session),
    actor_id: Optional[UUID] = Depends(get_actor_id),
) -> JSONResponse:
    return respond(run_guarded(session, _status, session, run_id, actor_id))


@router.delete("/{run_id}")
async def delete_job(
    run_id: UUID,
    session: Session = Depends(get_session),
    actor_id: Optional[UUID] = Depends(get_actor_id),
) -> JSONResponse:
    """Delete a finished or failed scan record."""
    return respond(run_guarded(session, _delete, session, run_id, actor_id, message="Job deleted"))
