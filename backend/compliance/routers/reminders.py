"""Reminder job endpoints: status, manual controls and the sweep trigger."""
from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..domain_errors import NotFoundError
from ..notifier import Notifier, get_notifier
from ..problem_details import build_problem_details_response
from ..schemas import ControlResponse, DispatchOutcomeResponse, ReminderJobResponse, SweepResponse
from ..services.requirement_state import now_utc
from ..use_cases.dispatcher import run_reminder_sweep
from ..use_cases.reminder_controls import (
    ControlResult,
    pause_reminders,
    resume_reminders,
    send_reminder_now,
    stop_reminders,
)
from ..use_cases.reminder_jobs import get_current_reminder_job

router = APIRouter(tags=["reminders"])


def _control_response(result: ControlResult):
    if not result.ok:
        return build_problem_details_response(result.error)
    return ControlResponse(
        ok=True,
        action=result.action,
        job=ReminderJobResponse.model_validate(result.job) if result.job is not None else None,
        outcome=DispatchOutcomeResponse.model_validate(result.outcome) if result.outcome is not None else None,
    )


@router.get("/requirements/{requirement_id}/reminder", response_model=ReminderJobResponse)
def get_reminder(requirement_id: UUID, db: Session = Depends(get_db)):
    """Open reminder job for the requirement, or the most recent one."""
    job = get_current_reminder_job(db=db, requirement_id=requirement_id)
    if job is None:
        raise NotFoundError(code="REMINDER_JOB_NOT_FOUND", message="No reminder job exists for this requirement")
    return job


@router.post("/requirements/{requirement_id}/reminder/pause", response_model=ControlResponse)
def pause_reminder(requirement_id: UUID, db: Session = Depends(get_db)):
    return _control_response(pause_reminders(db=db, requirement_id=requirement_id, now=now_utc()))


@router.post("/requirements/{requirement_id}/reminder/resume", response_model=ControlResponse)
def resume_reminder(requirement_id: UUID, db: Session = Depends(get_db)):
    return _control_response(resume_reminders(db=db, requirement_id=requirement_id, now=now_utc()))


@router.post("/requirements/{requirement_id}/reminder/stop", response_model=ControlResponse)
def stop_reminder(requirement_id: UUID, db: Session = Depends(get_db)):
    return _control_response(stop_reminders(db=db, requirement_id=requirement_id, now=now_utc()))


@router.post("/requirements/{requirement_id}/reminder/send-now", response_model=ControlResponse)
def send_reminder(
    requirement_id: UUID,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    """Send one reminder immediately; counts as an attempt."""
    return _control_response(
        send_reminder_now(db=db, requirement_id=requirement_id, notifier=notifier, now=now_utc())
    )


@router.post("/reminders/sweep", response_model=SweepResponse)
def trigger_sweep(
    batch_size: Optional[int] = Query(None, ge=1, le=1000),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    """Run one reminder sweep now (the worker runs the same sweep on a schedule)."""
    result = run_reminder_sweep(db=db, notifier=notifier, now=now_utc(), batch_size=batch_size)
    return SweepResponse(**result.as_dict())
