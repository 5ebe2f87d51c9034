"""Manual reminder controls keyed by requirement id.

Callers outside the core think in requirements, not jobs. Each control
returns a `ControlResult` instead of raising, so the UI can show the exact
reason an action was refused.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from ..domain_errors import DomainError, NotFoundError, NotifierFailure
from ..models import ReminderJob
from ..notifier import Notifier
from .dispatcher import DispatchOutcome, send_immediate_reminder_use_case
from .reminder_jobs import (
    get_current_reminder_job,
    pause_reminder_job_use_case,
    resume_reminder_job_use_case,
    stop_reminder_job_use_case,
)


@dataclass(frozen=True)
class ControlResult:
    ok: bool
    action: str
    job: ReminderJob | None = None
    outcome: DispatchOutcome | None = None
    error: DomainError | None = None


def _job_for_requirement(db: Session, requirement_id: UUID) -> ReminderJob:
    job = get_current_reminder_job(db=db, requirement_id=requirement_id)
    if job is None:
        raise NotFoundError(
            code="REMINDER_JOB_NOT_FOUND",
            message="No reminder job exists for this requirement",
            details={"requirementId": str(requirement_id)},
        )
    return job


def pause_reminders(*, db: Session, requirement_id: UUID, now: datetime) -> ControlResult:
    try:
        job = _job_for_requirement(db, requirement_id)
        job = pause_reminder_job_use_case(db=db, job_id=job.id, now=now)
    except DomainError as exc:
        return ControlResult(ok=False, action="pause", error=exc)
    return ControlResult(ok=True, action="pause", job=job)


def resume_reminders(*, db: Session, requirement_id: UUID, now: datetime) -> ControlResult:
    try:
        job = _job_for_requirement(db, requirement_id)
        job = resume_reminder_job_use_case(db=db, job_id=job.id, now=now)
    except DomainError as exc:
        return ControlResult(ok=False, action="resume", error=exc)
    return ControlResult(ok=True, action="resume", job=job)


def stop_reminders(*, db: Session, requirement_id: UUID, now: datetime) -> ControlResult:
    try:
        job = _job_for_requirement(db, requirement_id)
        job = stop_reminder_job_use_case(db=db, job_id=job.id, now=now)
    except DomainError as exc:
        return ControlResult(ok=False, action="stop", error=exc)
    return ControlResult(ok=True, action="stop", job=job)


def send_reminder_now(
    *,
    db: Session,
    requirement_id: UUID,
    notifier: Notifier,
    now: datetime,
) -> ControlResult:
    try:
        outcome = send_immediate_reminder_use_case(
            db=db,
            requirement_id=requirement_id,
            notifier=notifier,
            now=now,
        )
    except DomainError as exc:
        return ControlResult(ok=False, action="send_now", error=exc)
    except NotifierFailure as exc:
        return ControlResult(
            ok=False,
            action="send_now",
            job=get_current_reminder_job(db=db, requirement_id=requirement_id),
            error=DomainError(
                code="NOTIFIER_FAILURE",
                http_status=502,
                message=f"Reminder could not be sent: {exc}",
            ),
        )
    job = get_current_reminder_job(db=db, requirement_id=requirement_id)
    return ControlResult(ok=True, action="send_now", job=job, outcome=outcome)
