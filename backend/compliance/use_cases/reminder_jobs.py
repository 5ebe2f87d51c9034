"""Reminder job scheduling use-cases.

Every state change goes through a conditional UPDATE keyed on the job's
current state (and, for sweep claims, its attempts and claim), so a manual
stop racing a sweep can never resurrect a completed job and two overlapping
sweeps can never both count the same attempt.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID, uuid4

from sqlalchemy import case, literal, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..db_types import UTCDateTime
from ..domain_errors import AlreadyExistsError, InvalidTransitionError, NotFoundError
from ..events import REMINDER_JOB_CHANGED, DomainEvent, queue_event
from ..models import AuditEvent, ReminderJob, Requirement, Subcontractor
from ..services.reminder_schedule import next_run_after
from ..services.requirement_state import (
    REMINDER_ELIGIBLE_STATUSES,
    REMINDER_TERMINAL_STATUSES,
    is_reminder_eligible,
)

logger = logging.getLogger(__name__)

OPEN_JOB_STATES: tuple[str, ...] = ("active", "paused")


@dataclass(frozen=True)
class DueJob:
    """Snapshot of a due job as seen by one sweep."""

    job_id: UUID
    requirement_id: UUID
    attempts: int
    max_attempts: int
    next_run_at: datetime


def _conditional_update(db: Session, *conditions, **values) -> int:
    result = db.execute(
        update(ReminderJob)
        .where(*conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def record_reminder_job_change(db: Session, *, job_id: UUID, requirement_id: UUID, action: str, **details) -> None:
    db.add(
        AuditEvent(
            action=action,
            entity_type="reminder_job",
            entity_id=job_id,
            details={"requirementId": str(requirement_id), **details},
        )
    )
    queue_event(
        db,
        DomainEvent(
            kind=REMINDER_JOB_CHANGED,
            entity_id=job_id,
            payload={"action": action, "requirementId": str(requirement_id), **details},
        ),
    )


def _invalid_state_error(job: ReminderJob, *, action: str) -> InvalidTransitionError:
    if job.state == "completed":
        return InvalidTransitionError(
            code="REMINDER_JOB_ALREADY_COMPLETED",
            message="Reminder job already completed",
            details={"jobId": str(job.id), "action": action},
        )
    if job.state == "escalated":
        return InvalidTransitionError(
            code="REMINDER_JOB_ALREADY_ESCALATED",
            message="Reminder job already escalated; stop or recreate it",
            details={"jobId": str(job.id), "action": action},
        )
    if action == "pause":
        return InvalidTransitionError(
            code="REMINDER_JOB_ALREADY_PAUSED",
            message="Reminder job is already paused",
            details={"jobId": str(job.id), "action": action},
        )
    return InvalidTransitionError(
        code="REMINDER_JOB_NOT_PAUSED",
        message="Reminder job is not paused",
        details={"jobId": str(job.id), "action": action},
    )


def get_reminder_job_or_404(*, db: Session, job_id: UUID) -> ReminderJob:
    job = db.query(ReminderJob).filter(ReminderJob.id == job_id).first()
    if not job:
        raise NotFoundError(code="REMINDER_JOB_NOT_FOUND", message="Reminder job not found")
    return job


def get_open_reminder_job(*, db: Session, requirement_id: UUID) -> ReminderJob | None:
    return db.query(ReminderJob).filter(
        ReminderJob.requirement_id == requirement_id,
        ReminderJob.state.in_(OPEN_JOB_STATES),
    ).first()


def get_current_reminder_job(*, db: Session, requirement_id: UUID) -> ReminderJob | None:
    """Open job if any, otherwise the most recently created one."""
    job = get_open_reminder_job(db=db, requirement_id=requirement_id)
    if job is not None:
        return job
    return (
        db.query(ReminderJob)
        .filter(ReminderJob.requirement_id == requirement_id)
        .order_by(ReminderJob.created_at.desc(), ReminderJob.attempts.desc())
        .first()
    )


def build_reminder_job(*, requirement_id: UUID, now: datetime, max_attempts: int | None = None) -> ReminderJob:
    return ReminderJob(
        id=uuid4(),
        requirement_id=requirement_id,
        state="active",
        attempts=0,
        max_attempts=max_attempts or settings.REMINDER_DEFAULT_MAX_ATTEMPTS,
        escalated=False,
        next_run_at=now,
        consecutive_failures=0,
        created_at=now,
        updated_at=now,
    )


def create_reminder_job_use_case(
    *,
    db: Session,
    requirement_id: UUID,
    now: datetime,
    max_attempts: int | None = None,
) -> ReminderJob:
    """Start a reminder flow: attempts=0, state=active, first run immediately."""
    requirement = db.query(Requirement).filter(Requirement.id == requirement_id).first()
    if not requirement:
        raise NotFoundError(code="REQUIREMENT_NOT_FOUND", message="Requirement not found")
    if not is_reminder_eligible(requirement.status):
        raise InvalidTransitionError(
            code="REQUIREMENT_NOT_AWAITING_DOCUMENT",
            message=f"Reminders are only scheduled for missing or rejected documents (status: {requirement.status})",
            details={"requirementId": str(requirement_id), "status": requirement.status},
        )

    if get_open_reminder_job(db=db, requirement_id=requirement_id) is not None:
        raise AlreadyExistsError(
            code="REMINDER_JOB_ALREADY_EXISTS",
            message="An active or paused reminder job already exists for this requirement",
            details={"requirementId": str(requirement_id)},
        )

    job = build_reminder_job(requirement_id=requirement_id, now=now, max_attempts=max_attempts)
    db.add(job)
    record_reminder_job_change(db, job_id=job.id, requirement_id=requirement_id, action="reminder_created")
    try:
        db.commit()
    except IntegrityError as exc:
        # Lost the race against a concurrent create (partial unique index).
        db.rollback()
        raise AlreadyExistsError(
            code="REMINDER_JOB_ALREADY_EXISTS",
            message="An active or paused reminder job already exists for this requirement",
            details={"requirementId": str(requirement_id)},
        ) from exc
    return job


def pause_reminder_job_use_case(*, db: Session, job_id: UUID, now: datetime) -> ReminderJob:
    """active -> paused."""
    job = get_reminder_job_or_404(db=db, job_id=job_id)
    requirement_id = job.requirement_id

    updated = _conditional_update(
        db,
        ReminderJob.id == job_id,
        ReminderJob.state == "active",
        state="paused",
        updated_at=now,
    )
    if updated != 1:
        db.rollback()
        raise _invalid_state_error(get_reminder_job_or_404(db=db, job_id=job_id), action="pause")

    record_reminder_job_change(db, job_id=job_id, requirement_id=requirement_id, action="reminder_paused")
    db.commit()
    return job


def resume_reminder_job_use_case(*, db: Session, job_id: UUID, now: datetime) -> ReminderJob:
    """paused -> active, next run after a short grace window."""
    job = get_reminder_job_or_404(db=db, job_id=job_id)
    requirement_id = job.requirement_id
    next_run_at = now + timedelta(minutes=settings.REMINDER_RESUME_GRACE_MINUTES)

    updated = _conditional_update(
        db,
        ReminderJob.id == job_id,
        ReminderJob.state == "paused",
        state="active",
        next_run_at=next_run_at,
        consecutive_failures=0,
        updated_at=now,
    )
    if updated != 1:
        db.rollback()
        raise _invalid_state_error(get_reminder_job_or_404(db=db, job_id=job_id), action="resume")

    record_reminder_job_change(
        db,
        job_id=job_id,
        requirement_id=requirement_id,
        action="reminder_resumed",
        nextRunAt=next_run_at.isoformat(),
    )
    db.commit()
    return job


def stop_reminder_job_use_case(*, db: Session, job_id: UUID, now: datetime) -> ReminderJob:
    """Any non-completed state -> completed. Stopping a completed job is a no-op."""
    job = get_reminder_job_or_404(db=db, job_id=job_id)
    requirement_id = job.requirement_id

    updated = _conditional_update(
        db,
        ReminderJob.id == job_id,
        ReminderJob.state.in_(("active", "paused", "escalated")),
        state="completed",
        updated_at=now,
    )
    if updated != 1:
        # Already completed (possibly by a concurrent sweep or stop).
        db.rollback()
        return get_reminder_job_or_404(db=db, job_id=job_id)

    record_reminder_job_change(db, job_id=job_id, requirement_id=requirement_id, action="reminder_stopped")
    db.commit()
    return job


def complete_open_reminder_jobs(
    *,
    db: Session,
    requirement_id: UUID,
    now: datetime,
    reason: str,
) -> list[UUID]:
    """Complete open jobs for a requirement inside the caller's transaction."""
    job_ids = [
        row[0]
        for row in db.query(ReminderJob.id).filter(
            ReminderJob.requirement_id == requirement_id,
            ReminderJob.state.in_(OPEN_JOB_STATES),
        ).all()
    ]
    completed: list[UUID] = []
    for job_id in job_ids:
        updated = _conditional_update(
            db,
            ReminderJob.id == job_id,
            ReminderJob.state.in_(OPEN_JOB_STATES),
            state="completed",
            updated_at=now,
        )
        if updated == 1:
            completed.append(job_id)
            record_reminder_job_change(db, job_id=job_id, requirement_id=requirement_id, action="reminder_completed", reason=reason)
    return completed


def complete_jobs_for_settled_requirements(*, db: Session, now: datetime) -> list[UUID]:
    """Self-heal: open jobs whose requirement is valid/expiring/expired/hidden are completed."""
    rows = (
        db.query(ReminderJob.id, ReminderJob.requirement_id, Requirement.status)
        .join(Requirement, Requirement.id == ReminderJob.requirement_id)
        .filter(
            ReminderJob.state.in_(OPEN_JOB_STATES),
            Requirement.status.in_(REMINDER_TERMINAL_STATUSES),
        )
        .all()
    )
    completed: list[UUID] = []
    for job_id, requirement_id, requirement_status in rows:
        updated = _conditional_update(
            db,
            ReminderJob.id == job_id,
            ReminderJob.state.in_(OPEN_JOB_STATES),
            state="completed",
            updated_at=now,
        )
        if updated == 1:
            completed.append(job_id)
            record_reminder_job_change(
                db,
                job_id=job_id,
                requirement_id=requirement_id,
                action="reminder_completed",
                reason=f"requirement_{requirement_status}",
            )
    if completed:
        db.commit()
        logger.info("Auto-completed %s reminder jobs for settled requirements", len(completed))
    return completed


def find_due_reminder_jobs(*, db: Session, now: datetime, limit: int | None = None) -> list[DueJob]:
    """Active, unclaimed, due jobs for owed documents of active subcontractors."""
    complete_jobs_for_settled_requirements(db=db, now=now)

    query = (
        db.query(
            ReminderJob.id,
            ReminderJob.requirement_id,
            ReminderJob.attempts,
            ReminderJob.max_attempts,
            ReminderJob.next_run_at,
        )
        .join(Requirement, Requirement.id == ReminderJob.requirement_id)
        .join(Subcontractor, Subcontractor.id == Requirement.subcontractor_id)
        .filter(
            ReminderJob.state == "active",
            ReminderJob.next_run_at <= now,
            or_(ReminderJob.claim_token.is_(None), ReminderJob.claimed_until <= now),
            Requirement.status.in_(REMINDER_ELIGIBLE_STATUSES),
            Subcontractor.status == "active",
        )
        .order_by(ReminderJob.next_run_at, ReminderJob.id)
        .limit(limit or settings.REMINDER_SWEEP_BATCH_SIZE)
        .with_for_update(skip_locked=True, of=ReminderJob)
    )
    due = [
        DueJob(
            job_id=row.id,
            requirement_id=row.requirement_id,
            attempts=int(row.attempts),
            max_attempts=int(row.max_attempts),
            next_run_at=row.next_run_at,
        )
        for row in query.all()
    ]
    # Release row locks; claims below are taken one by one.
    db.commit()
    return due


def claim_reminder_job(
    *,
    db: Session,
    job_id: UUID,
    expected_attempts: int,
    now: datetime,
    states: tuple[str, ...] = ("active",),
    require_due: bool = True,
) -> str | None:
    """Mark a job in flight. Returns the claim token, or None if another sweep got it."""
    token = uuid4().hex
    conditions = [
        ReminderJob.id == job_id,
        ReminderJob.state.in_(states),
        ReminderJob.attempts == expected_attempts,
        or_(ReminderJob.claim_token.is_(None), ReminderJob.claimed_until <= now),
    ]
    if require_due:
        conditions.append(ReminderJob.next_run_at <= now)

    updated = _conditional_update(
        db,
        *conditions,
        claim_token=token,
        claimed_until=now + timedelta(seconds=settings.REMINDER_CLAIM_LEASE_SECONDS),
    )
    if updated != 1:
        db.rollback()
        return None
    db.commit()
    return token


def commit_reminder_attempt(
    *,
    db: Session,
    job_id: UUID,
    token: str,
    attempt_number: int,
    now: datetime,
    escalate: bool,
) -> bool:
    """Count a successful send. Caller commits together with the EmailLog row."""
    values: dict[str, object] = {
        "attempts": ReminderJob.attempts + 1,
        "claim_token": None,
        "claimed_until": None,
        "consecutive_failures": 0,
        "last_error": None,
        "updated_at": now,
    }
    if escalate:
        values["escalated"] = True
        values["state"] = case(
            (ReminderJob.state.in_(OPEN_JOB_STATES), "escalated"),
            else_=ReminderJob.state,
        )
    else:
        # next_run_at is only meaningful while active.
        values["next_run_at"] = case(
            (ReminderJob.state == "active", literal(next_run_after(attempt_number, at=now), UTCDateTime())),
            else_=ReminderJob.next_run_at,
        )

    updated = _conditional_update(
        db,
        ReminderJob.id == job_id,
        ReminderJob.claim_token == token,
        **values,
    )
    return updated == 1


def release_reminder_claim(
    *,
    db: Session,
    job_id: UUID,
    token: str,
    error: str,
    now: datetime,
) -> bool:
    """Failed send: keep attempts/next_run_at, count the failure. Returns True if quarantined."""
    updated = _conditional_update(
        db,
        ReminderJob.id == job_id,
        ReminderJob.claim_token == token,
        claim_token=None,
        claimed_until=None,
        consecutive_failures=ReminderJob.consecutive_failures + 1,
        last_error=error[:2000],
        updated_at=now,
    )
    if updated != 1:
        return False

    quarantined = _conditional_update(
        db,
        ReminderJob.id == job_id,
        ReminderJob.state == "active",
        ReminderJob.consecutive_failures >= settings.REMINDER_MAX_CONSECUTIVE_FAILURES,
        state="paused",
        updated_at=now,
    )
    return quarantined == 1
