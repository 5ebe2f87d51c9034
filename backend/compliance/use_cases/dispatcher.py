"""Reminder sweep: find due jobs, pick a template tier, send, advance.

Delivery is at-least-once. A job is claimed (committed) before the notifier is
called and the attempt is counted in the same transaction that writes its
EmailLog row, so overlapping sweeps produce one send and one log per attempt.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, time, timezone
from typing import Any
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from ..config import settings
from ..domain_errors import InfrastructureFailure, InvalidTransitionError, NotFoundError, NotifierFailure
from ..models import EmailLog, Requirement, StaffMember, Subcontractor
from ..notifier import Notifier
from ..services.reminder_schedule import (
    TEMPLATE_ESCALATION,
    TEMPLATE_MONTHLY_REFRESH,
    is_monthly_refresh_day,
    select_template,
)
from ..services.requirement_state import (
    REMINDER_ELIGIBLE_STATUSES,
    is_reminder_eligible,
    is_reminder_terminal,
)
from .reminder_jobs import (
    DueJob,
    claim_reminder_job,
    commit_reminder_attempt,
    complete_jobs_for_settled_requirements,
    complete_open_reminder_jobs,
    create_reminder_job_use_case,
    find_due_reminder_jobs,
    get_current_reminder_job,
    get_open_reminder_job,
    record_reminder_job_change,
    release_reminder_claim,
)

logger = logging.getLogger(__name__)

ESCALATION_ROLES: tuple[str, ...] = ("owner", "admin")


@dataclass(frozen=True)
class DispatchOutcome:
    job_id: UUID
    # sent | escalated | failed | skipped | held | completed
    status: str
    template_key: str | None = None
    attempt_number: int | None = None
    email_log_id: UUID | None = None
    error: str | None = None
    quarantined: bool = False


@dataclass
class SweepResult:
    processed: int = 0
    sent: int = 0
    escalated: int = 0
    failed: int = 0
    skipped: int = 0
    held: int = 0
    completed: int = 0
    quarantined: int = 0
    monthly_sent: int = 0

    def record(self, outcome: DispatchOutcome) -> None:
        self.processed += 1
        if outcome.status == "sent":
            self.sent += 1
        elif outcome.status == "escalated":
            self.escalated += 1
        elif outcome.status == "failed":
            self.failed += 1
            if outcome.quarantined:
                self.quarantined += 1
        elif outcome.status == "completed":
            self.completed += 1
        elif outcome.status == "held":
            self.held += 1
        else:
            self.skipped += 1

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def _load_requirement(db: Session, requirement_id: UUID) -> Requirement | None:
    return (
        db.query(Requirement)
        .options(
            joinedload(Requirement.document_type),
            joinedload(Requirement.subcontractor).joinedload(Subcontractor.tenant),
        )
        .filter(Requirement.id == requirement_id)
        .first()
    )


def resolve_recipients(db: Session, *, requirement: Requirement, template_key: str) -> list[str]:
    """Subcontractor contact for reminders; tenant owners/admins for escalations."""
    subcontractor = requirement.subcontractor
    if template_key != TEMPLATE_ESCALATION:
        return [subcontractor.contact_email] if subcontractor.contact_email else []

    staff_emails = [
        row[0]
        for row in db.query(StaffMember.email).filter(
            StaffMember.tenant_id == subcontractor.tenant_id,
            StaffMember.role.in_(ESCALATION_ROLES),
            StaffMember.is_active.is_(True),
            StaffMember.email.isnot(None),
        ).order_by(StaffMember.email).all()
    ]
    if staff_emails:
        return staff_emails
    tenant = subcontractor.tenant
    if tenant is not None and tenant.notification_email:
        return [tenant.notification_email]
    return []


def build_template_context(
    *,
    requirement: Requirement,
    template_key: str,
    attempt_number: int | None,
) -> dict[str, Any]:
    subcontractor = requirement.subcontractor
    document_type = requirement.document_type
    tenant = subcontractor.tenant
    context: dict[str, Any] = {
        "requirementId": str(requirement.id),
        "subcontractorName": subcontractor.company_name,
        "requirementName": document_type.name if document_type else None,
        "documentTypeCode": document_type.code if document_type else None,
        "dueDate": requirement.due_date.isoformat() if requirement.due_date else None,
        "uploadUrl": f"{settings.PUBLIC_APP_URL.rstrip('/')}/public/upload/reminder/{requirement.id}",
        "tenantName": tenant.name if tenant else None,
        "rejectionReason": requirement.rejection_reason,
    }
    if attempt_number is not None:
        context["attemptNumber"] = attempt_number
    if template_key == TEMPLATE_ESCALATION and attempt_number is not None:
        context["escalationReason"] = f"No response after {attempt_number - 1} reminders"
    return context


def _send(
    notifier: Notifier,
    *,
    recipients: list[str],
    template_key: str,
    context: dict[str, Any],
) -> tuple[str | None, str | None]:
    """Return (provider_message_id, error)."""
    if not recipients:
        return None, "NO_RECIPIENTS"
    try:
        receipt = notifier.send(recipients, template_key, context)
    except NotifierFailure as exc:
        return None, str(exc) or "NOTIFIER_FAILURE"
    except Exception as exc:
        logger.exception("Notifier raised unexpectedly for %s", template_key)
        return None, f"EXCEPTION: {exc}"
    return receipt.id, None


def _send_claimed_attempt(
    *,
    db: Session,
    notifier: Notifier,
    job_id: UUID,
    token: str,
    requirement: Requirement,
    attempts: int,
    max_attempts: int,
    now: datetime,
) -> DispatchOutcome:
    template_key = select_template(attempts, max_attempts)
    attempt_number = attempts + 1
    recipients = resolve_recipients(db, requirement=requirement, template_key=template_key)
    context = build_template_context(requirement=requirement, template_key=template_key, attempt_number=attempt_number)

    message_id, error = _send(notifier, recipients=recipients, template_key=template_key, context=context)

    log = EmailLog(
        requirement_id=requirement.id,
        subcontractor_id=requirement.subcontractor_id,
        job_id=job_id,
        attempt_number=attempt_number,
        to_email=", ".join(recipients) or "-",
        template_key=template_key,
        status="failed" if error else "sent",
        provider_message_id=message_id,
        error=error,
        context=context,
        created_at=now,
        sent_at=None if error else now,
    )
    db.add(log)

    if error:
        quarantined = release_reminder_claim(db=db, job_id=job_id, token=token, error=error, now=now)
        if quarantined:
            record_reminder_job_change(
                db,
                job_id=job_id,
                requirement_id=requirement.id,
                action="reminder_quarantined",
                lastError=error,
            )
        db.commit()
        logger.warning(
            "Reminder job %s attempt %s failed (%s)%s",
            job_id,
            attempt_number,
            error,
            ", job paused after repeated failures" if quarantined else "",
        )
        return DispatchOutcome(
            job_id=job_id,
            status="failed",
            template_key=template_key,
            attempt_number=attempt_number,
            email_log_id=log.id,
            error=error,
            quarantined=quarantined,
        )

    escalate = template_key == TEMPLATE_ESCALATION
    counted = commit_reminder_attempt(
        db=db,
        job_id=job_id,
        token=token,
        attempt_number=attempt_number,
        now=now,
        escalate=escalate,
    )
    if counted:
        action = "reminder_escalated" if escalate else "reminder_sent"
        if escalate:
            requirement.escalated = True
    else:
        # Lease expired mid-send and another sweep re-claimed the job.
        logger.warning("Reminder job %s lost its claim during attempt %s", job_id, attempt_number)
        action = "reminder_sent_unclaimed"
        log.context = {**context, "claimLost": True}
    record_reminder_job_change(
        db,
        job_id=job_id,
        requirement_id=requirement.id,
        action=action,
        attemptNumber=attempt_number,
        templateKey=template_key,
    )
    db.commit()
    logger.info("Reminder job %s attempt %s sent (%s)", job_id, attempt_number, template_key)
    return DispatchOutcome(
        job_id=job_id,
        status="escalated" if escalate else "sent",
        template_key=template_key,
        attempt_number=attempt_number,
        email_log_id=log.id,
    )


def dispatch_reminder_job(*, db: Session, due_job: DueJob, notifier: Notifier, now: datetime) -> DispatchOutcome:
    """Re-validate, claim and send one due job."""
    requirement = _load_requirement(db, due_job.requirement_id)

    if requirement is None or is_reminder_terminal(requirement.status):
        completed = complete_open_reminder_jobs(
            db=db,
            requirement_id=due_job.requirement_id,
            now=now,
            reason="requirement_settled",
        )
        db.commit()
        return DispatchOutcome(job_id=due_job.job_id, status="completed" if completed else "skipped")

    if not is_reminder_eligible(requirement.status) or requirement.subcontractor.status != "active":
        return DispatchOutcome(job_id=due_job.job_id, status="held")

    token = claim_reminder_job(
        db=db,
        job_id=due_job.job_id,
        expected_attempts=due_job.attempts,
        now=now,
    )
    if token is None:
        logger.info("Reminder job %s already claimed by another sweep", due_job.job_id)
        return DispatchOutcome(job_id=due_job.job_id, status="skipped")

    return _send_claimed_attempt(
        db=db,
        notifier=notifier,
        job_id=due_job.job_id,
        token=token,
        requirement=requirement,
        attempts=due_job.attempts,
        max_attempts=due_job.max_attempts,
        now=now,
    )


def send_immediate_reminder_use_case(
    *,
    db: Session,
    requirement_id: UUID,
    notifier: Notifier,
    now: datetime,
) -> DispatchOutcome:
    """Out-of-band send. Counts as an attempt and honours the escalation ceiling."""
    requirement = _load_requirement(db, requirement_id)
    if requirement is None:
        raise NotFoundError(code="REQUIREMENT_NOT_FOUND", message="Requirement not found")
    if not is_reminder_eligible(requirement.status):
        raise InvalidTransitionError(
            code="REQUIREMENT_NOT_AWAITING_DOCUMENT",
            message=f"Reminders are only sent for missing or rejected documents (status: {requirement.status})",
            details={"status": requirement.status},
        )
    if requirement.subcontractor.status != "active":
        raise InvalidTransitionError(
            code="SUBCONTRACTOR_INACTIVE",
            message="Subcontractor is not active",
        )

    job = get_open_reminder_job(db=db, requirement_id=requirement_id)
    if job is None:
        latest = get_current_reminder_job(db=db, requirement_id=requirement_id)
        if latest is not None and latest.state == "escalated":
            raise InvalidTransitionError(
                code="REMINDER_JOB_ALREADY_ESCALATED",
                message="Reminder job already escalated; stop it before sending again",
                details={"jobId": str(latest.id)},
            )
        job = create_reminder_job_use_case(db=db, requirement_id=requirement_id, now=now)

    job_id, attempts, max_attempts = job.id, job.attempts, job.max_attempts
    token = claim_reminder_job(
        db=db,
        job_id=job_id,
        expected_attempts=attempts,
        now=now,
        states=("active", "paused"),
        require_due=False,
    )
    if token is None:
        raise InvalidTransitionError(
            code="REMINDER_JOB_BUSY",
            message="Reminder job is being processed; try again shortly",
            details={"jobId": str(job_id)},
        )

    requirement = _load_requirement(db, requirement_id)
    outcome = _send_claimed_attempt(
        db=db,
        notifier=notifier,
        job_id=job_id,
        token=token,
        requirement=requirement,
        attempts=attempts,
        max_attempts=max_attempts,
        now=now,
    )
    if outcome.status == "failed":
        raise NotifierFailure(outcome.error or "NOTIFIER_FAILURE")
    return outcome


def _sent_today(db: Session, *, requirement_id: UUID, now: datetime) -> bool:
    day_start = datetime.combine(now.astimezone(timezone.utc).date(), time.min, tzinfo=timezone.utc)
    return db.query(EmailLog.id).filter(
        EmailLog.requirement_id == requirement_id,
        EmailLog.status == "sent",
        EmailLog.template_key != TEMPLATE_ESCALATION,
        EmailLog.created_at >= day_start,
    ).first() is not None


def run_monthly_refresh(*, db: Session, notifier: Notifier, now: datetime) -> int:
    """Calendar-day re-confirmation mails, independent from job attempts."""
    today = now.astimezone(timezone.utc).date()
    if not is_monthly_refresh_day(today, settings.monthly_refresh_days):
        return 0

    requirement_ids = [
        row[0]
        for row in db.query(Requirement.id)
        .join(Subcontractor, Subcontractor.id == Requirement.subcontractor_id)
        .filter(
            Requirement.monthly_refresh.is_(True),
            Requirement.status.in_(REMINDER_ELIGIBLE_STATUSES),
            Subcontractor.status == "active",
        )
        .order_by(Requirement.id)
        .all()
    ]

    sent = 0
    for requirement_id in requirement_ids:
        # Coalesce with an attempt-based reminder already sent today.
        if _sent_today(db, requirement_id=requirement_id, now=now):
            continue

        requirement = _load_requirement(db, requirement_id)
        recipients = resolve_recipients(db, requirement=requirement, template_key=TEMPLATE_MONTHLY_REFRESH)
        context = build_template_context(requirement=requirement, template_key=TEMPLATE_MONTHLY_REFRESH, attempt_number=None)
        log = EmailLog(
            requirement_id=requirement_id,
            subcontractor_id=requirement.subcontractor_id,
            to_email=", ".join(recipients) or "-",
            template_key=TEMPLATE_MONTHLY_REFRESH,
            status="queued",
            context=context,
            idempotency_key=f"{TEMPLATE_MONTHLY_REFRESH}:{requirement_id}:{today.isoformat()}",
            created_at=now,
        )
        db.add(log)
        try:
            db.commit()
        except IntegrityError:
            # Another sweep already owns today's refresh for this requirement.
            db.rollback()
            continue

        message_id, error = _send(notifier, recipients=recipients, template_key=TEMPLATE_MONTHLY_REFRESH, context=context)
        log.status = "failed" if error else "sent"
        log.provider_message_id = message_id
        log.error = error
        log.sent_at = None if error else now
        db.commit()

        if error:
            logger.warning("Monthly refresh for requirement %s failed (%s)", requirement_id, error)
        else:
            sent += 1
    return sent


def run_reminder_sweep(
    *,
    db: Session,
    notifier: Notifier,
    now: datetime,
    batch_size: int | None = None,
) -> SweepResult:
    """One periodic sweep. Notifier errors stay per job; store errors abort."""
    result = SweepResult()
    try:
        result.completed += len(complete_jobs_for_settled_requirements(db=db, now=now))
        due_jobs = find_due_reminder_jobs(db=db, now=now, limit=batch_size)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Reminder sweep aborted: cannot query due jobs")
        raise InfrastructureFailure("Cannot query due reminder jobs") from exc

    logger.info("Found %s due reminder jobs", len(due_jobs))

    for due_job in due_jobs:
        try:
            outcome = dispatch_reminder_job(db=db, due_job=due_job, notifier=notifier, now=now)
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Reminder sweep aborted while dispatching job %s", due_job.job_id)
            raise InfrastructureFailure(f"Store failure while dispatching job {due_job.job_id}") from exc
        result.record(outcome)

    try:
        result.monthly_sent = run_monthly_refresh(db=db, notifier=notifier, now=now)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Reminder sweep aborted during monthly refresh")
        raise InfrastructureFailure("Store failure during monthly refresh") from exc

    logger.info(
        "Reminder sweep complete: %s processed, %s sent, %s escalated, %s failed, %s completed, %s monthly",
        result.processed,
        result.sent,
        result.escalated,
        result.failed,
        result.completed,
        result.monthly_sent,
    )
    return result
