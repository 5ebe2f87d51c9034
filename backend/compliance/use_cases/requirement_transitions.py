"""Requirement lifecycle use-cases used by requirement router endpoints."""
from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from sqlalchemy.orm import Session, joinedload

from ..config import settings
from ..domain_errors import AlreadyExistsError, DomainError, InvalidTransitionError, NotFoundError
from ..events import REQUIREMENT_STATUS_CHANGED, DomainEvent, queue_event
from ..models import AuditEvent, DocumentType, Requirement, Subcontractor
from ..services.requirement_state import (
    RequirementTransitionError,
    ensure_approval_window,
    transition_trigger,
    validate_status_transition,
)
from ..services.validity import apply_validity
from .reminder_jobs import build_reminder_job, complete_open_reminder_jobs


def _get_requirement_or_404(*, db: Session, requirement_id: UUID) -> Requirement:
    requirement = (
        db.query(Requirement)
        .options(joinedload(Requirement.document_type))
        .filter(Requirement.id == requirement_id)
        .first()
    )
    if not requirement:
        raise NotFoundError(code="REQUIREMENT_NOT_FOUND", message="Requirement not found")
    return requirement


def record_status_change(
    db: Session,
    *,
    requirement: Requirement,
    old_status: str,
    action: str,
    **details,
) -> None:
    payload = {
        "oldStatus": old_status,
        "newStatus": requirement.status,
        "trigger": transition_trigger(old_status, requirement.status),
        **details,
    }
    db.add(
        AuditEvent(
            action=action,
            entity_type="requirement",
            entity_id=requirement.id,
            details=payload,
        )
    )
    queue_event(
        db,
        DomainEvent(kind=REQUIREMENT_STATUS_CHANGED, entity_id=requirement.id, payload=payload),
    )


def _ensure_no_live_requirement(
    db: Session,
    *,
    subcontractor_id: UUID,
    document_type_id: UUID,
    exclude_id: UUID | None = None,
) -> None:
    """At most one non-hidden requirement per subcontractor and document type."""
    query = db.query(Requirement).filter(
        Requirement.subcontractor_id == subcontractor_id,
        Requirement.document_type_id == document_type_id,
        Requirement.status != "hidden",
    )
    if exclude_id is not None:
        query = query.filter(Requirement.id != exclude_id)
    existing = query.first()
    if existing:
        raise AlreadyExistsError(
            code="REQUIREMENT_ALREADY_EXISTS",
            message="Document already requested from this subcontractor",
            details={"requirementId": str(existing.id)},
        )


def _transition(requirement: Requirement, next_status: str) -> str:
    """Validate and apply; return the previous status."""
    try:
        validate_status_transition(current_status=requirement.status, next_status=next_status)
    except RequirementTransitionError as exc:
        raise InvalidTransitionError(
            code="REQUIREMENT_INVALID_TRANSITION",
            message=str(exc),
            details={"from": requirement.status, "to": next_status},
        ) from exc
    old_status = requirement.status
    requirement.status = next_status
    return old_status


def request_document_use_case(
    *,
    db: Session,
    subcontractor_id: UUID,
    document_type_id: UUID,
    now: datetime,
    due_date: date | None = None,
    monthly_refresh: bool = False,
    start_reminders: bool = True,
) -> Requirement:
    """Create a missing requirement and, optionally, its reminder job."""
    subcontractor = db.query(Subcontractor).filter(Subcontractor.id == subcontractor_id).first()
    if not subcontractor:
        raise NotFoundError(code="SUBCONTRACTOR_NOT_FOUND", message="Subcontractor not found")
    document_type = db.query(DocumentType).filter(DocumentType.id == document_type_id).first()
    if not document_type:
        raise NotFoundError(code="DOCUMENT_TYPE_NOT_FOUND", message="Document type not found")

    _ensure_no_live_requirement(db, subcontractor_id=subcontractor_id, document_type_id=document_type_id)

    requirement = Requirement(
        subcontractor_id=subcontractor_id,
        document_type_id=document_type_id,
        status="missing",
        due_date=due_date,
        monthly_refresh=monthly_refresh,
        escalated=False,
        created_at=now,
        updated_at=now,
    )
    db.add(requirement)
    db.flush()

    if start_reminders:
        db.add(build_reminder_job(requirement_id=requirement.id, now=now))

    db.add(
        AuditEvent(
            action="requirement_requested",
            entity_type="requirement",
            entity_id=requirement.id,
            details={"documentType": document_type.code, "startReminders": start_reminders},
        )
    )
    queue_event(
        db,
        DomainEvent(
            kind=REQUIREMENT_STATUS_CHANGED,
            entity_id=requirement.id,
            payload={"oldStatus": None, "newStatus": "missing"},
        ),
    )
    db.commit()
    return requirement


def get_requirement_use_case(*, db: Session, requirement_id: UUID, today: date) -> Requirement:
    """Load a requirement, demoting it lazily if its validity window moved on."""
    requirement = _get_requirement_or_404(db=db, requirement_id=requirement_id)
    old_status = apply_validity(
        requirement,
        today=today,
        default_lead_days=settings.VALIDITY_EXPIRING_LEAD_DAYS,
    )
    if old_status is not None:
        record_status_change(db, requirement=requirement, old_status=old_status, action="requirement_validity_changed")
        db.commit()
    return requirement


def upload_document_use_case(
    *,
    db: Session,
    requirement_id: UUID,
    file_key: str | None,
    now: datetime,
) -> Requirement:
    """missing/rejected/expired -> submitted. Clears rejection and old validity window."""
    requirement = _get_requirement_or_404(db=db, requirement_id=requirement_id)

    old_status = _transition(requirement, "submitted")
    requirement.rejection_reason = None
    requirement.valid_from = None
    requirement.valid_to = None
    requirement.file_key = file_key
    requirement.submitted_at = now
    requirement.updated_at = now

    record_status_change(db, requirement=requirement, old_status=old_status, action="requirement_submitted")
    db.commit()
    return requirement


def start_review_use_case(*, db: Session, requirement_id: UUID, now: datetime) -> Requirement:
    """submitted -> in_review. Idempotent for in_review."""
    requirement = _get_requirement_or_404(db=db, requirement_id=requirement_id)

    if requirement.status == "in_review":
        return requirement

    old_status = _transition(requirement, "in_review")
    requirement.updated_at = now

    record_status_change(db, requirement=requirement, old_status=old_status, action="requirement_review_started")
    db.commit()
    return requirement


def approve_requirement_use_case(
    *,
    db: Session,
    requirement_id: UUID,
    now: datetime,
    valid_to: date | None,
    valid_from: date | None = None,
) -> Requirement:
    """submitted/in_review -> valid (then recomputed against today)."""
    requirement = _get_requirement_or_404(db=db, requirement_id=requirement_id)
    document_type = requirement.document_type
    does_not_expire = bool(document_type and document_type.does_not_expire)

    if requirement.status not in {"submitted", "in_review"}:
        raise InvalidTransitionError(
            code="REQUIREMENT_INVALID_TRANSITION",
            message=f"Only submitted documents can be approved (status: {requirement.status})",
            details={"from": requirement.status, "to": "valid"},
        )
    try:
        ensure_approval_window(valid_from=valid_from, valid_to=valid_to, does_not_expire=does_not_expire)
    except RequirementTransitionError as exc:
        code = "REQUIREMENT_VALID_TO_REQUIRED" if valid_to is None else "REQUIREMENT_INVALID_VALIDITY_WINDOW"
        raise InvalidTransitionError(code=code, message=str(exc)) from exc

    old_status = _transition(requirement, "valid")
    requirement.rejection_reason = None
    requirement.valid_from = valid_from or now.date()
    requirement.valid_to = None if does_not_expire else valid_to
    requirement.reviewed_at = now
    requirement.updated_at = now
    apply_validity(requirement, today=now.date(), default_lead_days=settings.VALIDITY_EXPIRING_LEAD_DAYS)

    completed_jobs = complete_open_reminder_jobs(
        db=db,
        requirement_id=requirement.id,
        now=now,
        reason="requirement_approved",
    )
    record_status_change(
        db,
        requirement=requirement,
        old_status=old_status,
        action="requirement_approved",
        validTo=requirement.valid_to.isoformat() if requirement.valid_to else None,
        completedJobs=[str(job_id) for job_id in completed_jobs],
    )
    db.commit()
    return requirement


def reject_requirement_use_case(
    *,
    db: Session,
    requirement_id: UUID,
    reason: str,
    now: datetime,
) -> Requirement:
    """submitted/in_review -> rejected with reason; reminders keep running."""
    requirement = _get_requirement_or_404(db=db, requirement_id=requirement_id)

    reason = (reason or "").strip()
    if not reason:
        raise DomainError(
            code="REJECTION_REASON_REQUIRED",
            http_status=422,
            message="Rejection reason is required",
        )

    old_status = _transition(requirement, "rejected")
    requirement.rejection_reason = reason
    requirement.reviewed_at = now
    requirement.updated_at = now

    record_status_change(db, requirement=requirement, old_status=old_status, action="requirement_rejected", reason=reason)
    db.commit()
    return requirement


def hide_requirement_use_case(*, db: Session, requirement_id: UUID, now: datetime) -> Requirement:
    """Withdraw a requirement: stops reminders, drops it from aggregates."""
    requirement = _get_requirement_or_404(db=db, requirement_id=requirement_id)

    if requirement.status == "hidden":
        return requirement

    old_status = _transition(requirement, "hidden")
    previous_window = {
        "validFrom": requirement.valid_from.isoformat() if requirement.valid_from else None,
        "validTo": requirement.valid_to.isoformat() if requirement.valid_to else None,
    }
    requirement.rejection_reason = None
    requirement.valid_from = None
    requirement.valid_to = None
    requirement.updated_at = now

    complete_open_reminder_jobs(db=db, requirement_id=requirement.id, now=now, reason="requirement_hidden")
    record_status_change(
        db,
        requirement=requirement,
        old_status=old_status,
        action="requirement_hidden",
        previousWindow=previous_window,
    )
    db.commit()
    return requirement


def restore_requirement_use_case(*, db: Session, requirement_id: UUID, now: datetime) -> Requirement:
    """hidden -> missing. Reminders are not restarted implicitly."""
    requirement = _get_requirement_or_404(db=db, requirement_id=requirement_id)

    if requirement.status == "hidden":
        _ensure_no_live_requirement(
            db,
            subcontractor_id=requirement.subcontractor_id,
            document_type_id=requirement.document_type_id,
            exclude_id=requirement.id,
        )
    old_status = _transition(requirement, "missing")
    requirement.updated_at = now

    record_status_change(db, requirement=requirement, old_status=old_status, action="requirement_restored")
    db.commit()
    return requirement
