"""Per-subcontractor compliance aggregate."""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from uuid import UUID

from sqlalchemy.orm import Session, joinedload

from ..config import settings
from ..domain_errors import NotFoundError
from ..models import Requirement, Subcontractor
from ..services.requirement_state import UNTRACKED_STATUSES
from ..services.validity import apply_validity
from .requirement_transitions import record_status_change

OUTSTANDING_STATUSES: frozenset[str] = frozenset({"missing", "rejected", "expired"})
IN_REVIEW_STATUSES: frozenset[str] = frozenset({"submitted", "in_review"})
COMPLIANT_STATUSES: frozenset[str] = frozenset({"valid", "expiring"})


@dataclass(frozen=True)
class ComplianceSummary:
    subcontractor_id: UUID
    total: int
    outstanding: int
    in_review: int
    expiring: int
    by_status: dict[str, int] = field(default_factory=dict)

    @property
    def is_compliant(self) -> bool:
        return self.total > 0 and self.outstanding == 0 and self.in_review == 0


def subcontractor_compliance_use_case(*, db: Session, subcontractor_id: UUID, today: date) -> ComplianceSummary:
    """Counts over tracked requirements; hidden ones are excluded."""
    subcontractor = db.query(Subcontractor).filter(Subcontractor.id == subcontractor_id).first()
    if not subcontractor:
        raise NotFoundError(code="SUBCONTRACTOR_NOT_FOUND", message="Subcontractor not found")

    requirements = (
        db.query(Requirement)
        .options(joinedload(Requirement.document_type))
        .filter(
            Requirement.subcontractor_id == subcontractor_id,
            Requirement.status.notin_(UNTRACKED_STATUSES),
        )
        .all()
    )

    changed = False
    for requirement in requirements:
        old_status = apply_validity(
            requirement,
            today=today,
            default_lead_days=settings.VALIDITY_EXPIRING_LEAD_DAYS,
        )
        if old_status is not None:
            changed = True
            record_status_change(db, requirement=requirement, old_status=old_status, action="requirement_validity_changed")

    by_status = Counter(requirement.status for requirement in requirements)
    summary = ComplianceSummary(
        subcontractor_id=subcontractor_id,
        total=len(requirements),
        outstanding=sum(by_status[s] for s in OUTSTANDING_STATUSES),
        in_review=sum(by_status[s] for s in IN_REVIEW_STATUSES),
        expiring=by_status["expiring"],
        by_status=dict(by_status),
    )
    if changed:
        db.commit()
    return summary
