"""Periodic validity sweep (the lazy path lives in get_requirement_use_case)."""
from __future__ import annotations

import logging
from datetime import date

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from ..config import settings
from ..domain_errors import InfrastructureFailure
from ..models import Requirement
from ..services.validity import RECOMPUTABLE_STATUSES, apply_validity
from .requirement_transitions import record_status_change

logger = logging.getLogger(__name__)


def refresh_requirement_validity_use_case(*, db: Session, today: date) -> int:
    """Demote valid/expiring requirements whose window moved on. Returns changed count."""
    try:
        requirements = (
            db.query(Requirement)
            .options(joinedload(Requirement.document_type))
            .filter(
                Requirement.status.in_(RECOMPUTABLE_STATUSES),
                Requirement.valid_to.isnot(None),
            )
            .all()
        )

        changed = 0
        for requirement in requirements:
            old_status = apply_validity(
                requirement,
                today=today,
                default_lead_days=settings.VALIDITY_EXPIRING_LEAD_DAYS,
            )
            if old_status is None:
                continue
            changed += 1
            record_status_change(
                db,
                requirement=requirement,
                old_status=old_status,
                action="requirement_validity_changed",
                validTo=requirement.valid_to.isoformat(),
            )

        if changed:
            db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Validity sweep aborted")
        raise InfrastructureFailure("Cannot refresh requirement validity") from exc

    logger.info("Validity sweep: %s of %s requirements changed status", changed, len(requirements))
    return changed
