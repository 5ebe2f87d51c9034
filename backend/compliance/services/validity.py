"""Validity window recomputation for approved requirements."""

from __future__ import annotations

from datetime import date
from typing import Optional

from ..models import DocumentType, Requirement

RECOMPUTABLE_STATUSES: frozenset[str] = frozenset({"valid", "expiring"})


def recompute_validity_status(
    *,
    status: str,
    valid_to: Optional[date],
    does_not_expire: bool,
    today: date,
    lead_days: int,
) -> str:
    """Return the status an approved requirement should have on `today`.

    - Only `valid`/`expiring` with a `valid_to` are recomputed; anything else
      is returned unchanged.
    - `expired` once `today >= valid_to`.
    - `expiring` while `0 < valid_to - today <= lead_days`.
    """
    if status not in RECOMPUTABLE_STATUSES or valid_to is None or does_not_expire:
        return status

    remaining_days = (valid_to - today).days
    if remaining_days <= 0:
        return "expired"
    if remaining_days <= lead_days:
        return "expiring"
    return "valid"


def lead_days_for(document_type: Optional[DocumentType], default_lead_days: int) -> int:
    if document_type is not None and document_type.expiring_lead_days is not None:
        return int(document_type.expiring_lead_days)
    return default_lead_days


def apply_validity(
    requirement: Requirement,
    *,
    today: date,
    default_lead_days: int,
) -> Optional[str]:
    """Write the recomputed status back; return the previous status if it changed."""
    document_type = requirement.document_type
    does_not_expire = bool(document_type and document_type.does_not_expire)
    new_status = recompute_validity_status(
        status=requirement.status,
        valid_to=requirement.valid_to,
        does_not_expire=does_not_expire,
        today=today,
        lead_days=lead_days_for(document_type, default_lead_days),
    )
    if new_status == requirement.status:
        return None

    old_status = requirement.status
    requirement.status = new_status
    return old_status
