"""Requirement lifecycle rules."""

from __future__ import annotations

from datetime import date, datetime, timezone


# Reminders are dispatched only while the document is still owed.
REMINDER_ELIGIBLE_STATUSES: frozenset[str] = frozenset({"missing", "rejected"})
# Awaiting a reviewer: jobs are held, neither dispatched nor completed.
AWAITING_REVIEW_STATUSES: frozenset[str] = frozenset({"submitted", "in_review"})
# Jobs for these requirements are auto-completed by the sweep.
REMINDER_TERMINAL_STATUSES: frozenset[str] = frozenset({"valid", "expiring", "expired", "hidden"})
VALIDITY_STATUSES: frozenset[str] = frozenset({"valid", "expiring", "expired"})
# Excluded from compliance aggregates.
UNTRACKED_STATUSES: frozenset[str] = frozenset({"hidden"})

_ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    "missing": {"submitted", "hidden"},
    "submitted": {"in_review", "valid", "rejected", "hidden"},
    "in_review": {"valid", "rejected", "hidden"},
    "valid": {"expiring", "expired", "hidden"},
    "expiring": {"expired", "valid", "hidden"},
    "expired": {"submitted", "hidden"},
    "rejected": {"submitted", "hidden"},
    "hidden": {"missing"},
}

_TRANSITION_TRIGGERS: dict[tuple[str, str], str] = {
    ("missing", "submitted"): "Document uploaded",
    ("expired", "submitted"): "Replacement document uploaded",
    ("rejected", "submitted"): "Corrected document uploaded",
    ("submitted", "in_review"): "Reviewer opened document",
    ("submitted", "valid"): "Document approved by reviewer",
    ("in_review", "valid"): "Document approved by reviewer",
    ("submitted", "rejected"): "Document rejected by reviewer",
    ("in_review", "rejected"): "Document rejected by reviewer",
    ("valid", "expiring"): "Document approaching expiry date",
    ("valid", "expired"): "Document has expired",
    ("expiring", "expired"): "Document has expired",
    ("expiring", "valid"): "Validity window extended",
    ("hidden", "missing"): "Requirement restored",
}


class RequirementTransitionError(ValueError):
    """Raised for transitions the lifecycle does not allow."""


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def normalize_requirement_status(status: str | None) -> str:
    if not status:
        return "missing"
    return status.strip().lower()


def allowed_next_statuses(status: str | None) -> set[str]:
    return set(_ALLOWED_TRANSITIONS.get(normalize_requirement_status(status), set()))


def validate_status_transition(*, current_status: str | None, next_status: str) -> str:
    current = normalize_requirement_status(current_status)
    nxt = normalize_requirement_status(next_status)

    if nxt == "hidden" and current != "hidden":
        return nxt
    if nxt not in _ALLOWED_TRANSITIONS.get(current, set()):
        raise RequirementTransitionError(f"Invalid requirement status transition: {current} -> {nxt}")
    return nxt


def transition_trigger(current_status: str, next_status: str) -> str:
    if next_status == "hidden":
        return "Requirement withdrawn"
    return _TRANSITION_TRIGGERS.get((current_status, next_status), "Status changed")


def ensure_approval_window(
    *,
    valid_from: date | None,
    valid_to: date | None,
    does_not_expire: bool,
) -> None:
    """Approval must carry an expiry date unless the document type never expires."""
    if does_not_expire:
        return
    if valid_to is None:
        raise RequirementTransitionError("Approval requires valid_to for documents that expire")
    if valid_from is not None and valid_to < valid_from:
        raise RequirementTransitionError("valid_to must not be before valid_from")


def is_reminder_eligible(status: str | None) -> bool:
    return normalize_requirement_status(status) in REMINDER_ELIGIBLE_STATUSES


def is_reminder_terminal(status: str | None) -> bool:
    return normalize_requirement_status(status) in REMINDER_TERMINAL_STATUSES
