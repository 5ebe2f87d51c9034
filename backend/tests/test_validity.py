from datetime import date
from types import SimpleNamespace

import pytest

from compliance.services.validity import apply_validity, lead_days_for, recompute_validity_status

TODAY = date(2026, 6, 1)


@pytest.mark.parametrize(
    ("valid_to", "expected"),
    [
        (date(2026, 8, 1), "valid"),
        (date(2026, 7, 1), "expiring"),  # 30 days left, inclusive
        (date(2026, 6, 2), "expiring"),
        (date(2026, 6, 1), "expired"),  # expires on valid_to itself
        (date(2026, 5, 1), "expired"),
    ],
)
def test_recompute_from_valid(valid_to: date, expected: str) -> None:
    status = recompute_validity_status(
        status="valid",
        valid_to=valid_to,
        does_not_expire=False,
        today=TODAY,
        lead_days=30,
    )
    assert status == expected


def test_expiring_returns_to_valid_when_window_extended() -> None:
    status = recompute_validity_status(
        status="expiring",
        valid_to=date(2027, 6, 1),
        does_not_expire=False,
        today=TODAY,
        lead_days=30,
    )
    assert status == "valid"


@pytest.mark.parametrize("status", ["missing", "submitted", "in_review", "rejected", "expired", "hidden"])
def test_other_statuses_are_left_alone(status: str) -> None:
    assert (
        recompute_validity_status(
            status=status,
            valid_to=date(2020, 1, 1),
            does_not_expire=False,
            today=TODAY,
            lead_days=30,
        )
        == status
    )


def test_non_expiring_documents_stay_valid() -> None:
    status = recompute_validity_status(
        status="valid",
        valid_to=date(2020, 1, 1),
        does_not_expire=True,
        today=TODAY,
        lead_days=30,
    )
    assert status == "valid"


def test_lead_days_prefers_document_type_override() -> None:
    assert lead_days_for(SimpleNamespace(expiring_lead_days=45), 30) == 45
    assert lead_days_for(SimpleNamespace(expiring_lead_days=None), 30) == 30
    assert lead_days_for(None, 30) == 30


def test_apply_validity_reports_previous_status() -> None:
    requirement = SimpleNamespace(
        status="valid",
        valid_to=date(2026, 6, 20),
        document_type=SimpleNamespace(does_not_expire=False, expiring_lead_days=None),
    )

    assert apply_validity(requirement, today=TODAY, default_lead_days=30) == "valid"
    assert requirement.status == "expiring"
    assert apply_validity(requirement, today=TODAY, default_lead_days=30) is None
