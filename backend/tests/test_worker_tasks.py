from __future__ import annotations

from datetime import date, timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from compliance import celery_app as worker
from compliance.config import settings
from compliance.models import AuditEvent, Requirement
from compliance.use_cases.requirement_transitions import (
    approve_requirement_use_case,
    request_document_use_case,
    upload_document_use_case,
)
from compliance.use_cases.validity_refresh import refresh_requirement_validity_use_case
from conftest import T0


def _approved(db, subcontractor, document_type, *, valid_to: date) -> Requirement:
    requirement = request_document_use_case(
        db=db,
        subcontractor_id=subcontractor.id,
        document_type_id=document_type.id,
        now=T0,
    )
    upload_document_use_case(db=db, requirement_id=requirement.id, file_key=None, now=T0)
    return approve_requirement_use_case(db=db, requirement_id=requirement.id, now=T0, valid_to=valid_to)


def test_validity_sweep_demotes_and_audits(db, subcontractor, insurance, trade_license) -> None:
    expiring_soon = _approved(db, subcontractor, insurance, valid_to=date(2026, 5, 1))
    never_expires = _approved(db, subcontractor, trade_license, valid_to=date(2026, 4, 1))

    assert refresh_requirement_validity_use_case(db=db, today=date(2026, 4, 10)) == 1
    assert refresh_requirement_validity_use_case(db=db, today=date(2026, 4, 10)) == 0
    assert refresh_requirement_validity_use_case(db=db, today=date(2026, 5, 1)) == 1

    db.refresh(expiring_soon)
    db.refresh(never_expires)
    assert expiring_soon.status == "expired"
    assert never_expires.status == "valid"

    audit = (
        db.query(AuditEvent)
        .filter(AuditEvent.entity_id == expiring_soon.id, AuditEvent.action == "requirement_validity_changed")
        .all()
    )
    assert sorted(event.details["newStatus"] for event in audit) == ["expired", "expiring"]


def test_beat_schedule_uses_configured_intervals() -> None:
    schedule = worker.celery_app.conf.beat_schedule

    assert schedule["process-reminder-jobs"]["task"] == "process_reminder_jobs"
    assert schedule["process-reminder-jobs"]["schedule"] == float(settings.REMINDER_SWEEP_INTERVAL_SECONDS)
    assert schedule["refresh-requirement-validity"]["schedule"] == float(settings.VALIDITY_SWEEP_INTERVAL_SECONDS)


def test_process_reminder_jobs_task_runs_sweep(engine, db, subcontractor, insurance, notifier, monkeypatch) -> None:
    request_document_use_case(
        db=db,
        subcontractor_id=subcontractor.id,
        document_type_id=insurance.id,
        now=T0,
    )
    monkeypatch.setattr(worker, "SessionLocal", sessionmaker(bind=engine, autoflush=False))
    monkeypatch.setattr(worker, "get_notifier", lambda: notifier)
    monkeypatch.setattr(worker, "now_utc", lambda: T0 + timedelta(minutes=1))

    result = worker.process_reminder_jobs()

    assert result["sent"] == 1
    assert notifier.templates == ["invite_initial"]


def test_refresh_task_reraises_store_failures(monkeypatch) -> None:
    class _BrokenSession:
        rolled_back = False
        closed = False

        def rollback(self):
            _BrokenSession.rolled_back = True

        def close(self):
            _BrokenSession.closed = True

    def _explode(**_kwargs):
        raise RuntimeError("store down")

    monkeypatch.setattr(worker, "SessionLocal", _BrokenSession)
    monkeypatch.setattr(worker, "refresh_requirement_validity_use_case", _explode)

    with pytest.raises(RuntimeError, match="store down"):
        worker.refresh_requirement_validity()

    assert _BrokenSession.rolled_back
    assert _BrokenSession.closed
