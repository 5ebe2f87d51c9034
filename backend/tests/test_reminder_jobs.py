from __future__ import annotations

from datetime import date, timedelta
from uuid import uuid4

import pytest

from compliance.config import settings
from compliance.domain_errors import AlreadyExistsError, InvalidTransitionError, NotFoundError
from compliance.models import AuditEvent, ReminderJob
from compliance.use_cases.reminder_jobs import (
    claim_reminder_job,
    commit_reminder_attempt,
    create_reminder_job_use_case,
    find_due_reminder_jobs,
    get_current_reminder_job,
    pause_reminder_job_use_case,
    release_reminder_claim,
    resume_reminder_job_use_case,
    stop_reminder_job_use_case,
)
from compliance.use_cases.requirement_transitions import (
    approve_requirement_use_case,
    hide_requirement_use_case,
    request_document_use_case,
    upload_document_use_case,
)
from conftest import T0


@pytest.fixture()
def requirement(db, subcontractor, insurance):
    return request_document_use_case(
        db=db,
        subcontractor_id=subcontractor.id,
        document_type_id=insurance.id,
        now=T0,
        start_reminders=False,
    )


@pytest.fixture()
def job(db, requirement):
    return create_reminder_job_use_case(db=db, requirement_id=requirement.id, now=T0)


def test_create_job_starts_active_and_due_now(job) -> None:
    assert job.state == "active"
    assert job.attempts == 0
    assert job.max_attempts == 5
    assert job.next_run_at == T0
    assert job.consecutive_failures == 0


def test_create_second_open_job_is_rejected(db, requirement, job) -> None:
    with pytest.raises(AlreadyExistsError) as exc_info:
        create_reminder_job_use_case(db=db, requirement_id=requirement.id, now=T0)
    assert exc_info.value.code == "REMINDER_JOB_ALREADY_EXISTS"


def test_create_job_for_unknown_requirement(db) -> None:
    with pytest.raises(NotFoundError):
        create_reminder_job_use_case(db=db, requirement_id=uuid4(), now=T0)


def test_create_job_refused_for_hidden_requirement(db, requirement) -> None:
    hide_requirement_use_case(db=db, requirement_id=requirement.id, now=T0)

    with pytest.raises(InvalidTransitionError) as exc_info:
        create_reminder_job_use_case(db=db, requirement_id=requirement.id, now=T0)

    assert exc_info.value.code == "REQUIREMENT_NOT_AWAITING_DOCUMENT"
    assert db.query(ReminderJob).filter(ReminderJob.requirement_id == requirement.id).count() == 0


def test_create_job_refused_for_valid_requirement(db, requirement) -> None:
    upload_document_use_case(db=db, requirement_id=requirement.id, file_key=None, now=T0)
    approve_requirement_use_case(db=db, requirement_id=requirement.id, now=T0, valid_to=date(2099, 1, 1))

    with pytest.raises(InvalidTransitionError) as exc_info:
        create_reminder_job_use_case(db=db, requirement_id=requirement.id, now=T0)

    assert exc_info.value.code == "REQUIREMENT_NOT_AWAITING_DOCUMENT"
    assert exc_info.value.details["status"] == "valid"
    assert db.query(ReminderJob).filter(ReminderJob.requirement_id == requirement.id).count() == 0


def test_partial_unique_index_blocks_second_open_job(db, requirement, job) -> None:
    from sqlalchemy.exc import IntegrityError

    db.add(ReminderJob(requirement_id=requirement.id, state="paused", next_run_at=T0))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_new_job_allowed_once_previous_is_completed(db, requirement, job) -> None:
    stop_reminder_job_use_case(db=db, job_id=job.id, now=T0)
    fresh = create_reminder_job_use_case(db=db, requirement_id=requirement.id, now=T0 + timedelta(hours=1))

    assert fresh.id != job.id
    assert get_current_reminder_job(db=db, requirement_id=requirement.id).id == fresh.id


def test_pause_then_resume_applies_grace_window(db, job) -> None:
    pause_reminder_job_use_case(db=db, job_id=job.id, now=T0)
    assert job.state == "paused"

    resume_at = T0 + timedelta(days=2)
    resume_reminder_job_use_case(db=db, job_id=job.id, now=resume_at)

    assert job.state == "active"
    assert job.next_run_at == resume_at + timedelta(minutes=settings.REMINDER_RESUME_GRACE_MINUTES)


def test_pause_paused_job_is_invalid(db, job) -> None:
    pause_reminder_job_use_case(db=db, job_id=job.id, now=T0)
    with pytest.raises(InvalidTransitionError) as exc_info:
        pause_reminder_job_use_case(db=db, job_id=job.id, now=T0)
    assert exc_info.value.code == "REMINDER_JOB_ALREADY_PAUSED"


def test_resume_active_job_is_invalid(db, job) -> None:
    with pytest.raises(InvalidTransitionError) as exc_info:
        resume_reminder_job_use_case(db=db, job_id=job.id, now=T0)
    assert exc_info.value.code == "REMINDER_JOB_NOT_PAUSED"


def test_stop_is_idempotent_and_final(db, job) -> None:
    stop_reminder_job_use_case(db=db, job_id=job.id, now=T0)
    stop_reminder_job_use_case(db=db, job_id=job.id, now=T0)
    assert job.state == "completed"

    with pytest.raises(InvalidTransitionError) as exc_info:
        resume_reminder_job_use_case(db=db, job_id=job.id, now=T0)
    assert exc_info.value.code == "REMINDER_JOB_ALREADY_COMPLETED"

    stopped = db.query(AuditEvent).filter(
        AuditEvent.entity_id == job.id,
        AuditEvent.action == "reminder_stopped",
    ).count()
    assert stopped == 1


def test_claim_is_exclusive_until_lease_expires(db, job) -> None:
    token = claim_reminder_job(db=db, job_id=job.id, expected_attempts=0, now=T0)
    assert token is not None

    assert claim_reminder_job(db=db, job_id=job.id, expected_attempts=0, now=T0 + timedelta(seconds=5)) is None

    after_lease = T0 + timedelta(seconds=settings.REMINDER_CLAIM_LEASE_SECONDS + 1)
    assert claim_reminder_job(db=db, job_id=job.id, expected_attempts=0, now=after_lease) is not None


def test_claim_with_stale_attempts_fails(db, job) -> None:
    token = claim_reminder_job(db=db, job_id=job.id, expected_attempts=0, now=T0)
    assert commit_reminder_attempt(db=db, job_id=job.id, token=token, attempt_number=1, now=T0, escalate=False)
    db.commit()

    later = T0 + timedelta(days=3)
    assert claim_reminder_job(db=db, job_id=job.id, expected_attempts=0, now=later) is None
    assert claim_reminder_job(db=db, job_id=job.id, expected_attempts=1, now=later) is not None


def test_commit_attempt_advances_schedule(db, job) -> None:
    token = claim_reminder_job(db=db, job_id=job.id, expected_attempts=0, now=T0)
    assert commit_reminder_attempt(db=db, job_id=job.id, token=token, attempt_number=1, now=T0, escalate=False)
    db.commit()
    db.refresh(job)

    assert job.attempts == 1
    assert job.next_run_at == T0 + timedelta(days=3)
    assert job.claim_token is None


def test_commit_with_wrong_token_counts_nothing(db, job) -> None:
    claim_reminder_job(db=db, job_id=job.id, expected_attempts=0, now=T0)
    assert not commit_reminder_attempt(db=db, job_id=job.id, token="other", attempt_number=1, now=T0, escalate=False)
    db.commit()
    db.refresh(job)
    assert job.attempts == 0


def test_stop_during_claim_is_not_resurrected_by_commit(db, job) -> None:
    token = claim_reminder_job(db=db, job_id=job.id, expected_attempts=0, now=T0)
    stop_reminder_job_use_case(db=db, job_id=job.id, now=T0)

    assert commit_reminder_attempt(db=db, job_id=job.id, token=token, attempt_number=1, now=T0, escalate=True)
    db.commit()
    db.refresh(job)

    assert job.state == "completed"
    assert job.attempts == 1


def test_release_claim_quarantines_after_repeated_failures(db, job, monkeypatch) -> None:
    monkeypatch.setattr(settings, "REMINDER_MAX_CONSECUTIVE_FAILURES", 2)

    token = claim_reminder_job(db=db, job_id=job.id, expected_attempts=0, now=T0)
    assert release_reminder_claim(db=db, job_id=job.id, token=token, error="HTTP_500: boom", now=T0) is False
    db.commit()

    token = claim_reminder_job(db=db, job_id=job.id, expected_attempts=0, now=T0)
    assert release_reminder_claim(db=db, job_id=job.id, token=token, error="HTTP_500: boom", now=T0) is True
    db.commit()
    db.refresh(job)

    assert job.state == "paused"
    assert job.attempts == 0
    assert job.consecutive_failures == 2
    assert job.last_error == "HTTP_500: boom"


def test_find_due_skips_future_paused_and_held_jobs(db, requirement, job) -> None:
    assert [due.job_id for due in find_due_reminder_jobs(db=db, now=T0 - timedelta(minutes=1))] == []
    assert [due.job_id for due in find_due_reminder_jobs(db=db, now=T0)] == [job.id]

    upload_document_use_case(db=db, requirement_id=requirement.id, file_key=None, now=T0)
    assert find_due_reminder_jobs(db=db, now=T0) == []
    db.refresh(job)
    # Held, not completed, while awaiting review.
    assert job.state == "active"


def test_find_due_skips_inactive_subcontractor(db, subcontractor, job) -> None:
    subcontractor.status = "inactive"
    db.commit()

    assert find_due_reminder_jobs(db=db, now=T0) == []
