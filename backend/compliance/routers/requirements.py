"""Requirement endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from uuid import UUID

from ..database import get_db
from ..schemas import (
    ApproveRequest,
    ComplianceSummaryResponse,
    RejectRequest,
    RequirementCreate,
    RequirementResponse,
    UploadRequest,
)
from ..services.requirement_state import now_utc
from ..use_cases.compliance_summary import subcontractor_compliance_use_case
from ..use_cases.requirement_transitions import (
    approve_requirement_use_case,
    get_requirement_use_case,
    hide_requirement_use_case,
    reject_requirement_use_case,
    request_document_use_case,
    restore_requirement_use_case,
    start_review_use_case,
    upload_document_use_case,
)

router = APIRouter(tags=["requirements"])


@router.post("/requirements", response_model=RequirementResponse, status_code=201)
def request_document(data: RequirementCreate, db: Session = Depends(get_db)):
    """Request a document from a subcontractor (starts reminders by default)."""
    return request_document_use_case(
        db=db,
        subcontractor_id=data.subcontractor_id,
        document_type_id=data.document_type_id,
        now=now_utc(),
        due_date=data.due_date,
        monthly_refresh=data.monthly_refresh,
        start_reminders=data.start_reminders,
    )


@router.get("/requirements/{requirement_id}", response_model=RequirementResponse)
def get_requirement(requirement_id: UUID, db: Session = Depends(get_db)):
    """Get requirement with validity recomputed for today."""
    return get_requirement_use_case(db=db, requirement_id=requirement_id, today=now_utc().date())


@router.post("/requirements/{requirement_id}/upload", response_model=RequirementResponse)
def upload_document(requirement_id: UUID, data: UploadRequest, db: Session = Depends(get_db)):
    """Record an uploaded document."""
    return upload_document_use_case(db=db, requirement_id=requirement_id, file_key=data.file_key, now=now_utc())


@router.post("/requirements/{requirement_id}/start-review", response_model=RequirementResponse)
def start_review(requirement_id: UUID, db: Session = Depends(get_db)):
    return start_review_use_case(db=db, requirement_id=requirement_id, now=now_utc())


@router.post("/requirements/{requirement_id}/approve", response_model=RequirementResponse)
def approve_requirement(requirement_id: UUID, data: ApproveRequest, db: Session = Depends(get_db)):
    """Approve with a validity window."""
    return approve_requirement_use_case(
        db=db,
        requirement_id=requirement_id,
        now=now_utc(),
        valid_to=data.valid_to,
        valid_from=data.valid_from,
    )


@router.post("/requirements/{requirement_id}/reject", response_model=RequirementResponse)
def reject_requirement(requirement_id: UUID, data: RejectRequest, db: Session = Depends(get_db)):
    """Reject with a reason; reminders resume on the existing job."""
    return reject_requirement_use_case(db=db, requirement_id=requirement_id, reason=data.reason, now=now_utc())


@router.post("/requirements/{requirement_id}/hide", response_model=RequirementResponse)
def hide_requirement(requirement_id: UUID, db: Session = Depends(get_db)):
    return hide_requirement_use_case(db=db, requirement_id=requirement_id, now=now_utc())


@router.post("/requirements/{requirement_id}/restore", response_model=RequirementResponse)
def restore_requirement(requirement_id: UUID, db: Session = Depends(get_db)):
    return restore_requirement_use_case(db=db, requirement_id=requirement_id, now=now_utc())


@router.get("/subcontractors/{subcontractor_id}/compliance", response_model=ComplianceSummaryResponse)
def get_subcontractor_compliance(subcontractor_id: UUID, db: Session = Depends(get_db)):
    """Requirement counts for one subcontractor (hidden requirements excluded)."""
    summary = subcontractor_compliance_use_case(db=db, subcontractor_id=subcontractor_id, today=now_utc().date())
    return ComplianceSummaryResponse.model_validate(summary)
