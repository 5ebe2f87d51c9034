"""Pydantic schemas for API."""
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional
from datetime import date, datetime
from uuid import UUID


# Requirement schemas
class RequirementCreate(BaseModel):
    subcontractor_id: UUID
    document_type_id: UUID
    due_date: Optional[date] = None
    monthly_refresh: bool = False
    start_reminders: bool = True


class DocumentTypeBrief(BaseModel):
    id: UUID
    code: str
    name: str
    does_not_expire: bool
    model_config = ConfigDict(from_attributes=True)


class RequirementResponse(BaseModel):
    id: UUID
    subcontractor_id: UUID
    document_type_id: UUID
    document_type: Optional[DocumentTypeBrief] = None
    status: str
    rejection_reason: Optional[str] = None
    due_date: Optional[date] = None
    escalated: bool
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None
    monthly_refresh: bool
    file_key: Optional[str] = None
    submitted_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class UploadRequest(BaseModel):
    file_key: Optional[str] = Field(None, max_length=500)


class ApproveRequest(BaseModel):
    valid_to: Optional[date] = None
    valid_from: Optional[date] = None


class RejectRequest(BaseModel):
    reason: str = Field(..., max_length=2000)


class ComplianceSummaryResponse(BaseModel):
    subcontractor_id: UUID
    total: int
    outstanding: int
    in_review: int
    expiring: int
    is_compliant: bool
    by_status: dict[str, int]
    model_config = ConfigDict(from_attributes=True)


# Reminder schemas
class ReminderJobResponse(BaseModel):
    id: UUID
    requirement_id: UUID
    state: str
    next_run_at: datetime
    attempts: int
    max_attempts: int
    escalated: bool
    consecutive_failures: int
    last_error: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class DispatchOutcomeResponse(BaseModel):
    job_id: UUID
    status: str
    template_key: Optional[str] = None
    attempt_number: Optional[int] = None
    email_log_id: Optional[UUID] = None
    error: Optional[str] = None
    quarantined: bool = False
    model_config = ConfigDict(from_attributes=True)


class ControlResponse(BaseModel):
    ok: bool
    action: str
    job: Optional[ReminderJobResponse] = None
    outcome: Optional[DispatchOutcomeResponse] = None


class SweepResponse(BaseModel):
    processed: int
    sent: int
    escalated: int
    failed: int
    skipped: int
    held: int
    completed: int
    quarantined: int
    monthly_sent: int
