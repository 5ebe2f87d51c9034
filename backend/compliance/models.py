"""SQLAlchemy models for requirements, reminder jobs and the email audit log."""
from sqlalchemy import (
    JSON, Boolean, CheckConstraint, Column, Date, ForeignKey, Index,
    Integer, String, Text, Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from .database import Base
from .db_types import UTCDateTime

JSONType = JSON().with_variant(JSONB, "postgresql")

REQUIREMENT_STATUSES = (
    'missing', 'submitted', 'in_review', 'valid', 'expiring', 'expired', 'rejected', 'hidden',
)
REMINDER_JOB_STATES = ('active', 'paused', 'completed', 'escalated')
EMAIL_TEMPLATE_KEYS = (
    'invite_initial', 'reminder_soft', 'reminder_hard', 'escalation', 'monthly_refresh',
)


class Tenant(Base):
    """General contractor account (multi-tenant support)."""
    __tablename__ = "tenants"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    # Fallback recipient for escalations when no owner/admin has an email.
    notification_email = Column(String(255), nullable=True)
    created_at = Column(UTCDateTime, server_default=func.now())

    staff = relationship("StaffMember", back_populates="tenant")
    subcontractors = relationship("Subcontractor", back_populates="tenant")


class StaffMember(Base):
    """Internal user of a tenant."""
    __tablename__ = "staff_members"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    role = Column(String(20), nullable=False, default='member')
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(UTCDateTime, server_default=func.now())

    __table_args__ = (
        CheckConstraint(
            role.in_(['owner', 'admin', 'reviewer', 'member']),
            name='chk_staff_role'
        ),
    )

    tenant = relationship("Tenant", back_populates="staff")


class Subcontractor(Base):
    """Subcontractor company that owes compliance documents."""
    __tablename__ = "subcontractors"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id"), nullable=False, index=True)
    company_name = Column(String(255), nullable=False)
    contact_email = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default='active', index=True)
    created_at = Column(UTCDateTime, server_default=func.now())
    updated_at = Column(UTCDateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(
            status.in_(['active', 'inactive', 'archived']),
            name='chk_subcontractor_status'
        ),
    )

    tenant = relationship("Tenant", back_populates="subcontractors")
    requirements = relationship("Requirement", back_populates="subcontractor")


class DocumentType(Base):
    """Catalog entry (insurance certificate, tax clearance, ...)."""
    __tablename__ = "document_types"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    code = Column(String(100), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    does_not_expire = Column(Boolean, default=False, nullable=False)
    # Overrides VALIDITY_EXPIRING_LEAD_DAYS when set.
    expiring_lead_days = Column(Integer, nullable=True)
    created_at = Column(UTCDateTime, server_default=func.now())


class Requirement(Base):
    """One (subcontractor, document type) compliance obligation."""
    __tablename__ = "requirements"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    subcontractor_id = Column(Uuid, ForeignKey("subcontractors.id"), nullable=False, index=True)
    document_type_id = Column(Uuid, ForeignKey("document_types.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default='missing', index=True)
    rejection_reason = Column(Text, nullable=True)
    due_date = Column(Date, nullable=True)
    escalated = Column(Boolean, default=False, nullable=False)
    valid_from = Column(Date, nullable=True)
    valid_to = Column(Date, nullable=True, index=True)
    monthly_refresh = Column(Boolean, default=False, nullable=False)
    file_key = Column(String(500), nullable=True)  # opaque storage pointer
    submitted_at = Column(UTCDateTime, nullable=True)
    reviewed_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, server_default=func.now())
    updated_at = Column(UTCDateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(
            status.in_(list(REQUIREMENT_STATUSES)),
            name='chk_requirement_status'
        ),
        CheckConstraint(
            "rejection_reason IS NULL OR status = 'rejected'",
            name='chk_requirement_rejection_reason'
        ),
        CheckConstraint(
            "valid_to IS NULL OR status IN ('valid', 'expiring', 'expired')",
            name='chk_requirement_valid_to'
        ),
    )

    subcontractor = relationship("Subcontractor", back_populates="requirements")
    document_type = relationship("DocumentType")
    reminder_jobs = relationship("ReminderJob", back_populates="requirement")


class ReminderJob(Base):
    """
    Scheduling record for nagging about one requirement.
    Claimed by sweeps via conditional UPDATE (claim_token/claimed_until).
    """
    __tablename__ = "reminder_jobs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    requirement_id = Column(Uuid, ForeignKey("requirements.id"), nullable=False, index=True)
    state = Column(String(20), nullable=False, default='active', index=True)
    next_run_at = Column(UTCDateTime, nullable=False)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=5)
    escalated = Column(Boolean, nullable=False, default=False)

    # In-flight claim
    claim_token = Column(String(64), nullable=True)
    claimed_until = Column(UTCDateTime, nullable=True)

    # Poison-job tracking, independent from attempts
    consecutive_failures = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)

    created_at = Column(UTCDateTime, server_default=func.now())
    updated_at = Column(UTCDateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(
            state.in_(list(REMINDER_JOB_STATES)),
            name='chk_reminder_job_state'
        ),
        CheckConstraint('attempts >= 0', name='chk_reminder_job_attempts'),
        # At most one open job per requirement
        Index(
            'uq_reminder_jobs_open_requirement', 'requirement_id',
            unique=True,
            postgresql_where=state.in_(['active', 'paused']),
            sqlite_where=state.in_(['active', 'paused']),
        ),
        Index('idx_reminder_jobs_due', 'state', 'next_run_at',
              postgresql_where=(state == 'active')),
    )

    requirement = relationship("Requirement", back_populates="reminder_jobs")


class EmailLog(Base):
    """Append-only record of one notification attempt."""
    __tablename__ = "email_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    requirement_id = Column(Uuid, ForeignKey("requirements.id"), nullable=False, index=True)
    subcontractor_id = Column(Uuid, ForeignKey("subcontractors.id"), nullable=False, index=True)
    job_id = Column(Uuid, ForeignKey("reminder_jobs.id"), nullable=True, index=True)
    attempt_number = Column(Integer, nullable=True)
    to_email = Column(Text, nullable=False)
    template_key = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, default='queued', index=True)
    provider_message_id = Column(String(255), nullable=True)
    error = Column(Text, nullable=True)
    context = Column(JSONType, default=dict)
    # Format: monthly_refresh:<requirement_id>:<yyyy-mm-dd>
    idempotency_key = Column(String(255), unique=True, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, server_default=func.now(), index=True)
    sent_at = Column(UTCDateTime, nullable=True)

    __table_args__ = (
        CheckConstraint(
            template_key.in_(list(EMAIL_TEMPLATE_KEYS)),
            name='chk_email_template_key'
        ),
        CheckConstraint(
            status.in_(['queued', 'sent', 'failed']),
            name='chk_email_status'
        ),
    )


class AuditEvent(Base):
    """Audit trail for requirement transitions and manual reminder actions."""
    __tablename__ = "audit_events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    action = Column(String(50), nullable=False, index=True)
    entity_type = Column(String(20), nullable=False)
    entity_id = Column(Uuid, nullable=False)
    details = Column(JSONType, default=dict)
    created_at = Column(UTCDateTime, server_default=func.now(), index=True)

    __table_args__ = (
        CheckConstraint(
            entity_type.in_(['requirement', 'reminder_job']),
            name='chk_audit_entity_type'
        ),
        Index('idx_audit_events_entity', 'entity_type', 'entity_id'),
    )
