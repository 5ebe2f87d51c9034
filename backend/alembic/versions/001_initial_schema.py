"""initial schema: requirements, reminder jobs, email log

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("notification_email", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "staff_members",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.Uuid(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="member"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("role IN ('owner', 'admin', 'reviewer', 'member')", name="chk_staff_role"),
    )
    op.create_index("ix_staff_members_tenant_id", "staff_members", ["tenant_id"])

    op.create_table(
        "subcontractors",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.Uuid(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("company_name", sa.String(255), nullable=False),
        sa.Column("contact_email", sa.String(255), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("status IN ('active', 'inactive', 'archived')", name="chk_subcontractor_status"),
    )
    op.create_index("ix_subcontractors_tenant_id", "subcontractors", ["tenant_id"])
    op.create_index("ix_subcontractors_status", "subcontractors", ["status"])

    op.create_table(
        "document_types",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("code", sa.String(100), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("does_not_expire", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("expiring_lead_days", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_document_types_code", "document_types", ["code"], unique=True)

    op.create_table(
        "requirements",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("subcontractor_id", sa.Uuid(), sa.ForeignKey("subcontractors.id"), nullable=False),
        sa.Column("document_type_id", sa.Uuid(), sa.ForeignKey("document_types.id"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="missing"),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("escalated", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("valid_from", sa.Date(), nullable=True),
        sa.Column("valid_to", sa.Date(), nullable=True),
        sa.Column("monthly_refresh", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("file_key", sa.String(500), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            "status IN ('missing', 'submitted', 'in_review', 'valid', 'expiring', 'expired', 'rejected', 'hidden')",
            name="chk_requirement_status",
        ),
        sa.CheckConstraint(
            "rejection_reason IS NULL OR status = 'rejected'",
            name="chk_requirement_rejection_reason",
        ),
        sa.CheckConstraint(
            "valid_to IS NULL OR status IN ('valid', 'expiring', 'expired')",
            name="chk_requirement_valid_to",
        ),
    )
    op.create_index("ix_requirements_subcontractor_id", "requirements", ["subcontractor_id"])
    op.create_index("ix_requirements_document_type_id", "requirements", ["document_type_id"])
    op.create_index("ix_requirements_status", "requirements", ["status"])
    op.create_index("ix_requirements_valid_to", "requirements", ["valid_to"])

    op.create_table(
        "reminder_jobs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("requirement_id", sa.Uuid(), sa.ForeignKey("requirements.id"), nullable=False),
        sa.Column("state", sa.String(20), nullable=False, server_default="active"),
        sa.Column("next_run_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("escalated", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("claim_token", sa.String(64), nullable=True),
        sa.Column("claimed_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("consecutive_failures", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            "state IN ('active', 'paused', 'completed', 'escalated')",
            name="chk_reminder_job_state",
        ),
        sa.CheckConstraint("attempts >= 0", name="chk_reminder_job_attempts"),
    )
    op.create_index("ix_reminder_jobs_requirement_id", "reminder_jobs", ["requirement_id"])
    op.create_index("ix_reminder_jobs_state", "reminder_jobs", ["state"])
    op.create_index(
        "uq_reminder_jobs_open_requirement",
        "reminder_jobs",
        ["requirement_id"],
        unique=True,
        postgresql_where=sa.text("state IN ('active', 'paused')"),
        sqlite_where=sa.text("state IN ('active', 'paused')"),
    )
    op.create_index(
        "idx_reminder_jobs_due",
        "reminder_jobs",
        ["state", "next_run_at"],
        postgresql_where=sa.text("state = 'active'"),
    )

    op.create_table(
        "email_logs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("requirement_id", sa.Uuid(), sa.ForeignKey("requirements.id"), nullable=False),
        sa.Column("subcontractor_id", sa.Uuid(), sa.ForeignKey("subcontractors.id"), nullable=False),
        sa.Column("job_id", sa.Uuid(), sa.ForeignKey("reminder_jobs.id"), nullable=True),
        sa.Column("attempt_number", sa.Integer(), nullable=True),
        sa.Column("to_email", sa.Text(), nullable=False),
        sa.Column("template_key", sa.String(50), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="queued"),
        sa.Column("provider_message_id", sa.String(255), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("context", sa.JSON().with_variant(postgresql.JSONB(), "postgresql"), nullable=True),
        sa.Column("idempotency_key", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "template_key IN ('invite_initial', 'reminder_soft', 'reminder_hard', 'escalation', 'monthly_refresh')",
            name="chk_email_template_key",
        ),
        sa.CheckConstraint("status IN ('queued', 'sent', 'failed')", name="chk_email_status"),
        sa.UniqueConstraint("idempotency_key", name="uq_email_logs_idempotency_key"),
    )
    op.create_index("ix_email_logs_requirement_id", "email_logs", ["requirement_id"])
    op.create_index("ix_email_logs_subcontractor_id", "email_logs", ["subcontractor_id"])
    op.create_index("ix_email_logs_job_id", "email_logs", ["job_id"])
    op.create_index("ix_email_logs_status", "email_logs", ["status"])
    op.create_index("ix_email_logs_created_at", "email_logs", ["created_at"])

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("entity_type", sa.String(20), nullable=False),
        sa.Column("entity_id", sa.Uuid(), nullable=False),
        sa.Column("details", sa.JSON().with_variant(postgresql.JSONB(), "postgresql"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("entity_type IN ('requirement', 'reminder_job')", name="chk_audit_entity_type"),
    )
    op.create_index("ix_audit_events_action", "audit_events", ["action"])
    op.create_index("ix_audit_events_created_at", "audit_events", ["created_at"])
    op.create_index("idx_audit_events_entity", "audit_events", ["entity_type", "entity_id"])


def downgrade() -> None:
    op.drop_table("audit_events")
    op.drop_table("email_logs")
    op.drop_index("idx_reminder_jobs_due", table_name="reminder_jobs")
    op.drop_index("uq_reminder_jobs_open_requirement", table_name="reminder_jobs")
    op.drop_table("reminder_jobs")
    op.drop_table("requirements")
    op.drop_table("document_types")
    op.drop_table("subcontractors")
    op.drop_table("staff_members")
    op.drop_table("tenants")
