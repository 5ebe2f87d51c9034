from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime, timezone
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from compliance.database import Base
from compliance.domain_errors import NotifierFailure
from compliance.models import DocumentType, StaffMember, Subcontractor, Tenant
from compliance.notifier import NotifierReceipt

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FakeNotifier:
    """Records every send; fails while `fail_with` is set."""

    def __init__(self, *, fail_with: str | None = None):
        self.fail_with = fail_with
        self.calls: list[dict] = []
        self.on_send = None

    def send(self, to, template_key, context):
        self.calls.append({"to": list(to), "template_key": template_key, "context": dict(context)})
        if self.on_send is not None:
            self.on_send()
        if self.fail_with:
            raise NotifierFailure(self.fail_with)
        return NotifierReceipt(id=f"msg-{len(self.calls)}")

    @property
    def templates(self) -> list[str]:
        return [call["template_key"] for call in self.calls]


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture()
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture()
def tenant(db) -> Tenant:
    tenant = Tenant(id=uuid4(), name="Demo Bau", notification_email="office@demo-bau.example")
    db.add(tenant)
    db.add_all(
        [
            StaffMember(tenant_id=tenant.id, name="Owner", email="owner@demo-bau.example", role="owner"),
            StaffMember(tenant_id=tenant.id, name="Admin", email="admin@demo-bau.example", role="admin"),
            StaffMember(tenant_id=tenant.id, name="Reviewer", email="review@demo-bau.example", role="reviewer"),
        ]
    )
    db.commit()
    return tenant


@pytest.fixture()
def subcontractor(db, tenant) -> Subcontractor:
    subcontractor = Subcontractor(
        id=uuid4(),
        tenant_id=tenant.id,
        company_name="Elektro Meyer",
        contact_email="office@elektro-meyer.example",
        status="active",
    )
    db.add(subcontractor)
    db.commit()
    return subcontractor


@pytest.fixture()
def insurance(db) -> DocumentType:
    document_type = DocumentType(id=uuid4(), code="haftpflicht", name="Liability insurance")
    db.add(document_type)
    db.commit()
    return document_type


@pytest.fixture()
def trade_license(db) -> DocumentType:
    document_type = DocumentType(id=uuid4(), code="gewerbeanmeldung", name="Trade license", does_not_expire=True)
    db.add(document_type)
    db.commit()
    return document_type
