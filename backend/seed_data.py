"""Seed database with demo data."""
from compliance.database import SessionLocal
from compliance.models import DocumentType, StaffMember, Subcontractor, Tenant
from compliance.services.requirement_state import now_utc
from compliance.use_cases.requirement_transitions import request_document_use_case
from datetime import timedelta
import uuid

def seed():
    """Seed database with demo data."""
    db = SessionLocal()

    try:
        # Create tenant
        tenant = Tenant(
            id=uuid.UUID('00000000-0000-0000-0000-000000000001'),
            name="Demo Bau GmbH",
            notification_email="compliance@demo-bau.example",
        )
        db.add(tenant)
        db.flush()

        # Create staff
        staff_data = [
            {
                'id': uuid.UUID('00000000-0000-0000-0000-000000000101'),
                'name': 'Anna Owner',
                'email': 'owner@demo-bau.example',
                'role': 'owner',
            },
            {
                'id': uuid.UUID('00000000-0000-0000-0000-000000000102'),
                'name': 'Ben Admin',
                'email': 'admin@demo-bau.example',
                'role': 'admin',
            },
            {
                'id': uuid.UUID('00000000-0000-0000-0000-000000000103'),
                'name': 'Clara Reviewer',
                'email': 'review@demo-bau.example',
                'role': 'reviewer',
            },
        ]
        for data in staff_data:
            db.add(StaffMember(tenant_id=tenant.id, **data))

        # Document catalog
        document_types = [
            DocumentType(
                id=uuid.UUID('00000000-0000-0000-0000-000000000201'),
                code='haftpflicht',
                name='Betriebshaftpflichtversicherung',
                does_not_expire=False,
            ),
            DocumentType(
                id=uuid.UUID('00000000-0000-0000-0000-000000000202'),
                code='freistellung_48b',
                name='Freistellungsbescheinigung §48b EStG',
                does_not_expire=False,
                expiring_lead_days=45,
            ),
            DocumentType(
                id=uuid.UUID('00000000-0000-0000-0000-000000000203'),
                code='gewerbeanmeldung',
                name='Gewerbeanmeldung',
                does_not_expire=True,
            ),
        ]
        db.add_all(document_types)

        # Subcontractors
        subcontractors = [
            Subcontractor(
                id=uuid.UUID('00000000-0000-0000-0000-000000000301'),
                tenant_id=tenant.id,
                company_name='Elektro Meyer',
                contact_email='office@elektro-meyer.example',
                status='active',
            ),
            Subcontractor(
                id=uuid.UUID('00000000-0000-0000-0000-000000000302'),
                tenant_id=tenant.id,
                company_name='Trockenbau Schulz',
                contact_email='info@trockenbau-schulz.example',
                status='active',
            ),
        ]
        db.add_all(subcontractors)
        db.commit()

        # Requirements (each starts its own reminder job)
        now = now_utc()
        for subcontractor in subcontractors:
            for document_type in document_types:
                request_document_use_case(
                    db=db,
                    subcontractor_id=subcontractor.id,
                    document_type_id=document_type.id,
                    now=now,
                    due_date=(now + timedelta(days=14)).date(),
                    monthly_refresh=document_type.code == 'freistellung_48b',
                )

        print("✅ Database seeded successfully!")
        print(f"   Tenant: {tenant.name}")
        print(f"   Staff: {len(staff_data)}")
        print(f"   Document types: {len(document_types)}")
        print(f"   Subcontractors: {len(subcontractors)}")
        print(f"   Requirements: {len(subcontractors) * len(document_types)}")

    except Exception as e:
        print(f"❌ Error seeding database: {e}")
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed()
