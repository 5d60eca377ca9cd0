from datetime import timedelta

from sqlalchemy import select

from app.db import SessionLocal, create_schema
from app.models import Technician, User, UserRole, UserStatus
from app.security.passwords import hash_password
from app.services.account_service import get_or_create_company
from app.services.date_utils import today
from app.services.record_store import DeliveryRecord, create_delivery, list_deliveries

DEMO_COMPANY = 'Demo Warehouse'
DEMO_USERS = [
    ('admin', 'admin@demo.local', 'adminpass', UserRole.ADMIN),
    ('editor', 'editor@demo.local', 'editorpass', UserRole.EDITOR),
    ('viewer', 'viewer@demo.local', 'viewerpass', UserRole.VIEWER),
]
DEMO_TECHNICIANS = ['Ana Souza', 'Bruno Lima', 'Carla Dias']


def seed() -> None:
    create_schema()
    with SessionLocal() as db:
        company = get_or_create_company(db, name=DEMO_COMPANY)

        for username, email, password, role in DEMO_USERS:
            user = db.execute(select(User).where(User.username == username)).scalar_one_or_none()
            if not user:
                db.add(
                    User(
                        username=username,
                        email=email,
                        password_hash=hash_password(password),
                        role=role,
                        status=UserStatus.ACTIVE,
                        company_id=company.id,
                    )
                )

        for name in DEMO_TECHNICIANS:
            exists = db.execute(
                select(Technician.id).where(Technician.company_id == company.id, Technician.name == name)
            ).scalar_one_or_none()
            if not exists:
                db.add(Technician(name=name, company_id=company.id))
        db.flush()

        if not list_deliveries(db, company_id=company.id):
            base = today()
            for offset in range(5):
                create_delivery(
                    db,
                    record=DeliveryRecord(
                        id='',
                        invoice_number=f'NF-{1000 + offset}',
                        issue_date=base - timedelta(days=offset * 2),
                    ),
                    company_id=company.id,
                )

        db.commit()


if __name__ == '__main__':
    seed()
