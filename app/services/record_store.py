"""Tenant-scoped persistence for the dashboard collections.

Rows are SQLAlchemy models; the rest of the application works with the plain
record dataclasses below. Every statement built here is filtered by
``company_id``. Writes are last-write-wins: there is no version column.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.models import (
    AdminStatus,
    CommercialDemand,
    Delivery,
    DeliveryStatus,
    DemandPriority,
    DemandStatus,
    Pendency,
    Technician,
    User,
    UserRole,
    UserStatus,
)
from app.services.date_utils import parse_date, to_iso
from app.services.identifiers import generate_id


@dataclass(frozen=True)
class DeliveryRecord:
    id: str
    invoice_number: str
    issue_date: date
    status: DeliveryStatus = DeliveryStatus.PENDING
    admin_status: AdminStatus = AdminStatus.OPEN
    delivery_date: date | None = None
    return_date: date | None = None
    receiver_name: str | None = None
    observations: str | None = None
    company_id: str | None = None


@dataclass(frozen=True)
class PendencyRecord:
    id: str
    provider_name: str
    reference_number: str
    item_name: str
    quantity: int
    reason: str
    created_on: date
    expected_resolution_date: date | None = None
    resolved: bool = False
    company_id: str | None = None


@dataclass(frozen=True)
class DemandRecord:
    id: str
    title: str
    request_date: date
    deadline: date
    items: str = ''
    status: DemandStatus = DemandStatus.PENDING
    priority: DemandPriority = DemandPriority.MEDIUM
    client_name: str | None = None
    project_name: str | None = None
    salesperson_name: str | None = None
    observations: str | None = None
    completion_date: date | None = None
    company_id: str | None = None


@dataclass(frozen=True)
class TechnicianRecord:
    id: str
    name: str
    company_id: str | None = None


@dataclass(frozen=True)
class UserRecord:
    id: str
    username: str
    email: str
    role: UserRole
    status: UserStatus
    company_id: str | None = None


# ---------------------------------------------------------------------------
# Row <-> record mappers
# ---------------------------------------------------------------------------


def delivery_to_record(row: Delivery) -> DeliveryRecord:
    return DeliveryRecord(
        id=row.id,
        invoice_number=row.invoice_number,
        issue_date=row.issue_date,
        delivery_date=row.delivery_date,
        return_date=row.return_date,
        status=row.status,
        receiver_name=row.receiver_name,
        observations=row.observations,
        admin_status=row.admin_status or AdminStatus.OPEN,
        company_id=row.company_id,
    )


def _delivery_values(record: DeliveryRecord) -> dict:
    return {
        'invoice_number': record.invoice_number,
        'issue_date': record.issue_date,
        'delivery_date': record.delivery_date,
        'return_date': record.return_date,
        'status': record.status,
        'receiver_name': record.receiver_name,
        'observations': record.observations,
        'admin_status': record.admin_status or AdminStatus.OPEN,
    }


def pendency_to_record(row: Pendency) -> PendencyRecord:
    return PendencyRecord(
        id=row.id,
        provider_name=row.provider_name,
        reference_number=row.reference_number,
        item_name=row.item_name,
        quantity=int(row.quantity),
        reason=row.reason,
        created_on=row.created_on,
        expected_resolution_date=row.expected_resolution_date,
        resolved=bool(row.resolved),
        company_id=row.company_id,
    )


def _pendency_values(record: PendencyRecord) -> dict:
    return {
        'provider_name': record.provider_name,
        'reference_number': record.reference_number,
        'item_name': record.item_name,
        'quantity': record.quantity,
        'reason': record.reason,
        'created_on': record.created_on,
        'expected_resolution_date': record.expected_resolution_date,
        'resolved': record.resolved,
    }


def demand_to_record(row: CommercialDemand) -> DemandRecord:
    return DemandRecord(
        id=row.id,
        title=row.title,
        client_name=row.client_name,
        project_name=row.project_name,
        salesperson_name=row.salesperson_name,
        observations=row.observations,
        request_date=row.request_date,
        deadline=row.deadline,
        completion_date=row.completion_date,
        items=row.items or '',
        status=row.status,
        priority=row.priority,
        company_id=row.company_id,
    )


def _demand_values(record: DemandRecord) -> dict:
    return {
        'title': record.title,
        'client_name': record.client_name,
        'project_name': record.project_name,
        'salesperson_name': record.salesperson_name,
        'observations': record.observations,
        'request_date': record.request_date,
        'deadline': record.deadline,
        'completion_date': record.completion_date,
        'items': record.items,
        'status': record.status,
        'priority': record.priority,
    }


def technician_to_record(row: Technician) -> TechnicianRecord:
    return TechnicianRecord(id=row.id, name=row.name, company_id=row.company_id)


def user_to_record(row: User) -> UserRecord:
    return UserRecord(
        id=row.id,
        username=row.username,
        email=row.email,
        role=row.role,
        status=row.status,
        company_id=row.company_id,
    )


def _get_row(db: Session, model, *, row_id: str, company_id: str, label: str):
    row = db.execute(
        select(model).where(model.id == row_id, model.company_id == company_id)
    ).scalar_one_or_none()
    if not row:
        raise ValueError(f'{label} not found')
    return row


def _apply(row, values: dict) -> None:
    for key, value in values.items():
        setattr(row, key, value)


# ---------------------------------------------------------------------------
# Deliveries
# ---------------------------------------------------------------------------


def list_deliveries(db: Session, *, company_id: str) -> list[DeliveryRecord]:
    rows = db.execute(
        select(Delivery)
        .where(Delivery.company_id == company_id)
        .order_by(Delivery.created_at.desc(), Delivery.id.desc())
    ).scalars().all()
    return [delivery_to_record(row) for row in rows]


def list_deliveries_between(db: Session, *, company_id: str, start: date, end: date) -> list[DeliveryRecord]:
    rows = db.execute(
        select(Delivery)
        .where(
            Delivery.company_id == company_id,
            Delivery.issue_date >= start,
            Delivery.issue_date <= end,
        )
        .order_by(Delivery.issue_date.asc(), Delivery.invoice_number.asc())
    ).scalars().all()
    return [delivery_to_record(row) for row in rows]


def create_delivery(db: Session, *, record: DeliveryRecord, company_id: str) -> DeliveryRecord:
    row = Delivery(id=record.id or generate_id(), company_id=company_id, **_delivery_values(record))
    db.add(row)
    db.flush()
    return delivery_to_record(row)


def update_delivery(db: Session, *, record: DeliveryRecord, company_id: str) -> DeliveryRecord:
    row = _get_row(db, Delivery, row_id=record.id, company_id=company_id, label='Delivery')
    _apply(row, _delivery_values(record))
    db.flush()
    return delivery_to_record(row)


def delete_delivery(db: Session, *, delivery_id: str, company_id: str) -> None:
    row = _get_row(db, Delivery, row_id=delivery_id, company_id=company_id, label='Delivery')
    db.delete(row)
    db.flush()


# ---------------------------------------------------------------------------
# Pendencies
# ---------------------------------------------------------------------------


def list_pendencies(db: Session, *, company_id: str) -> list[PendencyRecord]:
    rows = db.execute(
        select(Pendency)
        .where(Pendency.company_id == company_id)
        .order_by(Pendency.created_at.desc(), Pendency.id.desc())
    ).scalars().all()
    return [pendency_to_record(row) for row in rows]


def create_pendency(db: Session, *, record: PendencyRecord, company_id: str) -> PendencyRecord:
    row = Pendency(id=record.id or generate_id(), company_id=company_id, **_pendency_values(record))
    db.add(row)
    db.flush()
    return pendency_to_record(row)


def update_pendency(db: Session, *, record: PendencyRecord, company_id: str) -> PendencyRecord:
    row = _get_row(db, Pendency, row_id=record.id, company_id=company_id, label='Pendency')
    _apply(row, _pendency_values(record))
    db.flush()
    return pendency_to_record(row)


def delete_pendency(db: Session, *, pendency_id: str, company_id: str) -> None:
    row = _get_row(db, Pendency, row_id=pendency_id, company_id=company_id, label='Pendency')
    db.delete(row)
    db.flush()


# ---------------------------------------------------------------------------
# Commercial demands
# ---------------------------------------------------------------------------


def list_demands(db: Session, *, company_id: str) -> list[DemandRecord]:
    rows = db.execute(
        select(CommercialDemand)
        .where(CommercialDemand.company_id == company_id)
        .order_by(CommercialDemand.created_at.desc(), CommercialDemand.id.desc())
    ).scalars().all()
    return [demand_to_record(row) for row in rows]


def list_demands_between(db: Session, *, company_id: str, start: date, end: date) -> list[DemandRecord]:
    rows = db.execute(
        select(CommercialDemand)
        .where(
            CommercialDemand.company_id == company_id,
            CommercialDemand.request_date >= start,
            CommercialDemand.request_date <= end,
        )
        .order_by(CommercialDemand.request_date.asc(), CommercialDemand.title.asc())
    ).scalars().all()
    return [demand_to_record(row) for row in rows]


def create_demand(db: Session, *, record: DemandRecord, company_id: str) -> DemandRecord:
    row = CommercialDemand(id=record.id or generate_id(), company_id=company_id, **_demand_values(record))
    db.add(row)
    db.flush()
    return demand_to_record(row)


def update_demand(db: Session, *, record: DemandRecord, company_id: str) -> DemandRecord:
    row = _get_row(db, CommercialDemand, row_id=record.id, company_id=company_id, label='Commercial demand')
    _apply(row, _demand_values(record))
    db.flush()
    return demand_to_record(row)


def delete_demand(db: Session, *, demand_id: str, company_id: str) -> None:
    row = _get_row(db, CommercialDemand, row_id=demand_id, company_id=company_id, label='Commercial demand')
    db.delete(row)
    db.flush()


# ---------------------------------------------------------------------------
# Technicians and users
# ---------------------------------------------------------------------------


def list_technicians(db: Session, *, company_id: str) -> list[TechnicianRecord]:
    rows = db.execute(
        select(Technician).where(Technician.company_id == company_id).order_by(Technician.name.asc())
    ).scalars().all()
    return [technician_to_record(row) for row in rows]


def create_technician(db: Session, *, name: str, company_id: str) -> TechnicianRecord:
    clean_name = (name or '').strip()
    if not clean_name:
        raise ValueError('Technician name is required')
    exists = db.execute(
        select(Technician.id).where(Technician.company_id == company_id, Technician.name == clean_name)
    ).scalar_one_or_none()
    if exists:
        raise ValueError('Technician already registered')
    row = Technician(name=clean_name, company_id=company_id)
    db.add(row)
    db.flush()
    return technician_to_record(row)


def delete_technician(db: Session, *, technician_id: str, company_id: str) -> None:
    row = _get_row(db, Technician, row_id=technician_id, company_id=company_id, label='Technician')
    db.delete(row)
    db.flush()


def list_users(db: Session, *, company_id: str) -> list[UserRecord]:
    rows = db.execute(select(User).where(User.company_id == company_id).order_by(User.username.asc())).scalars().all()
    return [user_to_record(row) for row in rows]


# ---------------------------------------------------------------------------
# Bulk replacement used by backup restore
# ---------------------------------------------------------------------------


def replace_deliveries(db: Session, *, records: list[DeliveryRecord], company_id: str) -> int:
    db.execute(delete(Delivery).where(Delivery.company_id == company_id))
    for record in records:
        create_delivery(db, record=record, company_id=company_id)
    return len(records)


def replace_pendencies(db: Session, *, records: list[PendencyRecord], company_id: str) -> int:
    db.execute(delete(Pendency).where(Pendency.company_id == company_id))
    for record in records:
        create_pendency(db, record=record, company_id=company_id)
    return len(records)


def replace_demands(db: Session, *, records: list[DemandRecord], company_id: str) -> int:
    db.execute(delete(CommercialDemand).where(CommercialDemand.company_id == company_id))
    for record in records:
        create_demand(db, record=record, company_id=company_id)
    return len(records)


def replace_technicians(db: Session, *, names: list[str], company_id: str) -> int:
    db.execute(delete(Technician).where(Technician.company_id == company_id))
    seen: set[str] = set()
    for name in names:
        clean_name = (name or '').strip()
        if not clean_name or clean_name in seen:
            continue
        seen.add(clean_name)
        db.add(Technician(name=clean_name, company_id=company_id))
    db.flush()
    return len(seen)


# ---------------------------------------------------------------------------
# Record <-> backup document (camelCase JSON) translation
# ---------------------------------------------------------------------------

DELIVERY_DOCUMENT_FIELDS = {
    'id': 'id',
    'invoice_number': 'invoiceNumber',
    'issue_date': 'issueDate',
    'delivery_date': 'deliveryDate',
    'return_date': 'returnDate',
    'status': 'status',
    'receiver_name': 'receiverName',
    'observations': 'observations',
    'admin_status': 'adminStatus',
}

PENDENCY_DOCUMENT_FIELDS = {
    'id': 'id',
    'provider_name': 'providerName',
    'reference_number': 'referenceNumber',
    'item_name': 'itemName',
    'quantity': 'quantity',
    'reason': 'reason',
    'created_on': 'date',
    'expected_resolution_date': 'expectedResolutionDate',
    'resolved': 'resolved',
}

DEMAND_DOCUMENT_FIELDS = {
    'id': 'id',
    'title': 'title',
    'client_name': 'clientName',
    'project_name': 'projectName',
    'salesperson_name': 'salespersonName',
    'observations': 'observations',
    'request_date': 'requestDate',
    'deadline': 'deadline',
    'completion_date': 'completionDate',
    'items': 'items',
    'status': 'status',
    'priority': 'priority',
}

USER_DOCUMENT_FIELDS = {
    'id': 'id',
    'username': 'username',
    'email': 'email',
    'role': 'role',
    'status': 'status',
}


def _document_value(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, date):
        return to_iso(value)
    return value


def record_to_document(record, fields: dict[str, str]) -> dict:
    return {key: _document_value(getattr(record, attr)) for attr, key in fields.items()}


def parse_enum(enum_cls: type[Enum], value, default=None):
    if value is None or value == '':
        if default is None:
            raise ValueError(f'{enum_cls.__name__} is required')
        return default
    if isinstance(value, enum_cls):
        return value
    raw = str(value).strip()
    for member in enum_cls:
        if raw == member.value or raw.upper() == member.name:
            return member
    raise ValueError(f'Invalid {enum_cls.__name__}: {raw}')


def _required_date(value, label: str) -> date:
    parsed = parse_date(value)
    if parsed is None:
        raise ValueError(f'{label} is required')
    return parsed


def _optional_text(value) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def delivery_from_document(doc: dict) -> DeliveryRecord:
    invoice_number = str(doc.get('invoiceNumber') or '').strip()
    if not invoice_number:
        raise ValueError('Invoice number is required')
    return DeliveryRecord(
        id=generate_id(),
        invoice_number=invoice_number,
        issue_date=_required_date(doc.get('issueDate'), 'Issue date'),
        delivery_date=parse_date(doc.get('deliveryDate')),
        return_date=parse_date(doc.get('returnDate')),
        status=parse_enum(DeliveryStatus, doc.get('status'), DeliveryStatus.PENDING),
        receiver_name=_optional_text(doc.get('receiverName')),
        observations=_optional_text(doc.get('observations')),
        admin_status=parse_enum(AdminStatus, doc.get('adminStatus'), AdminStatus.OPEN),
    )


def pendency_from_document(doc: dict) -> PendencyRecord:
    try:
        quantity = int(doc.get('quantity') or 0)
    except (TypeError, ValueError) as exc:
        raise ValueError('Quantity must be a whole number') from exc
    if quantity <= 0:
        raise ValueError('Quantity must be greater than zero')
    return PendencyRecord(
        id=generate_id(),
        provider_name=str(doc.get('providerName') or '').strip(),
        reference_number=str(doc.get('referenceNumber') or '').strip(),
        item_name=str(doc.get('itemName') or '').strip(),
        quantity=quantity,
        reason=str(doc.get('reason') or '').strip(),
        created_on=_required_date(doc.get('date'), 'Pendency date'),
        expected_resolution_date=parse_date(doc.get('expectedResolutionDate')),
        resolved=bool(doc.get('resolved')),
    )


def demand_from_document(doc: dict) -> DemandRecord:
    client_name = _optional_text(doc.get('clientName'))
    title = _optional_text(doc.get('title')) or client_name
    if not title:
        raise ValueError('Demand title is required')
    return DemandRecord(
        id=generate_id(),
        title=title,
        client_name=client_name,
        project_name=_optional_text(doc.get('projectName')),
        salesperson_name=_optional_text(doc.get('salespersonName')),
        observations=_optional_text(doc.get('observations')),
        request_date=_required_date(doc.get('requestDate'), 'Request date'),
        deadline=_required_date(doc.get('deadline'), 'Deadline'),
        completion_date=parse_date(doc.get('completionDate')),
        items=str(doc.get('items') or ''),
        status=parse_enum(DemandStatus, doc.get('status'), DemandStatus.PENDING),
        priority=parse_enum(DemandPriority, doc.get('priority'), DemandPriority.MEDIUM),
    )
