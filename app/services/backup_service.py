from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.models import User, UserRole, UserStatus
from app.services import record_store
from app.services.import_service import ImportFormatError
from app.services.record_store import (
    DELIVERY_DOCUMENT_FIELDS,
    DEMAND_DOCUMENT_FIELDS,
    PENDENCY_DOCUMENT_FIELDS,
    USER_DOCUMENT_FIELDS,
    parse_enum,
    record_to_document,
)

logger = logging.getLogger(__name__)


@dataclass
class BackupImportSummary:
    replaced: dict[str, int] = field(default_factory=dict)
    users_updated: int = 0
    users_skipped: list[str] = field(default_factory=list)


def backup_filename(day: date) -> str:
    return f'{settings.backup_file_prefix}_{day.isoformat()}.json'


def export_backup(db: Session, *, company_id: str) -> dict:
    return {
        'exportedAt': datetime.now(tz=timezone.utc).isoformat(),
        'deliveries': [
            record_to_document(record, DELIVERY_DOCUMENT_FIELDS)
            for record in record_store.list_deliveries(db, company_id=company_id)
        ],
        'pendencies': [
            record_to_document(record, PENDENCY_DOCUMENT_FIELDS)
            for record in record_store.list_pendencies(db, company_id=company_id)
        ],
        'commercialDemands': [
            record_to_document(record, DEMAND_DOCUMENT_FIELDS)
            for record in record_store.list_demands(db, company_id=company_id)
        ],
        'users': [
            record_to_document(record, USER_DOCUMENT_FIELDS)
            for record in record_store.list_users(db, company_id=company_id)
        ],
        'technicians': [record.name for record in record_store.list_technicians(db, company_id=company_id)],
    }


def _load_document(content: bytes | str | dict) -> dict:
    if isinstance(content, dict):
        return content
    try:
        if isinstance(content, bytes):
            content = content.decode('utf-8-sig')
        data = json.loads(content)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ImportFormatError('Backup file is not valid JSON') from exc
    if not isinstance(data, dict):
        raise ImportFormatError('Backup file must contain a JSON object')
    return data


def _documents(data: dict, key: str) -> list[dict] | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(item, dict) for item in value):
        raise ImportFormatError(f'"{key}" must be a list of objects')
    return value


def _names(data: dict) -> list[str] | None:
    value = data.get('technicians', data.get('receivers'))
    if value is None:
        return None
    if not isinstance(value, list):
        raise ImportFormatError('"technicians" must be a list of names')
    names: list[str] = []
    for item in value:
        if isinstance(item, dict):
            item = item.get('name')
        if not isinstance(item, str):
            raise ImportFormatError('"technicians" must be a list of names')
        names.append(item)
    return names


def _convert(documents: list[dict], converter, label: str) -> list:
    converted = []
    for position, document in enumerate(documents, start=1):
        try:
            converted.append(converter(document))
        except ValueError as exc:
            raise ImportFormatError(f'{label} #{position}: {exc}') from exc
    return converted


def _restore_users(db: Session, *, company_id: str, documents: list[dict], summary: BackupImportSummary) -> None:
    for document in documents:
        username = str(document.get('username') or '').strip()
        user = db.execute(
            select(User).where(User.company_id == company_id, User.username == username)
        ).scalar_one_or_none()
        if not user:
            summary.users_skipped.append(username)
            continue
        try:
            user.role = parse_enum(UserRole, document.get('role'), user.role)
            user.status = parse_enum(UserStatus, document.get('status'), user.status)
        except ValueError as exc:
            raise ImportFormatError(f'User {username}: {exc}') from exc
        summary.users_updated += 1


def import_backup(db: Session, *, company_id: str, content: bytes | str | dict) -> BackupImportSummary:
    """Replace each collection present in the backup; absent ones stay as they are.

    Everything is validated before the first write and applied inside one
    savepoint, so a bad file changes nothing.
    """
    data = _load_document(content)
    deliveries = _documents(data, 'deliveries')
    pendencies = _documents(data, 'pendencies')
    demands = _documents(data, 'commercialDemands')
    users = _documents(data, 'users')
    technicians = _names(data)

    delivery_records = _convert(deliveries, record_store.delivery_from_document, 'Delivery') if deliveries is not None else None
    pendency_records = _convert(pendencies, record_store.pendency_from_document, 'Pendency') if pendencies is not None else None
    demand_records = _convert(demands, record_store.demand_from_document, 'Commercial demand') if demands is not None else None

    summary = BackupImportSummary()
    try:
        with db.begin_nested():
            if delivery_records is not None:
                summary.replaced['deliveries'] = record_store.replace_deliveries(
                    db, records=delivery_records, company_id=company_id
                )
            if pendency_records is not None:
                summary.replaced['pendencies'] = record_store.replace_pendencies(
                    db, records=pendency_records, company_id=company_id
                )
            if demand_records is not None:
                summary.replaced['commercialDemands'] = record_store.replace_demands(
                    db, records=demand_records, company_id=company_id
                )
            if technicians is not None:
                summary.replaced['technicians'] = record_store.replace_technicians(
                    db, names=technicians, company_id=company_id
                )
            if users is not None:
                _restore_users(db, company_id=company_id, documents=users, summary=summary)
    except SQLAlchemyError as exc:
        logger.exception('backup restore failed for company %s', company_id)
        raise ImportFormatError('Backup could not be restored; no data was changed') from exc

    logger.info('backup restored for company %s: %s', company_id, summary.replaced)
    return summary
