from __future__ import annotations

import json
from dataclasses import asdict

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile
from fastapi.responses import Response
from sqlalchemy.orm import Session

from app.auth import Principal, require_capability
from app.db import get_db
from app.dependencies import get_dashboard_state, record_audit
from app.schemas import (
    DashboardSettingsUpdate,
    ManualImportRequest,
    TechnicianCreate,
    UserCreate,
    UserRoleUpdate,
    UserStatusUpdate,
)
from app.security.csrf import verify_csrf
from app.services import record_store
from app.services.account_service import create_user, delete_user, update_user_role, update_user_status
from app.services.backup_service import backup_filename, export_backup, import_backup
from app.services.dashboard_state import BulkResult, DashboardState
from app.services.date_utils import today
from app.services.import_service import ImportFormatError, parse_manual_text, parse_spreadsheet
from app.services.permissions import Capability
from app.services.stats_service import get_critical_threshold, set_critical_threshold

router = APIRouter(prefix='/admin', tags=['admin'])


def _bulk_payload(result: BulkResult) -> dict:
    return {
        'ok': result.ok,
        'succeeded': result.succeeded,
        'failed': result.failed,
        'outcomes': [asdict(outcome) for outcome in result.outcomes],
    }


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@router.get('/users')
def list_users(
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_capability(Capability.MANAGE_USERS)),
):
    return {'items': record_store.list_users(db, company_id=principal.company_id)}


@router.post('/users', status_code=201)
def add_user(
    payload: UserCreate,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_capability(Capability.MANAGE_USERS)),
    _: None = Depends(verify_csrf),
):
    try:
        user = create_user(
            db,
            company_id=principal.company_id,
            username=payload.username,
            email=payload.email,
            password=payload.password,
            role=payload.role,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    record_audit(db, request, principal, 'USER_CREATED', {'user_id': user.id, 'role': user.role.value})
    return user


@router.post('/users/{user_id}/role')
def change_user_role(
    user_id: str,
    payload: UserRoleUpdate,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_capability(Capability.MANAGE_USERS)),
    _: None = Depends(verify_csrf),
):
    try:
        user = update_user_role(db, company_id=principal.company_id, user_id=user_id, role=payload.role)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    record_audit(db, request, principal, 'USER_ROLE_UPDATED', {'user_id': user_id, 'role': payload.role.value})
    return user


@router.post('/users/{user_id}/status')
def change_user_status(
    user_id: str,
    payload: UserStatusUpdate,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_capability(Capability.MANAGE_USERS)),
    _: None = Depends(verify_csrf),
):
    try:
        user = update_user_status(db, company_id=principal.company_id, user_id=user_id, status=payload.status)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    record_audit(db, request, principal, 'USER_STATUS_UPDATED', {'user_id': user_id, 'status': payload.status.value})
    return user


@router.delete('/users/{user_id}')
def remove_user(
    user_id: str,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_capability(Capability.MANAGE_USERS)),
    _: None = Depends(verify_csrf),
):
    try:
        delete_user(db, company_id=principal.company_id, user_id=user_id, actor_user_id=principal.id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    record_audit(db, request, principal, 'USER_DELETED', {'user_id': user_id})
    return {'ok': True}


# ---------------------------------------------------------------------------
# Technicians
# ---------------------------------------------------------------------------


@router.get('/technicians')
def list_technicians(
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_capability(Capability.VIEW)),
):
    return {'items': record_store.list_technicians(db, company_id=principal.company_id)}


@router.post('/technicians', status_code=201)
def add_technician(
    payload: TechnicianCreate,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_capability(Capability.MANAGE_TECHNICIANS)),
    _: None = Depends(verify_csrf),
):
    try:
        technician = record_store.create_technician(db, name=payload.name, company_id=principal.company_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    record_audit(db, request, principal, 'TECHNICIAN_CREATED', {'technician_id': technician.id, 'name': technician.name})
    return technician


@router.delete('/technicians/{technician_id}')
def remove_technician(
    technician_id: str,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_capability(Capability.MANAGE_TECHNICIANS)),
    _: None = Depends(verify_csrf),
):
    try:
        record_store.delete_technician(db, technician_id=technician_id, company_id=principal.company_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    record_audit(db, request, principal, 'TECHNICIAN_DELETED', {'technician_id': technician_id})
    return {'ok': True}


# ---------------------------------------------------------------------------
# Imports
# ---------------------------------------------------------------------------


@router.post('/import/spreadsheet')
async def import_spreadsheet(
    request: Request,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_capability(Capability.IMPORT_DATA)),
    state: DashboardState = Depends(get_dashboard_state),
    _: None = Depends(verify_csrf),
):
    content = await file.read()
    try:
        records = parse_spreadsheet(file.filename or '', content)
    except ImportFormatError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    result = state.import_deliveries(records)
    record_audit(
        db,
        request,
        principal,
        'DELIVERIES_IMPORTED',
        {'source': file.filename, 'succeeded': result.succeeded, 'failed': result.failed},
    )
    return _bulk_payload(result)


@router.post('/import/text')
def import_text(
    payload: ManualImportRequest,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_capability(Capability.IMPORT_DATA)),
    state: DashboardState = Depends(get_dashboard_state),
    _: None = Depends(verify_csrf),
):
    try:
        records = parse_manual_text(payload.text)
    except ImportFormatError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    result = state.import_deliveries(records)
    record_audit(
        db,
        request,
        principal,
        'DELIVERIES_IMPORTED',
        {'source': 'manual', 'succeeded': result.succeeded, 'failed': result.failed},
    )
    return _bulk_payload(result)


# ---------------------------------------------------------------------------
# Backup
# ---------------------------------------------------------------------------


@router.get('/backup')
def download_backup(
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_capability(Capability.MANAGE_BACKUP)),
):
    document = export_backup(db, company_id=principal.company_id)
    record_audit(
        db,
        request,
        principal,
        'BACKUP_EXPORTED',
        {'deliveries': len(document['deliveries']), 'pendencies': len(document['pendencies'])},
    )
    return Response(
        content=json.dumps(document, ensure_ascii=False, indent=2),
        media_type='application/json',
        headers={'Content-Disposition': f'attachment; filename="{backup_filename(today())}"'},
    )


@router.post('/backup')
async def restore_backup(
    request: Request,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_capability(Capability.MANAGE_BACKUP)),
    _: None = Depends(verify_csrf),
):
    content = await file.read()
    try:
        summary = import_backup(db, company_id=principal.company_id, content=content)
    except ImportFormatError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    record_audit(db, request, principal, 'BACKUP_RESTORED', {'replaced': summary.replaced})
    return asdict(summary)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@router.get('/settings')
def read_settings(
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_capability(Capability.VIEW_DASHBOARD)),
):
    return {'critical_threshold_days': get_critical_threshold(db, company_id=principal.company_id)}


@router.put('/settings')
def update_settings(
    payload: DashboardSettingsUpdate,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_capability(Capability.MANAGE_SETTINGS)),
    _: None = Depends(verify_csrf),
):
    try:
        days = set_critical_threshold(db, company_id=principal.company_id, days=payload.critical_threshold_days)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    record_audit(db, request, principal, 'SETTINGS_UPDATED', {'critical_threshold_days': days})
    return {'critical_threshold_days': days}
