from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.auth import Principal, get_current_principal
from app.db import get_db
from app.dependencies import get_dashboard_state, raise_for_result, record_audit
from app.schemas import PendencyPayload, PendencyUpdate
from app.security.csrf import verify_csrf
from app.services.dashboard_state import DashboardState
from app.services.delivery_filters import filter_pendencies

router = APIRouter(prefix='/pendencies', tags=['pendencies'])


@router.get('')
def list_pendencies(
    q: str | None = None,
    include_resolved: bool = True,
    state: DashboardState = Depends(get_dashboard_state),
):
    records = filter_pendencies(state.pendencies, q)
    if not include_resolved:
        records = [record for record in records if not record.resolved]
    return {'items': records, 'total_items': len(records)}


@router.post('', status_code=201)
def create_pendency(
    payload: PendencyPayload,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    state: DashboardState = Depends(get_dashboard_state),
    _: None = Depends(verify_csrf),
):
    result = state.add_pendency(payload.to_record())
    raise_for_result(result)
    record_audit(db, request, principal, 'PENDENCY_CREATED', {'pendency_id': result.record.id})
    return result.record


@router.patch('/{pendency_id}')
def update_pendency(
    pendency_id: str,
    payload: PendencyUpdate,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    state: DashboardState = Depends(get_dashboard_state),
    _: None = Depends(verify_csrf),
):
    result = state.update_pendency(pendency_id, expected_resolution_date=payload.expected_resolution_date)
    raise_for_result(result)
    record_audit(db, request, principal, 'PENDENCY_UPDATED', {'pendency_id': pendency_id})
    return result.record


@router.post('/{pendency_id}/resolve')
def resolve_pendency(
    pendency_id: str,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    state: DashboardState = Depends(get_dashboard_state),
    _: None = Depends(verify_csrf),
):
    result = state.resolve_pendency(pendency_id)
    raise_for_result(result)
    record_audit(db, request, principal, 'PENDENCY_RESOLVED', {'pendency_id': pendency_id})
    return result.record


@router.delete('/{pendency_id}')
def delete_pendency(
    pendency_id: str,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    state: DashboardState = Depends(get_dashboard_state),
    _: None = Depends(verify_csrf),
):
    result = state.delete_pendency(pendency_id)
    raise_for_result(result)
    record_audit(db, request, principal, 'PENDENCY_DELETED', {'pendency_id': pendency_id})
    return {'ok': True}
