from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from app.auth import Principal, get_current_principal
from app.db import get_db
from app.dependencies import get_dashboard_state, raise_for_result, record_audit
from app.models import AdminStatus, DeliveryStatus
from app.schemas import BulkStatusRequest, DeliveryPatch, DeliveryPayload, FormDate
from app.security.csrf import verify_csrf
from app.services.dashboard_state import DashboardState
from app.services.delivery_filters import DeliveryFilter
from app.services.permissions import is_locked

router = APIRouter(prefix='/deliveries', tags=['deliveries'])


@router.get('')
def list_deliveries(
    invoice_number: str | None = None,
    status: DeliveryStatus | None = None,
    admin_status: AdminStatus | None = None,
    start_date: FormDate | None = None,
    end_date: FormDate | None = None,
    page: int = Query(1),
    state: DashboardState = Depends(get_dashboard_state),
):
    state.set_filters(
        DeliveryFilter(
            invoice_number=invoice_number,
            status=status,
            admin_status=admin_status,
            start_date=start_date,
            end_date=end_date,
        )
    )
    state.set_page(page)
    visible = state.visible_page()
    return {
        'items': [
            {**asdict(record), 'locked': is_locked(record.admin_status)}
            for record in visible.items
        ],
        'page': visible.page,
        'page_size': visible.page_size,
        'total_items': visible.total_items,
        'total_pages': visible.total_pages,
    }


@router.post('', status_code=201)
def create_delivery(
    payload: DeliveryPayload,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    state: DashboardState = Depends(get_dashboard_state),
    _: None = Depends(verify_csrf),
):
    result = state.save_delivery(payload.to_record())
    raise_for_result(result)
    record_audit(
        db,
        request,
        principal,
        'DELIVERY_CREATED',
        {'delivery_id': result.record.id, 'invoice_number': result.record.invoice_number},
    )
    return result.record


@router.post('/bulk-status')
def bulk_status(
    payload: BulkStatusRequest,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    state: DashboardState = Depends(get_dashboard_state),
    _: None = Depends(verify_csrf),
):
    result = state.bulk_update_status(payload.ids, payload.status)
    if result.succeeded:
        record_audit(
            db,
            request,
            principal,
            'DELIVERY_BULK_STATUS_UPDATED',
            {'status': payload.status.value, 'succeeded': result.succeeded, 'failed': result.failed},
        )
    return {
        'ok': result.ok,
        'succeeded': result.succeeded,
        'failed': result.failed,
        'outcomes': [asdict(outcome) for outcome in result.outcomes],
    }


@router.get('/{delivery_id}')
def get_delivery(delivery_id: str, state: DashboardState = Depends(get_dashboard_state)):
    record = state.find_delivery(delivery_id)
    if record is None:
        raise HTTPException(status_code=404, detail='Delivery not found')
    return record


@router.get('/{delivery_id}/capabilities')
def delivery_capabilities(delivery_id: str, state: DashboardState = Depends(get_dashboard_state)):
    record = state.find_delivery(delivery_id)
    if record is None:
        raise HTTPException(status_code=404, detail='Delivery not found')
    return {
        'delivery_id': record.id,
        'locked': is_locked(record.admin_status),
        'capabilities': sorted(capability.value for capability in state.capabilities_for(record)),
    }


@router.put('/{delivery_id}')
def update_delivery(
    delivery_id: str,
    payload: DeliveryPayload,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    state: DashboardState = Depends(get_dashboard_state),
    _: None = Depends(verify_csrf),
):
    if state.find_delivery(delivery_id) is None:
        raise HTTPException(status_code=404, detail='Delivery not found')
    result = state.save_delivery(payload.to_record(delivery_id))
    raise_for_result(result)
    record_audit(db, request, principal, 'DELIVERY_UPDATED', {'delivery_id': delivery_id})
    return result.record


@router.patch('/{delivery_id}')
def patch_delivery(
    delivery_id: str,
    payload: DeliveryPatch,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    state: DashboardState = Depends(get_dashboard_state),
    _: None = Depends(verify_csrf),
):
    result = state.patch_delivery(delivery_id, payload.field, payload.value)
    raise_for_result(result)
    record_audit(db, request, principal, 'DELIVERY_FIELD_UPDATED', {'delivery_id': delivery_id, 'field': payload.field})
    return result.record


@router.delete('/{delivery_id}')
def delete_delivery(
    delivery_id: str,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    state: DashboardState = Depends(get_dashboard_state),
    _: None = Depends(verify_csrf),
):
    result = state.delete_delivery(delivery_id)
    raise_for_result(result)
    record_audit(db, request, principal, 'DELIVERY_DELETED', {'delivery_id': delivery_id})
    return {'ok': True}
