from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse, Response
from sqlalchemy.orm import Session

from app.auth import Principal, get_current_principal
from app.db import get_db
from app.dependencies import get_dashboard_state, raise_for_result, record_audit
from app.schemas import ChecklistToggle, DemandCompletion, DemandPayload, DemandStatusUpdate
from app.security.csrf import verify_csrf
from app.services.checklist_service import checklist_summary
from app.services.completion_image_service import (
    calendar_link,
    completion_image_filename,
    render_completion_email,
    render_completion_image,
)
from app.services.dashboard_state import DashboardState
from app.services.delivery_filters import filter_demands
from app.services.record_store import DemandRecord
from app.services.stats_service import group_demands_by_priority

router = APIRouter(prefix='/demands', tags=['demands'])


def _demand_payload(record: DemandRecord) -> dict:
    lines, progress = checklist_summary(record.items)
    return {
        **asdict(record),
        'checklist': [{'text': line.text, 'checked': line.checked} for line in lines],
        'progress': progress,
    }


def _get_demand(state: DashboardState, demand_id: str) -> DemandRecord:
    record = state.find_demand(demand_id)
    if record is None:
        raise HTTPException(status_code=404, detail='Commercial demand not found')
    return record


@router.get('')
def list_demands(q: str | None = None, state: DashboardState = Depends(get_dashboard_state)):
    groups = group_demands_by_priority(filter_demands(state.demands, q))
    return {
        'urgent': [_demand_payload(record) for record in groups.urgent],
        'high': [_demand_payload(record) for record in groups.high],
        'normal': [_demand_payload(record) for record in groups.normal],
    }


@router.post('', status_code=201)
def create_demand(
    payload: DemandPayload,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    state: DashboardState = Depends(get_dashboard_state),
    _: None = Depends(verify_csrf),
):
    result = state.add_demand(payload.to_record())
    raise_for_result(result)
    record_audit(db, request, principal, 'DEMAND_CREATED', {'demand_id': result.record.id})
    return _demand_payload(result.record)


@router.put('/{demand_id}')
def update_demand(
    demand_id: str,
    payload: DemandPayload,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    state: DashboardState = Depends(get_dashboard_state),
    _: None = Depends(verify_csrf),
):
    result = state.update_demand(payload.to_record(demand_id))
    raise_for_result(result)
    record_audit(db, request, principal, 'DEMAND_UPDATED', {'demand_id': demand_id})
    return _demand_payload(result.record)


@router.post('/{demand_id}/items/toggle')
def toggle_item(
    demand_id: str,
    payload: ChecklistToggle,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    state: DashboardState = Depends(get_dashboard_state),
    _: None = Depends(verify_csrf),
):
    result = state.toggle_demand_item(demand_id, payload.index)
    raise_for_result(result)
    record_audit(db, request, principal, 'DEMAND_ITEM_TOGGLED', {'demand_id': demand_id, 'index': payload.index})
    return _demand_payload(result.record)


@router.post('/{demand_id}/complete')
def complete_demand(
    demand_id: str,
    payload: DemandCompletion,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    state: DashboardState = Depends(get_dashboard_state),
    _: None = Depends(verify_csrf),
):
    result = state.complete_demand(demand_id, payload.completion_date)
    raise_for_result(result)
    record_audit(db, request, principal, 'DEMAND_COMPLETED', {'demand_id': demand_id})
    return _demand_payload(result.record)


@router.post('/{demand_id}/status')
def set_status(
    demand_id: str,
    payload: DemandStatusUpdate,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    state: DashboardState = Depends(get_dashboard_state),
    _: None = Depends(verify_csrf),
):
    result = state.set_demand_status(demand_id, payload.status)
    raise_for_result(result)
    record_audit(db, request, principal, 'DEMAND_STATUS_UPDATED', {'demand_id': demand_id, 'status': payload.status.value})
    return _demand_payload(result.record)


@router.delete('/{demand_id}')
def delete_demand(
    demand_id: str,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    state: DashboardState = Depends(get_dashboard_state),
    _: None = Depends(verify_csrf),
):
    result = state.delete_demand(demand_id)
    raise_for_result(result)
    record_audit(db, request, principal, 'DEMAND_DELETED', {'demand_id': demand_id})
    return {'ok': True}


@router.get('/{demand_id}/completion-image')
def completion_image(demand_id: str, state: DashboardState = Depends(get_dashboard_state)):
    record = _get_demand(state, demand_id)
    try:
        content = render_completion_image(record)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return Response(
        content=content,
        media_type='image/png',
        headers={'Content-Disposition': f'attachment; filename="{completion_image_filename(record)}"'},
    )


@router.get('/{demand_id}/completion-email', response_class=PlainTextResponse)
def completion_email(demand_id: str, state: DashboardState = Depends(get_dashboard_state)):
    record = _get_demand(state, demand_id)
    try:
        return render_completion_email(record)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.get('/{demand_id}/calendar-link')
def demand_calendar_link(demand_id: str, state: DashboardState = Depends(get_dashboard_state)):
    record = _get_demand(state, demand_id)
    return {'url': calendar_link(record)}
