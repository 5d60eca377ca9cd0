from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response
from sqlalchemy.orm import Session

from app.auth import Principal, require_capability
from app.db import get_db
from app.dependencies import get_dashboard_state, record_audit
from app.schemas import FormDate
from app.services.dashboard_state import DashboardState
from app.services.date_utils import to_iso, today
from app.services.permissions import Capability
from app.services.report_service import generate_closing_report
from app.services.stats_service import calendar_events, delivery_trend, status_distribution, top_technicians

router = APIRouter(prefix='/dashboard', tags=['dashboard'])

XLSX_MEDIA_TYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'


@router.get('/stats')
def dashboard_stats(
    reference_date: FormDate | None = None,
    _: Principal = Depends(require_capability(Capability.VIEW_DASHBOARD)),
    state: DashboardState = Depends(get_dashboard_state),
):
    return asdict(state.stats(reference_date))


@router.get('/analytics')
def dashboard_analytics(
    _: Principal = Depends(require_capability(Capability.VIEW_DASHBOARD)),
    state: DashboardState = Depends(get_dashboard_state),
):
    return {
        'trend': [
            {'date': to_iso(point.day), 'issued': point.issued, 'delivered_same_day': point.delivered_same_day}
            for point in delivery_trend(state.deliveries)
        ],
        'top_technicians': [{'name': name, 'deliveries': count} for name, count in top_technicians(state.deliveries)],
        'status_distribution': status_distribution(state.deliveries),
    }


@router.get('/calendar')
def dashboard_calendar(
    year: int | None = None,
    month: int | None = None,
    _: Principal = Depends(require_capability(Capability.VIEW)),
    state: DashboardState = Depends(get_dashboard_state),
):
    current = today()
    year = year or current.year
    month = month or current.month
    try:
        events = calendar_events(state.demands, state.pendencies, year=year, month=month)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        'year': year,
        'month': month,
        'days': {to_iso(day): [asdict(event) for event in day_events] for day, day_events in events.items()},
    }


@router.get('/report')
def closing_report(
    request: Request,
    start_date: FormDate | None = None,
    end_date: FormDate | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_capability(Capability.VIEW_DASHBOARD)),
):
    try:
        report = generate_closing_report(db, company_id=principal.company_id, start=start_date, end=end_date)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    record_audit(
        db,
        request,
        principal,
        'REPORT_EXPORTED',
        {'start': to_iso(start_date), 'end': to_iso(end_date), 'deliveries': report.deliveries, 'demands': report.demands},
    )
    return Response(
        content=report.content,
        media_type=XLSX_MEDIA_TYPE,
        headers={'Content-Disposition': f'attachment; filename="{report.filename}"'},
    )
