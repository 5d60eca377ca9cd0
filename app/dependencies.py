from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.auth import Principal, get_current_principal
from app.db import get_db
from app.services.audit_service import log_audit
from app.services.dashboard_state import (
    REASON_NOT_FOUND,
    REASON_PERMISSION,
    REASON_STORAGE,
    DashboardState,
    MutationResult,
    load_state,
)

REASON_STATUS_CODES = {
    REASON_PERMISSION: 403,
    REASON_NOT_FOUND: 404,
    REASON_STORAGE: 503,
}


def get_client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get('x-forwarded-for')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()
    if request.client:
        return request.client.host
    return None


def get_dashboard_state(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> DashboardState:
    return load_state(db, principal)


def raise_for_result(result: MutationResult) -> None:
    if result.ok:
        return
    status_code = REASON_STATUS_CODES.get(result.reason, 400)
    raise HTTPException(status_code=status_code, detail=result.error)


def record_audit(db: Session, request: Request, principal: Principal, action: str, metadata: dict) -> None:
    log_audit(
        db,
        actor_user_id=principal.id,
        company_id=principal.company_id,
        action=action,
        ip=get_client_ip(request),
        metadata=metadata,
    )
    db.commit()
