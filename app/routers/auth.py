from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.auth import Principal, get_current_principal
from app.config import settings
from app.db import get_db
from app.dependencies import get_client_ip
from app.schemas import LoginRequest, RegisterRequest
from app.security.csrf import verify_csrf
from app.security.sessions import create_web_session, principal_from_user, revoke_web_session
from app.services.account_service import AuthenticationError, authenticate, resolve_or_create_profile
from app.services.audit_service import log_audit, log_auth_event

router = APIRouter(tags=['auth'])

# Credentials were right but the account may not sign in.
STATUS_FAILURES = {'PENDING_APPROVAL', 'BLOCKED', 'COMPANY_MISMATCH'}


def _principal_payload(principal: Principal) -> dict:
    return {
        'id': principal.id,
        'username': principal.username,
        'email': principal.email,
        'role': principal.role.value,
        'status': principal.status.value,
        'company_id': principal.company_id,
        'company_name': principal.company_name,
        'capabilities': sorted(capability.value for capability in principal.capabilities),
    }


@router.get('/login')
def login_page(request: Request):
    return {'csrf_token': getattr(request.state, 'csrf_token', '')}


@router.post('/login')
def login_submit(
    payload: LoginRequest,
    request: Request,
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    ip = get_client_ip(request)
    user_agent = request.headers.get('user-agent')

    try:
        user, company = authenticate(
            db,
            identifier=payload.identifier,
            password=payload.password,
            company_name=payload.company_name,
        )
    except AuthenticationError as exc:
        log_auth_event(
            db,
            attempted_username=payload.identifier,
            success=False,
            failure_reason=exc.reason,
            user_id=exc.user_id,
            ip=ip,
            user_agent=user_agent,
        )
        db.commit()
        status_code = 403 if exc.reason in STATUS_FAILURES else 401
        raise HTTPException(status_code=status_code, detail=str(exc)) from exc

    token = create_web_session(db, user.id, ip=ip, user_agent=user_agent)
    log_auth_event(
        db,
        attempted_username=payload.identifier,
        success=True,
        failure_reason=None,
        user_id=user.id,
        ip=ip,
        user_agent=user_agent,
    )
    log_audit(
        db,
        actor_user_id=user.id,
        company_id=company.id,
        action='AUTH_LOGIN',
        ip=ip,
        metadata={'username': user.username},
    )
    db.commit()

    response = JSONResponse(_principal_payload(principal_from_user(user, company)))
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
        max_age=settings.session_ttl_minutes * 60,
    )
    return response


@router.post('/register')
def register(
    payload: RegisterRequest,
    request: Request,
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        user, created = resolve_or_create_profile(
            db,
            email=payload.email,
            username=payload.username,
            password=payload.password,
            company_name=payload.company_name,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    if created:
        log_audit(
            db,
            actor_user_id=user.id,
            company_id=user.company_id,
            action='PROFILE_REGISTERED',
            ip=get_client_ip(request),
            metadata={'username': user.username, 'email': user.email},
        )
    db.commit()
    return JSONResponse(
        {'id': user.id, 'username': user.username, 'status': user.status.value, 'created': created},
        status_code=201 if created else 200,
    )


@router.post('/logout')
def logout(request: Request, db: Session = Depends(get_db), _: None = Depends(verify_csrf)):
    principal = getattr(request.state, 'principal', None)
    token = request.cookies.get(settings.session_cookie_name)
    if token:
        revoke_web_session(db, token)

    log_audit(
        db,
        actor_user_id=principal.id if principal else None,
        company_id=principal.company_id if principal else None,
        action='AUTH_LOGOUT',
        ip=get_client_ip(request),
        metadata={},
    )
    db.commit()

    response = JSONResponse({'ok': True})
    response.delete_cookie(settings.session_cookie_name)
    return response


@router.get('/me')
def me(principal: Principal = Depends(get_current_principal)):
    return _principal_payload(principal)
