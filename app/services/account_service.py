"""Registration, sign-in and tenant user administration.

Registration and the "self-healing" login of older revisions are one
operation here: ``resolve_or_create_profile`` either returns the profile that
already exists for an email inside the named company or creates a pending one.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from app.models import Company, User, UserRole, UserStatus
from app.security.passwords import hash_password, verify_password
from app.security.sessions import revoke_user_sessions
from app.services.record_store import UserRecord, user_to_record

logger = logging.getLogger(__name__)

MIN_USERNAME_LENGTH = 3

PENDING_MESSAGE = 'Your access request is under review. Please wait for approval.'
BLOCKED_MESSAGE = 'Access blocked. Contact support.'
INVALID_CREDENTIALS_MESSAGE = 'Invalid username or password'


class AuthenticationError(Exception):
    def __init__(self, message: str, *, reason: str, user_id: str | None = None):
        super().__init__(message)
        self.reason = reason
        self.user_id = user_id


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _normalize_email(email: str | None) -> str:
    return (email or '').strip().lower()


def _validate_profile_input(*, email: str, username: str, company_name: str) -> None:
    if '@' not in email:
        raise ValueError('Enter a valid email address')
    if len(username) < MIN_USERNAME_LENGTH:
        raise ValueError(f'Username must be at least {MIN_USERNAME_LENGTH} characters')
    if not company_name:
        raise ValueError('Company name is required')


def get_or_create_company(db: Session, *, name: str) -> Company:
    clean_name = (name or '').strip()
    if not clean_name:
        raise ValueError('Company name is required')
    company = db.execute(select(Company).where(Company.name == clean_name)).scalar_one_or_none()
    if company:
        return company
    company = Company(name=clean_name)
    db.add(company)
    db.flush()
    logger.info('registered company %s', clean_name)
    return company


def resolve_or_create_profile(
    db: Session,
    *,
    email: str,
    username: str,
    password: str,
    company_name: str,
) -> tuple[User, bool]:
    """Return ``(user, created)``.

    Calling it again with the same email and company is a no-op that returns
    the stored profile. New profiles start as Viewer / Pending and wait for
    an administrator.
    """
    clean_email = _normalize_email(email)
    clean_username = (username or '').strip()
    clean_company = (company_name or '').strip()
    _validate_profile_input(email=clean_email, username=clean_username, company_name=clean_company)

    company = get_or_create_company(db, name=clean_company)

    existing = db.execute(select(User).where(User.email == clean_email)).scalar_one_or_none()
    if existing:
        if existing.company_id != company.id:
            raise ValueError('This email is already registered with another company')
        return existing, False

    taken = db.execute(select(User.id).where(User.username == clean_username)).scalar_one_or_none()
    if taken:
        raise ValueError('Username already taken')

    user = User(
        username=clean_username,
        email=clean_email,
        password_hash=hash_password(password),
        role=UserRole.VIEWER,
        status=UserStatus.PENDING,
        company_id=company.id,
    )
    db.add(user)
    db.flush()
    logger.info('created pending profile %s for company %s', clean_username, clean_company)
    return user, True


def authenticate(
    db: Session,
    *,
    identifier: str,
    password: str,
    company_name: str | None = None,
) -> tuple[User, Company]:
    clean_identifier = (identifier or '').strip()
    if not clean_identifier:
        raise AuthenticationError(INVALID_CREDENTIALS_MESSAGE, reason='UNKNOWN_USERNAME')

    row = db.execute(
        select(User, Company)
        .join(Company, Company.id == User.company_id)
        .where(
            or_(
                User.username == clean_identifier,
                User.email == _normalize_email(clean_identifier),
            )
        )
    ).first()
    if not row:
        raise AuthenticationError(INVALID_CREDENTIALS_MESSAGE, reason='UNKNOWN_USERNAME')

    user, company = row
    if not verify_password(password, user.password_hash):
        raise AuthenticationError(INVALID_CREDENTIALS_MESSAGE, reason='BAD_PASSWORD', user_id=user.id)
    if user.status == UserStatus.PENDING:
        raise AuthenticationError(PENDING_MESSAGE, reason='PENDING_APPROVAL', user_id=user.id)
    if user.status == UserStatus.BLOCKED:
        raise AuthenticationError(BLOCKED_MESSAGE, reason='BLOCKED', user_id=user.id)

    requested_company = (company_name or '').strip()
    if requested_company and requested_company.lower() != company.name.lower():
        raise AuthenticationError(
            f'This user does not belong to "{requested_company}"',
            reason='COMPANY_MISMATCH',
            user_id=user.id,
        )
    return user, company


def _get_tenant_user(db: Session, *, company_id: str, user_id: str) -> User:
    user = db.execute(
        select(User).where(User.id == user_id, User.company_id == company_id)
    ).scalar_one_or_none()
    if not user:
        raise ValueError('User not found')
    return user


def create_user(
    db: Session,
    *,
    company_id: str,
    username: str,
    email: str,
    password: str,
    role: UserRole,
) -> UserRecord:
    clean_email = _normalize_email(email)
    clean_username = (username or '').strip()
    if '@' not in clean_email:
        raise ValueError('Enter a valid email address')
    if len(clean_username) < MIN_USERNAME_LENGTH:
        raise ValueError(f'Username must be at least {MIN_USERNAME_LENGTH} characters')

    duplicate = db.execute(
        select(User.id).where(or_(User.username == clean_username, User.email == clean_email))
    ).scalar_one_or_none()
    if duplicate:
        raise ValueError('Username or email already registered')

    user = User(
        username=clean_username,
        email=clean_email,
        password_hash=hash_password(password),
        role=UserRole(role),
        status=UserStatus.ACTIVE,
        company_id=company_id,
    )
    db.add(user)
    db.flush()
    return user_to_record(user)


def update_user_role(db: Session, *, company_id: str, user_id: str, role: UserRole) -> UserRecord:
    user = _get_tenant_user(db, company_id=company_id, user_id=user_id)
    user.role = UserRole(role)
    user.updated_at = _now()
    db.flush()
    return user_to_record(user)


def update_user_status(db: Session, *, company_id: str, user_id: str, status: UserStatus) -> UserRecord:
    user = _get_tenant_user(db, company_id=company_id, user_id=user_id)
    user.status = UserStatus(status)
    user.updated_at = _now()
    if user.status != UserStatus.ACTIVE:
        revoke_user_sessions(db, user.id)
    db.flush()
    return user_to_record(user)


def delete_user(db: Session, *, company_id: str, user_id: str, actor_user_id: str) -> None:
    if user_id == actor_user_id:
        raise ValueError('You cannot delete your own account')
    user = _get_tenant_user(db, company_id=company_id, user_id=user_id)
    revoke_user_sessions(db, user.id)
    db.delete(user)
    db.flush()
