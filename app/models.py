from __future__ import annotations

from datetime import date, datetime
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from app.services.identifiers import generate_id

# SQLite only autoincrements INTEGER primary keys.
BigIntPK = BigInteger().with_variant(Integer, 'sqlite')


class Base(DeclarativeBase):
    pass


class DeliveryStatus(str, Enum):
    PENDING = 'Pending'
    DELIVERED = 'Delivered'
    NOT_RETRIEVED = 'Not Retrieved'
    PARTIAL_RETURN = 'Partial Return'
    FULL_RETURN = 'Full Return'


class AdminStatus(str, Enum):
    OPEN = 'Open'
    FULFILLED = 'Fulfilled'
    UNFULFILLED = 'Unfulfilled'
    CANCELED = 'Canceled'


class DemandStatus(str, Enum):
    PENDING = 'Pending'
    IN_PROGRESS = 'In Progress'
    COMPLETED = 'Completed'


class DemandPriority(str, Enum):
    LOW = 'Low'
    MEDIUM = 'Medium'
    HIGH = 'High'
    URGENT = 'Urgent'


class UserRole(str, Enum):
    ADMIN = 'Admin'
    MANAGER = 'Manager'
    EDITOR = 'Editor'
    VIEWER = 'Viewer'
    COMMERCIAL = 'Commercial'


class UserStatus(str, Enum):
    PENDING = 'Pending'
    ACTIVE = 'Active'
    BLOCKED = 'Blocked'


class Company(Base):
    __tablename__ = 'companies'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class User(Base):
    __tablename__ = 'users'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    username: Mapped[str] = mapped_column(String(150), nullable=False, unique=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[UserRole] = mapped_column(
        SQLEnum(UserRole, name='user_role'), nullable=False, default=UserRole.VIEWER, server_default='VIEWER'
    )
    status: Mapped[UserStatus] = mapped_column(
        SQLEnum(UserStatus, name='user_status'), nullable=False, default=UserStatus.PENDING, server_default='PENDING'
    )
    company_id: Mapped[str] = mapped_column(String(36), ForeignKey('companies.id'), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Technician(Base):
    __tablename__ = 'technicians'
    __table_args__ = (
        UniqueConstraint('company_id', 'name', name='technicians_company_name_key'),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    company_id: Mapped[str] = mapped_column(String(36), ForeignKey('companies.id'), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Delivery(Base):
    __tablename__ = 'deliveries'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    invoice_number: Mapped[str] = mapped_column(Text, nullable=False)
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    delivery_date: Mapped[date | None] = mapped_column(Date)
    return_date: Mapped[date | None] = mapped_column(Date)
    status: Mapped[DeliveryStatus] = mapped_column(
        SQLEnum(DeliveryStatus, name='delivery_status'),
        nullable=False,
        default=DeliveryStatus.PENDING,
        server_default='PENDING',
    )
    receiver_name: Mapped[str | None] = mapped_column(Text)
    observations: Mapped[str | None] = mapped_column(Text)
    admin_status: Mapped[AdminStatus | None] = mapped_column(
        SQLEnum(AdminStatus, name='admin_status'), default=AdminStatus.OPEN, server_default='OPEN'
    )
    company_id: Mapped[str] = mapped_column(String(36), ForeignKey('companies.id'), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Pendency(Base):
    __tablename__ = 'pendencies'
    __table_args__ = (
        CheckConstraint('quantity > 0', name='pendencies_quantity_positive'),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    provider_name: Mapped[str] = mapped_column(Text, nullable=False)
    reference_number: Mapped[str] = mapped_column(Text, nullable=False)
    item_name: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default='1')
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    created_on: Mapped[date] = mapped_column('date', Date, nullable=False)
    expected_resolution_date: Mapped[date | None] = mapped_column(Date)
    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    company_id: Mapped[str] = mapped_column(String(36), ForeignKey('companies.id'), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class CommercialDemand(Base):
    __tablename__ = 'commercial_demands'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    client_name: Mapped[str | None] = mapped_column(Text)
    project_name: Mapped[str | None] = mapped_column(Text)
    salesperson_name: Mapped[str | None] = mapped_column(Text)
    observations: Mapped[str | None] = mapped_column(Text)
    request_date: Mapped[date] = mapped_column(Date, nullable=False)
    deadline: Mapped[date] = mapped_column(Date, nullable=False)
    completion_date: Mapped[date | None] = mapped_column(Date)
    items: Mapped[str] = mapped_column(Text, nullable=False, default='', server_default='')
    status: Mapped[DemandStatus] = mapped_column(
        SQLEnum(DemandStatus, name='demand_status'),
        nullable=False,
        default=DemandStatus.PENDING,
        server_default='PENDING',
    )
    priority: Mapped[DemandPriority] = mapped_column(
        SQLEnum(DemandPriority, name='demand_priority'),
        nullable=False,
        default=DemandPriority.MEDIUM,
        server_default='MEDIUM',
    )
    company_id: Mapped[str] = mapped_column(String(36), ForeignKey('companies.id'), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class DashboardSetting(Base):
    __tablename__ = 'dashboard_settings'
    __table_args__ = (
        CheckConstraint('critical_threshold_days >= 1', name='dashboard_settings_threshold_min'),
    )

    company_id: Mapped[str] = mapped_column(String(36), ForeignKey('companies.id'), primary_key=True)
    critical_threshold_days: Mapped[int] = mapped_column(Integer, nullable=False, default=4, server_default='4')
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AuthEvent(Base):
    __tablename__ = 'auth_events'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    attempted_username: Mapped[str] = mapped_column(Text, nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    failure_reason: Mapped[str | None] = mapped_column(Text)
    user_id: Mapped[str | None] = mapped_column(String(36), ForeignKey('users.id', ondelete='SET NULL'))
    ip: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AuditLog(Base):
    __tablename__ = 'audit_log'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    actor_user_id: Mapped[str | None] = mapped_column(String(36), ForeignKey('users.id', ondelete='SET NULL'))
    company_id: Mapped[str | None] = mapped_column(String(36), ForeignKey('companies.id'))
    action: Mapped[str] = mapped_column(Text, nullable=False)
    ip: Mapped[str | None] = mapped_column(String(64))
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class WebSession(Base):
    __tablename__ = 'web_sessions'
    __table_args__ = (
        UniqueConstraint('session_token', name='web_sessions_session_token_key'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    session_token: Mapped[str] = mapped_column(String(128), nullable=False)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    ip: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
