"""Request bodies accepted by the JSON routers."""
from __future__ import annotations

from datetime import date
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, Field

from app.models import AdminStatus, DeliveryStatus, DemandPriority, DemandStatus, UserRole, UserStatus
from app.services.date_utils import parse_date, today
from app.services.record_store import DeliveryRecord, DemandRecord, PendencyRecord


def _coerce_date(value: Any) -> Any:
    if isinstance(value, str):
        if not value.strip():
            return None
        return parse_date(value) or value
    return value


# Accepts YYYY-MM-DD and DD/MM/YYYY.
FormDate = Annotated[date, BeforeValidator(_coerce_date)]


class LoginRequest(BaseModel):
    identifier: str = Field(..., min_length=1)
    password: str
    company_name: str | None = None


class RegisterRequest(BaseModel):
    email: str
    username: str
    password: str
    company_name: str


class DeliveryPayload(BaseModel):
    invoice_number: str
    issue_date: FormDate
    delivery_date: FormDate | None = None
    return_date: FormDate | None = None
    status: DeliveryStatus = DeliveryStatus.PENDING
    admin_status: AdminStatus = AdminStatus.OPEN
    receiver_name: str | None = None
    observations: str | None = None

    def to_record(self, record_id: str = '') -> DeliveryRecord:
        return DeliveryRecord(id=record_id, **self.model_dump())


class DeliveryPatch(BaseModel):
    field: str
    value: Any = None


class BulkStatusRequest(BaseModel):
    ids: list[str] = Field(..., min_length=1)
    status: DeliveryStatus


class PendencyPayload(BaseModel):
    provider_name: str
    reference_number: str
    item_name: str
    quantity: int = Field(1, gt=0)
    reason: str
    created_on: FormDate | None = None
    expected_resolution_date: FormDate | None = None

    def to_record(self) -> PendencyRecord:
        return PendencyRecord(
            id='',
            provider_name=self.provider_name,
            reference_number=self.reference_number,
            item_name=self.item_name,
            quantity=self.quantity,
            reason=self.reason,
            created_on=self.created_on or today(),
            expected_resolution_date=self.expected_resolution_date,
        )


class PendencyUpdate(BaseModel):
    expected_resolution_date: FormDate | None = None


class DemandPayload(BaseModel):
    title: str | None = None
    client_name: str | None = None
    project_name: str | None = None
    salesperson_name: str | None = None
    observations: str | None = None
    request_date: FormDate | None = None
    deadline: FormDate
    items: str = ''
    priority: DemandPriority = DemandPriority.MEDIUM

    def to_record(self, record_id: str = '') -> DemandRecord:
        values = self.model_dump()
        values['title'] = values['title'] or ''
        values['request_date'] = values['request_date'] or today()
        return DemandRecord(id=record_id, **values)


class DemandStatusUpdate(BaseModel):
    status: DemandStatus


class DemandCompletion(BaseModel):
    completion_date: FormDate | None = None


class ChecklistToggle(BaseModel):
    index: int = Field(..., ge=0)


class UserCreate(BaseModel):
    username: str
    email: str
    password: str
    role: UserRole = UserRole.VIEWER


class UserRoleUpdate(BaseModel):
    role: UserRole


class UserStatusUpdate(BaseModel):
    status: UserStatus


class TechnicianCreate(BaseModel):
    name: str


class ManualImportRequest(BaseModel):
    text: str


class DashboardSettingsUpdate(BaseModel):
    critical_threshold_days: int = Field(..., ge=1)
