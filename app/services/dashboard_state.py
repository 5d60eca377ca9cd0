"""Per-request view of one tenant's dashboard.

``load_state`` reads every collection the signed-in user can see. Mutations
update the in-memory copy first, write through the record store inside a
savepoint and put the previous value back if the write fails, so callers
always get a ``MutationResult`` instead of a storage exception.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Generic, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.auth import Principal
from app.config import settings
from app.models import AdminStatus, DeliveryStatus, DemandStatus
from app.services import record_store
from app.services.checklist_service import toggle_checklist_line
from app.services.date_utils import parse_date, today
from app.services.delivery_filters import DeliveryFilter, Page, filter_deliveries, paginate, sort_deliveries
from app.services.identifiers import generate_id
from app.services.permissions import Capability, evaluate_capabilities, is_locked
from app.services.record_store import (
    DeliveryRecord,
    DemandRecord,
    PendencyRecord,
    TechnicianRecord,
    UserRecord,
    parse_enum,
)
from app.services.stats_service import DashboardStats, compute_dashboard_stats, get_critical_threshold

logger = logging.getLogger(__name__)

T = TypeVar('T')

STORAGE_ERROR_MESSAGE = 'Could not save changes. Please try again.'
PERMISSION_ERROR_MESSAGE = 'Insufficient permissions'

REASON_VALIDATION = 'validation'
REASON_PERMISSION = 'permission'
REASON_NOT_FOUND = 'not_found'
REASON_STORAGE = 'storage'

BASE_FIELDS = ('invoice_number', 'issue_date')
PATCHABLE_DELIVERY_FIELDS = {
    'status',
    'admin_status',
    'receiver_name',
    'delivery_date',
    'return_date',
    'observations',
}


@dataclass(frozen=True)
class MutationResult(Generic[T]):
    ok: bool
    record: T | None = None
    error: str | None = None
    reason: str | None = None


@dataclass(frozen=True)
class RecordOutcome:
    key: str
    ok: bool
    record_id: str | None = None
    error: str | None = None


@dataclass
class BulkResult:
    outcomes: list[RecordOutcome] = field(default_factory=list)
    error: str | None = None

    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.ok)

    @property
    def failed(self) -> int:
        return sum(1 for outcome in self.outcomes if not outcome.ok)

    @property
    def ok(self) -> bool:
        return self.error is None and self.failed == 0


def _failure(error: str, *, reason: str = REASON_VALIDATION) -> MutationResult:
    return MutationResult(ok=False, error=error, reason=reason)


def _denied(error: str = PERMISSION_ERROR_MESSAGE) -> MutationResult:
    return _failure(error, reason=REASON_PERMISSION)


def _not_found(error: str) -> MutationResult:
    return _failure(error, reason=REASON_NOT_FOUND)


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    text = value.strip()
    return text or None


def _replace_by_id(collection: list, record) -> None:
    for idx, existing in enumerate(collection):
        if existing.id == record.id:
            collection[idx] = record
            return
    collection.insert(0, record)


def _remove_by_id(collection: list, record_id: str) -> None:
    collection[:] = [existing for existing in collection if existing.id != record_id]


def _find(collection: Iterable, record_id: str):
    for record in collection:
        if record.id == record_id:
            return record
    return None


@dataclass
class DashboardState:
    db: Session
    principal: Principal
    deliveries: list[DeliveryRecord] = field(default_factory=list)
    pendencies: list[PendencyRecord] = field(default_factory=list)
    demands: list[DemandRecord] = field(default_factory=list)
    technicians: list[TechnicianRecord] = field(default_factory=list)
    users: list[UserRecord] = field(default_factory=list)
    critical_threshold_days: int = 4
    filters: DeliveryFilter = field(default_factory=DeliveryFilter)
    page: int = 1
    page_size: int = 50

    @property
    def company_id(self) -> str:
        return self.principal.company_id

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def set_filters(self, criteria: DeliveryFilter) -> None:
        self.filters = criteria
        self.page = 1

    def set_page(self, page: int) -> None:
        self.page = max(1, int(page))

    def visible_page(self) -> Page[DeliveryRecord]:
        matching = sort_deliveries(filter_deliveries(self.deliveries, self.filters))
        return paginate(matching, self.page, self.page_size)

    def find_delivery(self, delivery_id: str) -> DeliveryRecord | None:
        return _find(self.deliveries, delivery_id)

    def find_pendency(self, pendency_id: str) -> PendencyRecord | None:
        return _find(self.pendencies, pendency_id)

    def find_demand(self, demand_id: str) -> DemandRecord | None:
        return _find(self.demands, demand_id)

    def capabilities_for(self, record: DeliveryRecord | None = None) -> frozenset[Capability]:
        if record is None:
            return evaluate_capabilities(self.principal.role, persisted=False)
        return evaluate_capabilities(self.principal.role, locked=is_locked(record.admin_status), persisted=True)

    def stats(self, reference: date | None = None) -> DashboardStats:
        return compute_dashboard_stats(
            deliveries=self.deliveries,
            demands=self.demands,
            pendencies=self.pendencies,
            reference=reference or today(),
            threshold_days=self.critical_threshold_days,
        )

    # ------------------------------------------------------------------
    # Write-through helper
    # ------------------------------------------------------------------

    def _write_through(
        self,
        *,
        action: str,
        apply: Callable[[], None],
        revert: Callable[[], None],
        persist: Callable[[], T],
    ) -> MutationResult[T]:
        apply()
        try:
            with self.db.begin_nested():
                stored = persist()
        except SQLAlchemyError:
            logger.exception('%s failed for company %s', action, self.company_id)
            revert()
            return _failure(STORAGE_ERROR_MESSAGE, reason=REASON_STORAGE)
        except ValueError as exc:
            logger.warning('%s rejected for company %s: %s', action, self.company_id, exc)
            revert()
            return _failure(str(exc), reason=REASON_NOT_FOUND)
        return MutationResult(ok=True, record=stored)

    def _write_record(self, collection: list, *, action: str, previous, updated, persist) -> MutationResult:
        def apply() -> None:
            _replace_by_id(collection, updated)

        def revert() -> None:
            if previous is None:
                _remove_by_id(collection, updated.id)
            else:
                _replace_by_id(collection, previous)

        result = self._write_through(action=action, apply=apply, revert=revert, persist=persist)
        if result.ok and result.record is not None:
            _replace_by_id(collection, result.record)
        return result

    def _delete_record(self, collection: list, *, action: str, record_id: str, persist) -> MutationResult:
        snapshot = list(collection)

        def apply() -> None:
            _remove_by_id(collection, record_id)

        def revert() -> None:
            collection[:] = snapshot

        return self._write_through(action=action, apply=apply, revert=revert, persist=persist)

    # ------------------------------------------------------------------
    # Deliveries
    # ------------------------------------------------------------------

    def _delivery_change_error(self, previous: DeliveryRecord, updated: DeliveryRecord) -> str | None:
        capabilities = self.capabilities_for(previous)
        if not capabilities & {Capability.EDIT_DELIVERY, Capability.EDIT_ADMIN_STATUS}:
            if is_locked(previous.admin_status):
                return 'This delivery is closed and can only be changed by an administrator'
            return PERMISSION_ERROR_MESSAGE
        changed = {
            name
            for name in (
                'invoice_number',
                'issue_date',
                'status',
                'admin_status',
                'receiver_name',
                'delivery_date',
                'return_date',
                'observations',
            )
            if getattr(previous, name) != getattr(updated, name)
        }
        if not changed:
            return None
        if changed & set(BASE_FIELDS) and Capability.EDIT_BASE_FIELDS not in capabilities:
            return 'Invoice number and issue date cannot be changed after the record is saved'
        if 'admin_status' in changed and Capability.EDIT_ADMIN_STATUS not in capabilities:
            return 'Only administrators can change the administrative status'
        if changed - {'admin_status'} and Capability.EDIT_DELIVERY not in capabilities:
            if is_locked(previous.admin_status):
                return 'This delivery is closed and can only be changed by an administrator'
            return PERMISSION_ERROR_MESSAGE
        return None

    def save_delivery(self, record: DeliveryRecord) -> MutationResult[DeliveryRecord]:
        """Form save: creates unknown ids, fully updates known ones."""
        invoice_number = (record.invoice_number or '').strip()
        if not invoice_number:
            return _failure('Invoice number is required')
        if record.issue_date is None:
            return _failure('Issue date is required')
        receiver_name = _clean(record.receiver_name)
        if record.status == DeliveryStatus.DELIVERED and not receiver_name:
            return _failure('Receiver name is required when the status is Delivered')

        candidate = replace(
            record,
            id=record.id or generate_id(),
            invoice_number=invoice_number,
            receiver_name=receiver_name,
            observations=_clean(record.observations),
            admin_status=record.admin_status or AdminStatus.OPEN,
            company_id=self.company_id,
        )
        previous = self.find_delivery(candidate.id) if record.id else None

        if previous is None:
            capabilities = self.capabilities_for(None)
            if Capability.CREATE_DELIVERY not in capabilities:
                return _denied()
            if candidate.admin_status != AdminStatus.OPEN and Capability.EDIT_ADMIN_STATUS not in capabilities:
                return _denied('Only administrators can change the administrative status')
            return self._write_record(
                self.deliveries,
                action='create delivery',
                previous=None,
                updated=candidate,
                persist=lambda: record_store.create_delivery(self.db, record=candidate, company_id=self.company_id),
            )

        error = self._delivery_change_error(previous, candidate)
        if error:
            return _denied(error)
        return self._write_record(
            self.deliveries,
            action='update delivery',
            previous=previous,
            updated=candidate,
            persist=lambda: record_store.update_delivery(self.db, record=candidate, company_id=self.company_id),
        )

    def patch_delivery(self, delivery_id: str, field_name: str, value) -> MutationResult[DeliveryRecord]:
        """Inline single-field edit from the delivery table."""
        previous = self.find_delivery(delivery_id)
        if previous is None:
            return _not_found('Delivery not found')
        if field_name not in PATCHABLE_DELIVERY_FIELDS:
            return _failure(f'Field cannot be edited inline: {field_name}')

        try:
            if field_name == 'status':
                coerced = parse_enum(DeliveryStatus, value)
            elif field_name == 'admin_status':
                coerced = parse_enum(AdminStatus, value, AdminStatus.OPEN)
            elif field_name in {'delivery_date', 'return_date'}:
                coerced = parse_date(value)
                if value not in (None, '') and coerced is None:
                    raise ValueError('Invalid date')
            else:
                coerced = _clean(None if value is None else str(value))
        except ValueError as exc:
            return _failure(str(exc))

        updated = replace(previous, **{field_name: coerced})
        error = self._delivery_change_error(previous, updated)
        if error:
            return _denied(error)
        if updated == previous:
            return MutationResult(ok=True, record=previous)
        return self._write_record(
            self.deliveries,
            action=f'update delivery {field_name}',
            previous=previous,
            updated=updated,
            persist=lambda: record_store.update_delivery(self.db, record=updated, company_id=self.company_id),
        )

    def delete_delivery(self, delivery_id: str) -> MutationResult[None]:
        if Capability.DELETE_DELIVERY not in self.capabilities_for(None):
            return _denied()
        if self.find_delivery(delivery_id) is None:
            return _not_found('Delivery not found')
        return self._delete_record(
            self.deliveries,
            action='delete delivery',
            record_id=delivery_id,
            persist=lambda: record_store.delete_delivery(self.db, delivery_id=delivery_id, company_id=self.company_id),
        )

    def bulk_update_status(self, delivery_ids: list[str], status: DeliveryStatus) -> BulkResult:
        result = BulkResult()
        for delivery_id in dict.fromkeys(delivery_ids):
            outcome = self.patch_delivery(delivery_id, 'status', status)
            result.outcomes.append(
                RecordOutcome(key=delivery_id, ok=outcome.ok, record_id=delivery_id, error=outcome.error)
            )
        logger.info(
            'bulk status update to %s for company %s: %s ok, %s failed',
            status,
            self.company_id,
            result.succeeded,
            result.failed,
        )
        return result

    def import_deliveries(self, records: list[DeliveryRecord]) -> BulkResult:
        if Capability.IMPORT_DATA not in self.capabilities_for(None):
            return BulkResult(error=PERMISSION_ERROR_MESSAGE)

        result = BulkResult()
        for record in records:
            candidate = replace(
                record,
                id=record.id or generate_id(),
                status=record.status or DeliveryStatus.PENDING,
                admin_status=record.admin_status or AdminStatus.OPEN,
                company_id=self.company_id,
            )
            outcome = self._write_record(
                self.deliveries,
                action='import delivery',
                previous=None,
                updated=candidate,
                persist=lambda candidate=candidate: record_store.create_delivery(
                    self.db, record=candidate, company_id=self.company_id
                ),
            )
            result.outcomes.append(
                RecordOutcome(
                    key=candidate.invoice_number,
                    ok=outcome.ok,
                    record_id=outcome.record.id if outcome.ok else None,
                    error=outcome.error,
                )
            )
        logger.info(
            'imported deliveries for company %s: %s ok, %s failed',
            self.company_id,
            result.succeeded,
            result.failed,
        )
        return result

    # ------------------------------------------------------------------
    # Pendencies
    # ------------------------------------------------------------------

    def _can_edit_pendencies(self) -> bool:
        return Capability.EDIT_PENDENCY in self.capabilities_for(None)

    def add_pendency(self, record: PendencyRecord) -> MutationResult[PendencyRecord]:
        if not self._can_edit_pendencies():
            return _denied()
        provider_name = _clean(record.provider_name)
        reference_number = _clean(record.reference_number)
        item_name = _clean(record.item_name)
        reason = _clean(record.reason)
        if not (provider_name and reference_number and item_name and reason):
            return _failure('Provider, reference, item and reason are required')
        if not isinstance(record.quantity, int) or record.quantity <= 0:
            return _failure('Quantity must be greater than zero')

        candidate = replace(
            record,
            id=record.id or generate_id(),
            provider_name=provider_name,
            reference_number=reference_number,
            item_name=item_name,
            reason=reason,
            created_on=record.created_on or today(),
            resolved=False,
            company_id=self.company_id,
        )
        return self._write_record(
            self.pendencies,
            action='create pendency',
            previous=None,
            updated=candidate,
            persist=lambda: record_store.create_pendency(self.db, record=candidate, company_id=self.company_id),
        )

    def _update_open_pendency(self, pendency_id: str, *, action: str, **changes) -> MutationResult[PendencyRecord]:
        if not self._can_edit_pendencies():
            return _denied()
        previous = self.find_pendency(pendency_id)
        if previous is None:
            return _not_found('Pendency not found')
        if previous.resolved:
            return _failure('Resolved pendencies are read-only')
        updated = replace(previous, **changes)
        return self._write_record(
            self.pendencies,
            action=action,
            previous=previous,
            updated=updated,
            persist=lambda: record_store.update_pendency(self.db, record=updated, company_id=self.company_id),
        )

    def update_pendency(self, pendency_id: str, *, expected_resolution_date: date | None) -> MutationResult[PendencyRecord]:
        return self._update_open_pendency(
            pendency_id,
            action='update pendency',
            expected_resolution_date=expected_resolution_date,
        )

    def resolve_pendency(self, pendency_id: str) -> MutationResult[PendencyRecord]:
        return self._update_open_pendency(pendency_id, action='resolve pendency', resolved=True)

    def delete_pendency(self, pendency_id: str) -> MutationResult[None]:
        if not self._can_edit_pendencies():
            return _denied()
        if self.find_pendency(pendency_id) is None:
            return _not_found('Pendency not found')
        return self._delete_record(
            self.pendencies,
            action='delete pendency',
            record_id=pendency_id,
            persist=lambda: record_store.delete_pendency(self.db, pendency_id=pendency_id, company_id=self.company_id),
        )

    # ------------------------------------------------------------------
    # Commercial demands
    # ------------------------------------------------------------------

    def _can_edit_demands(self) -> bool:
        return Capability.EDIT_DEMAND in self.capabilities_for(None)

    def _normalize_demand(self, record: DemandRecord) -> DemandRecord | str:
        client_name = _clean(record.client_name)
        title = _clean(record.title) or client_name
        if not title:
            return 'Title or client name is required'
        if record.request_date is None or record.deadline is None:
            return 'Request date and deadline are required'
        return replace(
            record,
            id=record.id or generate_id(),
            title=title,
            client_name=client_name,
            project_name=_clean(record.project_name),
            salesperson_name=_clean(record.salesperson_name),
            observations=_clean(record.observations),
            items=record.items or '',
            company_id=self.company_id,
        )

    def add_demand(self, record: DemandRecord) -> MutationResult[DemandRecord]:
        if not self._can_edit_demands():
            return _denied()
        candidate = self._normalize_demand(record)
        if isinstance(candidate, str):
            return _failure(candidate)
        # Completion only happens through complete_demand / set_demand_status.
        candidate = replace(candidate, status=DemandStatus.PENDING, completion_date=None)
        return self._write_record(
            self.demands,
            action='create demand',
            previous=None,
            updated=candidate,
            persist=lambda: record_store.create_demand(self.db, record=candidate, company_id=self.company_id),
        )

    def update_demand(self, record: DemandRecord) -> MutationResult[DemandRecord]:
        if not self._can_edit_demands():
            return _denied()
        previous = self.find_demand(record.id)
        if previous is None:
            return _not_found('Commercial demand not found')
        candidate = self._normalize_demand(record)
        if isinstance(candidate, str):
            return _failure(candidate)
        candidate = replace(candidate, status=previous.status, completion_date=previous.completion_date)
        return self._write_demand(previous, candidate, action='update demand')

    def _write_demand(self, previous: DemandRecord, updated: DemandRecord, *, action: str) -> MutationResult[DemandRecord]:
        return self._write_record(
            self.demands,
            action=action,
            previous=previous,
            updated=updated,
            persist=lambda: record_store.update_demand(self.db, record=updated, company_id=self.company_id),
        )

    def toggle_demand_item(self, demand_id: str, index: int) -> MutationResult[DemandRecord]:
        if not self._can_edit_demands():
            return _denied()
        previous = self.find_demand(demand_id)
        if previous is None:
            return _not_found('Commercial demand not found')
        try:
            items = toggle_checklist_line(previous.items, index)
        except ValueError as exc:
            return _failure(str(exc))
        return self._write_demand(previous, replace(previous, items=items), action='toggle demand item')

    def complete_demand(self, demand_id: str, completion_date: date | None = None) -> MutationResult[DemandRecord]:
        if not self._can_edit_demands():
            return _denied()
        previous = self.find_demand(demand_id)
        if previous is None:
            return _not_found('Commercial demand not found')
        updated = replace(previous, status=DemandStatus.COMPLETED, completion_date=completion_date or today())
        return self._write_demand(previous, updated, action='complete demand')

    def set_demand_status(self, demand_id: str, status: DemandStatus) -> MutationResult[DemandRecord]:
        if not self._can_edit_demands():
            return _denied()
        previous = self.find_demand(demand_id)
        if previous is None:
            return _not_found('Commercial demand not found')
        if status == DemandStatus.COMPLETED:
            completion_date = previous.completion_date or today()
        else:
            completion_date = None
        updated = replace(previous, status=status, completion_date=completion_date)
        return self._write_demand(previous, updated, action='set demand status')

    def delete_demand(self, demand_id: str) -> MutationResult[None]:
        if not self._can_edit_demands():
            return _denied()
        if self.find_demand(demand_id) is None:
            return _not_found('Commercial demand not found')
        return self._delete_record(
            self.demands,
            action='delete demand',
            record_id=demand_id,
            persist=lambda: record_store.delete_demand(self.db, demand_id=demand_id, company_id=self.company_id),
        )


def load_state(db: Session, principal: Principal, *, page_size: int | None = None) -> DashboardState:
    company_id = principal.company_id
    users: list[UserRecord] = []
    if Capability.MANAGE_USERS in evaluate_capabilities(principal.role):
        users = record_store.list_users(db, company_id=company_id)
    return DashboardState(
        db=db,
        principal=principal,
        deliveries=record_store.list_deliveries(db, company_id=company_id),
        pendencies=record_store.list_pendencies(db, company_id=company_id),
        demands=record_store.list_demands(db, company_id=company_id),
        technicians=record_store.list_technicians(db, company_id=company_id),
        users=users,
        critical_threshold_days=get_critical_threshold(db, company_id=company_id),
        page_size=page_size or settings.deliveries_page_size,
    )
