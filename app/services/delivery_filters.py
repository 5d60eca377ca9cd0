from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from math import ceil
from typing import Generic, TypeVar

from app.models import AdminStatus, DeliveryStatus
from app.services.record_store import DeliveryRecord, DemandRecord, PendencyRecord
from app.services.sort_utils import natural_sort_key, normalize_sort_text

DEFAULT_PAGE_SIZE = 50

T = TypeVar('T')


@dataclass(frozen=True)
class DeliveryFilter:
    invoice_number: str | None = None
    status: DeliveryStatus | None = None
    admin_status: AdminStatus | None = None
    start_date: date | None = None
    end_date: date | None = None

    def matches(self, record: DeliveryRecord) -> bool:
        term = (self.invoice_number or '').lower()
        if term and term not in (record.invoice_number or '').lower():
            return False
        if self.status is not None and record.status != self.status:
            return False
        if self.admin_status is not None and (record.admin_status or AdminStatus.OPEN) != self.admin_status:
            return False
        if self.start_date is not None and record.issue_date < self.start_date:
            return False
        if self.end_date is not None and record.issue_date > self.end_date:
            return False
        return True


@dataclass(frozen=True)
class Page(Generic[T]):
    items: list[T]
    page: int
    page_size: int
    total_items: int
    total_pages: int


def filter_deliveries(records: Iterable[DeliveryRecord], criteria: DeliveryFilter) -> list[DeliveryRecord]:
    return [record for record in records if criteria.matches(record)]


def sort_deliveries(records: Iterable[DeliveryRecord]) -> list[DeliveryRecord]:
    # Two stable passes: invoice number first, then issue date as the primary key.
    by_invoice = sorted(records, key=lambda record: natural_sort_key(record.invoice_number), reverse=True)
    return sorted(by_invoice, key=lambda record: record.issue_date, reverse=True)


def paginate(items: Sequence[T], page: int = 1, page_size: int = DEFAULT_PAGE_SIZE) -> Page[T]:
    if page_size < 1:
        raise ValueError('Page size must be at least 1')
    page = max(1, int(page))
    total_items = len(items)
    total_pages = ceil(total_items / page_size) if total_items else 0
    start = (page - 1) * page_size
    return Page(
        items=list(items[start : start + page_size]),
        page=page,
        page_size=page_size,
        total_items=total_items,
        total_pages=total_pages,
    )


def filter_pendencies(records: Iterable[PendencyRecord], term: str | None) -> list[PendencyRecord]:
    needle = normalize_sort_text(term)
    if not needle:
        return list(records)
    return [
        record
        for record in records
        if any(
            needle in normalize_sort_text(value)
            for value in (record.provider_name, record.reference_number, record.item_name)
        )
    ]


def filter_demands(records: Iterable[DemandRecord], term: str | None) -> list[DemandRecord]:
    needle = normalize_sort_text(term)
    if not needle:
        return list(records)
    return [
        record
        for record in records
        if any(
            needle in normalize_sort_text(value)
            for value in (record.title, record.client_name, record.project_name, record.items)
        )
    ]
