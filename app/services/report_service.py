from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from io import BytesIO

import openpyxl
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from sqlalchemy.orm import Session

from app.config import settings
from app.services import record_store
from app.services.date_utils import format_date_br
from app.services.record_store import DeliveryRecord, DemandRecord

OPERATIONAL_SHEET = 'Operational Report'
COMMERCIAL_SHEET = 'Commercial Report'

DELIVERY_HEADERS = [
    'Invoice Number',
    'Issue Date',
    'Delivery Date',
    'Return Date',
    'Current Status',
    'Technician',
    'Admin Status',
    'Observations',
]
DEMAND_HEADERS = [
    'Title',
    'Request Date',
    'Deadline',
    'Completion Date',
    'Status',
    'Priority',
    'Items',
]


@dataclass(frozen=True)
class ClosingReport:
    filename: str
    content: bytes
    deliveries: int
    demands: int


def validate_range(start: date | None, end: date | None) -> tuple[date, date]:
    if start is None or end is None:
        raise ValueError('Start and end dates are required')
    if start > end:
        raise ValueError('Start date must be on or before the end date')
    return start, end


def report_filename(start: date, end: date) -> str:
    return f'{settings.report_file_prefix}_{start.isoformat()}_to_{end.isoformat()}.xlsx'


def delivery_row(record: DeliveryRecord) -> tuple:
    return (
        record.invoice_number,
        format_date_br(record.issue_date),
        format_date_br(record.delivery_date) or 'Pending',
        format_date_br(record.return_date) or 'N/A',
        record.status.value,
        record.receiver_name or 'Unassigned',
        record.admin_status.value,
        record.observations or '',
    )


def demand_row(record: DemandRecord) -> tuple:
    return (
        record.title,
        format_date_br(record.request_date),
        format_date_br(record.deadline),
        format_date_br(record.completion_date) or 'In progress',
        record.status.value,
        record.priority.value,
        record.items,
    )


def _fill_sheet(sheet, headers: list[str], rows: list[tuple]) -> None:
    for col_idx, header in enumerate(headers, start=1):
        cell = sheet.cell(row=1, column=col_idx, value=header)
        cell.font = Font(bold=True)
    for row_idx, row in enumerate(rows, start=2):
        for col_idx, value in enumerate(row, start=1):
            sheet.cell(row=row_idx, column=col_idx, value=value)
    for col_idx, _ in enumerate(headers, start=1):
        sheet.column_dimensions[get_column_letter(col_idx)].width = 18


def build_workbook(deliveries: list[DeliveryRecord], demands: list[DemandRecord]) -> bytes:
    workbook = openpyxl.Workbook()
    operational = workbook.active
    operational.title = OPERATIONAL_SHEET
    _fill_sheet(operational, DELIVERY_HEADERS, [delivery_row(record) for record in deliveries])

    commercial = workbook.create_sheet(COMMERCIAL_SHEET)
    _fill_sheet(commercial, DEMAND_HEADERS, [demand_row(record) for record in demands])

    stream = BytesIO()
    workbook.save(stream)
    return stream.getvalue()


def generate_closing_report(db: Session, *, company_id: str, start: date | None, end: date | None) -> ClosingReport:
    start, end = validate_range(start, end)
    deliveries = record_store.list_deliveries_between(db, company_id=company_id, start=start, end=end)
    demands = record_store.list_demands_between(db, company_id=company_id, start=start, end=end)
    return ClosingReport(
        filename=report_filename(start, end),
        content=build_workbook(deliveries, demands),
        deliveries=len(deliveries),
        demands=len(demands),
    )
