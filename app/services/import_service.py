"""Turn spreadsheets and pasted text into new delivery records.

Only two columns matter: the invoice number and the issue date. Headers are
matched against a list of synonyms; when none matches, the first and second
columns are used. Nothing is written here: the caller hands the parsed
records to ``DashboardState.import_deliveries``.
"""
from __future__ import annotations

import csv
import logging
from datetime import date, datetime
from io import BytesIO, StringIO
from zipfile import BadZipFile

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException

from app.models import AdminStatus, DeliveryStatus
from app.services.date_utils import parse_date, spreadsheet_serial_to_date, today
from app.services.identifiers import generate_id
from app.services.record_store import DeliveryRecord

logger = logging.getLogger(__name__)

INVOICE_HEADERS = ('Nota Fiscal', 'NF', 'Nota', 'Invoice', 'Invoice Number')
ISSUE_DATE_HEADERS = ('Data de Emissão', 'Data', 'Emissão', 'Issue Date')
DISCARDED_INVOICES = {'UNKNOWN', 'undefined'}
SPREADSHEET_SUFFIXES = ('.xlsx', '.xlsm')


class ImportFormatError(ValueError):
    pass


def _is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _pick(row: dict, synonyms: tuple[str, ...], position: int):
    for header in synonyms:
        value = row.get(header)
        if not _is_blank(value):
            return value
    values = list(row.values())
    if len(values) > position:
        return values[position]
    return None


def _invoice_text(value) -> str:
    if _is_blank(value):
        return 'UNKNOWN'
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def resolve_issue_date(value, *, fallback: date | None = None) -> date:
    """Cell value to date; anything unreadable becomes ``fallback`` (today)."""
    fallback = fallback or today()
    if _is_blank(value):
        return fallback
    if isinstance(value, (datetime, date)):
        return parse_date(value)
    if isinstance(value, bool):
        return fallback
    if isinstance(value, (int, float)):
        return spreadsheet_serial_to_date(value)
    return parse_date(value) or fallback


def rows_to_deliveries(rows: list[dict], *, reference: date | None = None) -> list[DeliveryRecord]:
    records: list[DeliveryRecord] = []
    for row in rows:
        invoice_number = _invoice_text(_pick(row, INVOICE_HEADERS, 0))
        if invoice_number in DISCARDED_INVOICES or not invoice_number:
            continue
        records.append(
            DeliveryRecord(
                id=generate_id(),
                invoice_number=invoice_number,
                issue_date=resolve_issue_date(_pick(row, ISSUE_DATE_HEADERS, 1), fallback=reference),
                status=DeliveryStatus.PENDING,
                admin_status=AdminStatus.OPEN,
            )
        )
    return records


def _require_rows(records: list[DeliveryRecord]) -> list[DeliveryRecord]:
    if not records:
        raise ImportFormatError('No valid rows found to import')
    return records


def read_xlsx_rows(content: bytes) -> list[dict]:
    try:
        workbook = openpyxl.load_workbook(BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, BadZipFile, KeyError, OSError) as exc:
        raise ImportFormatError('Could not read the spreadsheet file') from exc

    try:
        sheet = workbook.worksheets[0]
        raw_rows = list(sheet.iter_rows(values_only=True))
    finally:
        workbook.close()

    if not raw_rows:
        return []
    headers = [str(cell).strip() if cell is not None else f'column_{idx}' for idx, cell in enumerate(raw_rows[0])]
    rows: list[dict] = []
    for raw in raw_rows[1:]:
        if all(_is_blank(cell) for cell in raw):
            continue
        rows.append(dict(zip(headers, raw)))
    return rows


def read_csv_rows(content: bytes) -> list[dict]:
    try:
        text = content.decode('utf-8-sig')
    except UnicodeDecodeError:
        text = content.decode('latin-1')
    sample = text[:2048]
    try:
        dialect = csv.Sniffer().sniff(sample, delimiters=',;\t')
    except csv.Error:
        dialect = csv.excel
    reader = csv.DictReader(StringIO(text), dialect=dialect)
    try:
        return [
            {key.strip() if key else key: value for key, value in row.items()}
            for row in reader
            if any(not _is_blank(value) for value in row.values())
        ]
    except csv.Error as exc:
        raise ImportFormatError('Could not read the CSV file') from exc


def parse_spreadsheet(filename: str, content: bytes, *, reference: date | None = None) -> list[DeliveryRecord]:
    name = (filename or '').lower()
    if name.endswith(SPREADSHEET_SUFFIXES):
        rows = read_xlsx_rows(content)
    elif name.endswith('.csv'):
        rows = read_csv_rows(content)
    else:
        raise ImportFormatError('Unsupported file type. Use .xlsx or .csv')
    records = _require_rows(rows_to_deliveries(rows, reference=reference))
    logger.info('parsed %s delivery rows from %s', len(records), filename)
    return records


def parse_manual_text(text: str, *, reference: date | None = None) -> list[DeliveryRecord]:
    """Pasted two-column text: tab-separated when a line has a tab, else comma-separated."""
    rows: list[dict] = []
    for line in (text or '').strip().split('\n'):
        if not line.strip():
            continue
        parts = line.split('\t') if '\t' in line else line.split(',')
        rows.append(
            {
                'Nota Fiscal': parts[0].strip() if len(parts) > 0 else None,
                'Data de Emissão': parts[1].strip() if len(parts) > 1 else None,
            }
        )
    records = _require_rows(rows_to_deliveries(rows, reference=reference))
    logger.info('parsed %s delivery rows from pasted text', len(records))
    return records
