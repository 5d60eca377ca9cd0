from __future__ import annotations

import unittest
from datetime import date
from io import BytesIO

import openpyxl

from app.models import DeliveryStatus, DemandStatus
from app.services import record_store
from app.services.record_store import DeliveryRecord, DemandRecord
from app.services.report_service import (
    COMMERCIAL_SHEET,
    DELIVERY_HEADERS,
    OPERATIONAL_SHEET,
    delivery_row,
    demand_row,
    generate_closing_report,
    validate_range,
)
from tests.db_support import add_company, make_engine, make_session_factory


class ReportRowTests(unittest.TestCase):
    def test_delivery_placeholders(self) -> None:
        row = delivery_row(DeliveryRecord(id='1', invoice_number='NF-1', issue_date=date(2024, 1, 5)))
        self.assertEqual(row, ('NF-1', '05/01/2024', 'Pending', 'N/A', 'Pending', 'Unassigned', 'Open', ''))

    def test_demand_row(self) -> None:
        record = DemandRecord(
            id='1',
            title='Store opening',
            request_date=date(2024, 1, 1),
            deadline=date(2024, 1, 10),
            completion_date=date(2024, 1, 9),
            status=DemandStatus.COMPLETED,
            items='[x] A',
        )
        self.assertEqual(
            demand_row(record),
            ('Store opening', '01/01/2024', '10/01/2024', '09/01/2024', 'Completed', 'Medium', '[x] A'),
        )

    def test_range_validation(self) -> None:
        with self.assertRaises(ValueError):
            validate_range(None, date(2024, 1, 1))
        with self.assertRaises(ValueError):
            validate_range(date(2024, 2, 1), date(2024, 1, 1))
        self.assertEqual(validate_range(date(2024, 1, 1), date(2024, 1, 1)), (date(2024, 1, 1), date(2024, 1, 1)))


class ClosingReportTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = make_engine()
        self.db = make_session_factory(self.engine)()
        self.company = add_company(self.db)
        for invoice, issued in (('NF-1', date(2024, 1, 5)), ('NF-2', date(2024, 1, 20)), ('NF-3', date(2024, 2, 1))):
            record_store.create_delivery(
                self.db,
                record=DeliveryRecord(
                    id='',
                    invoice_number=invoice,
                    issue_date=issued,
                    status=DeliveryStatus.DELIVERED,
                    delivery_date=issued,
                    receiver_name='Ana Souza',
                ),
                company_id=self.company.id,
            )
        record_store.create_demand(
            self.db,
            record=DemandRecord(id='', title='January demand', request_date=date(2024, 1, 3), deadline=date(2024, 1, 10)),
            company_id=self.company.id,
        )
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def test_workbook_has_both_sheets_for_range(self) -> None:
        report = generate_closing_report(
            self.db, company_id=self.company.id, start=date(2024, 1, 1), end=date(2024, 1, 31)
        )

        self.assertEqual(report.filename, 'closing_report_2024-01-01_to_2024-01-31.xlsx')
        self.assertEqual((report.deliveries, report.demands), (2, 1))

        workbook = openpyxl.load_workbook(BytesIO(report.content))
        self.assertEqual(workbook.sheetnames, [OPERATIONAL_SHEET, COMMERCIAL_SHEET])
        operational = workbook[OPERATIONAL_SHEET]
        self.assertEqual([cell.value for cell in operational[1]], DELIVERY_HEADERS)
        self.assertEqual(operational.max_row, 3)
        self.assertEqual(operational['A2'].value, 'NF-1')
        self.assertEqual(operational['F2'].value, 'Ana Souza')
        self.assertEqual(workbook[COMMERCIAL_SHEET]['A2'].value, 'January demand')

    def test_empty_range_still_builds_headers(self) -> None:
        report = generate_closing_report(
            self.db, company_id=self.company.id, start=date(2023, 1, 1), end=date(2023, 1, 31)
        )
        workbook = openpyxl.load_workbook(BytesIO(report.content))
        self.assertEqual(workbook[OPERATIONAL_SHEET].max_row, 1)
        self.assertEqual(report.deliveries, 0)


if __name__ == '__main__':
    unittest.main()
