from __future__ import annotations

import unittest
from datetime import date, datetime

from app.services.date_utils import (
    days_between,
    format_date_br,
    parse_date,
    spreadsheet_serial_to_date,
    to_iso,
)


class DateUtilsTests(unittest.TestCase):
    def test_parse_iso_and_brazilian_formats(self) -> None:
        self.assertEqual(parse_date('2024-01-05'), date(2024, 1, 5))
        self.assertEqual(parse_date('05/01/2024'), date(2024, 1, 5))
        self.assertEqual(parse_date('2024-01-05T10:30:00Z'), date(2024, 1, 5))

    def test_parse_passes_dates_through(self) -> None:
        self.assertEqual(parse_date(datetime(2024, 3, 1, 12, 0)), date(2024, 3, 1))
        self.assertEqual(parse_date(date(2024, 3, 1)), date(2024, 3, 1))

    def test_parse_rejects_garbage(self) -> None:
        self.assertIsNone(parse_date(None))
        self.assertIsNone(parse_date(''))
        self.assertIsNone(parse_date('31/02/2024'))
        self.assertIsNone(parse_date('yesterday'))
        self.assertIsNone(parse_date('1/2'))

    def test_spreadsheet_serial(self) -> None:
        self.assertEqual(spreadsheet_serial_to_date(45292), date(2024, 1, 1))
        self.assertEqual(spreadsheet_serial_to_date(45292.75), date(2024, 1, 1))

    def test_formatting(self) -> None:
        self.assertEqual(to_iso(date(2024, 1, 5)), '2024-01-05')
        self.assertEqual(to_iso(None), '')
        self.assertEqual(format_date_br(date(2024, 1, 5)), '05/01/2024')
        self.assertEqual(format_date_br(None), '')

    def test_days_between_is_absolute(self) -> None:
        self.assertEqual(days_between(date(2024, 1, 1), date(2024, 1, 5)), 4)
        self.assertEqual(days_between(date(2024, 1, 5), date(2024, 1, 1)), 4)


if __name__ == '__main__':
    unittest.main()
