from __future__ import annotations

import unittest
from datetime import date
from io import BytesIO
from urllib.parse import parse_qs, urlparse

from PIL import Image

from app.models import DemandStatus
from app.services.completion_image_service import (
    CARD_WIDTH,
    calendar_link,
    completion_image_filename,
    completion_lines,
    render_completion_email,
    render_completion_image,
)
from app.services.record_store import DemandRecord


def _demand(**kwargs) -> DemandRecord:
    values = {
        'id': 'd1',
        'title': 'Store opening',
        'client_name': 'Initech',
        'project_name': 'Downtown',
        'request_date': date(2024, 1, 1),
        'deadline': date(2024, 1, 10),
        'completion_date': date(2024, 1, 9),
        'status': DemandStatus.COMPLETED,
        'items': '[x] 123 - Cable\n\n[X] Router',
    }
    values.update(kwargs)
    return DemandRecord(**values)


class CompletionImageServiceTests(unittest.TestCase):
    def test_lines_split_item_codes(self) -> None:
        lines = completion_lines(_demand())
        self.assertEqual([(line.code, line.name) for line in lines], [('123', 'Cable'), (None, 'Router')])

    def test_image_is_a_fixed_width_png(self) -> None:
        content = render_completion_image(_demand())
        image = Image.open(BytesIO(content))
        self.assertEqual(image.format, 'PNG')
        self.assertEqual(image.width, CARD_WIDTH)

    def test_image_grows_with_items(self) -> None:
        short = Image.open(BytesIO(render_completion_image(_demand(items='[x] A'))))
        long = Image.open(BytesIO(render_completion_image(_demand(items='[x] A\n[x] B\n[x] C'))))
        self.assertGreater(long.height, short.height)

    def test_incomplete_checklist_is_refused(self) -> None:
        with self.assertRaises(ValueError):
            render_completion_image(_demand(items='[x] A\nB'))
        with self.assertRaises(ValueError):
            render_completion_email(_demand(items=''))

    def test_email_body(self) -> None:
        body = render_completion_email(_demand(observations='Gate 3'))
        self.assertTrue(body.startswith('Subject: Materials available - Store opening'))
        self.assertIn('Hello Initech,', body)
        self.assertIn('the project "Downtown"', body)
        self.assertIn('Original deadline: 10/01/2024', body)
        self.assertIn('[x] 123 - Cable', body)
        self.assertIn('[x] Router', body)
        self.assertIn('Notes: Gate 3', body)

    def test_calendar_link_spans_deadline_day(self) -> None:
        link = calendar_link(_demand())
        query = parse_qs(urlparse(link).query)
        self.assertEqual(query['action'], ['TEMPLATE'])
        self.assertEqual(query['dates'], ['20240110/20240111'])
        self.assertEqual(query['text'], ['Delivery: Store opening'])

    def test_filename_is_safe(self) -> None:
        self.assertEqual(completion_image_filename(_demand(title='Loja / Centro')), 'completed_Loja___Centro.png')


if __name__ == '__main__':
    unittest.main()
