"""Shareable artefacts for a finished commercial demand.

A demand is "finished" here when every checklist line is checked. The PNG is
a fixed 600px wide card meant to be pasted into an email; the text body and
the calendar link are the plain alternatives.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from io import BytesIO
from pathlib import Path
from urllib.parse import urlencode

from jinja2 import Environment, FileSystemLoader, select_autoescape
from PIL import Image, ImageDraw, ImageFont

from app.config import settings
from app.services.checklist_service import is_checklist_complete, parse_checklist, split_item_code
from app.services.date_utils import format_date_br
from app.services.record_store import DemandRecord

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / 'templates'
CALENDAR_URL = 'https://calendar.google.com/calendar/render'

CARD_WIDTH = 600
PADDING = 24
HEADER_HEIGHT = 96
FIELDS_HEIGHT = 150
ITEM_HEIGHT = 30
FOOTER_HEIGHT = 48

GREEN = (22, 163, 74)
GREEN_LIGHT = (220, 252, 231)
SLATE = (30, 41, 59)
SLATE_MUTED = (100, 116, 139)
BORDER = (226, 232, 240)
WHITE = (255, 255, 255)

_email_env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(enabled_extensions=('html',), default_for_string=False),
    keep_trailing_newline=True,
)


@dataclass(frozen=True)
class CompletionLine:
    code: str | None
    name: str


def completion_lines(demand: DemandRecord) -> list[CompletionLine]:
    lines = []
    for line in parse_checklist(demand.items):
        code, name = split_item_code(line.text)
        lines.append(CompletionLine(code=code, name=name))
    return lines


def _require_complete(demand: DemandRecord) -> None:
    if not is_checklist_complete(demand.items):
        raise ValueError('Every checklist item must be checked before exporting')


def _font(size: int):
    return ImageFont.load_default(size=size)


def render_completion_image(demand: DemandRecord) -> bytes:
    _require_complete(demand)
    lines = completion_lines(demand)
    height = HEADER_HEIGHT + FIELDS_HEIGHT + PADDING * 2 + ITEM_HEIGHT * len(lines) + FOOTER_HEIGHT

    image = Image.new('RGB', (CARD_WIDTH, height), WHITE)
    draw = ImageDraw.Draw(image)
    title_font = _font(22)
    label_font = _font(11)
    value_font = _font(15)
    item_font = _font(14)

    draw.rectangle((0, 0, CARD_WIDTH, HEADER_HEIGHT), fill=GREEN)
    draw.text((PADDING, 26), 'Materials available!', font=title_font, fill=WHITE)
    draw.text((PADDING, 58), 'Picking for this order has been completed.', font=value_font, fill=WHITE)

    top = HEADER_HEIGHT + PADDING
    column = (CARD_WIDTH - PADDING * 2) // 2
    fields = [
        ('CLIENT', demand.client_name or demand.title),
        ('PROJECT', demand.project_name or '-'),
        ('ORIGINAL DEADLINE', format_date_br(demand.deadline)),
        ('STATUS', 'COMPLETED (100%)'),
    ]
    for idx, (label, value) in enumerate(fields):
        x = PADDING + (idx % 2) * column
        y = top + (idx // 2) * 64
        draw.text((x, y), label, font=label_font, fill=SLATE_MUTED)
        if label == 'STATUS':
            draw.rounded_rectangle((x - 4, y + 16, x + 150, y + 40), radius=10, fill=GREEN_LIGHT)
            draw.text((x + 4, y + 20), value, font=label_font, fill=GREEN)
        else:
            draw.text((x, y + 18), value, font=value_font, fill=SLATE)

    y = HEADER_HEIGHT + FIELDS_HEIGHT
    draw.line((PADDING, y, CARD_WIDTH - PADDING, y), fill=BORDER, width=1)
    y += PADDING // 2
    for line in lines:
        draw.rectangle((PADDING, y + 6, PADDING + 14, y + 20), outline=GREEN, fill=GREEN)
        text_x = PADDING + 24
        if line.code:
            draw.text((text_x, y + 5), line.code, font=item_font, fill=SLATE_MUTED)
            text_x += int(draw.textlength(line.code, font=item_font)) + 10
        draw.text((text_x, y + 5), line.name, font=item_font, fill=SLATE)
        y += ITEM_HEIGHT

    footer_top = height - FOOTER_HEIGHT
    draw.rectangle((0, footer_top, CARD_WIDTH, height), fill=(248, 250, 252))
    draw.text((PADDING, footer_top + 17), settings.completion_image_footer, font=label_font, fill=SLATE_MUTED)

    stream = BytesIO()
    image.save(stream, format='PNG')
    return stream.getvalue()


def completion_image_filename(demand: DemandRecord) -> str:
    safe_title = ''.join(ch if ch.isalnum() else '_' for ch in demand.title).strip('_') or 'demand'
    return f'completed_{safe_title}.png'


def render_completion_email(demand: DemandRecord) -> str:
    _require_complete(demand)
    template = _email_env.get_template('completion_email.txt')
    return template.render(
        demand=demand,
        lines=completion_lines(demand),
        deadline=format_date_br(demand.deadline),
        completion_date=format_date_br(demand.completion_date),
        footer=settings.completion_image_footer,
    )


def calendar_link(demand: DemandRecord) -> str:
    start = demand.deadline.strftime('%Y%m%d')
    end = (demand.deadline + timedelta(days=1)).strftime('%Y%m%d')
    query = urlencode(
        {
            'action': 'TEMPLATE',
            'text': f'Delivery: {demand.title}',
            'dates': f'{start}/{end}',
            'details': demand.items,
        }
    )
    return f'{CALENDAR_URL}?{query}'
