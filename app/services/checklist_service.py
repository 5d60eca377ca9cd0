"""Checklist handling for the free-text ``items`` field of commercial demands.

Each non-blank line is one item. A line whose first non-space characters are
``[x]`` (any case) is checked; everything else is an unchecked item, including
near-misses like ``[ x]`` or ``[y]``.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal

CHECKED_MARKER = '[x]'
_MARKER_RE = re.compile(r'^(\s*)\[[xX]\]\s*')


@dataclass(frozen=True)
class ChecklistLine:
    text: str
    checked: bool
    line_index: int = field(compare=False)


def _split_lines(text: str | None) -> list[str]:
    return (text or '').split('\n')


def parse_checklist(text: str | None) -> list[ChecklistLine]:
    lines: list[ChecklistLine] = []
    for line_index, raw in enumerate(_split_lines(text)):
        if not raw.strip():
            continue
        match = _MARKER_RE.match(raw)
        if match:
            lines.append(ChecklistLine(text=raw[match.end() :].strip(), checked=True, line_index=line_index))
        else:
            lines.append(ChecklistLine(text=raw.strip(), checked=False, line_index=line_index))
    return lines


def serialize_checklist(lines: list[ChecklistLine]) -> str:
    return '\n'.join(f'{CHECKED_MARKER} {line.text}' if line.checked else line.text for line in lines)


def percentage(part: int, total: int) -> int:
    if total <= 0:
        return 0
    value = Decimal(100 * part) / Decimal(total)
    return int(value.quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def checklist_progress(lines: list[ChecklistLine]) -> int:
    return percentage(sum(1 for line in lines if line.checked), len(lines))


def checklist_summary(text: str | None) -> tuple[list[ChecklistLine], int]:
    lines = parse_checklist(text)
    return lines, checklist_progress(lines)


def is_checklist_complete(text: str | None) -> bool:
    lines = parse_checklist(text)
    return bool(lines) and all(line.checked for line in lines)


def toggle_checklist_line(text: str | None, index: int) -> str:
    """Flip the checked marker of the ``index``-th non-blank line.

    Blank lines, leading indentation and every other line are kept byte for
    byte, so toggling the same index twice gives back the original text.
    """
    items = parse_checklist(text)
    if index < 0 or index >= len(items):
        raise ValueError('Checklist item not found')

    raw_lines = _split_lines(text)
    target = items[index]
    raw = raw_lines[target.line_index]
    match = _MARKER_RE.match(raw)
    if match:
        remainder = raw[match.end() :]
        if not remainder.strip():
            raise ValueError('Checklist item has no text to keep once unchecked')
        raw_lines[target.line_index] = match.group(1) + remainder
    else:
        indent = raw[: len(raw) - len(raw.lstrip())]
        raw_lines[target.line_index] = f'{indent}{CHECKED_MARKER} {raw[len(indent):]}'
    return '\n'.join(raw_lines)


def split_item_code(text: str) -> tuple[str | None, str]:
    parts = text.split(' - ')
    if len(parts) > 1:
        return parts[0], ' - '.join(parts[1:])
    return None, text
