from __future__ import annotations

import re

_DIGITS_PATTERN = re.compile(r'(\d+)')


def normalize_sort_text(value: str | None) -> str:
    return (value or '').strip().lower()


def natural_sort_key(value: str | None) -> tuple[tuple[int, int, str], ...]:
    """Split text into digit and non-digit runs so "NF-2" sorts before "NF-10"."""
    parts: list[tuple[int, int, str]] = []
    for chunk in _DIGITS_PATTERN.split(normalize_sort_text(value)):
        if not chunk:
            continue
        if chunk.isdigit():
            parts.append((0, int(chunk), chunk))
        else:
            parts.append((1, 0, chunk))
    return tuple(parts)
