"""
Разбор длительностей в формате "5s", "1m30s", "250ms".

Назначение:
- единицы ns, us, ms, s, m, h; составные значения "1h2m3.5s"
- результат всегда в секундах (float)
"""

from __future__ import annotations

import re

_UNITS_SEC = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,  # U+00B5
    "μs": 1e-6,  # U+03BC
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_PART_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


def parse_duration(value: str) -> float:
    """
    "1h2m3.5s" -> 3723.5

    Пустая строка, число без единицы (кроме "0") и мусор -> ValueError.
    """
    raw = (value or "").strip()
    if not raw:
        raise ValueError("empty duration")

    sign = 1.0
    if raw[0] in "+-":
        sign = -1.0 if raw[0] == "-" else 1.0
        raw = raw[1:]

    if raw == "0":
        return 0.0

    total = 0.0
    pos = 0
    while pos < len(raw):
        m = _PART_RE.match(raw, pos)
        if not m:
            raise ValueError(f"invalid duration: {value!r}")
        total += float(m.group(1)) * _UNITS_SEC[m.group(2)]
        pos = m.end()

    if pos == 0:
        raise ValueError(f"invalid duration: {value!r}")
    return sign * total
