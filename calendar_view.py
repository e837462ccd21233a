# calendar_view.py
# Month-view calendar math and the date formats shown to the operator.
# Weeks start on Sunday; a month grid is always 6 rows x 7 columns.

from __future__ import annotations

import calendar
from datetime import date, datetime
from typing import Dict, List, NamedTuple, Optional, Tuple

GRID_CELLS = 42


class Cell(NamedTuple):
    date: Optional[str]
    day: Optional[int]
    count: int = 0


def today_iso() -> str:
    return date.today().isoformat()


def parse_iso(iso: str) -> Tuple[int, int, int]:
    y, m, d = (int(p) for p in iso.split("-"))
    return y, m, d


def iso_from_parts(y: int, m: int, d: int) -> str:
    return f"{y}-{m:02d}-{d:02d}"


def days_in_month(y: int, m: int) -> int:
    return calendar.monthrange(y, m)[1]


def weekday_of_first(y: int, m: int) -> int:
    """0=Sun..6=Sat."""
    return (date(y, m, 1).weekday() + 1) % 7


def shift_month(y: int, m: int, delta: int) -> Tuple[int, int]:
    idx = y * 12 + (m - 1) + delta
    return idx // 12, idx % 12 + 1


def month_grid(y: int, m: int) -> List[Cell]:
    cells: List[Cell] = [Cell(None, None)] * weekday_of_first(y, m)
    cells += [Cell(iso_from_parts(y, m, d), d) for d in range(1, days_in_month(y, m) + 1)]
    while len(cells) % 7:
        cells.append(Cell(None, None))
    while len(cells) < GRID_CELLS:
        cells.append(Cell(None, None))
    return cells


def month_view(y: int, m: int, counts: Dict[str, int]) -> List[Cell]:
    """Grid cells with the per-day badge count filled in."""
    return [c._replace(count=counts.get(c.date, 0)) if c.date else c for c in month_grid(y, m)]


def month_prefix(y: int, m: int) -> str:
    return f"{y}-{m:02d}-"


def format_korean_date(iso: str) -> str:
    y, m, d = iso.split("-")
    return f"{y}년 {int(m)}월 {int(d)}일"


def fmt_datetime(iso: str) -> str:
    """ISO timestamp as "YYYY-MM-DD HH:MM"; unparsable text comes back unchanged."""
    try:
        return datetime.fromisoformat(iso).strftime("%Y-%m-%d %H:%M")
    except ValueError:
        return iso
