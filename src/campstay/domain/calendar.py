"""Calendar helpers shared by pricing events and vouchers."""

from __future__ import annotations

from datetime import date, timedelta
from typing import Iterator


def iter_nights(check_in: date, check_out: date) -> Iterator[date]:
    """Yield each night in [check_in, check_out)."""
    current = check_in
    while current < check_out:
        yield current
        current += timedelta(days=1)


def weekday_index(d: date) -> int:
    """Weekday as stored by the admin UI: 0=Sunday .. 6=Saturday."""
    return (d.weekday() + 1) % 7
