"""Inventory availability for accommodation units.

A unit either has unlimited inventory or a fixed quantity. Capacity is
consumed by every live booking tent on the unit whose stay overlaps the
requested nights.

Overlap formula:  (existing.check_in < new.check_out) AND (existing.check_out > new.check_in)
Strict inequality means the check-out day is free: a stay ending on the 3rd
and a stay starting on the 3rd never compete for the same night.

Tents that are cancelled, or that belong to a cancelled/rejected booking, do
not consume capacity.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta

from psycopg2.extensions import cursor as PgCursor

from campstay.domain.errors import (
    AvailabilityConflictError,
    InvalidDateRangeError,
    UnitNotFoundError,
)
from campstay.infra.db import select_one
from campstay.observability.logging import get_logger

logger = get_logger(__name__)

RELEASED_BOOKING_STATUSES = ("cancelled", "rejected")


@dataclass(frozen=True)
class AvailabilityResult:
    """Outcome of an availability check. ``capacity=None`` means unlimited."""

    available: bool
    booked_count: int
    capacity: int | None

    @property
    def unlimited(self) -> bool:
        return self.capacity is None

    @property
    def available_count(self) -> int | None:
        if self.capacity is None:
            return None
        return max(self.capacity - self.booked_count, 0)

    def to_dict(self) -> dict:
        return {
            "available": self.available,
            "booked_count": self.booked_count,
            "capacity": "unlimited" if self.capacity is None else self.capacity,
            "available_count": self.available_count,
        }


def dates_overlap(a_in: date, a_out: date, b_in: date, b_out: date) -> bool:
    """Half-open interval overlap of [a_in, a_out) and [b_in, b_out)."""
    return a_in < b_out and a_out > b_in


def _load_unit_policy(cur: PgCursor, unit_id: str, *, lock: bool) -> int | None:
    """Return the unit's capacity, or None when inventory is unlimited."""
    query = """
        SELECT id, inventory_quantity, unlimited_inventory
        FROM accommodation_units
        WHERE id = %s
    """
    row = select_one(cur, query, (unit_id,), lock=lock)
    if row is None:
        raise UnitNotFoundError(unit_id)

    _, inventory_quantity, unlimited_inventory = row
    if unlimited_inventory:
        return None
    return inventory_quantity or 0


def count_overlapping_tents(
    cur: PgCursor,
    *,
    unit_id: str,
    check_in: date,
    check_out: date,
    exclude_booking_tent_id: str | None = None,
) -> int:
    """Count live booking tents on the unit overlapping [check_in, check_out)."""
    conditions = [
        "bt.unit_id = %s",
        "bt.status <> 'cancelled'",
        "NOT (b.status = ANY(%s))",
        "bt.check_in < %s",   # existing check_in < new check_out
        "bt.check_out > %s",  # existing check_out > new check_in
    ]
    params: list = [unit_id, list(RELEASED_BOOKING_STATUSES), check_out, check_in]

    if exclude_booking_tent_id is not None:
        conditions.append("bt.id <> %s")
        params.append(exclude_booking_tent_id)

    where = " AND ".join(conditions)
    cur.execute(
        f"""
        SELECT COUNT(DISTINCT bt.id)
        FROM booking_tents bt
        JOIN bookings b ON b.id = bt.booking_id
        WHERE {where}
        """,
        params,
    )
    row = cur.fetchone()
    return int(row[0]) if row else 0


def check_availability(
    cur: PgCursor,
    *,
    unit_id: str,
    check_in: date,
    check_out: date,
    exclude_booking_tent_id: str | None = None,
    lock: bool = False,
) -> AvailabilityResult:
    """Decide whether the unit has spare capacity for [check_in, check_out).

    Args:
        cur: Database cursor (inside the mutation's transaction when lock=True).
        unit_id: Accommodation unit id.
        check_in: First night (inclusive).
        check_out: Departure day (exclusive).
        exclude_booking_tent_id: Tent being edited, so it does not conflict
            with itself.
        lock: Lock the unit row (FOR UPDATE) before counting. Concurrent
            writers for the same unit then serialize on that row, so two
            requests can never both see the last unit as free.

    Returns:
        AvailabilityResult. A fully booked unit is an ordinary result, not
        an exception.
    """
    if check_in >= check_out:
        raise InvalidDateRangeError(check_in, check_out)

    capacity = _load_unit_policy(cur, unit_id, lock=lock)
    booked_count = count_overlapping_tents(
        cur,
        unit_id=unit_id,
        check_in=check_in,
        check_out=check_out,
        exclude_booking_tent_id=exclude_booking_tent_id,
    )

    if capacity is None:
        return AvailabilityResult(available=True, booked_count=booked_count, capacity=None)

    available = booked_count < capacity
    if not available:
        logger.warning(
            "unit fully booked",
            extra={
                "extra_fields": {
                    "unit_id": unit_id,
                    "requested_check_in": check_in.isoformat(),
                    "requested_check_out": check_out.isoformat(),
                    "booked_count": booked_count,
                    "capacity": capacity,
                    "excluded_booking_tent_id": exclude_booking_tent_id,
                },
            },
        )
    return AvailabilityResult(available=available, booked_count=booked_count, capacity=capacity)


def assert_available(
    cur: PgCursor,
    *,
    unit_id: str,
    check_in: date,
    check_out: date,
    exclude_booking_tent_id: str | None = None,
    lock: bool = True,
) -> AvailabilityResult:
    """Raise AvailabilityConflictError if the unit has no spare capacity.

    Convenience wrapper around check_availability for transactional flows
    where a conflict should abort the operation.
    """
    result = check_availability(
        cur,
        unit_id=unit_id,
        check_in=check_in,
        check_out=check_out,
        exclude_booking_tent_id=exclude_booking_tent_id,
        lock=lock,
    )
    if not result.available:
        raise AvailabilityConflictError(
            unit_id=unit_id,
            check_in=check_in,
            check_out=check_out,
            booked_count=result.booked_count,
            capacity=result.capacity or 0,
        )
    return result


def remaining_stock(
    cur: PgCursor,
    *,
    unit_id: str,
    night: date,
    exclude_booking_tent_id: str | None = None,
) -> int | None:
    """Units still free on a single night (None for unlimited inventory).

    A tent being re-priced passes its own id so it is not counted against
    its own stock.
    """
    result = check_availability(
        cur,
        unit_id=unit_id,
        check_in=night,
        check_out=night + timedelta(days=1),
        exclude_booking_tent_id=exclude_booking_tent_id,
    )
    return result.available_count
