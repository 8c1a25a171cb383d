"""Vouchers repository - lookup and atomic usage counting.

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

from decimal import Decimal

from psycopg2.extensions import cursor as PgCursor

from campstay.domain.vouchers import (
    ApplicationType,
    DiscountScope,
    DiscountType,
    Recurrence,
    Voucher,
)

_VOUCHER_COLUMNS = """
    v.id, v.code, v.name, v.zone_id, v.discount_type, v.amount,
    v.apply_type, v.apply_after_tax, v.recurrence, v.start_date, v.end_date,
    v.weekly_days, v.max_uses, v.current_uses, v.application_type, v.status,
    ARRAY(SELECT vi.item_id::text FROM voucher_items vi WHERE vi.voucher_id = v.id)
"""


def _row_to_voucher(row: tuple) -> Voucher:
    return Voucher(
        id=str(row[0]),
        code=row[1],
        name=row[2],
        zone_id=str(row[3]) if row[3] is not None else None,
        discount_type=DiscountType(row[4]),
        value=Decimal(str(row[5])),
        scope=DiscountScope.from_columns(row[6], bool(row[7])),
        recurrence=Recurrence(row[8]),
        start_date=row[9],
        end_date=row[10],
        weekly_days=tuple(row[11] or ()),
        max_uses=row[12],
        current_uses=row[13] or 0,
        application_type=ApplicationType(row[14]),
        status=row[15],
        item_ids=frozenset(row[16] or ()),
    )


def fetch_voucher_by_code(cur: PgCursor, *, code: str, lock: bool = False) -> Voucher | None:
    """Find a voucher by code (case-insensitive exact match).

    Args:
        cur: Database cursor.
        code: Voucher code.
        lock: Append FOR UPDATE (row stays locked until commit/rollback).

    Returns:
        Voucher or None.
    """
    suffix = " FOR UPDATE OF v" if lock else ""
    cur.execute(
        f"""
        SELECT {_VOUCHER_COLUMNS}
        FROM vouchers v
        WHERE v.code IS NOT NULL
          AND UPPER(v.code) = UPPER(%s)
        {suffix}
        """,
        (code,),
    )
    row = cur.fetchone()
    return _row_to_voucher(row) if row else None


def fetch_automatic_vouchers(cur: PgCursor, *, zone_id: str | None) -> list[Voucher]:
    """Active code-less discounts scoped to the zone (or to every zone)."""
    cur.execute(
        f"""
        SELECT {_VOUCHER_COLUMNS}
        FROM vouchers v
        WHERE v.code IS NULL
          AND v.status = 'active'
          AND (v.zone_id IS NULL OR v.zone_id = %s)
        ORDER BY v.created_at
        """,
        (zone_id,),
    )
    return [_row_to_voucher(r) for r in cur.fetchall()]


def increment_voucher_uses(cur: PgCursor, *, voucher_id: str) -> bool:
    """Compare-and-increment current_uses.

    The guard repeats the usage-cap and one-time rules inside the UPDATE, so
    the increment only happens if the voucher is still redeemable at write
    time.

    Returns:
        True if a use was taken, False if the guard failed.
    """
    cur.execute(
        """
        UPDATE vouchers
        SET current_uses = current_uses + 1,
            updated_at = now()
        WHERE id = %s
          AND status = 'active'
          AND (max_uses IS NULL OR current_uses < max_uses)
          AND (recurrence <> 'one_time' OR current_uses = 0)
        RETURNING current_uses
        """,
        (voucher_id,),
    )
    return cur.fetchone() is not None
