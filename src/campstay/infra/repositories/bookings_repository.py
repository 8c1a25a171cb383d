"""Bookings repository - booking rows, aggregates and the charges behind them.

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

from decimal import Decimal

from psycopg2.extensions import cursor as PgCursor

from campstay.infra.db import select_one


def get_booking(cur: PgCursor, booking_id: str, *, lock: bool = False) -> dict | None:
    """Fetch a booking row.

    Args:
        cur: Database cursor.
        booking_id: Booking UUID.
        lock: Append FOR UPDATE. Every mutation takes this lock first, so
            concurrent edits of one booking run one after another.

    Returns:
        Dict with booking fields, or None if not found.
    """
    query = """
        SELECT id, zone_id, status, payment_status, tax_invoice_required,
               tax_rate, subtotal_amount, tax_amount, total_amount,
               deposit_due, balance_due
        FROM bookings
        WHERE id = %s
    """
    row = select_one(cur, query, (booking_id,), lock=lock)
    if row is None:
        return None

    return {
        "id": str(row[0]),
        "zone_id": str(row[1]),
        "status": row[2],
        "payment_status": row[3],
        "tax_invoice_required": bool(row[4]),
        "tax_rate": Decimal(str(row[5])),
        "subtotal_amount": row[6],
        "tax_amount": row[7],
        "total_amount": row[8],
        "deposit_due": row[9],
        "balance_due": row[10],
    }


def update_booking_totals(
    cur: PgCursor,
    *,
    booking_id: str,
    subtotal_amount: int,
    tax_amount: int,
) -> tuple[int, int, int]:
    """Write the engine-owned aggregates and read back the generated ones.

    Returns:
        Tuple of (total_amount, deposit_due, balance_due).
    """
    cur.execute(
        """
        UPDATE bookings
        SET subtotal_amount = %s,
            tax_amount = %s,
            updated_at = now()
        WHERE id = %s
        RETURNING total_amount, deposit_due, balance_due
        """,
        (subtotal_amount, tax_amount, booking_id),
    )
    row = cur.fetchone()
    return int(row[0]), int(row[1]), int(row[2])


def update_tax_invoice_required(cur: PgCursor, *, booking_id: str, required: bool) -> None:
    cur.execute(
        """
        UPDATE bookings
        SET tax_invoice_required = %s,
            updated_at = now()
        WHERE id = %s
        """,
        (required, booking_id),
    )


def get_unit(cur: PgCursor, unit_id: str) -> dict | None:
    cur.execute(
        "SELECT id, zone_id, name, status FROM accommodation_units WHERE id = %s",
        (unit_id,),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return {"id": str(row[0]), "zone_id": str(row[1]), "name": row[2], "status": row[3]}


def get_menu_item(cur: PgCursor, menu_item_id: str) -> dict | None:
    cur.execute(
        """
        SELECT id, zone_id, name, price, tax_rate, status
        FROM menu_items
        WHERE id = %s
        """,
        (menu_item_id,),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return {
        "id": str(row[0]),
        "zone_id": str(row[1]),
        "name": row[2],
        "price": int(row[3]),
        "tax_rate": Decimal(str(row[4])),
        "status": row[5],
    }


_ACTIVE_UNIT_TAX = """
    SELECT tx.amount, tx.is_percentage, tx.name,
           COUNT(*) OVER () AS active_links
    FROM unit_taxes ut
    JOIN taxes tx ON tx.id = ut.tax_id
    WHERE ut.unit_id = {unit_ref}
      AND tx.status = 'active'
    ORDER BY ut.created_at, tx.id
    LIMIT 1
"""


def get_unit_tax(cur: PgCursor, unit_id: str) -> dict | None:
    """The unit's active tax link (first one if the data holds several)."""
    cur.execute(_ACTIVE_UNIT_TAX.format(unit_ref="%s"), (unit_id,))
    row = cur.fetchone()
    if row is None:
        return None
    return {
        "rate": Decimal(str(row[0])),
        "is_percentage": bool(row[1]),
        "name": row[2],
        "active_links": int(row[3]),
    }


# ── Charges feeding tax and totals ────────────────────────


def fetch_live_tent_charges(cur: PgCursor, booking_id: str) -> list[dict]:
    """Non-cancelled tents with their effective subtotal and unit tax."""
    unit_tax = _ACTIVE_UNIT_TAX.format(unit_ref="bt.unit_id")
    cur.execute(
        f"""
        SELECT bt.id, bt.unit_id,
               COALESCE(bt.subtotal_override, bt.subtotal) AS effective_subtotal,
               bt.discount_amount,
               t.amount, t.is_percentage, t.name, t.active_links
        FROM booking_tents bt
        LEFT JOIN LATERAL ({unit_tax}) t ON true
        WHERE bt.booking_id = %s
          AND bt.status <> 'cancelled'
        ORDER BY bt.created_at, bt.id
        """,
        (booking_id,),
    )
    return [
        {
            "id": str(r[0]),
            "unit_id": str(r[1]),
            "amount": int(r[2]),
            "discount_amount": int(r[3] or 0),
            "tax_rate": Decimal(str(r[4])) if r[4] is not None else None,
            "tax_is_percentage": r[5] is not False,
            "tax_name": r[6],
            "active_tax_links": int(r[7] or 0),
        }
        for r in cur.fetchall()
    ]


def fetch_live_menu_charges(cur: PgCursor, booking_id: str) -> list[dict]:
    """Active menu products with their menu item's own tax rate."""
    cur.execute(
        """
        SELECT bmp.id, bmp.menu_item_id, bmp.total_price,
               bmp.discount_amount, mi.tax_rate
        FROM booking_menu_products bmp
        JOIN menu_items mi ON mi.id = bmp.menu_item_id
        WHERE bmp.booking_id = %s
          AND bmp.status = 'active'
        ORDER BY bmp.created_at, bmp.id
        """,
        (booking_id,),
    )
    return [
        {
            "id": str(r[0]),
            "menu_item_id": str(r[1]),
            "amount": int(r[2]),
            "discount_amount": int(r[3] or 0),
            "tax_rate": Decimal(str(r[4] or 0)),
        }
        for r in cur.fetchall()
    ]


def fetch_additional_cost_charges(cur: PgCursor, booking_id: str) -> list[dict]:
    """Additional costs with their generated total_price and tax_amount."""
    cur.execute(
        """
        SELECT id, name, total_price, tax_rate, tax_amount
        FROM booking_additional_costs
        WHERE booking_id = %s
        ORDER BY created_at, id
        """,
        (booking_id,),
    )
    return [
        {
            "id": str(r[0]),
            "name": r[1],
            "amount": int(r[2]),
            "tax_rate": Decimal(str(r[3] or 0)),
            "tax_amount": int(r[4] or 0),
        }
        for r in cur.fetchall()
    ]
