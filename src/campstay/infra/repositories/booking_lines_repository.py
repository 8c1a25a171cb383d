"""Booking lines repository - tents, item lines, menu products, additional costs.

Uses raw SQL with psycopg2 (no ORM). Generated columns (nights, total_price,
tax_amount) are only ever read here.
"""

from __future__ import annotations

import json
from datetime import date
from decimal import Decimal

from psycopg2.extensions import cursor as PgCursor

# Line tables that carry a voucher snapshot.
_DISCOUNTED_TABLES = {
    "tent": "booking_tents",
    "menu_product": "booking_menu_products",
}


def _decimal_or_none(value) -> Decimal | None:
    return Decimal(str(value)) if value is not None else None


# ── Tents ─────────────────────────────────────────────────


def get_tent(
    cur: PgCursor,
    *,
    booking_id: str,
    tent_id: str,
    lock: bool = False,
) -> dict | None:
    """Fetch a booking tent that belongs to the booking."""
    suffix = " FOR UPDATE" if lock else ""
    cur.execute(
        f"""
        SELECT id, unit_id, check_in, check_out, nights, status,
               subtotal, subtotal_override, voucher_id, voucher_code,
               discount_type, discount_value, discount_scope, discount_amount,
               special_requests
        FROM booking_tents
        WHERE booking_id = %s AND id = %s
        {suffix}
        """,
        (booking_id, tent_id),
    )
    row = cur.fetchone()
    if row is None:
        return None

    return {
        "id": str(row[0]),
        "unit_id": str(row[1]),
        "check_in": row[2],
        "check_out": row[3],
        "nights": row[4],
        "status": row[5],
        "subtotal": int(row[6]),
        "subtotal_override": row[7],
        "voucher_id": str(row[8]) if row[8] is not None else None,
        "voucher_code": row[9],
        "discount_type": row[10],
        "discount_value": _decimal_or_none(row[11]),
        "discount_scope": row[12],
        "discount_amount": int(row[13] or 0),
        "special_requests": row[14],
    }


def insert_tent(
    cur: PgCursor,
    *,
    booking_id: str,
    unit_id: str,
    check_in: date,
    check_out: date,
    subtotal: int,
    subtotal_override: int | None = None,
    special_requests: str | None = None,
) -> str:
    """Insert a booking tent and return its id."""
    cur.execute(
        """
        INSERT INTO booking_tents (
            booking_id, unit_id, check_in, check_out,
            subtotal, subtotal_override, special_requests
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (booking_id, unit_id, check_in, check_out, subtotal, subtotal_override, special_requests),
    )
    return str(cur.fetchone()[0])


def update_tent(
    cur: PgCursor,
    *,
    tent_id: str,
    check_in: date,
    check_out: date,
    subtotal: int,
    subtotal_override: int | None,
    special_requests: str | None,
    discount_amount: int,
) -> None:
    """Update a tent together with its re-clamped discount_amount."""
    cur.execute(
        """
        UPDATE booking_tents
        SET check_in = %s,
            check_out = %s,
            subtotal = %s,
            subtotal_override = %s,
            special_requests = %s,
            discount_amount = %s,
            updated_at = now()
        WHERE id = %s
        """,
        (
            check_in,
            check_out,
            subtotal,
            subtotal_override,
            special_requests,
            discount_amount,
            tent_id,
        ),
    )


def delete_tent(cur: PgCursor, *, tent_id: str) -> None:
    """Delete a tent; its item lines and menu products cascade."""
    cur.execute("DELETE FROM booking_tents WHERE id = %s", (tent_id,))


def get_item_line_quantities(cur: PgCursor, *, tent_id: str) -> dict[str, int]:
    cur.execute(
        """
        SELECT parameter_id, quantity
        FROM booking_item_lines
        WHERE booking_tent_id = %s
        ORDER BY parameter_id
        """,
        (tent_id,),
    )
    return {str(r[0]): int(r[1]) for r in cur.fetchall()}


def replace_item_lines(cur: PgCursor, *, tent_id: str, lines: list[dict]) -> None:
    """Replace the tent's item lines.

    Each line dict carries parameter_id, quantity, unit_price, pricing_mode,
    total_price and metadata (the nightly amounts behind unit_price).
    """
    cur.execute("DELETE FROM booking_item_lines WHERE booking_tent_id = %s", (tent_id,))
    for line in lines:
        cur.execute(
            """
            INSERT INTO booking_item_lines (
                booking_tent_id, parameter_id, quantity, unit_price,
                pricing_mode, total_price, metadata
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            """,
            (
                tent_id,
                line["parameter_id"],
                line["quantity"],
                line["unit_price"],
                line["pricing_mode"],
                line["total_price"],
                json.dumps(line.get("metadata") or {}),
            ),
        )


# ── Voucher snapshots (tents and menu products) ───────────


def set_line_discount(
    cur: PgCursor,
    *,
    line_kind: str,
    line_id: str,
    voucher_id: str | None,
    voucher_code: str | None,
    discount_type: str | None,
    discount_value: Decimal | None,
    discount_scope: str | None,
    discount_amount: int,
) -> None:
    """Write (or clear, with all-None fields) a line's voucher snapshot."""
    table = _DISCOUNTED_TABLES[line_kind]
    cur.execute(
        f"""
        UPDATE {table}
        SET voucher_id = %s,
            voucher_code = %s,
            discount_type = %s,
            discount_value = %s,
            discount_scope = %s,
            discount_amount = %s,
            updated_at = now()
        WHERE id = %s
        """,
        (
            voucher_id,
            voucher_code,
            discount_type,
            discount_value,
            discount_scope,
            discount_amount,
            line_id,
        ),
    )


def list_after_tax_discounted_lines(cur: PgCursor, *, booking_id: str) -> list[dict]:
    """Live tents and menu products whose discount was measured on the gross.

    Rows are locked; each dict carries ``line_kind`` and the line ``amount``
    the discount was clamped to.
    """
    cur.execute(
        """
        SELECT id, unit_id, COALESCE(subtotal_override, subtotal),
               voucher_id, voucher_code, discount_type, discount_value
        FROM booking_tents
        WHERE booking_id = %s
          AND status <> 'cancelled'
          AND discount_scope = 'per_booking_after_tax'
        ORDER BY created_at, id
        FOR UPDATE
        """,
        (booking_id,),
    )
    lines = [
        {
            "line_kind": "tent",
            "id": str(r[0]),
            "unit_id": str(r[1]),
            "amount": int(r[2]),
            "voucher_id": str(r[3]) if r[3] is not None else None,
            "voucher_code": r[4],
            "discount_type": r[5],
            "discount_value": _decimal_or_none(r[6]),
            "discount_scope": "per_booking_after_tax",
        }
        for r in cur.fetchall()
    ]

    cur.execute(
        """
        SELECT bmp.id, bmp.total_price, mi.tax_rate,
               bmp.voucher_id, bmp.voucher_code, bmp.discount_type, bmp.discount_value
        FROM booking_menu_products bmp
        JOIN menu_items mi ON mi.id = bmp.menu_item_id
        WHERE bmp.booking_id = %s
          AND bmp.status <> 'cancelled'
          AND bmp.discount_scope = 'per_booking_after_tax'
        ORDER BY bmp.created_at, bmp.id
        FOR UPDATE OF bmp
        """,
        (booking_id,),
    )
    lines.extend(
        {
            "line_kind": "menu_product",
            "id": str(r[0]),
            "amount": int(r[1]),
            "tax_rate": Decimal(str(r[2] or 0)),
            "voucher_id": str(r[3]) if r[3] is not None else None,
            "voucher_code": r[4],
            "discount_type": r[5],
            "discount_value": _decimal_or_none(r[6]),
            "discount_scope": "per_booking_after_tax",
        }
        for r in cur.fetchall()
    )
    return lines


# ── Menu products ─────────────────────────────────────────


def get_menu_product(
    cur: PgCursor,
    *,
    booking_id: str,
    product_id: str,
    lock: bool = False,
) -> dict | None:
    """Fetch a booking menu product with its item name and tent check-in."""
    suffix = " FOR UPDATE OF bmp" if lock else ""
    cur.execute(
        f"""
        SELECT bmp.id, bmp.menu_item_id, mi.name, bmp.booking_tent_id,
               bt.check_in, bmp.quantity, bmp.unit_price, bmp.total_price,
               bmp.status, bmp.voucher_id, bmp.voucher_code,
               bmp.discount_type, bmp.discount_value, bmp.discount_scope,
               bmp.discount_amount, mi.tax_rate, bmp.serving_date, bmp.notes
        FROM booking_menu_products bmp
        JOIN menu_items mi ON mi.id = bmp.menu_item_id
        LEFT JOIN booking_tents bt ON bt.id = bmp.booking_tent_id
        WHERE bmp.booking_id = %s AND bmp.id = %s
        {suffix}
        """,
        (booking_id, product_id),
    )
    row = cur.fetchone()
    if row is None:
        return None

    return {
        "id": str(row[0]),
        "menu_item_id": str(row[1]),
        "name": row[2],
        "booking_tent_id": str(row[3]) if row[3] is not None else None,
        "check_in": row[4],
        "quantity": int(row[5]),
        "unit_price": int(row[6]),
        "total_price": int(row[7]),
        "status": row[8],
        "voucher_id": str(row[9]) if row[9] is not None else None,
        "voucher_code": row[10],
        "discount_type": row[11],
        "discount_value": _decimal_or_none(row[12]),
        "discount_scope": row[13],
        "discount_amount": int(row[14] or 0),
        "tax_rate": Decimal(str(row[15] or 0)),
        "serving_date": row[16],
        "notes": row[17],
    }


def insert_menu_product(
    cur: PgCursor,
    *,
    booking_id: str,
    menu_item_id: str,
    quantity: int,
    unit_price: int,
    booking_tent_id: str | None = None,
    serving_date: date | None = None,
    notes: str | None = None,
) -> tuple[str, int]:
    """Insert a menu product.

    Returns:
        Tuple of (product_id, total_price) where total_price is the
        generated quantity * unit_price.
    """
    cur.execute(
        """
        INSERT INTO booking_menu_products (
            booking_id, booking_tent_id, menu_item_id,
            quantity, unit_price, serving_date, notes
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s)
        RETURNING id, total_price
        """,
        (booking_id, booking_tent_id, menu_item_id, quantity, unit_price, serving_date, notes),
    )
    row = cur.fetchone()
    return str(row[0]), int(row[1])


def update_menu_product(
    cur: PgCursor,
    *,
    product_id: str,
    quantity: int,
    unit_price: int,
    serving_date: date | None,
    notes: str | None,
    discount_amount: int,
) -> int:
    """Update a menu product and return its new generated total_price."""
    cur.execute(
        """
        UPDATE booking_menu_products
        SET quantity = %s,
            unit_price = %s,
            serving_date = %s,
            notes = %s,
            discount_amount = %s,
            updated_at = now()
        WHERE id = %s
        RETURNING total_price
        """,
        (quantity, unit_price, serving_date, notes, discount_amount, product_id),
    )
    return int(cur.fetchone()[0])


def cancel_menu_product(cur: PgCursor, *, product_id: str, reason: str | None) -> None:
    cur.execute(
        """
        UPDATE booking_menu_products
        SET status = 'cancelled',
            cancel_reason = %s,
            updated_at = now()
        WHERE id = %s
        """,
        (reason, product_id),
    )


def delete_menu_product(cur: PgCursor, *, product_id: str) -> None:
    cur.execute("DELETE FROM booking_menu_products WHERE id = %s", (product_id,))


# ── Additional costs ──────────────────────────────────────


def get_additional_cost(
    cur: PgCursor,
    *,
    booking_id: str,
    cost_id: str,
    lock: bool = False,
) -> dict | None:
    suffix = " FOR UPDATE" if lock else ""
    cur.execute(
        f"""
        SELECT id, name, quantity, unit_price, tax_rate,
               total_price, tax_amount, notes
        FROM booking_additional_costs
        WHERE booking_id = %s AND id = %s
        {suffix}
        """,
        (booking_id, cost_id),
    )
    row = cur.fetchone()
    if row is None:
        return None

    return {
        "id": str(row[0]),
        "name": row[1],
        "quantity": int(row[2]),
        "unit_price": int(row[3]),
        "tax_rate": Decimal(str(row[4] or 0)),
        "total_price": int(row[5]),
        "tax_amount": int(row[6]),
        "notes": row[7],
    }


def insert_additional_cost(
    cur: PgCursor,
    *,
    booking_id: str,
    name: str,
    quantity: int,
    unit_price: int,
    tax_rate: Decimal,
    notes: str | None = None,
) -> tuple[str, int, int]:
    """Insert an additional cost.

    Returns:
        Tuple of (cost_id, total_price, tax_amount), both amounts generated
        by the database.
    """
    cur.execute(
        """
        INSERT INTO booking_additional_costs (
            booking_id, name, quantity, unit_price, tax_rate, notes
        )
        VALUES (%s, %s, %s, %s, %s, %s)
        RETURNING id, total_price, tax_amount
        """,
        (booking_id, name, quantity, unit_price, tax_rate, notes),
    )
    row = cur.fetchone()
    return str(row[0]), int(row[1]), int(row[2])


def update_additional_cost(
    cur: PgCursor,
    *,
    cost_id: str,
    name: str,
    quantity: int,
    unit_price: int,
    tax_rate: Decimal,
    notes: str | None,
) -> tuple[int, int]:
    """Update an additional cost and return its generated (total_price, tax_amount)."""
    cur.execute(
        """
        UPDATE booking_additional_costs
        SET name = %s,
            quantity = %s,
            unit_price = %s,
            tax_rate = %s,
            notes = %s,
            updated_at = now()
        WHERE id = %s
        RETURNING total_price, tax_amount
        """,
        (name, quantity, unit_price, tax_rate, notes, cost_id),
    )
    row = cur.fetchone()
    return int(row[0]), int(row[1])


def delete_additional_cost(cur: PgCursor, *, cost_id: str) -> None:
    cur.execute("DELETE FROM booking_additional_costs WHERE id = %s", (cost_id,))
