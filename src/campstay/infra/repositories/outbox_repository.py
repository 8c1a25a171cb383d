"""Outbox repository - notification events written in the mutation's transaction.

Uses raw SQL with psycopg2 (no ORM). A separate sender delivers rows after
commit; nothing here knows the delivery channel.
"""

import json

from psycopg2.extensions import cursor as PgCursor

BOOKING_TOTALS_UPDATED = "BOOKING_TOTALS_UPDATED"


def emit_booking_totals_updated(
    cur: PgCursor,
    *,
    zone_id: str,
    booking_id: str,
    action: str,
    subtotal_amount: int,
    tax_amount: int,
    total_amount: int,
    deposit_due: int,
    balance_due: int,
    correlation_id: str | None = None,
) -> int:
    """Queue BOOKING_TOTALS_UPDATED with the booking's fresh totals.

    The payload carries amounts only, never guest details.

    Returns:
        The outbox row id.
    """
    totals = {
        "booking_id": booking_id,
        "action": action,
        "subtotal_amount": subtotal_amount,
        "tax_amount": tax_amount,
        "total_amount": total_amount,
        "deposit_due": deposit_due,
        "balance_due": balance_due,
    }
    cur.execute(
        """
        INSERT INTO outbox_events
            (zone_id, event_type, aggregate_type, aggregate_id, payload, correlation_id)
        VALUES (%s, %s, 'booking', %s, %s, %s)
        RETURNING id
        """,
        (zone_id, BOOKING_TOTALS_UPDATED, booking_id, json.dumps(totals), correlation_id),
    )
    return cur.fetchone()[0]
