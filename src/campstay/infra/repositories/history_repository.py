"""Booking history repository - append-only audit entries.

Uses raw SQL with psycopg2 (no ORM). Rows are inserted, never updated.
"""

import json

from psycopg2.extensions import cursor as PgCursor

from campstay.infra.db import fetchall


def insert_history_entry(
    cur: PgCursor,
    *,
    booking_id: str,
    actor_id: str | None,
    action: str,
    description: str,
    metadata: dict | None = None,
) -> int:
    """Append an audit entry and return its id."""
    cur.execute(
        """
        INSERT INTO booking_status_history (
            booking_id, actor_id, action, description, metadata
        )
        VALUES (%s, %s, %s, %s, %s)
        RETURNING id
        """,
        (booking_id, actor_id, action, description, json.dumps(metadata or {})),
    )
    return cur.fetchone()[0]


def list_history(cur: PgCursor, booking_id: str) -> list[dict]:
    """History entries of a booking, oldest first."""
    rows = fetchall(
        cur,
        """
        SELECT id, actor_id, action, description, metadata, created_at
        FROM booking_status_history
        WHERE booking_id = %s
        ORDER BY created_at, id
        """,
        (booking_id,),
    )
    return [
        {
            "id": r[0],
            "actor_id": r[1],
            "action": r[2],
            "description": r[3],
            "metadata": r[4] if isinstance(r[4], dict) else json.loads(r[4] or "{}"),
            "created_at": r[5].isoformat() if hasattr(r[5], "isoformat") else str(r[5]),
        }
        for r in rows
    ]
