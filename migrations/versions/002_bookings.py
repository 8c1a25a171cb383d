"""Bookings, line items, audit history and outbox (SQL-only).

total_amount, deposit_due, balance_due, nights, menu product total_price and
additional cost total_price/tax_amount are generated columns.

Revision ID: 002_bookings
Revises: 001_catalog
Create Date: 2026-10-19
"""

from __future__ import annotations

from pathlib import Path

from alembic import op

revision = "002_bookings"
down_revision = "001_catalog"
branch_labels = None
depends_on = None

_SQL_FILE = Path(__file__).resolve().parent.parent / "sql" / "002_bookings.sql"


def upgrade() -> None:
    op.execute(_SQL_FILE.read_text(encoding="utf-8"))


def downgrade() -> None:
    op.execute(
        """
        DROP TABLE IF EXISTS outbox_events;
        DROP TABLE IF EXISTS booking_status_history;
        DROP TABLE IF EXISTS booking_additional_costs;
        DROP TABLE IF EXISTS booking_menu_products;
        DROP TABLE IF EXISTS booking_item_lines;
        DROP TABLE IF EXISTS booking_tents;
        DROP TABLE IF EXISTS bookings;
        """
    )
