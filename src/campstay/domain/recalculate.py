"""Booking totals recalculation.

Re-derives the booking's aggregates from its live lines on every call; no
running total is ever patched incrementally.

    subtotal_amount = Σ live tents (COALESCE(subtotal_override, subtotal) - discount)
                    + Σ active menu products (total_price - discount)
                    + Σ additional costs total_price
    tax_amount      = Σ per-line taxes (0 when no tax invoice is required)

total_amount, deposit_due and balance_due are generated columns and are read
back with RETURNING. This module is the only writer of subtotal_amount.
"""

from __future__ import annotations

from dataclasses import dataclass

from psycopg2.extensions import cursor as PgCursor

from campstay.domain.errors import BookingNotFoundError
from campstay.domain.tax import (
    BookingCharges,
    TaxBreakdown,
    compute_tax_breakdown,
    load_booking_charges,
)
from campstay.observability.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class BookingTotals:
    booking_id: str
    subtotal_amount: int
    tax_amount: int
    total_amount: int
    deposit_due: int
    balance_due: int
    tax_breakdown: TaxBreakdown

    def to_dict(self, *, include_breakdown: bool = False) -> dict:
        data = {
            "booking_id": self.booking_id,
            "subtotal_amount": self.subtotal_amount,
            "tax_amount": self.tax_amount,
            "total_amount": self.total_amount,
            "deposit_due": self.deposit_due,
            "balance_due": self.balance_due,
        }
        if include_breakdown:
            data["tax_breakdown"] = self.tax_breakdown.to_dict()
        return data


def compute_subtotal(charges: BookingCharges) -> int:
    tents = sum(t["amount"] - t["discount_amount"] for t in charges.tents)
    products = sum(p["amount"] - p["discount_amount"] for p in charges.menu_products)
    costs = sum(c["amount"] for c in charges.additional_costs)
    return tents + products + costs


def recalculate_booking_totals(cur: PgCursor, booking_id: str) -> BookingTotals:
    """Recompute and persist a booking's subtotal and tax.

    Runs inside the caller's transaction. Calling it twice with no mutation
    in between writes the same values.

    Raises:
        BookingNotFoundError: If the booking does not exist.
    """
    from campstay.infra.repositories.bookings_repository import (
        get_booking,
        update_booking_totals,
    )

    booking = get_booking(cur, booking_id, lock=True)
    if booking is None:
        raise BookingNotFoundError(booking_id)

    charges = load_booking_charges(cur, booking_id)
    subtotal_amount = compute_subtotal(charges)
    breakdown = compute_tax_breakdown(charges)
    tax_amount = breakdown.total_tax if booking["tax_invoice_required"] else 0

    total_amount, deposit_due, balance_due = update_booking_totals(
        cur,
        booking_id=booking_id,
        subtotal_amount=subtotal_amount,
        tax_amount=tax_amount,
    )

    logger.info(
        "booking totals recalculated",
        extra={
            "extra_fields": {
                "booking_id": booking_id,
                "previous_subtotal_amount": booking["subtotal_amount"],
                "subtotal_amount": subtotal_amount,
                "tax_amount": tax_amount,
                "total_amount": total_amount,
                "tent_lines": len(charges.tents),
                "menu_lines": len(charges.menu_products),
                "additional_cost_lines": len(charges.additional_costs),
            },
        },
    )

    return BookingTotals(
        booking_id=booking_id,
        subtotal_amount=subtotal_amount,
        tax_amount=tax_amount,
        total_amount=total_amount,
        deposit_due=deposit_due,
        balance_due=balance_due,
        tax_breakdown=breakdown,
    )
