"""Per-item tax calculation.

Each line is taxed with its own rate and rounded on its own:

- tents: the unit's single active tax link, charging
  round_half_up(taxable * rate / 100) whatever its is_percentage flag.
  taxable = effective subtotal - discount.
- menu products: the menu item's own tax_rate, same formula.
- additional costs: the database-generated tax_amount, read as-is.

The booking's tax is the sum of the line taxes, never a rounding of the
aggregate, so a booking always reconciles with its lines.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from decimal import Decimal

from psycopg2.extensions import cursor as PgCursor

from campstay.domain.money import percent_of
from campstay.observability.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class LineTax:
    line_id: str
    item_id: str | None
    taxable_amount: int
    tax_rate: Decimal
    is_percentage: bool
    tax_amount: int

    def to_dict(self) -> dict:
        data = asdict(self)
        data["tax_rate"] = str(self.tax_rate)
        return data


@dataclass
class TaxBreakdown:
    tent_tax_details: list[LineTax] = field(default_factory=list)
    product_tax_details: list[LineTax] = field(default_factory=list)
    additional_cost_tax_details: list[LineTax] = field(default_factory=list)

    @property
    def total_tax(self) -> int:
        lines = self.tent_tax_details + self.product_tax_details + self.additional_cost_tax_details
        return sum(line.tax_amount for line in lines)

    def to_dict(self) -> dict:
        return {
            "total_tax": self.total_tax,
            "tent_tax_details": [t.to_dict() for t in self.tent_tax_details],
            "product_tax_details": [t.to_dict() for t in self.product_tax_details],
            "additional_cost_tax_details": [t.to_dict() for t in self.additional_cost_tax_details],
        }


@dataclass
class BookingCharges:
    """Live lines of a booking as loaded for tax and totals."""

    tents: list[dict] = field(default_factory=list)
    menu_products: list[dict] = field(default_factory=list)
    additional_costs: list[dict] = field(default_factory=list)


def line_tax(taxable_amount: int, rate: Decimal | None) -> int:
    """Tax of one line. No rate (or a zero rate) means no tax.

    The rate is always a percentage of the taxable amount; a tax's
    is_percentage flag is reported but never switches the formula.
    """
    if rate is None or rate <= 0:
        return 0
    if taxable_amount <= 0:
        return 0
    return percent_of(taxable_amount, rate)


def compute_tax_breakdown(charges: BookingCharges) -> TaxBreakdown:
    breakdown = TaxBreakdown()

    for tent in charges.tents:
        taxable = tent["amount"] - tent["discount_amount"]
        rate = tent.get("tax_rate")
        is_percentage = tent.get("tax_is_percentage", True)
        breakdown.tent_tax_details.append(
            LineTax(
                line_id=tent["id"],
                item_id=tent.get("unit_id"),
                taxable_amount=taxable,
                tax_rate=rate if rate is not None else Decimal(0),
                is_percentage=is_percentage,
                tax_amount=line_tax(taxable, rate),
            )
        )

    for product in charges.menu_products:
        taxable = product["amount"] - product["discount_amount"]
        breakdown.product_tax_details.append(
            LineTax(
                line_id=product["id"],
                item_id=product.get("menu_item_id"),
                taxable_amount=taxable,
                tax_rate=product["tax_rate"],
                is_percentage=True,
                tax_amount=line_tax(taxable, product["tax_rate"]),
            )
        )

    for cost in charges.additional_costs:
        breakdown.additional_cost_tax_details.append(
            LineTax(
                line_id=cost["id"],
                item_id=None,
                taxable_amount=cost["amount"],
                tax_rate=cost["tax_rate"],
                is_percentage=True,
                tax_amount=cost["tax_amount"],
            )
        )

    return breakdown


def load_booking_charges(cur: PgCursor, booking_id: str) -> BookingCharges:
    from campstay.infra.repositories.bookings_repository import (
        fetch_additional_cost_charges,
        fetch_live_menu_charges,
        fetch_live_tent_charges,
    )

    tents = fetch_live_tent_charges(cur, booking_id)
    for tent in tents:
        if tent["active_tax_links"] > 1:
            logger.warning(
                "unit has more than one active tax, using the first",
                extra={
                    "extra_fields": {
                        "booking_id": booking_id,
                        "unit_id": tent["unit_id"],
                        "active_tax_links": tent["active_tax_links"],
                    },
                },
            )

    return BookingCharges(
        tents=tents,
        menu_products=fetch_live_menu_charges(cur, booking_id),
        additional_costs=fetch_additional_cost_charges(cur, booking_id),
    )


def calculate_booking_tax(cur: PgCursor, booking_id: str) -> TaxBreakdown:
    """Per-line tax of every live line of a booking."""
    return compute_tax_breakdown(load_booking_charges(cur, booking_id))
