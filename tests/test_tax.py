"""Tests for per-line tax calculation."""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import patch

import pytest

from campstay.domain.tax import (
    BookingCharges,
    calculate_booking_tax,
    compute_tax_breakdown,
    line_tax,
)


def _tent(line_id="t-1", amount=1000, discount=0, rate=Decimal("10"), is_percentage=True, links=1):
    return {
        "id": line_id,
        "unit_id": "unit-1",
        "amount": amount,
        "discount_amount": discount,
        "tax_rate": rate,
        "tax_is_percentage": is_percentage,
        "tax_name": "VAT",
        "active_tax_links": links,
    }


def _product(line_id="p-1", amount=333, discount=0, rate=Decimal("10")):
    return {
        "id": line_id,
        "menu_item_id": "menu-1",
        "amount": amount,
        "discount_amount": discount,
        "tax_rate": rate,
    }


def _cost(line_id="c-1", amount=500, rate=Decimal("8"), tax=40):
    return {"id": line_id, "name": "Late checkout", "amount": amount, "tax_rate": rate, "tax_amount": tax}


class TestLineTax:
    def test_rounds_each_line_half_up(self):
        assert line_tax(333, Decimal("10")) == 33
        assert line_tax(335, Decimal("10")) == 34

    @pytest.mark.parametrize("rate", [None, Decimal("0"), Decimal("-5")])
    def test_no_rate_no_tax(self, rate):
        assert line_tax(1000, rate) == 0

    def test_fully_discounted_tent_with_non_percentage_tax(self):
        breakdown = compute_tax_breakdown(
            BookingCharges(tents=[_tent(amount=333, discount=333, is_percentage=False)])
        )

        detail = breakdown.tent_tax_details[0]
        assert detail.taxable_amount == 0
        assert detail.tax_amount == 0
        assert detail.is_percentage is False

    def test_non_percentage_flag_still_uses_rate_percent(self):
        breakdown = compute_tax_breakdown(
            BookingCharges(tents=[_tent(amount=1000, rate=Decimal("25"), is_percentage=False)])
        )
        assert breakdown.tent_tax_details[0].tax_amount == 250

    def test_non_positive_taxable(self):
        assert line_tax(0, Decimal("10")) == 0


class TestComputeTaxBreakdown:
    def test_tax_is_sum_of_rounded_lines(self):
        # three 333 lines at 10%: per-line rounding gives 99, aggregate rounding would give 100
        charges = BookingCharges(
            menu_products=[_product("p-1"), _product("p-2"), _product("p-3")],
        )
        breakdown = compute_tax_breakdown(charges)

        assert [d.tax_amount for d in breakdown.product_tax_details] == [33, 33, 33]
        assert breakdown.total_tax == 99

    def test_discount_reduces_taxable_amount(self):
        breakdown = compute_tax_breakdown(BookingCharges(tents=[_tent(amount=1000, discount=200)]))

        detail = breakdown.tent_tax_details[0]
        assert detail.taxable_amount == 800
        assert detail.tax_amount == 80

    def test_tent_without_tax_link(self):
        breakdown = compute_tax_breakdown(BookingCharges(tents=[_tent(rate=None)]))
        assert breakdown.tent_tax_details[0].tax_amount == 0
        assert breakdown.tent_tax_details[0].tax_rate == Decimal(0)

    def test_additional_cost_tax_read_from_row(self):
        breakdown = compute_tax_breakdown(BookingCharges(additional_costs=[_cost(tax=41)]))
        assert breakdown.additional_cost_tax_details[0].tax_amount == 41

    def test_mixed_booking(self):
        charges = BookingCharges(
            tents=[_tent(amount=2000), _tent("t-2", amount=1000, rate=Decimal("30"), is_percentage=False)],
            menu_products=[_product(amount=333)],
            additional_costs=[_cost()],
        )
        breakdown = compute_tax_breakdown(charges)

        assert breakdown.total_tax == 200 + 300 + 33 + 40
        payload = breakdown.to_dict()
        assert payload["total_tax"] == 573
        assert payload["tent_tax_details"][0]["tax_rate"] == "10"


class TestCalculateBookingTax:
    def test_loads_live_lines(self, mock_cursor):
        with patch(
            "campstay.infra.repositories.bookings_repository.fetch_live_tent_charges",
            return_value=[_tent(links=2)],
        ), patch(
            "campstay.infra.repositories.bookings_repository.fetch_live_menu_charges",
            return_value=[_product()],
        ), patch(
            "campstay.infra.repositories.bookings_repository.fetch_additional_cost_charges",
            return_value=[],
        ):
            breakdown = calculate_booking_tax(mock_cursor, "b-1")

        assert breakdown.total_tax == 100 + 33
