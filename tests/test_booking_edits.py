"""Tests for booking line mutations.

Repositories and engine components are patched on the booking_edits module;
each test drives one mutation with an explicit cursor so no transaction is
opened.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock, call, patch

import pytest

from campstay.domain import booking_edits
from campstay.domain.errors import (
    AvailabilityConflictError,
    BookingLockedError,
    BookingNotFoundError,
    InvalidDateRangeError,
    InvalidLineError,
    LineNotFoundError,
    VoucherRejectedError,
)
from campstay.domain.history import HistoryAction
from campstay.domain.pricing import NightBreakdown, PricingMode, PricingResolution
from campstay.domain.recalculate import BookingTotals
from campstay.domain.tax import TaxBreakdown
from campstay.domain.vouchers import (
    DiscountScope,
    DiscountType,
    RejectionReason,
    VoucherValidation,
)

MODULE = "campstay.domain.booking_edits"
BOOKING_ID = "b-1"
ZONE = "zone-1"
UNIT = "unit-1"
JUN = lambda d: date(2025, 6, d)  # noqa: E731


def _booking(status="confirmed", tax_invoice_required=True, total_amount=0):
    return {
        "id": BOOKING_ID,
        "zone_id": ZONE,
        "status": status,
        "payment_status": "pending",
        "tax_invoice_required": tax_invoice_required,
        "tax_rate": Decimal("10"),
        "subtotal_amount": total_amount,
        "tax_amount": 0,
        "total_amount": total_amount,
        "deposit_due": 0,
        "balance_due": total_amount,
    }


def _resolution(nights=2, amount=200):
    nightly = [
        NightBreakdown(
            night=JUN(1 + i),
            event_id=None,
            event_name=None,
            amounts={"adult": amount},
            pricing_modes={"adult": PricingMode.PER_PERSON},
        )
        for i in range(nights)
    ]
    return PricingResolution(
        per_parameter_total={"adult": amount * nights},
        pricing_modes={"adult": PricingMode.PER_PERSON},
        nightly=nightly,
    )


def _totals(subtotal=800, tax=80):
    return BookingTotals(
        booking_id=BOOKING_ID,
        subtotal_amount=subtotal,
        tax_amount=tax,
        total_amount=subtotal + tax,
        deposit_due=(subtotal + tax) // 2,
        balance_due=subtotal + tax,
        tax_breakdown=TaxBreakdown(),
    )


def _tent(**overrides):
    tent = {
        "id": "tent-1",
        "unit_id": UNIT,
        "check_in": JUN(1),
        "check_out": JUN(3),
        "nights": 2,
        "status": "active",
        "subtotal": 800,
        "subtotal_override": None,
        "voucher_id": None,
        "voucher_code": None,
        "discount_type": None,
        "discount_value": None,
        "discount_scope": None,
        "discount_amount": 0,
        "special_requests": None,
    }
    tent.update(overrides)
    return tent


def _product(**overrides):
    product = {
        "id": "prod-1",
        "menu_item_id": "menu-1",
        "name": "Breakfast",
        "booking_tent_id": "tent-1",
        "check_in": JUN(1),
        "quantity": 2,
        "unit_price": 150,
        "total_price": 300,
        "status": "active",
        "voucher_id": None,
        "voucher_code": None,
        "discount_type": None,
        "discount_value": None,
        "discount_scope": None,
        "discount_amount": 0,
        "tax_rate": Decimal("8"),
        "serving_date": None,
        "notes": None,
    }
    product.update(overrides)
    return product


def _valid_voucher(scope=DiscountScope.PER_BOOKING_BEFORE_TAX, value="10"):
    return VoucherValidation(
        valid=True,
        code="SUMMER10",
        voucher_id="v-1",
        discount_amount=0,
        discount_type=DiscountType.PERCENTAGE,
        discount_value=Decimal(value),
        scope=scope,
    )


@pytest.fixture
def engine():
    """Patch every collaborator of booking_edits; calls are recorded on one parent mock."""
    parent = MagicMock()
    patches = {
        "get_booking": _booking(),
        "get_unit": {"id": UNIT, "zone_id": ZONE, "name": "Safari Tent", "status": "active"},
        "get_menu_item": {
            "id": "menu-1",
            "zone_id": ZONE,
            "name": "Breakfast",
            "price": 150,
            "tax_rate": Decimal("8"),
            "status": "active",
        },
        "get_unit_tax": {"rate": Decimal("10"), "is_percentage": True, "name": "VAT", "active_links": 1},
        "update_tax_invoice_required": None,
        "assert_available": None,
        "resolve_pricing": _resolution(),
        "validate_voucher": _valid_voucher(),
        "consume_or_reject": None,
        "recalculate_booking_totals": _totals(),
        "insert_history_entry": 1,
        "emit_booking_totals_updated": 1,
    }
    active = []
    for name, return_value in patches.items():
        p = patch(f"{MODULE}.{name}", return_value=return_value)
        mock = p.start()
        parent.attach_mock(mock, name)
        active.append(p)

    lines = MagicMock()
    lines.insert_tent.return_value = "tent-1"
    lines.get_tent.return_value = _tent()
    lines.get_item_line_quantities.return_value = {"adult": 2}
    lines.insert_menu_product.return_value = ("prod-1", 300)
    lines.get_menu_product.return_value = _product()
    lines.update_menu_product.return_value = 450
    lines.insert_additional_cost.return_value = ("cost-1", 500, 50)
    lines.get_additional_cost.return_value = {
        "id": "cost-1",
        "name": "Firewood",
        "quantity": 1,
        "unit_price": 500,
        "tax_rate": Decimal("10"),
        "total_price": 500,
        "tax_amount": 50,
        "notes": None,
    }
    lines.update_additional_cost.return_value = (1000, 100)
    lines.list_after_tax_discounted_lines.return_value = []
    p = patch(f"{MODULE}.lines_repo", lines)
    p.start()
    parent.attach_mock(lines, "lines")
    active.append(p)

    yield parent

    for p in active:
        p.stop()


def _add_tent(cur, **overrides):
    kwargs = dict(
        unit_id=UNIT,
        check_in=JUN(1),
        check_out=JUN(3),
        parameter_quantities={"adult": 2},
        actor_id="user-7",
        cur=cur,
    )
    kwargs.update(overrides)
    return booking_edits.add_tent(BOOKING_ID, **kwargs)


# ── Tents ─────────────────────────────────────────────────


class TestAddTent:
    def test_happy_path(self, engine, mock_cursor):
        result = _add_tent(mock_cursor)

        engine.assert_available.assert_called_once_with(
            mock_cursor, unit_id=UNIT, check_in=JUN(1), check_out=JUN(3), lock=True
        )
        insert_kwargs = engine.lines.insert_tent.call_args.kwargs
        assert insert_kwargs["subtotal"] == 800
        rows = engine.lines.replace_item_lines.call_args.kwargs["lines"]
        assert rows[0]["unit_price"] == 400
        assert rows[0]["total_price"] == 800
        assert [n["amount"] for n in rows[0]["metadata"]["nightly"]] == [200, 200]

        assert result.action is HistoryAction.TENT_ADDED
        assert result.line_id == "tent-1"
        assert result.to_dict()["totals"]["total_amount"] == 880

    def test_control_flow_order(self, engine, mock_cursor):
        _add_tent(mock_cursor)

        names = [c[0] for c in engine.mock_calls if c[0] in (
            "get_booking",
            "assert_available",
            "resolve_pricing",
            "lines.insert_tent",
            "recalculate_booking_totals",
            "insert_history_entry",
            "emit_booking_totals_updated",
        )]
        assert names == [
            "get_booking",
            "assert_available",
            "resolve_pricing",
            "lines.insert_tent",
            "recalculate_booking_totals",
            "insert_history_entry",
            "emit_booking_totals_updated",
        ]

    def test_history_and_outbox(self, engine, mock_cursor):
        _add_tent(mock_cursor)

        history = engine.insert_history_entry.call_args.kwargs
        assert history["actor_id"] == "user-7"
        assert history["action"] == "tent_added"
        assert history["description"] == "Added tent Safari Tent (2025-06-01 to 2025-06-03, 800)"
        assert history["metadata"]["total_amount"] == 880

        event = engine.emit_booking_totals_updated.call_args.kwargs
        assert event["zone_id"] == ZONE
        assert event["action"] == "tent_added"
        assert event["total_amount"] == 880

    def test_locked_booking(self, engine, mock_cursor):
        engine.get_booking.return_value = _booking(status="cancelled")

        with pytest.raises(BookingLockedError):
            _add_tent(mock_cursor)
        engine.lines.insert_tent.assert_not_called()

    def test_unknown_booking(self, engine, mock_cursor):
        engine.get_booking.return_value = None
        with pytest.raises(BookingNotFoundError):
            _add_tent(mock_cursor)

    def test_unit_from_other_zone(self, engine, mock_cursor):
        engine.get_unit.return_value = {"id": UNIT, "zone_id": "zone-2", "name": "X", "status": "active"}
        with pytest.raises(InvalidLineError):
            _add_tent(mock_cursor)
        engine.assert_available.assert_not_called()

    def test_invalid_dates(self, engine, mock_cursor):
        with pytest.raises(InvalidDateRangeError):
            _add_tent(mock_cursor, check_in=JUN(3), check_out=JUN(3))
        engine.get_booking.assert_not_called()

    def test_availability_conflict_writes_nothing(self, engine, mock_cursor):
        engine.assert_available.side_effect = AvailabilityConflictError(
            unit_id=UNIT, check_in=JUN(1), check_out=JUN(3), booked_count=1, capacity=1
        )
        with pytest.raises(AvailabilityConflictError):
            _add_tent(mock_cursor)

        engine.lines.insert_tent.assert_not_called()
        engine.insert_history_entry.assert_not_called()

    def test_all_zero_quantities_rejected(self, engine, mock_cursor):
        with pytest.raises(InvalidLineError):
            _add_tent(mock_cursor, parameter_quantities={"adult": 0})

    def test_override_used_for_history(self, engine, mock_cursor):
        _add_tent(mock_cursor, subtotal_override=650)

        assert engine.lines.insert_tent.call_args.kwargs["subtotal_override"] == 650
        assert engine.insert_history_entry.call_args.kwargs["description"].endswith("650)")


class TestAddTentWithVoucher:
    def test_snapshot_and_consume(self, engine, mock_cursor):
        result = _add_tent(mock_cursor, voucher_code="summer10")

        validate_args = engine.validate_voucher.call_args
        assert validate_args.args[1] == "summer10"
        assert validate_args.kwargs == {"lock": True}
        context = validate_args.args[2]
        assert context.total_amount == 800
        assert context.item_id == UNIT

        engine.lines.set_line_discount.assert_called_once_with(
            mock_cursor,
            line_kind="tent",
            line_id="tent-1",
            voucher_id="v-1",
            voucher_code="SUMMER10",
            discount_type="percentage",
            discount_value=Decimal("10"),
            discount_scope="per_booking_before_tax",
            discount_amount=80,
        )
        engine.consume_or_reject.assert_called_once()
        assert result.voucher.discount_amount == 80

    def test_after_tax_voucher_measured_on_gross(self, engine, mock_cursor):
        engine.validate_voucher.return_value = _valid_voucher(scope=DiscountScope.PER_BOOKING_AFTER_TAX)

        _add_tent(mock_cursor, voucher_code="summer10")

        # 10% of (800 + 80 tax)
        assert engine.lines.set_line_discount.call_args.kwargs["discount_amount"] == 88

    def test_after_tax_without_invoice_ignores_tax(self, engine, mock_cursor):
        engine.get_booking.return_value = _booking(tax_invoice_required=False)
        engine.validate_voucher.return_value = _valid_voucher(scope=DiscountScope.PER_BOOKING_AFTER_TAX)

        _add_tent(mock_cursor, voucher_code="summer10")

        assert engine.lines.set_line_discount.call_args.kwargs["discount_amount"] == 80

    def test_rejected_voucher_aborts_before_consumption(self, engine, mock_cursor):
        engine.validate_voucher.return_value = VoucherValidation(
            valid=False, code="OLD", reason=RejectionReason.EXPIRED
        )

        with pytest.raises(VoucherRejectedError) as exc_info:
            _add_tent(mock_cursor, voucher_code="OLD")

        assert exc_info.value.reason == "expired"
        engine.consume_or_reject.assert_not_called()
        engine.recalculate_booking_totals.assert_not_called()

    def test_lost_consumption_race_propagates(self, engine, mock_cursor):
        engine.consume_or_reject.side_effect = VoucherRejectedError(
            voucher_code="SUMMER10", reason="already_used", message="Voucher has already been used"
        )
        with pytest.raises(VoucherRejectedError):
            _add_tent(mock_cursor, voucher_code="summer10")
        engine.insert_history_entry.assert_not_called()


class TestUpdateTent:
    def test_date_change_rechecks_excluding_itself_and_reprices(self, engine, mock_cursor):
        engine.resolve_pricing.return_value = _resolution(nights=3)

        booking_edits.update_tent(BOOKING_ID, "tent-1", check_out=JUN(4), cur=mock_cursor)

        engine.assert_available.assert_called_once_with(
            mock_cursor,
            unit_id=UNIT,
            check_in=JUN(1),
            check_out=JUN(4),
            exclude_booking_tent_id="tent-1",
            lock=True,
        )
        engine.lines.get_item_line_quantities.assert_called_once_with(mock_cursor, tent_id="tent-1")
        assert engine.resolve_pricing.call_args.kwargs["exclude_booking_tent_id"] == "tent-1"
        assert engine.lines.update_tent.call_args.kwargs["subtotal"] == 1200

    def test_override_only_skips_availability_and_pricing(self, engine, mock_cursor):
        booking_edits.update_tent(BOOKING_ID, "tent-1", subtotal_override=700, cur=mock_cursor)

        engine.assert_available.assert_not_called()
        engine.resolve_pricing.assert_not_called()
        update = engine.lines.update_tent.call_args.kwargs
        assert update["subtotal"] == 800
        assert update["subtotal_override"] == 700

    def test_clear_override(self, engine, mock_cursor):
        engine.lines.get_tent.return_value = _tent(subtotal_override=700)

        booking_edits.update_tent(BOOKING_ID, "tent-1", clear_subtotal_override=True, cur=mock_cursor)

        assert engine.lines.update_tent.call_args.kwargs["subtotal_override"] is None

    def test_existing_voucher_reclamped_without_consuming(self, engine, mock_cursor):
        engine.lines.get_tent.return_value = _tent(
            voucher_id="v-1",
            voucher_code="FLAT500",
            discount_type="fixed",
            discount_value=Decimal("500"),
            discount_scope="per_booking_before_tax",
            discount_amount=500,
        )

        booking_edits.update_tent(BOOKING_ID, "tent-1", subtotal_override=300, cur=mock_cursor)

        assert engine.lines.update_tent.call_args.kwargs["discount_amount"] == 300
        engine.lines.set_line_discount.assert_not_called()
        engine.consume_or_reject.assert_not_called()
        engine.validate_voucher.assert_not_called()

    def test_cancelled_tent_not_found(self, engine, mock_cursor):
        engine.lines.get_tent.return_value = _tent(status="cancelled")
        with pytest.raises(LineNotFoundError):
            booking_edits.update_tent(BOOKING_ID, "tent-1", subtotal_override=1, cur=mock_cursor)

    def test_inverted_dates(self, engine, mock_cursor):
        with pytest.raises(InvalidDateRangeError):
            booking_edits.update_tent(BOOKING_ID, "tent-1", check_in=JUN(5), cur=mock_cursor)


class TestRemoveTent:
    def test_deletes_and_recalculates(self, engine, mock_cursor):
        result = booking_edits.remove_tent(BOOKING_ID, "tent-1", cur=mock_cursor)

        engine.lines.delete_tent.assert_called_once_with(mock_cursor, tent_id="tent-1")
        engine.recalculate_booking_totals.assert_called_once_with(mock_cursor, BOOKING_ID)
        assert result.action is HistoryAction.TENT_REMOVED

    def test_missing_tent(self, engine, mock_cursor):
        engine.lines.get_tent.return_value = None
        with pytest.raises(LineNotFoundError):
            booking_edits.remove_tent(BOOKING_ID, "tent-x", cur=mock_cursor)
        engine.lines.delete_tent.assert_not_called()


# ── Menu products ─────────────────────────────────────────


class TestMenuProducts:
    def test_add_defaults_to_catalog_price(self, engine, mock_cursor):
        result = booking_edits.add_menu_product(
            BOOKING_ID, menu_item_id="menu-1", quantity=2, cur=mock_cursor
        )

        insert = engine.lines.insert_menu_product.call_args.kwargs
        assert insert["unit_price"] == 150
        assert insert["booking_tent_id"] is None
        assert result.action is HistoryAction.PRODUCT_ADDED
        assert engine.insert_history_entry.call_args.kwargs["description"] == (
            "Added product: Breakfast x2 (300)"
        )

    def test_add_with_voucher_uses_menu_context(self, engine, mock_cursor):
        booking_edits.add_menu_product(
            BOOKING_ID,
            menu_item_id="menu-1",
            quantity=2,
            booking_tent_id="tent-1",
            voucher_code="MENU",
            cur=mock_cursor,
        )

        context = engine.validate_voucher.call_args.args[2]
        assert context.application_type.value == "menu"
        assert context.check_in == JUN(1)
        assert engine.lines.set_line_discount.call_args.kwargs["line_kind"] == "menu_product"
        assert engine.lines.set_line_discount.call_args.kwargs["discount_amount"] == 30

    def test_add_rejects_zero_quantity(self, engine, mock_cursor):
        with pytest.raises(InvalidLineError):
            booking_edits.add_menu_product(BOOKING_ID, menu_item_id="menu-1", quantity=0, cur=mock_cursor)

    def test_update_quantity(self, engine, mock_cursor):
        booking_edits.update_menu_product(BOOKING_ID, "prod-1", quantity=3, cur=mock_cursor)

        update = engine.lines.update_menu_product.call_args.kwargs
        assert update["quantity"] == 3
        assert update["unit_price"] == 150
        assert engine.insert_history_entry.call_args.kwargs["description"] == (
            "Updated quantity: Breakfast (2 → 3)"
        )
        assert update["discount_amount"] == 0

    def test_update_reclamps_after_tax_discount(self, engine, mock_cursor):
        engine.lines.get_menu_product.return_value = _product(
            voucher_id="v-1",
            voucher_code="MENU",
            discount_type="fixed",
            discount_value=Decimal("200"),
            discount_scope="per_booking_after_tax",
            discount_amount=200,
        )

        booking_edits.update_menu_product(BOOKING_ID, "prod-1", quantity=1, cur=mock_cursor)

        # 200 off (150 + 12 tax) clamps to the 150 line
        assert engine.lines.update_menu_product.call_args.kwargs["discount_amount"] == 150

    def test_cancel_keeps_row(self, engine, mock_cursor):
        result = booking_edits.cancel_menu_product(
            BOOKING_ID, "prod-1", reason="guest changed plans", cur=mock_cursor
        )

        engine.lines.cancel_menu_product.assert_called_once_with(
            mock_cursor, product_id="prod-1", reason="guest changed plans"
        )
        engine.lines.delete_menu_product.assert_not_called()
        assert result.action is HistoryAction.PRODUCT_CANCELLED

    def test_cancel_twice_not_found(self, engine, mock_cursor):
        engine.lines.get_menu_product.return_value = _product(status="cancelled")
        with pytest.raises(LineNotFoundError):
            booking_edits.cancel_menu_product(BOOKING_ID, "prod-1", cur=mock_cursor)

    def test_remove(self, engine, mock_cursor):
        booking_edits.remove_menu_product(BOOKING_ID, "prod-1", cur=mock_cursor)
        engine.lines.delete_menu_product.assert_called_once_with(mock_cursor, product_id="prod-1")


# ── Additional costs ──────────────────────────────────────


class TestAdditionalCosts:
    def test_add_defaults_to_booking_tax_rate(self, engine, mock_cursor):
        result = booking_edits.add_additional_cost(
            BOOKING_ID, name="  Firewood ", unit_price=500, cur=mock_cursor
        )

        insert = engine.lines.insert_additional_cost.call_args.kwargs
        assert insert["name"] == "Firewood"
        assert insert["tax_rate"] == Decimal("10")
        assert insert["quantity"] == 1
        assert result.line_id == "cost-1"

    def test_add_explicit_tax_rate(self, engine, mock_cursor):
        booking_edits.add_additional_cost(
            BOOKING_ID, name="Kayak", unit_price=500, tax_rate=Decimal("0"), cur=mock_cursor
        )
        assert engine.lines.insert_additional_cost.call_args.kwargs["tax_rate"] == Decimal("0")

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"name": " ", "unit_price": 100},
            {"name": "Kayak", "unit_price": -1},
            {"name": "Kayak", "unit_price": 100, "quantity": 0},
        ],
    )
    def test_add_rejects_invalid(self, engine, mock_cursor, kwargs):
        with pytest.raises(InvalidLineError):
            booking_edits.add_additional_cost(BOOKING_ID, cur=mock_cursor, **kwargs)
        engine.lines.insert_additional_cost.assert_not_called()

    def test_update_keeps_unchanged_fields(self, engine, mock_cursor):
        booking_edits.update_additional_cost(BOOKING_ID, "cost-1", quantity=2, cur=mock_cursor)

        update = engine.lines.update_additional_cost.call_args.kwargs
        assert update == {
            "cost_id": "cost-1",
            "name": "Firewood",
            "quantity": 2,
            "unit_price": 500,
            "tax_rate": Decimal("10"),
            "notes": None,
        }
        assert engine.insert_history_entry.call_args.kwargs["description"] == (
            "Updated additional cost: Firewood (500 → 1,000)"
        )

    def test_remove_missing(self, engine, mock_cursor):
        engine.lines.get_additional_cost.return_value = None
        with pytest.raises(LineNotFoundError):
            booking_edits.remove_additional_cost(BOOKING_ID, "cost-x", cur=mock_cursor)


# ── Vouchers on existing lines ────────────────────────────


class TestApplyAndRemoveVoucher:
    def test_apply_to_tent(self, engine, mock_cursor):
        result = booking_edits.apply_voucher(
            BOOKING_ID, line_kind="tent", line_id="tent-1", code="SUMMER10", cur=mock_cursor
        )

        assert result.action is HistoryAction.VOUCHER_APPLIED
        assert result.voucher.discount_amount == 80
        assert engine.insert_history_entry.call_args.kwargs["description"] == (
            "Applied voucher SUMMER10 to tent Safari Tent (-80)"
        )

    def test_replace_keeps_old_use(self, engine, mock_cursor):
        engine.lines.get_tent.return_value = _tent(voucher_id="v-0", voucher_code="OLD", discount_type="fixed")

        booking_edits.apply_voucher(
            BOOKING_ID, line_kind="tent", line_id="tent-1", code="SUMMER10", cur=mock_cursor
        )

        metadata = engine.insert_history_entry.call_args.kwargs["metadata"]
        assert metadata["replaced_voucher_code"] == "OLD"
        engine.consume_or_reject.assert_called_once()

    def test_unknown_line_kind(self, engine, mock_cursor):
        with pytest.raises(InvalidLineError):
            booking_edits.apply_voucher(
                BOOKING_ID, line_kind="additional_cost", line_id="x", code="A", cur=mock_cursor
            )

    def test_remove_clears_snapshot(self, engine, mock_cursor):
        engine.lines.get_menu_product.return_value = _product(
            voucher_id="v-1", voucher_code="MENU", discount_type="percentage", discount_amount=30
        )

        booking_edits.remove_voucher(
            BOOKING_ID, line_kind="menu_product", line_id="prod-1", cur=mock_cursor
        )

        engine.lines.set_line_discount.assert_called_once_with(
            mock_cursor,
            line_kind="menu_product",
            line_id="prod-1",
            voucher_id=None,
            voucher_code=None,
            discount_type=None,
            discount_value=None,
            discount_scope=None,
            discount_amount=0,
        )

    def test_remove_without_voucher(self, engine, mock_cursor):
        with pytest.raises(InvalidLineError):
            booking_edits.remove_voucher(BOOKING_ID, line_kind="tent", line_id="tent-1", cur=mock_cursor)


# ── Booking-level ─────────────────────────────────────────


class TestBookingLevel:
    def test_toggle_tax_invoice(self, engine, mock_cursor):
        result = booking_edits.set_tax_invoice_required(BOOKING_ID, required=False, cur=mock_cursor)

        engine.update_tax_invoice_required.assert_called_once_with(
            mock_cursor, booking_id=BOOKING_ID, required=False
        )
        assert result.action is HistoryAction.TAX_INVOICE_TOGGLED
        assert engine.insert_history_entry.call_args.kwargs["description"] == "VAT invoice disabled"

    @staticmethod
    def _after_tax_lines():
        snapshot = {
            "voucher_id": "v-1",
            "voucher_code": "GROSS",
            "discount_type": "percentage",
            "discount_scope": "per_booking_after_tax",
        }
        return [
            {"line_kind": "tent", "id": "tent-1", "unit_id": UNIT, "amount": 1000,
             "discount_value": Decimal("10"), **snapshot},
            {"line_kind": "menu_product", "id": "prod-1", "amount": 300,
             "tax_rate": Decimal("8"), "discount_value": Decimal("50"), **snapshot},
        ]

    @pytest.mark.parametrize(
        "was_required, required, expected",
        [
            # gross 1100 and 324 while taxed
            (True, False, {"tent-1": 100, "prod-1": 150}),
            (False, True, {"tent-1": 110, "prod-1": 162}),
        ],
    )
    def test_toggle_reclamps_after_tax_discounts(
        self, engine, mock_cursor, was_required, required, expected
    ):
        engine.get_booking.return_value = _booking(tax_invoice_required=was_required)
        engine.lines.list_after_tax_discounted_lines.return_value = self._after_tax_lines()

        booking_edits.set_tax_invoice_required(BOOKING_ID, required=required, cur=mock_cursor)

        written = {
            c.kwargs["line_id"]: c.kwargs["discount_amount"]
            for c in engine.lines.set_line_discount.call_args_list
        }
        assert written == expected
        assert engine.lines.set_line_discount.call_args.kwargs["voucher_code"] == "GROSS"

        order = [name for name, _, _ in engine.mock_calls]
        assert order.index("lines.set_line_discount") < order.index("recalculate_booking_totals")

    def test_recalculate_allowed_on_terminal_booking(self, engine, mock_cursor):
        engine.get_booking.return_value = _booking(status="checked_out", total_amount=900)

        result = booking_edits.recalculate_booking(BOOKING_ID, cur=mock_cursor)

        engine.recalculate_booking_totals.assert_called_once_with(mock_cursor, BOOKING_ID)
        assert result.action is HistoryAction.TOTALS_RECALCULATED
        assert engine.insert_history_entry.call_args.kwargs["description"] == (
            "Recalculated totals (900 → 880)"
        )


class TestOwnTransaction:
    def test_opens_txn_when_no_cursor(self, engine):
        cur = MagicMock()
        with patch(f"{MODULE}.txn") as mock_txn:
            mock_txn.return_value.__enter__.return_value = cur
            booking_edits.remove_tent(BOOKING_ID, "tent-1")

        mock_txn.assert_called_once_with()
        assert engine.lines.delete_tent.call_args == call(cur, tent_id="tent-1")
