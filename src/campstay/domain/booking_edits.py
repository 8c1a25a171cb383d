"""Booking line mutations - one transaction per edit.

Every mutation follows the same path inside a single transaction:

1. lock the booking row (FOR UPDATE) and refuse terminal bookings
2. availability check with the unit row locked (tents only)
3. re-price on the commit path, independent of any earlier quote
4. validate the voucher with its row locked, if a code is given
5. write the line, then consume the voucher (conditional UPDATE)
6. recalculate the booking totals
7. append the history entry and the BOOKING_TOTALS_UPDATED outbox event

Any exception rolls the whole transaction back, so a failed edit leaves no
line, no voucher use and no history entry behind.

Each public function accepts an optional cursor; without one it opens its own
transaction.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Mapping

from psycopg2.extensions import cursor as PgCursor

from campstay.domain import history
from campstay.domain.availability import assert_available
from campstay.domain.errors import (
    BookingLockedError,
    BookingNotFoundError,
    InvalidDateRangeError,
    InvalidLineError,
    LineNotFoundError,
    MenuItemNotFoundError,
    UnitNotFoundError,
)
from campstay.domain.history import HistoryAction
from campstay.domain.pricing import build_item_lines, resolve_pricing
from campstay.domain.recalculate import BookingTotals, recalculate_booking_totals
from campstay.domain.tax import line_tax
from campstay.domain.vouchers import (
    ApplicationType,
    VoucherContext,
    VoucherValidation,
    consume_or_reject,
    line_discount,
    validate_voucher,
)
from campstay.infra.db import txn
from campstay.infra.repositories import booking_lines_repository as lines_repo
from campstay.infra.repositories.bookings_repository import (
    get_booking,
    get_menu_item,
    get_unit,
    get_unit_tax,
    update_tax_invoice_required,
)
from campstay.infra.repositories.history_repository import insert_history_entry
from campstay.infra.repositories.outbox_repository import emit_booking_totals_updated
from campstay.observability.correlation import get_correlation_id
from campstay.observability.logging import get_logger

logger = get_logger(__name__)

LOCKED_BOOKING_STATUSES = ("cancelled", "rejected", "checked_out")

TaxOf = Callable[[int], int]


@dataclass(frozen=True)
class EditResult:
    booking_id: str
    action: HistoryAction
    totals: BookingTotals
    line_id: str | None = None
    voucher: VoucherValidation | None = None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "booking_id": self.booking_id,
            "action": self.action.value,
            "line_id": self.line_id,
            "totals": self.totals.to_dict(),
        }
        if self.voucher is not None:
            data["voucher"] = self.voucher.to_dict()
        return data


def _run(cur: PgCursor | None, fn: Callable[[PgCursor], EditResult]) -> EditResult:
    if cur is not None:
        return fn(cur)
    with txn() as c:
        return fn(c)


def _lock_booking(c: PgCursor, booking_id: str, *, allow_locked: bool = False) -> dict:
    booking = get_booking(c, booking_id, lock=True)
    if booking is None:
        raise BookingNotFoundError(booking_id)
    if not allow_locked and booking["status"] in LOCKED_BOOKING_STATUSES:
        raise BookingLockedError(booking_id, booking["status"])
    return booking


def _finish(
    c: PgCursor,
    booking: dict,
    *,
    action: HistoryAction,
    description: str,
    actor_id: str | None,
    line_id: str | None = None,
    metadata: dict | None = None,
    voucher: VoucherValidation | None = None,
    totals: BookingTotals | None = None,
) -> EditResult:
    """Recalculate, then record the audit entry and the outbox event."""
    if totals is None:
        totals = recalculate_booking_totals(c, booking["id"])

    entry_metadata = dict(metadata or {})
    entry_metadata.update(
        line_id=line_id,
        previous_total_amount=booking["total_amount"],
        total_amount=totals.total_amount,
    )
    insert_history_entry(
        c,
        booking_id=booking["id"],
        actor_id=actor_id,
        action=action.value,
        description=description,
        metadata=entry_metadata,
    )
    emit_booking_totals_updated(
        c,
        zone_id=booking["zone_id"],
        booking_id=booking["id"],
        action=action.value,
        subtotal_amount=totals.subtotal_amount,
        tax_amount=totals.tax_amount,
        total_amount=totals.total_amount,
        deposit_due=totals.deposit_due,
        balance_due=totals.balance_due,
        correlation_id=get_correlation_id() or None,
    )

    logger.info(
        "booking edited",
        extra={
            "extra_fields": {
                "booking_id": booking["id"],
                "action": action.value,
                "line_id": line_id,
                "actor_id": actor_id,
                "total_amount": totals.total_amount,
            },
        },
    )
    return EditResult(
        booking_id=booking["id"],
        action=action,
        totals=totals,
        line_id=line_id,
        voucher=voucher,
    )


# ── Pricing and tax helpers ───────────────────────────────


def _price_tent(
    c: PgCursor,
    *,
    unit_id: str,
    check_in: date,
    check_out: date,
    parameter_quantities: Mapping[str, int],
    exclude_booking_tent_id: str | None = None,
) -> tuple[list[dict], int]:
    """Re-price a stay and return (item line rows, tent subtotal)."""
    resolution = resolve_pricing(
        c,
        unit_id=unit_id,
        check_in=check_in,
        check_out=check_out,
        parameter_quantities=parameter_quantities,
        exclude_booking_tent_id=exclude_booking_tent_id,
    )
    lines, subtotal = build_item_lines(resolution, parameter_quantities)
    if not lines:
        raise InvalidLineError(
            "At least one parameter needs a quantity above zero", unit_id=unit_id
        )

    rows = [
        {
            "parameter_id": line.parameter_id,
            "quantity": line.quantity,
            "unit_price": line.unit_price,
            "pricing_mode": line.pricing_mode.value,
            "total_price": line.total,
            "metadata": {
                "nightly": [
                    {
                        "date": n.night.isoformat(),
                        "amount": n.amounts.get(line.parameter_id),
                        "event_id": n.event_id,
                    }
                    for n in resolution.nightly
                ],
            },
        }
        for line in lines
    ]
    return rows, subtotal


def _tent_tax_of(c: PgCursor, booking: dict, unit_id: str) -> TaxOf:
    def tax_of(amount: int) -> int:
        if not booking["tax_invoice_required"]:
            return 0
        tax = get_unit_tax(c, unit_id)
        if tax is None:
            return 0
        return line_tax(amount, tax["rate"])

    return tax_of


def _rate_tax_of(booking: dict, rate: Decimal) -> TaxOf:
    def tax_of(amount: int) -> int:
        if not booking["tax_invoice_required"]:
            return 0
        return line_tax(amount, rate)

    return tax_of


def _require_unit_in_zone(c: PgCursor, unit_id: str, zone_id: str) -> dict:
    unit = get_unit(c, unit_id)
    if unit is None:
        raise UnitNotFoundError(unit_id)
    if unit["zone_id"] != zone_id:
        raise InvalidLineError("Unit belongs to another zone", unit_id=unit_id)
    return unit


# ── Voucher snapshot helpers ──────────────────────────────


def _attach_voucher(
    c: PgCursor,
    booking: dict,
    *,
    line_kind: str,
    line_id: str,
    code: str,
    application_type: ApplicationType,
    item_id: str,
    check_in: date | None,
    line_amount: int,
    tax_of: TaxOf,
) -> VoucherValidation:
    """Validate (row locked), snapshot onto the line, then consume one use."""
    validation = validate_voucher(
        c,
        code,
        VoucherContext(
            zone_id=booking["zone_id"],
            total_amount=line_amount,
            application_type=application_type,
            item_id=item_id,
            check_in=check_in,
        ),
        lock=True,
    ).raise_if_invalid()

    amount = line_discount(
        validation.discount_type,
        validation.discount_value,
        validation.scope,
        line_amount=line_amount,
        line_tax=tax_of(line_amount) if validation.scope.applies_after_tax else 0,
    )
    lines_repo.set_line_discount(
        c,
        line_kind=line_kind,
        line_id=line_id,
        voucher_id=validation.voucher_id,
        voucher_code=validation.code,
        discount_type=validation.discount_type.value,
        discount_value=validation.discount_value,
        discount_scope=validation.scope.value,
        discount_amount=amount,
    )
    consume_or_reject(c, validation)
    return dataclasses.replace(validation, discount_amount=amount)


def _reclamped_discount(line: dict, *, line_amount: int, tax_of: TaxOf) -> int:
    """Re-derive a line's stored discount for a new line amount.

    The voucher snapshot (type, value, scope) is kept and no use is consumed.
    The caller writes the result in the same UPDATE as the new amount.
    """
    if not line["discount_type"]:
        return 0

    scope = line["discount_scope"]
    after_tax = scope == "per_booking_after_tax"
    return line_discount(
        line["discount_type"],
        line["discount_value"] or Decimal(0),
        scope,
        line_amount=line_amount,
        line_tax=tax_of(line_amount) if after_tax else 0,
    )


def _get_live_tent(c: PgCursor, booking_id: str, tent_id: str) -> dict:
    tent = lines_repo.get_tent(c, booking_id=booking_id, tent_id=tent_id, lock=True)
    if tent is None or tent["status"] == "cancelled":
        raise LineNotFoundError("Booking tent", tent_id)
    return tent


def _get_live_product(c: PgCursor, booking_id: str, product_id: str) -> dict:
    product = lines_repo.get_menu_product(
        c, booking_id=booking_id, product_id=product_id, lock=True
    )
    if product is None or product["status"] == "cancelled":
        raise LineNotFoundError("Booking menu product", product_id)
    return product


# ── Tents ─────────────────────────────────────────────────


def add_tent(
    booking_id: str,
    *,
    unit_id: str,
    check_in: date,
    check_out: date,
    parameter_quantities: Mapping[str, int],
    voucher_code: str | None = None,
    subtotal_override: int | None = None,
    special_requests: str | None = None,
    actor_id: str | None = None,
    cur: PgCursor | None = None,
) -> EditResult:
    """Add a stay segment to a booking.

    Raises:
        AvailabilityConflictError: The unit has no capacity left for the nights.
        MissingPricingError: A requested parameter has no rate.
        VoucherRejectedError: The voucher code failed validation.
    """

    def _do(c: PgCursor) -> EditResult:
        if check_in >= check_out:
            raise InvalidDateRangeError(check_in, check_out)

        booking = _lock_booking(c, booking_id)
        unit = _require_unit_in_zone(c, unit_id, booking["zone_id"])

        assert_available(c, unit_id=unit_id, check_in=check_in, check_out=check_out, lock=True)

        rows, subtotal = _price_tent(
            c,
            unit_id=unit_id,
            check_in=check_in,
            check_out=check_out,
            parameter_quantities=parameter_quantities,
        )
        tent_id = lines_repo.insert_tent(
            c,
            booking_id=booking_id,
            unit_id=unit_id,
            check_in=check_in,
            check_out=check_out,
            subtotal=subtotal,
            subtotal_override=subtotal_override,
            special_requests=special_requests,
        )
        lines_repo.replace_item_lines(c, tent_id=tent_id, lines=rows)

        effective = subtotal_override if subtotal_override is not None else subtotal
        validation = None
        if voucher_code:
            validation = _attach_voucher(
                c,
                booking,
                line_kind="tent",
                line_id=tent_id,
                code=voucher_code,
                application_type=ApplicationType.ACCOMMODATION,
                item_id=unit_id,
                check_in=check_in,
                line_amount=effective,
                tax_of=_tent_tax_of(c, booking, unit_id),
            )

        return _finish(
            c,
            booking,
            action=HistoryAction.TENT_ADDED,
            description=history.tent_added(unit["name"], check_in, check_out, effective),
            actor_id=actor_id,
            line_id=tent_id,
            metadata={"unit_id": unit_id, "subtotal": subtotal},
            voucher=validation,
        )

    return _run(cur, _do)


def update_tent(
    booking_id: str,
    tent_id: str,
    *,
    check_in: date | None = None,
    check_out: date | None = None,
    parameter_quantities: Mapping[str, int] | None = None,
    subtotal_override: int | None = None,
    clear_subtotal_override: bool = False,
    special_requests: str | None = None,
    actor_id: str | None = None,
    cur: PgCursor | None = None,
) -> EditResult:
    """Change a tent's dates, guests or price override.

    The stay is re-priced when its dates or quantities change; the applied
    voucher snapshot is re-clamped to the new amount without consuming
    another use.
    """

    def _do(c: PgCursor) -> EditResult:
        booking = _lock_booking(c, booking_id)
        tent = _get_live_tent(c, booking_id, tent_id)

        new_in = check_in or tent["check_in"]
        new_out = check_out or tent["check_out"]
        if new_in >= new_out:
            raise InvalidDateRangeError(new_in, new_out)

        dates_changed = (new_in, new_out) != (tent["check_in"], tent["check_out"])
        if dates_changed:
            assert_available(
                c,
                unit_id=tent["unit_id"],
                check_in=new_in,
                check_out=new_out,
                exclude_booking_tent_id=tent_id,
                lock=True,
            )

        subtotal = tent["subtotal"]
        if dates_changed or parameter_quantities is not None:
            quantities = (
                parameter_quantities
                if parameter_quantities is not None
                else lines_repo.get_item_line_quantities(c, tent_id=tent_id)
            )
            rows, subtotal = _price_tent(
                c,
                unit_id=tent["unit_id"],
                check_in=new_in,
                check_out=new_out,
                parameter_quantities=quantities,
                exclude_booking_tent_id=tent_id,
            )
            lines_repo.replace_item_lines(c, tent_id=tent_id, lines=rows)

        if clear_subtotal_override:
            override = None
        elif subtotal_override is not None:
            override = subtotal_override
        else:
            override = tent["subtotal_override"]

        old_effective = (
            tent["subtotal_override"] if tent["subtotal_override"] is not None else tent["subtotal"]
        )
        effective = override if override is not None else subtotal

        lines_repo.update_tent(
            c,
            tent_id=tent_id,
            check_in=new_in,
            check_out=new_out,
            subtotal=subtotal,
            subtotal_override=override,
            special_requests=(
                special_requests if special_requests is not None else tent["special_requests"]
            ),
            discount_amount=_reclamped_discount(
                tent,
                line_amount=effective,
                tax_of=_tent_tax_of(c, booking, tent["unit_id"]),
            ),
        )

        unit = get_unit(c, tent["unit_id"]) or {"name": tent["unit_id"]}
        return _finish(
            c,
            booking,
            action=HistoryAction.TENT_UPDATED,
            description=history.tent_updated(
                unit["name"],
                old_stay=(tent["check_in"], tent["check_out"]),
                new_stay=(new_in, new_out),
                old_subtotal=old_effective,
                new_subtotal=effective,
            ),
            actor_id=actor_id,
            line_id=tent_id,
            metadata={"unit_id": tent["unit_id"], "subtotal": subtotal},
        )

    return _run(cur, _do)


def remove_tent(
    booking_id: str,
    tent_id: str,
    *,
    actor_id: str | None = None,
    cur: PgCursor | None = None,
) -> EditResult:
    """Delete a tent together with its item lines and menu products.

    A voucher use taken by the tent is not given back.
    """

    def _do(c: PgCursor) -> EditResult:
        booking = _lock_booking(c, booking_id)
        tent = _get_live_tent(c, booking_id, tent_id)
        unit = get_unit(c, tent["unit_id"]) or {"name": tent["unit_id"]}

        lines_repo.delete_tent(c, tent_id=tent_id)

        return _finish(
            c,
            booking,
            action=HistoryAction.TENT_REMOVED,
            description=history.tent_removed(unit["name"], tent["check_in"], tent["check_out"]),
            actor_id=actor_id,
            line_id=tent_id,
            metadata={"unit_id": tent["unit_id"]},
        )

    return _run(cur, _do)


# ── Menu products ─────────────────────────────────────────


def add_menu_product(
    booking_id: str,
    *,
    menu_item_id: str,
    quantity: int,
    booking_tent_id: str | None = None,
    unit_price: int | None = None,
    serving_date: date | None = None,
    notes: str | None = None,
    voucher_code: str | None = None,
    actor_id: str | None = None,
    cur: PgCursor | None = None,
) -> EditResult:
    """Add a menu product, booking-wide or attached to one tent.

    unit_price defaults to the menu item's current price.
    """

    def _do(c: PgCursor) -> EditResult:
        if quantity < 1:
            raise InvalidLineError("Quantity must be at least 1", quantity=quantity)

        booking = _lock_booking(c, booking_id)
        item = get_menu_item(c, menu_item_id)
        if item is None:
            raise MenuItemNotFoundError(menu_item_id)
        if item["zone_id"] != booking["zone_id"]:
            raise InvalidLineError("Menu item belongs to another zone", menu_item_id=menu_item_id)

        check_in = None
        if booking_tent_id is not None:
            check_in = _get_live_tent(c, booking_id, booking_tent_id)["check_in"]

        price = unit_price if unit_price is not None else item["price"]
        if price < 0:
            raise InvalidLineError("Unit price must be non-negative", unit_price=price)

        product_id, total_price = lines_repo.insert_menu_product(
            c,
            booking_id=booking_id,
            menu_item_id=menu_item_id,
            quantity=quantity,
            unit_price=price,
            booking_tent_id=booking_tent_id,
            serving_date=serving_date,
            notes=notes,
        )

        validation = None
        if voucher_code:
            validation = _attach_voucher(
                c,
                booking,
                line_kind="menu_product",
                line_id=product_id,
                code=voucher_code,
                application_type=ApplicationType.MENU,
                item_id=menu_item_id,
                check_in=check_in,
                line_amount=total_price,
                tax_of=_rate_tax_of(booking, item["tax_rate"]),
            )

        return _finish(
            c,
            booking,
            action=HistoryAction.PRODUCT_ADDED,
            description=history.product_added(item["name"], quantity, total_price),
            actor_id=actor_id,
            line_id=product_id,
            metadata={"menu_item_id": menu_item_id, "quantity": quantity},
            voucher=validation,
        )

    return _run(cur, _do)


def update_menu_product(
    booking_id: str,
    product_id: str,
    *,
    quantity: int | None = None,
    unit_price: int | None = None,
    serving_date: date | None = None,
    notes: str | None = None,
    actor_id: str | None = None,
    cur: PgCursor | None = None,
) -> EditResult:
    def _do(c: PgCursor) -> EditResult:
        booking = _lock_booking(c, booking_id)
        product = _get_live_product(c, booking_id, product_id)

        new_quantity = quantity if quantity is not None else product["quantity"]
        new_price = unit_price if unit_price is not None else product["unit_price"]
        if new_quantity < 1:
            raise InvalidLineError("Quantity must be at least 1", quantity=new_quantity)
        if new_price < 0:
            raise InvalidLineError("Unit price must be non-negative", unit_price=new_price)

        lines_repo.update_menu_product(
            c,
            product_id=product_id,
            quantity=new_quantity,
            unit_price=new_price,
            serving_date=serving_date if serving_date is not None else product["serving_date"],
            notes=notes if notes is not None else product["notes"],
            discount_amount=_reclamped_discount(
                product,
                line_amount=new_quantity * new_price,
                tax_of=_rate_tax_of(booking, product["tax_rate"]),
            ),
        )

        return _finish(
            c,
            booking,
            action=HistoryAction.PRODUCT_UPDATED,
            description=history.product_updated(product["name"], product["quantity"], new_quantity),
            actor_id=actor_id,
            line_id=product_id,
            metadata={"old_quantity": product["quantity"], "new_quantity": new_quantity},
        )

    return _run(cur, _do)


def cancel_menu_product(
    booking_id: str,
    product_id: str,
    *,
    reason: str | None = None,
    actor_id: str | None = None,
    cur: PgCursor | None = None,
) -> EditResult:
    """Mark a menu product cancelled; it stays on record but stops counting."""

    def _do(c: PgCursor) -> EditResult:
        booking = _lock_booking(c, booking_id)
        product = _get_live_product(c, booking_id, product_id)

        lines_repo.cancel_menu_product(c, product_id=product_id, reason=reason)

        return _finish(
            c,
            booking,
            action=HistoryAction.PRODUCT_CANCELLED,
            description=history.product_cancelled(product["name"], product["quantity"], reason),
            actor_id=actor_id,
            line_id=product_id,
            metadata={"reason": reason},
        )

    return _run(cur, _do)


def remove_menu_product(
    booking_id: str,
    product_id: str,
    *,
    actor_id: str | None = None,
    cur: PgCursor | None = None,
) -> EditResult:
    def _do(c: PgCursor) -> EditResult:
        booking = _lock_booking(c, booking_id)
        product = lines_repo.get_menu_product(
            c, booking_id=booking_id, product_id=product_id, lock=True
        )
        if product is None:
            raise LineNotFoundError("Booking menu product", product_id)

        lines_repo.delete_menu_product(c, product_id=product_id)

        return _finish(
            c,
            booking,
            action=HistoryAction.PRODUCT_REMOVED,
            description=history.product_removed(product["name"], product["quantity"]),
            actor_id=actor_id,
            line_id=product_id,
        )

    return _run(cur, _do)


# ── Additional costs ──────────────────────────────────────


def _validate_cost(name: str, quantity: int, unit_price: int) -> None:
    if not name or not name.strip():
        raise InvalidLineError("Name is required")
    if quantity < 1:
        raise InvalidLineError("Quantity must be at least 1", quantity=quantity)
    if unit_price < 0:
        raise InvalidLineError("Unit price must be non-negative", unit_price=unit_price)


def add_additional_cost(
    booking_id: str,
    *,
    name: str,
    unit_price: int,
    quantity: int = 1,
    tax_rate: Decimal | None = None,
    notes: str | None = None,
    actor_id: str | None = None,
    cur: PgCursor | None = None,
) -> EditResult:
    """Add a manual charge. tax_rate defaults to the booking's tax rate.

    total_price and tax_amount are generated by the database.
    """

    def _do(c: PgCursor) -> EditResult:
        _validate_cost(name, quantity, unit_price)
        booking = _lock_booking(c, booking_id)

        cost_id, total_price, _ = lines_repo.insert_additional_cost(
            c,
            booking_id=booking_id,
            name=name.strip(),
            quantity=quantity,
            unit_price=unit_price,
            tax_rate=tax_rate if tax_rate is not None else booking["tax_rate"],
            notes=notes,
        )

        return _finish(
            c,
            booking,
            action=HistoryAction.ADDITIONAL_COST_ADDED,
            description=history.additional_cost_added(name.strip(), quantity, total_price),
            actor_id=actor_id,
            line_id=cost_id,
            metadata={"total_price": total_price},
        )

    return _run(cur, _do)


def update_additional_cost(
    booking_id: str,
    cost_id: str,
    *,
    name: str | None = None,
    quantity: int | None = None,
    unit_price: int | None = None,
    tax_rate: Decimal | None = None,
    notes: str | None = None,
    actor_id: str | None = None,
    cur: PgCursor | None = None,
) -> EditResult:
    def _do(c: PgCursor) -> EditResult:
        booking = _lock_booking(c, booking_id)
        cost = lines_repo.get_additional_cost(c, booking_id=booking_id, cost_id=cost_id, lock=True)
        if cost is None:
            raise LineNotFoundError("Additional cost", cost_id)

        new_name = name.strip() if name is not None else cost["name"]
        new_quantity = quantity if quantity is not None else cost["quantity"]
        new_price = unit_price if unit_price is not None else cost["unit_price"]
        _validate_cost(new_name, new_quantity, new_price)

        total_price, _ = lines_repo.update_additional_cost(
            c,
            cost_id=cost_id,
            name=new_name,
            quantity=new_quantity,
            unit_price=new_price,
            tax_rate=tax_rate if tax_rate is not None else cost["tax_rate"],
            notes=notes if notes is not None else cost["notes"],
        )

        return _finish(
            c,
            booking,
            action=HistoryAction.ADDITIONAL_COST_UPDATED,
            description=history.additional_cost_updated(new_name, cost["total_price"], total_price),
            actor_id=actor_id,
            line_id=cost_id,
            metadata={"old_total_price": cost["total_price"], "total_price": total_price},
        )

    return _run(cur, _do)


def remove_additional_cost(
    booking_id: str,
    cost_id: str,
    *,
    actor_id: str | None = None,
    cur: PgCursor | None = None,
) -> EditResult:
    def _do(c: PgCursor) -> EditResult:
        booking = _lock_booking(c, booking_id)
        cost = lines_repo.get_additional_cost(c, booking_id=booking_id, cost_id=cost_id, lock=True)
        if cost is None:
            raise LineNotFoundError("Additional cost", cost_id)

        lines_repo.delete_additional_cost(c, cost_id=cost_id)

        return _finish(
            c,
            booking,
            action=HistoryAction.ADDITIONAL_COST_REMOVED,
            description=history.additional_cost_removed(cost["name"], cost["total_price"]),
            actor_id=actor_id,
            line_id=cost_id,
        )

    return _run(cur, _do)


# ── Vouchers on existing lines ────────────────────────────


def _discountable_line(c: PgCursor, booking: dict, line_kind: str, line_id: str) -> dict:
    """Normalise a tent or menu product into what voucher handling needs."""
    if line_kind == "tent":
        tent = _get_live_tent(c, booking["id"], line_id)
        unit = get_unit(c, tent["unit_id"]) or {"name": tent["unit_id"]}
        amount = (
            tent["subtotal_override"] if tent["subtotal_override"] is not None else tent["subtotal"]
        )
        return {
            "line": tent,
            "amount": amount,
            "application_type": ApplicationType.ACCOMMODATION,
            "item_id": tent["unit_id"],
            "check_in": tent["check_in"],
            "tax_of": _tent_tax_of(c, booking, tent["unit_id"]),
            "label": f"tent {unit['name']}",
        }

    if line_kind == "menu_product":
        product = _get_live_product(c, booking["id"], line_id)
        return {
            "line": product,
            "amount": product["total_price"],
            "application_type": ApplicationType.MENU,
            "item_id": product["menu_item_id"],
            "check_in": product["check_in"],
            "tax_of": _rate_tax_of(booking, product["tax_rate"]),
            "label": f"product {product['name']}",
        }

    raise InvalidLineError(f"Unknown line kind: {line_kind}", line_kind=line_kind)


def apply_voucher(
    booking_id: str,
    *,
    line_kind: str,
    line_id: str,
    code: str,
    actor_id: str | None = None,
    cur: PgCursor | None = None,
) -> EditResult:
    """Apply (or replace) the voucher on a tent or menu product.

    A replaced voucher's earlier use is not given back.

    Raises:
        VoucherRejectedError: With the first failed rule as ``reason``.
    """

    def _do(c: PgCursor) -> EditResult:
        booking = _lock_booking(c, booking_id)
        target = _discountable_line(c, booking, line_kind, line_id)

        validation = _attach_voucher(
            c,
            booking,
            line_kind=line_kind,
            line_id=line_id,
            code=code,
            application_type=target["application_type"],
            item_id=target["item_id"],
            check_in=target["check_in"],
            line_amount=target["amount"],
            tax_of=target["tax_of"],
        )

        return _finish(
            c,
            booking,
            action=HistoryAction.VOUCHER_APPLIED,
            description=history.voucher_applied(
                validation.code, target["label"], validation.discount_amount
            ),
            actor_id=actor_id,
            line_id=line_id,
            metadata={
                "line_kind": line_kind,
                "voucher_id": validation.voucher_id,
                "replaced_voucher_code": target["line"]["voucher_code"],
                "discount_amount": validation.discount_amount,
            },
            voucher=validation,
        )

    return _run(cur, _do)


def remove_voucher(
    booking_id: str,
    *,
    line_kind: str,
    line_id: str,
    actor_id: str | None = None,
    cur: PgCursor | None = None,
) -> EditResult:
    def _do(c: PgCursor) -> EditResult:
        booking = _lock_booking(c, booking_id)
        target = _discountable_line(c, booking, line_kind, line_id)
        line = target["line"]
        if not line["discount_type"]:
            raise InvalidLineError("No voucher applied to this line", line_id=line_id)

        lines_repo.set_line_discount(
            c,
            line_kind=line_kind,
            line_id=line_id,
            voucher_id=None,
            voucher_code=None,
            discount_type=None,
            discount_value=None,
            discount_scope=None,
            discount_amount=0,
        )

        return _finish(
            c,
            booking,
            action=HistoryAction.VOUCHER_REMOVED,
            description=history.voucher_removed(line["voucher_code"] or "", target["label"]),
            actor_id=actor_id,
            line_id=line_id,
            metadata={"line_kind": line_kind, "voucher_id": line["voucher_id"]},
        )

    return _run(cur, _do)


# ── Booking-level ─────────────────────────────────────────


def set_tax_invoice_required(
    booking_id: str,
    *,
    required: bool,
    actor_id: str | None = None,
    cur: PgCursor | None = None,
) -> EditResult:
    """Toggle the VAT invoice; without one the booking carries no tax.

    After-tax discounts were clamped against a gross that depended on the
    flag, so they are re-derived before the totals.
    """

    def _do(c: PgCursor) -> EditResult:
        booking = _lock_booking(c, booking_id)
        update_tax_invoice_required(c, booking_id=booking_id, required=required)

        toggled = {**booking, "tax_invoice_required": required}
        for line in lines_repo.list_after_tax_discounted_lines(c, booking_id=booking_id):
            if line["line_kind"] == "tent":
                tax_of = _tent_tax_of(c, toggled, line["unit_id"])
            else:
                tax_of = _rate_tax_of(toggled, line["tax_rate"])
            lines_repo.set_line_discount(
                c,
                line_kind=line["line_kind"],
                line_id=line["id"],
                voucher_id=line["voucher_id"],
                voucher_code=line["voucher_code"],
                discount_type=line["discount_type"],
                discount_value=line["discount_value"],
                discount_scope=line["discount_scope"],
                discount_amount=_reclamped_discount(
                    line, line_amount=line["amount"], tax_of=tax_of
                ),
            )

        return _finish(
            c,
            booking,
            action=HistoryAction.TAX_INVOICE_TOGGLED,
            description=history.tax_invoice_toggled(required),
            actor_id=actor_id,
            metadata={"tax_invoice_required": required},
        )

    return _run(cur, _do)


def recalculate_booking(
    booking_id: str,
    *,
    actor_id: str | None = None,
    cur: PgCursor | None = None,
) -> EditResult:
    """Operator re-derivation of totals, allowed on terminal bookings too."""

    def _do(c: PgCursor) -> EditResult:
        booking = _lock_booking(c, booking_id, allow_locked=True)
        totals = recalculate_booking_totals(c, booking_id)
        return _finish(
            c,
            booking,
            action=HistoryAction.TOTALS_RECALCULATED,
            description=history.totals_recalculated(booking["total_amount"], totals.total_amount),
            actor_id=actor_id,
            totals=totals,
        )

    return _run(cur, _do)
