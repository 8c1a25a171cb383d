"""Booking line mutation endpoints.

Every write endpoint runs one booking_edits function, which owns the
transaction: line write, voucher consumption, totals recalculation, history
entry and outbox event commit together or not at all. Domain failures are
mapped to HTTP by the app's BookingEngineError handler.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Literal

from fastapi import APIRouter, Depends, Path
from pydantic import BaseModel, ConfigDict, Field

from campstay.api.actor import get_actor_id
from campstay.api.ids import UuidStr
from campstay.domain import booking_edits

router = APIRouter(prefix="/bookings", tags=["bookings"])

LineKind = Literal["tent", "menu_product"]


# ── Schemas ───────────────────────────────────────────────


class AddTentRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    unit_id: UuidStr
    check_in: date
    check_out: date
    parameter_quantities: dict[UuidStr, int] = Field(..., min_length=1)
    voucher_code: str | None = None
    subtotal_override: int | None = Field(None, ge=0)
    special_requests: str | None = None


class UpdateTentRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    check_in: date | None = None
    check_out: date | None = None
    parameter_quantities: dict[UuidStr, int] | None = None
    subtotal_override: int | None = Field(None, ge=0)
    clear_subtotal_override: bool = False
    special_requests: str | None = None


class AddMenuProductRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    menu_item_id: UuidStr
    quantity: int = Field(..., ge=1)
    booking_tent_id: UuidStr | None = None
    unit_price: int | None = Field(None, ge=0)
    serving_date: date | None = None
    notes: str | None = None
    voucher_code: str | None = None


class UpdateMenuProductRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    quantity: int | None = Field(None, ge=1)
    unit_price: int | None = Field(None, ge=0)
    serving_date: date | None = None
    notes: str | None = None


class CancelMenuProductRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reason: str | None = None


class AddAdditionalCostRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1)
    unit_price: int = Field(..., ge=0)
    quantity: int = Field(1, ge=1)
    tax_rate: Decimal | None = Field(None, ge=0, le=100)
    notes: str | None = None


class UpdateAdditionalCostRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(None, min_length=1)
    unit_price: int | None = Field(None, ge=0)
    quantity: int | None = Field(None, ge=1)
    tax_rate: Decimal | None = Field(None, ge=0, le=100)
    notes: str | None = None


class ApplyVoucherRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    line_kind: LineKind
    line_id: UuidStr
    code: str = Field(..., min_length=1)


class TaxInvoiceRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    required: bool


# ── Tents ─────────────────────────────────────────────────


@router.post("/{booking_id}/tents", status_code=201)
def add_tent(
    body: AddTentRequest,
    booking_id: UuidStr = Path(..., description="Booking UUID"),
    actor_id: str | None = Depends(get_actor_id),
) -> dict:
    """Add a tent; availability is checked and the stay re-priced."""
    result = booking_edits.add_tent(
        booking_id,
        unit_id=body.unit_id,
        check_in=body.check_in,
        check_out=body.check_out,
        parameter_quantities=body.parameter_quantities,
        voucher_code=body.voucher_code,
        subtotal_override=body.subtotal_override,
        special_requests=body.special_requests,
        actor_id=actor_id,
    )
    return result.to_dict()


@router.patch("/{booking_id}/tents/{tent_id}")
def update_tent(
    body: UpdateTentRequest,
    booking_id: UuidStr = Path(..., description="Booking UUID"),
    tent_id: UuidStr = Path(..., description="Booking tent UUID"),
    actor_id: str | None = Depends(get_actor_id),
) -> dict:
    result = booking_edits.update_tent(
        booking_id,
        tent_id,
        check_in=body.check_in,
        check_out=body.check_out,
        parameter_quantities=body.parameter_quantities,
        subtotal_override=body.subtotal_override,
        clear_subtotal_override=body.clear_subtotal_override,
        special_requests=body.special_requests,
        actor_id=actor_id,
    )
    return result.to_dict()


@router.delete("/{booking_id}/tents/{tent_id}")
def remove_tent(
    booking_id: UuidStr = Path(..., description="Booking UUID"),
    tent_id: UuidStr = Path(..., description="Booking tent UUID"),
    actor_id: str | None = Depends(get_actor_id),
) -> dict:
    return booking_edits.remove_tent(booking_id, tent_id, actor_id=actor_id).to_dict()


# ── Menu products ─────────────────────────────────────────


@router.post("/{booking_id}/menu-products", status_code=201)
def add_menu_product(
    body: AddMenuProductRequest,
    booking_id: UuidStr = Path(..., description="Booking UUID"),
    actor_id: str | None = Depends(get_actor_id),
) -> dict:
    result = booking_edits.add_menu_product(
        booking_id,
        menu_item_id=body.menu_item_id,
        quantity=body.quantity,
        booking_tent_id=body.booking_tent_id,
        unit_price=body.unit_price,
        serving_date=body.serving_date,
        notes=body.notes,
        voucher_code=body.voucher_code,
        actor_id=actor_id,
    )
    return result.to_dict()


@router.patch("/{booking_id}/menu-products/{product_id}")
def update_menu_product(
    body: UpdateMenuProductRequest,
    booking_id: UuidStr = Path(..., description="Booking UUID"),
    product_id: UuidStr = Path(..., description="Booking menu product UUID"),
    actor_id: str | None = Depends(get_actor_id),
) -> dict:
    result = booking_edits.update_menu_product(
        booking_id,
        product_id,
        quantity=body.quantity,
        unit_price=body.unit_price,
        serving_date=body.serving_date,
        notes=body.notes,
        actor_id=actor_id,
    )
    return result.to_dict()


@router.post("/{booking_id}/menu-products/{product_id}/cancel")
def cancel_menu_product(
    body: CancelMenuProductRequest,
    booking_id: UuidStr = Path(..., description="Booking UUID"),
    product_id: UuidStr = Path(..., description="Booking menu product UUID"),
    actor_id: str | None = Depends(get_actor_id),
) -> dict:
    result = booking_edits.cancel_menu_product(
        booking_id, product_id, reason=body.reason, actor_id=actor_id
    )
    return result.to_dict()


@router.delete("/{booking_id}/menu-products/{product_id}")
def remove_menu_product(
    booking_id: UuidStr = Path(..., description="Booking UUID"),
    product_id: UuidStr = Path(..., description="Booking menu product UUID"),
    actor_id: str | None = Depends(get_actor_id),
) -> dict:
    return booking_edits.remove_menu_product(booking_id, product_id, actor_id=actor_id).to_dict()


# ── Additional costs ──────────────────────────────────────


@router.post("/{booking_id}/additional-costs", status_code=201)
def add_additional_cost(
    body: AddAdditionalCostRequest,
    booking_id: UuidStr = Path(..., description="Booking UUID"),
    actor_id: str | None = Depends(get_actor_id),
) -> dict:
    result = booking_edits.add_additional_cost(
        booking_id,
        name=body.name,
        unit_price=body.unit_price,
        quantity=body.quantity,
        tax_rate=body.tax_rate,
        notes=body.notes,
        actor_id=actor_id,
    )
    return result.to_dict()


@router.patch("/{booking_id}/additional-costs/{cost_id}")
def update_additional_cost(
    body: UpdateAdditionalCostRequest,
    booking_id: UuidStr = Path(..., description="Booking UUID"),
    cost_id: UuidStr = Path(..., description="Additional cost UUID"),
    actor_id: str | None = Depends(get_actor_id),
) -> dict:
    result = booking_edits.update_additional_cost(
        booking_id,
        cost_id,
        name=body.name,
        quantity=body.quantity,
        unit_price=body.unit_price,
        tax_rate=body.tax_rate,
        notes=body.notes,
        actor_id=actor_id,
    )
    return result.to_dict()


@router.delete("/{booking_id}/additional-costs/{cost_id}")
def remove_additional_cost(
    booking_id: UuidStr = Path(..., description="Booking UUID"),
    cost_id: UuidStr = Path(..., description="Additional cost UUID"),
    actor_id: str | None = Depends(get_actor_id),
) -> dict:
    return booking_edits.remove_additional_cost(booking_id, cost_id, actor_id=actor_id).to_dict()


# ── Vouchers ──────────────────────────────────────────────


@router.post("/{booking_id}/vouchers")
def apply_voucher(
    body: ApplyVoucherRequest,
    booking_id: UuidStr = Path(..., description="Booking UUID"),
    actor_id: str | None = Depends(get_actor_id),
) -> dict:
    """Apply a voucher to one tent or menu product; replaces any earlier one."""
    result = booking_edits.apply_voucher(
        booking_id,
        line_kind=body.line_kind,
        line_id=body.line_id,
        code=body.code,
        actor_id=actor_id,
    )
    return result.to_dict()


@router.delete("/{booking_id}/vouchers/{line_kind}/{line_id}")
def remove_voucher(
    line_kind: LineKind,
    booking_id: UuidStr = Path(..., description="Booking UUID"),
    line_id: UuidStr = Path(..., description="Tent or menu product UUID"),
    actor_id: str | None = Depends(get_actor_id),
) -> dict:
    result = booking_edits.remove_voucher(
        booking_id, line_kind=line_kind, line_id=line_id, actor_id=actor_id
    )
    return result.to_dict()


# ── Booking-level ─────────────────────────────────────────


@router.put("/{booking_id}/tax-invoice")
def set_tax_invoice(
    body: TaxInvoiceRequest,
    booking_id: UuidStr = Path(..., description="Booking UUID"),
    actor_id: str | None = Depends(get_actor_id),
) -> dict:
    result = booking_edits.set_tax_invoice_required(
        booking_id, required=body.required, actor_id=actor_id
    )
    return result.to_dict()


@router.post("/{booking_id}/recalculate")
def recalculate(
    booking_id: UuidStr = Path(..., description="Booking UUID"),
    actor_id: str | None = Depends(get_actor_id),
) -> dict:
    """Re-derive totals from the live lines (operator repair action)."""
    return booking_edits.recalculate_booking(booking_id, actor_id=actor_id).to_dict()


@router.get("/{booking_id}/totals")
def get_totals(
    booking_id: UuidStr = Path(..., description="Booking UUID"),
) -> dict:
    """Stored totals plus the per-line tax breakdown."""
    from campstay.domain.errors import BookingNotFoundError
    from campstay.domain.tax import calculate_booking_tax
    from campstay.infra.db import txn
    from campstay.infra.repositories.bookings_repository import get_booking

    with txn() as cur:
        booking = get_booking(cur, booking_id)
        if booking is None:
            raise BookingNotFoundError(booking_id)
        breakdown = calculate_booking_tax(cur, booking_id)

    return {
        "booking_id": booking_id,
        "tax_invoice_required": booking["tax_invoice_required"],
        "subtotal_amount": booking["subtotal_amount"],
        "tax_amount": booking["tax_amount"],
        "total_amount": booking["total_amount"],
        "deposit_due": booking["deposit_due"],
        "balance_due": booking["balance_due"],
        "tax_breakdown": breakdown.to_dict(),
    }


@router.get("/{booking_id}/history")
def get_history(
    booking_id: UuidStr = Path(..., description="Booking UUID"),
) -> list[dict]:
    """Audit entries of a booking, oldest first."""
    from campstay.domain.errors import BookingNotFoundError
    from campstay.infra.db import txn
    from campstay.infra.repositories.bookings_repository import get_booking
    from campstay.infra.repositories.history_repository import list_history

    with txn() as cur:
        if get_booking(cur, booking_id) is None:
            raise BookingNotFoundError(booking_id)
        return list_history(cur, booking_id)
