"""Quote preview endpoint.

Read-only: prices a prospective stay without locking anything. The numbers
may be stale by the time a booking is committed; the commit path re-prices
independently.
"""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter
from pydantic import BaseModel, ConfigDict, Field

from campstay.api.ids import UuidStr
from campstay.observability.logging import get_logger

router = APIRouter(prefix="/quotes", tags=["quotes"])

logger = get_logger(__name__)


class QuoteRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    unit_id: UuidStr
    check_in: date
    check_out: date
    parameter_quantities: dict[UuidStr, int] = Field(..., min_length=1)
    voucher_code: str | None = None


@router.post("")
def create_quote(body: QuoteRequest) -> dict:
    """Price a stay: nightly breakdown, mode-aware lines, discounts.

    Returns the resolver output, the item lines with their charged totals,
    the stay subtotal, availability, the voucher preview (when a code is
    given) and the best automatic discount of the unit's zone.
    """
    from campstay.domain.availability import check_availability
    from campstay.domain.errors import InvalidDateRangeError, UnitNotFoundError
    from campstay.domain.pricing import build_item_lines, resolve_pricing
    from campstay.domain.vouchers import (
        ApplicationType,
        VoucherContext,
        best_automatic_discount,
        validate_voucher,
    )
    from campstay.infra.db import txn
    from campstay.infra.repositories.bookings_repository import get_unit

    if body.check_in >= body.check_out:
        raise InvalidDateRangeError(body.check_in, body.check_out)

    with txn() as cur:
        unit = get_unit(cur, body.unit_id)
        if unit is None:
            raise UnitNotFoundError(body.unit_id)

        availability = check_availability(
            cur,
            unit_id=body.unit_id,
            check_in=body.check_in,
            check_out=body.check_out,
        )
        resolution = resolve_pricing(
            cur,
            unit_id=body.unit_id,
            check_in=body.check_in,
            check_out=body.check_out,
            parameter_quantities=body.parameter_quantities,
        )
        lines, subtotal = build_item_lines(resolution, body.parameter_quantities)

        context = VoucherContext(
            zone_id=unit["zone_id"],
            total_amount=subtotal,
            application_type=ApplicationType.ACCOMMODATION,
            item_id=body.unit_id,
            check_in=body.check_in,
        )
        voucher = validate_voucher(cur, body.voucher_code, context) if body.voucher_code else None
        automatic = best_automatic_discount(cur, context)

    logger.info(
        "quote computed",
        extra={
            "extra_fields": {
                "unit_id": body.unit_id,
                "nights": resolution.nights,
                "subtotal": subtotal,
                "available": availability.available,
                "voucher_valid": voucher.valid if voucher else None,
            },
        },
    )

    return {
        "unit_id": body.unit_id,
        "check_in": body.check_in.isoformat(),
        "check_out": body.check_out.isoformat(),
        "availability": availability.to_dict(),
        **resolution.to_dict(),
        "lines": [
            {
                "parameter_id": line.parameter_id,
                "quantity": line.quantity,
                "unit_price": line.unit_price,
                "pricing_mode": line.pricing_mode.value,
                "total": line.total,
            }
            for line in lines
        ],
        "subtotal": subtotal,
        "voucher": voucher.to_dict() if voucher else None,
        "automatic_discount": automatic.to_dict() if automatic else None,
    }
