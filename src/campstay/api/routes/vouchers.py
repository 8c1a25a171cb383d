"""Voucher preview endpoint.

Validates a code against a prospective charge without consuming a use and
without locking the voucher row.
"""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter
from pydantic import BaseModel, ConfigDict, Field

from campstay.api.ids import UuidStr
from campstay.domain.vouchers import ApplicationType

router = APIRouter(prefix="/vouchers", tags=["vouchers"])


class VoucherPreviewRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    code: str = Field(..., min_length=1)
    zone_id: UuidStr | None = None
    total_amount: int = Field(..., ge=0)
    application_type: ApplicationType = ApplicationType.ACCOMMODATION
    item_id: UuidStr | None = None
    check_in: date | None = None


@router.post("/validate")
def validate_voucher_code(body: VoucherPreviewRequest) -> dict:
    """Return the discount a code would give, or why it is rejected.

    A rejection is a 200 with ``valid: false``; only commit paths turn it
    into an error.
    """
    from campstay.domain.vouchers import VoucherContext, validate_voucher
    from campstay.infra.db import txn

    context = VoucherContext(
        zone_id=body.zone_id,
        total_amount=body.total_amount,
        application_type=body.application_type,
        item_id=body.item_id,
        check_in=body.check_in,
    )
    with txn() as cur:
        result = validate_voucher(cur, body.code, context)

    return result.to_dict()
