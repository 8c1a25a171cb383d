"""Voucher and discount validation.

A voucher is checked against a charge context with a fixed, ordered list of
rules; the first failing rule decides the rejection reason, so the same input
always yields the same message:

1. code exists (case-insensitive exact match)
2. status is active
3. usage cap not reached
4. recurrence window (date_range / one_time)
5. check-in weekday allowed
6. zone matches
7. application type matches (accommodation vs menu)
8. item allow-list (empty list = every item)

Validation never consumes a use. ``consume_voucher`` is the only place that
increments ``current_uses`` and it does so with one conditional UPDATE, so two
concurrent redemptions of a one-time voucher cannot both succeed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum

from psycopg2.extensions import cursor as PgCursor

from campstay.domain.calendar import weekday_index
from campstay.domain.errors import VoucherRejectedError
from campstay.domain.money import percent_of, round_half_up
from campstay.observability.logging import get_logger

logger = get_logger(__name__)


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class Recurrence(str, Enum):
    ALWAYS = "always"
    DATE_RANGE = "date_range"
    ONE_TIME = "one_time"
    WEEKLY_DAYS = "weekly_days"


class ApplicationType(str, Enum):
    ACCOMMODATION = "accommodation"
    MENU = "menu"
    ALL = "all"


class DiscountScope(str, Enum):
    """Where a discount applies. Per-item discounts are always pre-tax."""

    PER_BOOKING_BEFORE_TAX = "per_booking_before_tax"
    PER_BOOKING_AFTER_TAX = "per_booking_after_tax"
    PER_ITEM = "per_item"

    @classmethod
    def from_columns(cls, apply_type: str, apply_after_tax: bool) -> "DiscountScope":
        if apply_type == "per_item":
            if apply_after_tax:
                raise ValueError("per_item vouchers cannot apply after tax")
            return cls.PER_ITEM
        if apply_type == "per_booking":
            return cls.PER_BOOKING_AFTER_TAX if apply_after_tax else cls.PER_BOOKING_BEFORE_TAX
        raise ValueError(f"Unknown apply_type: {apply_type}")

    @property
    def applies_after_tax(self) -> bool:
        return self is DiscountScope.PER_BOOKING_AFTER_TAX


class RejectionReason(str, Enum):
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    EXHAUSTED = "exhausted"
    NOT_STARTED = "not_started"
    EXPIRED = "expired"
    ALREADY_USED = "already_used"
    WEEKDAY_NOT_ALLOWED = "weekday_not_allowed"
    WRONG_ZONE = "wrong_zone"
    WRONG_APPLICATION = "wrong_application"
    ITEM_NOT_ELIGIBLE = "item_not_eligible"


REJECTION_MESSAGES: dict[RejectionReason, str] = {
    RejectionReason.NOT_FOUND: "Voucher code is not valid",
    RejectionReason.INACTIVE: "Voucher is paused",
    RejectionReason.EXHAUSTED: "Voucher has no uses left",
    RejectionReason.NOT_STARTED: "Voucher is not valid yet",
    RejectionReason.EXPIRED: "Voucher has expired",
    RejectionReason.ALREADY_USED: "Voucher has already been used",
    RejectionReason.WEEKDAY_NOT_ALLOWED: "Voucher does not apply to this check-in day",
    RejectionReason.WRONG_ZONE: "Voucher does not apply to this zone",
    RejectionReason.WRONG_APPLICATION: "Voucher does not apply to this kind of charge",
    RejectionReason.ITEM_NOT_ELIGIBLE: "Voucher does not apply to this item",
}


@dataclass(frozen=True)
class Voucher:
    id: str
    code: str | None
    name: str
    zone_id: str | None
    discount_type: DiscountType
    value: Decimal
    scope: DiscountScope
    recurrence: Recurrence
    application_type: ApplicationType
    status: str
    current_uses: int = 0
    max_uses: int | None = None
    start_date: date | None = None
    end_date: date | None = None
    weekly_days: tuple[int, ...] = ()
    item_ids: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class VoucherContext:
    """The charge a voucher is being checked against."""

    zone_id: str | None
    total_amount: int
    application_type: ApplicationType
    item_id: str | None = None
    check_in: date | None = None


@dataclass(frozen=True)
class VoucherValidation:
    valid: bool
    code: str
    voucher_id: str | None = None
    discount_amount: int = 0
    discount_type: DiscountType | None = None
    discount_value: Decimal = Decimal(0)
    scope: DiscountScope | None = None
    reason: RejectionReason | None = None

    @property
    def message(self) -> str | None:
        return REJECTION_MESSAGES[self.reason] if self.reason else None

    def raise_if_invalid(self) -> "VoucherValidation":
        if not self.valid:
            raise VoucherRejectedError(
                voucher_code=self.code, reason=self.reason.value, message=self.message
            )
        return self

    def to_dict(self) -> dict:
        if not self.valid:
            return {"valid": False, "code": self.code, "reason": self.reason.value, "message": self.message}
        return {
            "valid": True,
            "code": self.code,
            "voucher_id": self.voucher_id,
            "discount_amount": self.discount_amount,
            "discount_type": self.discount_type.value,
            "discount_value": str(self.discount_value),
            "scope": self.scope.value,
        }


def compute_discount(discount_type: DiscountType | str, value: Decimal, total_amount: int) -> int:
    """Discount on a charge, clamped to [0, total_amount]."""
    discount_type = DiscountType(discount_type)
    if total_amount <= 0:
        return 0
    if discount_type == DiscountType.PERCENTAGE:
        discount = percent_of(total_amount, value)
    else:
        discount = round_half_up(Decimal(value))
    return max(0, min(discount, total_amount))


def line_discount(
    discount_type: DiscountType | str,
    value: Decimal,
    scope: DiscountScope | str | None,
    *,
    line_amount: int,
    line_tax: int = 0,
) -> int:
    """Discount stored on a line, always a pre-tax reduction of that line.

    An after-tax voucher is measured against the gross (line + its tax) and
    then clamped to the line amount, so the stored discount never exceeds the
    charge it reduces.
    """
    if scope is not None and DiscountScope(scope).applies_after_tax:
        return min(compute_discount(discount_type, value, line_amount + line_tax), line_amount)
    return compute_discount(discount_type, value, line_amount)


def _reject(code: str, reason: RejectionReason) -> VoucherValidation:
    return VoucherValidation(valid=False, code=code, reason=reason)


def evaluate_voucher(
    voucher: Voucher | None,
    context: VoucherContext,
    *,
    code: str,
    today: date,
) -> VoucherValidation:
    """Run the ordered eligibility rules on an already loaded voucher."""
    if voucher is None:
        return _reject(code, RejectionReason.NOT_FOUND)

    if voucher.status != "active":
        return _reject(code, RejectionReason.INACTIVE)

    if voucher.max_uses is not None and voucher.current_uses >= voucher.max_uses:
        return _reject(code, RejectionReason.EXHAUSTED)

    if voucher.recurrence == Recurrence.DATE_RANGE:
        if voucher.start_date is not None and today < voucher.start_date:
            return _reject(code, RejectionReason.NOT_STARTED)
        if voucher.end_date is not None and today > voucher.end_date:
            return _reject(code, RejectionReason.EXPIRED)
    elif voucher.recurrence == Recurrence.ONE_TIME:
        if voucher.current_uses > 0:
            return _reject(code, RejectionReason.ALREADY_USED)

    if voucher.weekly_days and context.check_in is not None:
        if weekday_index(context.check_in) not in voucher.weekly_days:
            return _reject(code, RejectionReason.WEEKDAY_NOT_ALLOWED)

    if voucher.zone_id is not None and voucher.zone_id != context.zone_id:
        return _reject(code, RejectionReason.WRONG_ZONE)

    if voucher.application_type not in (ApplicationType.ALL, context.application_type):
        return _reject(code, RejectionReason.WRONG_APPLICATION)

    if voucher.item_ids and context.item_id not in voucher.item_ids:
        return _reject(code, RejectionReason.ITEM_NOT_ELIGIBLE)

    return VoucherValidation(
        valid=True,
        code=voucher.code or code,
        voucher_id=voucher.id,
        discount_amount=compute_discount(voucher.discount_type, voucher.value, context.total_amount),
        discount_type=voucher.discount_type,
        discount_value=voucher.value,
        scope=voucher.scope,
    )


def validate_voucher(
    cur: PgCursor,
    code: str,
    context: VoucherContext,
    *,
    lock: bool = False,
    today: date | None = None,
) -> VoucherValidation:
    """Look up a voucher by code and validate it against a charge.

    Args:
        cur: Database cursor.
        code: Code as typed by the guest or staff.
        context: Charge context.
        lock: Lock the voucher row (commit path). Preview calls leave it False.
        today: Date for the validity window (defaults to local_today()).

    Returns:
        VoucherValidation. Rejections are results, not exceptions.
    """
    from campstay.infra.repositories.vouchers_repository import fetch_voucher_by_code
    from campstay.infra.time import local_today

    code = (code or "").strip()
    if not code:
        return _reject(code, RejectionReason.NOT_FOUND)

    voucher = fetch_voucher_by_code(cur, code=code, lock=lock)
    result = evaluate_voucher(voucher, context, code=code, today=today or local_today())

    if not result.valid:
        logger.info(
            "voucher rejected",
            extra={
                "extra_fields": {
                    "voucher_code": code,
                    "reason": result.reason.value,
                    "application_type": context.application_type.value,
                    "zone_id": context.zone_id,
                    "item_id": context.item_id,
                },
            },
        )
    return result


def consume_voucher(cur: PgCursor, *, voucher_id: str) -> bool:
    """Atomically take one use of a voucher. False if it was used up meanwhile."""
    from campstay.infra.repositories.vouchers_repository import increment_voucher_uses

    consumed = increment_voucher_uses(cur, voucher_id=voucher_id)
    if not consumed:
        logger.warning(
            "voucher consumption lost race",
            extra={"extra_fields": {"voucher_id": voucher_id}},
        )
    return consumed


def consume_or_reject(cur: PgCursor, validation: VoucherValidation) -> None:
    """Consume a validated voucher, raising VoucherRejectedError if none is left."""
    if not consume_voucher(cur, voucher_id=validation.voucher_id):
        reason = RejectionReason.ALREADY_USED
        raise VoucherRejectedError(
            voucher_code=validation.code,
            reason=reason.value,
            message=REJECTION_MESSAGES[reason],
        )


def best_automatic_discount(
    cur: PgCursor,
    context: VoucherContext,
    *,
    today: date | None = None,
) -> VoucherValidation | None:
    """Largest eligible code-less discount for the context's zone, if any."""
    from campstay.infra.repositories.vouchers_repository import fetch_automatic_vouchers
    from campstay.infra.time import local_today

    today = today or local_today()
    best: VoucherValidation | None = None
    for voucher in fetch_automatic_vouchers(cur, zone_id=context.zone_id):
        result = evaluate_voucher(voucher, context, code=voucher.name, today=today)
        if result.valid and (best is None or result.discount_amount > best.discount_amount):
            best = result
    return best
