"""Structured failures of the booking engine.

Every user- or operator-correctable failure is a typed exception carrying the
fields the UI needs (counts, reason codes, offending ids). Raising one inside a
mutation aborts the surrounding transaction; the API maps ``http_status`` and
``to_dict()`` straight onto the response.
"""

from __future__ import annotations

from datetime import date
from typing import Any


class BookingEngineError(Exception):
    """Base class for structured engine failures."""

    code = "engine_error"
    http_status = 400

    def __init__(self, message: str, **details: Any) -> None:
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.details}


class AvailabilityConflictError(BookingEngineError):
    """The unit has no spare capacity for the requested nights."""

    code = "availability_conflict"
    http_status = 409

    def __init__(
        self,
        *,
        unit_id: str,
        check_in: date,
        check_out: date,
        booked_count: int,
        capacity: int,
    ) -> None:
        super().__init__(
            f"Unit {unit_id} is fully booked ({booked_count}/{capacity}) "
            f"for {check_in} to {check_out}",
            unit_id=unit_id,
            check_in=check_in.isoformat(),
            check_out=check_out.isoformat(),
            booked_count=booked_count,
            capacity=capacity,
            available_count=max(capacity - booked_count, 0),
        )


class VoucherRejectedError(BookingEngineError):
    code = "voucher_rejected"
    http_status = 422

    def __init__(self, *, voucher_code: str, reason: str, message: str) -> None:
        self.reason = reason
        super().__init__(message, voucher_code=voucher_code, reason=reason)


class MissingPricingError(BookingEngineError):
    """A requested parameter has no event rate and no base rate."""

    code = "missing_pricing"
    http_status = 422

    def __init__(self, *, unit_id: str, parameter_id: str, night: date) -> None:
        self.parameter_id = parameter_id
        super().__init__(
            f"No pricing configured for parameter {parameter_id} on {night}",
            unit_id=unit_id,
            parameter_id=parameter_id,
            night=night.isoformat(),
        )


class InvalidDateRangeError(BookingEngineError):
    code = "invalid_dates"
    http_status = 422

    def __init__(self, check_in: date, check_out: date) -> None:
        super().__init__(
            "check_in must be before check_out",
            check_in=check_in.isoformat(),
            check_out=check_out.isoformat(),
        )


class InvalidLineError(BookingEngineError):
    code = "invalid_line"
    http_status = 422


class NotFoundError(BookingEngineError):
    code = "not_found"
    http_status = 404

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} not found", entity=entity, id=entity_id)


class BookingNotFoundError(NotFoundError):
    def __init__(self, booking_id: str) -> None:
        super().__init__("Booking", booking_id)


class UnitNotFoundError(NotFoundError):
    def __init__(self, unit_id: str) -> None:
        super().__init__("Accommodation unit", unit_id)


class MenuItemNotFoundError(NotFoundError):
    def __init__(self, menu_item_id: str) -> None:
        super().__init__("Menu item", menu_item_id)


class LineNotFoundError(NotFoundError):
    def __init__(self, line_kind: str, line_id: str) -> None:
        super().__init__(line_kind, line_id)


class BookingLockedError(BookingEngineError):
    """The booking is in a terminal status and its lines can no longer change."""

    code = "booking_locked"
    http_status = 409

    def __init__(self, booking_id: str, status: str) -> None:
        super().__init__(
            f"Booking is {status} and cannot be edited",
            booking_id=booking_id,
            status=status,
        )
