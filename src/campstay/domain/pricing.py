"""Nightly pricing resolver.

For one accommodation unit, a stay [check_in, check_out) and the requested
parameters (adult, child, ...), resolves the rate of every parameter on every
night and sums them into a stay amount per parameter.

Rate source is chosen per night:
1. Events attached to the unit are ordered by attachment time, newest first.
2. The first event whose calendar rule matches the night wins.
3. The winning event decides the amount for each parameter according to its
   pricing type; a ``new_price`` event without a rate for a parameter falls
   back to that parameter's base rate (event_id NULL).
4. No matching event → base rates.

The resolver is quantity-independent: it reports the amount of one unit of
each parameter. Applying the quantity (per_person) or not (per_group) is the
caller's job, see ``line_charge`` / ``build_item_lines``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Callable, Mapping

from psycopg2.extensions import cursor as PgCursor

from campstay.domain.calendar import iter_nights, weekday_index
from campstay.domain.errors import (
    InvalidDateRangeError,
    InvalidLineError,
    MissingPricingError,
)
from campstay.domain.money import percent_of, round_half_up
from campstay.observability.logging import get_logger

logger = get_logger(__name__)


class PricingMode(str, Enum):
    PER_PERSON = "per_person"
    PER_GROUP = "per_group"


class EventPricingType(str, Enum):
    NEW_PRICE = "new_price"
    BASE_PRICE = "base_price"
    DYNAMIC = "dynamic"
    YIELD = "yield"


@dataclass(frozen=True)
class Rate:
    amount: int
    pricing_mode: PricingMode = PricingMode.PER_PERSON


@dataclass(frozen=True)
class YieldThreshold:
    stock: int
    rate_adjustment: Decimal


@dataclass(frozen=True)
class PricingEvent:
    """A calendar rule attached to a unit.

    ``rule_kind`` is ``always`` or ``date_range``. A date range with no
    end_date is open-ended. ``days_of_week`` uses 0=Sunday .. 6=Saturday;
    empty means every day.
    """

    id: str
    name: str
    rule_kind: str
    attached_at: datetime
    start_date: date | None = None
    end_date: date | None = None
    days_of_week: tuple[int, ...] = ()
    pricing_type: EventPricingType = EventPricingType.NEW_PRICE
    dynamic_value: Decimal | None = None
    dynamic_mode: str | None = None
    yield_thresholds: tuple[YieldThreshold, ...] = ()

    def matches(self, night: date) -> bool:
        if self.rule_kind != "always":
            if self.start_date is None or night < self.start_date:
                return False
            if self.end_date is not None and night > self.end_date:
                return False
        if self.days_of_week and weekday_index(night) not in self.days_of_week:
            return False
        return True


@dataclass
class NightBreakdown:
    night: date
    event_id: str | None
    event_name: str | None
    amounts: dict[str, int] = field(default_factory=dict)
    pricing_modes: dict[str, PricingMode] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "date": self.night.isoformat(),
            "event_id": self.event_id,
            "event_name": self.event_name,
            "parameters": dict(self.amounts),
            "pricing_modes": {k: v.value for k, v in self.pricing_modes.items()},
        }


@dataclass
class PricingResolution:
    per_parameter_total: dict[str, int]
    pricing_modes: dict[str, PricingMode]
    nightly: list[NightBreakdown]

    @property
    def nights(self) -> int:
        return len(self.nightly)

    def to_dict(self) -> dict:
        return {
            "nights": self.nights,
            "parameter_pricing": dict(self.per_parameter_total),
            "pricing_modes": {k: v.value for k, v in self.pricing_modes.items()},
            "nightly_pricing": [n.to_dict() for n in self.nightly],
        }


@dataclass(frozen=True)
class ItemLine:
    """One charged parameter of a booking tent."""

    parameter_id: str
    quantity: int
    unit_price: int
    pricing_mode: PricingMode
    total: int


# ── Event selection and pricing types ─────────────────────


def select_event(events: list[PricingEvent], night: date) -> PricingEvent | None:
    """Most recently attached event whose rule matches the night."""
    for event in sorted(events, key=lambda e: e.attached_at, reverse=True):
        if event.matches(night):
            return event
    return None


def dynamic_amount(base_amount: int, value: Decimal, mode: str) -> int:
    """percent: base × (1 + value/100); fixed: base + value. Never below 0."""
    if mode == "percent":
        adjusted = base_amount + percent_of(base_amount, value)
    elif mode == "fixed":
        adjusted = round_half_up(Decimal(base_amount) + value)
    else:
        raise ValueError(f"Unknown dynamic pricing mode: {mode}")
    return max(adjusted, 0)


def find_yield_threshold(
    thresholds: tuple[YieldThreshold, ...], remaining: int
) -> YieldThreshold | None:
    """Threshold with the highest stock that is still <= the remaining stock."""
    crossed = [t for t in thresholds if t.stock <= remaining]
    if not crossed:
        return None
    return max(crossed, key=lambda t: t.stock)


def yield_amount(base_amount: int, thresholds: tuple[YieldThreshold, ...], remaining: int) -> int:
    threshold = find_yield_threshold(thresholds, remaining)
    if threshold is None:
        return base_amount
    return max(base_amount + percent_of(base_amount, threshold.rate_adjustment), 0)


def _event_rate(
    event: PricingEvent,
    *,
    parameter_id: str,
    base: Rate | None,
    event_rates: Mapping[str, Mapping[str, Rate]],
    night: date,
    stock_for_night: Callable[[date], int | None] | None,
) -> Rate | None:
    """Rate for one parameter on a night covered by ``event``."""
    if event.pricing_type == EventPricingType.NEW_PRICE:
        specific = event_rates.get(event.id, {}).get(parameter_id)
        if specific is None:
            return base
        # event rows carry only the amount; the mode is inherited from base
        mode = base.pricing_mode if base is not None else specific.pricing_mode
        return Rate(amount=specific.amount, pricing_mode=mode)

    if base is None:
        return None

    if event.pricing_type == EventPricingType.BASE_PRICE:
        return base

    if event.pricing_type == EventPricingType.DYNAMIC:
        if event.dynamic_value is None or not event.dynamic_mode:
            logger.warning(
                "dynamic event without value or mode, using base rate",
                extra={"extra_fields": {"event_id": event.id}},
            )
            return base
        return Rate(
            amount=dynamic_amount(base.amount, event.dynamic_value, event.dynamic_mode),
            pricing_mode=base.pricing_mode,
        )

    if event.pricing_type == EventPricingType.YIELD:
        remaining = stock_for_night(night) if stock_for_night is not None else None
        if remaining is None or not event.yield_thresholds:
            return base
        return Rate(
            amount=yield_amount(base.amount, event.yield_thresholds, remaining),
            pricing_mode=base.pricing_mode,
        )

    raise ValueError(f"Unknown event pricing type: {event.pricing_type}")


# ── Resolver ──────────────────────────────────────────────


def resolve_nightly_pricing(
    *,
    unit_id: str,
    check_in: date,
    check_out: date,
    parameter_quantities: Mapping[str, int],
    events: list[PricingEvent],
    base_rates: Mapping[str, Rate],
    event_rates: Mapping[str, Mapping[str, Rate]],
    stock_for_night: Callable[[date], int | None] | None = None,
) -> PricingResolution:
    """Resolve per-night, per-parameter amounts from pre-loaded rates.

    Raises:
        InvalidDateRangeError: If check_in >= check_out.
        MissingPricingError: If a requested parameter has neither an event
            rate nor a base rate on some night.
    """
    if check_in >= check_out:
        raise InvalidDateRangeError(check_in, check_out)

    totals: dict[str, int] = {p: 0 for p in parameter_quantities}
    modes: dict[str, PricingMode] = {}
    nightly: list[NightBreakdown] = []

    for night in iter_nights(check_in, check_out):
        event = select_event(events, night)
        breakdown = NightBreakdown(
            night=night,
            event_id=event.id if event else None,
            event_name=event.name if event else None,
        )

        for parameter_id in parameter_quantities:
            base = base_rates.get(parameter_id)
            if event is None:
                rate = base
            else:
                rate = _event_rate(
                    event,
                    parameter_id=parameter_id,
                    base=base,
                    event_rates=event_rates,
                    night=night,
                    stock_for_night=stock_for_night,
                )

            if rate is None:
                raise MissingPricingError(unit_id=unit_id, parameter_id=parameter_id, night=night)

            breakdown.amounts[parameter_id] = rate.amount
            breakdown.pricing_modes[parameter_id] = rate.pricing_mode
            modes.setdefault(parameter_id, rate.pricing_mode)
            totals[parameter_id] += rate.amount

        nightly.append(breakdown)

    return PricingResolution(per_parameter_total=totals, pricing_modes=modes, nightly=nightly)


def resolve_pricing(
    cur: PgCursor,
    *,
    unit_id: str,
    check_in: date,
    check_out: date,
    parameter_quantities: Mapping[str, int],
    exclude_booking_tent_id: str | None = None,
) -> PricingResolution:
    """Load the unit's events and rates and resolve the stay's pricing.

    Remaining stock is only looked up when a yield event actually covers a
    night, and at most once per night. When an existing tent is re-priced,
    exclude_booking_tent_id keeps it out of that stock count.
    """
    from campstay.domain.availability import remaining_stock
    from campstay.infra.repositories.pricing_repository import (
        fetch_unit_events,
        fetch_unit_rates,
    )

    _validate_quantities(parameter_quantities)
    if check_in >= check_out:
        raise InvalidDateRangeError(check_in, check_out)

    events = fetch_unit_events(cur, unit_id=unit_id)
    base_rates, event_rates = fetch_unit_rates(
        cur, unit_id=unit_id, parameter_ids=list(parameter_quantities)
    )

    stock_cache: dict[date, int | None] = {}

    def stock_for_night(night: date) -> int | None:
        if night not in stock_cache:
            stock_cache[night] = remaining_stock(
                cur,
                unit_id=unit_id,
                night=night,
                exclude_booking_tent_id=exclude_booking_tent_id,
            )
        return stock_cache[night]

    return resolve_nightly_pricing(
        unit_id=unit_id,
        check_in=check_in,
        check_out=check_out,
        parameter_quantities=parameter_quantities,
        events=events,
        base_rates=base_rates,
        event_rates=event_rates,
        stock_for_night=stock_for_night,
    )


# ── Mode-aware charging (caller side) ─────────────────────


def _validate_quantities(parameter_quantities: Mapping[str, int]) -> None:
    for parameter_id, quantity in parameter_quantities.items():
        if quantity < 0:
            raise InvalidLineError(
                "quantity must be >= 0", parameter_id=parameter_id, quantity=quantity
            )


def line_charge(pricing_mode: PricingMode | str, quantity: int, stay_amount: int) -> int:
    """Charge for one parameter over the whole stay.

    per_person multiplies the stay amount by the quantity; per_group charges
    the stay amount once for any non-zero quantity.
    """
    pricing_mode = PricingMode(pricing_mode)
    if quantity <= 0:
        return 0
    if pricing_mode == PricingMode.PER_PERSON:
        return stay_amount * quantity
    return stay_amount


def build_item_lines(
    resolution: PricingResolution,
    parameter_quantities: Mapping[str, int],
) -> tuple[list[ItemLine], int]:
    """Turn a resolution into chargeable lines and the tent subtotal.

    Parameters requested with quantity 0 are priced for display but produce
    no line.
    """
    lines: list[ItemLine] = []
    for parameter_id, quantity in parameter_quantities.items():
        if quantity <= 0:
            continue
        stay_amount = resolution.per_parameter_total[parameter_id]
        mode = resolution.pricing_modes[parameter_id]
        lines.append(
            ItemLine(
                parameter_id=parameter_id,
                quantity=quantity,
                unit_price=stay_amount,
                pricing_mode=mode,
                total=line_charge(mode, quantity, stay_amount),
            )
        )
    return lines, sum(line.total for line in lines)
