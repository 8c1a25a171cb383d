"""Pricing repository - rate rows and calendar events for a unit.

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

import json
from decimal import Decimal

from psycopg2.extensions import cursor as PgCursor

from campstay.domain.pricing import (
    EventPricingType,
    PricingEvent,
    PricingMode,
    Rate,
    YieldThreshold,
)


def _parse_thresholds(raw) -> tuple[YieldThreshold, ...]:
    if not raw:
        return ()
    if isinstance(raw, str):
        raw = json.loads(raw)
    return tuple(
        YieldThreshold(stock=int(t["stock"]), rate_adjustment=Decimal(str(t["rate_adjustment"])))
        for t in raw
    )


def fetch_unit_events(cur: PgCursor, *, unit_id: str) -> list[PricingEvent]:
    """Load available events attached to a unit, most recently attached first.

    Args:
        cur: Database cursor.
        unit_id: Accommodation unit id.

    Returns:
        List of PricingEvent ordered by attached_at DESC.
    """
    cur.execute(
        """
        SELECT e.id, e.name, e.rule_kind, e.start_date, e.end_date,
               e.days_of_week, ue.attached_at, e.pricing_type,
               e.dynamic_pricing_value, e.dynamic_pricing_mode,
               e.yield_thresholds
        FROM unit_events ue
        JOIN pricing_events e ON e.id = ue.event_id
        WHERE ue.unit_id = %s
          AND e.status = 'available'
        ORDER BY ue.attached_at DESC
        """,
        (unit_id,),
    )
    rows = cur.fetchall()
    return [
        PricingEvent(
            id=str(r[0]),
            name=r[1],
            rule_kind=r[2],
            start_date=r[3],
            end_date=r[4],
            days_of_week=tuple(r[5] or ()),
            attached_at=r[6],
            pricing_type=EventPricingType(r[7] or EventPricingType.NEW_PRICE.value),
            dynamic_value=Decimal(str(r[8])) if r[8] is not None else None,
            dynamic_mode=r[9],
            yield_thresholds=_parse_thresholds(r[10]),
        )
        for r in rows
    ]


def fetch_unit_rates(
    cur: PgCursor,
    *,
    unit_id: str,
    parameter_ids: list[str],
) -> tuple[dict[str, Rate], dict[str, dict[str, Rate]]]:
    """Load base and event rates for the requested parameters of a unit.

    Returns:
        Tuple of (base_rates, event_rates):
        - base_rates: {parameter_id: Rate} for rows with event_id NULL.
        - event_rates: {event_id: {parameter_id: Rate}}.
    """
    base_rates: dict[str, Rate] = {}
    event_rates: dict[str, dict[str, Rate]] = {}
    if not parameter_ids:
        return base_rates, event_rates

    cur.execute(
        """
        SELECT parameter_id, event_id, amount, pricing_mode
        FROM pricing_rates
        WHERE unit_id = %s
          AND parameter_id = ANY(%s::uuid[])
        """,
        (unit_id, list(parameter_ids)),
    )
    for parameter_id, event_id, amount, pricing_mode in cur.fetchall():
        rate = Rate(
            amount=int(amount),
            pricing_mode=PricingMode(pricing_mode or PricingMode.PER_PERSON.value),
        )
        if event_id is None:
            base_rates[str(parameter_id)] = rate
        else:
            event_rates.setdefault(str(event_id), {})[str(parameter_id)] = rate
    return base_rates, event_rates
