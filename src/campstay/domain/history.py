"""Audit descriptions for booking mutations.

Only the human-readable strings are built here; storage is the history
repository's job.
"""

from __future__ import annotations

from datetime import date
from enum import Enum


class HistoryAction(str, Enum):
    TENT_ADDED = "tent_added"
    TENT_UPDATED = "tent_updated"
    TENT_REMOVED = "tent_removed"
    PRODUCT_ADDED = "product_added"
    PRODUCT_UPDATED = "product_updated"
    PRODUCT_CANCELLED = "product_cancelled"
    PRODUCT_REMOVED = "product_removed"
    ADDITIONAL_COST_ADDED = "additional_cost_added"
    ADDITIONAL_COST_UPDATED = "additional_cost_updated"
    ADDITIONAL_COST_REMOVED = "additional_cost_removed"
    VOUCHER_APPLIED = "voucher_applied"
    VOUCHER_REMOVED = "voucher_removed"
    TAX_INVOICE_TOGGLED = "tax_invoice_toggled"
    TOTALS_RECALCULATED = "totals_recalculated"


def format_amount(amount: int) -> str:
    return f"{amount:,}"


def _stay(check_in: date, check_out: date) -> str:
    return f"{check_in.isoformat()} to {check_out.isoformat()}"


def tent_added(unit_name: str, check_in: date, check_out: date, subtotal: int) -> str:
    return f"Added tent {unit_name} ({_stay(check_in, check_out)}, {format_amount(subtotal)})"


def tent_updated(
    unit_name: str,
    *,
    old_stay: tuple[date, date],
    new_stay: tuple[date, date],
    old_subtotal: int,
    new_subtotal: int,
) -> str:
    changes = []
    if old_stay != new_stay:
        changes.append(f"dates {_stay(*old_stay)} → {_stay(*new_stay)}")
    if old_subtotal != new_subtotal:
        changes.append(f"subtotal {format_amount(old_subtotal)} → {format_amount(new_subtotal)}")
    if not changes:
        return f"Updated tent {unit_name}"
    return f"Updated tent {unit_name}: " + "; ".join(changes)


def tent_removed(unit_name: str, check_in: date, check_out: date) -> str:
    return f"Removed tent {unit_name} ({_stay(check_in, check_out)})"


def product_added(name: str, quantity: int, amount: int) -> str:
    return f"Added product: {name} x{quantity} ({format_amount(amount)})"


def product_updated(name: str, old_quantity: int, new_quantity: int) -> str:
    return f"Updated quantity: {name} ({old_quantity} → {new_quantity})"


def product_cancelled(name: str, quantity: int, reason: str | None) -> str:
    suffix = f" - Reason: {reason}" if reason else ""
    return f"Cancelled product: {name} x{quantity}{suffix}"


def product_removed(name: str, quantity: int) -> str:
    return f"Removed product: {name} x{quantity}"


def additional_cost_added(name: str, quantity: int, amount: int) -> str:
    return f"Added additional cost: {name} x{quantity} ({format_amount(amount)})"


def additional_cost_updated(name: str, old_amount: int, new_amount: int) -> str:
    return (
        f"Updated additional cost: {name} "
        f"({format_amount(old_amount)} → {format_amount(new_amount)})"
    )


def additional_cost_removed(name: str, amount: int) -> str:
    return f"Removed additional cost: {name} ({format_amount(amount)})"


def voucher_applied(code: str, line_label: str, discount_amount: int) -> str:
    return f"Applied voucher {code} to {line_label} (-{format_amount(discount_amount)})"


def voucher_removed(code: str, line_label: str) -> str:
    return f"Removed voucher {code} from {line_label}"


def tax_invoice_toggled(required: bool) -> str:
    return "VAT invoice enabled" if required else "VAT invoice disabled"


def totals_recalculated(old_total: int, new_total: int) -> str:
    if old_total == new_total:
        return f"Recalculated totals (unchanged, {format_amount(new_total)})"
    return f"Recalculated totals ({format_amount(old_total)} → {format_amount(new_total)})"
