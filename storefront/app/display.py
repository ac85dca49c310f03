from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, List, Optional, Union

from .models import (
    MULTIPLE_ACCOUNTS_KEY,
    PAYMENT_METHOD_KEY,
    Order,
    OrderItem,
)

DEFAULT_REJECTION_REASON = "Order rejected by admin"

STATUS_BADGES = {
    "pending": "Pending",
    "processing": "Processing",
    "approved": "Approved",
    "rejected": "Rejected",
}


def order_label(order: Order) -> str:
    """Invoice number when the store assigned one, else a short id."""
    if order.invoice_number:
        return order.invoice_number
    return f"#{order.id[:8]}"


def status_badge(status: str) -> str:
    return STATUS_BADGES.get(status, status.title())


def _parse_timestamp(value: Union[str, datetime]) -> datetime:
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def time_ago(created_at: Union[str, datetime], now: Optional[datetime] = None) -> str:
    now = _parse_timestamp(now or datetime.now(timezone.utc))
    seconds = int((now - _parse_timestamp(created_at)).total_seconds())

    if seconds < 60:
        return "New"
    if seconds < 3600:
        minutes = seconds // 60
        return f"{minutes} min{'s' if minutes > 1 else ''} ago"
    if seconds < 86400:
        hours = seconds // 3600
        return f"{hours} hour{'s' if hours > 1 else ''} ago"
    days = seconds // 86400
    return f"{days} day{'s' if days > 1 else ''} ago"


def _matches(query: str, *values) -> bool:
    return any(query in str(v).lower() for v in values)


def filter_orders(orders: Iterable[Order], query: str) -> List[Order]:
    """Operator search over order id and the customer's identity fields."""
    query = query.strip().lower()
    orders = list(orders)
    if not query:
        return orders

    found = []
    for order in orders:
        if query in order.id.lower():
            found.append(order)
            continue

        info = order.customer_info or {}
        groups = info.get(MULTIPLE_ACCOUNTS_KEY)
        if isinstance(groups, list):
            hit = any(
                _matches(query, g.get("game", ""), g.get("package", ""))
                or any(_matches(query, k, v) for k, v in (g.get("fields") or {}).items())
                for g in groups
                if isinstance(g, dict)
            )
        else:
            # The payment method label is the same on most orders; not useful to search.
            hit = any(
                _matches(query, k, v)
                for k, v in info.items()
                if k != PAYMENT_METHOD_KEY
            )
        if hit:
            found.append(order)
    return found


def compose_rejection_reason(preset: str = "", custom: str = "") -> str:
    """Joins a predefined reason with the operator's own words."""
    preset, custom = preset.strip(), custom.strip()
    if preset and custom:
        return f"{preset} - {custom}"
    return preset or custom or DEFAULT_REJECTION_REASON


def aggregate_order_items(items: Iterable[OrderItem]) -> List[OrderItem]:
    """
    Merges identical line items (same product, variation, add-ons and unit
    price) into one entry with the summed quantity. Orders store a purchase
    of N units as N quantity-one lines; this puts them back together for
    display.
    """
    merged = {}
    for item in items:
        add_ons = ",".join(sorted(f"{a.id}:{a.quantity}" for a in item.selected_add_ons))
        variation = item.selected_variation
        key = (
            item.name,
            variation.id if variation else "",
            add_ons,
            item.total_price,
        )
        existing = merged.get(key)
        if existing is None:
            merged[key] = item.model_copy(update={"quantity": item.quantity})
        else:
            existing.quantity += item.quantity
    return list(merged.values())
