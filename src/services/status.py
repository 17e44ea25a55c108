"""
Canonical order status.

Raw status text comes from whoever last wrote the order row (this app, the
fulfillment side, older data). `normalize` is the only place that reads it;
everything else works with OrderStatus.
"""

from enum import Enum


class OrderStatus(Enum):
    TO_SHIP = "To Ship"
    OUT_FOR_DELIVERY = "Out for Delivery"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"

    @property
    def display(self) -> str:
        return self.value

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.COMPLETED, OrderStatus.CANCELLED)


_ALIASES = {
    "cancelled": OrderStatus.CANCELLED,
    "canceled": OrderStatus.CANCELLED,
    "completed": OrderStatus.COMPLETED,
    "ship": OrderStatus.OUT_FOR_DELIVERY,
    "shipped": OrderStatus.OUT_FOR_DELIVERY,
    "delivering": OrderStatus.OUT_FOR_DELIVERY,
    "out for delivery": OrderStatus.OUT_FOR_DELIVERY,
}

# raw value this app writes when it cancels
CANCELLED_RAW = "Cancelled"


def normalize(raw_status) -> OrderStatus:
    """
    Map any raw status to an OrderStatus. Never raises.
    Unknown text, None and the initial "Pending" all mean TO_SHIP.
    """
    if not isinstance(raw_status, str):
        return OrderStatus.TO_SHIP
    key = " ".join(raw_status.split()).lower()
    return _ALIASES.get(key, OrderStatus.TO_SHIP)


def display(raw_status) -> str:
    return normalize(raw_status).display


def can_cancel(raw_status) -> bool:
    return normalize(raw_status) is OrderStatus.TO_SHIP
