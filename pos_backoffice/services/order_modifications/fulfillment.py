"""
Fulfillment tracking rules.

Every order line keeps three counters next to its ordered quantity:
fulfilled (shipped), backordered and cancelled. Their sum never exceeds the
ordered quantity. The functions here mutate in-memory lines and derive line
and order level status; the service persists the result.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from pos_backoffice.services.order_modifications.enums import (
    FulfillmentSummaryStatus,
    ItemFulfillmentStatus,
)
from pos_backoffice.services.order_modifications.exceptions import ChangeValidationError


@dataclass(frozen=True)
class ShipmentLine:
    order_item_id: int
    quantity_shipped: int
    serial_numbers: Optional[list[str]] = field(default=None, hash=False)


@dataclass(frozen=True)
class BackorderLine:
    order_item_id: int
    quantity: int


def check_invariant(item: Any) -> None:
    """
    Raises:
        ChangeValidationError: If the line's counters exceed its quantity
    """
    committed = item.quantity_fulfilled + item.quantity_backordered + item.quantity_cancelled
    if min(item.quantity_fulfilled, item.quantity_backordered, item.quantity_cancelled) < 0:
        raise ChangeValidationError(
            "Fulfillment counters cannot be negative",
            order_item_id=item.id,
        )
    if committed > item.quantity:
        raise ChangeValidationError(
            "Fulfilled, backordered and cancelled units exceed the ordered quantity",
            order_item_id=item.id,
            quantity=item.quantity,
            quantity_fulfilled=item.quantity_fulfilled,
            quantity_backordered=item.quantity_backordered,
            quantity_cancelled=item.quantity_cancelled,
        )


def derive_item_status(item: Any) -> ItemFulfillmentStatus:
    active = item.active_quantity
    if active <= 0:
        return ItemFulfillmentStatus.CANCELLED
    if item.quantity_fulfilled >= active:
        return ItemFulfillmentStatus.SHIPPED
    if item.quantity_backordered > 0:
        return ItemFulfillmentStatus.BACKORDERED
    if item.quantity_fulfilled > 0:
        return ItemFulfillmentStatus.PARTIALLY_SHIPPED
    return ItemFulfillmentStatus.PENDING


def record_shipment(item: Any, quantity_shipped: int) -> None:
    """
    Add shipped units to a line.

    Units ship out of the backorder first, so the backorder shrinks as far
    as needed to keep the counters within the ordered quantity.

    Raises:
        ChangeValidationError: If the quantity is not positive or more than
            the line still has to ship
    """
    if quantity_shipped <= 0:
        raise ChangeValidationError(
            "Shipped quantity must be positive",
            order_item_id=item.id,
            quantity_shipped=quantity_shipped,
        )
    shippable = item.shippable_quantity
    if quantity_shipped > shippable:
        raise ChangeValidationError(
            "Shipped quantity exceeds the unshipped quantity of the line",
            order_item_id=item.id,
            quantity_shipped=quantity_shipped,
            shippable=shippable,
        )

    item.quantity_fulfilled += quantity_shipped
    remaining = item.shippable_quantity
    item.quantity_backordered = min(item.quantity_backordered, remaining)
    check_invariant(item)
    item.fulfillment_status = derive_item_status(item)


def record_backorder(item: Any, quantity: int) -> None:
    """
    Add backordered units to a line.

    Raises:
        ChangeValidationError: If the quantity is not positive or would break
            the fulfillment invariant
    """
    if quantity <= 0:
        raise ChangeValidationError(
            "Backordered quantity must be positive",
            order_item_id=item.id,
            quantity=quantity,
        )
    available = (
        item.quantity
        - item.quantity_fulfilled
        - item.quantity_backordered
        - item.quantity_cancelled
    )
    if quantity > available:
        raise ChangeValidationError(
            "Backordered quantity exceeds the unallocated quantity of the line",
            order_item_id=item.id,
            quantity=quantity,
            available=available,
        )

    item.quantity_backordered += quantity
    check_invariant(item)
    item.fulfillment_status = derive_item_status(item)


def summarize(items: Iterable[Any]) -> dict[str, Any]:
    """
    Aggregate fulfillment counters for an order.

    ``pending`` counts units neither shipped nor cancelled, so backordered
    units are also pending. An order is complete once every ordered unit has
    shipped, so cancelled units keep it partial. The percentage is rounded
    half up and is 0 for an order without quantity.
    """
    items = list(items)
    total_quantity = sum(item.quantity for item in items)
    fulfilled = sum(item.quantity_fulfilled for item in items)
    backordered = sum(item.quantity_backordered for item in items)
    cancelled = sum(item.quantity_cancelled for item in items)
    pending = total_quantity - fulfilled - cancelled

    if total_quantity > 0 and fulfilled == total_quantity:
        status = FulfillmentSummaryStatus.COMPLETE
    elif fulfilled == 0:
        status = FulfillmentSummaryStatus.PENDING
    else:
        status = FulfillmentSummaryStatus.PARTIAL

    # Half-up rounding in integers.
    percent = (fulfilled * 200 + total_quantity) // (2 * total_quantity) if total_quantity else 0

    return {
        "total_items": len(items),
        "total_quantity": total_quantity,
        "fulfilled": fulfilled,
        "backordered": backordered,
        "cancelled": cancelled,
        "pending": pending,
        "fulfillment_percent": percent,
        "status": status,
    }
