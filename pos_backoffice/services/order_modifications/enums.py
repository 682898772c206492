"""Status and type enums for order amendments and fulfillment.

This module defines the order, amendment, line-change, fulfillment and
shipment enums together with the amendment status transition table used
by the amendment state machine.
"""

from enum import Enum
from typing import Dict, Set


class OrderStatus(str, Enum):
    """Order lifecycle status as owned by order capture.

    Amendments and fulfillment operations are accepted only while the order
    is still open (PENDING, CONFIRMED or PROCESSING).
    """

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    def is_modifiable(self) -> bool:
        """Check if the order still accepts amendments and fulfillment updates."""
        return self in {
            OrderStatus.PENDING,
            OrderStatus.CONFIRMED,
            OrderStatus.PROCESSING,
        }


class AmendmentType(str, Enum):
    """Kind of change an amendment records."""

    ITEM_ADDED = "item_added"
    ITEM_REMOVED = "item_removed"
    ITEM_MODIFIED = "item_modified"
    QUANTITY_CHANGED = "quantity_changed"
    PRICE_CHANGED = "price_changed"
    DISCOUNT_CHANGED = "discount_changed"
    FULFILLMENT_UPDATED = "fulfillment_updated"
    ORDER_CANCELLED = "order_cancelled"
    ORDER_REINSTATED = "order_reinstated"


class AmendmentStatus(str, Enum):
    """Amendment lifecycle status with state machine transitions.

    Valid transitions:
    - DRAFT -> PENDING_APPROVAL, APPROVED (no approval required)
    - PENDING_APPROVAL -> APPROVED, REJECTED
    - APPROVED -> APPLIED
    - REJECTED -> (terminal state)
    - APPLIED -> (terminal state)
    - CANCELLED -> (terminal state)

    DRAFT only exists while an amendment is being created and is never
    committed. CANCELLED is kept for audit compatibility; no operation
    enters it.
    """

    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    APPLIED = "applied"
    CANCELLED = "cancelled"

    def is_terminal(self) -> bool:
        """Check if status is a terminal state."""
        return self in {
            AmendmentStatus.REJECTED,
            AmendmentStatus.APPLIED,
            AmendmentStatus.CANCELLED,
        }


class ChangeType(str, Enum):
    """Per-line delta recorded on an amendment item."""

    ADD = "add"
    REMOVE = "remove"
    MODIFY = "modify"


class PriceSource(str, Enum):
    """Where the applied unit price of an amendment line came from."""

    QUOTE = "quote"
    CATALOG = "catalog"
    ORDER = "order"
    OVERRIDE = "override"


class ItemFulfillmentStatus(str, Enum):
    """Fulfillment status of a single order line, derived from its counters."""

    PENDING = "pending"
    PARTIALLY_SHIPPED = "partially_shipped"
    SHIPPED = "shipped"
    BACKORDERED = "backordered"
    CANCELLED = "cancelled"


class ShipmentStatus(str, Enum):
    """Shipment status. Only SHIPPED is produced by this service."""

    PENDING = "pending"
    SHIPPED = "shipped"
    DELIVERED = "delivered"


class FulfillmentSummaryStatus(str, Enum):
    """Aggregate fulfillment status of an order."""

    PENDING = "pending"
    PARTIAL = "partial"
    COMPLETE = "complete"


# State transition validation rules
AMENDMENT_STATUS_TRANSITIONS: Dict[AmendmentStatus, Set[AmendmentStatus]] = {
    AmendmentStatus.DRAFT: {
        AmendmentStatus.PENDING_APPROVAL,
        AmendmentStatus.APPROVED,
    },
    AmendmentStatus.PENDING_APPROVAL: {
        AmendmentStatus.APPROVED,
        AmendmentStatus.REJECTED,
    },
    AmendmentStatus.APPROVED: {
        AmendmentStatus.APPLIED,
    },
    AmendmentStatus.REJECTED: set(),
    AmendmentStatus.APPLIED: set(),
    AmendmentStatus.CANCELLED: set(),
}


def validate_amendment_transition(
    current: AmendmentStatus, target: AmendmentStatus
) -> bool:
    """Check whether moving an amendment from ``current`` to ``target`` is allowed."""
    return target in AMENDMENT_STATUS_TRANSITIONS.get(current, set())


def get_allowed_amendment_transitions(
    current: AmendmentStatus,
) -> Set[AmendmentStatus]:
    return set(AMENDMENT_STATUS_TRANSITIONS.get(current, set()))
