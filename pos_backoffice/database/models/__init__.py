"""
Database models package initialization.

Every model is imported here so it is registered with ``Base.metadata``
for Alembic and relationship resolution.
"""

from pos_backoffice.database.base import Base, BaseModel
from pos_backoffice.database.models.user import User, UserRole
from pos_backoffice.database.models.catalog import Product, Quote, QuoteItem
from pos_backoffice.database.models.order import Order, OrderItem, OrderSequence
from pos_backoffice.database.models.amendment import OrderAmendment, OrderAmendmentItem
from pos_backoffice.database.models.version import OrderVersion
from pos_backoffice.database.models.shipment import OrderShipment, OrderShipmentItem

__all__ = [
    "Base",
    "BaseModel",
    "User",
    "UserRole",
    "Product",
    "Quote",
    "QuoteItem",
    "Order",
    "OrderItem",
    "OrderSequence",
    "OrderAmendment",
    "OrderAmendmentItem",
    "OrderVersion",
    "OrderShipment",
    "OrderShipmentItem",
]
