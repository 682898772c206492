"""
Order, order line and per-order sequence models.

An order is the aggregate root the amendment engine mutates. Totals are
integer cents. Line fulfillment counters obey
``quantity_fulfilled + quantity_backordered + quantity_cancelled <= quantity``,
checked both in the service layer and by a table constraint.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pos_backoffice.database.base import Base, BaseModel, create_table_args, str_enum
from pos_backoffice.services.order_modifications.enums import (
    ItemFulfillmentStatus,
    OrderStatus,
)


class Order(BaseModel):
    """
    Customer order with totals, price lock and version tracking.

    Attributes:
        order_number: Human-readable order number
        status: Order lifecycle status
        tax_province: Jurisdiction passed to the tax calculator
        subtotal_cents / discount_cents / tax_cents / total_cents: Totals in cents
        price_locked: Whether quote-time prices are honored
        price_lock_until: Optional expiry of the price lock
        original_quote_id: Quote the order was converted from, if any
        quote_prices_honored: Set once an amendment applied quote prices
        version_number: Latest version snapshot number (0 before the first)
        last_modified_by: User who last changed items, totals or lock state
    """

    __tablename__ = "orders"

    order_number: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
        comment="Human-readable order number",
    )

    status: Mapped[OrderStatus] = mapped_column(
        str_enum(OrderStatus, "order_status"),
        nullable=False,
        default=OrderStatus.CONFIRMED,
        comment="Current order status",
    )

    tax_province: Mapped[Optional[str]] = mapped_column(
        String(2),
        nullable=True,
        comment="Province code used for tax calculation",
    )

    subtotal_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    discount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    tax_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    price_locked: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Honor quote-time prices for amendments",
    )

    price_lock_until: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Price lock expiry; NULL means no expiry",
    )

    original_quote_id: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        ForeignKey("quotes.id", ondelete="SET NULL"),
        nullable=True,
        comment="Quote this order was converted from",
    )

    quote_prices_honored: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    version_number: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Latest version snapshot number",
    )

    last_modified_by: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )

    quote: Mapped[Optional["Quote"]] = relationship(
        "Quote",
        foreign_keys=[original_quote_id],
        lazy="selectin",
    )

    __table_args__ = (
        Index("ix_orders_status", "status"),
        Index("ix_orders_original_quote_id", "original_quote_id"),
        CheckConstraint("subtotal_cents >= 0", name="ck_orders_subtotal_non_negative"),
        CheckConstraint("discount_cents >= 0", name="ck_orders_discount_non_negative"),
        CheckConstraint("tax_cents >= 0", name="ck_orders_tax_non_negative"),
        CheckConstraint("total_cents >= 0", name="ck_orders_total_non_negative"),
        CheckConstraint("version_number >= 0", name="ck_orders_version_non_negative"),
        create_table_args(comment="Customer orders open to amendment and fulfillment"),
    )

    def __repr__(self) -> str:
        return (
            f"<Order(id={self.id}, order_number={self.order_number}, "
            f"status={self.status}, total_cents={self.total_cents})>"
        )

    def find_item_by_product(self, product_id: int) -> Optional["OrderItem"]:
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None

    def find_item(self, order_item_id: int) -> Optional["OrderItem"]:
        for item in self.items:
            if item.id == order_item_id:
                return item
        return None


class OrderItem(BaseModel):
    """
    Order line with price, quote comparison and fulfillment counters.

    ``quote_price_cents`` caches the quote-time unit price so current and
    quoted prices can be compared without reloading the quote.
    """

    __tablename__ = "order_items"

    order_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
    )

    product_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
    )

    product_name: Mapped[str] = mapped_column(String(255), nullable=False)

    product_sku: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    unit_price_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)

    line_total_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    quote_price_cents: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        nullable=True,
        comment="Quote-time unit price, when the order came from a quote",
    )

    fulfillment_status: Mapped[ItemFulfillmentStatus] = mapped_column(
        str_enum(ItemFulfillmentStatus, "item_fulfillment_status"),
        nullable=False,
        default=ItemFulfillmentStatus.PENDING,
    )

    quantity_fulfilled: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity_backordered: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity_cancelled: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    shipped_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="First shipment of this line",
    )

    order: Mapped["Order"] = relationship("Order", back_populates="items")

    __table_args__ = (
        Index("ix_order_items_order_id", "order_id"),
        Index("ix_order_items_product_id", "product_id"),
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        CheckConstraint("unit_price_cents >= 0", name="ck_order_items_price_non_negative"),
        CheckConstraint(
            "quantity_fulfilled >= 0 AND quantity_backordered >= 0 "
            "AND quantity_cancelled >= 0",
            name="ck_order_items_counters_non_negative",
        ),
        CheckConstraint(
            "quantity_fulfilled + quantity_backordered + quantity_cancelled <= quantity",
            name="ck_order_items_fulfillment_within_quantity",
        ),
        create_table_args(comment="Order lines with fulfillment counters"),
    )

    @property
    def active_quantity(self) -> int:
        """Quantity still owed to the customer (not cancelled)."""
        return self.quantity - self.quantity_cancelled

    @property
    def shippable_quantity(self) -> int:
        """Units that can still go out in a shipment."""
        return self.quantity - self.quantity_fulfilled - self.quantity_cancelled


class OrderSequence(Base):
    """
    Per-order counter used to number amendments and shipments.

    Rows are read and bumped under a row lock taken after the order row
    lock, so numbers never collide or skip for a given order.
    """

    __tablename__ = "order_sequences"

    order_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("orders.id", ondelete="CASCADE"),
        primary_key=True,
    )

    name: Mapped[str] = mapped_column(
        String(32),
        primary_key=True,
        comment="Counter name, e.g. 'amendment' or 'shipment'",
    )

    last_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("last_value >= 0", name="ck_order_sequences_non_negative"),
        create_table_args(comment="Per-order numbering counters"),
    )
