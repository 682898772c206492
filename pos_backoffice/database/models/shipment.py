"""Shipment models recording physical fulfillment against order lines."""

from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pos_backoffice.database.base import BaseModel, create_table_args, str_enum
from pos_backoffice.services.order_modifications.enums import ShipmentStatus


class OrderShipment(BaseModel):
    """Shipment of one or more order lines, numbered ``SHP-<order_number>-<seq>``."""

    __tablename__ = "order_shipments"

    shipment_number: Mapped[str] = mapped_column(String(80), nullable=False)

    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)

    order_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
    )

    carrier: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    tracking_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    tracking_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    status: Mapped[ShipmentStatus] = mapped_column(
        str_enum(ShipmentStatus, "shipment_status"),
        nullable=False,
        default=ShipmentStatus.SHIPPED,
    )

    shipped_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    estimated_delivery: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    shipping_cost_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_by: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    items: Mapped[list["OrderShipmentItem"]] = relationship(
        "OrderShipmentItem",
        back_populates="shipment",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderShipmentItem.id",
    )

    __table_args__ = (
        UniqueConstraint("shipment_number", name="uq_order_shipments_number"),
        UniqueConstraint(
            "order_id", "sequence_number", name="uq_order_shipments_order_sequence"
        ),
        Index("ix_order_shipments_order_id", "order_id"),
        CheckConstraint(
            "shipping_cost_cents >= 0", name="ck_order_shipments_cost_non_negative"
        ),
        create_table_args(comment="Order shipments"),
    )


class OrderShipmentItem(BaseModel):
    """Units of one order line included in a shipment."""

    __tablename__ = "order_shipment_items"

    shipment_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("order_shipments.id", ondelete="CASCADE"),
        nullable=False,
    )

    order_item_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("order_items.id", ondelete="RESTRICT"),
        nullable=False,
    )

    quantity_shipped: Mapped[int] = mapped_column(Integer, nullable=False)

    serial_numbers: Mapped[Optional[list[str]]] = mapped_column(
        ARRAY(String(100)),
        nullable=True,
    )

    shipment: Mapped["OrderShipment"] = relationship("OrderShipment", back_populates="items")

    __table_args__ = (
        Index("ix_order_shipment_items_order_item_id", "order_item_id"),
        CheckConstraint(
            "quantity_shipped > 0", name="ck_order_shipment_items_quantity_positive"
        ),
        create_table_args(comment="Per-line quantities of order shipments"),
    )
