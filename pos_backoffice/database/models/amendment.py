"""
Order amendment models.

An amendment records a proposed change to an order's lines and totals and
is never deleted; rejected and applied amendments stay for audit.
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
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pos_backoffice.database.base import BaseModel, create_table_args, str_enum
from pos_backoffice.services.order_modifications.enums import (
    AmendmentStatus,
    AmendmentType,
    ChangeType,
    PriceSource,
)


class OrderAmendment(BaseModel):
    """
    Proposed change to an order.

    Attributes:
        amendment_number: ``AMD-<order_number>-<seq>``, unique
        sequence_number: Position in the order's amendment sequence
        previous_total_cents: Order total when the amendment was computed
        new_total_cents: ``previous_total_cents + difference_cents``
        difference_cents: Sum of the line deltas (pre-tax)
        approval_threshold_cents: Absolute threshold in force at creation
        resulting_version_id: Version snapshot taken after application
    """

    __tablename__ = "order_amendments"

    amendment_number: Mapped[str] = mapped_column(String(80), nullable=False)

    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)

    order_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
    )

    amendment_type: Mapped[AmendmentType] = mapped_column(
        str_enum(AmendmentType, "amendment_type"),
        nullable=False,
    )

    status: Mapped[AmendmentStatus] = mapped_column(
        str_enum(AmendmentStatus, "amendment_status"),
        nullable=False,
        default=AmendmentStatus.DRAFT,
    )

    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    previous_total_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    new_total_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    difference_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)

    use_quote_prices: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    requires_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    approval_threshold_cents: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    approval_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_by: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    approved_by: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    applied_by: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    approved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the amendment was approved or rejected",
    )
    applied_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    resulting_version_id: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        ForeignKey("order_versions.id", ondelete="SET NULL"),
        nullable=True,
    )

    items: Mapped[list["OrderAmendmentItem"]] = relationship(
        "OrderAmendmentItem",
        back_populates="amendment",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderAmendmentItem.id",
    )

    order: Mapped["Order"] = relationship("Order", lazy="selectin")

    __table_args__ = (
        UniqueConstraint("amendment_number", name="uq_order_amendments_number"),
        UniqueConstraint(
            "order_id", "sequence_number", name="uq_order_amendments_order_sequence"
        ),
        Index("ix_order_amendments_order_id", "order_id"),
        Index("ix_order_amendments_status_created", "status", "created_at"),
        CheckConstraint(
            "new_total_cents = previous_total_cents + difference_cents",
            name="ck_order_amendments_totals_consistent",
        ),
        create_table_args(comment="Proposed and applied order amendments"),
    )


class OrderAmendmentItem(BaseModel):
    """Per-line delta of an amendment, with the price that was resolved for it."""

    __tablename__ = "order_amendment_items"

    amendment_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("order_amendments.id", ondelete="CASCADE"),
        nullable=False,
    )

    order_item_id: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        ForeignKey("order_items.id", ondelete="SET NULL"),
        nullable=True,
        comment="Existing line for remove/modify; NULL for adds",
    )

    product_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
    )

    product_name: Mapped[str] = mapped_column(String(255), nullable=False)

    product_sku: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    change_type: Mapped[ChangeType] = mapped_column(
        str_enum(ChangeType, "amendment_change_type"),
        nullable=False,
    )

    previous_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    new_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity_change: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    quote_price_cents: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    current_price_cents: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    applied_price_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)

    price_source: Mapped[PriceSource] = mapped_column(
        str_enum(PriceSource, "amendment_price_source"),
        nullable=False,
    )

    line_difference_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    amendment: Mapped["OrderAmendment"] = relationship(
        "OrderAmendment", back_populates="items"
    )

    __table_args__ = (
        Index("ix_order_amendment_items_amendment_id", "amendment_id"),
        CheckConstraint(
            "previous_quantity >= 0 AND new_quantity >= 0",
            name="ck_order_amendment_items_quantities_non_negative",
        ),
        create_table_args(comment="Line deltas of order amendments"),
    )
