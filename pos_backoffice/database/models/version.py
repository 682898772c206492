"""Immutable order version snapshots."""

from typing import Any, Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    ForeignKey,
    Integer,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from pos_backoffice.database.base import BaseModel, create_table_args


class OrderVersion(BaseModel):
    """
    Point-in-time copy of an order's lines and totals.

    Rows are only ever inserted. ``items_snapshot`` is a JSON list of line
    dicts built by ``versions.build_items_snapshot``.
    """

    __tablename__ = "order_versions"

    order_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
    )

    version_number: Mapped[int] = mapped_column(Integer, nullable=False)

    subtotal_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    discount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    tax_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    total_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)

    item_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    items_snapshot: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONB,
        nullable=False,
        default=list,
    )

    change_summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_by: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    __table_args__ = (
        UniqueConstraint("order_id", "version_number", name="uq_order_versions_order_version"),
        CheckConstraint("version_number > 0", name="ck_order_versions_number_positive"),
        create_table_args(comment="Immutable order snapshots for audit and diffing"),
    )
