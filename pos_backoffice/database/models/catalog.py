"""
Catalog and quote models.

Products and quotes are maintained by the catalog and quoting services. The
amendment engine reads current catalog prices and quote-time prices from
them and never writes to these tables.
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pos_backoffice.database.base import BaseModel, create_table_args


class Product(BaseModel):
    """Sellable catalog product with its current price in cents."""

    __tablename__ = "products"

    sku: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
        comment="Stock keeping unit",
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    price_cents: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="Current catalog price in cents",
    )

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("price_cents >= 0", name="ck_products_price_non_negative"),
        create_table_args(comment="Product catalog (read-only for order modifications)"),
    )


class Quote(BaseModel):
    """Accepted customer quote an order may have been created from."""

    __tablename__ = "quotes"

    quote_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)

    customer_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    total_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    items: Mapped[list["QuoteItem"]] = relationship(
        "QuoteItem",
        back_populates="quote",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    __table_args__ = (create_table_args(comment="Customer quotes"),)


class QuoteItem(BaseModel):
    """Quoted line with the unit price offered to the customer."""

    __tablename__ = "quote_items"

    quote_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("quotes.id", ondelete="CASCADE"),
        nullable=False,
    )

    product_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
    )

    quantity: Mapped[int] = mapped_column(nullable=False, default=1)

    unit_price_cents: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="Quoted unit price in cents",
    )

    discount_percent: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        nullable=False,
        default=Decimal("0"),
    )

    quote: Mapped["Quote"] = relationship("Quote", back_populates="items")

    __table_args__ = (
        UniqueConstraint("quote_id", "product_id", name="uq_quote_items_quote_product"),
        Index("ix_quote_items_product_id", "product_id"),
        create_table_args(comment="Quoted lines"),
    )
