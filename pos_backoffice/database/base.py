"""
SQLAlchemy declarative base and common model mixins.

All back office tables use integer surrogate keys and server-managed
timestamps. Money columns are integer minor units and never floats.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import BigInteger, DateTime, Enum as SQLEnum, func
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column


class Base(AsyncAttrs, DeclarativeBase):
    """
    Base class for all SQLAlchemy models with async support.

    Provides async attribute loading and a readable repr.
    """

    __abstract__ = True

    def __repr__(self) -> str:
        pk_values = []
        for column in self.__table__.primary_key.columns:
            value = getattr(self, column.key, None)
            if value is not None:
                pk_values.append(f"{column.name}={value!r}")

        pk_str = ", ".join(pk_values) if pk_values else "no primary key"
        return f"<{self.__class__.__name__}({pk_str})>"


class TimestampMixin:
    """
    Mixin for automatic timestamp management.

    Adds created_at and updated_at columns managed by the database.
    """

    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            nullable=False,
            server_default=func.now(),
            comment="Timestamp when record was created",
        )

    @declared_attr
    def updated_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            nullable=False,
            server_default=func.now(),
            onupdate=func.now(),
            comment="Timestamp when record was last updated",
        )


class IntegerIdMixin:
    """Mixin for an auto-incrementing integer primary key."""

    @declared_attr
    def id(cls) -> Mapped[int]:
        return mapped_column(
            BigInteger,
            primary_key=True,
            autoincrement=True,
            comment="Surrogate identifier for the record",
        )


class BaseModel(Base, IntegerIdMixin, TimestampMixin):
    """
    Base model with integer primary key and timestamps.

    Example:
        class Product(BaseModel):
            __tablename__ = "products"

            sku: Mapped[str] = mapped_column(String(64), unique=True)
    """

    __abstract__ = True


def create_table_args(
    comment: Optional[str] = None,
    **kwargs: Any,
) -> Dict[str, Any]:
    """
    Create the trailing ``__table_args__`` dictionary with common settings.

    Example:
        __table_args__ = (
            Index("ix_orders_status", "status"),
            create_table_args(comment="Customer orders"),
        )
    """
    table_args = {}
    if comment:
        table_args["comment"] = comment
    table_args.update(kwargs)
    return table_args


def str_enum(enum_cls: type, name: str) -> SQLEnum:
    """
    Column type for a ``str`` enum persisted by value.

    Stored as VARCHAR with a check constraint so lowercase values written by
    other services (and by migrations) round-trip through the ORM.
    """
    return SQLEnum(
        enum_cls,
        name=name,
        native_enum=False,
        create_constraint=True,
        length=32,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )
