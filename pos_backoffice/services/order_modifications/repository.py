"""
Order modification data access repository.

Async queries for orders, amendments, versions, shipments and the per-order
numbering counters. Write methods only stage changes on the session; the
service decides when to commit. Locking reads re-populate already loaded
instances so values read under the lock are current.
"""

from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pos_backoffice.core.logging import get_logger
from pos_backoffice.database.models.amendment import OrderAmendment
from pos_backoffice.database.models.catalog import Product, QuoteItem
from pos_backoffice.database.models.order import Order, OrderSequence
from pos_backoffice.database.models.shipment import OrderShipment
from pos_backoffice.database.models.version import OrderVersion
from pos_backoffice.services.order_modifications.enums import AmendmentStatus
from pos_backoffice.services.order_modifications.exceptions import (
    ConflictError,
    OrderModificationError,
    PersistenceError,
)

logger = get_logger(__name__)

AMENDMENT_SEQUENCE = "amendment"
SHIPMENT_SEQUENCE = "shipment"

# lock_not_available, serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = {"55P03", "40001", "40P01"}


def _sqlstate(error: DBAPIError) -> Optional[str]:
    orig = getattr(error, "orig", None)
    for candidate in (orig, getattr(orig, "__cause__", None)):
        if candidate is None:
            continue
        code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if code:
            return str(code)
    return None


def translate_database_error(error: SQLAlchemyError, **context: Any) -> OrderModificationError:
    """
    Map a SQLAlchemy error to the order modification error taxonomy.

    Lock contention, serialization failures, deadlocks and unique-key
    collisions become retryable ``ConflictError``; everything else is a
    ``PersistenceError``.
    """
    sqlstate = _sqlstate(error) if isinstance(error, DBAPIError) else None

    if isinstance(error, IntegrityError) or sqlstate in RETRYABLE_SQLSTATES:
        logger.warning(
            "Concurrent modification detected",
            sqlstate=sqlstate,
            error_type=type(error).__name__,
            **context,
        )
        return ConflictError(
            "The order was modified concurrently; retry the operation",
            sqlstate=sqlstate,
            **context,
        )

    logger.error(
        "Database operation failed",
        sqlstate=sqlstate,
        error=str(error),
        error_type=type(error).__name__,
        **context,
    )
    return PersistenceError("Database operation failed", sqlstate=sqlstate, **context)


class OrderModificationRepository:
    """
    Repository for order modification data access.

    Args:
        session: Async database session
        lock_nowait: Use ``FOR UPDATE NOWAIT`` so lock contention fails fast
    """

    def __init__(self, session: AsyncSession, lock_nowait: bool = False):
        self.session = session
        self.lock_nowait = lock_nowait

    # Orders

    async def get_order(self, order_id: int, for_update: bool = False) -> Optional[Order]:
        stmt = select(Order).where(Order.id == order_id)
        if for_update:
            stmt = stmt.with_for_update(nowait=self.lock_nowait).execution_options(
                populate_existing=True
            )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_products(self, product_ids: Iterable[int]) -> dict[int, Product]:
        ids = set(product_ids)
        if not ids:
            return {}
        result = await self.session.execute(select(Product).where(Product.id.in_(ids)))
        return {product.id: product for product in result.scalars().all()}

    async def get_quote_prices(
        self, quote_id: Optional[int], product_ids: Iterable[int]
    ) -> dict[int, int]:
        """Quote-time unit prices by product; empty when the order has no quote."""
        ids = set(product_ids)
        if quote_id is None or not ids:
            return {}
        result = await self.session.execute(
            select(QuoteItem.product_id, QuoteItem.unit_price_cents).where(
                QuoteItem.quote_id == quote_id,
                QuoteItem.product_id.in_(ids),
            )
        )
        return {product_id: price for product_id, price in result.all()}

    async def next_sequence_value(self, order_id: int, name: str) -> int:
        """
        Allocate the next value of a per-order counter.

        Callers hold the order row lock, so two transactions never race on
        the same counter; the upsert also serializes on the counter row.
        """
        stmt = (
            insert(OrderSequence)
            .values(order_id=order_id, name=name, last_value=1)
            .on_conflict_do_update(
                index_elements=[OrderSequence.order_id, OrderSequence.name],
                set_={"last_value": OrderSequence.last_value + 1},
            )
            .returning(OrderSequence.last_value)
        )
        result = await self.session.execute(stmt)
        value = result.scalar_one()
        logger.debug("Sequence value allocated", order_id=order_id, sequence=name, value=value)
        return value

    # Amendments

    async def get_amendment(
        self, amendment_id: int, for_update: bool = False
    ) -> Optional[OrderAmendment]:
        stmt = select(OrderAmendment).where(OrderAmendment.id == amendment_id)
        if for_update:
            stmt = stmt.with_for_update(nowait=self.lock_nowait).execution_options(
                populate_existing=True
            )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_order_amendments(self, order_id: int) -> Sequence[OrderAmendment]:
        result = await self.session.execute(
            select(OrderAmendment)
            .where(OrderAmendment.order_id == order_id)
            .order_by(OrderAmendment.sequence_number.desc())
        )
        return result.scalars().all()

    async def list_pending_amendments(self, limit: int) -> Sequence[OrderAmendment]:
        result = await self.session.execute(
            select(OrderAmendment)
            .where(OrderAmendment.status == AmendmentStatus.PENDING_APPROVAL)
            .order_by(OrderAmendment.created_at.asc(), OrderAmendment.id.asc())
            .limit(limit)
        )
        return result.scalars().all()

    # Versions

    async def next_version_number(self, order_id: int) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.max(OrderVersion.version_number), 0)).where(
                OrderVersion.order_id == order_id
            )
        )
        return int(result.scalar_one()) + 1

    async def get_version(self, order_id: int, version_number: int) -> Optional[OrderVersion]:
        result = await self.session.execute(
            select(OrderVersion).where(
                OrderVersion.order_id == order_id,
                OrderVersion.version_number == version_number,
            )
        )
        return result.scalar_one_or_none()

    async def list_versions(self, order_id: int) -> Sequence[OrderVersion]:
        result = await self.session.execute(
            select(OrderVersion)
            .where(OrderVersion.order_id == order_id)
            .order_by(OrderVersion.version_number.desc())
        )
        return result.scalars().all()

    # Shipments

    async def list_shipments(self, order_id: int) -> Sequence[OrderShipment]:
        result = await self.session.execute(
            select(OrderShipment)
            .where(OrderShipment.order_id == order_id)
            .order_by(OrderShipment.sequence_number.desc())
        )
        return result.scalars().all()

    # Unit of work

    def add(self, instance: Any) -> None:
        self.session.add(instance)

    async def flush(self) -> None:
        await self.session.flush()
