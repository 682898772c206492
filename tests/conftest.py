"""
Pytest configuration and shared test fixtures.

Environment variables are set before any application module is imported so
cached settings, logging configuration and the rate limiter pick up the
test configuration. Model factories build transient ORM objects; no test
needs a running database.
"""

import os

os.environ.setdefault("POS_ENVIRONMENT", "test")
os.environ.setdefault("POS_SECRET_KEY", "test-secret-key-with-at-least-32-characters")
os.environ.setdefault("POS_RATE_LIMIT_DEFAULT", "10000/minute")
os.environ.setdefault("POS_LOG_LEVEL", "WARNING")

from datetime import datetime, timezone
from typing import Any, Optional
from unittest.mock import AsyncMock, Mock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from pos_backoffice.core.config import Settings, get_settings
from pos_backoffice.database.models import (
    Order,
    OrderAmendment,
    OrderAmendmentItem,
    OrderItem,
    OrderVersion,
    User,
    UserRole,
)
from pos_backoffice.services.order_modifications.enums import (
    AmendmentStatus,
    AmendmentType,
    ChangeType,
    ItemFulfillmentStatus,
    OrderStatus,
    PriceSource,
)
from pos_backoffice.services.order_modifications.repository import (
    OrderModificationRepository,
)
from pos_backoffice.services.order_modifications.service import OrderModificationService

FIXED_NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


# ============================================================================
# Model Factories
# ============================================================================


def make_item(
    id: int = 11,
    product_id: int = 101,
    quantity: int = 10,
    unit_price_cents: int = 10000,
    quantity_fulfilled: int = 0,
    quantity_backordered: int = 0,
    quantity_cancelled: int = 0,
    quote_price_cents: Optional[int] = None,
    product_name: Optional[str] = None,
) -> OrderItem:
    """Build a transient order line with every counter set."""
    return OrderItem(
        id=id,
        product_id=product_id,
        product_name=product_name or f"Product {product_id}",
        product_sku=f"SKU-{product_id}",
        quantity=quantity,
        unit_price_cents=unit_price_cents,
        line_total_cents=unit_price_cents * (quantity - quantity_cancelled),
        quote_price_cents=quote_price_cents,
        fulfillment_status=ItemFulfillmentStatus.PENDING,
        quantity_fulfilled=quantity_fulfilled,
        quantity_backordered=quantity_backordered,
        quantity_cancelled=quantity_cancelled,
    )


def make_order(
    items: Optional[list[OrderItem]] = None,
    id: int = 1,
    status: OrderStatus = OrderStatus.CONFIRMED,
    total_cents: Optional[int] = None,
    price_locked: bool = False,
    price_lock_until: Optional[datetime] = None,
    original_quote_id: Optional[int] = None,
    tax_province: str = "ON",
) -> Order:
    """
    Build a transient order.

    Totals default to the item subtotal with 13% tax, so an order with one
    10 x $100.00 line has a $1,130.00 total.
    """
    items = items if items is not None else [make_item()]
    subtotal = sum(item.line_total_cents for item in items)
    tax = round(subtotal * 0.13)
    order = Order(
        id=id,
        order_number=f"ORD-{id:05d}",
        status=status,
        tax_province=tax_province,
        subtotal_cents=subtotal,
        discount_cents=0,
        tax_cents=tax,
        total_cents=total_cents if total_cents is not None else subtotal + tax,
        price_locked=price_locked,
        price_lock_until=price_lock_until,
        original_quote_id=original_quote_id,
        quote_prices_honored=False,
        version_number=0,
    )
    for item in items:
        item.order_id = id
        order.items.append(item)
    return order


def make_amendment_item(
    change_type: ChangeType = ChangeType.ADD,
    product_id: int = 202,
    order_item_id: Optional[int] = None,
    previous_quantity: int = 0,
    new_quantity: int = 1,
    applied_price_cents: int = 5000,
    price_source: PriceSource = PriceSource.CATALOG,
    quote_price_cents: Optional[int] = None,
) -> OrderAmendmentItem:
    return OrderAmendmentItem(
        order_item_id=order_item_id,
        product_id=product_id,
        product_name=f"Product {product_id}",
        product_sku=f"SKU-{product_id}",
        change_type=change_type,
        previous_quantity=previous_quantity,
        new_quantity=new_quantity,
        quantity_change=new_quantity - previous_quantity,
        quote_price_cents=quote_price_cents,
        current_price_cents=applied_price_cents,
        applied_price_cents=applied_price_cents,
        price_source=price_source,
        line_difference_cents=(new_quantity - previous_quantity) * applied_price_cents,
    )


def make_amendment(
    items: Optional[list[OrderAmendmentItem]] = None,
    id: int = 501,
    order_id: int = 1,
    status: AmendmentStatus = AmendmentStatus.APPROVED,
    requires_approval: bool = False,
    previous_total_cents: int = 113000,
    use_quote_prices: bool = False,
) -> OrderAmendment:
    items = items if items is not None else [make_amendment_item()]
    difference = sum(item.line_difference_cents for item in items)
    return OrderAmendment(
        id=id,
        amendment_number=f"AMD-ORD-{order_id:05d}-001",
        sequence_number=1,
        order_id=order_id,
        amendment_type=AmendmentType.ITEM_ADDED,
        status=status,
        previous_total_cents=previous_total_cents,
        new_total_cents=previous_total_cents + difference,
        difference_cents=difference,
        use_quote_prices=use_quote_prices,
        requires_approval=requires_approval,
        approval_threshold_cents=10000,
        created_by=7,
        created_at=FIXED_NOW,
        items=items,
    )


def make_version(
    version_number: int,
    items: list[dict[str, Any]],
    total_cents: int,
    order_id: int = 1,
) -> OrderVersion:
    return OrderVersion(
        id=900 + version_number,
        order_id=order_id,
        version_number=version_number,
        subtotal_cents=total_cents,
        discount_cents=0,
        tax_cents=0,
        total_cents=total_cents,
        item_count=len(items),
        items_snapshot=items,
        change_summary=f"Version {version_number}",
        created_by=7,
        created_at=FIXED_NOW,
    )


def make_user(id: int = 7, role: UserRole = UserRole.SALES, is_active: bool = True) -> User:
    return User(
        id=id,
        email=f"user{id}@example.com",
        first_name="Test",
        last_name="User",
        role=role,
        is_active=is_active,
    )


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
def mock_session() -> AsyncMock:
    """
    Create mock async database session.

    Returns:
        AsyncMock: Mock database session
    """
    session = AsyncMock(spec=AsyncSession)
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    return session


@pytest.fixture
def mock_repository() -> Mock:
    """
    Create mock repository.

    Async query methods are AsyncMocks; ``add`` stays synchronous.
    """
    repository = Mock(spec=OrderModificationRepository)
    repository.get_products.return_value = {}
    repository.get_quote_prices.return_value = {}
    repository.next_sequence_value.return_value = 1
    repository.next_version_number.side_effect = [1, 2, 3, 4]
    return repository


@pytest.fixture
def service(
    mock_session: AsyncMock, mock_repository: Mock, settings: Settings
) -> OrderModificationService:
    """Order modification service wired to mocks and a fixed clock."""
    return OrderModificationService(
        mock_session,
        repository=mock_repository,
        settings=settings,
        clock=lambda: FIXED_NOW,
    )
