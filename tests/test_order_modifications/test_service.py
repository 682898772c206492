"""
Test suite for OrderModificationService.

Tests cover amendment creation, approval and application, price locks,
version comparison, shipments, backorders and fulfillment summaries, plus
transaction handling and database error translation. The repository and
session are mocked; orders are real transient ORM objects.
"""

from datetime import timedelta
from unittest.mock import AsyncMock, Mock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from conftest import (
    FIXED_NOW,
    make_amendment,
    make_amendment_item,
    make_item,
    make_order,
    make_version,
)
from pos_backoffice.database.models import OrderVersion, Product
from pos_backoffice.database.models.amendment import OrderAmendment
from pos_backoffice.database.models.shipment import OrderShipment
from pos_backoffice.services.order_modifications.enums import (
    AmendmentStatus,
    AmendmentType,
    ChangeType,
    ItemFulfillmentStatus,
    OrderStatus,
    PriceSource,
)
from pos_backoffice.services.order_modifications.exceptions import (
    AmendmentNotFoundError,
    ChangeValidationError,
    ConflictError,
    InvalidStateError,
    OrderNotFoundError,
    PersistenceError,
    ProductNotFoundError,
    VersionNotFoundError,
)
from pos_backoffice.services.order_modifications.fulfillment import (
    BackorderLine,
    ShipmentLine,
)
from pos_backoffice.services.order_modifications.impact import ItemChange
from pos_backoffice.services.order_modifications.service import OrderModificationService


# ============================================================================
# Test Helpers
# ============================================================================


class LockNotAvailable(Exception):
    """Driver error carrying the PostgreSQL lock_not_available SQLSTATE."""

    sqlstate = "55P03"


def _product(product_id: int, price_cents: int) -> Product:
    return Product(
        id=product_id,
        sku=f"SKU-{product_id}",
        name=f"Product {product_id}",
        price_cents=price_cents,
        is_active=True,
    )


def _added(mock_repository: Mock, model: type) -> list:
    return [
        call.args[0]
        for call in mock_repository.add.call_args_list
        if isinstance(call.args[0], model)
    ]


# ============================================================================
# Amendment Creation Tests
# ============================================================================


class TestCreateAmendment:
    """Test amendment creation and approval routing."""

    @pytest.mark.asyncio
    async def test_small_addition_is_auto_approved(
        self,
        service: OrderModificationService,
        mock_repository: Mock,
        mock_session: AsyncMock,
    ):
        """A $50 addition to a $1,130 order needs no approval."""
        mock_repository.get_order.return_value = make_order()
        mock_repository.get_products.return_value = {202: _product(202, 5000)}

        result = await service.create_amendment(
            1,
            AmendmentType.ITEM_ADDED,
            [ItemChange(ChangeType.ADD, 202, 1)],
            actor_id=7,
            reason="Customer request",
        )

        assert result["status"] == "approved"
        assert result["requires_approval"] is False
        assert result["amendment_number"] == "AMD-ORD-00001-001"
        assert result["previous_total_cents"] == 113000
        assert result["difference_cents"] == 5000
        assert result["new_total_cents"] == 118000
        assert result["item_changes"] == 1

        mock_repository.get_order.assert_awaited_once_with(1, for_update=True)
        mock_repository.next_sequence_value.assert_awaited_once_with(1, "amendment")
        mock_session.commit.assert_awaited_once()
        mock_session.rollback.assert_not_awaited()

        [amendment] = _added(mock_repository, OrderAmendment)
        assert amendment.status is AmendmentStatus.APPROVED
        assert amendment.approved_by is None
        assert amendment.reason == "Customer request"
        assert amendment.items[0].price_source is PriceSource.CATALOG

    @pytest.mark.asyncio
    async def test_large_addition_waits_for_approval(
        self, service: OrderModificationService, mock_repository: Mock
    ):
        mock_repository.get_order.return_value = make_order()
        mock_repository.get_products.return_value = {202: _product(202, 50000)}

        result = await service.create_amendment(
            1, AmendmentType.ITEM_ADDED, [ItemChange(ChangeType.ADD, 202, 1)], actor_id=7
        )

        assert result["status"] == "pending_approval"
        assert result["requires_approval"] is True
        assert result["difference_cents"] == 50000

    @pytest.mark.asyncio
    async def test_quote_prices_apply_while_locked(
        self, service: OrderModificationService, mock_repository: Mock
    ):
        mock_repository.get_order.return_value = make_order(
            price_locked=True, original_quote_id=55
        )
        mock_repository.get_products.return_value = {202: _product(202, 5000)}
        mock_repository.get_quote_prices.return_value = {202: 4000}

        result = await service.create_amendment(
            1, AmendmentType.ITEM_ADDED, [ItemChange(ChangeType.ADD, 202, 2)], actor_id=7
        )

        assert result["difference_cents"] == 8000
        mock_repository.get_quote_prices.assert_awaited_once_with(55, [202])

    @pytest.mark.asyncio
    async def test_expired_lock_uses_catalog_price(
        self, service: OrderModificationService, mock_repository: Mock
    ):
        mock_repository.get_order.return_value = make_order(
            price_locked=True,
            price_lock_until=FIXED_NOW - timedelta(days=1),
            original_quote_id=55,
        )
        mock_repository.get_products.return_value = {202: _product(202, 5000)}
        mock_repository.get_quote_prices.return_value = {202: 4000}

        result = await service.create_amendment(
            1, AmendmentType.ITEM_ADDED, [ItemChange(ChangeType.ADD, 202, 2)], actor_id=7
        )

        assert result["difference_cents"] == 10000

    @pytest.mark.asyncio
    async def test_empty_change_set_records_no_op(
        self, service: OrderModificationService, mock_repository: Mock
    ):
        mock_repository.get_order.return_value = make_order()

        result = await service.create_amendment(
            1, AmendmentType.ITEM_MODIFIED, [], actor_id=7
        )

        assert result["status"] == "approved"
        assert result["difference_cents"] == 0
        assert result["item_changes"] == 0

    @pytest.mark.asyncio
    async def test_unchanged_modify_records_no_line(
        self, service: OrderModificationService, mock_repository: Mock
    ):
        mock_repository.get_order.return_value = make_order()

        result = await service.create_amendment(
            1,
            AmendmentType.ITEM_MODIFIED,
            [ItemChange(ChangeType.MODIFY, 101, 10)],
            actor_id=7,
        )

        assert result["difference_cents"] == 0
        assert result["item_changes"] == 0

    @pytest.mark.asyncio
    async def test_order_not_found(
        self,
        service: OrderModificationService,
        mock_repository: Mock,
        mock_session: AsyncMock,
    ):
        mock_repository.get_order.return_value = None

        with pytest.raises(OrderNotFoundError):
            await service.create_amendment(
                404, AmendmentType.ITEM_ADDED, [ItemChange(ChangeType.ADD, 202, 1)], actor_id=7
            )

        mock_session.rollback.assert_awaited_once()
        mock_session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_closed_order_cannot_be_amended(
        self,
        service: OrderModificationService,
        mock_repository: Mock,
        mock_session: AsyncMock,
    ):
        mock_repository.get_order.return_value = make_order(status=OrderStatus.COMPLETED)

        with pytest.raises(InvalidStateError) as exc_info:
            await service.create_amendment(
                1, AmendmentType.ITEM_ADDED, [ItemChange(ChangeType.ADD, 202, 1)], actor_id=7
            )

        assert exc_info.value.status == "completed"
        mock_session.rollback.assert_awaited_once()
        mock_repository.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_change_set_rolls_back(
        self,
        service: OrderModificationService,
        mock_repository: Mock,
        mock_session: AsyncMock,
    ):
        mock_repository.get_order.return_value = make_order()

        with pytest.raises(ChangeValidationError):
            await service.create_amendment(
                1, AmendmentType.ITEM_MODIFIED, [ItemChange(ChangeType.MODIFY, 999, 2)], actor_id=7
            )

        mock_session.rollback.assert_awaited_once()
        mock_repository.next_sequence_value.assert_not_awaited()


# ============================================================================
# Approval Tests
# ============================================================================


class TestApprovalWorkflow:
    @pytest.mark.asyncio
    async def test_approve_pending_amendment(
        self,
        service: OrderModificationService,
        mock_repository: Mock,
        mock_session: AsyncMock,
    ):
        amendment = make_amendment(
            status=AmendmentStatus.PENDING_APPROVAL, requires_approval=True
        )
        mock_repository.get_amendment.return_value = amendment

        result = await service.approve_amendment(501, approver_id=9, notes="Confirmed by phone")

        assert result["status"] == "approved"
        assert result["approved_by"] == 9
        assert result["approved_at"] == FIXED_NOW
        assert result["approval_notes"] == "Confirmed by phone"
        assert len(result["items"]) == 1
        mock_repository.get_amendment.assert_awaited_once_with(501, for_update=True)
        mock_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_reject_pending_amendment(
        self, service: OrderModificationService, mock_repository: Mock
    ):
        mock_repository.get_amendment.return_value = make_amendment(
            status=AmendmentStatus.PENDING_APPROVAL, requires_approval=True
        )

        result = await service.reject_amendment(501, approver_id=9, reason="Over budget")

        assert result["status"] == "rejected"
        assert result["rejection_reason"] == "Over budget"

    @pytest.mark.parametrize(
        "status",
        [AmendmentStatus.APPROVED, AmendmentStatus.REJECTED, AmendmentStatus.APPLIED],
    )
    @pytest.mark.asyncio
    async def test_only_pending_amendments_can_be_decided(
        self,
        service: OrderModificationService,
        mock_repository: Mock,
        mock_session: AsyncMock,
        status: AmendmentStatus,
    ):
        mock_repository.get_amendment.return_value = make_amendment(status=status)

        with pytest.raises(InvalidStateError) as exc_info:
            await service.approve_amendment(501, approver_id=9)

        assert exc_info.value.status == status.value
        mock_session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_decide_missing_amendment(
        self, service: OrderModificationService, mock_repository: Mock
    ):
        mock_repository.get_amendment.return_value = None

        with pytest.raises(AmendmentNotFoundError):
            await service.reject_amendment(404, approver_id=9, reason="n/a")


# ============================================================================
# Amendment Application Tests
# ============================================================================


class TestApplyAmendment:
    @pytest.mark.asyncio
    async def test_apply_addition_recalculates_totals(
        self,
        service: OrderModificationService,
        mock_repository: Mock,
        mock_session: AsyncMock,
    ):
        order = make_order()
        amendment = make_amendment()
        mock_repository.get_order.return_value = order
        mock_repository.get_amendment.return_value = amendment

        result = await service.apply_amendment(501, actor_id=7)

        assert result["success"] is True
        assert result["status"] == "applied"
        assert result["previous_version"] == 1
        assert result["new_version"] == 2
        assert result["subtotal_cents"] == 105000
        assert result["tax_cents"] == 13650
        assert result["total_cents"] == 118650

        assert len(order.items) == 2
        assert order.version_number == 2
        assert order.quote_prices_honored is False
        assert amendment.applied_by == 7
        assert amendment.applied_at == FIXED_NOW
        mock_repository.get_order.assert_awaited_once_with(1, for_update=True)
        mock_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_apply_snapshots_before_and_after(
        self, service: OrderModificationService, mock_repository: Mock
    ):
        mock_repository.get_order.return_value = make_order()
        mock_repository.get_amendment.return_value = make_amendment()

        await service.apply_amendment(501, actor_id=7)

        before, after = _added(mock_repository, OrderVersion)
        assert before.version_number == 1
        assert before.total_cents == 113000
        assert before.item_count == 1
        assert before.change_summary == "Before amendment AMD-ORD-00001-001"
        assert after.version_number == 2
        assert after.total_cents == 118650
        assert [line["product_id"] for line in after.items_snapshot] == [101, 202]

    @pytest.mark.asyncio
    async def test_apply_modification(
        self, service: OrderModificationService, mock_repository: Mock
    ):
        mock_repository.get_order.return_value = make_order()
        mock_repository.get_amendment.return_value = make_amendment(
            items=[
                make_amendment_item(
                    ChangeType.MODIFY,
                    product_id=101,
                    order_item_id=11,
                    previous_quantity=10,
                    new_quantity=12,
                    applied_price_cents=10000,
                    price_source=PriceSource.ORDER,
                )
            ]
        )

        result = await service.apply_amendment(501, actor_id=7)

        assert result["subtotal_cents"] == 120000
        assert result["total_cents"] == 135600

    @pytest.mark.asyncio
    async def test_removing_unshipped_line_deletes_it(
        self, service: OrderModificationService, mock_repository: Mock
    ):
        order = make_order()
        mock_repository.get_order.return_value = order
        mock_repository.get_amendment.return_value = make_amendment(
            items=[
                make_amendment_item(
                    ChangeType.REMOVE,
                    product_id=101,
                    order_item_id=11,
                    previous_quantity=10,
                    new_quantity=0,
                    applied_price_cents=10000,
                    price_source=PriceSource.ORDER,
                )
            ]
        )

        result = await service.apply_amendment(501, actor_id=7)

        assert order.items == []
        assert result["total_cents"] == 0

    @pytest.mark.asyncio
    async def test_removing_partly_shipped_line_cancels_remainder(
        self, service: OrderModificationService, mock_repository: Mock
    ):
        order = make_order(items=[make_item(quantity_fulfilled=4, quantity_backordered=2)])
        mock_repository.get_order.return_value = order
        mock_repository.get_amendment.return_value = make_amendment(
            items=[
                make_amendment_item(
                    ChangeType.REMOVE,
                    product_id=101,
                    order_item_id=11,
                    previous_quantity=10,
                    new_quantity=4,
                    applied_price_cents=10000,
                    price_source=PriceSource.ORDER,
                )
            ]
        )

        result = await service.apply_amendment(501, actor_id=7)

        [line] = order.items
        assert line.quantity_cancelled == 6
        assert line.quantity_backordered == 0
        assert line.line_total_cents == 40000
        assert line.fulfillment_status is ItemFulfillmentStatus.SHIPPED
        assert result["total_cents"] == 45200

    @pytest.mark.asyncio
    async def test_quote_priced_lines_mark_quote_prices_honored(
        self, service: OrderModificationService, mock_repository: Mock
    ):
        order = make_order()
        mock_repository.get_order.return_value = order
        mock_repository.get_amendment.return_value = make_amendment(
            items=[make_amendment_item(price_source=PriceSource.QUOTE, quote_price_cents=5000)]
        )

        await service.apply_amendment(501, actor_id=7)

        assert order.quote_prices_honored is True

    @pytest.mark.asyncio
    async def test_pending_amendment_cannot_be_applied(
        self,
        service: OrderModificationService,
        mock_repository: Mock,
        mock_session: AsyncMock,
    ):
        order = make_order()
        mock_repository.get_order.return_value = order
        mock_repository.get_amendment.return_value = make_amendment(
            status=AmendmentStatus.PENDING_APPROVAL, requires_approval=True
        )

        with pytest.raises(InvalidStateError) as exc_info:
            await service.apply_amendment(501, actor_id=7)

        assert exc_info.value.status == "pending_approval"
        assert len(order.items) == 1
        mock_repository.add.assert_not_called()
        mock_session.rollback.assert_awaited_once()
        mock_session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_applied_amendment_cannot_be_applied_again(
        self, service: OrderModificationService, mock_repository: Mock
    ):
        mock_repository.get_order.return_value = make_order()
        mock_repository.get_amendment.return_value = make_amendment(
            status=AmendmentStatus.APPLIED
        )

        with pytest.raises(InvalidStateError) as exc_info:
            await service.apply_amendment(501, actor_id=7)

        assert exc_info.value.status == "applied"

    @pytest.mark.asyncio
    async def test_stale_line_is_a_conflict(
        self,
        service: OrderModificationService,
        mock_repository: Mock,
        mock_session: AsyncMock,
    ):
        amendment = make_amendment(
            items=[
                make_amendment_item(
                    ChangeType.MODIFY,
                    product_id=101,
                    order_item_id=11,
                    previous_quantity=8,
                    new_quantity=12,
                    applied_price_cents=10000,
                    price_source=PriceSource.ORDER,
                )
            ]
        )
        mock_repository.get_order.return_value = make_order()
        mock_repository.get_amendment.return_value = amendment

        with pytest.raises(ConflictError) as exc_info:
            await service.apply_amendment(501, actor_id=7)

        assert exc_info.value.retryable is True
        assert amendment.status is AmendmentStatus.APPROVED
        mock_session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_product_added_concurrently_is_a_conflict(
        self, service: OrderModificationService, mock_repository: Mock
    ):
        mock_repository.get_order.return_value = make_order()
        mock_repository.get_amendment.return_value = make_amendment(
            items=[make_amendment_item(ChangeType.ADD, product_id=101)]
        )

        with pytest.raises(ConflictError):
            await service.apply_amendment(501, actor_id=7)

    @pytest.mark.asyncio
    async def test_apply_missing_amendment(
        self, service: OrderModificationService, mock_repository: Mock
    ):
        mock_repository.get_amendment.return_value = None

        with pytest.raises(AmendmentNotFoundError):
            await service.apply_amendment(404, actor_id=7)

        mock_repository.get_order.assert_not_awaited()


# ============================================================================
# Amendment Query Tests
# ============================================================================


class TestAmendmentQueries:
    @pytest.mark.asyncio
    async def test_list_order_amendments_omits_lines(
        self, service: OrderModificationService, mock_repository: Mock
    ):
        mock_repository.get_order.return_value = make_order()
        mock_repository.list_order_amendments.return_value = [make_amendment()]

        result = await service.list_order_amendments(1)

        assert len(result) == 1
        assert "items" not in result[0]
        assert result[0]["item_count"] == 1

    @pytest.mark.asyncio
    async def test_list_amendments_for_missing_order(
        self, service: OrderModificationService, mock_repository: Mock
    ):
        mock_repository.get_order.return_value = None

        with pytest.raises(OrderNotFoundError):
            await service.list_order_amendments(404)

    @pytest.mark.asyncio
    async def test_pending_queue_uses_configured_limit(
        self, service: OrderModificationService, mock_repository: Mock
    ):
        mock_repository.list_pending_amendments.return_value = []

        await service.list_pending_amendments()

        mock_repository.list_pending_amendments.assert_awaited_once_with(
            service.settings.pending_amendments_limit
        )

    @pytest.mark.asyncio
    async def test_pending_queue_explicit_limit(
        self, service: OrderModificationService, mock_repository: Mock
    ):
        mock_repository.list_pending_amendments.return_value = []

        await service.list_pending_amendments(limit=5)

        mock_repository.list_pending_amendments.assert_awaited_once_with(5)


# ============================================================================
# Price Lock Tests
# ============================================================================


class TestPriceLock:
    @pytest.mark.asyncio
    async def test_lock_with_expiry(
        self,
        service: OrderModificationService,
        mock_repository: Mock,
        mock_session: AsyncMock,
    ):
        order = make_order()
        mock_repository.get_order.return_value = order
        until = FIXED_NOW + timedelta(days=30)

        result = await service.set_price_lock(1, True, until, actor_id=7)

        assert result == {
            "order_id": 1,
            "price_locked": True,
            "price_lock_flag": True,
            "price_lock_until": until,
        }
        assert order.last_modified_by == 7
        mock_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unlock_clears_expiry(
        self, service: OrderModificationService, mock_repository: Mock
    ):
        order = make_order(price_locked=True, price_lock_until=FIXED_NOW + timedelta(days=1))
        mock_repository.get_order.return_value = order

        result = await service.set_price_lock(1, False, FIXED_NOW + timedelta(days=5), actor_id=7)

        assert result["price_locked"] is False
        assert order.price_lock_until is None

    @pytest.mark.asyncio
    async def test_expired_lock_reports_unlocked(
        self, service: OrderModificationService, mock_repository: Mock
    ):
        mock_repository.get_order.return_value = make_order(
            price_locked=True, price_lock_until=FIXED_NOW - timedelta(minutes=1)
        )

        result = await service.get_price_lock(1)

        assert result["price_locked"] is False
        assert result["price_lock_flag"] is True
        assert await service.is_price_locked(1) is False

    @pytest.mark.asyncio
    async def test_price_options_recommend_quote_price_while_locked(
        self, service: OrderModificationService, mock_repository: Mock
    ):
        mock_repository.get_order.return_value = make_order(
            price_locked=True, original_quote_id=55
        )
        mock_repository.get_products.return_value = {101: _product(101, 11000)}
        mock_repository.get_quote_prices.return_value = {101: 9000}

        result = await service.get_item_price_options(1, 101)

        assert result["current_price_cents"] == 11000
        assert result["quote_price_cents"] == 9000
        assert result["order_price_cents"] == 10000
        assert result["price_difference_cents"] == 2000
        assert result["price_locked"] is True
        assert result["recommended_price_cents"] == 9000

    @pytest.mark.asyncio
    async def test_price_options_for_unknown_product(
        self, service: OrderModificationService, mock_repository: Mock
    ):
        mock_repository.get_order.return_value = make_order()

        with pytest.raises(ProductNotFoundError):
            await service.get_item_price_options(1, 999)

    @pytest.mark.asyncio
    async def test_order_detail_flags_price_changes(
        self, service: OrderModificationService, mock_repository: Mock
    ):
        mock_repository.get_order.return_value = make_order(
            items=[make_item(quote_price_cents=10000)]
        )
        mock_repository.get_products.return_value = {101: _product(101, 11000)}

        result = await service.get_order_detail(1)

        assert result["order_number"] == "ORD-00001"
        assert result["status"] == "confirmed"
        assert result["quote"] is None
        [item] = result["items"]
        assert item["current_price_cents"] == 11000
        assert item["quote_price_cents"] == 10000
        assert item["has_price_change"] is True


# ============================================================================
# Version Tests
# ============================================================================


class TestVersions:
    @pytest.mark.asyncio
    async def test_compare_versions(
        self, service: OrderModificationService, mock_repository: Mock
    ):
        line = {
            "product_id": 101,
            "product_name": "Product 101",
            "quantity": 10,
            "unit_price_cents": 10000,
            "quantity_cancelled": 0,
        }
        added = {**line, "product_id": 202, "product_name": "Product 202", "quantity": 1,
                 "unit_price_cents": 5000}
        mock_repository.get_version.side_effect = [
            make_version(1, [line], 113000),
            make_version(2, [line, added], 118650),
        ]

        result = await service.compare_versions(1, 1, 2)

        assert result["order_id"] == 1
        assert result["version_a"]["version_number"] == 1
        assert "items" not in result["version_a"]
        assert [entry["product_id"] for entry in result["added"]] == [202]
        assert result["removed"] == []
        assert result["modified"] == []
        assert result["total_difference_cents"] == 5650

    @pytest.mark.asyncio
    async def test_compare_missing_version(
        self, service: OrderModificationService, mock_repository: Mock
    ):
        mock_repository.get_version.side_effect = [make_version(1, [], 0), None]

        with pytest.raises(VersionNotFoundError) as exc_info:
            await service.compare_versions(1, 1, 7)

        assert exc_info.value.context["version_number"] == 7

    @pytest.mark.asyncio
    async def test_version_history(
        self, service: OrderModificationService, mock_repository: Mock
    ):
        mock_repository.get_order.return_value = make_order()
        mock_repository.list_versions.return_value = [
            make_version(2, [], 0),
            make_version(1, [], 0),
        ]

        result = await service.get_order_versions(1)

        assert [v["version_number"] for v in result] == [2, 1]
        assert result[0]["items"] == []


# ============================================================================
# Fulfillment Tests
# ============================================================================


class TestFulfillment:
    @pytest.mark.asyncio
    async def test_create_shipment(
        self,
        service: OrderModificationService,
        mock_repository: Mock,
        mock_session: AsyncMock,
    ):
        order = make_order(items=[make_item(quantity=5)])
        mock_repository.get_order.return_value = order

        result = await service.create_shipment(
            1,
            [ShipmentLine(order_item_id=11, quantity_shipped=2, serial_numbers=["SN-1", "SN-2"])],
            actor_id=7,
            carrier="UPS",
            tracking_number="1Z999",
        )

        assert result["success"] is True
        assert result["shipment_number"] == "SHP-ORD-00001-001"
        assert result["units_shipped"] == 2

        [line] = order.items
        assert line.quantity_fulfilled == 2
        assert line.shipped_at == FIXED_NOW
        assert line.fulfillment_status is ItemFulfillmentStatus.PARTIALLY_SHIPPED

        [shipment] = _added(mock_repository, OrderShipment)
        assert shipment.carrier == "UPS"
        assert shipment.items[0].serial_numbers == ["SN-1", "SN-2"]
        mock_repository.next_sequence_value.assert_awaited_once_with(1, "shipment")
        mock_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_shipment_with_unknown_line(
        self,
        service: OrderModificationService,
        mock_repository: Mock,
        mock_session: AsyncMock,
    ):
        mock_repository.get_order.return_value = make_order()

        with pytest.raises(ChangeValidationError) as exc_info:
            await service.create_shipment(1, [ShipmentLine(99, 1)], actor_id=7)

        assert exc_info.value.context["order_item_id"] == 99
        mock_session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_shipment_with_repeated_line(
        self, service: OrderModificationService, mock_repository: Mock
    ):
        mock_repository.get_order.return_value = make_order()

        with pytest.raises(ChangeValidationError):
            await service.create_shipment(
                1, [ShipmentLine(11, 1), ShipmentLine(11, 2)], actor_id=7
            )

    @pytest.mark.asyncio
    async def test_overshipment_is_rejected(
        self, service: OrderModificationService, mock_repository: Mock
    ):
        mock_repository.get_order.return_value = make_order(items=[make_item(quantity=5)])

        with pytest.raises(ChangeValidationError):
            await service.create_shipment(1, [ShipmentLine(11, 6)], actor_id=7)

        mock_repository.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_more_serials_than_units(
        self, service: OrderModificationService, mock_repository: Mock
    ):
        mock_repository.get_order.return_value = make_order()

        with pytest.raises(ChangeValidationError):
            await service.create_shipment(
                1, [ShipmentLine(11, 1, serial_numbers=["A", "B"])], actor_id=7
            )

    @pytest.mark.asyncio
    async def test_mark_backordered_snapshots_order(
        self, service: OrderModificationService, mock_repository: Mock
    ):
        order = make_order(items=[make_item(quantity=5)])
        mock_repository.get_order.return_value = order

        result = await service.mark_backordered(1, [BackorderLine(11, 3)], actor_id=7)

        assert result == {
            "success": True,
            "order_id": 1,
            "lines_updated": 1,
            "version_number": 1,
        }
        assert order.items[0].quantity_backordered == 3
        assert order.version_number == 1
        [version] = _added(mock_repository, OrderVersion)
        assert version.change_summary == "Items marked as backordered"
        assert version.items_snapshot[0]["quantity_backordered"] == 3

    @pytest.mark.asyncio
    async def test_fulfillment_summary(
        self, service: OrderModificationService, mock_repository: Mock
    ):
        mock_repository.get_order.return_value = make_order(
            items=[make_item(quantity=5, quantity_fulfilled=2)]
        )

        result = await service.get_fulfillment_summary(1)

        assert result["order_number"] == "ORD-00001"
        assert result["fulfillment_percent"] == 40
        assert result["status"] == "partial"
        assert result["items"][0]["quantity_fulfilled"] == 2

    @pytest.mark.asyncio
    async def test_fulfillment_summary_for_missing_order(
        self, service: OrderModificationService, mock_repository: Mock
    ):
        mock_repository.get_order.return_value = None

        with pytest.raises(OrderNotFoundError):
            await service.get_fulfillment_summary(404)


# ============================================================================
# Database Error Tests
# ============================================================================


class TestDatabaseErrors:
    @pytest.mark.asyncio
    async def test_lock_contention_is_a_conflict(
        self,
        service: OrderModificationService,
        mock_repository: Mock,
        mock_session: AsyncMock,
    ):
        mock_repository.get_order.side_effect = OperationalError(
            "SELECT ... FOR UPDATE NOWAIT", {}, LockNotAvailable()
        )

        with pytest.raises(ConflictError) as exc_info:
            await service.set_price_lock(1, True, None, actor_id=7)

        assert exc_info.value.context["sqlstate"] == "55P03"
        mock_session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unique_violation_is_a_conflict(
        self, service: OrderModificationService, mock_repository: Mock
    ):
        mock_repository.get_order.return_value = make_order()
        mock_repository.get_products.return_value = {202: _product(202, 5000)}
        mock_repository.flush.side_effect = IntegrityError("INSERT", {}, Exception("dup"))

        with pytest.raises(ConflictError):
            await service.create_amendment(
                1, AmendmentType.ITEM_ADDED, [ItemChange(ChangeType.ADD, 202, 1)], actor_id=7
            )

    @pytest.mark.asyncio
    async def test_other_database_errors(
        self,
        service: OrderModificationService,
        mock_repository: Mock,
        mock_session: AsyncMock,
    ):
        mock_repository.get_order.return_value = make_order()
        mock_session.commit.side_effect = OperationalError("COMMIT", {}, Exception("gone"))

        with pytest.raises(PersistenceError):
            await service.set_price_lock(1, False, None, actor_id=7)

        mock_session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_read_errors_are_translated(
        self, service: OrderModificationService, mock_repository: Mock
    ):
        mock_repository.get_amendment.side_effect = OperationalError(
            "SELECT", {}, Exception("timeout")
        )

        with pytest.raises(PersistenceError):
            await service.get_amendment(501)
