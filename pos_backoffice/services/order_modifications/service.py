"""
Order modification service orchestrating amendments, versions and fulfillment.

This module implements the OrderModificationService class, the single entry
point for changing a confirmed order after the fact: price lock handling,
amendment creation, approval and application, version snapshots and diffs,
shipments, backorders and fulfillment summaries. Every mutating operation
runs in one transaction that commits on success and rolls back completely
on any error. Mutations take the order row lock first, so operations on the
same order are serialized while different orders never contend.
"""

from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any, AsyncIterator, Callable, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pos_backoffice.core.config import Settings, get_settings
from pos_backoffice.core.logging import get_logger, log_performance
from pos_backoffice.database.models.amendment import OrderAmendment, OrderAmendmentItem
from pos_backoffice.database.models.order import Order, OrderItem
from pos_backoffice.database.models.shipment import OrderShipment, OrderShipmentItem
from pos_backoffice.database.models.version import OrderVersion
from pos_backoffice.services.order_modifications import fulfillment
from pos_backoffice.services.order_modifications.approval import requires_approval
from pos_backoffice.services.order_modifications.enums import (
    AmendmentStatus,
    AmendmentType,
    ChangeType,
    ItemFulfillmentStatus,
    PriceSource,
    ShipmentStatus,
)
from pos_backoffice.services.order_modifications.exceptions import (
    AmendmentNotFoundError,
    ChangeValidationError,
    ConflictError,
    InvalidStateError,
    OrderModificationError,
    OrderNotFoundError,
    ProductNotFoundError,
    VersionNotFoundError,
)
from pos_backoffice.services.order_modifications.fulfillment import (
    BackorderLine,
    ShipmentLine,
)
from pos_backoffice.services.order_modifications.impact import (
    CatalogEntry,
    ItemChange,
    calculate_impact,
    committed_quantity,
)
from pos_backoffice.services.order_modifications.price_lock import (
    is_price_locked,
    recommended_price,
    utc_now,
)
from pos_backoffice.services.order_modifications.repository import (
    AMENDMENT_SEQUENCE,
    SHIPMENT_SEQUENCE,
    OrderModificationRepository,
    translate_database_error,
)
from pos_backoffice.services.order_modifications.state_machine import (
    AmendmentStateMachine,
)
from pos_backoffice.services.order_modifications.tax import (
    ProvincialTaxCalculator,
    TaxCalculator,
)
from pos_backoffice.services.order_modifications.versions import (
    build_items_snapshot,
    diff_snapshots,
)

logger = get_logger(__name__)


def _value(member: Any) -> Any:
    return getattr(member, "value", member)


class OrderModificationService:
    """
    Order modification façade.

    Attributes:
        repository: Data access for orders, amendments, versions, shipments
        state_machine: Amendment lifecycle rules
        tax_calculator: Computes tax when totals are recalculated
        settings: Approval thresholds, default province and page sizes
    """

    def __init__(
        self,
        session: AsyncSession,
        repository: Optional[OrderModificationRepository] = None,
        tax_calculator: Optional[TaxCalculator] = None,
        settings: Optional[Settings] = None,
        state_machine: Optional[AmendmentStateMachine] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.repository = repository or OrderModificationRepository(
            session, lock_nowait=self.settings.db_lock_nowait
        )
        self.tax_calculator = tax_calculator or ProvincialTaxCalculator(
            self.settings.default_tax_province
        )
        self.clock = clock or utc_now
        self.state_machine = state_machine or AmendmentStateMachine(clock=self.clock)

    # ------------------------------------------------------------------
    # Transaction handling
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _transaction(self, operation: str, **context: Any) -> AsyncIterator[None]:
        """Run a block as one unit of work: commit on success, roll back on any error."""
        with log_performance(logger, operation, **context):
            try:
                yield
                await self.session.commit()
            except OrderModificationError:
                await self.session.rollback()
                raise
            except SQLAlchemyError as e:
                await self.session.rollback()
                raise translate_database_error(e, operation=operation, **context) from e
            except BaseException:
                await self.session.rollback()
                raise

    @asynccontextmanager
    async def _read(self, operation: str, **context: Any) -> AsyncIterator[None]:
        try:
            yield
        except SQLAlchemyError as e:
            raise translate_database_error(e, operation=operation, **context) from e

    async def _load_order(self, order_id: int, for_update: bool = False) -> Order:
        order = await self.repository.get_order(order_id, for_update=for_update)
        if order is None:
            raise OrderNotFoundError("Order not found", order_id=order_id)
        return order

    async def _load_amendment(self, amendment_id: int, for_update: bool = False) -> OrderAmendment:
        amendment = await self.repository.get_amendment(amendment_id, for_update=for_update)
        if amendment is None:
            raise AmendmentNotFoundError("Amendment not found", amendment_id=amendment_id)
        return amendment

    @staticmethod
    def _ensure_modifiable(order: Order) -> None:
        if not order.status.is_modifiable():
            raise InvalidStateError(
                f"Order cannot be modified while {_value(order.status)}",
                status=_value(order.status),
                order_id=order.id,
            )

    def _price_locked(self, order: Order) -> bool:
        return is_price_locked(order.price_locked, order.price_lock_until, self.clock())

    # ------------------------------------------------------------------
    # Order detail and price lock
    # ------------------------------------------------------------------

    async def get_order_detail(self, order_id: int) -> dict[str, Any]:
        """
        Get an order with its lines and quote comparison.

        Each line reports the current catalog price, the quote price and
        ``has_price_change`` when both are known and differ. ``quote`` is
        None for orders not created from a quote.

        Raises:
            OrderNotFoundError: If order doesn't exist
        """
        async with self._read("get_order_detail", order_id=order_id):
            order = await self._load_order(order_id)
            products = await self.repository.get_products(
                item.product_id for item in order.items
            )
            quote_prices = await self.repository.get_quote_prices(
                order.original_quote_id, (item.product_id for item in order.items)
            )

        items = []
        for item in order.items:
            product = products.get(item.product_id)
            current_price = product.price_cents if product is not None else None
            quote_price = quote_prices.get(item.product_id, item.quote_price_cents)
            items.append(
                {
                    **self._format_item(item),
                    "current_price_cents": current_price,
                    "quote_price_cents": quote_price,
                    "has_price_change": (
                        current_price is not None
                        and quote_price is not None
                        and current_price != quote_price
                    ),
                }
            )

        quote = order.quote if order.original_quote_id is not None else None
        return {
            **self._format_order(order),
            "quote": (
                {
                    "id": quote.id,
                    "quote_number": quote.quote_number,
                    "total_cents": quote.total_cents,
                    "created_at": quote.created_at,
                }
                if quote is not None
                else None
            ),
            "items": items,
        }

    async def set_price_lock(
        self,
        order_id: int,
        enabled: bool,
        until: Optional[datetime],
        actor_id: Optional[int],
    ) -> dict[str, Any]:
        """
        Lock or unlock quote-time pricing for an order.

        Disabling the lock clears its expiry.

        Raises:
            OrderNotFoundError: If order doesn't exist
        """
        async with self._transaction("set_price_lock", order_id=order_id, enabled=enabled):
            order = await self._load_order(order_id, for_update=True)
            order.price_locked = enabled
            order.price_lock_until = until if enabled else None
            order.last_modified_by = actor_id

        logger.info(
            "Price lock updated",
            order_id=order_id,
            enabled=enabled,
            until=until.isoformat() if until else None,
            actor_id=actor_id,
        )
        return self._format_price_lock(order)

    async def get_price_lock(self, order_id: int) -> dict[str, Any]:
        async with self._read("get_price_lock", order_id=order_id):
            order = await self._load_order(order_id)
        return self._format_price_lock(order)

    async def is_price_locked(self, order_id: int) -> bool:
        """Whether quote-time pricing currently applies to the order."""
        return (await self.get_price_lock(order_id))["price_locked"]

    async def get_item_price_options(self, order_id: int, product_id: int) -> dict[str, Any]:
        """
        Compare the prices a product could be charged at on an order.

        Raises:
            OrderNotFoundError: If order doesn't exist
            ProductNotFoundError: If the product is neither in the catalog
                nor on the order
        """
        async with self._read("get_item_price_options", order_id=order_id, product_id=product_id):
            order = await self._load_order(order_id)
            product = (await self.repository.get_products([product_id])).get(product_id)
            quote_prices = await self.repository.get_quote_prices(
                order.original_quote_id, [product_id]
            )

        line = order.find_item_by_product(product_id)
        if product is None and line is None:
            raise ProductNotFoundError("Product not found", product_id=product_id)

        current_price = product.price_cents if product is not None else None
        quote_price = quote_prices.get(product_id)
        if quote_price is None and line is not None:
            quote_price = line.quote_price_cents
        order_price = line.unit_price_cents if line is not None else None
        locked = self._price_locked(order)

        return {
            "order_id": order.id,
            "product_id": product_id,
            "product_name": product.name if product is not None else line.product_name,
            "current_price_cents": current_price,
            "quote_price_cents": quote_price,
            "order_price_cents": order_price,
            "price_difference_cents": (
                current_price - quote_price
                if current_price is not None and quote_price is not None
                else None
            ),
            "price_locked": locked,
            "recommended_price_cents": recommended_price(
                locked, quote_price, current_price, order_price
            ),
        }

    # ------------------------------------------------------------------
    # Amendments
    # ------------------------------------------------------------------

    async def create_amendment(
        self,
        order_id: int,
        amendment_type: AmendmentType,
        changes: Sequence[ItemChange],
        actor_id: Optional[int],
        reason: Optional[str] = None,
        use_quote_prices: bool = False,
    ) -> dict[str, Any]:
        """
        Propose a change to an order's lines.

        The amendment is stored as ``pending_approval`` when the total moves
        past the approval thresholds and as ``approved`` otherwise. An empty
        change set is accepted and records a no-op amendment.

        Args:
            order_id: Order to amend
            amendment_type: Kind of amendment being recorded
            changes: Adds, removes and modifies, one per product
            actor_id: User proposing the change
            reason: Optional free-text reason
            use_quote_prices: Price lines at quote prices even without a lock

        Returns:
            Dict with amendment id and number, status, approval flag, totals
            and the number of line changes

        Raises:
            OrderNotFoundError: If order doesn't exist
            InvalidStateError: If the order is closed
            ChangeValidationError: If the change set doesn't fit the order
            ConflictError: If the order is locked by a concurrent writer
        """
        async with self._transaction(
            "create_amendment", order_id=order_id, item_changes=len(changes)
        ):
            order = await self._load_order(order_id, for_update=True)
            self._ensure_modifiable(order)

            product_ids = [change.product_id for change in changes]
            products = await self.repository.get_products(product_ids)
            catalog = {
                pid: CatalogEntry(
                    product_id=product.id,
                    name=product.name,
                    sku=product.sku,
                    price_cents=product.price_cents,
                )
                for pid, product in products.items()
            }
            quote_prices = await self.repository.get_quote_prices(
                order.original_quote_id, product_ids
            )

            impact = calculate_impact(
                order.items,
                changes,
                catalog,
                quote_prices,
                locked=self._price_locked(order),
                use_quote_prices=use_quote_prices,
            )

            previous_total = order.total_cents
            difference = impact.difference_cents
            needs_approval = requires_approval(
                difference,
                previous_total,
                threshold_cents=self.settings.approval_threshold_cents,
                threshold_percent=self.settings.approval_threshold_percent,
            )

            sequence = await self.repository.next_sequence_value(order.id, AMENDMENT_SEQUENCE)
            amendment = OrderAmendment(
                amendment_number=f"AMD-{order.order_number}-{sequence:03d}",
                sequence_number=sequence,
                order_id=order.id,
                amendment_type=amendment_type,
                status=AmendmentStatus.DRAFT,
                reason=reason,
                previous_total_cents=previous_total,
                new_total_cents=previous_total + difference,
                difference_cents=difference,
                use_quote_prices=use_quote_prices,
                requires_approval=needs_approval,
                approval_threshold_cents=self.settings.approval_threshold_cents,
                created_by=actor_id,
                items=[
                    OrderAmendmentItem(
                        order_item_id=line.order_item_id,
                        product_id=line.product_id,
                        product_name=line.product_name,
                        product_sku=line.product_sku,
                        change_type=line.change_type,
                        previous_quantity=line.previous_quantity,
                        new_quantity=line.new_quantity,
                        quantity_change=line.quantity_change,
                        quote_price_cents=line.quote_price_cents,
                        current_price_cents=line.current_price_cents,
                        applied_price_cents=line.applied_price_cents,
                        price_source=line.price_source,
                        line_difference_cents=line.line_difference_cents,
                        notes=line.notes,
                    )
                    for line in impact.lines
                ],
            )
            self.state_machine.apply_transition(
                amendment, self.state_machine.initial_status(amendment), actor_id
            )
            self.repository.add(amendment)
            await self.repository.flush()

        logger.info(
            "Amendment created",
            order_id=order_id,
            amendment_id=amendment.id,
            amendment_number=amendment.amendment_number,
            status=_value(amendment.status),
            requires_approval=needs_approval,
            difference_cents=difference,
            actor_id=actor_id,
        )

        return {
            "amendment_id": amendment.id,
            "amendment_number": amendment.amendment_number,
            "order_id": order_id,
            "status": _value(amendment.status),
            "requires_approval": needs_approval,
            "previous_total_cents": previous_total,
            "new_total_cents": previous_total + difference,
            "difference_cents": difference,
            "item_changes": impact.item_changes,
        }

    async def approve_amendment(
        self,
        amendment_id: int,
        approver_id: int,
        notes: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Approve an amendment waiting for approval.

        Raises:
            AmendmentNotFoundError: If amendment doesn't exist
            InvalidStateError: If the amendment is not pending approval
        """
        return await self._decide(
            amendment_id, AmendmentStatus.APPROVED, approver_id, notes=notes
        )

    async def reject_amendment(
        self,
        amendment_id: int,
        approver_id: int,
        reason: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Reject an amendment waiting for approval.

        Raises:
            AmendmentNotFoundError: If amendment doesn't exist
            InvalidStateError: If the amendment is not pending approval
        """
        return await self._decide(
            amendment_id, AmendmentStatus.REJECTED, approver_id, reason=reason
        )

    async def _decide(
        self,
        amendment_id: int,
        target: AmendmentStatus,
        approver_id: int,
        **details: Any,
    ) -> dict[str, Any]:
        async with self._transaction(
            f"{target.value}_amendment", amendment_id=amendment_id, approver_id=approver_id
        ):
            amendment = await self._load_amendment(amendment_id, for_update=True)
            current = AmendmentStatus(amendment.status)
            if current is not AmendmentStatus.PENDING_APPROVAL:
                raise InvalidStateError(
                    f"Amendment is {current.value}, not pending approval",
                    status=current.value,
                    amendment_id=amendment_id,
                )
            self.state_machine.apply_transition(amendment, target, approver_id, **details)
            await self.repository.flush()

        return self._format_amendment(amendment)

    async def apply_amendment(self, amendment_id: int, actor_id: Optional[int]) -> dict[str, Any]:
        """
        Apply an approved amendment to its order.

        Snapshots the order, applies every line, recalculates totals through
        the tax calculator, snapshots again and marks the amendment applied,
        all in one transaction. On failure nothing is written and the
        amendment stays approved.

        Raises:
            AmendmentNotFoundError: If amendment doesn't exist
            InvalidStateError: If the amendment is not approved (for example
                ``pending_approval`` or already ``applied``)
            ConflictError: If the order's lines changed since the amendment
                was computed, or the order is locked by a concurrent writer
        """
        async with self._transaction(
            "apply_amendment", amendment_id=amendment_id, actor_id=actor_id
        ):
            amendment = await self._load_amendment(amendment_id)
            # Order lock first, then the amendment, same as every other writer.
            order = await self._load_order(amendment.order_id, for_update=True)
            amendment = await self._load_amendment(amendment_id, for_update=True)
            self.state_machine.validate_transition(amendment, AmendmentStatus.APPLIED)
            self._ensure_modifiable(order)

            before = await self._snapshot(
                order, f"Before amendment {amendment.amendment_number}", actor_id
            )
            self._apply_lines(order, amendment)
            self._recalculate_totals(order)
            if amendment.use_quote_prices or any(
                line.price_source == PriceSource.QUOTE for line in amendment.items
            ):
                order.quote_prices_honored = True
            order.last_modified_by = actor_id
            await self.repository.flush()

            after = await self._snapshot(
                order, f"Applied amendment {amendment.amendment_number}", actor_id
            )
            self.state_machine.apply_transition(amendment, AmendmentStatus.APPLIED, actor_id)
            amendment.resulting_version_id = after.id
            await self.repository.flush()

        logger.info(
            "Amendment applied",
            amendment_id=amendment_id,
            amendment_number=amendment.amendment_number,
            order_id=order.id,
            total_cents=order.total_cents,
            version_number=after.version_number,
            actor_id=actor_id,
        )

        return {
            "success": True,
            "amendment_id": amendment.id,
            "amendment_number": amendment.amendment_number,
            "order_id": order.id,
            "status": _value(amendment.status),
            "previous_version": before.version_number,
            "new_version": after.version_number,
            "subtotal_cents": order.subtotal_cents,
            "tax_cents": order.tax_cents,
            "total_cents": order.total_cents,
        }

    def _apply_lines(self, order: Order, amendment: OrderAmendment) -> None:
        for line in amendment.items:
            existing = order.find_item_by_product(line.product_id)
            change_type = ChangeType(line.change_type)

            if change_type is ChangeType.ADD:
                if existing is not None:
                    raise ConflictError(
                        "Product was added to the order after the amendment was created",
                        amendment_id=amendment.id,
                        product_id=line.product_id,
                    )
                order.items.append(
                    OrderItem(
                        order_id=order.id,
                        product_id=line.product_id,
                        product_name=line.product_name,
                        product_sku=line.product_sku,
                        quantity=line.new_quantity,
                        unit_price_cents=line.applied_price_cents,
                        line_total_cents=line.new_quantity * line.applied_price_cents,
                        quote_price_cents=line.quote_price_cents,
                        fulfillment_status=ItemFulfillmentStatus.PENDING,
                        quantity_fulfilled=0,
                        quantity_backordered=0,
                        quantity_cancelled=0,
                    )
                )
                continue

            if existing is None or existing.id != line.order_item_id:
                raise ConflictError(
                    "Order line changed after the amendment was created",
                    amendment_id=amendment.id,
                    product_id=line.product_id,
                    order_item_id=line.order_item_id,
                )

            if change_type is ChangeType.REMOVE:
                if existing.quantity - existing.quantity_cancelled != line.previous_quantity:
                    raise ConflictError(
                        "Order line quantity changed after the amendment was created",
                        amendment_id=amendment.id,
                        order_item_id=existing.id,
                    )
                if existing.quantity_fulfilled == 0:
                    order.items.remove(existing)
                else:
                    existing.quantity_cancelled = existing.quantity - existing.quantity_fulfilled
                    existing.quantity_backordered = 0
                    existing.fulfillment_status = fulfillment.derive_item_status(existing)
                continue

            if (
                existing.quantity != line.previous_quantity
                or line.new_quantity < committed_quantity(existing)
            ):
                raise ConflictError(
                    "Order line quantity changed after the amendment was created",
                    amendment_id=amendment.id,
                    order_item_id=existing.id,
                )
            existing.quantity = line.new_quantity
            existing.unit_price_cents = line.applied_price_cents
            fulfillment.check_invariant(existing)
            existing.fulfillment_status = fulfillment.derive_item_status(existing)

    def _recalculate_totals(self, order: Order) -> None:
        subtotal = 0
        for item in order.items:
            item.line_total_cents = item.unit_price_cents * (
                item.quantity - item.quantity_cancelled
            )
            subtotal += item.line_total_cents

        breakdown = self.tax_calculator.calculate(
            subtotal,
            order.discount_cents,
            order.tax_province or self.settings.default_tax_province,
        )
        order.subtotal_cents = subtotal
        order.tax_cents = breakdown.tax_cents
        order.total_cents = breakdown.taxable_cents + breakdown.tax_cents

    async def get_amendment(self, amendment_id: int) -> dict[str, Any]:
        """
        Raises:
            AmendmentNotFoundError: If amendment doesn't exist
        """
        async with self._read("get_amendment", amendment_id=amendment_id):
            amendment = await self._load_amendment(amendment_id)
        return self._format_amendment(amendment)

    async def list_order_amendments(self, order_id: int) -> list[dict[str, Any]]:
        """Amendments of an order, newest first."""
        async with self._read("list_order_amendments", order_id=order_id):
            await self._load_order(order_id)
            amendments = await self.repository.list_order_amendments(order_id)
        return [self._format_amendment(a, include_items=False) for a in amendments]

    async def list_pending_amendments(self, limit: Optional[int] = None) -> list[dict[str, Any]]:
        """Amendments waiting for approval across all orders, oldest first."""
        limit = limit or self.settings.pending_amendments_limit
        async with self._read("list_pending_amendments", limit=limit):
            amendments = await self.repository.list_pending_amendments(limit)
        return [self._format_amendment(a, include_items=False) for a in amendments]

    # ------------------------------------------------------------------
    # Versions
    # ------------------------------------------------------------------

    async def _snapshot(
        self, order: Order, change_summary: str, actor_id: Optional[int]
    ) -> OrderVersion:
        """Stage a version snapshot of the order's current lines and totals."""
        number = await self.repository.next_version_number(order.id)
        version = OrderVersion(
            order_id=order.id,
            version_number=number,
            subtotal_cents=order.subtotal_cents,
            discount_cents=order.discount_cents,
            tax_cents=order.tax_cents,
            total_cents=order.total_cents,
            item_count=len(order.items),
            items_snapshot=build_items_snapshot(order.items),
            change_summary=change_summary,
            created_by=actor_id,
        )
        self.repository.add(version)
        await self.repository.flush()
        order.version_number = number

        logger.debug(
            "Order version staged",
            order_id=order.id,
            version_number=number,
            change_summary=change_summary,
        )
        return version

    async def get_order_versions(self, order_id: int) -> list[dict[str, Any]]:
        """Version history of an order, newest first."""
        async with self._read("get_order_versions", order_id=order_id):
            await self._load_order(order_id)
            versions = await self.repository.list_versions(order_id)
        return [self._format_version(v) for v in versions]

    async def compare_versions(
        self, order_id: int, version_a: int, version_b: int
    ) -> dict[str, Any]:
        """
        Diff two versions of an order, treating ``version_a`` as the base.

        Raises:
            VersionNotFoundError: If either version doesn't exist
        """
        async with self._read(
            "compare_versions", order_id=order_id, version_a=version_a, version_b=version_b
        ):
            base = await self.repository.get_version(order_id, version_a)
            target = await self.repository.get_version(order_id, version_b)

        for number, version in ((version_a, base), (version_b, target)):
            if version is None:
                raise VersionNotFoundError(
                    "Order version not found", order_id=order_id, version_number=number
                )

        diff = diff_snapshots(
            base.items_snapshot,
            target.items_snapshot,
            base.total_cents,
            target.total_cents,
        )
        return {
            "order_id": order_id,
            "version_a": self._format_version(base, include_items=False),
            "version_b": self._format_version(target, include_items=False),
            **diff,
        }

    # ------------------------------------------------------------------
    # Fulfillment
    # ------------------------------------------------------------------

    async def create_shipment(
        self,
        order_id: int,
        items: Sequence[ShipmentLine],
        actor_id: Optional[int],
        carrier: Optional[str] = None,
        tracking_number: Optional[str] = None,
        tracking_url: Optional[str] = None,
        estimated_delivery: Optional[date] = None,
        shipping_cost_cents: int = 0,
        notes: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Record a shipment of one or more order lines.

        Raises:
            OrderNotFoundError: If order doesn't exist
            InvalidStateError: If the order is closed
            ChangeValidationError: If a line is unknown, repeated or the
                shipped quantity exceeds what the line has left to ship
        """
        async with self._transaction(
            "create_shipment", order_id=order_id, line_count=len(items)
        ):
            order = await self._load_order(order_id, for_update=True)
            self._ensure_modifiable(order)
            lines = self._resolve_lines(order, [line.order_item_id for line in items])

            now = self.clock()
            for line, item in zip(items, lines):
                if line.serial_numbers and len(line.serial_numbers) > line.quantity_shipped:
                    raise ChangeValidationError(
                        "More serial numbers than shipped units",
                        order_item_id=item.id,
                        quantity_shipped=line.quantity_shipped,
                        serial_count=len(line.serial_numbers),
                    )
                fulfillment.record_shipment(item, line.quantity_shipped)
                if item.shipped_at is None:
                    item.shipped_at = now

            sequence = await self.repository.next_sequence_value(order.id, SHIPMENT_SEQUENCE)
            shipment = OrderShipment(
                shipment_number=f"SHP-{order.order_number}-{sequence:03d}",
                sequence_number=sequence,
                order_id=order.id,
                carrier=carrier,
                tracking_number=tracking_number,
                tracking_url=tracking_url,
                status=ShipmentStatus.SHIPPED,
                shipped_at=now,
                estimated_delivery=estimated_delivery,
                shipping_cost_cents=shipping_cost_cents,
                notes=notes,
                created_by=actor_id,
                items=[
                    OrderShipmentItem(
                        order_item_id=line.order_item_id,
                        quantity_shipped=line.quantity_shipped,
                        serial_numbers=list(line.serial_numbers) if line.serial_numbers else None,
                    )
                    for line in items
                ],
            )
            order.last_modified_by = actor_id
            self.repository.add(shipment)
            await self.repository.flush()

        logger.info(
            "Shipment created",
            order_id=order_id,
            shipment_id=shipment.id,
            shipment_number=shipment.shipment_number,
            units=sum(line.quantity_shipped for line in items),
            actor_id=actor_id,
        )

        return {
            "success": True,
            "order_id": order_id,
            "shipment_id": shipment.id,
            "shipment_number": shipment.shipment_number,
            "units_shipped": sum(line.quantity_shipped for line in items),
        }

    async def mark_backordered(
        self,
        order_id: int,
        items: Sequence[BackorderLine],
        actor_id: Optional[int],
    ) -> dict[str, Any]:
        """
        Add backordered units to order lines and snapshot the order.

        Raises:
            OrderNotFoundError: If order doesn't exist
            InvalidStateError: If the order is closed
            ChangeValidationError: If a line is unknown, repeated or the
                backorder would exceed the line's unallocated quantity
        """
        async with self._transaction(
            "mark_backordered", order_id=order_id, line_count=len(items)
        ):
            order = await self._load_order(order_id, for_update=True)
            self._ensure_modifiable(order)
            lines = self._resolve_lines(order, [line.order_item_id for line in items])

            for line, item in zip(items, lines):
                fulfillment.record_backorder(item, line.quantity)

            order.last_modified_by = actor_id
            await self.repository.flush()
            version = await self._snapshot(order, "Items marked as backordered", actor_id)

        logger.info(
            "Items marked as backordered",
            order_id=order_id,
            line_count=len(items),
            version_number=version.version_number,
            actor_id=actor_id,
        )

        return {
            "success": True,
            "order_id": order_id,
            "lines_updated": len(items),
            "version_number": version.version_number,
        }

    @staticmethod
    def _resolve_lines(order: Order, order_item_ids: Sequence[int]) -> list[OrderItem]:
        if not order_item_ids:
            raise ChangeValidationError("At least one line is required", order_id=order.id)
        if len(set(order_item_ids)) != len(order_item_ids):
            raise ChangeValidationError(
                "Order line appears more than once", order_id=order.id
            )

        lines = []
        for order_item_id in order_item_ids:
            item = order.find_item(order_item_id)
            if item is None:
                raise ChangeValidationError(
                    "Order line does not belong to this order",
                    order_id=order.id,
                    order_item_id=order_item_id,
                )
            lines.append(item)
        return lines

    async def get_order_shipments(self, order_id: int) -> list[dict[str, Any]]:
        """Shipments of an order with their lines, newest first."""
        async with self._read("get_order_shipments", order_id=order_id):
            await self._load_order(order_id)
            shipments = await self.repository.list_shipments(order_id)
        return [self._format_shipment(s) for s in shipments]

    async def get_fulfillment_summary(self, order_id: int) -> dict[str, Any]:
        """
        Aggregate fulfillment status of an order.

        Raises:
            OrderNotFoundError: If order doesn't exist
        """
        async with self._read("get_fulfillment_summary", order_id=order_id):
            order = await self._load_order(order_id)

        summary = fulfillment.summarize(order.items)
        return {
            "order_id": order.id,
            "order_number": order.order_number,
            **summary,
            "status": _value(summary["status"]),
            "items": [self._format_item(item) for item in order.items],
        }

    # ------------------------------------------------------------------
    # Response formatting
    # ------------------------------------------------------------------

    def _format_order(self, order: Order) -> dict[str, Any]:
        return {
            "id": order.id,
            "order_number": order.order_number,
            "status": _value(order.status),
            "subtotal_cents": order.subtotal_cents,
            "discount_cents": order.discount_cents,
            "tax_cents": order.tax_cents,
            "total_cents": order.total_cents,
            "tax_province": order.tax_province,
            "version_number": order.version_number,
            "original_quote_id": order.original_quote_id,
            "quote_prices_honored": order.quote_prices_honored,
            **self._format_price_lock(order),
        }

    def _format_price_lock(self, order: Order) -> dict[str, Any]:
        return {
            "order_id": order.id,
            "price_locked": self._price_locked(order),
            "price_lock_flag": order.price_locked,
            "price_lock_until": order.price_lock_until,
        }

    @staticmethod
    def _format_item(item: OrderItem) -> dict[str, Any]:
        return {
            "id": item.id,
            "product_id": item.product_id,
            "product_name": item.product_name,
            "product_sku": item.product_sku,
            "quantity": item.quantity,
            "unit_price_cents": item.unit_price_cents,
            "line_total_cents": item.line_total_cents,
            "fulfillment_status": _value(item.fulfillment_status),
            "quantity_fulfilled": item.quantity_fulfilled,
            "quantity_backordered": item.quantity_backordered,
            "quantity_cancelled": item.quantity_cancelled,
        }

    @staticmethod
    def _format_amendment(
        amendment: OrderAmendment, include_items: bool = True
    ) -> dict[str, Any]:
        response = {
            "id": amendment.id,
            "amendment_number": amendment.amendment_number,
            "order_id": amendment.order_id,
            "amendment_type": _value(amendment.amendment_type),
            "status": _value(amendment.status),
            "reason": amendment.reason,
            "previous_total_cents": amendment.previous_total_cents,
            "new_total_cents": amendment.new_total_cents,
            "difference_cents": amendment.difference_cents,
            "use_quote_prices": amendment.use_quote_prices,
            "requires_approval": amendment.requires_approval,
            "approval_threshold_cents": amendment.approval_threshold_cents,
            "approval_notes": amendment.approval_notes,
            "rejection_reason": amendment.rejection_reason,
            "created_by": amendment.created_by,
            "approved_by": amendment.approved_by,
            "approved_at": amendment.approved_at,
            "applied_by": amendment.applied_by,
            "applied_at": amendment.applied_at,
            "resulting_version_id": amendment.resulting_version_id,
            "created_at": amendment.created_at,
            "item_count": len(amendment.items),
        }
        if include_items:
            response["items"] = [
                {
                    "id": line.id,
                    "order_item_id": line.order_item_id,
                    "product_id": line.product_id,
                    "product_name": line.product_name,
                    "product_sku": line.product_sku,
                    "change_type": _value(line.change_type),
                    "previous_quantity": line.previous_quantity,
                    "new_quantity": line.new_quantity,
                    "quantity_change": line.quantity_change,
                    "quote_price_cents": line.quote_price_cents,
                    "current_price_cents": line.current_price_cents,
                    "applied_price_cents": line.applied_price_cents,
                    "price_source": _value(line.price_source),
                    "line_difference_cents": line.line_difference_cents,
                    "notes": line.notes,
                }
                for line in amendment.items
            ]
        return response

    @staticmethod
    def _format_version(version: OrderVersion, include_items: bool = True) -> dict[str, Any]:
        response = {
            "id": version.id,
            "order_id": version.order_id,
            "version_number": version.version_number,
            "subtotal_cents": version.subtotal_cents,
            "discount_cents": version.discount_cents,
            "tax_cents": version.tax_cents,
            "total_cents": version.total_cents,
            "item_count": version.item_count,
            "change_summary": version.change_summary,
            "created_by": version.created_by,
            "created_at": version.created_at,
        }
        if include_items:
            response["items"] = list(version.items_snapshot or [])
        return response

    @staticmethod
    def _format_shipment(shipment: OrderShipment) -> dict[str, Any]:
        return {
            "id": shipment.id,
            "shipment_number": shipment.shipment_number,
            "order_id": shipment.order_id,
            "carrier": shipment.carrier,
            "tracking_number": shipment.tracking_number,
            "tracking_url": shipment.tracking_url,
            "status": _value(shipment.status),
            "shipped_at": shipment.shipped_at,
            "estimated_delivery": shipment.estimated_delivery,
            "shipping_cost_cents": shipment.shipping_cost_cents,
            "notes": shipment.notes,
            "created_by": shipment.created_by,
            "items": [
                {
                    "order_item_id": line.order_item_id,
                    "quantity_shipped": line.quantity_shipped,
                    "serial_numbers": list(line.serial_numbers or []),
                }
                for line in shipment.items
            ],
        }
