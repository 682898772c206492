"""
Amendment impact calculation.

Turns a change set (adds, removes and modifies keyed by product) into
per-line deltas against the order's current lines, resolving the unit price
of every line and validating the request. Nothing here touches the
database: callers pass the current lines, catalog entries and quote prices
they loaded under the order lock.
"""

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Sequence

from pos_backoffice.core.logging import get_logger
from pos_backoffice.services.order_modifications.enums import ChangeType, PriceSource
from pos_backoffice.services.order_modifications.exceptions import ChangeValidationError
from pos_backoffice.services.order_modifications.price_lock import resolve_unit_price

logger = get_logger(__name__)


@dataclass(frozen=True)
class ItemChange:
    """One requested change, already validated for shape at the API boundary."""

    kind: ChangeType
    product_id: int
    quantity: Optional[int] = None
    override_price_cents: Optional[int] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class CatalogEntry:
    product_id: int
    name: str
    sku: Optional[str]
    price_cents: int


@dataclass
class LineImpact:
    """Resolved delta for one line, mirroring an amendment item row."""

    change_type: ChangeType
    product_id: int
    product_name: str
    product_sku: Optional[str]
    order_item_id: Optional[int]
    previous_quantity: int
    new_quantity: int
    quote_price_cents: Optional[int]
    current_price_cents: Optional[int]
    applied_price_cents: int
    price_source: PriceSource
    line_difference_cents: int
    notes: Optional[str] = None

    @property
    def quantity_change(self) -> int:
        return self.new_quantity - self.previous_quantity


@dataclass
class AmendmentImpact:
    lines: list[LineImpact]

    @property
    def difference_cents(self) -> int:
        return sum(line.line_difference_cents for line in self.lines)

    @property
    def item_changes(self) -> int:
        return len(self.lines)


def committed_quantity(item: Any) -> int:
    """Units of a line already shipped, backordered or cancelled."""
    return item.quantity_fulfilled + item.quantity_backordered + item.quantity_cancelled


def _validate_change_set(changes: Sequence[ItemChange]) -> None:
    seen: set[int] = set()
    for change in changes:
        if change.product_id in seen:
            raise ChangeValidationError(
                "Product appears more than once in the change set",
                product_id=change.product_id,
            )
        seen.add(change.product_id)

        if change.kind is not ChangeType.REMOVE:
            if change.quantity is None or change.quantity <= 0:
                raise ChangeValidationError(
                    "Quantity must be a positive integer",
                    product_id=change.product_id,
                    change_type=change.kind.value,
                    quantity=change.quantity,
                )
        if change.override_price_cents is not None and change.override_price_cents < 0:
            raise ChangeValidationError(
                "Override price cannot be negative",
                product_id=change.product_id,
            )


def calculate_impact(
    items: Iterable[Any],
    changes: Sequence[ItemChange],
    catalog: Mapping[int, CatalogEntry],
    quote_prices: Mapping[int, int],
    *,
    locked: bool,
    use_quote_prices: bool,
) -> AmendmentImpact:
    """
    Compute the per-line impact of a change set.

    Args:
        items: Current order lines (``OrderItem`` or compatible objects)
        changes: Requested changes; at most one per product
        catalog: Catalog entries for every product in ``changes`` that exists
        quote_prices: Quote-time unit prices by product id
        locked: Whether the order's price lock currently applies
        use_quote_prices: Caller asked for quote prices regardless of lock

    Returns:
        AmendmentImpact with one line per change, in request order. A
        modify that leaves both quantity and line value unchanged yields no
        line.

    Raises:
        ChangeValidationError: If the change set does not fit the order
    """
    _validate_change_set(changes)
    lines_by_product = {item.product_id: item for item in items}
    result: list[LineImpact] = []

    for change in changes:
        existing = lines_by_product.get(change.product_id)
        entry = catalog.get(change.product_id)
        quote_price = quote_prices.get(change.product_id)
        if quote_price is None and existing is not None:
            quote_price = existing.quote_price_cents

        if change.kind is ChangeType.ADD:
            if existing is not None:
                raise ChangeValidationError(
                    "Product is already on the order; modify the line instead",
                    product_id=change.product_id,
                    order_item_id=existing.id,
                )
            if entry is None:
                raise ChangeValidationError(
                    "Unknown product", product_id=change.product_id
                )
            price = resolve_unit_price(
                ChangeType.ADD,
                locked=locked,
                use_quote_prices=use_quote_prices,
                quote_price_cents=quote_price,
                catalog_price_cents=entry.price_cents,
                override_price_cents=change.override_price_cents,
            )
            result.append(
                LineImpact(
                    change_type=ChangeType.ADD,
                    product_id=entry.product_id,
                    product_name=entry.name,
                    product_sku=entry.sku,
                    order_item_id=None,
                    previous_quantity=0,
                    new_quantity=change.quantity,
                    quote_price_cents=quote_price,
                    current_price_cents=entry.price_cents,
                    applied_price_cents=price.unit_price_cents,
                    price_source=price.source,
                    line_difference_cents=change.quantity * price.unit_price_cents,
                    notes=change.notes,
                )
            )
            continue

        if existing is None:
            raise ChangeValidationError(
                "Product is not on the order",
                product_id=change.product_id,
                change_type=change.kind.value,
            )

        current_price = entry.price_cents if entry is not None else None
        active_quantity = existing.active_quantity

        if change.kind is ChangeType.REMOVE:
            # Shipped units stay on the order; only the remainder is credited.
            remaining = existing.shippable_quantity
            if remaining <= 0:
                raise ChangeValidationError(
                    "Nothing left to remove on this line",
                    product_id=change.product_id,
                    order_item_id=existing.id,
                    quantity_fulfilled=existing.quantity_fulfilled,
                )
            price = resolve_unit_price(
                ChangeType.REMOVE,
                locked=locked,
                use_quote_prices=use_quote_prices,
                quote_price_cents=quote_price,
                catalog_price_cents=current_price,
                order_price_cents=existing.unit_price_cents,
            )
            result.append(
                LineImpact(
                    change_type=ChangeType.REMOVE,
                    product_id=existing.product_id,
                    product_name=existing.product_name,
                    product_sku=existing.product_sku,
                    order_item_id=existing.id,
                    previous_quantity=active_quantity,
                    new_quantity=existing.quantity_fulfilled,
                    quote_price_cents=quote_price,
                    current_price_cents=current_price,
                    applied_price_cents=price.unit_price_cents,
                    price_source=price.source,
                    line_difference_cents=-remaining * price.unit_price_cents,
                    notes=change.notes,
                )
            )
            continue

        minimum = committed_quantity(existing)
        if change.quantity < minimum:
            raise ChangeValidationError(
                "Quantity cannot drop below units already shipped, "
                "backordered or cancelled",
                product_id=change.product_id,
                order_item_id=existing.id,
                requested=change.quantity,
                minimum=minimum,
            )
        price = resolve_unit_price(
            ChangeType.MODIFY,
            locked=locked,
            use_quote_prices=use_quote_prices,
            quote_price_cents=quote_price,
            catalog_price_cents=current_price,
            order_price_cents=existing.unit_price_cents,
            override_price_cents=change.override_price_cents,
        )
        new_active = change.quantity - existing.quantity_cancelled
        difference = (
            new_active * price.unit_price_cents
            - active_quantity * existing.unit_price_cents
        )
        if change.quantity == existing.quantity and difference == 0:
            continue
        result.append(
            LineImpact(
                change_type=ChangeType.MODIFY,
                product_id=existing.product_id,
                product_name=existing.product_name,
                product_sku=existing.product_sku,
                order_item_id=existing.id,
                previous_quantity=existing.quantity,
                new_quantity=change.quantity,
                quote_price_cents=quote_price,
                current_price_cents=current_price,
                applied_price_cents=price.unit_price_cents,
                price_source=price.source,
                line_difference_cents=difference,
                notes=change.notes,
            )
        )

    impact = AmendmentImpact(lines=result)
    logger.debug(
        "Amendment impact calculated",
        item_changes=impact.item_changes,
        difference_cents=impact.difference_cents,
        locked=locked,
        use_quote_prices=use_quote_prices,
    )
    return impact
