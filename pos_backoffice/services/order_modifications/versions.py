"""
Version ledger helpers.

A version is an immutable copy of an order's lines and totals. This module
builds the snapshot payload stored in ``order_versions.items_snapshot`` and
diffs two snapshots. Lines are matched by product, since an order carries
at most one line per product.
"""

from typing import Any, Iterable, Mapping, Sequence


def build_item_snapshot(item: Any) -> dict[str, Any]:
    """Serialize one order line for a version snapshot."""
    status = item.fulfillment_status
    return {
        "product_id": item.product_id,
        "product_name": item.product_name,
        "product_sku": item.product_sku,
        "quantity": item.quantity,
        "unit_price_cents": item.unit_price_cents,
        "line_total_cents": item.line_total_cents,
        "fulfillment_status": getattr(status, "value", status),
        "quantity_fulfilled": item.quantity_fulfilled,
        "quantity_backordered": item.quantity_backordered,
        "quantity_cancelled": item.quantity_cancelled,
    }


def build_items_snapshot(items: Iterable[Any]) -> list[dict[str, Any]]:
    return [build_item_snapshot(item) for item in sorted(items, key=lambda i: i.product_id)]


def _effective_quantity(line: Mapping[str, Any]) -> int:
    return line["quantity"] - line.get("quantity_cancelled", 0)


def diff_snapshots(
    base_items: Sequence[Mapping[str, Any]],
    target_items: Sequence[Mapping[str, Any]],
    base_total_cents: int,
    target_total_cents: int,
) -> dict[str, Any]:
    """
    Classify line changes between two snapshots.

    Lines only in ``target_items`` are added, lines only in ``base_items``
    are removed, and lines in both whose effective quantity (ordered minus
    cancelled) or unit price differs are modified. Swapping the arguments
    swaps added and removed, swaps previous and new values and negates the
    total difference.

    Returns:
        Dict with ``added``, ``removed``, ``modified`` lists (sorted by
        product id) and ``total_difference_cents``
    """
    base = {line["product_id"]: line for line in base_items}
    target = {line["product_id"]: line for line in target_items}

    added = [
        {
            "product_id": pid,
            "product_name": target[pid]["product_name"],
            "quantity": _effective_quantity(target[pid]),
            "unit_price_cents": target[pid]["unit_price_cents"],
        }
        for pid in sorted(target.keys() - base.keys())
    ]
    removed = [
        {
            "product_id": pid,
            "product_name": base[pid]["product_name"],
            "quantity": _effective_quantity(base[pid]),
            "unit_price_cents": base[pid]["unit_price_cents"],
        }
        for pid in sorted(base.keys() - target.keys())
    ]

    modified = []
    for pid in sorted(base.keys() & target.keys()):
        before, after = base[pid], target[pid]
        previous_quantity = _effective_quantity(before)
        new_quantity = _effective_quantity(after)
        if (
            previous_quantity == new_quantity
            and before["unit_price_cents"] == after["unit_price_cents"]
        ):
            continue
        modified.append(
            {
                "product_id": pid,
                "product_name": after["product_name"],
                "previous_quantity": previous_quantity,
                "new_quantity": new_quantity,
                "quantity_change": new_quantity - previous_quantity,
                "previous_unit_price_cents": before["unit_price_cents"],
                "new_unit_price_cents": after["unit_price_cents"],
            }
        )

    return {
        "added": added,
        "removed": removed,
        "modified": modified,
        "total_difference_cents": target_total_cents - base_total_cents,
    }
