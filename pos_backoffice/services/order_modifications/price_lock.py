"""
Price lock resolution.

An order converted from a quote can lock its prices so that amendments keep
charging the quoted unit price instead of the current catalog price. A lock
may carry an expiry; once it has passed the lock no longer applies, whatever
the stored flag says. Persisting that transition is the caller's business.
"""

from datetime import datetime, timezone
from typing import NamedTuple, Optional

from pos_backoffice.services.order_modifications.enums import ChangeType, PriceSource


class ResolvedPrice(NamedTuple):
    """Unit price chosen for an amendment line and where it came from."""

    unit_price_cents: int
    source: PriceSource


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_price_locked(
    price_locked: bool,
    price_lock_until: Optional[datetime],
    now: Optional[datetime] = None,
) -> bool:
    """
    Check whether quote-time pricing currently applies.

    Args:
        price_locked: Stored lock flag
        price_lock_until: Optional lock expiry
        now: Current time; defaults to the wall clock in UTC

    Returns:
        True if the flag is set and the lock has not expired

    Example:
        >>> from datetime import timedelta
        >>> is_price_locked(True, utc_now() - timedelta(days=1))
        False
    """
    if not price_locked:
        return False
    if price_lock_until is None:
        return True

    now = now or utc_now()
    until = price_lock_until
    # Naive timestamps are stored as UTC.
    if until.tzinfo is None:
        until = until.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return until > now


def resolve_unit_price(
    change_type: ChangeType,
    *,
    locked: bool,
    use_quote_prices: bool,
    quote_price_cents: Optional[int],
    catalog_price_cents: Optional[int],
    order_price_cents: Optional[int] = None,
    override_price_cents: Optional[int] = None,
) -> ResolvedPrice:
    """
    Pick the unit price for one amendment line.

    Adds prefer the quote price when the order is locked or the caller asked
    for quote prices, then an explicit override, then the catalog price.
    Modifies prefer an explicit override, then the quote price under the
    same conditions, then keep the line's existing price. Removes always
    credit the line's existing price.

    Raises:
        ValueError: If no price is available for the line
    """
    quote_applies = quote_price_cents is not None and (locked or use_quote_prices)

    if change_type is ChangeType.REMOVE:
        if order_price_cents is None:
            raise ValueError("Removed line has no order price")
        return ResolvedPrice(order_price_cents, PriceSource.ORDER)

    if change_type is ChangeType.ADD:
        if quote_applies:
            return ResolvedPrice(quote_price_cents, PriceSource.QUOTE)
        if override_price_cents is not None:
            return ResolvedPrice(override_price_cents, PriceSource.OVERRIDE)
        if catalog_price_cents is None:
            raise ValueError("Added product has no catalog price")
        return ResolvedPrice(catalog_price_cents, PriceSource.CATALOG)

    if override_price_cents is not None:
        return ResolvedPrice(override_price_cents, PriceSource.OVERRIDE)
    if quote_applies:
        return ResolvedPrice(quote_price_cents, PriceSource.QUOTE)
    if order_price_cents is None:
        raise ValueError("Modified line has no order price")
    return ResolvedPrice(order_price_cents, PriceSource.ORDER)


def recommended_price(
    locked: bool,
    quote_price_cents: Optional[int],
    current_price_cents: Optional[int],
    order_price_cents: Optional[int],
) -> Optional[int]:
    """
    Price to suggest for a product on an order.

    The quote price while the lock holds, otherwise the current catalog price,
    falling back to whatever the order line already charges.
    """
    if locked and quote_price_cents is not None:
        return quote_price_cents
    if current_price_cents is not None:
        return current_price_cents
    return order_price_cents
