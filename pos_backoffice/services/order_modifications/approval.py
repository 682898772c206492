"""
Approval threshold evaluation for order amendments.

An amendment needs a manager's approval when it moves the order total by
more than a fixed amount or by more than a share of the previous total.
The direction of the change does not matter.
"""

from decimal import Decimal

DEFAULT_THRESHOLD_CENTS = 10000
DEFAULT_THRESHOLD_PERCENT = 10.0


def requires_approval(
    difference_cents: int,
    previous_total_cents: int,
    threshold_cents: int = DEFAULT_THRESHOLD_CENTS,
    threshold_percent: float = DEFAULT_THRESHOLD_PERCENT,
) -> bool:
    """
    Decide whether a proposed total change needs human approval.

    Args:
        difference_cents: Proposed change to the order total (any sign)
        previous_total_cents: Order total before the change
        threshold_cents: Absolute change allowed without approval
        threshold_percent: Relative change (percent of previous total)
            allowed without approval

    Returns:
        True if ``abs(difference)`` exceeds either threshold. A previous total
        of zero is treated as one cent, so any non-zero change to an empty
        order requires approval.

    Example:
        >>> requires_approval(5000, 100000)
        False
        >>> requires_approval(-1500, 10000)
        True
    """
    magnitude = abs(difference_cents)

    if magnitude > threshold_cents:
        return True

    base = max(previous_total_cents, 1)
    # Decimal of the configured text, not the binary float.
    return Decimal(magnitude * 100) > Decimal(str(threshold_percent)) * base
