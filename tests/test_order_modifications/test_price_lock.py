"""
Tests for price lock resolution and unit price selection.
"""

from datetime import datetime, timedelta, timezone

import pytest

from pos_backoffice.services.order_modifications.enums import ChangeType, PriceSource
from pos_backoffice.services.order_modifications.price_lock import (
    is_price_locked,
    recommended_price,
    resolve_unit_price,
)

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


class TestIsPriceLocked:
    def test_unlocked_flag(self):
        assert is_price_locked(False, None, NOW) is False

    def test_unlocked_flag_ignores_future_expiry(self):
        assert is_price_locked(False, NOW + timedelta(days=1), NOW) is False

    def test_lock_without_expiry(self):
        assert is_price_locked(True, None, NOW) is True

    def test_lock_with_future_expiry(self):
        assert is_price_locked(True, NOW + timedelta(hours=1), NOW) is True

    def test_expired_lock_no_longer_applies(self):
        assert is_price_locked(True, NOW - timedelta(seconds=1), NOW) is False

    def test_lock_expiring_now_no_longer_applies(self):
        assert is_price_locked(True, NOW, NOW) is False

    def test_naive_expiry_is_treated_as_utc(self):
        until = datetime(2026, 3, 15, 13, 0)

        assert is_price_locked(True, until, NOW) is True
        assert is_price_locked(True, until, NOW + timedelta(hours=2)) is False


class TestResolveUnitPrice:
    """Price precedence for added, modified and removed lines."""

    def test_add_uses_quote_price_when_locked(self):
        price = resolve_unit_price(
            ChangeType.ADD,
            locked=True,
            use_quote_prices=False,
            quote_price_cents=4500,
            catalog_price_cents=5000,
        )

        assert price.unit_price_cents == 4500
        assert price.source is PriceSource.QUOTE

    def test_add_uses_quote_price_when_requested(self):
        price = resolve_unit_price(
            ChangeType.ADD,
            locked=False,
            use_quote_prices=True,
            quote_price_cents=4500,
            catalog_price_cents=5000,
        )

        assert price.source is PriceSource.QUOTE

    def test_add_quote_price_beats_override(self):
        price = resolve_unit_price(
            ChangeType.ADD,
            locked=True,
            use_quote_prices=False,
            quote_price_cents=4500,
            catalog_price_cents=5000,
            override_price_cents=4000,
        )

        assert price.unit_price_cents == 4500

    def test_add_override_without_quote(self):
        price = resolve_unit_price(
            ChangeType.ADD,
            locked=True,
            use_quote_prices=False,
            quote_price_cents=None,
            catalog_price_cents=5000,
            override_price_cents=4000,
        )

        assert price.unit_price_cents == 4000
        assert price.source is PriceSource.OVERRIDE

    def test_add_ignores_quote_price_when_unlocked(self):
        price = resolve_unit_price(
            ChangeType.ADD,
            locked=False,
            use_quote_prices=False,
            quote_price_cents=4500,
            catalog_price_cents=5000,
        )

        assert price.unit_price_cents == 5000
        assert price.source is PriceSource.CATALOG

    def test_add_without_any_price_raises(self):
        with pytest.raises(ValueError):
            resolve_unit_price(
                ChangeType.ADD,
                locked=False,
                use_quote_prices=False,
                quote_price_cents=None,
                catalog_price_cents=None,
            )

    def test_modify_override_beats_quote(self):
        price = resolve_unit_price(
            ChangeType.MODIFY,
            locked=True,
            use_quote_prices=False,
            quote_price_cents=9000,
            catalog_price_cents=11000,
            order_price_cents=10000,
            override_price_cents=8500,
        )

        assert price.unit_price_cents == 8500
        assert price.source is PriceSource.OVERRIDE

    def test_modify_uses_quote_price_when_locked(self):
        price = resolve_unit_price(
            ChangeType.MODIFY,
            locked=True,
            use_quote_prices=False,
            quote_price_cents=9000,
            catalog_price_cents=11000,
            order_price_cents=10000,
        )

        assert price.unit_price_cents == 9000
        assert price.source is PriceSource.QUOTE

    def test_modify_keeps_order_price(self):
        price = resolve_unit_price(
            ChangeType.MODIFY,
            locked=False,
            use_quote_prices=False,
            quote_price_cents=9000,
            catalog_price_cents=11000,
            order_price_cents=10000,
        )

        assert price.unit_price_cents == 10000
        assert price.source is PriceSource.ORDER

    def test_remove_always_credits_order_price(self):
        price = resolve_unit_price(
            ChangeType.REMOVE,
            locked=True,
            use_quote_prices=True,
            quote_price_cents=9000,
            catalog_price_cents=11000,
            order_price_cents=10000,
        )

        assert price.unit_price_cents == 10000
        assert price.source is PriceSource.ORDER


class TestRecommendedPrice:
    def test_quote_price_while_locked(self):
        assert recommended_price(True, 9000, 11000, 10000) == 9000

    def test_current_price_when_unlocked(self):
        assert recommended_price(False, 9000, 11000, 10000) == 11000

    def test_current_price_when_not_quoted(self):
        assert recommended_price(True, None, 11000, 10000) == 11000

    def test_falls_back_to_order_price(self):
        assert recommended_price(False, None, None, 10000) == 10000
