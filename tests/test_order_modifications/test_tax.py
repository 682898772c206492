"""
Tests for the provincial tax calculator.
"""

import pytest

from pos_backoffice.services.order_modifications.tax import ProvincialTaxCalculator


@pytest.fixture
def calculator() -> ProvincialTaxCalculator:
    return ProvincialTaxCalculator(default_province="ON")


class TestProvincialTaxCalculator:
    def test_ontario_hst(self, calculator: ProvincialTaxCalculator):
        breakdown = calculator.calculate(100000, 0, "ON")

        assert breakdown.taxable_cents == 100000
        assert breakdown.hst_cents == 13000
        assert breakdown.tax_cents == 13000

    def test_british_columbia_gst_and_pst(self, calculator: ProvincialTaxCalculator):
        breakdown = calculator.calculate(100000, 0, "BC")

        assert breakdown.gst_cents == 5000
        assert breakdown.pst_cents == 7000
        assert breakdown.tax_cents == 12000

    def test_quebec_qst_applies_on_gst_inclusive_amount(
        self, calculator: ProvincialTaxCalculator
    ):
        breakdown = calculator.calculate(100000, 0, "QC")

        assert breakdown.gst_cents == 5000
        # 105000 x 9.975% = 10473.75
        assert breakdown.pst_cents == 10474
        assert breakdown.tax_cents == 15474

    def test_discount_reduces_taxable_amount(self, calculator: ProvincialTaxCalculator):
        breakdown = calculator.calculate(100000, 20000, "ON")

        assert breakdown.taxable_cents == 80000
        assert breakdown.tax_cents == 10400

    def test_discount_larger_than_subtotal(self, calculator: ProvincialTaxCalculator):
        breakdown = calculator.calculate(10000, 12000, "ON")

        assert breakdown.taxable_cents == 0
        assert breakdown.tax_cents == 0

    def test_rounds_half_up(self, calculator: ProvincialTaxCalculator):
        # 50 x 13% = 6.5
        assert calculator.calculate(50, 0, "ON").tax_cents == 7

    def test_lowercase_province(self, calculator: ProvincialTaxCalculator):
        assert calculator.calculate(100000, 0, "ab").tax_cents == 5000

    def test_unknown_province_uses_default(self, calculator: ProvincialTaxCalculator):
        assert calculator.calculate(100000, 0, "ZZ").tax_cents == 13000

    def test_missing_province_uses_default(self):
        calculator = ProvincialTaxCalculator(default_province="ab")

        assert calculator.calculate(100000, 0, None).tax_cents == 5000
