"""
Sales tax calculation for order totals.

Tax is owned by the pricing service; the amendment engine only needs a
calculator that turns a subtotal, a discount and a province into tax and
total. ``ProvincialTaxCalculator`` is the default implementation using
Canadian provincial rates. Deployments that call out to a pricing service
pass their own ``TaxCalculator`` to the order modification service.
"""

from abc import ABC, abstractmethod
from decimal import ROUND_HALF_UP, Decimal
from typing import NamedTuple, Optional

from pos_backoffice.core.logging import get_logger

logger = get_logger(__name__)


class TaxRate(NamedTuple):
    hst: Decimal = Decimal("0")
    gst: Decimal = Decimal("0")
    pst: Decimal = Decimal("0")
    # QST is charged on the GST-inclusive amount.
    pst_on_gst: bool = False


PROVINCIAL_RATES: dict[str, TaxRate] = {
    "ON": TaxRate(hst=Decimal("0.13")),
    "NB": TaxRate(hst=Decimal("0.15")),
    "NS": TaxRate(hst=Decimal("0.15")),
    "NL": TaxRate(hst=Decimal("0.15")),
    "PE": TaxRate(hst=Decimal("0.15")),
    "BC": TaxRate(gst=Decimal("0.05"), pst=Decimal("0.07")),
    "SK": TaxRate(gst=Decimal("0.05"), pst=Decimal("0.06")),
    "MB": TaxRate(gst=Decimal("0.05"), pst=Decimal("0.07")),
    "QC": TaxRate(gst=Decimal("0.05"), pst=Decimal("0.09975"), pst_on_gst=True),
    "AB": TaxRate(gst=Decimal("0.05")),
    "NT": TaxRate(gst=Decimal("0.05")),
    "NU": TaxRate(gst=Decimal("0.05")),
    "YT": TaxRate(gst=Decimal("0.05")),
}


class TaxBreakdown(NamedTuple):
    taxable_cents: int
    hst_cents: int
    gst_cents: int
    pst_cents: int

    @property
    def tax_cents(self) -> int:
        return self.hst_cents + self.gst_cents + self.pst_cents


def _to_cents(amount: Decimal) -> int:
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class TaxCalculator(ABC):
    """Computes tax for an order subtotal in a jurisdiction."""

    @abstractmethod
    def calculate(
        self,
        subtotal_cents: int,
        discount_cents: int,
        province: Optional[str],
    ) -> TaxBreakdown:
        ...


class ProvincialTaxCalculator(TaxCalculator):
    """
    Canadian HST/GST/PST calculator.

    Taxable amount is the subtotal less the order discount, floored at zero.
    Each component is rounded half up to the cent separately.
    """

    def __init__(self, default_province: str = "ON"):
        self.default_province = default_province.upper()

    def rate_for(self, province: Optional[str]) -> TaxRate:
        code = (province or self.default_province).upper()
        rate = PROVINCIAL_RATES.get(code)
        if rate is None:
            logger.warning(
                "Unknown province, using default tax rate",
                province=code,
                default_province=self.default_province,
            )
            rate = PROVINCIAL_RATES[self.default_province]
        return rate

    def calculate(
        self,
        subtotal_cents: int,
        discount_cents: int,
        province: Optional[str],
    ) -> TaxBreakdown:
        rate = self.rate_for(province)
        taxable = max(subtotal_cents - discount_cents, 0)
        amount = Decimal(taxable)

        hst = _to_cents(amount * rate.hst)
        gst = _to_cents(amount * rate.gst)
        pst_base = amount + gst if rate.pst_on_gst else amount
        pst = _to_cents(pst_base * rate.pst)

        return TaxBreakdown(taxable_cents=taxable, hst_cents=hst, gst_cents=gst, pst_cents=pst)
