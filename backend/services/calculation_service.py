"""
Calculation service — subtotal, fees, taxes and total for an order.

Stateless: no database, no I/O.

Rounding contract: every monetary value is rounded to 2 places (ROUND_HALF_UP)
at each aggregation step, in this order:

    line        = round2(quantity × unit_price)
    subtotal    = round2(Σ line)
    processing  = round2(subtotal × processing_fee_rate)
    shipping    = round2(shipping_fee)
    insurance   = round2(subtotal × insurance_rate)
    taxable     = round2(subtotal + processing + shipping + insurance)
    taxes       = round2(taxable × tax_rate)
    total       = round2(taxable + taxes)

Changing the order of rounding changes results; tests lock it.
"""
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Protocol

from domain.constants import TOTAL_TOLERANCE
from domain.errors import InvalidInputError

_CENTS = Decimal("0.01")


class PricedItem(Protocol):
    quantity: int
    unit_price: Decimal


@dataclass(frozen=True)
class CalculationItem:
    quantity: int
    unit_price: Decimal


@dataclass(frozen=True)
class CalculationConfig:
    processing_fee_rate: Decimal = Decimal("0.05")
    tax_rate: Decimal = Decimal("0.0825")
    shipping_fee: Decimal = Decimal("0")
    insurance_rate: Decimal = Decimal("0")

    @classmethod
    def from_settings(cls, settings) -> "CalculationConfig":
        return cls(
            processing_fee_rate=Decimal(str(settings.processing_fee_rate)),
            tax_rate=Decimal(str(settings.tax_rate)),
            shipping_fee=Decimal(str(settings.shipping_fee)),
            insurance_rate=Decimal(str(settings.insurance_rate)),
        )


@dataclass(frozen=True)
class Fees:
    processing: Decimal = Decimal("0.00")
    shipping: Decimal = Decimal("0.00")
    insurance: Decimal = Decimal("0.00")

    @property
    def total(self) -> Decimal:
        return self.processing + self.shipping + self.insurance


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    fees: Fees = field(default_factory=Fees)
    taxes: Decimal = Decimal("0.00")
    total: Decimal = Decimal("0.00")

    def to_dict(self) -> dict:
        return {
            "subtotal": str(self.subtotal),
            "fees": {
                "processing": str(self.fees.processing),
                "shipping": str(self.fees.shipping),
                "insurance": str(self.fees.insurance),
            },
            "taxes": str(self.taxes),
            "total": str(self.total),
        }


def round2(value) -> Decimal:
    """Round to cents, half away from zero."""
    return Decimal(str(value)).quantize(_CENTS, rounding=ROUND_HALF_UP)


def item_total(quantity, unit_price) -> Decimal:
    """Line total (quantity × unit price), rounded to cents."""
    quantity = Decimal(str(quantity))
    unit_price = Decimal(str(unit_price))
    if quantity < 0 or unit_price < 0:
        raise InvalidInputError(
            "Quantity and unit price must be non-negative",
            details={"quantity": str(quantity), "unit_price": str(unit_price)},
        )
    return round2(quantity * unit_price)


def compute_totals(items: Iterable[PricedItem], config: CalculationConfig | None = None) -> OrderTotals:
    """
    Compute order totals for priced items.

    Args:
        items: objects exposing `quantity` and `unit_price`
        config: fee and tax rates (defaults: 5% processing, 8.25% tax)

    Returns:
        OrderTotals with all values rounded to 2 decimal places

    Raises:
        InvalidInputError: negative quantity or price
    """
    config = config or CalculationConfig()

    subtotal = round2(sum((item_total(i.quantity, i.unit_price) for i in items), Decimal("0")))

    fees = Fees(
        processing=round2(subtotal * config.processing_fee_rate),
        shipping=round2(config.shipping_fee),
        insurance=round2(subtotal * config.insurance_rate),
    )

    taxable = round2(subtotal + fees.total)
    taxes = round2(taxable * config.tax_rate)
    total = round2(taxable + taxes)

    return OrderTotals(subtotal=subtotal, fees=fees, taxes=taxes, total=total)


def validate_totals(totals: OrderTotals) -> bool:
    """True when no value is negative and total matches its parts within a cent."""
    if totals.subtotal < 0 or totals.taxes < 0 or totals.total < 0:
        return False
    expected = totals.subtotal + totals.fees.total + totals.taxes
    return abs(totals.total - expected) <= Decimal(TOTAL_TOLERANCE)
