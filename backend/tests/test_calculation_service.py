"""
Tests for order pricing.

Tests: line totals, fee/tax composition, step rounding, config from settings.
"""
import pytest
from decimal import Decimal

from config import Settings
from domain.errors import InvalidInputError
from services.calculation_service import (
    CalculationConfig,
    CalculationItem,
    Fees,
    OrderTotals,
    compute_totals,
    item_total,
    round2,
    validate_totals,
)


def D(value: str) -> Decimal:
    return Decimal(value)


class TestRounding:

    @pytest.mark.unit
    def test_half_up_to_cents(self):
        assert round2(D("1.005")) == D("1.01")
        assert round2(D("1.004")) == D("1.00")
        assert round2(D("77.9625")) == D("77.96")

    @pytest.mark.unit
    def test_item_total_rounds(self):
        assert item_total(3, D("0.335")) == D("1.01")  # 1.005 → 1.01

    @pytest.mark.unit
    def test_item_total_rejects_negative(self):
        with pytest.raises(InvalidInputError):
            item_total(-1, D("10.00"))
        with pytest.raises(InvalidInputError):
            item_total(1, D("-10.00"))


class TestComputeTotals:

    @pytest.mark.unit
    def test_two_gold_bars_default_rates(self):
        """2 × 450.00 → 900.00 / 45.00 / 77.96 / 1022.96."""
        totals = compute_totals([CalculationItem(2, D("450.00"))])

        assert totals.subtotal == D("900.00")
        assert totals.fees.processing == D("45.00")
        assert totals.fees.shipping == D("0.00")
        assert totals.fees.insurance == D("0.00")
        assert totals.taxes == D("77.96")  # 945.00 × 0.0825 = 77.9625
        assert totals.total == D("1022.96")

    @pytest.mark.unit
    def test_tax_applies_to_fees_too(self):
        config = CalculationConfig(
            processing_fee_rate=D("0"),
            tax_rate=D("0.10"),
            shipping_fee=D("10.00"),
        )
        totals = compute_totals([CalculationItem(1, D("100.00"))], config)

        assert totals.taxes == D("11.00")
        assert totals.total == D("121.00")

    @pytest.mark.unit
    def test_insurance_is_rate_on_subtotal(self):
        config = CalculationConfig(insurance_rate=D("0.01"))
        totals = compute_totals([CalculationItem(1, D("1000.00"))], config)

        assert totals.fees.insurance == D("10.00")
        assert totals.fees.processing == D("50.00")
        # taxable 1060.00 × 0.0825 = 87.45
        assert totals.taxes == D("87.45")
        assert totals.total == D("1147.45")

    @pytest.mark.unit
    def test_lines_rounded_before_summing(self):
        """Each line rounds to cents first: 2 × round2(1 × 0.005) = 0.02, not round2(0.010)."""
        config = CalculationConfig(processing_fee_rate=D("0"), tax_rate=D("0"))
        totals = compute_totals(
            [CalculationItem(1, D("0.005")), CalculationItem(1, D("0.005"))],
            config,
        )
        assert totals.subtotal == D("0.02")

    @pytest.mark.unit
    def test_empty_items_is_all_zero(self):
        totals = compute_totals([])
        assert totals.subtotal == D("0.00")
        assert totals.total == D("0.00")

    @pytest.mark.unit
    def test_deterministic(self):
        items = [CalculationItem(3, D("33.33")), CalculationItem(7, D("1.99"))]
        assert compute_totals(items) == compute_totals(items)

    @pytest.mark.unit
    def test_accepts_any_priced_item(self):
        class Line:
            quantity = 4
            unit_price = D("25.50")

        assert compute_totals([Line()]).subtotal == D("102.00")

    @pytest.mark.unit
    def test_to_dict_uses_strings(self):
        data = compute_totals([CalculationItem(2, D("450.00"))]).to_dict()
        assert data["total"] == "1022.96"
        assert data["fees"]["processing"] == "45.00"


class TestValidateTotals:

    @pytest.mark.unit
    def test_computed_totals_are_consistent(self):
        totals = compute_totals([CalculationItem(5, D("123.45"))])
        assert validate_totals(totals) is True

    @pytest.mark.unit
    def test_detects_mismatch(self):
        totals = OrderTotals(subtotal=D("100.00"), fees=Fees(), taxes=D("8.25"), total=D("110.00"))
        assert validate_totals(totals) is False

    @pytest.mark.unit
    def test_rejects_negative(self):
        totals = OrderTotals(subtotal=D("-1.00"), total=D("-1.00"))
        assert validate_totals(totals) is False


class TestConfig:

    @pytest.mark.unit
    def test_from_settings(self):
        config = CalculationConfig.from_settings(
            Settings(processing_fee_rate=D("0.02"), tax_rate=D("0.077"), shipping_fee=D("15"))
        )
        assert config.processing_fee_rate == D("0.02")
        assert config.tax_rate == D("0.077")
        assert config.shipping_fee == D("15")
        assert config.insurance_rate == D("0")
