import math

import pytest

from errors import InvalidInputError
from history import InMemoryBillHistory
from pricing import calculate_bill
from reports import (
    billable_kwh,
    compare_providers,
    format_bill,
    format_currency,
    history_stats,
    tariff_preview,
    what_if,
)
from tariffs import PricingMode


@pytest.mark.parametrize("consumption, expected", [(150, 150), (150.2, 151), (90.00000000000001, 90), (0.3, 1)])
def test_billable_kwh(consumption, expected):
    assert billable_kwh(consumption) == expected


def test_compare_providers_cheapest_first():
    bills = compare_providers(250)

    assert [b.provider for b in bills] == ["RADEEF", "ONEE"]
    assert bills[0].totals.excl_tax == pytest.approx(bills[1].totals.excl_tax)


class TestWhatIf:

    def test_savings(self, radeef):
        bill = calculate_bill(300, radeef)
        result = what_if(bill, 50, radeef)

        assert result.new_consumption == 150
        assert result.bill.mode is PricingMode.PROGRESSIVE
        assert result.monthly_savings == pytest.approx(bill.totals.incl_tax - result.bill.totals.incl_tax)
        assert result.yearly_savings == pytest.approx(result.monthly_savings * 12)
        assert result.monthly_savings > 0

    def test_reduced_consumption_between_integer_brackets(self, radeef):
        result = what_if(calculate_bill(301, radeef), 50, radeef)

        assert result.new_consumption == 150.5
        assert result.bill.consumption == 150.5
        assert result.bill.mode is PricingMode.SELECTIVE

    def test_tiny_consumption_without_reduction(self, radeef):
        bill = calculate_bill(1e-7, radeef)
        result = what_if(bill, 0, radeef)

        assert result.bill.consumption == pytest.approx(1e-7)
        assert result.monthly_savings == 0

    def test_no_reduction_no_savings(self, radeef):
        result = what_if(calculate_bill(250, radeef), 0, radeef)
        assert result.monthly_savings == 0

    @pytest.mark.parametrize("reduction", [-5, 100, 150])
    def test_reduction_range(self, radeef, reduction):
        with pytest.raises(InvalidInputError):
            what_if(calculate_bill(250, radeef), reduction, radeef)


class TestHistoryStats:

    def test_stats_over_two_months(self, radeef):
        history = InMemoryBillHistory()
        history.append(calculate_bill(200, radeef))
        history.append(calculate_bill(250, radeef))

        stats = history_stats(history.recent(12), radeef)

        assert stats.months == 2
        assert stats.current.consumption == 250
        assert stats.previous.consumption == 200
        assert stats.monthly_change_percent == pytest.approx(25.0)
        assert stats.total_consumption == 450
        total = calculate_bill(200, radeef).totals.incl_tax + calculate_bill(250, radeef).totals.incl_tax
        assert stats.total_cost == pytest.approx(total)
        assert stats.average_monthly_cost == pytest.approx(total / 2)
        expected_savings = calculate_bill(225, radeef).totals.incl_tax - calculate_bill(180, radeef).totals.incl_tax
        assert stats.potential_savings == pytest.approx(expected_savings)

    def test_single_month_has_no_change(self, radeef):
        history = InMemoryBillHistory()
        history.append(calculate_bill(120, radeef))

        stats = history_stats(history.recent(12), radeef)

        assert stats.previous is None
        assert stats.monthly_change_percent is None

    def test_empty_history(self, radeef):
        stats = history_stats([], radeef)

        assert stats.months == 0
        assert stats.current is None
        assert stats.total_cost == 0
        assert stats.average_monthly_cost == 0
        assert stats.potential_savings == 0


class TestTariffPreview:

    def test_selective_preview(self, radeef):
        preview = tariff_preview(250, radeef)

        assert preview.mode is PricingMode.SELECTIVE
        assert preview.tier.min == 211
        assert preview.price_excl_tax == 0.9895
        assert preview.price_incl_tax == pytest.approx(0.9895 * 1.18)
        assert preview.surtax_applicable

    def test_progressive_preview_is_surtax_exempt(self, onee):
        preview = tariff_preview(100, onee)

        assert preview.mode is PricingMode.PROGRESSIVE
        assert preview.vat_rate == 0.20
        assert not preview.surtax_applicable

    @pytest.mark.parametrize("consumption", [-5, math.nan])
    def test_invalid_consumption(self, radeef, consumption):
        with pytest.raises(InvalidInputError):
            tariff_preview(consumption, radeef)


class TestFormatting:

    def test_format_currency_fr(self):
        assert format_currency(1234.5) == "1 234,50 DH"

    def test_format_currency_ar(self):
        assert format_currency(76.36, "ar") == "76,36 درهم"

    def test_format_currency_rounds_for_display_only(self):
        assert format_currency(351.3686) == "351,37 DH"

    def test_format_bill_lines(self, radeef):
        lines = list(format_bill(calculate_bill(250, radeef)))

        assert lines[0] == "RADEEF - 250 kWh (selective)"
        assert any("Tranche 3" in line for line in lines)
        assert lines[-1].endswith("TTC 351,37 DH")

    def test_format_bill_exempt(self, radeef):
        lines = list(format_bill(calculate_bill(150, radeef)))
        assert "TPPAN          exempted" in lines
