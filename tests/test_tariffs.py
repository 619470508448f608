from datetime import date

import pytest

from errors import ConfigurationError
from tariffs import (
    ONEE_TARIFFS,
    RADEEF_TARIFFS,
    UNBOUNDED,
    Bounded,
    PricingMode,
    SurtaxConfig,
    SurtaxTier,
    TariffTier,
    get_tariff,
)


@pytest.mark.parametrize("provider, expected", [
    ("radeef", RADEEF_TARIFFS),
    ("ONEE", ONEE_TARIFFS),
    ("  Radeef ", RADEEF_TARIFFS),
])
def test_get_tariff(provider, expected):
    assert get_tariff(provider) is expected


@pytest.mark.parametrize("provider", ["lydec", "", None])
def test_get_tariff_unknown_provider(provider):
    with pytest.raises(ConfigurationError):
        get_tariff(provider)


def test_providers_differ_only_by_vat():
    assert RADEEF_TARIFFS.vat_rate == 0.18
    assert ONEE_TARIFFS.vat_rate == 0.20
    for field in ("progressive_tiers", "selective_tiers", "progressive_ceiling", "fixed_fee", "surtax"):
        assert getattr(RADEEF_TARIFFS, field) == getattr(ONEE_TARIFFS, field)


def test_official_2025_data():
    assert RADEEF_TARIFFS.progressive_ceiling == 150
    assert RADEEF_TARIFFS.fixed_fee == 20.74
    assert [t.unit_price for t in RADEEF_TARIFFS.selective_tiers] == [0.9095, 0.9895, 1.1709, 1.3524]
    assert RADEEF_TARIFFS.surtax.exemption_threshold == 200
    assert RADEEF_TARIFFS.valid_from == date(2025, 1, 1)
    assert RADEEF_TARIFFS.valid_to == date(2025, 12, 31)


def test_mode_for_switches_after_ceiling():
    assert RADEEF_TARIFFS.mode_for(150) is PricingMode.PROGRESSIVE
    assert RADEEF_TARIFFS.mode_for(150.01) is PricingMode.SELECTIVE


class TestTariffTier:

    def test_bounds_are_inclusive(self):
        tier = TariffTier(101, Bounded(150), 0.9095, PricingMode.PROGRESSIVE)

        assert tier.contains(101)
        assert tier.contains(150)
        assert not tier.contains(100.99)
        assert not tier.contains(150.01)

    def test_width(self):
        assert TariffTier(0, Bounded(100), 1.0, PricingMode.PROGRESSIVE).width() == 101
        assert TariffTier(511, UNBOUNDED, 1.0, PricingMode.SELECTIVE).width() is None

    def test_range_label(self):
        assert TariffTier(511, UNBOUNDED, 1.0, PricingMode.SELECTIVE).range_label() == "511 - ∞ kWh"

    @pytest.mark.parametrize("lo, hi, price", [(-1, 10, 1.0), (10, 5, 1.0), (0, 10, 0), (0, 10, -0.5)])
    def test_invalid_tier(self, lo, hi, price):
        with pytest.raises(ConfigurationError):
            TariffTier(lo, Bounded(hi), price, PricingMode.PROGRESSIVE)


class TestTableValidation:

    def test_overlapping_tiers(self, table_factory):
        with pytest.raises(ConfigurationError, match="overlaps"):
            table_factory([(0, 100, 1.0), (90, 150, 1.0)], [], ceiling=150)

    def test_gap_between_tiers(self, table_factory):
        with pytest.raises(ConfigurationError, match="Gap"):
            table_factory([(0, 100, 1.0), (120, 150, 1.0)], [], ceiling=150)

    def test_unbounded_tier_must_be_last(self, table_factory):
        with pytest.raises(ConfigurationError, match="unbounded"):
            table_factory([(0, None, 1.0), (101, 150, 1.0)], [], ceiling=150)

    def test_ceiling_outside_progressive_tiers(self, table_factory):
        with pytest.raises(ConfigurationError, match="ceiling"):
            table_factory([(0, 100, 1.0)], [(101, None, 1.0)], ceiling=150)

    @pytest.mark.parametrize("vat_rate", [-0.1, 1.5])
    def test_vat_rate_range(self, table_factory, vat_rate):
        with pytest.raises(ConfigurationError):
            table_factory([(0, 150, 1.0)], [], ceiling=150, vat_rate=vat_rate)

    def test_negative_fixed_fee(self, table_factory):
        with pytest.raises(ConfigurationError):
            table_factory([(0, 150, 1.0)], [], ceiling=150, fixed_fee=-1)

    def test_surtax_only_last_tier_may_be_open(self):
        with pytest.raises(ConfigurationError):
            SurtaxConfig(
                exemption_threshold=200,
                tiers=(SurtaxTier(0, UNBOUNDED, 0.1, "T1"), SurtaxTier(101, UNBOUNDED, 0.2, "T2")),
            )

    def test_surtax_needs_a_tier(self):
        with pytest.raises(ConfigurationError):
            SurtaxConfig(exemption_threshold=200, tiers=())
