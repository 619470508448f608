from unittest.mock import MagicMock

import pytest

from tariffs import (
    ONEE_TARIFFS,
    RADEEF_TARIFFS,
    UNBOUNDED,
    Bounded,
    PricingMode,
    SurtaxConfig,
    SurtaxTier,
    TariffTable,
    TariffTier,
)


@pytest.fixture
def radeef():
    return RADEEF_TARIFFS


@pytest.fixture
def onee():
    return ONEE_TARIFFS


@pytest.fixture(params=["radeef", "onee"])
def any_table(request):
    return {"radeef": RADEEF_TARIFFS, "onee": ONEE_TARIFFS}[request.param]


@pytest.fixture
def influx_client():
    """InfluxDB client double: writes are recorded, queries return nothing."""
    client = MagicMock()
    client.query_api.return_value.query.return_value = []
    return client


@pytest.fixture
def no_sleep(monkeypatch):
    import config
    monkeypatch.setattr(config.time, "sleep", lambda s: None)


def make_table(progressive, selective, ceiling, surtax=None, vat_rate=0.1, fixed_fee=10.0):
    """Build a table from (min, max, price) triples, max None meaning unbounded."""
    def tiers(rows, mode):
        return tuple(
            TariffTier(lo, UNBOUNDED if hi is None else Bounded(hi), price, mode)
            for lo, hi, price in rows
        )

    if surtax is None:
        surtax = SurtaxConfig(
            exemption_threshold=200,
            tiers=(
                SurtaxTier(0, Bounded(100), 0.01, "T1"),
                SurtaxTier(101, Bounded(200), 0.02, "T2"),
                SurtaxTier(201, UNBOUNDED, 0.03, "T3"),
            ),
        )
    return TariffTable(
        provider="TEST",
        progressive_tiers=tiers(progressive, PricingMode.PROGRESSIVE),
        selective_tiers=tiers(selective, PricingMode.SELECTIVE),
        progressive_ceiling=ceiling,
        vat_rate=vat_rate,
        fixed_fee=fixed_fee,
        surtax=surtax,
    )


@pytest.fixture
def table_factory():
    return make_table
