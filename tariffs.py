# tariffs.py
"""
Tariff tables for RADEEF and ONEE (official 2025 rates)

A table is built once at import and shared read-only by every calculation.
"""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Optional, Tuple, Union

from errors import ConfigurationError


# ==========================
# TIER BOUNDS
# ==========================

@dataclass(frozen=True)
class Bounded:
    """Upper bound of a tier, inclusive."""
    value: float

    def admits(self, quantity: float) -> bool:
        return quantity <= self.value

    def label(self) -> str:
        return f"{self.value:g}"


@dataclass(frozen=True)
class Unbounded:
    """Upper bound of the last tier of a list."""

    def admits(self, quantity: float) -> bool:
        return True

    def label(self) -> str:
        return "∞"


UNBOUNDED = Unbounded()

Bound = Union[Bounded, Unbounded]


class PricingMode(Enum):
    PROGRESSIVE = "progressive"   # Tarification progressive (تدريجي)
    SELECTIVE = "selective"       # Tarification sélective (انتقائي)


# ==========================
# DATA MODEL
# ==========================

@dataclass(frozen=True)
class TariffTier:
    min: float
    max: Bound
    unit_price: float             # DH/kWh hors taxe
    mode: PricingMode

    def __post_init__(self):
        if self.min < 0:
            raise ConfigurationError(f"Tier lower bound must be >= 0, got {self.min}")
        if isinstance(self.max, Bounded) and self.max.value < self.min:
            raise ConfigurationError(f"Tier {self.min}-{self.max.value} has max below min")
        if self.unit_price <= 0:
            raise ConfigurationError(f"Tier {self.range_label()} has a non-positive price")

    def contains(self, quantity: float, floor: Optional[float] = None) -> bool:
        """With `floor`, the max of the tier just below, the tier covers (floor, max]."""
        above = self.min <= quantity if floor is None else floor < quantity
        return above and self.max.admits(quantity)

    def width(self) -> Optional[float]:
        """Units held by the tier, counting both ends; None when unbounded."""
        if isinstance(self.max, Unbounded):
            return None
        return self.max.value - self.min + 1

    def range_label(self) -> str:
        return f"{self.min:g} - {self.max.label()} kWh"


@dataclass(frozen=True)
class SurtaxTier:
    min: float
    max: Bound
    unit_price: float
    label: str


@dataclass(frozen=True)
class SurtaxConfig:
    exemption_threshold: float
    tiers: Tuple[SurtaxTier, ...]

    def __post_init__(self):
        if not self.tiers:
            raise ConfigurationError("Surtax needs at least one tier")
        for tier in self.tiers[:-1]:
            if not isinstance(tier.max, Bounded):
                raise ConfigurationError(f"Surtax tier '{tier.label}' must be bounded, only the last one may be open")
        _check_contiguous([(t.min, t.max) for t in self.tiers], "surtax")


@dataclass(frozen=True)
class TariffTable:
    provider: str
    progressive_tiers: Tuple[TariffTier, ...]
    selective_tiers: Tuple[TariffTier, ...]
    progressive_ceiling: float
    vat_rate: float
    fixed_fee: float              # Redevance fixe mensuelle hors taxe
    surtax: SurtaxConfig
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None

    def __post_init__(self):
        if not 0 <= self.vat_rate <= 1:
            raise ConfigurationError(f"VAT rate must be within [0, 1], got {self.vat_rate}")
        if self.fixed_fee < 0:
            raise ConfigurationError(f"Fixed fee must be >= 0, got {self.fixed_fee}")
        if not self.progressive_tiers:
            raise ConfigurationError(f"{self.provider}: no progressive tiers")

        for mode, tiers in ((PricingMode.PROGRESSIVE, self.progressive_tiers),
                            (PricingMode.SELECTIVE, self.selective_tiers)):
            for tier in tiers:
                if tier.mode is not mode:
                    raise ConfigurationError(f"{self.provider}: tier {tier.range_label()} listed under {mode.value} tiers")
            _check_contiguous([(t.min, t.max) for t in tiers], mode.value)

        # The ceiling must fall inside the progressive list
        if not any(t.contains(self.progressive_ceiling) for t in self.progressive_tiers):
            raise ConfigurationError(
                f"{self.provider}: progressive ceiling {self.progressive_ceiling} is not covered by progressive tiers"
            )

    def mode_for(self, consumption: float) -> PricingMode:
        if consumption <= self.progressive_ceiling:
            return PricingMode.PROGRESSIVE
        return PricingMode.SELECTIVE

    def tiers_for(self, mode: PricingMode) -> Tuple[TariffTier, ...]:
        if mode is PricingMode.PROGRESSIVE:
            return self.progressive_tiers
        return self.selective_tiers


def _check_contiguous(bounds, kind):
    """Tiers must ascend by min, not overlap, and only the last may be open."""
    for (_, prev_max), (cur_min, _) in zip(bounds, bounds[1:]):
        if isinstance(prev_max, Unbounded):
            raise ConfigurationError(f"Only the last {kind} tier may be unbounded")
        if cur_min <= prev_max.value:
            raise ConfigurationError(f"{kind} tier starting at {cur_min:g} overlaps or is out of order")
        if cur_min - prev_max.value > 1:
            raise ConfigurationError(f"Gap in {kind} tiers between {prev_max.value:g} and {cur_min:g}")


# ==========================
# OFFICIAL 2025 TABLES
# ==========================

def _progressive(min_kwh, max_kwh, price):
    return TariffTier(min_kwh, Bounded(max_kwh), price, PricingMode.PROGRESSIVE)


def _selective(min_kwh, max_kwh, price):
    bound = UNBOUNDED if max_kwh is None else Bounded(max_kwh)
    return TariffTier(min_kwh, bound, price, PricingMode.SELECTIVE)


# TPPAN: no surtax up to 200 kWh, then 0-100 and 101-200 in full plus the excess
TPPAN_2025 = SurtaxConfig(
    exemption_threshold=200,
    tiers=(
        SurtaxTier(0, Bounded(100), 0.0847, "Tranche 1"),
        SurtaxTier(101, Bounded(200), 0.1271, "Tranche 2"),
        SurtaxTier(201, UNBOUNDED, 0.1695, "Tranche 3"),
    ),
)

PROGRESSIVE_TIERS_2025 = (
    _progressive(0, 100, 0.7636),    # Tranche 1: 0-100 kWh
    _progressive(101, 150, 0.9095),  # Tranche 2: 101-150 kWh
)

SELECTIVE_TIERS_2025 = (
    _selective(151, 210, 0.9095),
    _selective(211, 310, 0.9895),
    _selective(311, 510, 1.1709),
    _selective(511, None, 1.3524),
)

FIXED_FEE_2025 = 20.74              # Redevance fixe usage domestique (HT)
PROGRESSIVE_CEILING = 150

RADEEF_TARIFFS = TariffTable(
    provider="RADEEF",
    progressive_tiers=PROGRESSIVE_TIERS_2025,
    selective_tiers=SELECTIVE_TIERS_2025,
    progressive_ceiling=PROGRESSIVE_CEILING,
    vat_rate=0.18,
    fixed_fee=FIXED_FEE_2025,
    surtax=TPPAN_2025,
    valid_from=date(2025, 1, 1),
    valid_to=date(2025, 12, 31),
)

ONEE_TARIFFS = TariffTable(
    provider="ONEE",
    progressive_tiers=PROGRESSIVE_TIERS_2025,
    selective_tiers=SELECTIVE_TIERS_2025,
    progressive_ceiling=PROGRESSIVE_CEILING,
    vat_rate=0.20,
    fixed_fee=FIXED_FEE_2025,
    surtax=TPPAN_2025,
    valid_from=date(2025, 1, 1),
    valid_to=date(2025, 12, 31),
)

TARIFF_TABLES = {
    "radeef": RADEEF_TARIFFS,
    "onee": ONEE_TARIFFS,
}


def get_tariff(provider: str) -> TariffTable:
    """Return the table for a provider id (case-insensitive)."""
    try:
        return TARIFF_TABLES[provider.strip().lower()]
    except (KeyError, AttributeError):
        raise ConfigurationError(
            f"Unknown provider {provider!r}, expected one of: {', '.join(TARIFF_TABLES)}"
        ) from None
