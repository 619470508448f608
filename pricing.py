# pricing.py
"""
Tariff engine: tiered consumption charge + fixed fee + TPPAN surtax + VAT

Every function here is pure. Amounts carry full float precision, rounding
is left to whoever displays them.
"""

import math
from dataclasses import asdict, dataclass
from numbers import Real
from typing import Tuple

from errors import ConfigurationError, InvalidInputError
from tariffs import Bounded, PricingMode, TariffTable, TariffTier


@dataclass(frozen=True)
class ChargeAmount:
    excl_tax: float
    tax: float
    incl_tax: float

    @classmethod
    def taxed(cls, excl_tax: float, vat_rate: float) -> "ChargeAmount":
        tax = excl_tax * vat_rate
        return cls(excl_tax, tax, excl_tax + tax)


@dataclass(frozen=True)
class TierCharge:
    tier: str
    mode: PricingMode
    quantity: float
    unit_price: float
    cost: float


@dataclass(frozen=True)
class SurtaxCharge:
    label: str
    quantity: float
    unit_price: float
    cost: float


@dataclass(frozen=True)
class SurtaxResult:
    excl_tax: float
    tax: float
    incl_tax: float
    breakdown: Tuple[SurtaxCharge, ...]
    is_exempted: bool


@dataclass(frozen=True)
class BillBreakdown:
    consumption: float
    provider: str
    mode: PricingMode
    consumption_charge: ChargeAmount
    tier_breakdown: Tuple[TierCharge, ...]
    fixed_fee: ChargeAmount
    surtax: SurtaxResult
    totals: ChargeAmount

    def to_dict(self) -> dict:
        data = asdict(self)
        data["mode"] = self.mode.value
        for entry in data["tier_breakdown"]:
            entry["mode"] = entry["mode"].value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "BillBreakdown":
        """Rebuild a breakdown written by to_dict (e.g. read back from history)."""
        surtax = data["surtax"]
        return cls(
            consumption=data["consumption"],
            provider=data["provider"],
            mode=PricingMode(data["mode"]),
            consumption_charge=ChargeAmount(**data["consumption_charge"]),
            tier_breakdown=tuple(
                TierCharge(**{**entry, "mode": PricingMode(entry["mode"])})
                for entry in data["tier_breakdown"]
            ),
            fixed_fee=ChargeAmount(**data["fixed_fee"]),
            surtax=SurtaxResult(
                excl_tax=surtax["excl_tax"],
                tax=surtax["tax"],
                incl_tax=surtax["incl_tax"],
                breakdown=tuple(SurtaxCharge(**entry) for entry in surtax["breakdown"]),
                is_exempted=surtax["is_exempted"],
            ),
            totals=ChargeAmount(**data["totals"]),
        )


# ==========================
# INPUT VALIDATION
# ==========================

def _check_consumption(consumption, allow_zero=False) -> float:
    if isinstance(consumption, bool) or not isinstance(consumption, Real):
        raise InvalidInputError(f"Consumption must be a number, got {consumption!r}")
    value = float(consumption)
    if not math.isfinite(value):
        raise InvalidInputError(f"Consumption must be finite, got {value}")
    if value < 0 or (value == 0 and not allow_zero):
        raise InvalidInputError(f"Consumption must be positive, got {value:g} kWh")
    return value


# ==========================
# TIER ALLOCATION
# ==========================

def find_tier(consumption: float, table: TariffTable) -> TariffTier:
    """
    Tier of the active pricing mode holding the consumption.

    Bands are written as integers (151-210, 211-310), so a tier that directly
    follows another one covers (previous max, max]: 210.5 kWh belongs to
    211-310. The first selective tier follows the progressive ceiling.
    """
    consumption = _check_consumption(consumption, allow_zero=True)
    mode = table.mode_for(consumption)
    floor = table.progressive_ceiling if mode is PricingMode.SELECTIVE else None
    for tier in table.tiers_for(mode):
        if floor is not None and tier.min - floor > 1:
            floor = None
        if tier.contains(consumption, floor):
            return tier
        floor = tier.max.value if isinstance(tier.max, Bounded) else None
    raise ConfigurationError(
        f"{table.provider}: no {mode.value} tier covers {consumption:g} kWh"
    )


def allocate_consumption(consumption: float, table: TariffTable) -> Tuple[float, Tuple[TierCharge, ...]]:
    """
    Compute the consumption charge excluding tax.

    Up to the progressive ceiling each tier is filled in order, the width of a
    tier counting both of its ends (0-100 holds 101 kWh). Above the ceiling the
    whole consumption is charged at the rate of the selective bracket it falls in.

    Returns:
        (charge excl. tax, per-tier detail)
    """
    consumption = _check_consumption(consumption, allow_zero=True)
    if consumption == 0:
        return 0.0, ()

    if table.mode_for(consumption) is PricingMode.SELECTIVE:
        tier = find_tier(consumption, table)
        cost = consumption * tier.unit_price
        return cost, (TierCharge(tier.range_label(), tier.mode, consumption, tier.unit_price, cost),)

    remaining = consumption
    subtotal = 0.0
    detail = []

    for tier in table.progressive_tiers:
        width = tier.width()
        used = remaining if width is None else min(remaining, width)
        cost = used * tier.unit_price
        if used > 0:
            detail.append(TierCharge(tier.range_label(), tier.mode, used, tier.unit_price, cost))
        subtotal += cost
        remaining -= used
        if remaining <= 0:
            break

    if remaining > 0:
        raise ConfigurationError(
            f"{table.provider}: progressive tiers hold less than {consumption:g} kWh"
        )
    return subtotal, tuple(detail)


# ==========================
# TPPAN SURTAX
# ==========================

def calculate_surtax(consumption: float, table: TariffTable) -> SurtaxResult:
    """
    Progressive parafiscal surtax (TPPAN).

    Nothing is due up to the exemption threshold. Past it every tier but the
    last is charged over its full width, and the last tier only on the
    consumption above its floor.
    """
    consumption = _check_consumption(consumption, allow_zero=True)
    config = table.surtax

    if consumption <= config.exemption_threshold:
        return SurtaxResult(0.0, 0.0, 0.0, (), True)

    total = 0.0
    detail = []
    floor = config.tiers[0].min

    for tier in config.tiers[:-1]:
        width = tier.max.value - floor
        cost = width * tier.unit_price
        detail.append(SurtaxCharge(tier.label, width, tier.unit_price, cost))
        total += cost
        floor = tier.max.value

    last = config.tiers[-1]
    excess = consumption - floor
    if excess > 0:
        cost = excess * last.unit_price
        detail.append(SurtaxCharge(last.label, excess, last.unit_price, cost))
        total += cost

    charge = ChargeAmount.taxed(total, table.vat_rate)
    return SurtaxResult(charge.excl_tax, charge.tax, charge.incl_tax, tuple(detail), False)


# ==========================
# BILL
# ==========================

def calculate_bill(consumption: float, table: TariffTable) -> BillBreakdown:
    """
    Monthly bill for a consumption in kWh.

    Raises:
        InvalidInputError: consumption is not a positive finite number
        ConfigurationError: the table has no tier for the consumption
    """
    consumption = _check_consumption(consumption)

    energy_ht, tier_breakdown = allocate_consumption(consumption, table)
    energy = ChargeAmount.taxed(energy_ht, table.vat_rate)
    fixed_fee = ChargeAmount.taxed(table.fixed_fee, table.vat_rate)
    surtax = calculate_surtax(consumption, table)

    totals = ChargeAmount(
        excl_tax=energy.excl_tax + fixed_fee.excl_tax + surtax.excl_tax,
        tax=energy.tax + fixed_fee.tax + surtax.tax,
        incl_tax=energy.incl_tax + fixed_fee.incl_tax + surtax.incl_tax,
    )

    return BillBreakdown(
        consumption=consumption,
        provider=table.provider,
        mode=table.mode_for(consumption),
        consumption_charge=energy,
        tier_breakdown=tier_breakdown,
        fixed_fee=fixed_fee,
        surtax=surtax,
        totals=totals,
    )
