# reports.py
"""
Reports built on top of the tariff engine: provider comparison, what-if
savings, history statistics and the tier preview shown before a calculation.
"""

import math
from dataclasses import dataclass
from typing import Iterable, List, Mapping, Optional, Sequence

from errors import InvalidInputError
from history import HistoryEntry
from pricing import BillBreakdown, calculate_bill, find_tier
from tariffs import TARIFF_TABLES, PricingMode, TariffTable, TariffTier

CURRENCY_SUFFIX = {
    "fr": "DH",
    "ar": "درهم",
}

OPTIMIZATION_TARGET = 0.20  # savings shown for a 20% lower average consumption


def billable_kwh(consumption: float) -> int:
    """Metered energy is billed per started kWh, so 150.2 kWh bills as 151."""
    return math.ceil(round(consumption, 6))


@dataclass(frozen=True)
class WhatIfResult:
    reduction_percent: float
    new_consumption: float
    bill: BillBreakdown
    monthly_savings: float
    yearly_savings: float


@dataclass(frozen=True)
class HistoryStats:
    months: int
    current: Optional[BillBreakdown]
    previous: Optional[BillBreakdown]
    monthly_change_percent: Optional[float]
    total_consumption: float
    total_cost: float
    average_monthly_cost: float
    potential_savings: float


@dataclass(frozen=True)
class TariffPreview:
    mode: PricingMode
    tier: TariffTier
    price_excl_tax: float
    price_incl_tax: float
    vat_rate: float
    surtax_applicable: bool


def compare_providers(consumption: float, tables: Optional[Mapping[str, TariffTable]] = None) -> List[BillBreakdown]:
    """Bill the same consumption with every provider, cheapest first."""
    tables = tables or TARIFF_TABLES
    bills = [calculate_bill(consumption, table) for table in tables.values()]
    return sorted(bills, key=lambda b: b.totals.incl_tax)


def what_if(bill: BillBreakdown, reduction_percent: float, table: TariffTable) -> WhatIfResult:
    """Savings if the consumption of `bill` dropped by reduction_percent."""
    if not 0 <= reduction_percent < 100:
        raise InvalidInputError(f"Reduction must be within [0, 100), got {reduction_percent}")

    new_consumption = bill.consumption * (1 - reduction_percent / 100)
    new_bill = calculate_bill(new_consumption, table)
    savings = bill.totals.incl_tax - new_bill.totals.incl_tax
    return WhatIfResult(reduction_percent, new_consumption, new_bill, savings, savings * 12)


def history_stats(entries: Sequence[HistoryEntry], table: TariffTable) -> HistoryStats:
    """Dashboard figures over history entries given newest first."""
    bills = [entry.bill for entry in entries]
    current = bills[0] if bills else None
    previous = bills[1] if len(bills) > 1 else None

    change = None
    if current and previous and previous.consumption > 0:
        change = (current.consumption - previous.consumption) / previous.consumption * 100

    total_consumption = sum(b.consumption for b in bills)
    total_cost = sum(b.totals.incl_tax for b in bills)
    months = max(len(bills), 1)

    potential_savings = 0.0
    average_consumption = total_consumption / months
    if average_consumption > 0:
        current_cost = calculate_bill(average_consumption, table).totals.incl_tax
        optimized_cost = calculate_bill(average_consumption * (1 - OPTIMIZATION_TARGET), table).totals.incl_tax
        potential_savings = current_cost - optimized_cost

    return HistoryStats(
        months=len(bills),
        current=current,
        previous=previous,
        monthly_change_percent=change,
        total_consumption=total_consumption,
        total_cost=total_cost,
        average_monthly_cost=total_cost / months,
        potential_savings=potential_savings,
    )


def tariff_preview(consumption: float, table: TariffTable) -> TariffPreview:
    tier = find_tier(consumption, table)
    return TariffPreview(
        mode=tier.mode,
        tier=tier,
        price_excl_tax=tier.unit_price,
        price_incl_tax=tier.unit_price * (1 + table.vat_rate),
        vat_rate=table.vat_rate,
        surtax_applicable=consumption > table.surtax.exemption_threshold,
    )


def format_currency(amount: float, language: str = "fr") -> str:
    """1234.5 -> '1 234,50 DH' (fr) or '1 234,50 درهم' (ar)"""
    suffix = CURRENCY_SUFFIX.get(language, CURRENCY_SUFFIX["fr"])
    text = f"{amount:,.2f}".replace(",", " ").replace(".", ",")
    return f"{text} {suffix}"


def format_bill(bill: BillBreakdown, language: str = "fr") -> Iterable[str]:
    """Human-readable lines for a breakdown, used by the CLI."""
    money = lambda amount: format_currency(amount, language)
    yield f"{bill.provider} - {bill.consumption:g} kWh ({bill.mode.value})"
    for entry in bill.tier_breakdown:
        yield f"  {entry.tier}: {entry.quantity:g} x {entry.unit_price:.4f} = {money(entry.cost)}"
    yield f"Consumption HT {money(bill.consumption_charge.excl_tax)} | TVA {money(bill.consumption_charge.tax)}"
    yield f"Fixed fee HT   {money(bill.fixed_fee.excl_tax)} | TVA {money(bill.fixed_fee.tax)}"
    if bill.surtax.is_exempted:
        yield "TPPAN          exempted"
    else:
        for entry in bill.surtax.breakdown:
            yield f"  {entry.label}: {entry.quantity:g} x {entry.unit_price:.4f} = {money(entry.cost)}"
        yield f"TPPAN HT       {money(bill.surtax.excl_tax)} | TVA {money(bill.surtax.tax)}"
    yield f"Total HT {money(bill.totals.excl_tax)} | TVA {money(bill.totals.tax)} | TTC {money(bill.totals.incl_tax)}"
