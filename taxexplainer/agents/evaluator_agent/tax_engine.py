"""
Tax Regime Explainer Tax Engine — FY 2024-25
Pure Python, zero LLM, deterministic. Same input → same output.

Old regime: deduction-heavy, four slabs, ₹50K standard deduction.
New regime: FY 2024-25 post-Budget slabs, ₹75K standard deduction, no itemised deductions.

The 87A rebate is a CLIFF: taxable income at the ceiling pays nothing, one
rupee above it pays the full slab tax + cess. This mirrors the statute and
must not be smoothed.
"""
from __future__ import annotations

import math
from typing import Optional

from taxexplainer.agents.evaluator_agent.schemas import (
    Comparison, DeductionSet, RegimeResult,
)

# ===========================================================================
# STANDARD DEDUCTIONS & CAPS
# ===========================================================================

OLD_STD_DEDUCTION = 50_000
NEW_STD_DEDUCTION = 75_000

CAP_80C = 150_000
CAP_80D = 25_000

CESS_RATE = 0.04

# ===========================================================================
# 87A REBATE CEILINGS — full rebate at or below, none above
# ===========================================================================

OLD_87A_TAXABLE_CEILING = 500_000
NEW_87A_TAXABLE_CEILING = 700_000

# ===========================================================================
# SLAB TABLES — list[tuple[ceiling, rate]]
# ===========================================================================

OLD_REGIME_SLABS: list[tuple[float, float]] = [
    (250_000,      0.00),   # 0–2.5L: 0%
    (500_000,      0.05),   # 2.5–5L: 5%
    (1_000_000,    0.20),   # 5–10L: 20%
    (float("inf"), 0.30),   # >10L: 30%
]

NEW_REGIME_SLABS: list[tuple[float, float]] = [
    (300_000,      0.00),   # 0–3L: 0%
    (700_000,      0.05),   # 3–7L: 5%
    (1_000_000,    0.10),   # 7–10L: 10%
    (1_200_000,    0.15),   # 10–12L: 15%
    (1_500_000,    0.20),   # 12–15L: 20%
    (float("inf"), 0.30),   # >15L: 30%
]


# ===========================================================================
# INTERNAL HELPERS (pure functions — no side effects, no I/O)
# ===========================================================================

def _round_rupee(amount: float) -> int:
    """Round half up to a whole rupee (amounts here are never negative)."""
    return int(math.floor(amount + 0.5))


def _calculate_slab_tax(taxable_income: float, slabs: list[tuple[float, float]]) -> int:
    """
    Apply progressive slab tax to taxable_income using a bracket-list pattern.
    Accumulates tax on each bracket, stops when taxable_income <= previous ceiling.
    The SUM is rounded once, not each bracket.
    """
    tax = 0.0
    prev_ceiling = 0.0
    for ceiling, rate in slabs:
        if taxable_income <= prev_ceiling:
            break
        slab_income = min(taxable_income, ceiling) - prev_ceiling
        tax += slab_income * rate
        prev_ceiling = ceiling
    return _round_rupee(tax)


def _apply_87a(taxable_income: float, slab_tax: int, ceiling: int) -> int:
    """Full rebate at or below the ceiling, nothing above it."""
    if taxable_income <= ceiling:
        return 0
    return slab_tax


def _cess(base_tax: int) -> int:
    if base_tax == 0:
        return 0
    return _round_rupee(base_tax * CESS_RATE)


def _effective_rate(total_tax: int, gross_income: float) -> float:
    if gross_income <= 0:
        return 0.0
    return round(total_tax / gross_income * 100, 2)


def _build_result(
    regime: str,
    gross_income: float,
    total_deductions: float,
    slabs: list[tuple[float, float]],
    rebate_ceiling: int,
) -> RegimeResult:
    # slabs and the 87A ceiling see the exact amount; the result reports whole rupees
    taxable_income = max(0.0, gross_income - total_deductions)
    slab_tax = _calculate_slab_tax(taxable_income, slabs)
    base_tax = _apply_87a(taxable_income, slab_tax, rebate_ceiling)
    cess = _cess(base_tax)
    total_tax = base_tax + cess
    return RegimeResult(
        regime=regime,
        gross_income=_round_rupee(gross_income),
        total_deductions=_round_rupee(total_deductions),
        taxable_income=_round_rupee(taxable_income),
        base_tax=base_tax,
        cess=cess,
        total_tax=total_tax,
        effective_rate_percent=_effective_rate(total_tax, gross_income),
    )


# ===========================================================================
# REGIME CALCULATORS
# ===========================================================================

def compute_old_regime(
    gross_income: float,
    deductions: Optional[DeductionSet] = None,
) -> RegimeResult:
    """
    Old regime tax.

    Deductions: std deduction ₹50K + 80C (clamped to ₹1.5L) + 80D (clamped
    to ₹25K) + HRA + other. Over-cap claims are clamped, never rejected.
    87A: full rebate if taxable <= ₹5L. Cess: 4% on post-87A tax.

    Negative gross_income is the caller's job to reject.
    """
    deductions = deductions or DeductionSet()
    total_deductions = (
        OLD_STD_DEDUCTION
        + min(deductions.section_80c, CAP_80C)
        + min(deductions.section_80d, CAP_80D)
        + deductions.hra
        + deductions.other
    )
    return _build_result(
        "old", gross_income, total_deductions, OLD_REGIME_SLABS, OLD_87A_TAXABLE_CEILING,
    )


def compute_new_regime(gross_income: float) -> RegimeResult:
    """
    New regime tax. Only the ₹75K standard deduction applies.
    87A: full rebate if taxable <= ₹7L. Cess: 4% on post-87A tax.
    """
    return _build_result(
        "new", gross_income, NEW_STD_DEDUCTION, NEW_REGIME_SLABS, NEW_87A_TAXABLE_CEILING,
    )


# ===========================================================================
# COMPARE REGIMES — public API
# ===========================================================================

def recommendation_for(savings: int) -> str:
    """Human-readable verdict for a signed old-minus-new saving."""
    if savings > 0:
        return f"New Regime saves ₹{savings:,} more."
    if savings < 0:
        return f"Old Regime saves ₹{abs(savings):,} more."
    return "Both regimes result in the same tax liability."


def compare_tax_regimes(
    gross_income: float,
    deductions: Optional[DeductionSet] = None,
) -> Comparison:
    """
    Compare old and new regime tax for the same gross income.

    savings = old.total_tax - new.total_tax (signed).
    > 0 → "new", < 0 → "old", == 0 → "equal".
    """
    old = compute_old_regime(gross_income, deductions)
    new = compute_new_regime(gross_income)

    savings = old.total_tax - new.total_tax
    if savings > 0:
        better = "new"
    elif savings < 0:
        better = "old"
    else:
        better = "equal"

    return Comparison(
        old=old,
        new=new,
        better_regime=better,
        savings=savings,
        recommendation_text=recommendation_for(savings),
    )
