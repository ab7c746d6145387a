"""
schemas.py — EvaluatorAgent Pydantic v2 data contracts.

Defines:
  - DeductionSet  (itemised deduction claims fed to the old regime calculator)
  - RegimeResult  (full tax computation for one regime)
  - Comparison    (dual-regime comparison — main EvaluatorAgent output)

Everything here is request-scoped and frozen: the engine builds a fresh
Comparison per call and nothing mutates it afterwards.
"""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Regime = Literal["old", "new"]
Verdict = Literal["old", "new", "equal"]


# ---------------------------------------------------------------------------
# DeductionSet — raw claims (caps are applied by the engine, not here)
# ---------------------------------------------------------------------------

class DeductionSet(BaseModel):
    """
    Deduction claims for the old regime.

    Values above the statutory maxima are accepted here and CLAMPED by
    compute_old_regime(); the request schema is where over-cap values are
    rejected. The new regime ignores this object entirely.
    """
    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    section_80c: float = Field(default=0, ge=0, alias="section80C")
    section_80d: float = Field(default=0, ge=0, alias="section80D")
    hra: float = Field(default=0, ge=0)
    other: float = Field(default=0, ge=0)


# ---------------------------------------------------------------------------
# RegimeResult — full tax calculation for one regime
# ---------------------------------------------------------------------------

class RegimeResult(BaseModel):
    """
    Complete tax computation result for a single regime (old or new).

    Computation sequence (order determines correctness):
      1. total_deductions = standard deduction + applicable capped claims
      2. taxable_income = max(0, gross_income - total_deductions)
         (slabs use the exact value; amounts are reported in whole rupees)
      3. slab tax = progressive bracket sum, rounded to the nearest rupee
      4. 87A rebate → base_tax (= 0 when taxable income is at or below the ceiling)
      5. cess = 4% of base_tax, rounded (0 when base_tax is 0)
      6. total_tax = base_tax + cess
    """
    model_config = ConfigDict(extra="forbid", frozen=True)

    regime: Regime
    gross_income: int              # Whole rupees, rounded half up
    total_deductions: int
    taxable_income: int
    base_tax: int                  # After 87A rebate, before cess
    cess: int
    total_tax: int
    effective_rate_percent: float  # total_tax / gross_income * 100, 2 dp


# ---------------------------------------------------------------------------
# Comparison — public output of compare_tax_regimes()
# ---------------------------------------------------------------------------

class Comparison(BaseModel):
    """
    Old vs new regime side by side.

    savings is SIGNED: old.total_tax - new.total_tax. Positive means the new
    regime is cheaper. better_regime follows the sign; zero is "equal".
    """
    model_config = ConfigDict(extra="forbid", frozen=True)

    old: RegimeResult
    new: RegimeResult
    better_regime: Verdict
    savings: int
    recommendation_text: str


__all__ = [
    "DeductionSet",
    "RegimeResult",
    "Comparison",
    "Regime",
    "Verdict",
]
