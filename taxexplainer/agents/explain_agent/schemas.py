"""
schemas.py — ExplainAgent response contract.

Defines:
  - RegimeSummary  (trimmed per-regime view for the client)
  - TaxNumbers     (old + new summaries)
  - ExplainResponse

Serialised with camelCase aliases (taxNumbers, aiSummary, totalTax, ...);
FastAPI dumps response models by alias. SourceCitation keeps chunk_id as-is.
"""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from taxexplainer.agents.evaluator_agent.schemas import RegimeResult, Verdict
from taxexplainer.agents.matcher_agent.schemas import SourceCitation


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class RegimeSummary(_CamelModel):
    taxable_income: int
    total_tax: int
    effective_rate: float
    total_deductions: int

    @classmethod
    def from_result(cls, result: RegimeResult) -> "RegimeSummary":
        return cls(
            taxable_income=result.taxable_income,
            total_tax=result.total_tax,
            effective_rate=result.effective_rate_percent,
            total_deductions=result.total_deductions,
        )


class TaxNumbers(_CamelModel):
    old: RegimeSummary
    new: RegimeSummary


class ExplainResponse(_CamelModel):
    """
    Result of POST /api/explain.

    tax_numbers is ALWAYS populated. ai_summary is the model's text, or a
    placeholder when generation is unconfigured or every model failed.
    savings is the magnitude only — the direction is in verdict.
    """
    verdict: Verdict
    recommendation: str
    tax_numbers: TaxNumbers
    savings: int = Field(ge=0)
    ai_summary: Optional[str] = None
    bullets: List[str] = Field(default_factory=list)
    sources: List[SourceCitation] = Field(default_factory=list)
    timestamp: str  # ISO 8601, UTC


__all__ = ["RegimeSummary", "TaxNumbers", "ExplainResponse"]
