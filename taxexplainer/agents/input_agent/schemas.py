"""
schemas.py — InputAgent Pydantic v2 data contracts.

Defines:
  - DeductionsInput  (request-side deduction claims — over-cap values REJECTED)
  - ExplainRequest   (POST /api/explain body)
  - UploadResponse   (POST /api/upload result)
  - ErrorDetail, ErrorBody, ErrorResponse  (cross-cutting error envelope)

Wire names are camelCase (salary, deductions.section80C, ...). Numbers are
strict: "1200000" as a string is a validation error, not a coerced value.
"""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from taxexplainer.agents.evaluator_agent.schemas import DeductionSet
from taxexplainer.agents.evaluator_agent.tax_engine import CAP_80C, CAP_80D

MAX_QUERY_LENGTH = 500


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class DeductionsInput(DeductionSet):
    """
    Deduction claims as submitted by the client.

    Unlike the engine-side DeductionSet, values above the statutory caps are
    a validation error here. Every field defaults to 0.
    """
    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True, allow_inf_nan=False)

    section_80c: float = Field(default=0, ge=0, le=CAP_80C, strict=True, alias="section80C")
    section_80d: float = Field(default=0, ge=0, le=CAP_80D, strict=True, alias="section80D")
    hra: float = Field(default=0, ge=0, strict=True)
    other: float = Field(default=0, ge=0, strict=True)


class ExplainRequest(BaseModel):
    """
    Incoming explain request.

    salary must be a positive number; deductions may be omitted entirely;
    query is an optional free-text question (max 500 chars).
    """
    model_config = ConfigDict(extra="forbid", frozen=True, allow_inf_nan=False)

    salary: float = Field(
        ...,
        gt=0,
        strict=True,
        description="Annual gross salary in INR. Must be a positive number.",
    )
    deductions: DeductionsInput = Field(default_factory=DeductionsInput)
    query: Optional[str] = Field(
        default=None,
        max_length=MAX_QUERY_LENGTH,
        description="Optional tax question to ground the explanation on.",
    )


# ---------------------------------------------------------------------------
# Upload
# ---------------------------------------------------------------------------

class UploadResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    message: str
    filename: str
    size: int


# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    """Single field-level validation error."""
    model_config = ConfigDict(extra="forbid")

    field: Optional[str] = None   # Dot-notation field path, e.g. "deductions.section80C"
    issue: str                     # Human-readable description of the problem


class ErrorBody(BaseModel):
    """Error envelope body."""
    model_config = ConfigDict(extra="forbid")

    code: str                                      # VALIDATION_ERROR, INTERNAL_ERROR, etc.
    message: str                                   # High-level error description
    details: List[ErrorDetail] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """
    Standard error response format for all endpoints.

    Structure: {"error": {"code": "...", "message": "...", "details": [...]}}
    """
    model_config = ConfigDict(extra="forbid")

    error: ErrorBody


__all__ = [
    "DeductionsInput",
    "ExplainRequest",
    "UploadResponse",
    "ErrorDetail",
    "ErrorBody",
    "ErrorResponse",
    "MAX_QUERY_LENGTH",
]
