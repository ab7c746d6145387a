"""
orchestrator.py — ExplanationOrchestrator: tax numbers + retrieval + guarded generation.

Flow per request (strictly sequential):
  1. compare_tax_regimes()      — deterministic, never skipped
  2. retriever.search()         — top-k excerpts; ANY failure → zero excerpts
  3. build_explain_prompt()     — guarded prompt
  4. generate_with_fallback()   — model fallback / retry; exhaustion → placeholder text
  5. response assembly          — bullets, trimmed citations, |savings|, timestamp

The retriever and generator are injected long-lived handles (see main.py
lifespan). The orchestrator keeps no per-request state on itself.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Protocol, Sequence

from taxexplainer.agents.evaluator_agent.schemas import Comparison
from taxexplainer.agents.evaluator_agent.tax_engine import compare_tax_regimes
from taxexplainer.agents.explain_agent.schemas import ExplainResponse, RegimeSummary, TaxNumbers
from taxexplainer.agents.input_agent.schemas import ExplainRequest
from taxexplainer.agents.matcher_agent.fallback import (
    FallbackPolicy,
    GenerationExhaustedError,
    generate_with_fallback,
)
from taxexplainer.agents.matcher_agent.llm_service import (
    UNCONFIGURED_MESSAGE,
    TextGenerator,
    build_explain_prompt,
    degraded_message,
    extract_bullets,
)
from taxexplainer.agents.matcher_agent.schemas import RetrievedChunk, SourceCitation

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 5


class Retriever(Protocol):
    def search(self, text: str, k: int = 5) -> list[RetrievedChunk]: ...


def user_question(request: ExplainRequest) -> Optional[str]:
    """The free-text question, or None when absent or blank."""
    if request.query is None:
        return None
    return request.query.strip() or None


def _format_salary(salary: float) -> str:
    # 700000.0 -> "700000", 700000.6 stays "700000.6"
    salary = float(salary)
    return str(int(salary)) if salary.is_integer() else repr(salary)


def retrieval_query_for(request: ExplainRequest) -> str:
    """The user's question when given, else a synthetic one built from the salary."""
    return user_question(request) or f"tax regime comparison for salary {_format_salary(request.salary)}"


class ExplanationOrchestrator:
    def __init__(
        self,
        retriever: Optional[Retriever],
        generator: Optional[TextGenerator],
        policy: FallbackPolicy,
        top_k: int = DEFAULT_TOP_K,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.retriever = retriever
        self.generator = generator
        self.policy = policy
        self.top_k = top_k
        self._sleep = sleep

    @property
    def generation_enabled(self) -> bool:
        return self.generator is not None

    async def retrieve(self, query: str) -> list[RetrievedChunk]:
        """Top-k chunks, or [] on any retrieval problem — never raises."""
        if self.retriever is None:
            logger.warning("Retriever not loaded — continuing without excerpts")
            return []
        try:
            # Embedding + FAISS search are CPU-bound; keep them off the event loop
            chunks = await asyncio.to_thread(self.retriever.search, query, self.top_k)
        except Exception as exc:
            logger.warning("Retrieval failed (continuing without excerpts): %s", exc)
            return []
        logger.info("Retrieval complete chunks=%d", len(chunks))
        return list(chunks)

    async def summarise(
        self,
        comparison: Comparison,
        chunks: Sequence[RetrievedChunk],
        question: Optional[str],
    ) -> tuple[str, list[str]]:
        """(ai_summary, bullets). Unconfigured and exhausted paths return placeholder text."""
        if self.generator is None:
            return UNCONFIGURED_MESSAGE, []

        prompt = build_explain_prompt(comparison, chunks, question)
        try:
            result = await generate_with_fallback(
                self.generator, prompt, self.policy, sleep=self._sleep,
            )
        except GenerationExhaustedError as exc:
            logger.error(
                "All generation candidates failed after %d attempt(s): %s",
                len(exc.attempts), exc,
            )
            return degraded_message(exc), []
        return result.text, extract_bullets(result.text)

    async def explain(self, request: ExplainRequest) -> ExplainResponse:
        comparison = compare_tax_regimes(request.salary, request.deductions)
        chunks = await self.retrieve(retrieval_query_for(request))
        ai_summary, bullets = await self.summarise(comparison, chunks, user_question(request))
        return build_response(comparison, chunks, ai_summary, bullets)


def build_response(
    comparison: Comparison,
    chunks: Sequence[RetrievedChunk],
    ai_summary: Optional[str],
    bullets: list[str],
) -> ExplainResponse:
    return ExplainResponse(
        verdict=comparison.better_regime,
        recommendation=comparison.recommendation_text,
        tax_numbers=TaxNumbers(
            old=RegimeSummary.from_result(comparison.old),
            new=RegimeSummary.from_result(comparison.new),
        ),
        savings=abs(comparison.savings),
        ai_summary=ai_summary,
        bullets=bullets,
        sources=[SourceCitation.from_chunk(c) for c in chunks],
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
