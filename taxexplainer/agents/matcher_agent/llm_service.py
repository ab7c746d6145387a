"""
llm_service.py — Mistral generation layer for the tax explanation.

Components:
  build_explain_prompt()  — guarded prompt: rules + deterministic numbers + excerpts + question + task list
  MistralGenerator        — async adapter, turns SDK failures into RateLimitError / GenerationError
  parse_retry_delay()     — best-effort "retry in N s" hint from a rate-limit message
  extract_bullets()       — lossy, order-preserving bullet scrape of free-form model output

No HTTPException anywhere — this is pure business logic, HTTP layer is routes.py.
"""
import logging
import math
import re
from typing import Optional, Protocol, Sequence

from mistralai import Mistral

from taxexplainer.agents.evaluator_agent.schemas import Comparison, RegimeResult
from taxexplainer.agents.matcher_agent.schemas import RetrievedChunk

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Fixed phrases
# ---------------------------------------------------------------------------

REFUSAL_PHRASE = "I cannot confirm this based on the provided documents."
NO_EXCERPTS_MARKER = "No excerpts available — answer only from the deterministic tax numbers above."
DEFAULT_QUESTION = "Which tax regime is better for me and why?"

UNCONFIGURED_MESSAGE = "Set MISTRAL_API_KEY in .env to enable AI-powered explanations."
DEGRADED_TEMPLATE = "AI summary unavailable ({reason}). Tax numbers above are deterministic."
DEGRADED_REASON_CHARS = 80

# ---------------------------------------------------------------------------
# Guarded prompt
# ---------------------------------------------------------------------------

SYSTEM_INSTRUCTION = f"""You are an Indian tax assistant. Answer ONLY using the excerpts provided below.
If you cannot find the answer in the excerpts, respond with "{REFUSAL_PHRASE}"
Do NOT use any external knowledge or make assumptions beyond what the excerpts state."""

TASK_INSTRUCTIONS = """1. Confirm or elaborate on the regime recommendation using ONLY the excerpts above.
2. Provide 3-5 bullet points of actionable tax-saving tips (cite the excerpt number for each tip if applicable).
3. Note any key conditions or caveats.
Keep the response concise and in plain English."""


def _regime_block(title: str, result: RegimeResult) -> str:
    return (
        f"{title}:\n"
        f"  Taxable Income: ₹{result.taxable_income:,.0f}\n"
        f"  Total Tax:      ₹{result.total_tax:,}\n"
        f"  Effective Rate: {result.effective_rate_percent}%"
    )


def format_excerpts(chunks: Sequence[RetrievedChunk]) -> str:
    """[Excerpt N] blocks (1-based) tagged with file/page, or the explicit no-excerpts marker."""
    if not chunks:
        return NO_EXCERPTS_MARKER
    blocks = []
    for i, chunk in enumerate(chunks, 1):
        page = chunk.metadata.page if chunk.metadata.page is not None else "?"
        blocks.append(
            f"[Excerpt {i}] (Source: {chunk.metadata.source_file or 'unknown'}, Page: {page})\n{chunk.text}"
        )
    return "\n\n---\n\n".join(blocks)


def build_explain_prompt(
    comparison: Comparison,
    chunks: Sequence[RetrievedChunk],
    question: Optional[str],
) -> str:
    """
    Single prompt, sections in this order: system instruction, deterministic
    numbers (labelled authoritative), excerpts, user question, task list.
    """
    return f"""{SYSTEM_INSTRUCTION}

=== TAX COMPUTATION (deterministic — authoritative, do NOT recompute) ===
{_regime_block("Old Regime", comparison.old)}

{_regime_block("New Regime (FY 2024-25)", comparison.new)}

Recommendation: {comparison.recommendation_text}

=== RETRIEVED TAX LAW EXCERPTS ===
{format_excerpts(chunks)}

=== USER QUESTION ===
{question or DEFAULT_QUESTION}

=== YOUR TASK ===
{TASK_INSTRUCTIONS}"""


# ---------------------------------------------------------------------------
# Errors — rate limit is distinguishable from every other failure
# ---------------------------------------------------------------------------

class GenerationError(Exception):
    """A generation attempt failed (network, auth, bad request, empty output...)."""


class RateLimitError(GenerationError):
    """The model refused the call because of rate limiting; retry_after is a hint in seconds."""

    def __init__(self, message: str, retry_after: Optional[float] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


_RETRY_HINT = re.compile(r"retry in ([\d.]+)\s*s", re.IGNORECASE)


def parse_retry_delay(message: Optional[str]) -> Optional[float]:
    """
    Pull "retry in 12.3s" / "retry in 12 seconds" out of an error message,
    rounded up to whole seconds. None when there is no usable hint.
    """
    if not message:
        return None
    match = _RETRY_HINT.search(message)
    if not match:
        return None
    try:
        return float(math.ceil(float(match.group(1))))
    except ValueError:
        return None


def _is_rate_limited(exc: Exception) -> bool:
    if getattr(exc, "status_code", None) == 429:
        return True
    text = str(exc).lower()
    return "429" in text or "rate limit" in text


# ---------------------------------------------------------------------------
# Generator boundary
# ---------------------------------------------------------------------------

class TextGenerator(Protocol):
    async def generate(self, prompt: str, model: str) -> str: ...


class MistralGenerator:
    """
    generate(prompt, model) over a shared Mistral client.

    The client is created once in main.py lifespan; this wrapper keeps no
    per-request state.
    """

    def __init__(self, client: Mistral, temperature: float = 0.2, max_tokens: int = 1024) -> None:
        self._client = client
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def generate(self, prompt: str, model: str) -> str:
        try:
            response = await self._client.chat.complete_async(
                model=model,
                messages=[{"role": "user", "content": prompt}],
                temperature=self._temperature,
                max_tokens=self._max_tokens,
            )
        except Exception as exc:
            if _is_rate_limited(exc):
                raise RateLimitError(str(exc), retry_after=parse_retry_delay(str(exc))) from exc
            raise GenerationError(str(exc)) from exc

        if not response or not response.choices:
            raise GenerationError(f"{model} returned no choices")
        content = response.choices[0].message.content
        if not isinstance(content, str):
            # Newer SDKs may return a list of content chunks
            content = "".join(getattr(part, "text", "") or "" for part in (content or []))
        if not content.strip():
            raise GenerationError(f"{model} returned an empty response")
        logger.info("Mistral response received model=%s answer_len=%d", model, len(content))
        return content


# ---------------------------------------------------------------------------
# Bullet extraction (heuristic — not a contract with the model)
# ---------------------------------------------------------------------------

_BULLET_LINE = re.compile(r"^[-•*\d]")
_BULLET_MARKER = re.compile(r"^[-•*\d.]+\s*")


def extract_bullets(text: Optional[str]) -> list[str]:
    """
    Lines starting with -, •, * or a digit, marker stripped, order preserved.

    Lossy: a prose line that happens to start with a number is picked up and
    its leading digits are removed; bullets without a marker are missed.
    """
    if not text:
        return []
    bullets = []
    for line in text.splitlines():
        line = line.strip()
        if not _BULLET_LINE.match(line):
            continue
        cleaned = _BULLET_MARKER.sub("", line).strip()
        if cleaned:
            bullets.append(cleaned)
    return bullets


def degraded_message(error: BaseException) -> str:
    return DEGRADED_TEMPLATE.format(reason=str(error)[:DEGRADED_REASON_CHARS])
