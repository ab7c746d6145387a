"""
Tests for the generation layer: guarded prompt, retry-hint parsing,
bullet extraction and the Mistral adapter's error translation.

The Mistral client is a MagicMock — no network.
"""
from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from taxexplainer.agents.evaluator_agent.schemas import DeductionSet
from taxexplainer.agents.evaluator_agent.tax_engine import compare_tax_regimes
from taxexplainer.agents.matcher_agent.llm_service import (
    DEFAULT_QUESTION,
    NO_EXCERPTS_MARKER,
    REFUSAL_PHRASE,
    GenerationError,
    MistralGenerator,
    RateLimitError,
    build_explain_prompt,
    degraded_message,
    extract_bullets,
    parse_retry_delay,
)
from taxexplainer.agents.matcher_agent.schemas import ChunkMetadata, RetrievedChunk


def _comparison():
    return compare_tax_regimes(
        1_500_000, DeductionSet(section_80c=150_000, section_80d=25_000, hra=50_000),
    )


def _chunks() -> list[RetrievedChunk]:
    return [
        RetrievedChunk(
            text="Section 80C allows a deduction of up to ₹1,50,000 for PPF and ELSS.",
            metadata=ChunkMetadata(source_file="income_tax_guide.pdf", page=3, chunk_index=0),
            distance=0.12,
        ),
        RetrievedChunk(
            text="The new regime offers a standard deduction of ₹75,000.",
            metadata=ChunkMetadata(source_file="budget_2024.pdf", page=None, chunk_index=4),
            distance=0.2,
        ),
    ]


# ---------------------------------------------------------------------------
# Prompt construction
# ---------------------------------------------------------------------------

def test_prompt_contains_guard_numbers_excerpts_question_and_tasks() -> None:
    prompt = build_explain_prompt(_comparison(), _chunks(), "Should I switch regimes?")

    assert "Answer ONLY using the excerpts" in prompt
    assert REFUSAL_PHRASE in prompt
    assert "do NOT recompute" in prompt
    assert "Taxable Income: ₹1,225,000" in prompt
    assert "Total Tax:      ₹187,200" in prompt
    assert "Effective Rate: 12.48%" in prompt
    assert "Taxable Income: ₹1,425,000" in prompt
    assert "Recommendation: New Regime saves ₹57,200 more." in prompt
    assert "[Excerpt 1] (Source: income_tax_guide.pdf, Page: 3)" in prompt
    assert "[Excerpt 2] (Source: budget_2024.pdf, Page: ?)" in prompt
    assert "Should I switch regimes?" in prompt
    assert "3-5 bullet points" in prompt
    assert NO_EXCERPTS_MARKER not in prompt


def test_prompt_section_order() -> None:
    prompt = build_explain_prompt(_comparison(), _chunks(), "Q?")
    order = [
        prompt.index(REFUSAL_PHRASE),
        prompt.index("=== TAX COMPUTATION"),
        prompt.index("=== RETRIEVED TAX LAW EXCERPTS ==="),
        prompt.index("=== USER QUESTION ==="),
        prompt.index("=== YOUR TASK ==="),
    ]
    assert order == sorted(order)


def test_prompt_without_excerpts_or_question() -> None:
    prompt = build_explain_prompt(_comparison(), [], None)
    assert NO_EXCERPTS_MARKER in prompt
    assert "[Excerpt" not in prompt
    assert DEFAULT_QUESTION in prompt


# ---------------------------------------------------------------------------
# Retry hint parsing
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "message, expected",
    [
        ("429 Too Many Requests. Please retry in 12.4s.", 13.0),
        ("Rate limit exceeded, retry in 7 seconds", 7.0),
        ("RETRY IN 3S", 3.0),
        ("429 Too Many Requests", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_retry_delay(message, expected) -> None:
    assert parse_retry_delay(message) == expected


# ---------------------------------------------------------------------------
# Bullet extraction
# ---------------------------------------------------------------------------

def test_extract_bullets_all_marker_styles() -> None:
    text = (
        "The New Regime is better for you.\n"
        "- Invest in 80C instruments [Excerpt 1]\n"
        "• Keep rent receipts for HRA\n"
        "* Buy health cover for 80D\n"
        "2. Review your choice every year\n"
        "Caveat: rules change each budget."
    )
    assert extract_bullets(text) == [
        "Invest in 80C instruments [Excerpt 1]",
        "Keep rent receipts for HRA",
        "Buy health cover for 80D",
        "Review your choice every year",
    ]


def test_extract_bullets_skips_bare_markers_and_empty_text() -> None:
    assert extract_bullets("-\n  *  \nplain line") == []
    assert extract_bullets("") == []
    assert extract_bullets(None) == []


def test_degraded_message_truncates_reason() -> None:
    msg = degraded_message(RuntimeError("x" * 200))
    assert msg.startswith("AI summary unavailable (" + "x" * 80 + ")")
    assert "x" * 81 not in msg
    assert msg.endswith("Tax numbers above are deterministic.")


# ---------------------------------------------------------------------------
# Mistral adapter
# ---------------------------------------------------------------------------

def _mock_client(side_effect=None, content="Summary\n- tip"):
    client = MagicMock()
    response = SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))]
    )
    client.chat.complete_async = AsyncMock(return_value=response, side_effect=side_effect)
    return client


class _StatusError(Exception):
    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


@pytest.mark.asyncio
async def test_mistral_generator_returns_text() -> None:
    client = _mock_client()
    generator = MistralGenerator(client, temperature=0.1, max_tokens=256)

    text = await generator.generate("prompt", "mistral-small-latest")

    assert text == "Summary\n- tip"
    kwargs = client.chat.complete_async.call_args.kwargs
    assert kwargs["model"] == "mistral-small-latest"
    assert kwargs["messages"] == [{"role": "user", "content": "prompt"}]
    assert kwargs["temperature"] == 0.1
    assert kwargs["max_tokens"] == 256


@pytest.mark.asyncio
async def test_mistral_generator_translates_429_to_rate_limit() -> None:
    client = _mock_client(side_effect=_StatusError("Too many requests, retry in 5s", 429))
    generator = MistralGenerator(client)

    with pytest.raises(RateLimitError) as exc_info:
        await generator.generate("prompt", "mistral-small-latest")
    assert exc_info.value.retry_after == 5.0


@pytest.mark.asyncio
async def test_mistral_generator_other_failure_is_generation_error() -> None:
    client = _mock_client(side_effect=_StatusError("Unauthorized", 401))
    generator = MistralGenerator(client)

    with pytest.raises(GenerationError) as exc_info:
        await generator.generate("prompt", "mistral-small-latest")
    assert not isinstance(exc_info.value, RateLimitError)


@pytest.mark.asyncio
async def test_mistral_generator_empty_content_is_failure() -> None:
    generator = MistralGenerator(_mock_client(content="   "))
    with pytest.raises(GenerationError):
        await generator.generate("prompt", "mistral-small-latest")


@pytest.mark.asyncio
async def test_mistral_generator_joins_content_chunks() -> None:
    parts = [SimpleNamespace(text="Part one. "), SimpleNamespace(text="Part two.")]
    generator = MistralGenerator(_mock_client(content=parts))
    assert await generator.generate("prompt", "m") == "Part one. Part two."
