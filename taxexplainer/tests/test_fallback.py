"""
Tests for the model fallback / rate-limit retry state machine.

A scripted generator replays a per-model list of outcomes (text or exception)
and records every call; sleep is an AsyncMock so no test actually waits.
"""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from taxexplainer.agents.matcher_agent.fallback import (
    AttemptState,
    FallbackPolicy,
    GenerationExhaustedError,
    generate_with_fallback,
)
from taxexplainer.agents.matcher_agent.llm_service import GenerationError, RateLimitError


class ScriptedGenerator:
    """generate() pops the next scripted outcome for the model; exceptions are raised."""

    def __init__(self, script: dict[str, list]) -> None:
        self.script = {model: list(outcomes) for model, outcomes in script.items()}
        self.calls: list[str] = []

    async def generate(self, prompt: str, model: str) -> str:
        self.calls.append(model)
        outcome = self.script[model].pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def _policy(*models: str, **overrides) -> FallbackPolicy:
    return FallbackPolicy(models=models, **overrides)


@pytest.mark.asyncio
async def test_first_model_success_stops_immediately() -> None:
    generator = ScriptedGenerator({"a": ["hello"], "b": ["never"]})
    sleep = AsyncMock()

    result = await generate_with_fallback(generator, "p", _policy("a", "b"), sleep=sleep)

    assert result.text == "hello"
    assert result.model == "a"
    assert generator.calls == ["a"]
    sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_rate_limited_model_retried_once_then_next_model_wins() -> None:
    """First candidate always rate-limited → tried exactly twice; second answers on first try."""
    generator = ScriptedGenerator({
        "a": [RateLimitError("429"), RateLimitError("429")],
        "b": ["from b"],
    })
    sleep = AsyncMock()

    result = await generate_with_fallback(generator, "p", _policy("a", "b"), sleep=sleep)

    assert result.text == "from b"
    assert generator.calls == ["a", "a", "b"]
    assert [(r.model, r.attempt, r.state) for r in result.attempts] == [
        ("a", 1, AttemptState.rate_limited),
        ("a", 2, AttemptState.rate_limited),
        ("b", 1, AttemptState.success),
    ]
    sleep.assert_awaited_once_with(10.0)


@pytest.mark.asyncio
async def test_retry_uses_hint_from_error() -> None:
    generator = ScriptedGenerator({"a": [RateLimitError("429", retry_after=4.0), "second time lucky"]})
    sleep = AsyncMock()

    result = await generate_with_fallback(generator, "p", _policy("a"), sleep=sleep)

    assert result.text == "second time lucky"
    assert generator.calls == ["a", "a"]
    sleep.assert_awaited_once_with(4.0)


@pytest.mark.asyncio
async def test_retry_hint_is_capped() -> None:
    generator = ScriptedGenerator({"a": [RateLimitError("429", retry_after=600.0), "ok"]})
    sleep = AsyncMock()

    await generate_with_fallback(
        generator, "p", _policy("a", max_retry_delay_s=30.0, budget_s=None), sleep=sleep,
    )

    sleep.assert_awaited_once_with(30.0)


@pytest.mark.asyncio
async def test_other_failure_advances_without_retry() -> None:
    generator = ScriptedGenerator({"a": [GenerationError("401 Unauthorized")], "b": ["from b"]})
    sleep = AsyncMock()

    result = await generate_with_fallback(generator, "p", _policy("a", "b"), sleep=sleep)

    assert result.text == "from b"
    assert generator.calls == ["a", "b"]
    sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_unexpected_exception_counts_as_other_failure() -> None:
    generator = ScriptedGenerator({"a": [ConnectionError("reset by peer")], "b": ["from b"]})

    result = await generate_with_fallback(generator, "p", _policy("a", "b"), sleep=AsyncMock())

    assert result.model == "b"
    assert result.attempts[0].state == AttemptState.failed


@pytest.mark.asyncio
async def test_all_models_exhausted_raises_with_attempt_log() -> None:
    generator = ScriptedGenerator({
        "a": [RateLimitError("429"), RateLimitError("429 again")],
        "b": [GenerationError("quota exhausted permanently")],
    })

    with pytest.raises(GenerationExhaustedError) as exc_info:
        await generate_with_fallback(generator, "p", _policy("a", "b"), sleep=AsyncMock())

    exc = exc_info.value
    assert generator.calls == ["a", "a", "b"]
    assert len(exc.attempts) == 3
    assert "quota exhausted permanently" in str(exc)
    assert isinstance(exc.last_error, GenerationError)


@pytest.mark.asyncio
async def test_no_models_configured_is_exhausted() -> None:
    with pytest.raises(GenerationExhaustedError):
        await generate_with_fallback(ScriptedGenerator({}), "p", _policy(), sleep=AsyncMock())


@pytest.mark.asyncio
async def test_retry_delay_beyond_budget_skips_to_next_model() -> None:
    generator = ScriptedGenerator({"a": [RateLimitError("429", retry_after=25.0)], "b": ["from b"]})
    sleep = AsyncMock()

    result = await generate_with_fallback(
        generator, "p", _policy("a", "b", budget_s=20.0), sleep=sleep,
    )

    assert result.text == "from b"
    assert generator.calls == ["a", "b"]
    sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_budget_spent_before_next_attempt() -> None:
    """A fake clock that jumps past the deadline after the first call ends the sequence."""
    ticks = iter([0.0, 0.0, 100.0, 100.0, 100.0])
    generator = ScriptedGenerator({"a": [GenerationError("boom")], "b": ["never"]})

    with pytest.raises(GenerationExhaustedError):
        await generate_with_fallback(
            generator, "p", _policy("a", "b", budget_s=60.0),
            sleep=AsyncMock(), clock=lambda: next(ticks),
        )
    assert generator.calls == ["a"]


@pytest.mark.asyncio
async def test_slow_attempt_is_cut_off_by_budget() -> None:
    class SlowGenerator:
        async def generate(self, prompt: str, model: str) -> str:
            await asyncio.sleep(5)
            return "too late"

    with pytest.raises(GenerationExhaustedError) as exc_info:
        await generate_with_fallback(SlowGenerator(), "p", _policy("a", "b", budget_s=0.05))
    assert exc_info.value.attempts[-1].state == AttemptState.timed_out


def test_policy_from_settings_orders_preferred_model_first() -> None:
    from taxexplainer.config import Settings

    s = Settings(
        _env_file=None,
        mistral_model="open-mistral-nemo",
        mistral_fallback_models="mistral-small-latest, open-mistral-nemo,mistral-large-latest",
        generation_budget_s=45,
    )
    policy = FallbackPolicy.from_settings(s)
    assert policy.models == ("open-mistral-nemo", "mistral-small-latest", "mistral-large-latest")
    assert policy.max_attempts_per_model == 2
    assert policy.budget_s == 45
