"""
fallback.py — model fallback / rate-limit retry policy.

State machine per candidate model, models tried strictly in order, never in parallel:

    Attempting(model, n) ──success──────────────────────────────► Success(text)   [stop]
            │
            ├─ RateLimited, n < max_attempts ─ sleep(hint|default) ─► Attempting(model, n+1)
            ├─ RateLimited, n == max_attempts ─────────────────────► next model
            └─ any other failure ──────────────────────────────────► next model

    no models left, or the overall budget spent ──────────────────► Exhausted

The budget bounds the whole sequence (attempt time + retry sleeps). A retry
whose delay would not fit in what is left of the budget is skipped and the
next model is tried straight away.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional

from taxexplainer.agents.matcher_agent.llm_service import (
    GenerationError,
    RateLimitError,
    TextGenerator,
)

logger = logging.getLogger(__name__)


class AttemptState(str, Enum):
    success = "success"
    rate_limited = "rate_limited"
    failed = "failed"
    timed_out = "timed_out"


@dataclass(frozen=True)
class AttemptRecord:
    model: str
    attempt: int              # 1-based, per model
    state: AttemptState
    error: Optional[str] = None


class GenerationExhaustedError(GenerationError):
    """Every candidate model failed (or the budget ran out) without producing text."""

    def __init__(self, attempts: list[AttemptRecord], last_error: Optional[BaseException]) -> None:
        reason = str(last_error) if last_error is not None else "no candidate models configured"
        super().__init__(reason)
        self.attempts = attempts
        self.last_error = last_error


@dataclass(frozen=True)
class FallbackPolicy:
    models: tuple[str, ...]
    max_attempts_per_model: int = 2
    default_retry_delay_s: float = 10.0
    max_retry_delay_s: float = 30.0
    budget_s: Optional[float] = 60.0

    @classmethod
    def from_settings(cls, settings) -> "FallbackPolicy":
        return cls(
            models=tuple(settings.candidate_models),
            max_attempts_per_model=settings.generation_attempts_per_model,
            default_retry_delay_s=settings.generation_default_retry_delay_s,
            max_retry_delay_s=settings.generation_max_retry_delay_s,
            budget_s=settings.generation_budget_s,
        )

    def retry_delay(self, error: RateLimitError) -> float:
        """Hint from the error when present, else the default; always capped."""
        hint = error.retry_after
        delay = hint if hint is not None and hint >= 0 else self.default_retry_delay_s
        return min(delay, self.max_retry_delay_s)


@dataclass
class GenerationResult:
    text: str
    model: str
    attempts: list[AttemptRecord] = field(default_factory=list)


async def generate_with_fallback(
    generator: TextGenerator,
    prompt: str,
    policy: FallbackPolicy,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> GenerationResult:
    """
    Run the fallback state machine. Returns on the first success.

    Raises GenerationExhaustedError with the full attempt log when nothing
    succeeded.
    """
    attempts: list[AttemptRecord] = []
    last_error: Optional[BaseException] = None
    deadline = clock() + policy.budget_s if policy.budget_s else None

    def remaining() -> Optional[float]:
        return None if deadline is None else deadline - clock()

    for model in policy.models:
        attempt = 1
        while attempt <= policy.max_attempts_per_model:
            left = remaining()
            if left is not None and left <= 0:
                logger.warning("Generation budget of %.0fs spent before trying %s", policy.budget_s, model)
                raise GenerationExhaustedError(
                    attempts, last_error or GenerationError("generation budget exhausted"),
                )

            logger.info("Generation attempt model=%s attempt=%d", model, attempt)
            try:
                text = await asyncio.wait_for(generator.generate(prompt, model), timeout=left)
            except RateLimitError as exc:
                attempts.append(AttemptRecord(model, attempt, AttemptState.rate_limited, str(exc)))
                last_error = exc
                if attempt >= policy.max_attempts_per_model:
                    logger.warning("Rate limited on %s again, moving to next model", model)
                    break
                delay = policy.retry_delay(exc)
                left = remaining()
                if left is not None and delay >= left:
                    logger.warning(
                        "Rate limited on %s, retry delay %.0fs exceeds remaining budget", model, delay,
                    )
                    break
                logger.warning("Rate limited on %s, retrying in %.0fs", model, delay)
                await sleep(delay)
                attempt += 1
            except asyncio.TimeoutError:
                attempts.append(AttemptRecord(model, attempt, AttemptState.timed_out, "budget exceeded"))
                logger.warning("Generation on %s cut off by the %.0fs budget", model, policy.budget_s)
                raise GenerationExhaustedError(
                    attempts, GenerationError(f"generation timed out after {policy.budget_s:.0f}s"),
                )
            except Exception as exc:
                attempts.append(AttemptRecord(model, attempt, AttemptState.failed, str(exc)))
                last_error = exc
                logger.warning("%s failed (%s), moving to next model", model, str(exc)[:60])
                break
            else:
                attempts.append(AttemptRecord(model, attempt, AttemptState.success))
                logger.info("Generation succeeded model=%s attempt=%d", model, attempt)
                return GenerationResult(text=text, model=model, attempts=attempts)

    raise GenerationExhaustedError(attempts, last_error)
