"""Workflow step retry strategies.

Steps opt into retries through their config:

    "retry": {"max_attempts": 3, "backoff_ms": 500}

``max_attempts`` counts the first attempt (1 = no retries) and is clamped
to 1..5; ``backoff_ms`` is clamped to 0..3000. Backoff is linear: the
wait after failed attempt *n* is ``backoff_ms * n``.

Usage:
    strategy = RetryStrategy.from_step_config(step.config)
    result = await execute_with_retry(run_attempt, strategy)
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from app.config import get_settings

logger = logging.getLogger(__name__)


def _clamp_int(value: Any, low: int, high: int, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return max(low, min(high, number))


@dataclass
class RetryStrategy:
    """Bounded linear-backoff retry policy for one workflow step."""
    max_attempts: int = 1
    backoff_ms: int = 0

    @classmethod
    def none(cls) -> 'RetryStrategy':
        """Single attempt, no retries."""
        return cls(max_attempts=1, backoff_ms=0)

    @classmethod
    def from_step_config(cls, config: Optional[dict]) -> 'RetryStrategy':
        """Create strategy from a step's ``config.retry`` block, clamping to the allowed range."""
        settings = get_settings()
        retry = (config or {}).get("retry")
        if not isinstance(retry, dict):
            return cls.none()
        return cls(
            max_attempts=_clamp_int(retry.get("max_attempts"), 1, settings.RETRY_MAX_ATTEMPTS_CAP, 1),
            backoff_ms=_clamp_int(retry.get("backoff_ms"), 0, settings.RETRY_MAX_BACKOFF_MS, 0),
        )

    def to_dict(self) -> dict:
        return {"max_attempts": self.max_attempts, "backoff_ms": self.backoff_ms}

    def compute_delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        return (self.backoff_ms * attempt) / 1000.0

    def should_retry(self, attempt: int, outcome: Any = None) -> bool:
        """Determine if another attempt is allowed after ``attempt`` failed."""
        if attempt >= self.max_attempts:
            return False
        if outcome is not None and not getattr(outcome, "retryable", True):
            return False
        return True


@dataclass
class RetryResult:
    """Final outcome plus how many attempts it took and the waits in between."""
    outcome: Any
    attempts: int
    delays: list[float] = field(default_factory=list)


async def execute_with_retry(
    func: Callable[[int], Awaitable[Any]],
    strategy: RetryStrategy,
    on_retry: Optional[Callable] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> RetryResult:
    """Run ``func(attempt)`` until it succeeds or the strategy gives up.

    ``func`` returns an outcome object with ``ok`` and ``retryable``
    attributes instead of raising.

    Args:
        func: Async callable receiving the 1-based attempt number.
        strategy: RetryStrategy instance.
        on_retry: Optional callback(attempt, outcome, delay) called before each wait.
        sleep: Awaitable sleep used between attempts.

    Returns:
        RetryResult for the last attempt made.
    """
    delays: list[float] = []
    attempt = 0

    while True:
        attempt += 1
        outcome = await func(attempt)

        if outcome.ok or not strategy.should_retry(attempt, outcome):
            return RetryResult(outcome=outcome, attempts=attempt, delays=delays)

        delay = strategy.compute_delay(attempt)
        delays.append(delay)

        if on_retry:
            try:
                if asyncio.iscoroutinefunction(on_retry):
                    await on_retry(attempt, outcome, delay)
                else:
                    on_retry(attempt, outcome, delay)
            except Exception as exc:
                logger.warning("on_retry callback failed: %s", exc)

        await sleep(delay)
