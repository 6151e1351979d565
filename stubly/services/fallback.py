"""
Ordered Fallback Dispatcher.

Auth operations are expressed as an ordered list of strategies (for
example remote sign-in, then offline verification).  :func:`run_strategies`
evaluates them and applies one precedence rule:

1. Skip strategies that are not available.
2. Return the first successful result.
3. Otherwise return the last failure.
4. If no strategy was available, return ``on_exhausted()``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from stubly.errors import InvalidCredentialsError, RateLimitedError, StublyError
from stubly.logger import StructuredLogger
from stubly.models.auth_models import AuthResult
from stubly.models.enums import AuthErrorCode

__all__ = ["AuthStrategy", "failure_from_error", "run_strategies"]


@dataclass(frozen=True)
class AuthStrategy:
    name: str
    is_available: Callable[[], bool]
    attempt: Callable[[], AuthResult]


def failure_from_error(exc: StublyError) -> AuthResult:
    """Build the failed ``AuthResult`` for a typed error."""
    attempts_remaining: Optional[int] = None
    minutes_remaining: Optional[int] = None
    if isinstance(exc, InvalidCredentialsError):
        attempts_remaining = exc.attempts_remaining
    elif isinstance(exc, RateLimitedError):
        attempts_remaining = 0
        minutes_remaining = exc.minutes_remaining
    return AuthResult(
        success=False,
        error_code=exc.code,
        error=exc.message,
        attempts_remaining=attempts_remaining,
        minutes_remaining=minutes_remaining,
    )


def run_strategies(
    strategies: Sequence[AuthStrategy],
    on_exhausted: Callable[[], AuthResult],
    logger: StructuredLogger,
) -> AuthResult:
    last_failure: Optional[AuthResult] = None

    for strategy in strategies:
        if not strategy.is_available():
            logger.debug("Strategy %s unavailable, skipping.", strategy.name)
            continue

        try:
            result = strategy.attempt()
        except StublyError as exc:
            result = failure_from_error(exc)
        except Exception as exc:
            logger.error(
                "Strategy %s raised unexpectedly: %s", strategy.name, exc, exc_info=True,
            )
            result = AuthResult(
                success=False,
                error_code=AuthErrorCode.UNKNOWN_ERROR,
                error=str(exc) or "An unexpected error occurred.",
            )

        if result.success:
            return result
        logger.info(
            "Strategy %s failed (%s).", strategy.name, result.error_code,
            extra={"event": "STRATEGY_FAILED", "strategy": strategy.name},
        )
        last_failure = result

    if last_failure is not None:
        return last_failure
    return on_exhausted()
