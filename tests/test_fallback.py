"""Tests for the ordered fallback dispatcher."""

from __future__ import annotations

from stubly.errors import InvalidCredentialsError, NetworkUnavailableError, RateLimitedError
from stubly.models.auth_models import AuthResult
from stubly.models.enums import AuthErrorCode, AuthMode
from stubly.services.fallback import AuthStrategy, failure_from_error, run_strategies


def _ok(mode: AuthMode):
    return lambda: AuthResult(success=True, mode=mode)


def _raise(exc):
    def attempt():
        raise exc
    return attempt


def _exhausted():
    return AuthResult(success=False, error_code=AuthErrorCode.LOGIN_FAILED)


class TestRunStrategies:
    """First success, else last failure, else exhausted."""

    def test_first_success_wins(self, logger):
        calls = []

        def second():
            calls.append("second")
            return AuthResult(success=True, mode=AuthMode.OFFLINE)

        result = run_strategies(
            [AuthStrategy("a", lambda: True, _ok(AuthMode.ONLINE)),
             AuthStrategy("b", lambda: True, second)],
            _exhausted, logger,
        )
        assert result.mode == AuthMode.ONLINE
        assert calls == []

    def test_failure_falls_through(self, logger):
        result = run_strategies(
            [AuthStrategy("a", lambda: True, _raise(NetworkUnavailableError())),
             AuthStrategy("b", lambda: True, _ok(AuthMode.OFFLINE))],
            _exhausted, logger,
        )
        assert result.success and result.mode == AuthMode.OFFLINE

    def test_last_failure_returned(self, logger):
        result = run_strategies(
            [AuthStrategy("a", lambda: True, _raise(NetworkUnavailableError())),
             AuthStrategy("b", lambda: True, _raise(InvalidCredentialsError(attempts_remaining=2)))],
            _exhausted, logger,
        )
        assert result.error_code == AuthErrorCode.INVALID_CREDENTIALS
        assert result.attempts_remaining == 2

    def test_unavailable_strategies_skipped(self, logger):
        result = run_strategies(
            [AuthStrategy("a", lambda: False, _ok(AuthMode.ONLINE)),
             AuthStrategy("b", lambda: True, _ok(AuthMode.OFFLINE))],
            _exhausted, logger,
        )
        assert result.mode == AuthMode.OFFLINE

    def test_nothing_available(self, logger):
        result = run_strategies(
            [AuthStrategy("a", lambda: False, _ok(AuthMode.ONLINE))], _exhausted, logger,
        )
        assert result.error_code == AuthErrorCode.LOGIN_FAILED

    def test_unexpected_exception_becomes_unknown_error(self, logger):
        result = run_strategies(
            [AuthStrategy("a", lambda: True, _raise(RuntimeError("boom")))], _exhausted, logger,
        )
        assert result.success is False
        assert result.error_code == AuthErrorCode.UNKNOWN_ERROR


class TestFailureFromError:
    def test_rate_limited_reports_minutes(self):
        result = failure_from_error(RateLimitedError(locked_until=1_000 + 14 * 60 + 5, now=1_000))
        assert result.error_code == AuthErrorCode.RATE_LIMITED
        assert result.minutes_remaining == 15
        assert result.attempts_remaining == 0
