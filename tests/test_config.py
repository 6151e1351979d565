"""Tests for settings loading and bounds."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from stubly.config import AppConfig


class TestAppConfig:
    def test_env_overrides_defaults(self, monkeypatch):
        monkeypatch.setenv("MAX_LOGIN_ATTEMPTS", "3")
        monkeypatch.setenv("SUPABASE_URL", "https://example.supabase.co")
        cfg = AppConfig()
        assert cfg.MAX_LOGIN_ATTEMPTS == 3
        assert cfg.SUPABASE_URL == "https://example.supabase.co"

    def test_unconfigured_without_anon_key(self):
        cfg = AppConfig(SUPABASE_URL="https://example.supabase.co", SUPABASE_ANON_KEY="")
        assert cfg.is_supabase_configured is False
        assert AppConfig(SUPABASE_URL="https://x", SUPABASE_ANON_KEY="k").is_supabase_configured

    @pytest.mark.parametrize(
        "field,value",
        [("BCRYPT_ROUNDS", 3), ("BCRYPT_ROUNDS", 32), ("MAX_LOGIN_ATTEMPTS", 0), ("LOCKOUT_MINUTES", 0)],
    )
    def test_out_of_range_values_rejected(self, field, value):
        with pytest.raises(ValidationError):
            AppConfig(**{field: value})
