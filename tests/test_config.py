"""
Tests for settings.
"""

import pytest

from codecrew.core.config import Settings


class TestTierLimits:
    """Test tier limit lookup."""

    def test_known_tier(self):
        assert Settings().tier_limits("pro") == {"daily_requests": 100, "daily_cost_usd": 2.00}

    def test_unknown_tier_uses_default(self):
        settings = Settings(DEFAULT_TIER="free")
        assert settings.tier_limits("platinum")["daily_requests"] == 20


class TestProductionConfig:
    """Test production configuration validation."""

    def test_dev_is_not_validated(self):
        Settings(CODECREW_ENV="dev", OPENROUTER_API_KEY=None, OPENAI_API_KEY=None, GROQ_API_KEY=None).validate_production_config()

    def test_production_requires_a_provider_key(self):
        settings = Settings(CODECREW_ENV="production", OPENROUTER_API_KEY=None, OPENAI_API_KEY=None, GROQ_API_KEY=None)
        with pytest.raises(RuntimeError, match="OPENROUTER_API_KEY"):
            settings.validate_production_config()

    def test_production_redis_requires_url(self):
        settings = Settings(CODECREW_ENV="production", GROQ_API_KEY="gsk-test", CACHE_BACKEND="redis", REDIS_URL=None)
        with pytest.raises(RuntimeError, match="REDIS_URL"):
            settings.validate_production_config()

    def test_production_with_key_passes(self):
        Settings(
            CODECREW_ENV="production",
            OPENAI_API_KEY="sk-test",
            CACHE_BACKEND="database",
            DATABASE_URL="postgresql+asyncpg://db/codecrew",
        ).validate_production_config()
