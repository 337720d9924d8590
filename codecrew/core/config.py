import logging
from typing import Dict, List

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = {
        "env_file": ".env",
        "extra": "ignore",
    }

    # Inference gateway
    OPENAI_API_KEY: str | None = None
    OPENAI_BASE_URL: str = Field(default="https://api.openai.com/v1")
    OPENROUTER_API_KEY: str | None = None
    OPENROUTER_BASE_URL: str = Field(default="https://openrouter.ai/api/v1")
    GROQ_API_KEY: str | None = None
    GROQ_BASE_URL: str = Field(default="https://api.groq.com/openai/v1")

    MODEL_PROVIDER: str = Field(default="openrouter")
    MODEL_NAME: str = Field(default="gpt-4o-mini")
    FALLBACK_PROVIDERS: List[str] = Field(
        default_factory=lambda: ["openai", "groq"],
        description="Providers tried in order when the primary provider fails",
    )
    EMBEDDING_MODEL: str = Field(default="text-embedding-3-small")

    # Database
    DATABASE_URL: str = Field(default="sqlite+aiosqlite:///./codecrew.db")
    DB_ECHO: bool = Field(default=False)

    # Cache Settings
    REDIS_URL: str | None = Field(default=None, description="Redis connection URL")
    CACHE_BACKEND: str = Field(default="database", description="Persistent cache backend: database or redis")
    CACHE_PERSISTENT_MAX_AGE_HOURS: int = Field(default=72, description="Horizon of the persistent cache tier")
    CACHE_PERSISTENT_MIN_SIMILARITY: float = Field(default=0.7, description="Minimum text similarity for a persistent hit")
    LEXICAL_THRESHOLD: float = Field(default=0.7, description="Jaccard threshold of the lexical tier")
    LEXICAL_TTL_MINUTES: int = Field(default=30)
    LEXICAL_MAX_SIZE: int = Field(default=50)
    SEMANTIC_THRESHOLD: float = Field(default=0.85, description="Cosine threshold of the semantic tier")
    SEMANTIC_MAX_SIZE: int = Field(default=50)

    # Quota
    DEFAULT_TIER: str = Field(default="free")
    TIER_LIMITS: Dict[str, Dict[str, float]] = Field(
        default_factory=lambda: {
            "free": {"daily_requests": 20, "daily_cost_usd": 0.50},
            "pro": {"daily_requests": 100, "daily_cost_usd": 2.00},
            "enterprise": {"daily_requests": 500, "daily_cost_usd": 25.00},
        },
        description="Per-tier daily request count and spend ceilings",
    )

    # Pipeline Settings
    MAX_REPAIR_ATTEMPTS: int = Field(default=5, description="Maximum fixer calls per artifact set")
    CONTEXT_DIGEST_CHARS: int = Field(default=200, description="Characters of each prior result shown to later agents")
    REFERENCE_TOKEN_BUDGET: int = Field(default=3000)
    SESSION_HISTORY_SIZE: int = Field(default=5)
    GATEWAY_TIMEOUT_SECONDS: float | None = Field(default=None, description="Deadline for one inference call (None = no deadline)")
    SANDBOX_TIMEOUT_SECONDS: float | None = Field(default=None, description="Deadline for one validity check (None = no deadline)")
    SHUTDOWN_DRAIN_SECONDS: float = Field(default=5.0)

    # Sandbox
    PISTON_API_URL: str = Field(default="https://emkc.org/api/v2/piston")
    ENABLE_REMOTE_SANDBOX: bool = Field(default=False)

    # Runtime
    CODECREW_ENV: str = Field(default="dev")
    DEBUG: bool = Field(default=False)

    def validate_production_config(self) -> None:
        """Validate configuration for production environments.

        Raises:
            RuntimeError: If configuration is invalid
        """
        if self.CODECREW_ENV != "production":
            return

        if not (self.OPENROUTER_API_KEY or self.OPENAI_API_KEY or self.GROQ_API_KEY):
            raise RuntimeError(
                "CRITICAL: at least one of OPENROUTER_API_KEY, OPENAI_API_KEY or GROQ_API_KEY "
                "must be set in production."
            )

        if self.CACHE_BACKEND == "redis" and not self.REDIS_URL:
            raise RuntimeError("CRITICAL: CACHE_BACKEND=redis requires REDIS_URL.")

        if self.DATABASE_URL.startswith("sqlite"):
            logging.getLogger(__name__).warning(
                "WARNING: Using a SQLite database in production mode"
            )

    def tier_limits(self, tier: str) -> Dict[str, float]:
        """Return the limits for a tier, falling back to the default tier."""
        return self.TIER_LIMITS.get(tier) or self.TIER_LIMITS[self.DEFAULT_TIER]


settings = Settings()
