"""
Inference provider registry.

Every supported provider speaks the OpenAI chat completions protocol, so a
provider is fully described by where its credentials live in the settings,
its default model and its token prices.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from ..core.config import settings

logger = logging.getLogger(__name__)


class LLMProvider(str, Enum):
    """Supported LLM providers."""
    OPENROUTER = "openrouter"
    OPENAI = "openai"
    GROQ = "groq"


@dataclass(frozen=True)
class ProviderSpec:
    """Static description of a provider."""
    key_setting: str
    url_setting: str
    default_model: str
    input_cost_per_1k: float
    output_cost_per_1k: float


@dataclass
class ProviderConfig:
    """Resolved configuration for one provider."""
    provider: LLMProvider
    model_name: str
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    input_cost_per_1k: float = 0.0
    output_cost_per_1k: float = 0.0


# Prices are USD per 1K tokens, approximate, used for budgeting only
PROVIDERS: Dict[LLMProvider, ProviderSpec] = {
    LLMProvider.OPENROUTER: ProviderSpec(
        "OPENROUTER_API_KEY", "OPENROUTER_BASE_URL", "openai/gpt-4o-mini", 0.00015, 0.0006
    ),
    LLMProvider.OPENAI: ProviderSpec(
        "OPENAI_API_KEY", "OPENAI_BASE_URL", "gpt-4o-mini", 0.00015, 0.0006
    ),
    LLMProvider.GROQ: ProviderSpec(
        "GROQ_API_KEY", "GROQ_BASE_URL", "llama-3.3-70b-versatile", 0.00059, 0.00079
    ),
}

DEFAULT_MODELS = {provider: spec.default_model for provider, spec in PROVIDERS.items()}


def parse_provider(name: Optional[str]) -> Optional[LLMProvider]:
    try:
        return LLMProvider((name or "").strip().lower())
    except ValueError:
        return None


def get_provider_config(
    provider: Optional[str] = None,
    model_name: Optional[str] = None
) -> ProviderConfig:
    """
    Resolve credentials, endpoint, model and prices for a provider.

    Args:
        provider: Provider name (defaults to MODEL_PROVIDER setting)
        model_name: Model override. Without one, the primary provider uses
            MODEL_NAME and fallback providers use their own default model.

    Returns:
        ProviderConfig ready for a ChatCompletionsGateway
    """
    requested = provider or settings.MODEL_PROVIDER
    llm_provider = parse_provider(requested)
    if llm_provider is None:
        logger.warning(f"Unknown provider '{requested}', falling back to openrouter")
        llm_provider = LLMProvider.OPENROUTER

    spec = PROVIDERS[llm_provider]
    if model_name is None and llm_provider is parse_provider(settings.MODEL_PROVIDER):
        model_name = settings.MODEL_NAME

    return ProviderConfig(
        provider=llm_provider,
        model_name=model_name or spec.default_model,
        api_key=getattr(settings, spec.key_setting),
        base_url=getattr(settings, spec.url_setting),
        input_cost_per_1k=spec.input_cost_per_1k,
        output_cost_per_1k=spec.output_cost_per_1k,
    )


def validate_provider_config(provider: str) -> Dict[str, Any]:
    """
    Check that a provider's credentials are present.

    Returns:
        Dict with 'valid' bool, 'missing' list of missing setting names and
        the normalized 'provider' name
    """
    llm_provider = parse_provider(provider)
    if llm_provider is None:
        return {"valid": False, "missing": [], "provider": provider.lower()}

    key_setting = PROVIDERS[llm_provider].key_setting
    missing = [] if getattr(settings, key_setting) else [key_setting]
    return {"valid": not missing, "missing": missing, "provider": llm_provider.value}


def list_available_providers() -> Dict[str, Dict[str, Any]]:
    """Configuration status of every provider, keyed by name."""
    providers = {}
    for p in LLMProvider:
        validation = validate_provider_config(p.value)
        providers[p.value] = {
            "configured": validation["valid"],
            "missing_config": validation["missing"],
            "default_model": DEFAULT_MODELS[p],
        }
    return providers
