"""
LLM provider configuration for the reasoning collaborator.

Supports:
- Anthropic (default)
- OpenAI
- OpenRouter

Calls go through litellm, so the model string carries the provider prefix.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from .core.config import settings

logger = logging.getLogger(__name__)


class LLMProvider(str, Enum):
    """Supported LLM providers."""
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    OPENROUTER = "openrouter"


@dataclass
class ProviderConfig:
    """Configuration for an LLM provider."""
    provider: LLMProvider
    model_name: str
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    extra_params: Dict[str, Any] = field(default_factory=dict)

    def completion_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for ``litellm.acompletion``."""
        kwargs: Dict[str, Any] = {"model": self.model_name, **self.extra_params}
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.base_url:
            kwargs["api_base"] = self.base_url
        return kwargs


# Default model for each provider
DEFAULT_MODELS = {
    LLMProvider.ANTHROPIC: "claude-sonnet-4-5",
    LLMProvider.OPENAI: "gpt-4o-mini",
    LLMProvider.OPENROUTER: "anthropic/claude-sonnet-4.5",
}


def get_provider_config(
    provider: Optional[str] = None,
    model_name: Optional[str] = None
) -> ProviderConfig:
    """
    Get configuration for the specified provider.

    Args:
        provider: Provider name (defaults to MODEL_PROVIDER setting)
        model_name: Model name (defaults to MODEL_NAME setting or provider default)

    Returns:
        ProviderConfig with a litellm model string
    """
    provider_str = (provider or settings.MODEL_PROVIDER or "anthropic").lower()

    try:
        llm_provider = LLMProvider(provider_str)
    except ValueError:
        logger.warning(f"Unknown provider '{provider_str}', falling back to anthropic")
        llm_provider = LLMProvider.ANTHROPIC

    final_model = model_name or settings.MODEL_NAME or DEFAULT_MODELS[llm_provider]

    if llm_provider == LLMProvider.OPENAI:
        return ProviderConfig(
            provider=llm_provider,
            model_name=final_model,
            api_key=settings.OPENAI_API_KEY,
        )

    if llm_provider == LLMProvider.OPENROUTER:
        return ProviderConfig(
            provider=llm_provider,
            model_name=f"openrouter/{final_model}",  # litellm format
            api_key=settings.OPENROUTER_API_KEY,
            base_url=settings.OPENROUTER_BASE_URL,
        )

    return ProviderConfig(
        provider=LLMProvider.ANTHROPIC,
        model_name=f"anthropic/{final_model}",  # litellm format
        api_key=settings.ANTHROPIC_API_KEY,
    )


def validate_provider_config(provider: str) -> Dict[str, Any]:
    """
    Validate that the required configuration is present for a provider.

    Returns:
        Dict with 'valid' bool and 'missing' list of missing config keys
    """
    provider_str = provider.lower()
    missing = []

    if provider_str == "anthropic":
        if not settings.ANTHROPIC_API_KEY:
            missing.append("ANTHROPIC_API_KEY")
    elif provider_str == "openai":
        if not settings.OPENAI_API_KEY:
            missing.append("OPENAI_API_KEY")
    elif provider_str == "openrouter":
        if not settings.OPENROUTER_API_KEY:
            missing.append("OPENROUTER_API_KEY")
    else:
        missing.append("MODEL_PROVIDER")

    return {
        "valid": len(missing) == 0,
        "missing": missing,
        "provider": provider_str
    }


def list_available_providers() -> Dict[str, Dict[str, Any]]:
    """List all providers and their configuration status."""
    providers = {}
    for p in LLMProvider:
        validation = validate_provider_config(p.value)
        providers[p.value] = {
            "configured": validation["valid"],
            "missing_config": validation["missing"],
            "default_model": DEFAULT_MODELS.get(p),
        }
    return providers
