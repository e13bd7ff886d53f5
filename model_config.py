"""Model provider selection.

Each organization picks a provider and model in organization_settings and
stores one API key per provider. The key of the selected provider is the AI
credential; without it the caller runs without AI.

Usage:
    from model_config import resolve_credentials
    credentials = resolve_credentials(settings)
"""
from typing import Optional

from pydantic import BaseModel

DEFAULT_PROVIDER = "google"
DEFAULT_MODEL = "gemini-2.5-flash"

# Provider name -> LiteLLM model prefix
PROVIDER_PREFIXES = {
    "google": "gemini",
    "openai": "openai",
    "anthropic": "anthropic",
}


class AICredentials(BaseModel):
    provider: str
    model: str
    api_key: str


def litellm_model_name(provider: str, model: str) -> str:
    """Return the LiteLLM model string, e.g. 'gemini/gemini-2.5-flash'."""
    prefix = PROVIDER_PREFIXES.get(provider)
    if prefix is None:
        raise ValueError(f"Unknown AI provider: {provider!r}")
    if model.startswith(f"{prefix}/"):
        return model
    return f"{prefix}/{model}"


def active_provider(settings) -> str:
    """Return the provider configured for an organization, defaulting to Google."""
    return (getattr(settings, "ai_provider", None) or DEFAULT_PROVIDER) if settings else DEFAULT_PROVIDER


def resolve_credentials(settings) -> Optional[AICredentials]:
    """Map an OrganizationSettings row to LiteLLM credentials, or None when no key is set."""
    if settings is None:
        return None
    provider = active_provider(settings)
    if provider not in PROVIDER_PREFIXES:
        return None
    api_key = getattr(settings, f"ai_{provider}_key", None)
    if not api_key:
        return None
    model = settings.ai_model or DEFAULT_MODEL
    return AICredentials(
        provider=provider,
        model=litellm_model_name(provider, model),
        api_key=api_key,
    )
