"""Provider selection for the two narrative workloads.

Turn narration uses the ``strong`` tier; level-up perks use the cheaper
``fast`` tier.  Each tier has its own default model and temperature.
"""

from __future__ import annotations

import logging

from warlynx.config import settings
from warlynx.llm.anthropic import AnthropicProvider
from warlynx.llm.base import LLMProvider
from warlynx.llm.openai import OpenAIProvider

log = logging.getLogger(__name__)

# name -> (class, settings attribute holding its key)
_PROVIDERS = {
    "openai": (OpenAIProvider, "openai_api_key"),
    "anthropic": (AnthropicProvider, "anthropic_api_key"),
}
TIERS = ("strong", "fast")


def _tier_temperature(tier: str) -> float:
    if tier == "strong":
        return settings.default_strong_temperature
    return settings.default_fast_temperature


def get_provider(
    name: str | None = None,
    tier: str = "strong",
    model: str | None = None,
    temperature: float | None = None,
) -> LLMProvider:
    """Build a configured provider.

    ``name`` defaults to ``settings.default_provider``; an explicit ``model``
    overrides the tier's default model.  Raises ``ValueError`` for an unknown
    provider or tier, or when the provider's API key is not set.
    """
    name = name or settings.default_provider
    if name not in _PROVIDERS:
        raise ValueError(f"Unknown provider '{name}'. Choose from: {list(_PROVIDERS)}")
    if tier not in TIERS:
        raise ValueError(f"Unknown tier '{tier}'. Choose from: {list(TIERS)}")

    cls, key_attr = _PROVIDERS[name]
    api_key = getattr(settings, key_attr)
    if not api_key:
        raise ValueError(f"No API key for '{name}' (set {key_attr.upper()} in .env).")

    model = model or getattr(cls, f"{tier.upper()}_MODEL")
    temperature = _tier_temperature(tier) if temperature is None else temperature
    log.info("Using %s/%s for %s-tier calls (temperature=%.2f)",
             name, model, tier, temperature)
    return cls(api_key=api_key, model=model, temperature=temperature)
