"""Provider implementations and the config-driven factory."""

from __future__ import annotations

import os

from chatloop.config import LLMConfig
from chatloop.llm.providers.anthropic import AnthropicProvider
from chatloop.llm.providers.base import HTTPProvider, Provider
from chatloop.llm.providers.openrouter import OpenRouterProvider

__all__ = [
    "AnthropicProvider",
    "HTTPProvider",
    "OpenRouterProvider",
    "Provider",
    "create_provider",
]


def create_provider(cfg: LLMConfig, **kwargs) -> Provider:
    """Build the provider named by ``cfg.provider_type``."""
    api_key = os.environ.get(cfg.api_key_env, "") if cfg.api_key_env else ""
    common = dict(
        model=cfg.model,
        api_key=api_key,
        max_tokens=cfg.max_tokens,
        timeout=float(cfg.timeout_seconds),
        max_retries=cfg.max_retries,
        **kwargs,
    )
    if cfg.provider_type == "openrouter":
        if cfg.api_base:
            common["url"] = cfg.api_base
        return OpenRouterProvider(
            referer_url=cfg.referer_url, app_title=cfg.app_title, **common
        )
    if cfg.provider_type == "anthropic":
        if cfg.api_base:
            common["url"] = cfg.api_base
        return AnthropicProvider(**common)
    raise ValueError(f"Unsupported provider type: {cfg.provider_type}")
