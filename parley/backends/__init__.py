"""
Generation providers for parley.
Backends are built explicitly from the `provider:` config section and
injected into sessions; there is no process-wide client.
"""

from __future__ import annotations

import logging

from parley.backends.base import BaseBackend, GenerationRequest
from parley.backends.gemini import GeminiBackend
from parley.backends.openai_compat import OpenAICompatibleBackend

logger = logging.getLogger(__name__)

# Provider name → backend class
PROVIDERS: dict[str, type[BaseBackend]] = {
    "gemini": GeminiBackend,
    "openai_compat": OpenAICompatibleBackend,
}


def create_backend(cfg: dict) -> BaseBackend:
    """Instantiate a backend from a `provider:` config dict."""
    provider = cfg.get("provider", "gemini")
    cls = PROVIDERS.get(provider)
    if not cls:
        raise ValueError(f"Unknown provider '{provider}' (known: {', '.join(PROVIDERS)})")

    kwargs = {
        "name": cfg.get("name", provider),
        "url": cfg.get("url", ""),
        "model": cfg.get("model", ""),
        "api_key": cfg.get("api_key", ""),
        "timeout": cfg.get("timeout", 120),
    }
    if provider == "openai_compat":
        if not kwargs["url"] or not kwargs["model"]:
            raise ValueError("openai_compat provider needs both url and model")
        kwargs["require_key"] = bool(cfg.get("require_key", False))

    backend = cls(**kwargs)
    if not backend.is_ready():
        logger.warning("Backend '%s' created without an API key; calls will fail", backend.name)
    return backend


__all__ = [
    "BaseBackend",
    "GenerationRequest",
    "GeminiBackend",
    "OpenAICompatibleBackend",
    "PROVIDERS",
    "create_backend",
]
