"""
Base backend abstraction.
All providers implement this interface so the streaming client can treat
them uniformly: a request goes in, text fragments come out.
"""

from __future__ import annotations

import abc
import json
import logging
import os
from dataclasses import dataclass
from typing import AsyncIterator

from parley.config import GenerationConfig
from parley.conversation import PROVIDER_ROLES, Message
from parley.errors import ProviderError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationRequest:
    """Snapshot of what one call sends. Never mutated during the call."""
    messages: tuple[Message, ...]
    generation: GenerationConfig

    @property
    def provider_messages(self) -> list[Message]:
        """System messages are session-local and never transmitted."""
        return [m for m in self.messages if m.role in PROVIDER_ROLES]


class BaseBackend(abc.ABC):
    """
    Abstract base for generation providers.
    Each backend knows how to stream one request and report health.
    """

    def __init__(self, name: str, url: str, model: str, api_key: str = "", timeout: float = 120):
        self.name = name
        self.url = url.rstrip("/")
        self.model = model
        self.api_key = self._resolve_env(api_key)
        self.timeout = timeout

    @staticmethod
    def _resolve_env(value: str) -> str:
        """Resolve ${ENV_VAR} references in config values."""
        if value and value.startswith("${") and value.endswith("}"):
            return os.environ.get(value[2:-1], "")
        return (value or "").strip()

    def is_ready(self) -> bool:
        """True when the backend has what it needs to make a call."""
        return bool(self.api_key)

    @abc.abstractmethod
    def stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        """
        Stream a generation request.
        Yields text fragments in arrival order; raises on transport or
        provider failure.
        """
        ...

    @abc.abstractmethod
    async def health_check(self) -> bool:
        """Check if the provider is reachable and accepts our key."""
        ...

    @staticmethod
    def _parse_sse_data(line: str) -> dict | None:
        """Decode one `data: {...}` SSE line. None for keep-alives and [DONE]."""
        if not line.startswith("data:"):
            return None
        payload = line[5:].strip()
        if not payload or payload == "[DONE]":
            return None
        try:
            return json.loads(payload)
        except json.JSONDecodeError:
            logger.debug("Skipping undecodable SSE line (%d bytes)", len(payload))
            return None

    @staticmethod
    async def _raise_for_status(resp) -> None:
        """Like raise_for_status, but keeps the provider's error body in the message."""
        if resp.status_code < 400:
            return
        body = (await resp.aread()).decode("utf-8", errors="replace")
        raise ProviderError(f"HTTP {resp.status_code}: {body[:500]}", status_code=resp.status_code)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r} url={self.url!r} model={self.model!r}>"
