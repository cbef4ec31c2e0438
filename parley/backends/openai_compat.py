"""
Generic OpenAI-compatible backend.

Supports any endpoint that speaks the /v1/chat/completions streaming format:
- llama.cpp server
- vLLM
- Ollama
- LocalAI
- hosted OpenAI-compatible gateways

Gemini-only parameters (top_k, thinking budget, url_context tools, safety
settings) have no equivalent here and are not sent.
"""

from __future__ import annotations

import logging

import httpx

from parley.backends.base import BaseBackend, GenerationRequest
from parley.conversation import BlobPart, Message, Role, TextPart
from parley.errors import ProviderError

logger = logging.getLogger(__name__)

_ROLE_MAP = {Role.USER: "user", Role.MODEL: "assistant"}


class OpenAICompatibleBackend(BaseBackend):
    """
    Backend for OpenAI-compatible endpoints.
    A key is optional: local servers usually run without one.
    """

    def __init__(
        self,
        name: str,
        url: str,
        model: str,
        api_key: str = "",
        timeout: float = 120,
        require_key: bool = False,
    ):
        super().__init__(name=name, url=url, model=model, api_key=api_key, timeout=timeout)
        self.require_key = require_key

    def is_ready(self) -> bool:
        return bool(self.url) and (bool(self.api_key) or not self.require_key)

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    @staticmethod
    def _message(message: Message) -> dict:
        if all(isinstance(p, TextPart) for p in message.parts):
            return {"role": _ROLE_MAP[message.role], "content": message.content}

        content = []
        for part in message.parts:
            if isinstance(part, TextPart):
                content.append({"type": "text", "text": part.text})
            elif isinstance(part, BlobPart) and part.mime_type.startswith("image/"):
                content.append({
                    "type": "image_url",
                    "image_url": {"url": f"data:{part.mime_type};base64,{part.b64}"},
                })
            else:
                logger.debug("Skipping %s attachment: only images are sent", part.mime_type)
        return {"role": _ROLE_MAP[message.role], "content": content}

    def build_body(self, request: GenerationRequest) -> dict:
        gen = request.generation
        return {
            "model": self.model,
            "messages": [self._message(m) for m in request.provider_messages],
            "stream": True,
            "temperature": gen.temperature,
            "top_p": gen.top_p,
            "max_tokens": gen.max_output_tokens,
        }

    @staticmethod
    def _delta(chunk: dict) -> str:
        if "error" in chunk:
            err = chunk["error"]
            message = err.get("message", str(err)) if isinstance(err, dict) else str(err)
            raise ProviderError(message)
        choices = chunk.get("choices") or [{}]
        return (choices[0].get("delta") or {}).get("content") or ""

    async def stream(self, request: GenerationRequest):
        """Forward a streaming request, yielding content deltas."""
        if self.require_key and not self.api_key:
            raise ProviderError(f"No API key configured for '{self.name}'", status_code=401)

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                async with client.stream(
                    "POST",
                    f"{self.url}/v1/chat/completions",
                    json=self.build_body(request),
                    headers=self._headers(),
                ) as resp:
                    await self._raise_for_status(resp)
                    async for line in resp.aiter_lines():
                        chunk = self._parse_sse_data(line)
                        if chunk is None:
                            continue
                        delta = self._delta(chunk)
                        if delta:
                            yield delta
        except httpx.TimeoutException:
            logger.warning(
                "OpenAI-compatible backend '%s' stream timed out", self.name
            )
            raise
        except (httpx.HTTPError, ProviderError) as e:
            logger.warning(
                "OpenAI-compatible backend '%s' stream failed: %s", self.name, e
            )
            raise

    async def health_check(self) -> bool:
        """Check endpoint is reachable."""
        try:
            async with httpx.AsyncClient(timeout=5) as client:
                resp = await client.get(
                    f"{self.url}/v1/models",
                    headers=self._headers(),
                )
                return resp.status_code == 200
        except httpx.HTTPError:
            return False
