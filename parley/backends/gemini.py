"""
Gemini backend — Google Generative Language API over plain HTTP.

Streams via `:streamGenerateContent?alt=sse`. Each SSE event carries a
GenerateContentResponse; we forward the text of every non-thought part.
"""

from __future__ import annotations

import logging

import httpx

from parley.backends.base import BaseBackend, GenerationRequest
from parley.config import GenerationConfig
from parley.conversation import BlobPart, Message, TextPart
from parley.errors import ErrorKind, ProviderError, SessionError

logger = logging.getLogger(__name__)

DEFAULT_URL = "https://generativelanguage.googleapis.com"
DEFAULT_MODEL = "gemini-2.5-flash-lite"


def _camel(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(w.title() for w in rest)


def _camel_keys(obj):
    """url_context -> urlContext, recursively (tool declarations, safety settings)."""
    if isinstance(obj, dict):
        return {_camel(k): _camel_keys(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_camel_keys(v) for v in obj]
    return obj


class GeminiBackend(BaseBackend):

    def __init__(
        self,
        name: str = "gemini",
        url: str = DEFAULT_URL,
        model: str = DEFAULT_MODEL,
        api_key: str = "",
        timeout: float = 120,
    ):
        super().__init__(name=name, url=url or DEFAULT_URL, model=model or DEFAULT_MODEL,
                         api_key=api_key, timeout=timeout)

    def _headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "x-goog-api-key": self.api_key,
        }

    @staticmethod
    def _content(message: Message) -> dict:
        parts = []
        for part in message.parts:
            if isinstance(part, TextPart):
                parts.append({"text": part.text})
            elif isinstance(part, BlobPart):
                parts.append({"inlineData": {"mimeType": part.mime_type, "data": part.b64}})
        return {"role": message.role.value, "parts": parts}

    @staticmethod
    def _generation_config(gen: GenerationConfig) -> dict:
        return {
            "temperature": gen.temperature,
            "topK": gen.top_k,
            "topP": gen.top_p,
            "maxOutputTokens": gen.max_output_tokens,
            "thinkingConfig": {"thinkingBudget": gen.thinking_budget},
        }

    def build_body(self, request: GenerationRequest) -> dict:
        gen = request.generation
        body = {
            "contents": [self._content(m) for m in request.provider_messages],
            "generationConfig": self._generation_config(gen),
        }
        if gen.tools:
            body["tools"] = _camel_keys(gen.tools)
        if gen.safety_settings:
            body["safetySettings"] = _camel_keys(gen.safety_settings)
        return body

    @staticmethod
    def _extract_text(event: dict) -> str:
        """Text of one streamed GenerateContentResponse; raises on block/error."""
        if "error" in event:
            err = event["error"] or {}
            raise ProviderError(
                f"{err.get('status', 'ERROR')}: {err.get('message', '')}",
                status_code=int(err.get("code", 0) or 0),
            )

        block_reason = (event.get("promptFeedback") or {}).get("blockReason")
        if block_reason:
            raise SessionError(
                ErrorKind.CONTENT_FILTERED,
                f"Prompt was blocked by safety filters ({block_reason}). Please rephrase your request.",
            )

        texts = []
        for candidate in event.get("candidates", []):
            for part in (candidate.get("content") or {}).get("parts", []):
                if part.get("thought"):
                    continue
                if part.get("text"):
                    texts.append(part["text"])
        return "".join(texts)

    async def stream(self, request: GenerationRequest):
        """Stream a generation, yielding text fragments."""
        if not self.api_key:
            raise SessionError(
                ErrorKind.API_KEY_MISSING,
                "No API key configured for Gemini. Set GEMINI_API_KEY.",
            )

        endpoint = f"{self.url}/v1beta/models/{self.model}:streamGenerateContent"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                async with client.stream(
                    "POST",
                    endpoint,
                    params={"alt": "sse"},
                    headers=self._headers(),
                    json=self.build_body(request),
                ) as resp:
                    await self._raise_for_status(resp)
                    async for line in resp.aiter_lines():
                        event = self._parse_sse_data(line)
                        if event is None:
                            continue
                        text = self._extract_text(event)
                        if text:
                            yield text
        except httpx.TimeoutException:
            logger.warning("Gemini backend '%s' stream timed out", self.name)
            raise
        except (httpx.HTTPError, ProviderError) as e:
            logger.warning("Gemini backend '%s' stream failed: %s", self.name, e)
            raise

    async def health_check(self) -> bool:
        """Check the model endpoint answers with our key."""
        if not self.api_key:
            return False
        try:
            async with httpx.AsyncClient(timeout=5) as client:
                resp = await client.get(
                    f"{self.url}/v1beta/models/{self.model}",
                    headers=self._headers(),
                )
                return resp.status_code == 200
        except httpx.HTTPError:
            return False
