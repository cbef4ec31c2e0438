"""
StreamingClient — one outbound generation call, incrementally.

stream()  yields StreamChunk objects: zero or more non-final chunks in arrival
          order, then exactly one final chunk (text == ""). Any failure is
          raised as a classified SessionError before the final chunk.
collect() drives stream() under a timeout and a cancellation token and
          returns the concatenated, trimmed text.

Neither touches the conversation; that is the session's job.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Callable

from parley.backends.base import BaseBackend, GenerationRequest
from parley.errors import ErrorClassifier, ErrorKind, SessionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StreamChunk:
    text: str
    is_final: bool = False


class CancellationToken:
    """Fired once; whoever holds it stops waiting on the call."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason = ""

    def cancel(self, reason: str = "cancelled"):
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self):
        await self._event.wait()


class StreamingClient:

    def __init__(
        self,
        backend: BaseBackend,
        timeout: float = 120.0,
        classifier: ErrorClassifier | None = None,
    ):
        self.backend = backend
        self.timeout = timeout
        self.classifier = classifier or ErrorClassifier()

    async def stream(self, request: GenerationRequest) -> AsyncIterator[StreamChunk]:
        fragments: list[str] = []
        try:
            async for fragment in self.backend.stream(request):
                if not fragment:
                    continue
                fragments.append(fragment)
                yield StreamChunk(fragment)
        except Exception as e:
            error = self.classifier.classify(e)
            if error is not e:
                raise error from e
            raise

        if not "".join(fragments).strip():
            raise SessionError(
                ErrorKind.CONTENT_FILTERED,
                "No response generated. Content may have been filtered for safety.",
            )

        yield StreamChunk("", is_final=True)

    async def collect(
        self,
        request: GenerationRequest,
        on_chunk: Callable[[StreamChunk], None] | None = None,
        token: CancellationToken | None = None,
    ) -> str:
        """
        Run one call to completion and return the trimmed full text.
        Timeout or cancellation abandons the call and raises NETWORK_ERROR.
        """
        token = token or CancellationToken()
        drain = asyncio.ensure_future(self._drain(request, on_chunk))
        waiter = asyncio.ensure_future(token.wait())
        try:
            done, _ = await asyncio.wait(
                {drain, waiter},
                timeout=self.timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            drain.cancel()
            raise
        finally:
            waiter.cancel()

        if drain in done:
            return drain.result()

        drain.cancel()
        try:
            await drain
        except asyncio.CancelledError:
            pass
        except Exception as e:
            # Finished failing while we were giving up on it; that failure is moot
            logger.debug("Abandoned call raised after cancel: %s", e)

        if token.cancelled:
            logger.info("Generation call cancelled (%s)", token.reason)
            raise SessionError(ErrorKind.NETWORK_ERROR, f"Request cancelled: {token.reason}")

        logger.warning("Generation call timed out after %.1fs", self.timeout)
        raise SessionError(
            ErrorKind.NETWORK_ERROR,
            f"Request timed out after {self.timeout:g}s. Please check your connection and try again.",
        )

    async def _drain(self, request: GenerationRequest, on_chunk) -> str:
        fragments: list[str] = []
        async for chunk in self.stream(request):
            if not chunk.is_final:
                fragments.append(chunk.text)
            if on_chunk is not None:
                on_chunk(chunk)
        return "".join(fragments).strip()
