"""
Error taxonomy and classification.

Every failure that reaches a caller is a SessionError carrying one ErrorKind.
Provider failures are classified exactly once, at the boundary, by
ErrorClassifier; anything already a SessionError passes through untouched.

Rules are evaluated in order, first match wins:

    1. API key problems            -> API_KEY_MISSING
    2. rate limiting / quota       -> PROVIDER_RATE_LIMITED
    3. network / transport trouble -> NETWORK_ERROR
    4. safety / content blocking   -> CONTENT_FILTERED
    5. nothing matched             -> UNKNOWN
"""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)


class ErrorKind(str, enum.Enum):
    INVALID_INPUT = "invalid_input"
    API_KEY_MISSING = "api_key_missing"
    PROVIDER_RATE_LIMITED = "provider_rate_limited"
    SESSION_BUSY = "session_busy"
    NETWORK_ERROR = "network_error"
    CONTENT_FILTERED = "content_filtered"
    UNKNOWN = "unknown"


# Never resent, automatically or by hand
_NON_RETRYABLE = frozenset({ErrorKind.INVALID_INPUT, ErrorKind.SESSION_BUSY})


class SessionError(Exception):
    """A classified failure. The only exception type callers need to know."""

    def __init__(self, kind: ErrorKind, message: str, original: BaseException | None = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.original = original

    @property
    def retryable(self) -> bool:
        return self.kind not in _NON_RETRYABLE

    def __repr__(self) -> str:
        return f"<SessionError kind={self.kind.value} message={self.message!r}>"


class ProviderError(Exception):
    """Raised by backends when the provider answers with an HTTP error."""

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class _Rule:
    kind: ErrorKind
    pattern: re.Pattern
    status_codes: frozenset[int] = frozenset()
    exc_types: tuple[type[BaseException], ...] = ()
    server_errors: bool = False
    message: str = ""

    def matches(self, failure: BaseException, text: str) -> bool:
        if self.exc_types and isinstance(failure, self.exc_types):
            return True
        status = getattr(failure, "status_code", 0) or 0
        if status and self._status_matches(status):
            return True
        return bool(self.pattern.search(text))

    def _status_matches(self, status: int) -> bool:
        if status in self.status_codes:
            return True
        return self.server_errors and 500 <= status < 600


_RULES: list[_Rule] = [
    _Rule(
        ErrorKind.API_KEY_MISSING,
        re.compile(r"api[_\s-]?key|unauthenticated|unauthori[sz]ed", re.IGNORECASE),
        status_codes=frozenset({401, 403}),
        message="Invalid or expired API key. Check the provider API key configuration.",
    ),
    _Rule(
        ErrorKind.PROVIDER_RATE_LIMITED,
        re.compile(r"rate[\s_-]?limit|quota|too many requests|resource[\s_]exhausted", re.IGNORECASE),
        status_codes=frozenset({429}),
        message="API rate limit exceeded. Please try again later.",
    ),
    _Rule(
        ErrorKind.NETWORK_ERROR,
        re.compile(r"network|fetch|connection|timed?[\s_-]?out|unreachable|\bdns\b", re.IGNORECASE),
        server_errors=True,
        exc_types=(httpx.TransportError, ConnectionError, TimeoutError),
        message="Network error occurred. Please check your connection and try again.",
    ),
    _Rule(
        ErrorKind.CONTENT_FILTERED,
        re.compile(r"safety|blocked|content[\s_-]?filter", re.IGNORECASE),
        message="Content was blocked by safety filters. Please rephrase your request.",
    ),
]


class ErrorClassifier:
    """Maps low-level failures onto the fixed ErrorKind taxonomy."""

    def __init__(self, rules: list[_Rule] | None = None):
        self.rules = rules if rules is not None else _RULES

    def classify(self, failure: BaseException) -> SessionError:
        if isinstance(failure, SessionError):
            return failure

        text = str(failure) or failure.__class__.__name__
        for rule in self.rules:
            if rule.matches(failure, text):
                logger.debug("Classified %s as %s", failure.__class__.__name__, rule.kind.value)
                return SessionError(rule.kind, rule.message, original=failure)

        return SessionError(ErrorKind.UNKNOWN, f"Unexpected error: {text}", original=failure)

    def kind_of(self, failure: BaseException) -> ErrorKind:
        return self.classify(failure).kind
