"""
Input validation: reject unsafe user text before it reaches a provider.

Two entry points:

  InputValidator.validate()  — for user turns. Rejects (raises INVALID_INPUT)
                               empty, oversized, or deny-listed text.
  sanitize_external()        — for content produced elsewhere (OCR, document
                               analysis). Strips markup instead of rejecting.

The deny-list is a list of (name, compiled_regex). Extra patterns can be added
in config.yaml:

    validator:
      max_length: 100000
      deny_patterns:
        - name: vbscript_uri
          pattern: "vbscript:"
"""

from __future__ import annotations

import logging
import re

from parley.errors import ErrorKind, SessionError

logger = logging.getLogger(__name__)

DEFAULT_MAX_LENGTH = 100_000

# ── Pattern library ──────────────────────────────────────────────────────────
# All case-insensitive; a single match rejects the input.

DEFAULT_DENY_PATTERNS: list[tuple[str, re.Pattern]] = [
    ("script_tag",
     re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)),

    ("javascript_uri",
     re.compile(r"javascript:", re.IGNORECASE)),

    # onclick=, onload = ...
    ("event_handler",
     re.compile(r"on\w+\s*=", re.IGNORECASE)),

    ("html_data_uri",
     re.compile(r"data:text/html", re.IGNORECASE)),
]

_SCRIPT_BLOCK = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_HTML_TAG = re.compile(r"<[^>]*>")
_JS_URI = re.compile(r"javascript:", re.IGNORECASE)


def compile_patterns(entries: list[dict]) -> list[tuple[str, re.Pattern]]:
    """Compile deny-list entries from config into (name, regex) pairs."""
    compiled = []
    for i, entry in enumerate(entries):
        raw = entry.get("pattern", "")
        if not raw:
            logger.warning("Deny pattern #%d has no pattern, skipping", i)
            continue
        name = entry.get("name", f"custom_{i}")
        compiled.append((name, re.compile(raw, re.IGNORECASE)))
    return compiled


class InputValidator:
    """Stateless validator for user-supplied text."""

    def __init__(
        self,
        max_length: int = DEFAULT_MAX_LENGTH,
        deny_patterns: list[tuple[str, re.Pattern]] | None = None,
    ):
        if max_length <= 0:
            raise ValueError(f"max_length must be positive, got {max_length}")
        self.max_length = max_length
        self.deny_patterns = list(DEFAULT_DENY_PATTERNS)
        if deny_patterns:
            self.deny_patterns.extend(deny_patterns)

    @classmethod
    def from_config(cls, cfg: dict) -> InputValidator:
        """Build from the `validator:` config section."""
        return cls(
            max_length=int(cfg.get("max_length", DEFAULT_MAX_LENGTH)),
            deny_patterns=compile_patterns(cfg.get("deny_patterns", [])),
        )

    def validate(self, raw: str) -> str:
        """Return the trimmed text, or raise SessionError(INVALID_INPUT)."""
        if not isinstance(raw, str) or not raw:
            raise SessionError(ErrorKind.INVALID_INPUT, "Input must be a non-empty string")

        trimmed = raw.strip()
        if not trimmed:
            raise SessionError(ErrorKind.INVALID_INPUT, "Input cannot be empty or only whitespace")

        if len(trimmed) > self.max_length:
            raise SessionError(
                ErrorKind.INVALID_INPUT,
                f"Input exceeds maximum length of {self.max_length:,} characters",
            )

        matched = self.matched_patterns(trimmed)
        if matched:
            logger.warning("Rejected input (len=%d, patterns=%s)", len(trimmed), matched)
            raise SessionError(ErrorKind.INVALID_INPUT, "Input contains potentially unsafe content")

        return trimmed

    def matched_patterns(self, text: str) -> list[str]:
        return [name for name, pattern in self.deny_patterns if pattern.search(text)]


def sanitize_external(text: str) -> str:
    """
    Strip script blocks, HTML tags and javascript: URIs from externally
    produced text. Event-handler attributes go with their tags; bare text
    like "condition=final" is left alone. Returns "" when nothing is left.
    """
    if not text:
        return ""
    cleaned = _SCRIPT_BLOCK.sub("", text)
    cleaned = _HTML_TAG.sub("", cleaned)
    cleaned = _JS_URI.sub("", cleaned)
    return cleaned.strip()
