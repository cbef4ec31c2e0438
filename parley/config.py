"""
Config loader for parley.
Reads config.yaml once and caches it. .env is loaded at import so that
${ENV_VAR} references (API keys, mostly) resolve without exporting anything.

Typed views over the raw dict:
  GenerationConfig — provider sampling/thinking/safety parameters
  SessionConfig    — per-session behaviour (history, retries, seed prompt)
"""

from __future__ import annotations

import copy
import os
import re
from dataclasses import dataclass, field, fields, replace
from pathlib import Path

import yaml
from dotenv import load_dotenv

from parley.prompts import LEGAL_ASSISTANT_PROMPT

load_dotenv()

_CONFIG_PATH = Path(__file__).parent.parent / "config.yaml"

_config: dict | None = None


def _resolve_env_vars(value: str) -> str:
    """Replace ${ENV_VAR} patterns with actual environment variable values."""
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, "")
    return re.sub(r"\$\{(\w+)\}", replacer, value)


def _walk_and_resolve(obj):
    """Recursively resolve env vars in all string values."""
    if isinstance(obj, dict):
        return {k: _walk_and_resolve(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_walk_and_resolve(v) for v in obj]
    elif isinstance(obj, str):
        return _resolve_env_vars(obj)
    return obj


def load_config(path: Path | None = None) -> dict:
    """Load and cache config from YAML file."""
    global _config
    if _config is not None and path is None:
        return _config

    config_path = Path(path) if path else _CONFIG_PATH
    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    _config = _walk_and_resolve(raw)
    return _config


def get_config() -> dict:
    """Return cached config, loading if necessary."""
    if _config is None:
        return load_config()
    return _config


def reset_config():
    """Drop the cached config (tests, reloads)."""
    global _config
    _config = None


def _default_tools() -> list[dict]:
    return [{"url_context": {}}]


@dataclass(frozen=True)
class GenerationConfig:
    """Provider generation parameters. Defaults favour consistent, sober answers."""
    temperature: float = 0.1
    top_k: int = 40
    top_p: float = 0.95
    max_output_tokens: int = 8192
    thinking_budget: int = -1  # -1 = let the model decide
    tools: list[dict] = field(default_factory=_default_tools)
    safety_settings: list[dict] = field(default_factory=list)

    @classmethod
    def from_dict(cls, cfg: dict | None) -> GenerationConfig:
        cfg = cfg or {}
        known = {f.name for f in fields(cls)}
        unknown = set(cfg) - known
        if unknown:
            raise ValueError(f"Unknown generation parameter(s): {', '.join(sorted(unknown))}")
        return cls(**copy.deepcopy(cfg))

    def merged(self, overrides: dict | None = None) -> GenerationConfig:
        """Copy with per-call overrides applied. Falsy tools fall back to ours."""
        if not overrides:
            return self
        unknown = set(overrides) - {f.name for f in fields(self)}
        if unknown:
            raise ValueError(f"Unknown generation parameter(s): {', '.join(sorted(unknown))}")
        overrides = {k: v for k, v in overrides.items() if v is not None}
        if not overrides.get("tools"):
            overrides.pop("tools", None)
        return replace(self, **copy.deepcopy(overrides))


@dataclass(frozen=True)
class SessionConfig:
    multi_turn: bool = True
    legal_context: bool = True
    system_prompt: str = ""
    max_retries: int = 3
    auto_retry: bool = True
    max_history_length: int = 50
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0
    request_timeout: float = 120.0
    generation: GenerationConfig = field(default_factory=GenerationConfig)

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.max_history_length <= 0:
            raise ValueError(f"max_history_length must be > 0, got {self.max_history_length}")
        if self.request_timeout <= 0:
            raise ValueError(f"request_timeout must be > 0, got {self.request_timeout}")

    @classmethod
    def from_dict(cls, cfg: dict) -> SessionConfig:
        """Build from a full config dict (`session:` and `generation:` sections)."""
        s_cfg = dict(cfg.get("session", {}) or {})
        known = {f.name for f in fields(cls)} - {"generation"}
        kwargs = {k: v for k, v in s_cfg.items() if k in known}
        return cls(generation=GenerationConfig.from_dict(cfg.get("generation")), **kwargs)

    @property
    def seed_prompt(self) -> str:
        """Explicit prompt wins, then the legal default; single-turn has none."""
        if not self.multi_turn:
            return ""
        if self.system_prompt:
            return self.system_prompt
        if self.legal_context:
            return LEGAL_ASSISTANT_PROMPT
        return ""
