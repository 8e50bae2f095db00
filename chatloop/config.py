"""
Typed configuration model with precedence-based loader.

Precedence (lowest to highest):
    defaults < config file (YAML) < profile < env vars < CLI flags
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

DEFAULT_CONFIG_PATH = "~/.chatloop/config.yaml"
PROVIDER_TYPES = ("openrouter", "anthropic")


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------

@dataclass
class LLMConfig:
    provider_type: str = "openrouter"
    model: str = "anthropic/claude-3.5-sonnet"
    api_base: str = ""
    api_key_env: str = "OPENROUTER_API_KEY"
    max_tokens: int = 8192
    timeout_seconds: int = 600
    max_retries: int = 2
    referer_url: str = "http://localhost:3000"
    app_title: str = "chatloop"


@dataclass
class ToolsConfig:
    dangerous: list[str] = field(default_factory=list)
    disabled: list[str] = field(default_factory=list)
    timeout_seconds: int = 60
    url_merge_tool: str = "get_url"
    jina_api_key_env: str = "JINA_API_KEY"
    audit_log_path: str = "~/.chatloop/audit.jsonl"
    audit_max_size_mb: int = 10
    audit_keep_files: int = 5
    redaction_patterns: list[str] = field(default_factory=list)


@dataclass
class PluginsConfig:
    enabled: bool = False
    allow_distributions: list[str] = field(default_factory=list)
    allow_tools: list[str] = field(default_factory=list)


@dataclass
class OrchestratorConfig:
    stream: bool = True
    followup_delay_seconds: float = 0.5
    max_rounds: int = 25


@dataclass
class StoreConfig:
    database: str = "~/.chatloop/chatloop.db"
    attachments_dir: str = "~/.chatloop/attachments"


@dataclass
class LoggingConfig:
    level: str = "WARNING"
    format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------

@dataclass
class ChatloopConfig:
    llm: LLMConfig = field(default_factory=LLMConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    plugins: PluginsConfig = field(default_factory=PluginsConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    profiles: dict[str, dict[str, Any]] = field(default_factory=dict)

    def set_override(self, dotpath: str, value: Any) -> None:
        """Set a value using dot notation (e.g. 'llm.model')."""
        _apply_dotpath(self, dotpath, value)

    def to_dict(self) -> dict:
        return asdict(self)

    def validate(self) -> list[str]:
        """Return a list of human-readable problems (empty when valid)."""
        problems: list[str] = []
        if self.llm.provider_type not in PROVIDER_TYPES:
            problems.append(
                f"llm.provider_type must be one of {', '.join(PROVIDER_TYPES)}, "
                f"got {self.llm.provider_type!r}"
            )
        if not self.llm.model:
            problems.append("llm.model is empty")
        if self.llm.max_tokens <= 0:
            problems.append("llm.max_tokens must be positive")
        if self.llm.max_retries < 0:
            problems.append("llm.max_retries must not be negative")
        if self.orchestrator.max_rounds < 1:
            problems.append("orchestrator.max_rounds must be at least 1")
        if self.orchestrator.followup_delay_seconds < 0:
            problems.append("orchestrator.followup_delay_seconds must not be negative")
        if self.tools.timeout_seconds <= 0:
            problems.append("tools.timeout_seconds must be positive")
        overlap = set(self.tools.dangerous) & set(self.tools.disabled)
        if overlap:
            problems.append(
                f"tools listed as both dangerous and disabled: {', '.join(sorted(overlap))}"
            )
        return problems


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _apply_dotpath(obj: Any, dotpath: str, value: Any) -> None:
    """Walk obj via dotpath and set the final attribute."""
    parts = dotpath.split(".")
    for part in parts[:-1]:
        obj = getattr(obj, part)
    if not hasattr(obj, parts[-1]):
        raise KeyError(f"Unknown config key: {dotpath}")
    setattr(obj, parts[-1], value)


def _deep_merge(base: dict, overlay: dict) -> dict:
    """Recursively merge overlay into base, returning a new dict."""
    merged = dict(base)
    for k, v in overlay.items():
        if k in merged and isinstance(merged[k], dict) and isinstance(v, dict):
            merged[k] = _deep_merge(merged[k], v)
        else:
            merged[k] = v
    return merged


def _coerce(value: str, target_type: type) -> Any:
    """Coerce a string env value to the target type."""
    if target_type is bool:
        return value.lower() in ("1", "true", "yes", "on")
    if target_type is int:
        return int(value)
    if target_type is float:
        return float(value)
    if target_type is list:
        return [s.strip() for s in value.split(",") if s.strip()]
    return value


def _build_section(cls: type, raw: dict) -> Any:
    """Build a dataclass section from a raw dict, ignoring unknown keys."""
    valid_fields = {f.name for f in fields(cls)}
    filtered = {k: v for k, v in (raw or {}).items() if k in valid_fields}
    return cls(**filtered)


# ---------------------------------------------------------------------------
# ENV var mapping
# ---------------------------------------------------------------------------

_ENV_MAP: dict[str, tuple[str, type]] = {
    "CHATLOOP_LLM_PROVIDER":          ("llm.provider_type", str),
    "CHATLOOP_LLM_MODEL":             ("llm.model", str),
    "CHATLOOP_LLM_API_BASE":          ("llm.api_base", str),
    "CHATLOOP_LLM_API_KEY_ENV":       ("llm.api_key_env", str),
    "CHATLOOP_LLM_MAX_TOKENS":        ("llm.max_tokens", int),
    "CHATLOOP_LLM_TIMEOUT":           ("llm.timeout_seconds", int),
    "CHATLOOP_LLM_MAX_RETRIES":       ("llm.max_retries", int),
    "CHATLOOP_LLM_REFERER_URL":       ("llm.referer_url", str),
    "CHATLOOP_TOOLS_DANGEROUS":       ("tools.dangerous", list),
    "CHATLOOP_TOOLS_DISABLED":        ("tools.disabled", list),
    "CHATLOOP_TOOLS_TIMEOUT":         ("tools.timeout_seconds", int),
    "CHATLOOP_TOOLS_URL_MERGE_TOOL":  ("tools.url_merge_tool", str),
    "CHATLOOP_TOOLS_AUDIT_PATH":      ("tools.audit_log_path", str),
    "CHATLOOP_TOOLS_REDACTION":       ("tools.redaction_patterns", list),
    "CHATLOOP_PLUGINS_ENABLED":       ("plugins.enabled", bool),
    "CHATLOOP_ORCH_STREAM":           ("orchestrator.stream", bool),
    "CHATLOOP_ORCH_FOLLOWUP_DELAY":   ("orchestrator.followup_delay_seconds", float),
    "CHATLOOP_ORCH_MAX_ROUNDS":       ("orchestrator.max_rounds", int),
    "CHATLOOP_STORE_DATABASE":        ("store.database", str),
    "CHATLOOP_STORE_ATTACHMENTS_DIR": ("store.attachments_dir", str),
    "CHATLOOP_LOG_LEVEL":             ("logging.level", str),
}


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: dict[str, Any] | None = None,
) -> ChatloopConfig:
    """
    Build a ChatloopConfig by layering sources in precedence order:

        defaults  <  config file  <  profile  <  env vars  <  CLI flags

    Parameters
    ----------
    config_path : path to YAML config file (optional)
    profile : name of a profile to apply from the config file
    cli_overrides : dict of dotpath -> value CLI flag overrides
    """
    raw: dict[str, Any] = {}

    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.is_file():
            with p.open("r", encoding="utf-8") as f:
                file_data = yaml.safe_load(f) or {}
            raw = _deep_merge(raw, file_data)

    if profile and "profiles" in raw:
        profile_data = raw.get("profiles", {}).get(profile, {})
        if profile_data:
            raw = _deep_merge(raw, profile_data)

    cfg = ChatloopConfig(
        llm=_build_section(LLMConfig, raw.get("llm", {})),
        tools=_build_section(ToolsConfig, raw.get("tools", {})),
        plugins=_build_section(PluginsConfig, raw.get("plugins", {})),
        orchestrator=_build_section(OrchestratorConfig, raw.get("orchestrator", {})),
        store=_build_section(StoreConfig, raw.get("store", {})),
        logging=_build_section(LoggingConfig, raw.get("logging", {})),
        profiles=raw.get("profiles", {}),
    )

    for env_var, (dotpath, target_type) in _ENV_MAP.items():
        val = os.environ.get(env_var)
        if val is not None:
            _apply_dotpath(cfg, dotpath, _coerce(val, target_type))

    if cli_overrides:
        for dotpath, value in cli_overrides.items():
            _apply_dotpath(cfg, dotpath, value)

    return cfg
