"""Configuration loader for ClearLink.

This module loads and validates the YAML engine configuration: rule source
and refresh cadence, link expansion limits, and the inference endpoint.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from clearlink.core.constants import DEFAULTS, DEFAULT_SHORTENERS
from clearlink.core.exceptions import ConfigError


# Environment overrides
ENV_RULES_SOURCE = "CLEARLINK_RULES_SOURCE"
ENV_AI_API_KEY = "CLEARLINK_AI_API_KEY"


# ============================================================================
# Configuration Models
# ============================================================================

@dataclass
class RulesConfig:
    """Rule document source and refresh settings."""
    source: str = DEFAULTS["rules_source"]
    refresh_interval: float = DEFAULTS["refresh_interval"]   # Seconds
    fetch_timeout: float = DEFAULTS["fetch_timeout"]
    initial_retries: int = DEFAULTS["initial_retries"]
    backoff_base: float = DEFAULTS["backoff_base"]


@dataclass
class ExpansionConfig:
    """Shortened link expansion limits."""
    enabled: bool = True
    shorteners: list[str] = field(default_factory=lambda: list(DEFAULT_SHORTENERS))
    max_hops: int = DEFAULTS["max_hops"]
    per_hop_timeout: float = DEFAULTS["per_hop_timeout"]
    total_timeout: float = DEFAULTS["total_timeout"]


@dataclass
class AIConfig:
    """Inference endpoint used for unresolved parameters."""
    endpoint: Optional[str] = None
    api_key: Optional[str] = None
    timeout: float = DEFAULTS["ai_timeout"]

    @property
    def enabled(self) -> bool:
        return bool(self.endpoint)


@dataclass
class EngineConfig:
    """Top-level engine configuration."""
    rules: RulesConfig = field(default_factory=RulesConfig)
    expansion: ExpansionConfig = field(default_factory=ExpansionConfig)
    ai: AIConfig = field(default_factory=AIConfig)
    sanitize_timeout: Optional[float] = None


# ============================================================================
# Configuration Paths
# ============================================================================

def get_config_dir() -> Path:
    """Get the configuration directory path.

    Returns:
        Path to configs directory (./configs relative to project root)
    """
    # core/ -> clearlink/ -> src/ -> root
    project_root = Path(__file__).parent.parent.parent.parent
    return project_root / "configs"


# ============================================================================
# Engine Configuration Loader
# ============================================================================

def load_engine_config(config_file: Path | str | None = None) -> EngineConfig:
    """Load engine configuration from YAML file.

    Args:
        config_file: Path to config YAML file. If None, loads
            engine.example.yaml when present, otherwise built-in defaults

    Returns:
        EngineConfig with validated settings and environment overrides applied

    Raises:
        ConfigError: If file not found, YAML parsing fails or values are invalid
    """
    if config_file is None:
        config_path = get_config_dir() / "engine.example.yaml"
        if not config_path.exists():
            return _apply_env_overrides(EngineConfig())
    else:
        config_path = Path(config_file)

    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with config_path.open("r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse config YAML: {e}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read config file: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError("Engine configuration must be a mapping")

    config = EngineConfig(
        rules=_build_rules_config(_section(data, "rules")),
        expansion=_build_expansion_config(_section(data, "expansion")),
        ai=_build_ai_config(_section(data, "ai")),
        sanitize_timeout=_optional_positive(data, "sanitize_timeout", "sanitize_timeout"),
    )
    return _apply_env_overrides(config)


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{name}' must be a mapping")
    return section


def _positive(section: dict[str, Any], key: str, default: float, label: str) -> float:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigError(f"'{label}' must be a positive number")
    return value


def _optional_positive(section: dict[str, Any], key: str, label: str) -> Optional[float]:
    if section.get(key) is None:
        return None
    return float(_positive(section, key, 0, label))


def _build_rules_config(section: dict[str, Any]) -> RulesConfig:
    source = section.get("source", DEFAULTS["rules_source"])
    if not isinstance(source, str) or not source:
        raise ConfigError("'rules.source' must be a non-empty string")

    retries = section.get("initial_retries", DEFAULTS["initial_retries"])
    if isinstance(retries, bool) or not isinstance(retries, int) or retries < 1:
        raise ConfigError("'rules.initial_retries' must be a positive integer")

    return RulesConfig(
        source=source,
        refresh_interval=float(_positive(section, "refresh_interval", DEFAULTS["refresh_interval"], "rules.refresh_interval")),
        fetch_timeout=float(_positive(section, "fetch_timeout", DEFAULTS["fetch_timeout"], "rules.fetch_timeout")),
        initial_retries=retries,
        backoff_base=float(_positive(section, "backoff_base", DEFAULTS["backoff_base"], "rules.backoff_base")),
    )


def _build_expansion_config(section: dict[str, Any]) -> ExpansionConfig:
    shorteners = section.get("shorteners", list(DEFAULT_SHORTENERS))
    if not isinstance(shorteners, list) or not all(isinstance(s, str) for s in shorteners):
        raise ConfigError("'expansion.shorteners' must be a list of hosts")

    max_hops = section.get("max_hops", DEFAULTS["max_hops"])
    if isinstance(max_hops, bool) or not isinstance(max_hops, int) or max_hops < 1:
        raise ConfigError("'expansion.max_hops' must be a positive integer")

    return ExpansionConfig(
        enabled=bool(section.get("enabled", True)),
        shorteners=[s.strip().lower() for s in shorteners if s.strip()],
        max_hops=max_hops,
        per_hop_timeout=float(_positive(section, "per_hop_timeout", DEFAULTS["per_hop_timeout"], "expansion.per_hop_timeout")),
        total_timeout=float(_positive(section, "total_timeout", DEFAULTS["total_timeout"], "expansion.total_timeout")),
    )


def _build_ai_config(section: dict[str, Any]) -> AIConfig:
    endpoint = section.get("endpoint")
    if endpoint is not None and (not isinstance(endpoint, str) or not endpoint.startswith("http")):
        raise ConfigError("'ai.endpoint' must be an http(s) URL")

    return AIConfig(
        endpoint=endpoint or None,
        api_key=section.get("api_key"),
        timeout=float(_positive(section, "timeout", DEFAULTS["ai_timeout"], "ai.timeout")),
    )


def _apply_env_overrides(config: EngineConfig) -> EngineConfig:
    source = os.environ.get(ENV_RULES_SOURCE)
    if source:
        config.rules.source = source

    api_key = os.environ.get(ENV_AI_API_KEY)
    if api_key:
        config.ai.api_key = api_key

    return config
