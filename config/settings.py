"""
Configuration loader for the flow chat engine.
Reads settings from YAML file with environment variable substitution.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


@dataclass
class EngineConfig:
    api_host: str = "http://localhost:3000"
    is_preview: bool = False
    max_chained_blocks: int = 100       # block transitions allowed without a surface event


@dataclass
class IntegrationConfig:
    timeout_seconds: float = 10.0
    retry_attempts: int = 3             # transport-level retries for outgoing calls


@dataclass
class RegistryConfig:
    typebot_paths: list[str] = field(default_factory=list)   # YAML/JSON typebot files preloaded


@dataclass
class Settings:
    app_name: str = "FlowChat"
    debug: bool = False
    engine: EngineConfig = field(default_factory=EngineConfig)
    integrations: IntegrationConfig = field(default_factory=IntegrationConfig)
    registry: RegistryConfig = field(default_factory=RegistryConfig)


_settings: Optional[Settings] = None


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    pattern = re.compile(r'\$\{(\w+)\}')
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))
    return pattern.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "FLOWCHAT_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = _as_bool(raw.get("debug", settings.debug))

        if "engine" in raw:
            eng = raw["engine"] or {}
            settings.engine = EngineConfig(
                api_host=eng.get("api_host", settings.engine.api_host),
                is_preview=_as_bool(eng.get("is_preview", False)),
                max_chained_blocks=int(eng.get("max_chained_blocks", 100)),
            )

        if "integrations" in raw:
            integ = raw["integrations"] or {}
            settings.integrations = IntegrationConfig(
                timeout_seconds=float(integ.get("timeout_seconds", 10.0)),
                retry_attempts=int(integ.get("retry_attempts", 3)),
            )

        if "registry" in raw:
            reg = raw["registry"] or {}
            settings.registry = RegistryConfig(
                typebot_paths=list(reg.get("typebot_paths", [])),
            )

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
