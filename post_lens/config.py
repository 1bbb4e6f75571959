from __future__ import annotations

import hashlib
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import ValidationError

from .config_schema import AppConfig
from .errors import ConfigError


@dataclass(frozen=True)
class RuntimeSecrets:
    openai_api_key: str


def _read_yaml_mapping(p: Path) -> dict[str, Any]:
    if not p.is_file():
        raise ConfigError(f"Config file not found: {p}")

    try:
        with p.open(encoding="utf-8") as fp:
            data = yaml.safe_load(fp)
    except OSError as e:
        raise ConfigError(f"Failed to read config file: {p}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML in {p}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Top-level YAML in {p} must be a mapping/object")
    return data


def load_config(path: str | Path | None) -> AppConfig:
    """
    Build the AppConfig from a YAML file, or the built-in defaults for None.
    """
    if path is None:
        return AppConfig()

    p = Path(path)
    try:
        return AppConfig.model_validate(_read_yaml_mapping(p))
    except ValidationError as e:
        raise ConfigError(_describe_validation_errors(e, source=str(p))) from e


def resolve_runtime_secrets(
    config: AppConfig, *, environ: Mapping[str, str] | None = None
) -> RuntimeSecrets:
    """Read the OpenAI key named by `openai.api_key_env`; only analyze/rewrite need it."""
    env = os.environ if environ is None else environ

    name = config.openai.api_key_env
    key = (env.get(name) or "").strip()
    if not key:
        raise ConfigError(f"Missing required environment variables: {name}")

    return RuntimeSecrets(openai_api_key=key)


def config_sha256(config: AppConfig) -> str:
    canonical = json.dumps(
        config.model_dump(mode="json"),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _describe_validation_errors(err: ValidationError, *, source: str) -> str:
    lines = [f"Invalid configuration in {source}:"]
    for item in err.errors():
        field = ".".join(str(part) for part in item.get("loc", ())) or "<root>"
        if item.get("type") == "extra_forbidden":
            lines.append(f"- {field}: unknown key")
        else:
            lines.append(f"- {field}: {item.get('msg', 'invalid value')}")
    return "\n".join(lines)
