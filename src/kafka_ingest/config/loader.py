"""Load ingestion configs from YAML with ``${VAR}`` interpolation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from kafka_ingest.config.models import ConfigError, KafkaInputConfig

# ${NAME} or ${NAME:-fallback}; "\}" escapes a brace inside the fallback
_ENV_REF = re.compile(r"\$\{(?P<name>[^}:]+)(?::-(?P<fallback>(?:[^}\\]|\\.)*))?}")


def _interpolate(text: str) -> str:
    def lookup(ref: re.Match[str]) -> str:
        name, fallback = ref.group("name"), ref.group("fallback")
        if name in os.environ:
            return os.environ[name]
        if fallback is None:
            msg = f"Environment variable '{name}' is not set and has no fallback"
            raise ConfigError(msg)
        return fallback.replace("\\}", "}")

    return _ENV_REF.sub(lookup, text)


def resolve_env_vars(data: Any) -> Any:
    """Interpolate environment references in every string of a YAML tree."""
    match data:
        case str():
            return _interpolate(data)
        case dict():
            return {key: resolve_env_vars(value) for key, value in data.items()}
        case list():
            return [resolve_env_vars(item) for item in data]
        case _:
            return data


def load_yaml(path: str | Path) -> dict[str, Any]:
    """Parse *path* into a mapping with environment references resolved.

    Raises FileNotFoundError for a missing file and ConfigError for YAML
    that does not parse or whose top level is not a mapping.
    """
    source = Path(path)
    if not source.is_file():
        msg = f"Config file not found: {source}"
        raise FileNotFoundError(msg)
    try:
        data = yaml.safe_load(source.read_text(encoding="utf-8"))
    except yaml.MarkedYAMLError as exc:
        where = ""
        if exc.problem_mark is not None:
            where = f" at line {exc.problem_mark.line + 1}"
        msg = f"Failed to parse YAML in {source}{where}: {exc.problem}"
        raise ConfigError(msg) from exc
    except yaml.YAMLError as exc:
        msg = f"Failed to parse YAML in {source}: {exc}"
        raise ConfigError(msg) from exc
    if not isinstance(data, dict):
        msg = f"{source} must hold a YAML mapping, got {type(data).__name__}"
        raise ConfigError(msg)
    resolved: dict[str, Any] = resolve_env_vars(data)
    return resolved


def load_input_config(path: str | Path) -> KafkaInputConfig:
    """Load and validate an ingestion config; model fields supply defaults."""
    raw = load_yaml(path)
    try:
        return KafkaInputConfig.model_validate(raw)
    except ValidationError as exc:
        msg = f"Invalid input config ({path}):\n{exc}"
        raise ConfigError(msg) from exc
