"""Config loading: YAML file, .env overlay and command-line overrides."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from loguru import logger

from hipchat.core.errors import ConfigurationError


def _deep_update(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge ``override`` into a copy of ``base``; nested sections merge key by key."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _deep_update(current, value)
        else:
            merged[key] = value
    return merged


def load_config(path: str | Path) -> dict[str, Any]:
    """Read the YAML config at ``path``.

    A missing file yields an empty mapping (credentials may come from the
    environment alone). Unparseable YAML or a top level that is not a mapping
    raises ConfigurationError.
    """
    path = Path(path)
    if not path.exists():
        logger.warning("Config file not found: {}", path)
        return {}

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigurationError(
            f"could not parse {path}: {exc}",
            code="invalid_yaml",
            details={"path": str(path)},
            original_error=exc,
        ) from exc

    if data is None:
        logger.warning("Config file {} is empty", path)
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"{path} must contain a mapping, not {type(data).__name__}",
            code="invalid_structure",
            details={"path": str(path)},
        )
    return data


def load_config_with_env(path: str | Path, overrides: dict[str, Any] | None = None) -> dict[str, Any]:
    """Load ``.env`` into the environment, read ``path`` and apply ``overrides`` on top.

    The CLI passes its ``--room``, ``--nick``, ``--status`` and ``--resource``
    flags as overrides.
    """
    load_dotenv()
    data = load_config(path)
    if overrides:
        logger.debug("Config overrides: {}", ", ".join(sorted(overrides)))
        data = _deep_update(data, overrides)
    return data
