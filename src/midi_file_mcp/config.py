"""Server configuration: project roots and log level.

Sources, lowest precedence first:

1. built-in defaults (``default`` project = working directory, ``INFO``)
2. a YAML file given explicitly or via ``$MIDI_FILE_MCP_CONFIG``::

       projects:
         default: ./music
         scratch: /tmp/midi
       log_level: DEBUG

3. ``$MIDI_FILE_MCP_ROOT`` (the ``default`` project root) and
   ``$MIDI_FILE_MCP_LOG_LEVEL``
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from midi_file_mcp.errors import ValidationError

CONFIG_ENV = "MIDI_FILE_MCP_CONFIG"
ROOT_ENV = "MIDI_FILE_MCP_ROOT"
LOG_LEVEL_ENV = "MIDI_FILE_MCP_LOG_LEVEL"

DEFAULT_PROJECT = "default"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class ServerConfig:
    projects: dict[str, Path] = field(default_factory=dict)
    log_level: str = "INFO"


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.is_file():
        raise ValidationError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ValidationError(f"config file is not valid YAML: {path}") from exc
    if not isinstance(data, dict):
        raise ValidationError(f"config file must hold a mapping: {path}")
    return data


def _projects_from(data: dict[str, Any], base: Path) -> dict[str, Path]:
    projects = data.get("projects") or {}
    if not isinstance(projects, dict):
        raise ValidationError("projects must be a mapping of name to path")
    resolved: dict[str, Path] = {}
    for name, root in projects.items():
        path = Path(str(root)).expanduser()
        if not path.is_absolute():
            path = base / path
        resolved[str(name)] = path.resolve()
    return resolved


def _log_level(value: Any) -> str:
    level = str(value).strip().upper()
    if level not in LOG_LEVELS:
        raise ValidationError(f"log_level must be one of {', '.join(LOG_LEVELS)} (got {value!r})")
    return level


def load_config(
    path: str | Path | None = None,
    environ: Mapping[str, str] = os.environ,
) -> ServerConfig:
    """Build the merged :class:`ServerConfig`."""
    config = ServerConfig()

    cfg_path = path if path is not None else environ.get(CONFIG_ENV)
    if cfg_path:
        cfg_file = Path(cfg_path).expanduser().resolve()
        data = _read_yaml(cfg_file)
        config.projects.update(_projects_from(data, cfg_file.parent))
        if data.get("log_level") is not None:
            config.log_level = _log_level(data["log_level"])

    root = environ.get(ROOT_ENV)
    if root:
        config.projects[DEFAULT_PROJECT] = Path(root).expanduser().resolve()
    config.projects.setdefault(DEFAULT_PROJECT, Path.cwd().resolve())

    level = environ.get(LOG_LEVEL_ENV)
    if level:
        config.log_level = _log_level(level)
    return config
