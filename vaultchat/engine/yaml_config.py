"""YAML configuration loader.

Loads a single YAML file over the EngineConfig defaults. When no file
is given, :meth:`EngineConfig.from_env` is used instead.

Example YAML:
    cli:
      path: /opt/homebrew/bin/claude
      allowed_tools: [Read, Glob, Grep, Edit, Write]
      max_turns: 25
      timeout_seconds: 120
      add_dirs: [~/notes/shared]
      extra_path: [~/.npm-global/bin]
      cwd: ~/vault

    sessions:
      storage_path: .claude-sessions
      auto_save: true
      max_history: 50

    logging:
      level: INFO
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from .config import EngineConfig

logger = logging.getLogger(__name__)


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ValueError(f"Config section '{name}' must be a mapping")
    return value


def _str_list(value: Any, key: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, list):
        return [str(item) for item in value]
    raise ValueError(f"Config key '{key}' must be a list or comma-separated string")


def _expand(path: str) -> str:
    return os.path.expandvars(os.path.expanduser(path))


def load_yaml_config(path: str | Path) -> EngineConfig:
    """Load and parse a YAML config file into an EngineConfig.

    Missing sections and keys fall back to the dataclass defaults.
    Raises FileNotFoundError, yaml.YAMLError or ValueError.
    """
    path = Path(path)
    logger.info(
        "load_yaml_config: loading %s (exists=%s)", path, path.exists()
    )
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error("load_yaml_config: config file not found at %s", path.absolute())
        raise
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise

    if not isinstance(raw, dict):
        raise ValueError(f"Config file {path} must contain a mapping")

    top_sections = sorted(raw.keys())
    logger.info(
        "Parsed YAML config %s, sections: %s",
        path.name, ", ".join(top_sections) if top_sections else "(empty)",
    )

    defaults = EngineConfig()
    cli = _section(raw, "cli")
    sessions = _section(raw, "sessions")
    log_cfg = _section(raw, "logging")

    allowed = _str_list(cli.get("allowed_tools"), "cli.allowed_tools")
    config = EngineConfig(
        cli_path=_expand(str(cli.get("path", defaults.cli_path))),
        default_allowed_tools=allowed or defaults.default_allowed_tools,
        max_turns=int(cli.get("max_turns", defaults.max_turns)),
        run_timeout_seconds=float(
            cli.get("timeout_seconds", defaults.run_timeout_seconds)
        ),
        add_dirs=[_expand(d) for d in _str_list(cli.get("add_dirs"), "cli.add_dirs")],
        extra_path_dirs=[
            _expand(d) for d in _str_list(cli.get("extra_path"), "cli.extra_path")
        ],
        cwd=_expand(str(cli.get("cwd", defaults.cwd))),
        session_storage_path=_expand(
            str(sessions.get("storage_path", defaults.session_storage_path))
        ),
        auto_save_sessions=bool(sessions.get("auto_save", defaults.auto_save_sessions)),
        max_session_history=int(
            sessions.get("max_history", defaults.max_session_history)
        ),
        log_level=str(log_cfg.get("level", defaults.log_level)).upper(),
    )
    if config.max_turns < 1:
        raise ValueError(f"cli.max_turns must be positive, got {config.max_turns}")
    return config
