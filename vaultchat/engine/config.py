"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via VAULTCHAT_* env vars,
or load a YAML file with :func:`vaultchat.engine.yaml_config.load_yaml_config`.
"""
from __future__ import annotations

import inspect
import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


# Listener callback. May be a plain function or a coroutine function.
# Signature: callback(payload) -> None | Awaitable[None]
Listener = Callable[[Any], "Awaitable[None] | None"]

DEFAULT_ALLOWED_TOOLS: list[str] = [
    "Read", "Glob", "Grep", "Edit", "Write", "Bash",
    "WebFetch", "WebSearch", "Task", "AskUserQuestion",
]


async def fire_event(callback: Listener | None, payload: Any) -> None:
    """Invoke a listener if set, logging and swallowing its errors."""
    if callback is None:
        return
    try:
        result = callback(payload)
        if inspect.isawaitable(result):
            await result
    except Exception:
        # Never let listener errors break a run
        logger.warning("Listener %r failed", callback, exc_info=True)


def _env_list(name: str) -> list[str] | None:
    raw = os.getenv(name)
    if raw is None:
        return None
    return [part.strip() for part in raw.split(",") if part.strip()]


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class EngineConfig:
    """Execution core configuration."""

    # External agent CLI
    cli_path: str = "claude"
    default_allowed_tools: list[str] = field(
        default_factory=lambda: list(DEFAULT_ALLOWED_TOOLS)
    )
    max_turns: int = 25
    # Wall-clock limit per run, armed at spawn.
    # Set to 0 (or a negative value) to disable timeout.
    run_timeout_seconds: float = 120.0
    # Extra directories exposed to the agent via --add-dir
    add_dirs: list[str] = field(default_factory=list)
    # Prepended to PATH in addition to the platform install locations
    extra_path_dirs: list[str] = field(default_factory=list)
    # Working directory for the agent (the vault root)
    cwd: str = "."

    # Sessions
    session_storage_path: str = ".claude-sessions"
    auto_save_sessions: bool = True
    # Keep at most this many sessions on disk; 0 keeps everything.
    max_session_history: int = 50

    # Logging
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Load configuration from VAULTCHAT_* environment variables."""
        env_vars = {
            k: v for k, v in os.environ.items() if k.startswith("VAULTCHAT_")
        }
        if env_vars:
            logger.info(
                "EngineConfig.from_env: VAULTCHAT_* env overrides: %s",
                ", ".join(sorted(env_vars)),
            )
        else:
            logger.debug("EngineConfig.from_env: no VAULTCHAT_* env vars set, using defaults")

        defaults = cls()
        config = cls(
            cli_path=os.getenv("VAULTCHAT_CLI_PATH", defaults.cli_path),
            default_allowed_tools=(
                _env_list("VAULTCHAT_ALLOWED_TOOLS")
                or defaults.default_allowed_tools
            ),
            max_turns=int(os.getenv(
                "VAULTCHAT_MAX_TURNS", str(defaults.max_turns)
            )),
            run_timeout_seconds=float(os.getenv(
                "VAULTCHAT_RUN_TIMEOUT", str(defaults.run_timeout_seconds)
            )),
            add_dirs=_env_list("VAULTCHAT_ADD_DIRS") or [],
            extra_path_dirs=_env_list("VAULTCHAT_EXTRA_PATH") or [],
            cwd=os.getenv("VAULTCHAT_CWD", defaults.cwd),
            session_storage_path=os.getenv(
                "VAULTCHAT_SESSION_DIR", defaults.session_storage_path
            ),
            auto_save_sessions=_env_bool(
                "VAULTCHAT_AUTO_SAVE", defaults.auto_save_sessions
            ),
            max_session_history=int(os.getenv(
                "VAULTCHAT_MAX_SESSIONS", str(defaults.max_session_history)
            )),
            log_level=os.getenv("VAULTCHAT_LOG_LEVEL", defaults.log_level),
        )
        logger.info(
            "EngineConfig.from_env: cli=%s max_turns=%d timeout=%.0fs sessions=%s",
            config.cli_path, config.max_turns,
            config.run_timeout_seconds, config.session_storage_path,
        )
        return config
