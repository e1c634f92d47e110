"""Runtime configuration for the language server bridge."""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError

from language_server_mcp.utils.logger import setup_logger

logger = setup_logger(__name__)

SERVER_CONFIG_SUFFIX = "_SERVER"
LSP_COMMAND_OVERRIDE_PREFIX = "LSP_COMMAND_"

DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0
DEFAULT_DIAGNOSTICS_TIMEOUT_SECONDS = 2.0
DEFAULT_SHUTDOWN_TIMEOUT_SECONDS = 2.0


class LanguageServerConfig(BaseModel):
    """Invocation of an external language server process."""

    command: str = Field(..., min_length=1, description="Executable to launch.")
    args: List[str] = Field(
        default_factory=list, description="Arguments passed to the executable."
    )

    @classmethod
    def from_command_string(cls, command: str) -> "LanguageServerConfig":
        parts = shlex.split(command)
        if not parts:
            raise ValueError("Empty language server command")
        return cls(command=parts[0], args=parts[1:])

    def display(self) -> str:
        return " ".join(shlex.quote(part) for part in [self.command, *self.args])


def get_language_server_config(
    language_id: str, environ: Optional[Mapping[str, str]] = None
) -> Optional[LanguageServerConfig]:
    """
    Look up the invocation for ``language_id`` in the environment.

    ``<LANGUAGE>_SERVER`` holds JSON like ``{"command": "...", "args": [...]}``.
    When it is not set, ``LSP_COMMAND_<LANGUAGE>`` may hold a plain command
    line instead. Malformed values are logged and treated as absent.
    """
    env = os.environ if environ is None else environ
    language_key = language_id.upper()

    env_key = f"{language_key}{SERVER_CONFIG_SUFFIX}"
    raw = env.get(env_key)
    if raw:
        try:
            config = LanguageServerConfig.model_validate_json(raw)
            logger.debug(f"Loaded {env_key}: {config.display()}")
            return config
        except ValidationError as exc:
            logger.warning(f"Invalid config in {env_key} for {language_id}: {exc}")
            return None

    override_key = f"{LSP_COMMAND_OVERRIDE_PREFIX}{language_key}"
    command_str = env.get(override_key)
    if command_str:
        try:
            config = LanguageServerConfig.from_command_string(command_str)
            logger.debug(f"Loaded {override_key}: {config.display()}")
            return config
        except ValueError as exc:
            logger.warning(
                f"Invalid command in {override_key} for {language_id} ({command_str}): {exc}"
            )
            return None

    logger.debug(f"No language server config found for {language_id}")
    return None


def _float_from_env(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {name}={raw!r}, using {default}")
        return default
    if value <= 0:
        logger.warning(f"Ignoring non-positive {name}={raw!r}, using {default}")
        return default
    return value


@dataclass
class BridgeSettings:
    """Timeouts governing sessions and tool calls.

    Attributes:
        request_timeout_seconds: Upper bound on each outbound request,
            including ``initialize``.
        diagnostics_timeout_seconds: How long a diagnostics call waits for a
            pushed notification before reporting that none arrived.
        shutdown_timeout_seconds: Upper bound on graceful shutdown and on
            process termination, per session.
    """

    request_timeout_seconds: float = field(
        default_factory=lambda: _float_from_env(
            "LSP_BRIDGE_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT_SECONDS
        )
    )
    diagnostics_timeout_seconds: float = DEFAULT_DIAGNOSTICS_TIMEOUT_SECONDS
    shutdown_timeout_seconds: float = field(
        default_factory=lambda: _float_from_env(
            "LSP_BRIDGE_SHUTDOWN_TIMEOUT", DEFAULT_SHUTDOWN_TIMEOUT_SECONDS
        )
    )
