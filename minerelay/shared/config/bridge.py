"""
Bridge configuration loader.

All settings come from the process environment (optionally seeded from a
.env file). Values are resolved ONCE at startup into frozen dataclasses
and passed explicitly to the components that need them.

Design rules:
- Import-safe (no side effects)
- Missing required values raise ConfigError
- Unparseable integers fall back to their defaults
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, Tuple

from dotenv import load_dotenv

from minerelay.shared.logging.logger import get_logger

log = get_logger("shared.config.bridge")

DISCORD_HARD_LIMIT = 2000
SAFETY_HEADROOM = 10
MAX_CONTENT = DISCORD_HARD_LIMIT - SAFETY_HEADROOM


class ConfigError(RuntimeError):
    """Raised when required configuration is missing or unusable."""


@dataclass(frozen=True)
class DiscordSettings:
    token: str
    guild_id: int
    channel_id: int


@dataclass(frozen=True)
class ServerSettings:
    workdir: Path
    run_script: str = "./run.sh"
    no_restart_file: str = ".norestart"
    stop_grace_ms: int = 10000

    @property
    def script_path(self) -> Path:
        return (self.workdir / self.run_script).resolve()

    @property
    def no_restart_path(self) -> Path:
        return self.workdir / self.no_restart_file

    @property
    def stop_grace_seconds(self) -> float:
        return self.stop_grace_ms / 1000


@dataclass(frozen=True)
class BatchSettings:
    interval_ms: int = 3000
    max_lines: int = 40
    max_content: int = MAX_CONTENT

    @property
    def interval_seconds(self) -> float:
        return self.interval_ms / 1000


@dataclass(frozen=True)
class RconSettings:
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 25575
    password: str = ""
    prefix: str = "!rcon "
    connect_timeout_ms: int = 5000
    allowed_role_id: Optional[int] = None
    allowed_user_ids: Tuple[int, ...] = field(default_factory=tuple)

    @property
    def connect_timeout_seconds(self) -> float:
        return self.connect_timeout_ms / 1000


@dataclass(frozen=True)
class BridgeConfig:
    discord: DiscordSettings
    server: ServerSettings
    batch: BatchSettings
    rcon: RconSettings


# ------------------------------------------------------------
# Parsing helpers
# ------------------------------------------------------------

def _require(env: Mapping[str, str], name: str) -> str:
    value = env.get(name)
    if not value:
        raise ConfigError(f"Missing env var {name}")
    return value


def _to_int(raw: Optional[str], default: int) -> int:
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        log.warning(f"Invalid integer {raw!r}; using default {default}")
        return default


def _to_snowflake(name: str, raw: str) -> int:
    try:
        return int(raw.strip())
    except ValueError:
        raise ConfigError(f"{name} must be a numeric Discord id, got {raw!r}") from None


def _to_bool(raw: Optional[str], default: bool = False) -> bool:
    if raw is None:
        return default
    return raw.strip().lower() == "true"


def _parse_id_list(name: str, raw: Optional[str]) -> Tuple[int, ...]:
    ids = []
    for entry in (raw or "").split(","):
        entry = entry.strip()
        if entry:
            ids.append(_to_snowflake(name, entry))
    return tuple(ids)


# ------------------------------------------------------------
# Public API
# ------------------------------------------------------------

def load_bridge_config(env: Optional[Mapping[str, str]] = None) -> BridgeConfig:
    """
    Resolve the full bridge configuration.

    When env is None the process environment is used after loading
    a .env file from the working directory (if present).
    """
    if env is None:
        load_dotenv()
        env = os.environ

    discord_settings = DiscordSettings(
        token=_require(env, "DISCORD_TOKEN"),
        guild_id=_to_snowflake("DISCORD_GUILD_ID", _require(env, "DISCORD_GUILD_ID")),
        channel_id=_to_snowflake("DISCORD_CHANNEL_ID", _require(env, "DISCORD_CHANNEL_ID")),
    )

    server = ServerSettings(
        workdir=Path(env.get("MC_WORKDIR") or os.getcwd()),
        run_script=env.get("RUN_SCRIPT") or "./run.sh",
        no_restart_file=env.get("NO_RESTART_FILE") or ".norestart",
        stop_grace_ms=_to_int(env.get("STOP_GRACE_MS"), 10000),
    )

    batch = BatchSettings(
        interval_ms=_to_int(env.get("BATCH_INTERVAL_MS"), 3000),
        max_lines=_to_int(env.get("MAX_LINES_PER_BATCH"), 40),
    )
    if batch.interval_ms <= 0 or batch.max_lines <= 0:
        raise ConfigError("BATCH_INTERVAL_MS and MAX_LINES_PER_BATCH must be positive")

    role_raw = (env.get("RCON_ALLOWED_ROLE_ID") or "").strip()
    rcon = RconSettings(
        enabled=_to_bool(env.get("RCON_ENABLED")),
        host=env.get("RCON_HOST") or "127.0.0.1",
        port=_to_int(env.get("RCON_PORT"), 25575),
        password=env.get("RCON_PASSWORD") or "",
        prefix=env.get("RCON_PREFIX") or "!rcon ",
        connect_timeout_ms=_to_int(env.get("RCON_CONNECT_TIMEOUT_MS"), 5000),
        allowed_role_id=_to_snowflake("RCON_ALLOWED_ROLE_ID", role_raw) if role_raw else None,
        allowed_user_ids=_parse_id_list("RCON_ALLOWED_USER_IDS", env.get("RCON_ALLOWED_USER_IDS")),
    )

    log.info(
        "[BOOT] Configuration resolved: "
        f"workdir={server.workdir} script={server.run_script} "
        f"batch={batch.interval_ms}ms/{batch.max_lines} lines "
        f"rcon={'ENABLED' if rcon.enabled else 'DISABLED'}"
    )

    return BridgeConfig(discord=discord_settings, server=server, batch=batch, rcon=rcon)
