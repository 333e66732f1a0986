"""
Discovery listener configuration.

Single source for runtime configuration. Values come from environment variables,
optionally loaded from standard env files.

Priority (lowest -> highest):
1) /etc/discovery-listener/listener.env (system install)
2) ~/.config/discovery-listener/.env (user install)
3) ./.env (project override)
4) process environment variables (always win)
"""

from __future__ import annotations

import math
import os
import sys
from dataclasses import dataclass
from importlib.metadata import PackageNotFoundError, version as _pkg_version
from pathlib import Path
from typing import Iterable, Optional

DEFAULT_SCHEME = "tcp"
DEFAULT_CLIENT_ID = "discovery-listener"
DEFAULT_TOPIC = "DataTopic/register"
DEFAULT_PROTOCOL_GROUP = "mqtt"
DEFAULT_KEEPALIVE_S = 3600
DEFAULT_RETRY_COUNT = 10
DEFAULT_CONNECT_TIMEOUT_S = 10
DEFAULT_QUIESCE_MS = 5000
DEFAULT_CHANNEL_SIZE = 100


class ConfigError(ValueError):
    """Raised when configuration is missing or invalid."""


def _package_version() -> str:
    try:
        return _pkg_version("device-discovery-listener")
    except PackageNotFoundError:
        return "0.0.0+dev"


def _env_paths() -> Iterable[Path]:
    # 1) system install
    yield Path("/etc/discovery-listener/listener.env")

    # 2) user config dir
    if sys.platform == "win32":
        base = Path(os.environ.get("APPDATA", str(Path.home())))
    else:
        base = Path(os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config")))
    yield base / "discovery-listener" / ".env"

    # 3) project override
    yield Path(".env")


def _require_env(key: str) -> str:
    v = os.getenv(key)
    if v is None or v == "":
        raise ConfigError(f"Missing required environment variable: {key}")
    return v


def _optional_env(key: str, default: str) -> str:
    v = os.getenv(key)
    if v is None or v == "":
        return default
    return v


def _parse_int(key: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid integer for {key}: {raw!r}") from exc


def _parse_float(key: str, raw: str) -> float:
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid number for {key}: {raw!r}") from exc


def _int_env(key: str, default: int, *, minimum: int, maximum: Optional[int] = None) -> int:
    value = _parse_int(key, _optional_env(key, str(default)))
    if value < minimum or (maximum is not None and value > maximum):
        raise ConfigError(f"{key} out of range: {value}")
    return value


@dataclass(frozen=True, slots=True)
class ListenerConfig:
    scheme: str
    host: str
    port: int
    username: str
    password: str
    client_id: str
    qos: int
    keepalive_s: int
    topic: str
    protocol_group: str
    retry_count: int
    retry_interval_s: float  # defaults to retry_count seconds
    connect_timeout_s: float
    quiesce_ms: int
    channel_size: int  # 0 means unbounded
    agent_version: str


def load_config(*, dotenv_enabled: bool = True) -> ListenerConfig:
    """
    Load config by reading env files (if python-dotenv is installed) and then
    validating the broker and listener environment variables.

    Returns an immutable ListenerConfig. Raises ConfigError on failure.
    """
    if dotenv_enabled:
        try:
            from dotenv import load_dotenv  # type: ignore
        except ImportError:
            load_dotenv = None  # type: ignore

        if load_dotenv is not None:
            for p in _env_paths():
                if p.is_file():
                    # do not override existing env vars; later files can fill missing
                    load_dotenv(p, override=False)

    host = _require_env("REGISTER_HOST")
    port = _parse_int("REGISTER_PORT", _require_env("REGISTER_PORT"))
    if not (1 <= port <= 65535):
        raise ConfigError(f"REGISTER_PORT out of range: {port}")

    retry_count = _int_env("CONN_ESTABLISHING_RETRY", DEFAULT_RETRY_COUNT, minimum=1)

    interval_raw = os.getenv("CONN_RETRY_INTERVAL", "")
    retry_interval_s = (
        _parse_float("CONN_RETRY_INTERVAL", interval_raw) if interval_raw else float(retry_count)
    )
    if not math.isfinite(retry_interval_s):
        raise ConfigError(f"CONN_RETRY_INTERVAL must be finite: {interval_raw!r}")
    if retry_interval_s < 0:
        raise ConfigError("CONN_RETRY_INTERVAL must be >= 0")

    topic = _optional_env("REGISTER_TOPIC", DEFAULT_TOPIC)
    protocol_group = _optional_env("REGISTER_PROTOCOL_GROUP", DEFAULT_PROTOCOL_GROUP)

    return ListenerConfig(
        scheme=_optional_env("REGISTER_SCHEME", DEFAULT_SCHEME),
        host=host,
        port=port,
        username=os.getenv("REGISTER_USER", ""),
        password=os.getenv("REGISTER_PASSWORD", ""),
        client_id=_optional_env("REGISTER_CLIENT_ID", DEFAULT_CLIENT_ID),
        qos=_int_env("REGISTER_QOS", 0, minimum=0, maximum=2),
        keepalive_s=_int_env("REGISTER_KEEP_ALIVE", DEFAULT_KEEPALIVE_S, minimum=1),
        topic=topic,
        protocol_group=protocol_group,
        retry_count=retry_count,
        retry_interval_s=retry_interval_s,
        connect_timeout_s=float(_int_env("CONN_TIMEOUT", DEFAULT_CONNECT_TIMEOUT_S, minimum=1)),
        quiesce_ms=_int_env("DISCONNECT_QUIESCE_MS", DEFAULT_QUIESCE_MS, minimum=0),
        channel_size=_int_env("DEVICE_CHANNEL_SIZE", DEFAULT_CHANNEL_SIZE, minimum=0),
        agent_version=_package_version(),
    )
