from __future__ import annotations
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from shared.envelope import ObsWsError
from shared.log import get_logger
from shared.opcodes import EventSubscription
from shared.utils import is_valid_port, parse_bool

logger = get_logger(__name__)


DEFAULT_PORT = 4455


class ConfigError(ObsWsError):
    """Configuration file or environment value is unusable."""
    pass


@dataclass(frozen=True)
class ClientConfig:
    host: Optional[str] = "localhost"
    port: int = DEFAULT_PORT
    password: Optional[str] = None
    event_subscriptions: int = int(EventSubscription.ALL)
    auto_reconnect: bool = True
    reconnect_delay: float = 1.0
    ping_interval: Optional[float] = 15.0
    ping_timeout: Optional[float] = 45.0
    open_timeout: Optional[float] = 10.0


# environment variable -> config field
ENV_OVERRIDES: Dict[str, str] = {
    "OBSWS_HOST": "host",
    "OBSWS_PORT": "port",
    "OBSWS_PASSWORD": "password",
    "OBSWS_EVENT_SUBSCRIPTIONS": "event_subscriptions",
    "OBSWS_AUTO_RECONNECT": "auto_reconnect",
    "OBSWS_RECONNECT_DELAY": "reconnect_delay",
}


def default_config_path() -> Path:
    return Path(os.getenv("OBSWS_CONFIG", Path.home() / ".obsws" / "config.yaml"))


def load_config(path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> ClientConfig:
    """
    Build a ClientConfig from a YAML file and the environment.

    Precedence: environment > file > defaults. A missing file is not an error
    when no explicit path was given.
    """
    env = os.environ if environ is None else environ
    values: Dict[str, Any] = {}

    explicit = path is not None
    path = path or default_config_path()
    if path.exists():
        values.update(_read_yaml(path))
    elif explicit:
        raise ConfigError(f"Config file not found: {path}")

    for var, key in ENV_OVERRIDES.items():
        if var in env:
            values[key] = env[var]

    return _coerce(values)


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Error reading {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping")
    # Accept both the flat layout and a top-level 'obsws:' section
    if isinstance(data.get("obsws"), dict):
        data = data["obsws"]
    return data


def _coerce(values: Dict[str, Any]) -> ClientConfig:
    known = {f.name for f in fields(ClientConfig)}
    cfg = ClientConfig()
    updates: Dict[str, Any] = {}
    for key, value in values.items():
        if key not in known:
            logger.warning("Ignoring unknown config key %r", key)
            continue
        try:
            updates[key] = _convert(key, value)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid value for {key}: {value!r} ({e})") from e
    return replace(cfg, **updates)


def _convert(key: str, value: Any) -> Any:
    if value is None:
        return None
    if key == "port":
        port = int(value)
        if not is_valid_port(port):
            raise ValueError("port out of range")
        return port
    if key == "event_subscriptions":
        if isinstance(value, str) and not value.strip().lstrip("-").isdigit():
            return _parse_subscription_names(value)
        return int(value)
    if key == "auto_reconnect":
        return parse_bool(value)
    if key in {"reconnect_delay", "ping_interval", "ping_timeout", "open_timeout"}:
        delay = float(value)
        if delay < 0:
            raise ValueError("must not be negative")
        return delay
    return str(value)


def _parse_subscription_names(value: str) -> int:
    """'SCENES|INPUTS' or 'ALL, INPUT_VOLUME_METERS' -> bitmask"""
    mask = 0
    for name in value.replace(",", "|").split("|"):
        name = name.strip().upper()
        if not name:
            continue
        try:
            mask |= EventSubscription[name]
        except KeyError:
            raise ValueError(f"unknown event subscription {name!r}") from None
    return int(mask)
