"""Configuration lookup: explicit value, then environment, then config.toml, then default."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from control_broker.protocol.errors import ConfigError
from control_broker.protocol.models import Capability


APP_DIR_NAME = "control-broker"
SOCKET_NAME = "control.sock"


def _config_path() -> Path:
    return Path(os.environ.get("CONTROL_BROKER_CONFIG", "config.toml"))


def load_config() -> Dict[str, Any]:
    config_path = _config_path()
    if not config_path.exists():
        return {}

    try:
        import tomllib

        return tomllib.loads(config_path.read_text(encoding="utf-8"))
    except Exception:
        return {}


def _section(config: Optional[Dict[str, Any]], name: str) -> Dict[str, Any]:
    if config is None:
        config = load_config()
    section = config.get(name, {})
    return section if isinstance(section, dict) else {}


def default_socket_path() -> Path:
    home = Path.home()
    if sys.platform == "darwin":
        return home / "Library" / "Application Support" / APP_DIR_NAME / SOCKET_NAME
    runtime_dir = os.environ.get("XDG_RUNTIME_DIR")
    if runtime_dir:
        return Path(runtime_dir) / APP_DIR_NAME / SOCKET_NAME
    return home / ".local" / "state" / APP_DIR_NAME / SOCKET_NAME


def socket_path(explicit: Optional[str] = None, config: Optional[Dict[str, Any]] = None) -> Path:
    configured = (
        explicit
        or os.environ.get("CONTROL_BROKER_SOCKET")
        or _section(config, "transport").get("socket_path")
    )
    return Path(configured).expanduser() if configured else default_socket_path()


def client_timeout(config: Optional[Dict[str, Any]] = None) -> Optional[float]:
    configured = os.environ.get("CONTROL_BROKER_TIMEOUT") or _section(config, "transport").get("timeout")
    if configured in (None, ""):
        return None
    try:
        timeout = float(configured)
    except (TypeError, ValueError):
        raise ConfigError(f"invalid client timeout: {configured!r}") from None
    if not timeout > 0:
        raise ConfigError(f"client timeout must be positive: {configured!r}")
    return timeout


def log_level(config: Optional[Dict[str, Any]] = None) -> str:
    configured = os.environ.get("CONTROL_BROKER_LOG_LEVEL") or _section(config, "logging").get("level")
    return str(configured or "INFO").upper()


def start_paused(config: Optional[Dict[str, Any]] = None) -> bool:
    return bool(_section(config, "server").get("paused", False))


def granted_capabilities(config: Optional[Dict[str, Any]] = None) -> List[Capability]:
    configured = _section(config, "permissions").get("granted")
    if configured is None:
        return list(Capability)
    if isinstance(configured, str):
        configured = [configured]
    try:
        return [Capability(name) for name in configured]
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid [permissions] granted entry: {exc}") from None


def provider_overrides(config: Optional[Dict[str, Any]] = None) -> Dict[str, str]:
    return {str(role): str(target) for role, target in _section(config, "providers").items()}
