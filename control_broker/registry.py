
"""Provider assembly and override discovery."""

from __future__ import annotations

import importlib
import warnings
from typing import Any, Callable, Dict, Optional

from control_broker import config as broker_config
from control_broker.providers.base import CapabilityProviders
from control_broker.providers.local import (
    CommandNotifier,
    ConfiguredPermissions,
    LogOverlayPresenter,
    ScreencaptureProvider,
    UnconfiguredAgent,
)
from control_broker.providers.shell import ShellExecutor


REQUIRED_PROVIDER_METHODS: Dict[str, tuple] = {
    "notifier": ("send",),
    "overlay": ("present",),
    "permissions": ("ensure",),
    "capture": ("capture",),
    "shell": ("run",),
    "agent": ("send", "status"),
}


def _validate_provider(role: str, provider: object) -> None:
    for method_name in REQUIRED_PROVIDER_METHODS[role]:
        if not callable(getattr(provider, method_name, None)):
            raise TypeError(f"missing required method: {method_name}")


def _import_factory(target: str) -> Callable[[], Any]:
    module_name, _, attribute = target.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"expected 'module:attribute', got {target!r}")
    module = importlib.import_module(module_name)
    return getattr(module, attribute)


def default_providers(config: Optional[Dict[str, Any]] = None) -> Dict[str, object]:
    return {
        "notifier": CommandNotifier(),
        "overlay": LogOverlayPresenter(),
        "permissions": ConfiguredPermissions(broker_config.granted_capabilities(config)),
        "capture": ScreencaptureProvider(),
        "shell": ShellExecutor(),
        "agent": UnconfiguredAgent(),
    }


def load_providers(config: Optional[Dict[str, Any]] = None) -> CapabilityProviders:
    if config is None:
        config = broker_config.load_config()
    providers = default_providers(config)

    for role, target in sorted(broker_config.provider_overrides(config).items()):
        try:
            if role not in REQUIRED_PROVIDER_METHODS:
                raise ValueError(f"unknown provider role {role!r}")
            provider = _import_factory(target)()
            _validate_provider(role, provider)
            providers[role] = provider
        except Exception as exc:
            warnings.warn(
                f"Skipping provider override {role}={target}: {exc}",
                RuntimeWarning,
                stacklevel=2,
            )

    return CapabilityProviders(**providers)
