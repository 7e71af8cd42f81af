"""Provider contracts consumed by the dispatcher.

Providers own the privileged side effects: presenting notifications, probing
permissions, capturing the screen, spawning processes and talking to the
remote agent. They are independently synchronized; the dispatcher calls each
one at most once per request (the `auto` notify chain calls the notifier and
then the overlay).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Protocol, Sequence

from control_broker.protocol.models import (
    Capability,
    NotificationPriority,
    Response,
    ThinkingLevel,
)


@dataclass(frozen=True)
class AgentReply:
    ok: bool
    text: Optional[str] = None
    error: Optional[str] = None

    def __bool__(self) -> bool:
        return self.ok


@dataclass(frozen=True)
class AgentStatus:
    ok: bool
    error: Optional[str] = None

    def __bool__(self) -> bool:
        return self.ok


class NotificationProvider(Protocol):
    def send(
        self,
        title: str,
        body: str,
        sound: Optional[str],
        priority: Optional[NotificationPriority],
    ) -> bool:
        ...


class OverlayPresenter(Protocol):
    def present(self, title: str, body: str) -> None:
        ...


class PermissionProvider(Protocol):
    def ensure(self, capabilities: Sequence[Capability], interactive: bool) -> Dict[Capability, bool]:
        ...


class CaptureProvider(Protocol):
    def capture(self, display_id: Optional[int], window_id: Optional[int]) -> Optional[bytes]:
        ...


class ShellProvider(Protocol):
    def run(
        self,
        command: Sequence[str],
        cwd: Optional[str],
        env: Optional[Mapping[str, str]],
        timeout: Optional[float],
    ) -> Response:
        ...


class RemoteAgent(Protocol):
    def send(
        self,
        text: str,
        thinking: Optional[ThinkingLevel],
        session_key: str,
        deliver: bool,
        to: Optional[str],
    ) -> AgentReply:
        ...

    def status(self) -> AgentStatus:
        ...


class PauseSource(Protocol):
    def is_paused(self) -> bool:
        ...


@dataclass
class CapabilityProviders:
    notifier: NotificationProvider
    overlay: OverlayPresenter
    permissions: PermissionProvider
    capture: CaptureProvider
    shell: ShellProvider
    agent: RemoteAgent
