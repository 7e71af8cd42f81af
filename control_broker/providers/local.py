"""Default providers backed by local command-line tools."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import sys
import tempfile
from typing import Dict, Iterable, List, Optional, Sequence

from control_broker.protocol.models import Capability, NotificationPriority, ThinkingLevel
from control_broker.providers.base import AgentReply, AgentStatus


logger = logging.getLogger(__name__)

TOOL_TIMEOUT_SEC = 15.0
AGENT_NOT_CONFIGURED = "agent rpc not configured"

_URGENCY = {
    NotificationPriority.PASSIVE: "low",
    NotificationPriority.ACTIVE: "normal",
    NotificationPriority.TIME_SENSITIVE: "critical",
}


def applescript_string(text: str) -> str:
    """Quote `text` as an AppleScript string literal, leaving non-ASCII text intact."""
    escaped = text.replace("\\", "\\\\").replace('"', '\\"')
    escaped = escaped.replace("\n", "\\n").replace("\r", "\\r").replace("\t", "\\t")
    return f'"{escaped}"'


def _run_tool(argv: List[str]) -> Optional[subprocess.CompletedProcess]:
    try:
        return subprocess.run(argv, capture_output=True, timeout=TOOL_TIMEOUT_SEC, check=False)
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.warning("Running %s failed: %s", argv[0], exc)
        return None


class CommandNotifier:
    """Delivers notifications through osascript on macOS and notify-send elsewhere."""

    def __init__(self, platform: str = sys.platform) -> None:
        self.platform = platform

    def build_command(
        self,
        title: str,
        body: str,
        sound: Optional[str],
        priority: Optional[NotificationPriority],
    ) -> Optional[List[str]]:
        if self.platform == "darwin":
            if shutil.which("osascript") is None:
                return None
            script = f"display notification {applescript_string(body)} with title {applescript_string(title)}"
            if sound:
                script += f" sound name {applescript_string(sound)}"
            return ["osascript", "-e", script]

        if shutil.which("notify-send") is None:
            return None
        argv = ["notify-send"]
        if priority is not None:
            argv += ["--urgency", _URGENCY[priority]]
        return argv + ["--", title, body]

    def send(
        self,
        title: str,
        body: str,
        sound: Optional[str] = None,
        priority: Optional[NotificationPriority] = None,
    ) -> bool:
        argv = self.build_command(title, body, sound, priority)
        if argv is None:
            logger.info("No notification tool available")
            return False
        result = _run_tool(argv)
        return result is not None and result.returncode == 0


class LogOverlayPresenter:
    def present(self, title: str, body: str) -> None:
        logger.info("Overlay: %s - %s", title, body)


class ConfiguredPermissions:
    def __init__(self, granted: Iterable[Capability]) -> None:
        self.granted = frozenset(granted)

    def ensure(self, capabilities: Sequence[Capability], interactive: bool) -> Dict[Capability, bool]:
        if interactive:
            logger.info("Interactive permission request for %s", ", ".join(c.value for c in capabilities))
        return {capability: capability in self.granted for capability in capabilities}


class ScreencaptureProvider:
    """PNG capture via `screencapture` on macOS and `grim` elsewhere."""

    def __init__(self, platform: str = sys.platform) -> None:
        self.platform = platform

    def capture(self, display_id: Optional[int] = None, window_id: Optional[int] = None) -> Optional[bytes]:
        if self.platform == "darwin":
            return self._screencapture(display_id, window_id)
        if shutil.which("grim") is None:
            return None
        result = _run_tool(["grim", "-t", "png", "-"])
        if result is None or result.returncode != 0 or not result.stdout:
            return None
        return result.stdout

    def _screencapture(self, display_id: Optional[int], window_id: Optional[int]) -> Optional[bytes]:
        fd, path = tempfile.mkstemp(suffix=".png")
        os.close(fd)
        try:
            argv = ["screencapture", "-x", "-t", "png"]
            if window_id is not None:
                argv += ["-l", str(window_id)]
            elif display_id is not None:
                argv += ["-D", str(display_id)]
            result = _run_tool(argv + [path])
            if result is None or result.returncode != 0:
                return None
            with open(path, "rb") as handle:
                data = handle.read()
            return data or None
        finally:
            os.unlink(path)


class UnconfiguredAgent:
    def send(
        self,
        text: str,
        thinking: Optional[ThinkingLevel],
        session_key: str,
        deliver: bool,
        to: Optional[str],
    ) -> AgentReply:
        return AgentReply(ok=False, error=AGENT_NOT_CONFIGURED)

    def status(self) -> AgentStatus:
        return AgentStatus(ok=False, error=AGENT_NOT_CONFIGURED)
