
"""Protocol request and response models.

Requests form a closed tagged union keyed on `type`. Python attribute names
are snake_case; the wire keeps the camelCase keys through field aliases.
"""

from __future__ import annotations

import base64
import binascii
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    field_serializer,
    field_validator,
)


UInt32 = Annotated[StrictInt, Field(ge=0, le=0xFFFFFFFF)]


class Capability(str, Enum):
    APPLE_SCRIPT = "appleScript"
    NOTIFICATIONS = "notifications"
    ACCESSIBILITY = "accessibility"
    SCREEN_RECORDING = "screenRecording"
    MICROPHONE = "microphone"
    SPEECH_RECOGNITION = "speechRecognition"


class NotificationPriority(str, Enum):
    PASSIVE = "passive"
    ACTIVE = "active"
    TIME_SENSITIVE = "timeSensitive"


class NotificationDelivery(str, Enum):
    """System notification center, in-process overlay, or system with overlay fallback."""

    SYSTEM = "system"
    OVERLAY = "overlay"
    AUTO = "auto"


class ThinkingLevel(str, Enum):
    LOW = "low"
    DEFAULT = "default"
    HIGH = "high"


class _Message(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)


class Notify(_Message):
    type: Literal["notify"] = "notify"
    title: StrictStr
    body: StrictStr
    sound: Optional[StrictStr] = None
    priority: Optional[NotificationPriority] = None
    delivery: Optional[NotificationDelivery] = None


class EnsurePermissions(_Message):
    type: Literal["ensurePermissions"] = "ensurePermissions"
    capabilities: List[Capability] = Field(alias="caps")
    interactive: StrictBool


class Screenshot(_Message):
    type: Literal["screenshot"] = "screenshot"
    display_id: Optional[UInt32] = Field(default=None, alias="displayID")
    window_id: Optional[UInt32] = Field(default=None, alias="windowID")
    format: StrictStr


class RunShell(_Message):
    type: Literal["runShell"] = "runShell"
    command: List[StrictStr]
    cwd: Optional[StrictStr] = None
    env: Optional[Dict[StrictStr, StrictStr]] = None
    timeout_sec: Optional[StrictFloat] = Field(default=None, alias="timeoutSec")
    needs_screen_recording: StrictBool = Field(alias="needsScreenRecording")


class Status(_Message):
    type: Literal["status"] = "status"


class RpcStatus(_Message):
    type: Literal["rpcStatus"] = "rpcStatus"


class Agent(_Message):
    type: Literal["agent"] = "agent"
    message: StrictStr
    thinking: Optional[ThinkingLevel] = None
    session: Optional[StrictStr] = None
    deliver: StrictBool
    to: Optional[StrictStr] = None


Request = Annotated[
    Union[Notify, EnsurePermissions, Screenshot, RunShell, Status, RpcStatus, Agent],
    Field(discriminator="type"),
]

REQUEST_TYPES = (Notify, EnsurePermissions, Screenshot, RunShell, Status, RpcStatus, Agent)


class Response(_Message):
    """Result envelope. `ok` is the single source of truth for success."""

    ok: StrictBool
    message: Optional[StrictStr] = None
    payload: Optional[bytes] = None

    @field_validator("payload", mode="before")
    @classmethod
    def _decode_payload(cls, value):
        if isinstance(value, str):
            try:
                return base64.b64decode(value, validate=True)
            except binascii.Error as exc:
                raise ValueError(f"payload is not valid base64: {exc}") from exc
        return value

    @field_serializer("payload", when_used="json-unless-none")
    def _encode_payload(self, value: bytes) -> str:
        return base64.b64encode(value).decode("ascii")
