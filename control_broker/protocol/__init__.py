from control_broker.protocol.codec import (
    MAX_REQUEST_BYTES,
    MAX_RESPONSE_BYTES,
    decode_request,
    decode_response,
    encode,
)
from control_broker.protocol.errors import (
    BrokerError,
    ConfigError,
    ConnectionReset,
    MalformedMessage,
    TransportError,
    TransportNameTooLong,
    TransportUnavailable,
)
from control_broker.protocol.models import (
    Agent,
    Capability,
    EnsurePermissions,
    NotificationDelivery,
    NotificationPriority,
    Notify,
    Request,
    Response,
    RpcStatus,
    RunShell,
    Screenshot,
    Status,
    ThinkingLevel,
)

__all__ = [
    "Agent",
    "BrokerError",
    "ConfigError",
    "Capability",
    "ConnectionReset",
    "EnsurePermissions",
    "MAX_REQUEST_BYTES",
    "MAX_RESPONSE_BYTES",
    "MalformedMessage",
    "NotificationDelivery",
    "NotificationPriority",
    "Notify",
    "Request",
    "Response",
    "RpcStatus",
    "RunShell",
    "Screenshot",
    "Status",
    "ThinkingLevel",
    "TransportError",
    "TransportNameTooLong",
    "TransportUnavailable",
    "decode_request",
    "decode_response",
    "encode",
]
