"""Error taxonomy and response messages shared by client and server."""

from __future__ import annotations


# Response messages. Dispatch-level failures travel as `ok=False` responses
# carrying one of these, never as exceptions.
PAUSED = "paused"
READY = "ready"
ALL_GRANTED = "all granted"
MISSING_PREFIX = "missing: "
NOT_AUTHORIZED = "notification not authorized"
USED_OVERLAY = "notification not authorized; used overlay"
SCREEN_RECORDING_MISSING = "screen recording permission missing"
SCREENSHOT_FAILED = "screenshot failed"
MESSAGE_EMPTY = "message empty"
AGENT_SENT = "sent"
AGENT_FAILED = "failed to send"
INTERNAL_ERROR = "internal error"
MALFORMED_REQUEST = "malformed request"


class BrokerError(Exception):
    """Base class for client-side protocol and transport failures."""


class MalformedMessage(BrokerError):
    """Bytes could not be decoded: bad JSON, unknown tag, missing field or oversize."""


class TransportError(BrokerError):
    """The local socket exchange failed."""


class TransportUnavailable(TransportError):
    """The endpoint is missing or refused the connection."""


class TransportNameTooLong(TransportError):
    """The socket path does not fit the platform's address limit."""


class ConnectionReset(TransportError):
    """The peer closed the connection without sending a response."""


class ConfigError(BrokerError):
    """A configured value from the environment or config.toml is invalid."""
