from __future__ import annotations

import json

import pytest

from control_broker.protocol.codec import (
    MAX_REQUEST_BYTES,
    decode_request,
    decode_response,
    encode,
)
from control_broker.protocol.errors import MalformedMessage
from control_broker.protocol.models import (
    Agent,
    Capability,
    EnsurePermissions,
    NotificationDelivery,
    NotificationPriority,
    Notify,
    Response,
    RpcStatus,
    RunShell,
    Screenshot,
    Status,
    ThinkingLevel,
)


REQUESTS = [
    Notify(title="Build", body="finished"),
    Notify(
        title="Build",
        body="failed",
        sound="Basso",
        priority=NotificationPriority.TIME_SENSITIVE,
        delivery=NotificationDelivery.AUTO,
    ),
    EnsurePermissions(capabilities=list(Capability), interactive=True),
    EnsurePermissions(capabilities=[], interactive=False),
    Screenshot(format="png"),
    Screenshot(display_id=0, window_id=0xFFFFFFFF, format="png"),
    RunShell(command=["echo", "hi"], needs_screen_recording=False),
    RunShell(
        command=["make"],
        cwd="/tmp",
        env={"A": "1", "EMPTY": ""},
        timeout_sec=0.01,
        needs_screen_recording=True,
    ),
    Status(),
    RpcStatus(),
    Agent(message="hello", deliver=False),
    Agent(message="ship", thinking=ThinkingLevel.LOW, session="ops", deliver=True, to="+15550100"),
]


def wire(message) -> dict:
    return json.loads(encode(message))


@pytest.mark.parametrize("request_", REQUESTS, ids=lambda r: r.type)
def test_request_round_trip(request_):
    assert decode_request(encode(request_)) == request_


def test_response_payload_round_trips_every_byte_value():
    payload = bytes(range(256)) * 4
    response = Response(ok=True, message="used overlay fallback", payload=payload)

    decoded = decode_response(encode(response))

    assert decoded.payload == payload
    assert decoded == response


def test_wire_keys_follow_camel_case_names():
    assert wire(Screenshot(display_id=3, format="png")) == {
        "type": "screenshot",
        "displayID": 3,
        "format": "png",
    }
    assert wire(EnsurePermissions(capabilities=[Capability.SCREEN_RECORDING], interactive=False)) == {
        "type": "ensurePermissions",
        "caps": ["screenRecording"],
        "interactive": False,
    }
    assert wire(RunShell(command=["ls"], timeout_sec=5, needs_screen_recording=False)) == {
        "type": "runShell",
        "command": ["ls"],
        "timeoutSec": 5.0,
        "needsScreenRecording": False,
    }


def test_absent_optionals_are_omitted_and_null_is_accepted():
    assert wire(Response(ok=False, message="paused")) == {"ok": False, "message": "paused"}

    decoded = decode_request(b'{"type":"notify","title":"t","body":"b","sound":null}')
    assert decoded == Notify(title="t", body="b")


def test_payload_is_base64_on_the_wire():
    assert wire(Response(ok=True, payload=b"\x00\xff"))["payload"] == "AP8="


@pytest.mark.parametrize(
    "raw",
    [
        b'{"type":"reboot"}',
        b'{"title":"no tag","body":"b"}',
        b'{"type":"notify","title":"missing body"}',
        b'{"type":"ensurePermissions","caps":["notifications"]}',
        b'{"type":"ensurePermissions","caps":["camera"],"interactive":false}',
        b'{"type":"screenshot","displayID":-1,"format":"png"}',
        b'{"type":"screenshot","displayID":4294967296,"format":"png"}',
        b'{"type":"runShell","command":"ls","needsScreenRecording":false}',
        b'{"type":"runShell","command":["ls"],"timeoutSec":"1.5","needsScreenRecording":false}',
        b'{"type":"status","extra":1}',
        b'{"type":"agent","message":"hi","deliver":"yes"}',
        b"[1,2,3]",
        b"not json",
        b"\xff\xfe",
        b"",
    ],
)
def test_decode_rejects_malformed_requests(raw):
    with pytest.raises(MalformedMessage):
        decode_request(raw)


def test_integer_timeout_is_accepted_as_float():
    decoded = decode_request(b'{"type":"runShell","command":["ls"],"timeoutSec":2,"needsScreenRecording":false}')

    assert decoded.timeout_sec == 2.0


def test_decode_rejects_oversize_request_before_parsing():
    body = "x" * MAX_REQUEST_BYTES
    raw = json.dumps({"type": "notify", "title": "t", "body": body}).encode()

    with pytest.raises(MalformedMessage, match="exceeds limit"):
        decode_request(raw)


def test_decode_response_respects_explicit_ceiling():
    raw = encode(Response(ok=True, payload=b"a" * 100))

    with pytest.raises(MalformedMessage):
        decode_response(raw, max_bytes=64)


def test_decode_response_rejects_bad_base64():
    with pytest.raises(MalformedMessage):
        decode_response(b'{"ok":true,"payload":"***"}')


def test_encode_rejects_foreign_objects():
    with pytest.raises(TypeError):
        encode({"type": "status"})
