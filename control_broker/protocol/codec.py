"""Byte-level encoding for requests and responses.

Each direction of an exchange carries exactly one UTF-8 JSON object. Decoding
is total: every failure surfaces as `MalformedMessage`, and oversize input is
rejected on its raw length before any parsing happens.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Union

from pydantic import BaseModel, TypeAdapter, ValidationError

from control_broker.protocol.errors import MalformedMessage
from control_broker.protocol.models import REQUEST_TYPES, Request, Response
from control_broker.runtime.serialization import stable_json_bytes


MAX_REQUEST_BYTES = 1024 * 1024
MAX_RESPONSE_BYTES = 64 * 1024 * 1024

_REQUEST_ADAPTER = TypeAdapter(Request)


def to_wire(message: BaseModel) -> Dict[str, Any]:
    return message.model_dump(mode="json", by_alias=True, exclude_none=True)


def encode(message: Union[Request, Response]) -> bytes:
    if not isinstance(message, REQUEST_TYPES + (Response,)):
        raise TypeError(f"cannot encode {type(message).__name__}")
    return stable_json_bytes(to_wire(message))


def _load_object(data: bytes, max_bytes: int) -> Dict[str, Any]:
    if len(data) > max_bytes:
        raise MalformedMessage(f"message of {len(data)} bytes exceeds limit of {max_bytes}")
    try:
        obj = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedMessage(f"invalid JSON: {exc}") from exc
    if not isinstance(obj, dict):
        raise MalformedMessage("message must be a JSON object")
    return obj


def decode_request(data: bytes, max_bytes: int = MAX_REQUEST_BYTES) -> Request:
    obj = _load_object(data, max_bytes)
    try:
        return _REQUEST_ADAPTER.validate_python(obj)
    except ValidationError as exc:
        raise MalformedMessage(str(exc)) from exc


def decode_response(data: bytes, max_bytes: int = MAX_RESPONSE_BYTES) -> Response:
    obj = _load_object(data, max_bytes)
    try:
        return Response.model_validate(obj)
    except ValidationError as exc:
        raise MalformedMessage(str(exc)) from exc
