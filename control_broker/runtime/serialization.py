"""Deterministic JSON helpers used by the wire codec."""

from __future__ import annotations

import json
from typing import Any


def stable_json_dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, sort_keys=True, separators=(",", ":"))


def stable_json_bytes(obj: Any) -> bytes:
    return stable_json_dumps(obj).encode("utf-8")
