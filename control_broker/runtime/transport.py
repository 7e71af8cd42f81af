"""One-shot exchanges over a Unix domain socket.

An exchange is: connect, write the whole request, half-close the write side,
read until the peer closes. End-of-stream is the only framing signal, so each
connection carries exactly one message in each direction.
"""

from __future__ import annotations

import os
import socket
import sys
from pathlib import Path
from typing import Optional, Union

from control_broker.protocol.codec import (
    MAX_REQUEST_BYTES,
    MAX_RESPONSE_BYTES,
    decode_response,
    encode,
)
from control_broker.protocol.errors import (
    ConnectionReset,
    MalformedMessage,
    TransportError,
    TransportNameTooLong,
    TransportUnavailable,
)
from control_broker.protocol.models import Request, Response


READ_CHUNK_SIZE = 64 * 1024

# sizeof(sockaddr_un.sun_path), including the trailing NUL.
SOCKET_PATH_LIMIT = 104 if sys.platform == "darwin" or "bsd" in sys.platform else 108

PathLike = Union[str, Path]


def check_socket_path(path: PathLike) -> str:
    raw = os.fsencode(str(path))
    if len(raw) >= SOCKET_PATH_LIMIT:
        raise TransportNameTooLong(
            f"socket path is {len(raw)} bytes, limit is {SOCKET_PATH_LIMIT - 1}: {path}"
        )
    return str(path)


def exchange(
    path: PathLike,
    payload: bytes,
    timeout: Optional[float] = None,
    max_bytes: int = MAX_RESPONSE_BYTES,
) -> bytes:
    address = check_socket_path(path)
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        sock.settimeout(timeout)
        try:
            sock.connect(address)
        except (FileNotFoundError, ConnectionRefusedError) as exc:
            raise TransportUnavailable(f"control socket unavailable at {address}: {exc}") from exc
        except OSError as exc:
            raise TransportError(f"cannot connect to {address}: {exc}") from exc

        try:
            sock.sendall(payload)
            sock.shutdown(socket.SHUT_WR)
            chunks = []
            received = 0
            while True:
                chunk = sock.recv(READ_CHUNK_SIZE)
                if not chunk:
                    break
                chunks.append(chunk)
                received += len(chunk)
                if received > max_bytes:
                    break
        except socket.timeout as exc:
            raise TransportError(f"timed out waiting for {address}") from exc
        except (ConnectionResetError, BrokenPipeError) as exc:
            raise ConnectionReset(f"connection reset by {address}") from exc
        except OSError as exc:
            raise TransportError(f"socket error on {address}: {exc}") from exc
    finally:
        sock.close()

    if not chunks:
        raise ConnectionReset(f"{address} closed the connection without a response")
    return b"".join(chunks)


def send_request(
    request: Request,
    path: PathLike,
    timeout: Optional[float] = None,
) -> Response:
    payload = encode(request)
    if len(payload) > MAX_REQUEST_BYTES:
        raise MalformedMessage(f"request of {len(payload)} bytes exceeds limit of {MAX_REQUEST_BYTES}")
    return decode_response(exchange(path, payload, timeout=timeout))
