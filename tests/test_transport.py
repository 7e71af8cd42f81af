from __future__ import annotations

import asyncio
import os
import socket
import tempfile
import threading
import time
from pathlib import Path

import pytest

from control_broker.protocol.codec import MAX_REQUEST_BYTES, decode_response, encode
from control_broker.protocol.errors import (
    ConnectionReset,
    MalformedMessage,
    TransportError,
    TransportNameTooLong,
    TransportUnavailable,
)
from control_broker.protocol.models import Notify, Response, RunShell, Screenshot, Status
from control_broker.runtime.dispatcher import Dispatcher
from control_broker.runtime.pause import PauseState
from control_broker.runtime.server import ControlServer
from control_broker.runtime.transport import SOCKET_PATH_LIMIT, exchange, send_request

from fakes import FakeCapture, make_providers


@pytest.fixture
def socket_dir():
    # tmp_path can be too long for sun_path on some platforms.
    with tempfile.TemporaryDirectory(prefix="cb-", dir="/tmp") as path:
        yield Path(path)


def run_with_server(sock_path: Path, dispatcher: Dispatcher, client):
    async def scenario():
        server = ControlServer(sock_path, dispatcher)
        await server.start()
        try:
            return await asyncio.to_thread(client)
        finally:
            await server.stop()

    return asyncio.run(scenario())


def test_status_exchange_over_socket(socket_dir):
    sock_path = socket_dir / "control.sock"
    dispatcher = Dispatcher(make_providers())

    response = run_with_server(sock_path, dispatcher, lambda: send_request(Status(), sock_path))

    assert response == Response(ok=True, message="ready")
    assert not sock_path.exists()


def test_binary_payload_survives_the_socket(socket_dir):
    sock_path = socket_dir / "control.sock"
    image = bytes(range(256)) * 1024
    dispatcher = Dispatcher(make_providers(capture=FakeCapture(data=image)))

    response = run_with_server(
        sock_path, dispatcher, lambda: send_request(Screenshot(format="png"), sock_path)
    )

    assert response.ok is True
    assert response.payload == image


def test_socket_is_owner_only(socket_dir):
    sock_path = socket_dir / "nested" / "control.sock"
    dispatcher = Dispatcher(make_providers())

    mode = run_with_server(sock_path, dispatcher, lambda: os.stat(sock_path).st_mode & 0o777)

    assert mode == 0o600


def test_paused_server_answers_paused(socket_dir):
    sock_path = socket_dir / "control.sock"
    dispatcher = Dispatcher(make_providers(), pause_state=PauseState(paused=True))

    response = run_with_server(
        sock_path, dispatcher, lambda: send_request(Notify(title="t", body="b"), sock_path)
    )

    assert response == Response(ok=False, message="paused")


def test_malformed_request_gets_error_and_server_keeps_serving(socket_dir):
    sock_path = socket_dir / "control.sock"
    dispatcher = Dispatcher(make_providers())

    def client():
        bad = decode_response(exchange(sock_path, b'{"type":"launchMissiles"}'))
        good = send_request(Status(), sock_path)
        return bad, good

    bad, good = run_with_server(sock_path, dispatcher, client)

    assert bad.ok is False
    assert bad.message.startswith("malformed request")
    assert good.ok is True


def test_oversize_request_never_reaches_dispatch(socket_dir):
    sock_path = socket_dir / "control.sock"
    calls = []

    class RecordingDispatcher(Dispatcher):
        def dispatch(self, request):
            calls.append(request)
            return super().dispatch(request)

    dispatcher = RecordingDispatcher(make_providers())

    def client():
        try:
            exchange(sock_path, b"{" + b" " * (MAX_REQUEST_BYTES + 10) + b"}")
        except TransportError:
            pass
        return send_request(Status(), sock_path)

    response = run_with_server(sock_path, dispatcher, client)

    assert response.ok is True
    assert len(calls) == 1


def test_client_rejects_oversize_request_locally(socket_dir):
    request = Notify(title="t", body="x" * (MAX_REQUEST_BYTES + 1))

    with pytest.raises(MalformedMessage):
        send_request(request, socket_dir / "absent.sock")


def test_slow_request_does_not_block_other_connections(socket_dir):
    sock_path = socket_dir / "control.sock"
    release = threading.Event()

    class SlowShell:
        def run(self, command, cwd, env, timeout):
            release.wait(5)
            return Response(ok=True, payload=b"slow")

    dispatcher = Dispatcher(make_providers(shell=SlowShell()))

    def client():
        results = {}

        def slow():
            results["slow"] = send_request(
                RunShell(command=["sleep"], needs_screen_recording=False), sock_path
            )

        worker = threading.Thread(target=slow)
        worker.start()
        time.sleep(0.1)
        started = time.monotonic()
        results["fast"] = send_request(Status(), sock_path)
        results["fast_elapsed"] = time.monotonic() - started
        release.set()
        worker.join(5)
        return results

    results = run_with_server(sock_path, dispatcher, client)

    assert results["fast"].message == "ready"
    assert results["fast_elapsed"] < 2
    assert results["slow"].payload == b"slow"


def test_client_disconnect_does_not_break_server(socket_dir):
    sock_path = socket_dir / "control.sock"
    dispatcher = Dispatcher(make_providers())

    def client():
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.connect(str(sock_path))
        sock.sendall(encode(Status()))
        sock.close()
        time.sleep(0.1)
        return send_request(Status(), sock_path)

    assert run_with_server(sock_path, dispatcher, client).ok is True


def test_missing_socket_is_unavailable(socket_dir):
    with pytest.raises(TransportUnavailable):
        send_request(Status(), socket_dir / "missing.sock")


def test_refused_socket_is_unavailable(socket_dir):
    sock_path = socket_dir / "stale.sock"
    listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    listener.bind(str(sock_path))
    listener.close()

    with pytest.raises(TransportUnavailable):
        send_request(Status(), sock_path)


def test_long_socket_path_is_name_too_long(socket_dir):
    sock_path = socket_dir / ("x" * SOCKET_PATH_LIMIT)

    with pytest.raises(TransportNameTooLong):
        send_request(Status(), sock_path)


def test_server_closing_without_reply_is_connection_reset(socket_dir):
    sock_path = socket_dir / "mute.sock"
    listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    listener.bind(str(sock_path))
    listener.listen(1)

    def mute_server():
        conn, _ = listener.accept()
        while conn.recv(4096):
            pass
        conn.close()

    thread = threading.Thread(target=mute_server)
    thread.start()
    try:
        with pytest.raises(ConnectionReset):
            send_request(Status(), sock_path, timeout=5)
    finally:
        thread.join(5)
        listener.close()
