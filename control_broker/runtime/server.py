"""Unix domain socket server for the control broker.

Each accepted connection is one exchange handled by its own task. Dispatch
runs in a worker thread so a slow provider (permission prompt, subprocess,
capture) never stalls the accept loop or other connections.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from pathlib import Path
from typing import Optional, Tuple

from control_broker.protocol.codec import MAX_REQUEST_BYTES, decode_request, encode
from control_broker.protocol.errors import MALFORMED_REQUEST, MalformedMessage
from control_broker.protocol.models import Response
from control_broker.runtime.dispatcher import Dispatcher
from control_broker.runtime.pause import PauseState
from control_broker.runtime.transport import READ_CHUNK_SIZE, check_socket_path


logger = logging.getLogger(__name__)


async def read_to_eof(reader: asyncio.StreamReader, max_bytes: int) -> Tuple[bytes, bool]:
    """Read until the peer half-closes; stop early once `max_bytes` is exceeded."""
    chunks = []
    received = 0
    while True:
        chunk = await reader.read(READ_CHUNK_SIZE)
        if not chunk:
            return b"".join(chunks), False
        chunks.append(chunk)
        received += len(chunk)
        if received > max_bytes:
            return b"".join(chunks), True


class ControlServer:
    def __init__(
        self,
        socket_path: Path,
        dispatcher: Dispatcher,
        max_request_bytes: int = MAX_REQUEST_BYTES,
    ) -> None:
        self._socket_path = Path(socket_path)
        self._dispatcher = dispatcher
        self._max_request_bytes = max_request_bytes
        self._server: Optional[asyncio.AbstractServer] = None
        self._shutdown_event: Optional[asyncio.Event] = None

    @property
    def socket_path(self) -> Path:
        return self._socket_path

    @property
    def is_running(self) -> bool:
        return self._server is not None

    async def start(self) -> None:
        check_socket_path(self._socket_path)
        self._socket_path.parent.mkdir(parents=True, exist_ok=True)

        # Remove stale socket
        self._socket_path.unlink(missing_ok=True)

        self._server = await asyncio.start_unix_server(
            self._handle_connection,
            path=str(self._socket_path),
        )
        self._socket_path.chmod(0o600)
        logger.info("Listening on Unix socket %s", self._socket_path)

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        self._socket_path.unlink(missing_ok=True)
        logger.info("Server stopped")

    def request_shutdown(self) -> None:
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    async def serve_forever(self, pause_state: Optional[PauseState] = None) -> None:
        """Run until SIGINT/SIGTERM; SIGUSR1 toggles the pause flag."""
        loop = asyncio.get_running_loop()
        self._shutdown_event = asyncio.Event()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
            except (NotImplementedError, RuntimeError):
                pass
        if pause_state is not None and hasattr(signal, "SIGUSR1"):
            try:
                loop.add_signal_handler(signal.SIGUSR1, pause_state.toggle)
            except (NotImplementedError, RuntimeError):
                pass

        await self.start()
        try:
            await self._shutdown_event.wait()
        finally:
            await self.stop()

    async def handle_payload(self, data: bytes, oversize: bool = False) -> Response:
        try:
            if oversize:
                raise MalformedMessage(f"request exceeds limit of {self._max_request_bytes} bytes")
            request = decode_request(data, self._max_request_bytes)
        except MalformedMessage as exc:
            logger.warning("Rejected malformed request: %s", exc)
            return Response(ok=False, message=f"{MALFORMED_REQUEST}: {exc}")
        return await asyncio.to_thread(self._dispatcher.dispatch, request)

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        try:
            data, oversize = await read_to_eof(reader, self._max_request_bytes)
            response = await self.handle_payload(data, oversize)
        except Exception:
            logger.exception("Error handling control connection")
            writer.close()
            return

        try:
            writer.write(encode(response))
            await writer.drain()
            if writer.can_write_eof():
                writer.write_eof()
        except (ConnectionError, OSError) as exc:
            # Dispatch already happened; the client is gone.
            logger.debug("Dropping response, client disconnected: %s", exc)
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass
