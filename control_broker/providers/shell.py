"""Subprocess-backed shell provider.

Commands run as argv without a shell, each in its own process group so a
timeout can take down everything the command spawned.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
from typing import Mapping, Optional, Sequence

from control_broker.protocol.models import Response


logger = logging.getLogger(__name__)


def _kill_group(process: subprocess.Popen) -> None:
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


def _failure_message(returncode: int, stderr: bytes) -> str:
    detail = stderr.decode("utf-8", errors="replace").strip()
    return f"exit {returncode}: {detail}" if detail else f"exit {returncode}"


class ShellExecutor:
    def run(
        self,
        command: Sequence[str],
        cwd: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> Response:
        if not command:
            return Response(ok=False, message="empty command")

        merged_env = dict(os.environ)
        if env:
            merged_env.update(env)

        try:
            process = subprocess.Popen(
                list(command),
                cwd=cwd,
                env=merged_env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=True,
            )
        except FileNotFoundError:
            if cwd and not os.path.isdir(cwd):
                return Response(ok=False, message=f"cwd not found: {cwd}")
            return Response(ok=False, message=f"command not found: {command[0]}")
        except NotADirectoryError:
            return Response(ok=False, message=f"cwd not found: {cwd}")
        except PermissionError as exc:
            return Response(ok=False, message=f"permission denied: {exc.filename or command[0]}")

        logger.info("Started %s (pid=%s, timeout=%s)", command[0], process.pid, timeout)
        try:
            stdout, stderr = process.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            _kill_group(process)
            stdout, _ = process.communicate()
            logger.warning("Killed %s (pid=%s) after %ss", command[0], process.pid, timeout)
            return Response(ok=False, message=f"timed out after {timeout}s", payload=stdout or None)
        except BaseException:
            _kill_group(process)
            process.wait()
            raise

        if process.returncode != 0:
            return Response(
                ok=False,
                message=_failure_message(process.returncode, stderr),
                payload=stdout or None,
            )
        return Response(ok=True, payload=stdout)
