
"""CLI entrypoint for the control broker.

Client subcommands build exactly one request, run one exchange against the
running server, print `{ok, message, payload}` as JSON and exit 0 on
success, 1 on an `ok=false` response and 2 on transport or parse failure.
`serve` runs the server itself.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from control_broker import config as broker_config
from control_broker.protocol.errors import BrokerError
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
from control_broker.version import VERSION


EXIT_OK = 0
EXIT_NOT_OK = 1
EXIT_FAILURE = 2


def _values(enum_type) -> List[str]:
    return [member.value for member in enum_type]


def _env_pair(value: str) -> tuple:
    key, sep, val = value.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected KEY=VAL, got {value!r}")
    return key, val


def _uint32(value: str) -> int:
    number = int(value)
    if not 0 <= number <= 0xFFFFFFFF:
        raise argparse.ArgumentTypeError(f"{value} is not a 32-bit unsigned integer")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="control-broker",
        description="Ask the running control broker to perform a privileged operation.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument("--socket", help="control socket path")
    subparsers = parser.add_subparsers(dest="command")

    notify = subparsers.add_parser("notify", help="deliver a notification")
    notify.add_argument("--title", required=True)
    notify.add_argument("--body", required=True)
    notify.add_argument("--sound")
    notify.add_argument("--priority", choices=_values(NotificationPriority))
    notify.add_argument("--delivery", choices=_values(NotificationDelivery))

    permissions = subparsers.add_parser("ensure-permissions", help="check or request permissions")
    permissions.add_argument(
        "--cap",
        dest="caps",
        action="append",
        choices=_values(Capability),
        help="capability to check (repeatable, default: all)",
    )
    permissions.add_argument("--interactive", action="store_true")

    screenshot = subparsers.add_parser("screenshot", help="capture the screen as PNG")
    screenshot.add_argument("--display-id", type=_uint32)
    screenshot.add_argument("--window-id", type=_uint32)

    run = subparsers.add_parser("run", help="run a command in the broker")
    run.add_argument("--cwd")
    run.add_argument("--env", action="append", type=_env_pair, default=[], metavar="KEY=VAL")
    run.add_argument("--timeout", type=float)
    run.add_argument("--needs-screen-recording", action="store_true")
    run.add_argument("argv", nargs=argparse.REMAINDER)

    subparsers.add_parser("status", help="check that the broker is ready")
    subparsers.add_parser("rpc-status", help="check the remote agent connection")

    agent = subparsers.add_parser("agent", help="send a message to the agent")
    agent.add_argument("text", nargs="?", help="message text (alternative to --message)")
    agent.add_argument("--message")
    agent.add_argument("--thinking", choices=_values(ThinkingLevel))
    agent.add_argument("--session")
    agent.add_argument("--deliver", action="store_true")
    agent.add_argument("--to")

    serve_parser = subparsers.add_parser("serve", help="run the broker server")
    serve_parser.add_argument("--socket", default=argparse.SUPPRESS, help="control socket path")
    return parser


def build_request(args: argparse.Namespace, parser: argparse.ArgumentParser) -> Request:
    if args.command == "notify":
        return Notify(
            title=args.title,
            body=args.body,
            sound=args.sound,
            priority=args.priority,
            delivery=args.delivery,
        )
    if args.command == "ensure-permissions":
        caps = [Capability(cap) for cap in args.caps] if args.caps else list(Capability)
        return EnsurePermissions(capabilities=caps, interactive=args.interactive)
    if args.command == "screenshot":
        return Screenshot(display_id=args.display_id, window_id=args.window_id, format="png")
    if args.command == "run":
        argv = args.argv[1:] if args.argv[:1] == ["--"] else args.argv
        return RunShell(
            command=argv,
            cwd=args.cwd,
            env=dict(args.env) or None,
            timeout_sec=args.timeout,
            needs_screen_recording=args.needs_screen_recording,
        )
    if args.command == "status":
        return Status()
    if args.command == "rpc-status":
        return RpcStatus()

    message = args.message if args.message is not None else args.text
    if message is None:
        parser.error("agent requires --message or a message argument")
    return Agent(
        message=message,
        thinking=args.thinking,
        session=args.session,
        deliver=args.deliver,
        to=args.to,
    )


def render_response(response: Response) -> Dict[str, Any]:
    payload = ""
    if response.payload is not None:
        try:
            payload = response.payload.decode("utf-8")
        except UnicodeDecodeError:
            payload = ""
    return {"ok": response.ok, "message": response.message or "", "payload": payload}


def serve(socket_option: Optional[str]) -> int:
    from control_broker.registry import load_providers
    from control_broker.runtime.dispatcher import Dispatcher
    from control_broker.runtime.pause import PauseState
    from control_broker.runtime.server import ControlServer

    config = broker_config.load_config()
    logging.basicConfig(
        level=broker_config.log_level(config),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[logging.StreamHandler()],
    )
    logger = logging.getLogger("control_broker.main")

    pause_state = PauseState(paused=broker_config.start_paused(config))
    dispatcher = Dispatcher(load_providers(config), pause_state=pause_state)
    server = ControlServer(broker_config.socket_path(socket_option, config), dispatcher)

    try:
        asyncio.run(server.serve_forever(pause_state))
    except KeyboardInterrupt:
        logger.info("Interrupted")
    except Exception as exc:
        logger.exception("Server error: %s", exc)
        return EXIT_NOT_OK
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_OK

    if args.command == "serve":
        try:
            return serve(args.socket)
        except BrokerError as exc:
            print(f"control-broker error: {exc}", file=sys.stderr)
            return EXIT_FAILURE

    from control_broker.runtime.transport import send_request

    request = build_request(args, parser)
    try:
        config = broker_config.load_config()
        response = send_request(
            request,
            broker_config.socket_path(args.socket, config),
            timeout=broker_config.client_timeout(config),
        )
    except BrokerError as exc:
        print(f"control-broker error: {exc}", file=sys.stderr)
        return EXIT_FAILURE

    print(json.dumps(render_response(response), indent=2, sort_keys=True))
    return EXIT_OK if response.ok else EXIT_NOT_OK


if __name__ == "__main__":
    raise SystemExit(main())
