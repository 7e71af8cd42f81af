
"""Request dispatcher for the control broker.

Every request passes the pause gate, then runs the policy chain for its
variant. A chain is an ordered list of steps; each step makes one attempt
and either settles the response or lets the chain continue.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, List, NamedTuple, Optional, Union

from control_broker.protocol.errors import (
    AGENT_FAILED,
    AGENT_SENT,
    ALL_GRANTED,
    INTERNAL_ERROR,
    MESSAGE_EMPTY,
    MISSING_PREFIX,
    NOT_AUTHORIZED,
    PAUSED,
    READY,
    SCREEN_RECORDING_MISSING,
    SCREENSHOT_FAILED,
    USED_OVERLAY,
)
from control_broker.protocol.models import (
    Agent,
    Capability,
    EnsurePermissions,
    NotificationDelivery,
    Notify,
    Request,
    Response,
    RpcStatus,
    RunShell,
    Screenshot,
    Status,
)
from control_broker.providers.base import (
    AgentReply,
    AgentStatus,
    CapabilityProviders,
    PauseSource,
)
from control_broker.runtime.pause import PauseState


logger = logging.getLogger(__name__)

DEFAULT_SESSION = "main"

Outcome = Union[Response, Callable[[Any], Response], None]


class PolicyStep(NamedTuple):
    """One attempt in a policy chain.

    A truthy attempt result selects `on_success`, anything else `on_failure`.
    An outcome of None continues to the next step; a callable outcome is
    given the attempt result.
    """

    name: str
    attempt: Callable[[], Any]
    on_success: Outcome = None
    on_failure: Outcome = None


def _fail(message: str) -> Response:
    return Response(ok=False, message=message)


def _passthrough(response: Response) -> Response:
    return response


def run_policy(steps: List[PolicyStep]) -> Response:
    for step in steps:
        result = step.attempt()
        outcome = step.on_success if result else step.on_failure
        logger.debug("Policy step %s -> %s", step.name, "success" if result else "failure")
        if outcome is None:
            continue
        if isinstance(outcome, Response):
            return outcome
        return outcome(result)
    raise RuntimeError("policy chain ended without a response")


class Dispatcher:
    def __init__(self, providers: CapabilityProviders, pause_state: Optional[PauseSource] = None):
        self.providers = providers
        self.pause_state = pause_state or PauseState()

    def dispatch(self, request: Request) -> Response:
        try:
            if self.pause_state.is_paused():
                return _fail(PAUSED)
            logger.info("Dispatch: %s", request.type)
            return run_policy(self.policy_for(request))
        except Exception as exc:
            logger.exception("Error dispatching %s", getattr(request, "type", request))
            return _fail(f"{INTERNAL_ERROR}: {exc}")

    def policy_for(self, request: Request) -> List[PolicyStep]:
        if isinstance(request, Notify):
            return self._notify_policy(request)
        if isinstance(request, EnsurePermissions):
            return self._permissions_policy(request)
        if isinstance(request, Screenshot):
            return self._screenshot_policy(request)
        if isinstance(request, RunShell):
            return self._run_shell_policy(request)
        if isinstance(request, Agent):
            return self._agent_policy(request)
        if isinstance(request, Status):
            return [PolicyStep("status", lambda: True, Response(ok=True, message=READY))]
        if isinstance(request, RpcStatus):
            return self._rpc_status_policy()
        raise TypeError(f"Unknown request type {type(request).__name__}")

    def _notify_policy(self, request: Notify) -> List[PolicyStep]:
        sound = request.sound.strip() if request.sound is not None else None
        delivery = request.delivery or NotificationDelivery.SYSTEM

        def send_system() -> bool:
            return bool(
                self.providers.notifier.send(request.title, request.body, sound, request.priority)
            )

        def present_overlay() -> bool:
            self.providers.overlay.present(request.title, request.body)
            return True

        if delivery == NotificationDelivery.OVERLAY:
            return [PolicyStep("overlay", present_overlay, Response(ok=True))]
        if delivery == NotificationDelivery.AUTO:
            return [
                PolicyStep("system", send_system, Response(ok=True)),
                PolicyStep("overlay-fallback", present_overlay, Response(ok=True, message=USED_OVERLAY)),
            ]
        return [PolicyStep("system", send_system, Response(ok=True), _fail(NOT_AUTHORIZED))]

    def _permissions_policy(self, request: EnsurePermissions) -> List[PolicyStep]:
        requested = list(dict.fromkeys(request.capabilities)) or list(Capability)

        def missing_capabilities() -> List[Capability]:
            statuses = self.providers.permissions.ensure(requested, request.interactive)
            return [cap for cap in requested if not statuses.get(cap, False)]

        def report(missing: List[Capability]) -> Response:
            names = ",".join(cap.value for cap in missing)
            return _fail(f"{MISSING_PREFIX}{names}")

        return [
            PolicyStep(
                "ensure-permissions",
                missing_capabilities,
                on_success=report,
                on_failure=Response(ok=True, message=ALL_GRANTED),
            )
        ]

    def _screen_recording_gate(self) -> PolicyStep:
        def granted() -> bool:
            statuses = self.providers.permissions.ensure([Capability.SCREEN_RECORDING], False)
            return bool(statuses.get(Capability.SCREEN_RECORDING, False))

        return PolicyStep("screen-recording", granted, on_failure=_fail(SCREEN_RECORDING_MISSING))

    def _screenshot_policy(self, request: Screenshot) -> List[PolicyStep]:
        return [
            self._screen_recording_gate(),
            PolicyStep(
                "capture",
                lambda: self.providers.capture.capture(request.display_id, request.window_id),
                on_success=lambda data: Response(ok=True, payload=bytes(data)),
                on_failure=_fail(SCREENSHOT_FAILED),
            ),
        ]

    def _run_shell_policy(self, request: RunShell) -> List[PolicyStep]:
        steps: List[PolicyStep] = []
        if request.needs_screen_recording:
            steps.append(self._screen_recording_gate())

        def run() -> Response:
            return self.providers.shell.run(
                request.command,
                request.cwd,
                request.env,
                request.timeout_sec,
            )

        # The shell provider's response is returned as-is, success or not.
        steps.append(PolicyStep("run-shell", run, _passthrough, _passthrough))
        return steps

    def _agent_policy(self, request: Agent) -> List[PolicyStep]:
        text = request.message.strip()

        def send() -> AgentReply:
            return self.providers.agent.send(
                text,
                request.thinking,
                request.session or DEFAULT_SESSION,
                request.deliver,
                request.to,
            )

        return [
            PolicyStep("agent-message", lambda: text, on_failure=_fail(MESSAGE_EMPTY)),
            PolicyStep(
                "agent",
                send,
                on_success=lambda reply: Response(ok=True, message=reply.text or AGENT_SENT),
                on_failure=lambda reply: _fail(reply.error or AGENT_FAILED),
            ),
        ]

    def _rpc_status_policy(self) -> List[PolicyStep]:
        def from_status(status: AgentStatus) -> Response:
            return Response(ok=status.ok, message=status.error)

        return [PolicyStep("rpc-status", self.providers.agent.status, from_status, from_status)]
