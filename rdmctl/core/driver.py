"""Drive one RDM GET/SET transaction to completion on a reactor."""

from __future__ import annotations

import logging
from collections.abc import Sequence

import typer

from rdmctl.core.bridge import PidBridge
from rdmctl.core.classifier import (
    Ack,
    AckTimer,
    Broadcast,
    NackReason,
    ProtocolFailure,
    TransportFailure,
    classify_response,
)
from rdmctl.core.errors import TransportError
from rdmctl.core.exit_codes import ExitCode
from rdmctl.core.model import PendingRequest, RequestKind, ResponseStatus, Uid
from rdmctl.core.rdm import (
    PID_QUEUED_MESSAGE,
    PID_STATUS_MESSAGES,
    STATUS_ERROR,
    nack_reason_to_string,
    response_code_to_string,
)
from rdmctl.core.reactor import EventLoopAdapter
from rdmctl.transports.base import RdmConnection

LOGGER = logging.getLogger(__name__)


class TransactionDriver:
    """Sends one request and follows ACK_TIMERs and queued messages until done.

    A driver handles exactly one transaction: build one per request. All
    progress happens in ``handle_response`` and timer callbacks, which the
    reactor invokes while ``perform_request_and_wait`` is blocked in
    ``reactor.run()``.
    """

    def __init__(
        self,
        bridge: PidBridge,
        connection: RdmConnection,
        reactor: EventLoopAdapter,
        *,
        timeout_s: float | None = None,
    ) -> None:
        self.bridge = bridge
        self.connection = connection
        self.reactor = reactor
        self.timeout_s = timeout_s
        self.pending: PendingRequest | None = None
        self.exit_code = ExitCode.OK
        self.timed_out = False
        self._done = False

    def perform_request_and_wait(
        self,
        universe: int,
        uid: Uid,
        sub_device: int,
        pid_name: str,
        is_set: bool,
        inputs: Sequence[str],
    ) -> ExitCode:
        if self.pending is not None:
            raise RuntimeError("A TransactionDriver runs a single transaction")

        pid, request = self.bridge.resolve_request(pid_name, uid.manufacturer_id, is_set)
        param_data = self.bridge.build_request(request, inputs)

        self.pending = PendingRequest(
            universe=universe,
            uid=uid,
            sub_device=sub_device,
            pid_value=pid.value,
        )
        LOGGER.debug(
            "%s %s (0x%04x) -> %s universe %d sub-device %d",
            "SET" if is_set else "GET",
            pid.name,
            pid.value,
            uid,
            universe,
            sub_device,
        )
        submit = self.connection.rdm_set if is_set else self.connection.rdm_get
        submit(self.handle_response, universe, uid, sub_device, pid.value, param_data)

        if self.timeout_s is not None:
            self.reactor.register_single_timeout(self.timeout_s, self._abort)
        self.reactor.run()
        return self.exit_code

    def handle_response(self, status: ResponseStatus) -> None:
        pending = self.pending
        if self._done or pending is None:
            LOGGER.debug("Ignoring response outside a transaction: %s", status)
            return

        outcome = classify_response(status)
        if isinstance(outcome, TransportFailure):
            typer.echo(f"Error: {outcome.message}", err=True)
            self.exit_code = ExitCode.UNAVAILABLE
            self._terminate()
            return

        if isinstance(outcome, Broadcast):
            self._terminate()
            return

        if isinstance(outcome, ProtocolFailure):
            typer.echo(f"Error: {response_code_to_string(outcome.code)}", err=True)
            self._terminate()
            return

        if isinstance(outcome, AckTimer):
            LOGGER.debug("ACK_TIMER, fetching queued message in %.1fs", outcome.delay_s)
            self.reactor.register_single_timeout(outcome.delay_s, self.fetch_queued_message)
            return

        if isinstance(outcome, Ack):
            if self._is_authoritative(pending, outcome.pid_value):
                self._handle_ack_response(pending, outcome)
            elif outcome.pid_value != PID_STATUS_MESSAGES or outcome.param_data:
                # Anything other than an empty status message means more messages are queued.
                self.fetch_queued_message()
                return
            else:
                # The device probably doesn't support queued messages.
                typer.echo("Empty STATUS_MESSAGES returned.")
        elif isinstance(outcome, NackReason):
            typer.echo(f"Request NACKed: {nack_reason_to_string(outcome.code)}")
        else:
            typer.echo(f"Unknown RDM response type {outcome.tag:x}")

        self._print_remaining_messages(outcome.message_count)
        self._terminate()

    def fetch_queued_message(self) -> None:
        """Ask the device for its next queued message, reusing the pending target."""
        if self._done or self.pending is None:
            return
        pending = self.pending
        pending.kind = RequestKind.QUEUED_MESSAGE_FETCH
        try:
            self.connection.rdm_get(
                self.handle_response,
                pending.universe,
                pending.uid,
                pending.sub_device,
                PID_QUEUED_MESSAGE,
                bytes([STATUS_ERROR]),
            )
        except TransportError as exc:
            typer.echo(f"Error: {exc}", err=True)
            self.exit_code = exc.exit_code
            self._terminate()

    def _is_authoritative(self, pending: PendingRequest, pid_value: int) -> bool:
        if pid_value == pending.pid_value or pending.pid_value == PID_QUEUED_MESSAGE:
            return True
        return pending.kind is RequestKind.QUEUED_MESSAGE_FETCH and pid_value == PID_QUEUED_MESSAGE

    def _handle_ack_response(self, pending: PendingRequest, ack: Ack) -> None:
        rendered = self.bridge.render_response(
            pending.uid.manufacturer_id,
            ack.set_command,
            ack.pid_value,
            ack.param_data,
        )
        if rendered:
            typer.echo(rendered, nl=False)

    def _print_remaining_messages(self, message_count: int) -> None:
        if not message_count:
            return
        typer.echo("-----------------------------------------------------")
        typer.echo(f"Messages remaining: {message_count}")

    def _abort(self) -> None:
        if self._done:
            return
        typer.echo(f"Error: Timed out after {self.timeout_s}s waiting for the transaction", err=True)
        self.timed_out = True
        self.exit_code = ExitCode.TEMPFAIL
        self._terminate()

    def _terminate(self) -> None:
        if self._done:
            return
        self._done = True
        self.reactor.terminate()
