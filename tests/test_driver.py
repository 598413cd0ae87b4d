from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable

import pytest

from rdmctl.core.bridge import PidBridge
from rdmctl.core.driver import TransactionDriver
from rdmctl.core.errors import MessageBuildError, PidResolutionError, TransportSendError
from rdmctl.core.exit_codes import ExitCode
from rdmctl.core.model import (
    FieldDescriptor,
    MessageDescriptor,
    PidDescriptor,
    RequestKind,
    ResponseStatus,
    Uid,
)
from rdmctl.core.pid_store import PidStore
from rdmctl.core.rdm import (
    PID_QUEUED_MESSAGE,
    PID_STATUS_MESSAGES,
    RdmResponseCode,
    RdmResponseType,
)

UID = Uid(0x7A70, 0x00000001)
DEVICE_LABEL = 0x0082
DMX_START_ADDRESS = 0x00F0
DEVICE_HOURS = 0x0400


class FakeReactor:
    """Runs queued callbacks and timers in order on a virtual clock."""

    def __init__(self) -> None:
        self.clock = 0.0
        self.ready: deque[Callable[[], None]] = deque()
        self.timers: list[tuple[float, int, Callable[[], None]]] = []
        self.timer_delays: list[float] = []
        self.terminate_calls = 0
        self.run_calls = 0
        self._order = 0

    def call_soon(self, callback: Callable[[], None]) -> None:
        self.ready.append(callback)

    def register_single_timeout(self, delay_s: float, callback: Callable[[], None]) -> None:
        self.timer_delays.append(delay_s)
        self._order += 1
        self.timers.append((self.clock + delay_s, self._order, callback))

    def terminate(self) -> None:
        self.terminate_calls += 1

    def run(self) -> None:
        self.run_calls += 1
        while not self.terminate_calls:
            if self.ready:
                self.ready.popleft()()
                continue
            if not self.timers:
                raise AssertionError("reactor went idle before the transaction terminated")
            self.timers.sort()
            when, _, callback = self.timers.pop(0)
            self.clock = max(self.clock, when)
            callback()


class FakeConnection:
    """Answers each request with the next scripted status."""

    def __init__(self, reactor: FakeReactor, responses: list[ResponseStatus]) -> None:
        self.reactor = reactor
        self.responses = list(responses)
        self.calls: list[tuple[str, int, Uid, int, int, bytes, float]] = []

    def _submit(self, command, callback, universe, uid, sub_device, pid_value, data) -> None:
        self.calls.append((command, universe, uid, sub_device, pid_value, data, self.reactor.clock))
        if self.responses:
            status = self.responses.pop(0)
            self.reactor.call_soon(lambda: callback(status))

    def rdm_get(self, callback, universe, uid, sub_device, pid_value, data) -> None:
        self._submit("get", callback, universe, uid, sub_device, pid_value, data)

    def rdm_set(self, callback, universe, uid, sub_device, pid_value, data) -> None:
        self._submit("set", callback, universe, uid, sub_device, pid_value, data)


def _store() -> PidStore:
    label = (FieldDescriptor(name="label", type="string", max_size=32),)
    address = (FieldDescriptor(name="dmx_address", type="uint16", ranges=((1, 512),)),)
    return PidStore(
        [
            PidDescriptor(
                name="DEVICE_LABEL",
                value=DEVICE_LABEL,
                manufacturer_id=0,
                get_request=MessageDescriptor("DEVICE_LABEL.get_request", ()),
                get_response=MessageDescriptor("DEVICE_LABEL.get_response", label),
            ),
            PidDescriptor(
                name="DMX_START_ADDRESS",
                value=DMX_START_ADDRESS,
                manufacturer_id=0,
                get_request=MessageDescriptor("DMX_START_ADDRESS.get_request", ()),
                get_response=MessageDescriptor("DMX_START_ADDRESS.get_response", address),
                set_request=MessageDescriptor("DMX_START_ADDRESS.set_request", address),
                set_response=MessageDescriptor("DMX_START_ADDRESS.set_response", ()),
            ),
            PidDescriptor(
                name="DEVICE_HOURS",
                value=DEVICE_HOURS,
                manufacturer_id=0,
                get_request=MessageDescriptor("DEVICE_HOURS.get_request", ()),
                get_response=MessageDescriptor(
                    "DEVICE_HOURS.get_response", (FieldDescriptor(name="hours", type="uint32"),)
                ),
            ),
            PidDescriptor(
                name="QUEUED_MESSAGE",
                value=PID_QUEUED_MESSAGE,
                manufacturer_id=0,
                get_request=MessageDescriptor(
                    "QUEUED_MESSAGE.get_request", (FieldDescriptor(name="status_type", type="uint8"),)
                ),
                get_response=MessageDescriptor(
                    "QUEUED_MESSAGE.get_response", (FieldDescriptor(name="value", type="uint16"),)
                ),
            ),
            PidDescriptor(
                name="STATUS_MESSAGES",
                value=PID_STATUS_MESSAGES,
                manufacturer_id=0,
                get_request=MessageDescriptor(
                    "STATUS_MESSAGES.get_request", (FieldDescriptor(name="status_type", type="uint8"),)
                ),
                get_response=MessageDescriptor("STATUS_MESSAGES.get_response", ()),
            ),
        ]
    )


def _ack(pid_value: int, data: bytes = b"", *, message_count: int = 0, set_command: bool = False) -> ResponseStatus:
    return ResponseStatus(
        response_type=RdmResponseType.ACK,
        pid_value=pid_value,
        param_data=data,
        message_count=message_count,
        set_command=set_command,
    )


def _driver(responses: list[ResponseStatus], **kwargs) -> tuple[TransactionDriver, FakeConnection, FakeReactor]:
    reactor = FakeReactor()
    connection = FakeConnection(reactor, responses)
    driver = TransactionDriver(PidBridge(_store()), connection, reactor, **kwargs)
    return driver, connection, reactor


def test_get_prints_decoded_ack(capsys: pytest.CaptureFixture[str]) -> None:
    driver, connection, reactor = _driver([_ack(DEVICE_LABEL, b"Stage Left")])

    code = driver.perform_request_and_wait(1, UID, 0, "device_label", False, [])

    assert code == ExitCode.OK
    assert capsys.readouterr().out == "label: Stage Left\n"
    assert connection.calls == [("get", 1, UID, 0, DEVICE_LABEL, b"", 0.0)]
    assert reactor.terminate_calls == 1


def test_set_serializes_arguments() -> None:
    driver, connection, _ = _driver([_ack(DMX_START_ADDRESS, set_command=True)])

    driver.perform_request_and_wait(2, UID, 3, "DMX_START_ADDRESS", True, ["17"])

    command, universe, uid, sub_device, pid_value, data, _ = connection.calls[0]
    assert (command, universe, uid, sub_device, pid_value) == ("set", 2, UID, 3, DMX_START_ADDRESS)
    assert data == bytes.fromhex("0011")


@pytest.mark.parametrize("pid_name", ["0xf0", "0x00F0", "240"])
def test_numeric_pid_names_resolve(pid_name: str) -> None:
    driver, connection, _ = _driver([_ack(DMX_START_ADDRESS, b"\x00\x01")])
    driver.perform_request_and_wait(1, UID, 0, pid_name, False, [])
    assert connection.calls[0][4] == DMX_START_ADDRESS


@pytest.mark.parametrize("inputs", [[], ["1", "2"], ["zero"], ["513"], ["0"]])
def test_malformed_arguments_never_reach_the_connection(inputs: list[str]) -> None:
    driver, connection, reactor = _driver([])

    with pytest.raises(MessageBuildError) as exc:
        driver.perform_request_and_wait(1, UID, 0, "dmx_start_address", True, inputs)

    assert "dmx_address: uint16" in exc.value.schema
    assert connection.calls == []
    assert reactor.run_calls == 0


def test_unknown_pid_is_a_usage_error() -> None:
    driver, connection, reactor = _driver([])

    with pytest.raises(PidResolutionError, match="Unknown PID: lamp_hours"):
        driver.perform_request_and_wait(1, UID, 0, "lamp_hours", False, [])

    assert connection.calls == []
    assert reactor.run_calls == 0


def test_unsupported_command_is_a_usage_error() -> None:
    driver, connection, _ = _driver([])

    with pytest.raises(PidResolutionError, match="SET command not supported for device_label"):
        driver.perform_request_and_wait(1, UID, 0, "device_label", True, ["x"])

    assert connection.calls == []


def test_response_without_a_request_is_ignored(capsys: pytest.CaptureFixture[str]) -> None:
    driver, connection, reactor = _driver([])

    driver.handle_response(_ack(DEVICE_LABEL, b"stray"))

    assert capsys.readouterr().out == ""
    assert connection.calls == []
    assert reactor.terminate_calls == 0
    assert driver.exit_code == ExitCode.OK


def test_driver_runs_a_single_transaction() -> None:
    driver, _, _ = _driver([_ack(DEVICE_LABEL, b"a")])
    driver.perform_request_and_wait(1, UID, 0, "device_label", False, [])

    with pytest.raises(RuntimeError):
        driver.perform_request_and_wait(1, UID, 0, "device_label", False, [])


def test_broadcast_terminates_quietly(capsys: pytest.CaptureFixture[str]) -> None:
    broadcast = ResponseStatus(response_code=RdmResponseCode.WAS_BROADCAST, message_count=4)
    driver, connection, reactor = _driver([broadcast])

    code = driver.perform_request_and_wait(1, Uid(0x7A70, 0xFFFFFFFF), 0, "device_label", False, [])

    assert code == ExitCode.OK
    captured = capsys.readouterr()
    assert captured.out == ""
    assert captured.err == ""
    assert len(connection.calls) == 1
    assert reactor.terminate_calls == 1


def test_ack_timer_then_queued_message_is_authoritative(capsys: pytest.CaptureFixture[str]) -> None:
    ack_timer = ResponseStatus(response_type=RdmResponseType.ACK_TIMER, param_data=bytes.fromhex("0005"))
    driver, connection, reactor = _driver([ack_timer, _ack(PID_QUEUED_MESSAGE, b"\x00\x2a")])

    code = driver.perform_request_and_wait(1, UID, 0, "device_hours", False, [])

    assert code == ExitCode.OK
    assert reactor.timer_delays == [0.5]
    assert len(connection.calls) == 2
    command, universe, uid, sub_device, pid_value, data, sent_at = connection.calls[1]
    assert (command, universe, uid, sub_device, pid_value, data) == (
        "get",
        1,
        UID,
        0,
        PID_QUEUED_MESSAGE,
        b"\x04",
    )
    assert sent_at >= 0.5
    assert capsys.readouterr().out == "value: 42\n"
    assert reactor.terminate_calls == 1
    assert driver.pending is not None
    assert driver.pending.kind is RequestKind.QUEUED_MESSAGE_FETCH


@pytest.mark.parametrize("queued", [1, 3, 7])
def test_unrelated_acks_are_drained_until_the_answer_arrives(
    queued: int,
    capsys: pytest.CaptureFixture[str],
) -> None:
    unrelated = [_ack(DMX_START_ADDRESS, b"\x00\x01", message_count=queued - i) for i in range(queued)]
    driver, connection, reactor = _driver([*unrelated, _ack(DEVICE_HOURS, b"\x00\x00\x01\x00")])

    code = driver.perform_request_and_wait(5, UID, 2, "device_hours", False, [])

    assert code == ExitCode.OK
    fetches = [call for call in connection.calls if call[4] == PID_QUEUED_MESSAGE]
    assert len(fetches) == queued
    assert all(call[1:4] == (5, UID, 2) for call in fetches)
    assert capsys.readouterr().out == "hours: 256\n"
    assert reactor.terminate_calls == 1


def test_non_empty_status_messages_trigger_another_fetch() -> None:
    driver, connection, _ = _driver([_ack(PID_STATUS_MESSAGES, b"\x00"), _ack(DEVICE_LABEL, b"x")])

    driver.perform_request_and_wait(1, UID, 0, "device_label", False, [])

    assert [call[4] for call in connection.calls] == [DEVICE_LABEL, PID_QUEUED_MESSAGE]


def test_empty_status_messages_stop_without_fetching(capsys: pytest.CaptureFixture[str]) -> None:
    driver, connection, reactor = _driver([_ack(PID_STATUS_MESSAGES)])

    code = driver.perform_request_and_wait(1, UID, 0, "device_label", False, [])

    assert code == ExitCode.OK
    assert capsys.readouterr().out == "Empty STATUS_MESSAGES returned.\n"
    assert len(connection.calls) == 1
    assert reactor.terminate_calls == 1


def test_requesting_queued_message_treats_any_ack_as_the_answer(capsys: pytest.CaptureFixture[str]) -> None:
    driver, connection, _ = _driver([_ack(DEVICE_LABEL, b"Booth")])

    driver.perform_request_and_wait(1, UID, 0, "queued_message", False, ["4"])

    assert len(connection.calls) == 1
    assert capsys.readouterr().out == "label: Booth\n"


def test_nack_prints_reason_then_remaining_messages(capsys: pytest.CaptureFixture[str]) -> None:
    nack = ResponseStatus(
        response_type=RdmResponseType.NACK_REASON,
        param_data=bytes.fromhex("0004"),
        message_count=2,
    )
    driver, _, reactor = _driver([nack])

    code = driver.perform_request_and_wait(1, UID, 0, "dmx_start_address", True, ["10"])

    assert code == ExitCode.OK
    assert capsys.readouterr().out.splitlines() == [
        "Request NACKed: Write protect",
        "-----------------------------------------------------",
        "Messages remaining: 2",
    ]
    assert reactor.terminate_calls == 1


def test_unknown_response_type(capsys: pytest.CaptureFixture[str]) -> None:
    driver, _, reactor = _driver([ResponseStatus(response_type=0x1F)])

    driver.perform_request_and_wait(1, UID, 0, "device_label", False, [])

    assert capsys.readouterr().out == "Unknown RDM response type 1f\n"
    assert reactor.terminate_calls == 1


def test_transport_error_exits_unavailable(capsys: pytest.CaptureFixture[str]) -> None:
    driver, _, reactor = _driver([ResponseStatus(error="gateway unreachable", message_count=3)])

    code = driver.perform_request_and_wait(1, UID, 0, "device_label", False, [])

    assert code == ExitCode.UNAVAILABLE
    captured = capsys.readouterr()
    assert captured.err == "Error: gateway unreachable\n"
    assert "Messages remaining" not in captured.out
    assert reactor.terminate_calls == 1


def test_protocol_failure_is_reported_but_not_fatal(capsys: pytest.CaptureFixture[str]) -> None:
    driver, _, _ = _driver([ResponseStatus(response_code=RdmResponseCode.TIMEOUT)])

    code = driver.perform_request_and_wait(1, UID, 0, "device_label", False, [])

    assert code == ExitCode.OK
    assert capsys.readouterr().err == "Error: Response Timeout\n"


def test_undecodable_ack_is_a_warning(caplog: pytest.LogCaptureFixture, capsys: pytest.CaptureFixture[str]) -> None:
    driver, _, reactor = _driver([_ack(DEVICE_HOURS, b"\x01")])

    with caplog.at_level(logging.WARNING):
        code = driver.perform_request_and_wait(1, UID, 0, "device_hours", False, [])

    assert code == ExitCode.OK
    assert "Unable to inflate RDM response" in caplog.text
    assert capsys.readouterr().out == ""
    assert reactor.terminate_calls == 1


def test_ack_without_response_schema_is_a_warning(caplog: pytest.LogCaptureFixture) -> None:
    driver, _, reactor = _driver([_ack(DMX_START_ADDRESS, set_command=True)])
    driver.bridge.store.add(
        PidDescriptor(
            name="DMX_START_ADDRESS",
            value=DMX_START_ADDRESS,
            manufacturer_id=0,
            set_request=MessageDescriptor(
                "DMX_START_ADDRESS.set_request", (FieldDescriptor(name="dmx_address", type="uint16"),)
            ),
        )
    )

    with caplog.at_level(logging.WARNING):
        driver.perform_request_and_wait(1, UID, 0, "dmx_start_address", True, ["1"])

    assert "Unknown response message: SET DMX_START_ADDRESS" in caplog.text
    assert reactor.terminate_calls == 1


def test_timeout_aborts_a_silent_transaction(capsys: pytest.CaptureFixture[str]) -> None:
    driver, connection, reactor = _driver([], timeout_s=2.0)

    code = driver.perform_request_and_wait(1, UID, 0, "device_label", False, [])

    assert code == ExitCode.TEMPFAIL
    assert driver.timed_out is True
    assert "Timed out after 2.0s" in capsys.readouterr().err
    assert len(connection.calls) == 1
    assert reactor.terminate_calls == 1


def test_late_response_after_timeout_is_ignored() -> None:
    driver, _, reactor = _driver([], timeout_s=1.0)
    driver.perform_request_and_wait(1, UID, 0, "device_label", False, [])

    driver.handle_response(_ack(DEVICE_LABEL, b"late"))

    assert reactor.terminate_calls == 1


def test_failed_queued_message_fetch_terminates(capsys: pytest.CaptureFixture[str]) -> None:
    driver, connection, reactor = _driver([_ack(DMX_START_ADDRESS, b"\x00\x01")])

    def broken_get(*args, **kwargs) -> None:
        raise TransportSendError("Connection is not set up")

    original_get = connection.rdm_get
    calls: list[int] = []

    def first_then_broken(callback, universe, uid, sub_device, pid_value, data) -> None:
        calls.append(pid_value)
        if len(calls) == 1:
            original_get(callback, universe, uid, sub_device, pid_value, data)
        else:
            broken_get()

    connection.rdm_get = first_then_broken  # type: ignore[method-assign]

    code = driver.perform_request_and_wait(1, UID, 0, "device_label", False, [])

    assert code == ExitCode.UNAVAILABLE
    assert calls == [DEVICE_LABEL, PID_QUEUED_MESSAGE]
    assert "Error: Connection is not set up" in capsys.readouterr().err
    assert reactor.terminate_calls == 1
