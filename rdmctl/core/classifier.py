"""Map a raw response status to exactly one classified outcome."""

from __future__ import annotations

from dataclasses import dataclass

from rdmctl.core.model import ResponseStatus
from rdmctl.core.rdm import RdmResponseCode, RdmResponseType

# ACK_TIMER estimates are sent in tenths of a second.
_ACK_TIMER_UNIT_US = 100_000


@dataclass(frozen=True)
class TransportFailure:
    message: str
    message_count: int = 0


@dataclass(frozen=True)
class Broadcast:
    message_count: int = 0


@dataclass(frozen=True)
class ProtocolFailure:
    code: int
    message_count: int = 0


@dataclass(frozen=True)
class AckTimer:
    delay_us: int
    message_count: int = 0

    @property
    def delay_s(self) -> float:
        return self.delay_us / 1_000_000


@dataclass(frozen=True)
class Ack:
    pid_value: int
    param_data: bytes
    set_command: bool = False
    message_count: int = 0


@dataclass(frozen=True)
class NackReason:
    code: int | None
    message_count: int = 0


@dataclass(frozen=True)
class UnknownType:
    tag: int
    message_count: int = 0


ResponseOutcome = TransportFailure | Broadcast | ProtocolFailure | AckTimer | Ack | NackReason | UnknownType


def _uint16(data: bytes) -> int | None:
    if len(data) < 2:
        return None
    return int.from_bytes(data[:2], "big")


def classify_response(status: ResponseStatus) -> ResponseOutcome:
    count = status.message_count
    if status.error:
        return TransportFailure(status.error, message_count=count)
    if status.response_code == RdmResponseCode.WAS_BROADCAST:
        return Broadcast(message_count=count)
    if status.response_code != RdmResponseCode.COMPLETED_OK:
        return ProtocolFailure(status.response_code, message_count=count)

    if status.response_type == RdmResponseType.ACK_TIMER:
        tenths = _uint16(status.param_data) or 0
        return AckTimer(tenths * _ACK_TIMER_UNIT_US, message_count=count)
    if status.response_type == RdmResponseType.ACK:
        return Ack(
            status.pid_value,
            bytes(status.param_data),
            set_command=status.set_command,
            message_count=count,
        )
    if status.response_type == RdmResponseType.NACK_REASON:
        return NackReason(_uint16(status.param_data), message_count=count)
    return UnknownType(status.response_type, message_count=count)
