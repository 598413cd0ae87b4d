"""Core data models used across PID store, codec, driver, and CLI."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from rdmctl.core.errors import UidFormatError
from rdmctl.core.rdm import ALL_DEVICES_ID

_UID_RE = re.compile(r"^([0-9a-f]{1,4}):([0-9a-f]{1,8})$", re.IGNORECASE)


@dataclass(frozen=True)
class Uid:
    manufacturer_id: int
    device_id: int

    @classmethod
    def from_string(cls, text: str) -> Uid:
        match = _UID_RE.match(text.strip())
        if not match:
            raise UidFormatError(f"Invalid or missing UID '{text}', try xxxx:yyyyyyyy")
        return cls(manufacturer_id=int(match.group(1), 16), device_id=int(match.group(2), 16))

    @property
    def is_broadcast(self) -> bool:
        return self.device_id == ALL_DEVICES_ID

    def pack(self) -> bytes:
        return self.manufacturer_id.to_bytes(2, "big") + self.device_id.to_bytes(4, "big")

    def __str__(self) -> str:
        return f"{self.manufacturer_id:04x}:{self.device_id:08x}"


@dataclass(frozen=True)
class FieldDescriptor:
    name: str
    type: str
    min_size: int = 0
    max_size: int = 32
    labels: dict[str, int] = field(default_factory=dict)
    ranges: tuple[tuple[int, int], ...] = ()
    fields: tuple[FieldDescriptor, ...] = ()
    min_count: int = 0
    max_count: int | None = None


@dataclass(frozen=True)
class MessageDescriptor:
    name: str
    fields: tuple[FieldDescriptor, ...]


@dataclass(frozen=True)
class PidDescriptor:
    name: str
    value: int
    manufacturer_id: int
    get_request: MessageDescriptor | None = None
    get_response: MessageDescriptor | None = None
    set_request: MessageDescriptor | None = None
    set_response: MessageDescriptor | None = None

    def request(self, is_set: bool) -> MessageDescriptor | None:
        return self.set_request if is_set else self.get_request

    def response(self, is_set: bool) -> MessageDescriptor | None:
        return self.set_response if is_set else self.get_response


@dataclass(frozen=True)
class Message:
    name: str
    values: tuple[tuple[str, Any], ...]


class RequestKind(Enum):
    ORIGINAL = "original"
    QUEUED_MESSAGE_FETCH = "queued_message_fetch"


@dataclass
class PendingRequest:
    """The request a driver is waiting on; rewritten as queued messages are fetched."""

    universe: int
    uid: Uid
    sub_device: int
    pid_value: int
    kind: RequestKind = RequestKind.ORIGINAL


@dataclass(frozen=True)
class ResponseStatus:
    """Raw completion status handed to a request callback by a connection."""

    error: str = ""
    response_code: int = 0
    response_type: int = 0
    pid_value: int = 0
    set_command: bool = False
    message_count: int = 0
    param_data: bytes = b""
