"""Thin adapter between the transaction driver, the PID store and the codec."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from rdmctl.core.codec import MessageCodec
from rdmctl.core.errors import MessageDecodeError, PidResolutionError
from rdmctl.core.model import MessageDescriptor, PidDescriptor
from rdmctl.core.pid_store import PidStore

LOGGER = logging.getLogger(__name__)


def parse_pid_value(text: str) -> int | None:
    """Parse a 0x-prefixed hex or decimal PID value."""
    stripped = text.strip()
    try:
        if stripped.lower().startswith("0x"):
            value = int(stripped[2:], 16)
        else:
            value = int(stripped, 10)
    except ValueError:
        return None
    if not 0 <= value <= 0xFFFF:
        return None
    return value


class PidBridge:
    def __init__(self, store: PidStore, codec: MessageCodec | None = None) -> None:
        self.store = store
        self.codec = codec or MessageCodec()

    def resolve_pid(self, pid_name: str, manufacturer_id: int) -> PidDescriptor:
        descriptor = self.store.get_descriptor(pid_name, manufacturer_id)
        if descriptor is None:
            value = parse_pid_value(pid_name)
            if value is not None:
                descriptor = self.store.get_descriptor(value, manufacturer_id)
        if descriptor is None:
            raise PidResolutionError(
                f"Unknown PID: {pid_name}. Use 'rdmctl pids' to list the available PIDs."
            )
        return descriptor

    def resolve_request(
        self,
        pid_name: str,
        manufacturer_id: int,
        is_set: bool,
    ) -> tuple[PidDescriptor, MessageDescriptor]:
        pid = self.resolve_pid(pid_name, manufacturer_id)
        request = pid.request(is_set)
        if request is None:
            raise PidResolutionError(
                f"{'SET' if is_set else 'GET'} command not supported for {pid_name}"
            )
        return pid, request

    def build_request(self, descriptor: MessageDescriptor, inputs: Sequence[str]) -> bytes:
        message = self.codec.build_message(descriptor, inputs)
        return self.codec.serialize_message(message, descriptor)

    def render_response(
        self,
        manufacturer_id: int,
        is_set: bool,
        pid_value: int,
        data: bytes,
    ) -> str | None:
        """Decode and pretty print ACK data, or log why it could not be shown."""
        pid = self.store.get_descriptor(pid_value, manufacturer_id)
        if pid is None:
            LOGGER.warning("Unknown PID: 0x%04x.", pid_value)
            return None

        descriptor = pid.response(is_set)
        if descriptor is None:
            LOGGER.warning("Unknown response message: %s %s", "SET" if is_set else "GET", pid.name)
            return None

        try:
            message = self.codec.deserialize_message(descriptor, data)
        except MessageDecodeError as exc:
            LOGGER.warning("Unable to inflate RDM response: %s", exc)
            return None

        return self.codec.pretty_print_message(manufacturer_id, is_set, pid_value, message, descriptor)
