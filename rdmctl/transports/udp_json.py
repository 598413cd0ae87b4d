"""RDM gateway connection using JSON datagrams over UDP.

Request:  {"v": 2, "type": "rdm", "action": "get_param", "universe": 1,
           "uid": "7a70:00000001", "sub_device": 0, "pid": 130, "data": "", "seq": 1}
Response: {"v": 2, "type": "rdm_response", "seq": 1, "response_code": 0,
           "response_type": 0, "pid": 130, "command_class": "get",
           "message_count": 0, "data": "6c6162656c"}
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

from rdmctl.core.errors import TransportConnectError, TransportSendError
from rdmctl.core.model import ResponseStatus, Uid
from rdmctl.transports.base import ResponseCallback

LOGGER = logging.getLogger(__name__)

DEFAULT_PORT = 6455
DEFAULT_TIMEOUT_S = 3.0


@dataclass
class _InFlight:
    callback: ResponseCallback
    timer: asyncio.TimerHandle


class _GatewayProtocol(asyncio.DatagramProtocol):
    def __init__(self, connection: UdpJsonConnection) -> None:
        self._connection = connection

    def datagram_received(self, data: bytes, addr: Any) -> None:
        self._connection._on_datagram(data, addr)

    def error_received(self, exc: Exception) -> None:
        self._connection._fail_all(f"Gateway socket error: {exc}")

    def connection_lost(self, exc: Exception | None) -> None:
        if exc is not None:
            self._connection._fail_all(f"Gateway connection lost: {exc}")


def parse_response(message: dict[str, Any]) -> ResponseStatus:
    """Convert a decoded gateway reply into a ResponseStatus."""
    if message.get("error"):
        return ResponseStatus(error=str(message["error"]))
    try:
        data = bytes.fromhex(message.get("data") or "")
        return ResponseStatus(
            response_code=int(message.get("response_code", 0)),
            response_type=int(message.get("response_type", 0)),
            pid_value=int(message.get("pid", 0)),
            set_command=message.get("command_class") == "set",
            message_count=int(message.get("message_count", 0)),
            param_data=data,
        )
    except (TypeError, ValueError) as exc:
        return ResponseStatus(error=f"Malformed gateway response: {exc}")


class UdpJsonConnection:
    """Non-blocking gateway client bound to one asyncio event loop."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        host: str,
        port: int = DEFAULT_PORT,
        *,
        timeout_s: float = DEFAULT_TIMEOUT_S,
    ) -> None:
        self._loop = loop
        self.host = host
        self.port = port
        self.timeout_s = timeout_s
        self._transport: asyncio.DatagramTransport | None = None
        self._sequence = 0
        self._in_flight: dict[int, _InFlight] = {}

    def setup(self) -> None:
        try:
            transport, _ = self._loop.run_until_complete(
                self._loop.create_datagram_endpoint(
                    lambda: _GatewayProtocol(self),
                    remote_addr=(self.host, self.port),
                )
            )
        except OSError as exc:
            raise TransportConnectError(
                f"Could not reach RDM gateway {self.host}:{self.port}: {exc}"
            ) from exc
        self._transport = transport

    def close(self) -> None:
        for entry in self._in_flight.values():
            entry.timer.cancel()
        self._in_flight.clear()
        if self._transport is not None:
            self._transport.close()
            self._transport = None

    def _next_sequence(self) -> int:
        self._sequence = (self._sequence + 1) % 65536
        return self._sequence

    def rdm_get(
        self,
        callback: ResponseCallback,
        universe: int,
        uid: Uid,
        sub_device: int,
        pid_value: int,
        data: bytes,
    ) -> None:
        self._submit("get_param", callback, universe, uid, sub_device, pid_value, data)

    def rdm_set(
        self,
        callback: ResponseCallback,
        universe: int,
        uid: Uid,
        sub_device: int,
        pid_value: int,
        data: bytes,
    ) -> None:
        self._submit("set_param", callback, universe, uid, sub_device, pid_value, data)

    def _submit(
        self,
        action: str,
        callback: ResponseCallback,
        universe: int,
        uid: Uid,
        sub_device: int,
        pid_value: int,
        data: bytes,
    ) -> None:
        if self._transport is None:
            raise TransportSendError("Connection is not set up")

        seq = self._next_sequence()
        message = {
            "v": 2,
            "type": "rdm",
            "action": action,
            "universe": universe,
            "uid": str(uid),
            "sub_device": sub_device,
            "pid": pid_value,
            "data": data.hex(),
            "seq": seq,
        }
        LOGGER.debug("RDM TX -> %s:%s: %s", self.host, self.port, message)
        try:
            self._transport.sendto(json.dumps(message).encode("utf-8"))
        except OSError as exc:
            raise TransportSendError(f"Failed to send to {self.host}:{self.port}: {exc}") from exc

        timer = self._loop.call_later(self.timeout_s, self._expire, seq)
        self._in_flight[seq] = _InFlight(callback=callback, timer=timer)

    def _expire(self, seq: int) -> None:
        entry = self._in_flight.pop(seq, None)
        if entry is None:
            return
        entry.callback(
            ResponseStatus(error=f"No response from {self.host}:{self.port} within {self.timeout_s}s")
        )

    def _fail_all(self, error: str) -> None:
        pending = list(self._in_flight.values())
        self._in_flight.clear()
        for entry in pending:
            entry.timer.cancel()
            entry.callback(ResponseStatus(error=error))

    def _on_datagram(self, data: bytes, addr: Any) -> None:
        try:
            message = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            LOGGER.warning("Invalid JSON response from %s: %s", addr, exc)
            return
        LOGGER.debug("RDM RX <- %s: %s", addr, message)

        if not isinstance(message, dict) or message.get("type") != "rdm_response":
            return
        seq = message.get("seq")
        entry = self._in_flight.pop(seq, None) if isinstance(seq, int) else None
        if entry is None:
            LOGGER.debug("Ignoring response with unknown sequence %s", seq)
            return
        entry.timer.cancel()
        entry.callback(parse_response(message))
