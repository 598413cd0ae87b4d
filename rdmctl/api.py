"""Stable public API for building tooling on top of rdmctl.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from rdmctl.core.classifier import (
    Ack,
    AckTimer,
    Broadcast,
    NackReason,
    ProtocolFailure,
    ResponseOutcome,
    TransportFailure,
    UnknownType,
    classify_response,
)
from rdmctl.core.config import Settings
from rdmctl.core.driver import TransactionDriver
from rdmctl.core.errors import (
    ConfigError,
    MessageBuildError,
    MessageDecodeError,
    PidResolutionError,
    PidStoreError,
    PidValidationError,
    RdmctlError,
    TransportConnectError,
    TransportError,
    TransportSendError,
    UidFormatError,
)
from rdmctl.core.exit_codes import ExitCode
from rdmctl.core.model import PidDescriptor, ResponseStatus, Uid
from rdmctl.core.service import ConnectionFactory, RdmService

__all__ = [
    "RdmctlError",
    "ConfigError",
    "MessageBuildError",
    "MessageDecodeError",
    "PidResolutionError",
    "PidStoreError",
    "PidValidationError",
    "TransportError",
    "TransportConnectError",
    "TransportSendError",
    "UidFormatError",
    "Ack",
    "AckTimer",
    "Broadcast",
    "NackReason",
    "ProtocolFailure",
    "ResponseOutcome",
    "TransportFailure",
    "UnknownType",
    "classify_response",
    "ExitCode",
    "PidDescriptor",
    "ResponseStatus",
    "Settings",
    "TransactionDriver",
    "Uid",
    "PidDescription",
    "Client",
]


@dataclass(frozen=True)
class PidDescription:
    """A PID and the argument schema of its GET/SET requests."""

    pid: PidDescriptor
    schemas: dict[str, str | None]


class Client:
    """Public client for interacting with rdmctl core capabilities.

    A `Client` instance wraps PID store loading and single RDM transactions
    behind a stable API intended for third-party tools (GUI/TUI/scripts).
    Transaction results are printed the same way the CLI prints them; the
    return value is the process exit status.
    """

    def __init__(
        self,
        *,
        pid_location: Path | None = None,
        settings: Settings | None = None,
        connection_factory: ConnectionFactory | None = None,
    ) -> None:
        self._service = RdmService(
            pid_location=pid_location,
            settings=settings,
            connection_factory=connection_factory,
        )

    @property
    def load_warnings(self) -> tuple[str, ...]:
        return self._service.load_warnings

    def list_pids(self, *, uid: Uid | None = None) -> list[str]:
        if uid is None:
            return self._service.list_pids()
        return self._service.list_pids(uid.manufacturer_id)

    def describe_pid(self, pid: str, *, uid: Uid | None = None) -> PidDescription:
        if uid is None:
            descriptor, schemas = self._service.describe_pid(pid)
        else:
            descriptor, schemas = self._service.describe_pid(pid, uid.manufacturer_id)
        return PidDescription(pid=descriptor, schemas=schemas)

    def get(
        self,
        uid: Uid,
        pid: str,
        args: Sequence[str] = (),
        *,
        universe: int | None = None,
        sub_device: int = 0,
        timeout_s: float | None = None,
    ) -> ExitCode:
        return self._service.perform(
            uid,
            pid,
            args,
            is_set=False,
            universe=universe,
            sub_device=sub_device,
            timeout_s=timeout_s,
        )

    def set(
        self,
        uid: Uid,
        pid: str,
        args: Sequence[str] = (),
        *,
        universe: int | None = None,
        sub_device: int = 0,
        timeout_s: float | None = None,
    ) -> ExitCode:
        return self._service.perform(
            uid,
            pid,
            args,
            is_set=True,
            universe=universe,
            sub_device=sub_device,
            timeout_s=timeout_s,
        )
