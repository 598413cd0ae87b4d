"""Service layer used by the CLI and the public API."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import replace
from pathlib import Path

from rdmctl.core.bridge import PidBridge
from rdmctl.core.config import Settings, load_settings
from rdmctl.core.driver import TransactionDriver
from rdmctl.core.exit_codes import ExitCode
from rdmctl.core.model import PidDescriptor, Uid
from rdmctl.core.pid_store import load_pid_store
from rdmctl.core.rdm import ESTA_MANUFACTURER_ID, ROOT_DEVICE
from rdmctl.core.reactor import AsyncioReactor
from rdmctl.transports.base import RdmConnection
from rdmctl.transports.udp_json import UdpJsonConnection

ConnectionFactory = Callable[[AsyncioReactor, Settings], RdmConnection]


def _udp_json_connection(reactor: AsyncioReactor, settings: Settings) -> RdmConnection:
    return UdpJsonConnection(
        reactor.loop,
        settings.gateway_host,
        settings.gateway_port,
        timeout_s=settings.timeout_s,
    )


class RdmService:
    def __init__(
        self,
        *,
        pid_location: Path | None = None,
        settings: Settings | None = None,
        connection_factory: ConnectionFactory | None = None,
    ) -> None:
        loaded = load_pid_store(pid_location)
        self.store = loaded.store
        self.load_warnings = loaded.warnings
        self.settings = settings or load_settings()
        self.bridge = PidBridge(self.store)
        self.connection_factory = connection_factory or _udp_json_connection

    def list_pids(self, manufacturer_id: int = ESTA_MANUFACTURER_ID) -> list[str]:
        return self.store.supported_pids(manufacturer_id)

    def describe_pid(
        self,
        pid_name: str,
        manufacturer_id: int = ESTA_MANUFACTURER_ID,
    ) -> tuple[PidDescriptor, dict[str, str | None]]:
        """Return the PID and the GET/SET request schemas (None if unsupported)."""
        pid = self.bridge.resolve_pid(pid_name, manufacturer_id)
        schemas: dict[str, str | None] = {}
        for command, descriptor in (("GET", pid.get_request), ("SET", pid.set_request)):
            schemas[command] = None if descriptor is None else self.bridge.codec.schema_as_string(descriptor)
        return pid, schemas

    def perform(
        self,
        uid: Uid,
        pid_name: str,
        inputs: Sequence[str] = (),
        *,
        is_set: bool = False,
        universe: int | None = None,
        sub_device: int = ROOT_DEVICE,
        host: str | None = None,
        port: int | None = None,
        timeout_s: float | None = None,
    ) -> ExitCode:
        settings = self.settings
        if host:
            settings = replace(settings, gateway_host=host)
        if port:
            settings = replace(settings, gateway_port=port)

        reactor = AsyncioReactor()
        connection = self.connection_factory(reactor, settings)
        try:
            connection.setup()
            driver = TransactionDriver(self.bridge, connection, reactor, timeout_s=timeout_s)
            return driver.perform_request_and_wait(
                settings.universe if universe is None else universe,
                uid,
                sub_device,
                pid_name,
                is_set,
                inputs,
            )
        finally:
            connection.close()
            reactor.close()
