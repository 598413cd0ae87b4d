"""Connection interfaces."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from rdmctl.core.model import ResponseStatus, Uid

ResponseCallback = Callable[[ResponseStatus], None]


class RdmConnection(Protocol):
    def setup(self) -> None:
        """Prepare the connection; raises TransportConnectError on failure."""

    def rdm_get(
        self,
        callback: ResponseCallback,
        universe: int,
        uid: Uid,
        sub_device: int,
        pid_value: int,
        data: bytes,
    ) -> None:
        """Submit a GET without blocking; ``callback`` runs once with the outcome."""

    def rdm_set(
        self,
        callback: ResponseCallback,
        universe: int,
        uid: Uid,
        sub_device: int,
        pid_value: int,
        data: bytes,
    ) -> None:
        """Submit a SET without blocking; ``callback`` runs once with the outcome."""

    def close(self) -> None:
        """Release the connection."""
