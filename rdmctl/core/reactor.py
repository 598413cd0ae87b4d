"""Event loop surface used by the transaction driver."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Protocol


class EventLoopAdapter(Protocol):
    def run(self) -> None:
        """Block until terminate() is called from a callback."""

    def terminate(self) -> None:
        """Stop run(); safe to call more than once."""

    def register_single_timeout(self, delay_s: float, callback: Callable[[], None]) -> None:
        """Call ``callback`` once on the loop thread after ``delay_s`` seconds."""


class AsyncioReactor:
    """Single-threaded reactor backed by an asyncio event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self.loop = loop or asyncio.new_event_loop()
        self._timers: list[asyncio.TimerHandle] = []
        self._terminated = False

    def run(self) -> None:
        self.loop.run_forever()

    def terminate(self) -> None:
        if self._terminated:
            return
        self._terminated = True
        self.loop.stop()

    def register_single_timeout(self, delay_s: float, callback: Callable[[], None]) -> None:
        def fire() -> None:
            self._timers.remove(handle)
            callback()

        handle = self.loop.call_later(max(delay_s, 0.0), fire)
        self._timers.append(handle)

    def close(self) -> None:
        for handle in self._timers:
            handle.cancel()
        self._timers.clear()
        if not self.loop.is_closed():
            self.loop.close()
