"""
In-process interface host.

Stands in for the host platform: it stores each open interface's screen,
persisted context and pending input state, resolves interfaces, and runs
one-shot background events on the asyncio loop. Background events call the
registered cron handler with (method, params), the same way a platform cron
dispatcher would.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable
from uuid import uuid4

from send_flow_types import InterfaceNotFoundError, Preferences

CronHandler = Callable[[str, dict[str, Any]], Awaitable[Any]]

log = logging.getLogger(__name__)


@dataclass
class _Interface:
    screen: str
    context: dict[str, Any]
    state: dict[str, Any] = field(default_factory=dict)


class InMemoryInterfaceHost:
    def __init__(self, preferences: Preferences | None = None) -> None:
        self._interfaces: dict[str, _Interface] = {}
        self._results: dict[str, asyncio.Future] = {}
        self._finished: dict[str, asyncio.Future] = {}
        self._events: dict[str, asyncio.TimerHandle] = {}
        self._running: set[asyncio.Task] = set()
        self._cron_handler: CronHandler | None = None
        self.preferences = preferences or Preferences()

    def set_cron_handler(self, handler: CronHandler) -> None:
        self._cron_handler = handler

    # ---- interfaces ----

    async def create_interface(self, screen: str, context: dict[str, Any]) -> str:
        interface_id = uuid4().hex
        self._interfaces[interface_id] = _Interface(screen=screen, context=dict(context))
        self._results[interface_id] = asyncio.get_running_loop().create_future()
        return interface_id

    async def update_interface(
        self, interface_id: str, screen: str, context: dict[str, Any]
    ) -> None:
        entry = self._require(interface_id)
        entry.screen = screen
        entry.context = dict(context)

    async def get_interface(self, interface_id: str) -> tuple[str, dict[str, Any]]:
        entry = self._require(interface_id)
        return entry.screen, dict(entry.context)

    async def get_state(self, interface_id: str) -> dict[str, Any]:
        return dict(self._require(interface_id).state)

    async def set_state(self, interface_id: str, **values: Any) -> dict[str, Any]:
        """Record pending user input (what the user typed, not yet dispatched)."""
        entry = self._require(interface_id)
        entry.state.update(values)
        return dict(entry.state)

    async def resolve_interface(self, interface_id: str, value: Any) -> None:
        self._require(interface_id)
        del self._interfaces[interface_id]
        result = self._results.pop(interface_id)
        if not result.done():
            result.set_result(value)
        self._finished[interface_id] = result

    async def display_interface(self, interface_id: str) -> Any:
        """
        Wait until the interface is resolved and return the resolved value.

        A resolved value is handed out once; later calls raise
        InterfaceNotFoundError.
        """
        result = self._results.get(interface_id) or self._finished.get(interface_id)
        if result is None:
            raise InterfaceNotFoundError(interface_id)
        value = await asyncio.shield(result)
        self._finished.pop(interface_id, None)
        return value

    def is_open(self, interface_id: str) -> bool:
        return interface_id in self._interfaces

    def _require(self, interface_id: str) -> _Interface:
        entry = self._interfaces.get(interface_id)
        if entry is None:
            raise InterfaceNotFoundError(interface_id)
        return entry

    # ---- background events ----

    async def schedule_background_event(
        self, interval_seconds: float, method: str, params: dict[str, Any]
    ) -> str:
        if self._cron_handler is None:
            raise RuntimeError("No cron handler registered for background events.")
        event_id = uuid4().hex
        loop = asyncio.get_running_loop()
        self._events[event_id] = loop.call_later(
            max(0.0, float(interval_seconds)), self._fire, event_id, method, dict(params)
        )
        return event_id

    async def cancel_background_event(self, event_id: str) -> None:
        handle = self._events.pop(event_id, None)
        if handle is None:
            return
        handle.cancel()

    def pending_events(self) -> list[str]:
        return list(self._events)

    def _fire(self, event_id: str, method: str, params: dict[str, Any]) -> None:
        if self._events.pop(event_id, None) is None:
            return
        task = asyncio.ensure_future(self._cron_handler(method, params))
        self._running.add(task)
        task.add_done_callback(self._on_event_done)

    def _on_event_done(self, task: asyncio.Task) -> None:
        self._running.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error("Background event failed: %s", exc, exc_info=exc)

    async def close(self) -> None:
        """Cancel every pending background event and running callback."""
        for event_id in list(self._events):
            await self.cancel_background_event(event_id)
        for task in list(self._running):
            task.cancel()
        if self._running:
            await asyncio.gather(*self._running, return_exceptions=True)

    # ---- preferences ----

    async def get_preferences(self) -> Preferences:
        return self.preferences
