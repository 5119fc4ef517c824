"""
Background refresh of fee and exchange rates for an open send form.

Each run fetches the latest data, folds it into the newest persisted form
context, recomputes the fee and schedules its own next run through the
interface host. The loop ends when the interface is resolved or leaves the
form screen; the only link back to the engine is the persisted context and
its background_event_id.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace
from typing import Awaitable, Callable

from send_flow_types import (
    FIAT_PRICED_NETWORK,
    FORM_SCREEN,
    ChainPort,
    ExchangeRate,
    FormContext,
    InterfaceHost,
    InterfaceNotFoundError,
    RatesPort,
)

REFRESH_RATES_METHOD = "refreshRates"

FeeComputer = Callable[[FormContext], Awaitable[FormContext]]

log = logging.getLogger(__name__)

_UNCHANGED = object()


class RateRefreshScheduler:
    def __init__(
        self,
        host: InterfaceHost,
        chain: ChainPort,
        rates: RatesPort,
        compute_fee: FeeComputer,
        *,
        target_blocks_confirmation: int = 1,
        fallback_fee_rate: float = 5.0,
        interval_seconds: float = 20.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._host = host
        self._chain = chain
        self._rates = rates
        self._compute_fee = compute_fee
        self._target_blocks = target_blocks_confirmation
        self._fallback_fee_rate = fallback_fee_rate
        self._interval = interval_seconds
        self._clock = clock
        self._tasks: set[asyncio.Task] = set()

    def start(self, interface_id: str) -> asyncio.Task:
        """
        Run a refresh as a detached task. Callers never await it; failures
        are logged.
        """
        task = asyncio.ensure_future(self.refresh(interface_id))
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    async def wait_idle(self) -> None:
        """Wait for detached refreshes started so far (shutdown and tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error("Rates refresh task failed: %s", exc, exc_info=exc)

    async def cancel(self, context: FormContext) -> FormContext:
        if context.background_event_id:
            await self._host.cancel_background_event(context.background_event_id)
        return replace(context, background_event_id=None)

    async def refresh(self, interface_id: str) -> FormContext | None:
        """
        Refresh rates for one interface and schedule the next run.

        Returns the written context, or None when the interface is gone or no
        longer shows the form (the loop's normal exit).
        """
        context = await self._read_form(interface_id)
        if context is None:
            return None

        preferences = await self._host.get_preferences()
        fee_rate = await self._fetch_fee_rate(interface_id, context.network)
        exchange_rate = await self._fetch_exchange_rate(
            interface_id, context.network, preferences.currency
        )

        # Fold into the newest context: user edits may have landed meanwhile.
        latest = await self._read_form(interface_id)
        if latest is None:
            return None
        updated = replace(latest, locale=preferences.locale)
        if fee_rate is not None:
            updated = replace(updated, fee_rate=fee_rate)
        if exchange_rate is not _UNCHANGED:
            updated = replace(updated, exchange_rate=exchange_rate)

        updated = await self.cancel(updated)
        try:
            updated = await self._compute_fee(updated)
        except Exception as exc:  # noqa: BLE001
            log.error("Failed to recompute fee in send form %s. Error: %s", interface_id, exc)

        # Confirm or Cancel may have landed while the fee was computed.
        if await self._read_form(interface_id) is None:
            return None

        event_id = await self._host.schedule_background_event(
            self._interval, REFRESH_RATES_METHOD, {"interface_id": interface_id}
        )
        updated = replace(updated, background_event_id=event_id)
        try:
            await self._host.update_interface(interface_id, FORM_SCREEN, updated.to_dict())
        except InterfaceNotFoundError:
            log.debug("Send flow interface %s resolved during refresh.", interface_id)
            await self._host.cancel_background_event(event_id)
            return None
        return updated

    async def _read_form(self, interface_id: str) -> FormContext | None:
        try:
            screen, data = await self._host.get_interface(interface_id)
        except InterfaceNotFoundError:
            log.debug("Send flow interface %s is gone; stopping rates refresh.", interface_id)
            return None
        if screen != FORM_SCREEN:
            log.debug("Interface %s left the send form; stopping rates refresh.", interface_id)
            return None
        return FormContext.from_dict(data)

    async def _fetch_fee_rate(self, interface_id: str, network: str) -> float | None:
        try:
            estimates = await asyncio.to_thread(self._chain.fee_estimates, network)
        except Exception as exc:  # noqa: BLE001
            log.warning("Failed to fetch fee estimates in send form %s. Error: %s", interface_id, exc)
            return None
        return estimates.get(self._target_blocks, self._fallback_fee_rate)

    async def _fetch_exchange_rate(self, interface_id: str, network: str, currency: str):
        """
        Return an ExchangeRate, None to clear it, or _UNCHANGED on fetch failure.
        """
        if network != FIAT_PRICED_NETWORK:
            return None
        try:
            rates = await asyncio.to_thread(self._rates.exchange_rates)
        except Exception as exc:  # noqa: BLE001
            log.warning("Failed to fetch exchange rates in send form %s. Error: %s", interface_id, exc)
            return _UNCHANGED

        code = (currency or "").lower()
        rate = rates.get(code)
        if rate is None:
            log.debug("No %s quote available; exchange rate not shown.", code)
            return None
        return ExchangeRate(
            currency=code.upper(),
            conversion_rate=float(rate),
            conversion_date=int(self._clock()),
        )
