"""
Send flow engine: Form -> Review -> TransactionRequest.

The engine is a state machine over two persisted contexts. Every handler takes
the context explicitly and returns the context it wrote (None once the
interface is resolved). Field-level problems (bad address, bad amount,
insufficient funds) end up in context.errors; only consistency violations
raise.

While the form is open a detached refresh loop (see rate_refresh) keeps the
fee rate and exchange rate current. display() never awaits it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace
from typing import Any, Callable

from esplora_wallet import parse_address
from fee_computer import compute_fee, tx_error
from rate_refresh import REFRESH_RATES_METHOD, RateRefreshScheduler
from send_flow_types import (
    FORM_SCREEN,
    NETWORK_TO_CURRENCY,
    REVIEW_SCREEN,
    AccountNotFoundError,
    AccountRef,
    AccountRepository,
    ChainPort,
    FormContext,
    FormErrors,
    FormEvent,
    InconsistentStateError,
    InterfaceHost,
    InvalidAmountError,
    RatesPort,
    ReviewContext,
    ReviewEvent,
    TransactionRequest,
    UnrecognizedEventError,
    UserCancelledError,
    btc_to_sats,
)

log = logging.getLogger(__name__)

AddressParser = Callable[[str, str], str]


class SendFlow:
    def __init__(
        self,
        host: InterfaceHost,
        accounts: AccountRepository,
        chain: ChainPort,
        rates: RatesPort,
        *,
        target_blocks_confirmation: int = 1,
        fallback_fee_rate: float = 5.0,
        refresh_interval_seconds: float = 20.0,
        address_parser: AddressParser = parse_address,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._host = host
        self._accounts = accounts
        self._chain = chain
        self._fallback_fee_rate = fallback_fee_rate
        self._parse_address = address_parser
        self.scheduler = RateRefreshScheduler(
            host,
            chain,
            rates,
            self.compute_fee,
            target_blocks_confirmation=target_blocks_confirmation,
            fallback_fee_rate=fallback_fee_rate,
            interval_seconds=refresh_interval_seconds,
            clock=clock,
        )

    # ---- entry points ----

    async def display(self, account_id: str) -> TransactionRequest:
        """
        Show the send form for an account and wait for the user to finish.

        Raises AccountNotFoundError before any interface exists, and
        UserCancelledError if the flow ends without a request.
        """
        interface_id = await self.open(account_id)
        return await self.wait(interface_id)

    async def open(self, account_id: str) -> str:
        log.debug("Displaying send form. Account: %s", account_id)
        account = await self._load_account(account_id)
        preferences = await self._host.get_preferences()

        context = FormContext(
            account=AccountRef(id=account.id, address=account.address),
            network=account.network,
            currency=NETWORK_TO_CURRENCY[account.network].value,
            balance=str(account.balance),
            fee_rate=self._fallback_fee_rate,
            locale=preferences.locale,
        )
        interface_id = await self._host.create_interface(FORM_SCREEN, context.to_dict())

        # Detached: rates load in the background while the user types.
        self.scheduler.start(interface_id)
        return interface_id

    async def wait(self, interface_id: str) -> TransactionRequest:
        resolved = await self._host.display_interface(interface_id)
        if not resolved:
            raise UserCancelledError("User cancelled the send flow")
        log.info("Send flow %s resolved with a transaction request", interface_id)
        if isinstance(resolved, TransactionRequest):
            return resolved
        return TransactionRequest.from_dict(resolved)

    async def route_user_input(self, interface_id: str, event_name: str):
        """Dispatch a named UI event against the latest persisted context."""
        screen, data = await self._host.get_interface(interface_id)
        if screen == FORM_SCREEN:
            return await self.on_form_input(interface_id, event_name, FormContext.from_dict(data))
        if screen == REVIEW_SCREEN:
            return await self.on_review_input(
                interface_id, event_name, ReviewContext.from_dict(data)
            )
        raise InconsistentStateError(f"Interface {interface_id} shows unknown screen {screen!r}")

    async def on_cron(self, method: str, params: dict[str, Any]) -> FormContext | None:
        if method == REFRESH_RATES_METHOD:
            return await self.scheduler.refresh(str(params["interface_id"]))
        raise UnrecognizedEventError(f"Method not found: {method}")

    async def refresh(self, interface_id: str) -> FormContext | None:
        return await self.scheduler.refresh(interface_id)

    # ---- form ----

    async def on_form_input(
        self, interface_id: str, event: FormEvent | str, context: FormContext
    ) -> FormContext | ReviewContext | None:
        event = _coerce(FormEvent, event)
        log.debug("Event triggered on send form: %s. Event: %s", interface_id, event.value)

        if event is FormEvent.CANCEL:
            await self.scheduler.cancel(context)
            await self._host.resolve_interface(interface_id, None)
            return None
        if event is FormEvent.CLEAR_RECIPIENT:
            updated = replace(context, recipient=None, fee=None).with_errors(recipient=None, tx=None)
            return await self._write_form(interface_id, updated)
        if event is FormEvent.CLEAR_AMOUNT:
            updated = replace(context, amount=None, fee=None, drain=False).with_errors(
                amount=None, tx=None
            )
            return await self._write_form(interface_id, updated)
        if event is FormEvent.SET_MAX:
            return await self._handle_set_max(interface_id, context)
        if event is FormEvent.RECIPIENT:
            return await self._handle_set_recipient(interface_id, context)
        if event is FormEvent.AMOUNT:
            return await self._handle_set_amount(interface_id, context)
        if event is FormEvent.ACCOUNT:
            return await self._handle_set_account(interface_id, context)
        if event is FormEvent.ASSET:
            # Bitcoin is the only asset.
            return context
        if event is FormEvent.CONFIRM:
            return await self._handle_confirm(interface_id, context)
        if event is FormEvent.REFRESH_RATES:
            return await self.scheduler.refresh(interface_id)
        raise UnrecognizedEventError(f"Unrecognized event: {event!r}")

    async def _handle_set_max(self, interface_id: str, context: FormContext) -> FormContext:
        updated = replace(context, amount=context.balance, drain=True, fee=None).with_errors(
            amount=None, tx=None
        )
        updated = await self.compute_fee(updated)
        return await self._write_form(interface_id, updated)

    async def _handle_set_recipient(self, interface_id: str, context: FormContext) -> FormContext:
        state = await self._host.get_state(interface_id)
        updated = context.with_errors(recipient=None, tx=None)
        try:
            recipient = self._parse_address(str(state.get("recipient") or ""), context.network)
        except Exception as exc:  # noqa: BLE001
            log.error("Invalid recipient. Error: %s", exc)
            updated = updated.with_errors(recipient=str(exc) or "Invalid recipient address.")
            return await self._write_form(interface_id, updated)

        updated = await self.compute_fee(replace(updated, recipient=recipient))
        return await self._write_form(interface_id, updated)

    async def _handle_set_amount(self, interface_id: str, context: FormContext) -> FormContext:
        state = await self._host.get_state(interface_id)
        updated = replace(context, fee=None, drain=False).with_errors(amount=None, tx=None)
        try:
            amount = btc_to_sats(str(state.get("amount") or ""))
        except InvalidAmountError as exc:
            log.error("Invalid amount. Error: %s", exc)
            updated = replace(updated, amount=None).with_errors(amount=str(exc))
            return await self._write_form(interface_id, updated)

        updated = await self.compute_fee(replace(updated, amount=str(amount)))
        return await self._write_form(interface_id, updated)

    async def _handle_set_account(self, interface_id: str, context: FormContext) -> FormContext:
        state = await self._host.get_state(interface_id)
        account = await self._load_account(str(state.get("account") or ""))
        updated = FormContext(
            account=AccountRef(id=account.id, address=account.address),
            network=account.network,
            currency=NETWORK_TO_CURRENCY[account.network].value,
            balance=str(account.balance),
            fee_rate=context.fee_rate,
            locale=context.locale,
            errors=FormErrors(),
            exchange_rate=context.exchange_rate,
            background_event_id=context.background_event_id,
        )
        return await self._write_form(interface_id, updated)

    async def _handle_confirm(self, interface_id: str, context: FormContext) -> ReviewContext:
        if not (context.amount and context.recipient and context.fee):
            raise InconsistentStateError("Inconsistent send form context")

        # Review has no refresh loop of its own.
        snapshot = await self.scheduler.cancel(context)
        review = ReviewContext(
            from_address=context.account.address,
            network=context.network,
            currency=context.currency,
            recipient=context.recipient,
            amount=context.amount,
            fee_rate=context.fee_rate,
            fee=context.fee,
            locale=context.locale,
            explorer_url=self._chain.explorer_url(context.network),
            exchange_rate=context.exchange_rate,
            send_form=snapshot,
        )
        await self._host.update_interface(interface_id, REVIEW_SCREEN, review.to_dict())
        return review

    # ---- review ----

    async def on_review_input(
        self, interface_id: str, event: ReviewEvent | str, context: ReviewContext
    ) -> FormContext | None:
        event = _coerce(ReviewEvent, event)
        log.debug("Event triggered on transaction review: %s. Event: %s", interface_id, event.value)

        if event is ReviewEvent.HEADER_BACK:
            if context.send_form is None:
                await self._host.resolve_interface(interface_id, None)
                return None
            form = await self._write_form(interface_id, context.send_form)
            self.scheduler.start(interface_id)
            return form
        if event is ReviewEvent.SEND:
            request = TransactionRequest(
                recipient=context.recipient,
                amount=context.amount,
                fee_rate=context.fee_rate,
            )
            await self._host.resolve_interface(interface_id, request.to_dict())
            return None
        raise UnrecognizedEventError(f"Unrecognized event: {event!r}")

    # ---- fees ----

    async def compute_fee(self, context: FormContext) -> FormContext:
        """Resolve the account and frozen outpoints, then run the fee computer."""
        if not context.amount or not context.recipient:
            return context
        try:
            account = await asyncio.to_thread(self._accounts.get, context.account.id)
        except Exception as exc:  # noqa: BLE001
            log.error("Failed to load account %s. Error: %s", context.account.id, exc)
            return tx_error(context, f"Could not load account: {exc}")
        if account is None:
            raise AccountNotFoundError(f"Account removed while sending: {context.account.id}")
        try:
            frozen = await asyncio.to_thread(self._accounts.frozen_outpoints, context.account.id)
        except Exception as exc:  # noqa: BLE001
            log.error("Failed to list frozen outpoints. Error: %s", exc)
            return tx_error(context, f"Could not load locked outputs: {exc}")
        return compute_fee(context, account, frozen)

    # ---- helpers ----

    async def _load_account(self, account_id: str):
        if not account_id:
            raise AccountNotFoundError("Account not found")
        account = await asyncio.to_thread(self._accounts.get, account_id)
        if account is None:
            raise AccountNotFoundError(f"Account not found: {account_id}")
        return account

    async def _write_form(self, interface_id: str, context: FormContext) -> FormContext:
        await self._host.update_interface(interface_id, FORM_SCREEN, context.to_dict())
        return context


def _coerce(enum_cls, event):
    if isinstance(event, enum_cls):
        return event
    try:
        return enum_cls(event)
    except ValueError:
        raise UnrecognizedEventError(f"Unrecognized event: {event!r}") from None
