"""
Display-only rendering of send flow contexts.

Fiat values are derived here for presentation and nowhere else; nothing in
this module feeds back into amounts or fees.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from chain_client import BLOCK_TIME_MINUTES
from send_flow_types import (
    FORM_SCREEN,
    REVIEW_SCREEN,
    ExchangeRate,
    FormContext,
    FormEvent,
    ReviewContext,
    ReviewEvent,
    sats_to_btc,
)


def display_amount(sats: int | str, currency: str) -> str:
    return f"{_btc_text(sats)} {currency}"


def display_fiat_amount(sats: int | str, exchange_rate: ExchangeRate | None) -> str:
    if exchange_rate is None:
        return ""
    value = sats_to_btc(sats) * Decimal(str(exchange_rate.conversion_rate))
    return f"{value.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)} {exchange_rate.currency}"


def display_explorer_url(explorer_url: str, address: str) -> str:
    if not explorer_url.startswith(("https://", "http://")):
        return ""
    return f"{explorer_url}/address/{address}"


def render_form(context: FormContext) -> dict[str, Any]:
    amount = context.amount
    fee = context.fee
    view: dict[str, Any] = {
        "screen": FORM_SCREEN,
        "account": {"id": context.account.id, "address": context.account.address},
        "network": context.network,
        "balance": display_amount(context.balance, context.currency),
        "balance_fiat": display_fiat_amount(context.balance, context.exchange_rate),
        "recipient": context.recipient or "",
        "amount": display_amount(amount, context.currency) if amount else "",
        "amount_fiat": display_fiat_amount(amount, context.exchange_rate) if amount else "",
        "send_max": context.drain,
        "fee_rate": f"{context.fee_rate} sat/vB",
        "fee": f"{fee} sats" if fee else "",
        "fee_fiat": display_fiat_amount(fee, context.exchange_rate) if fee else "",
        "errors": context.errors.to_dict(),
        "can_confirm": bool(amount and context.recipient and fee),
        "events": [e.value for e in FormEvent if e is not FormEvent.REFRESH_RATES],
    }
    if amount and fee:
        total = int(amount) + int(fee)
        view["total"] = display_amount(total, context.currency)
        view["total_fiat"] = display_fiat_amount(total, context.exchange_rate)
    return view


def render_review(context: ReviewContext, target_blocks_confirmation: int = 1) -> dict[str, Any]:
    total = int(context.amount) + int(context.fee)
    minutes = target_blocks_confirmation * BLOCK_TIME_MINUTES.get(context.network, 10)
    return {
        "screen": REVIEW_SCREEN,
        "network": context.network,
        "from": context.from_address,
        "from_url": display_explorer_url(context.explorer_url, context.from_address),
        "recipient": context.recipient,
        "recipient_url": display_explorer_url(context.explorer_url, context.recipient),
        "amount": display_amount(context.amount, context.currency),
        "amount_fiat": display_fiat_amount(context.amount, context.exchange_rate),
        "transaction_speed": f"{minutes:g} minutes",
        "fee": f"{context.fee} sats",
        "fee_fiat": display_fiat_amount(context.fee, context.exchange_rate),
        "fee_rate": f"{context.fee_rate} sat/vB",
        "total": display_amount(total, context.currency),
        "total_fiat": display_fiat_amount(total, context.exchange_rate),
        "can_go_back": context.send_form is not None,
        "events": [e.value for e in ReviewEvent],
    }


def _btc_text(sats: int | str) -> str:
    text = format(sats_to_btc(sats), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text
