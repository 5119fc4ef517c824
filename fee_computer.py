"""
Fee computation for the send form.

compute_fee is deterministic in (amount, recipient, fee rate, drain flag,
frozen outpoints) and the account's UTXO set. It never raises for wallet
failures: those become the form's transaction error.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Iterable

from send_flow_types import Account, FormContext

log = logging.getLogger(__name__)


def compute_fee(
    context: FormContext,
    account: Account,
    frozen_outpoints: Iterable[str] = (),
) -> FormContext:
    """
    Return context with fee (and, when draining, amount) recomputed.

    Nothing happens until both amount and recipient are known. In drain mode
    the displayed amount becomes balance - fee, i.e. what actually arrives.
    """
    if not context.amount or not context.recipient:
        return context

    try:
        builder = (
            account.build_transaction()
            .fee_rate(context.fee_rate)
            .exclude_outpoints(set(frozen_outpoints))
        )
        if context.drain:
            draft = builder.drain_wallet().drain_to(context.recipient).finish()
            fee = int(draft.fee())
            return replace(
                context,
                fee=str(fee),
                amount=str(int(context.balance) - fee),
            ).with_errors(tx=None)

        draft = builder.add_recipient(int(context.amount), context.recipient).finish()
        return replace(context, fee=str(int(draft.fee()))).with_errors(tx=None)
    except Exception as exc:  # noqa: BLE001
        log.error("Failed to build transaction draft. Error: %s", exc)
        return tx_error(context, str(exc) or exc.__class__.__name__)


def tx_error(context: FormContext, message: str) -> FormContext:
    return replace(context, fee=None).with_errors(tx=message)
