"""
Watch-only wallet accounts backed by Esplora UTXO data.

Implements the wallet capability the send flow drafts against:
- Address parsing per network (base58 P2PKH/P2SH, segwit bech32/bech32m)
- Account balance from confirmed UTXOs
- A transaction builder producing fee-accurate drafts (fixed amount or drain)

Drafts are never signed here. Sizes use the usual per-type vbyte estimates, so
fees match what a signer would pay to within a few vbytes.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable

from bip_utils import P2PKHAddrDecoder, P2SHAddrDecoder, SegwitBech32Decoder

DUST_LIMIT_SATS = 546

TX_OVERHEAD_VBYTES = 11
OUTPUT_VBYTES = 34
INPUT_VBYTES: dict[str, int] = {
    "p2wpkh": 68,
    "p2tr": 58,
    "p2sh-p2wpkh": 91,
    "p2pkh": 148,
}

# (segwit hrp, p2pkh version byte, p2sh version byte)
_ADDRESS_PARAMS: dict[str, tuple[str, bytes, bytes]] = {
    "bitcoin": ("bc", b"\x00", b"\x05"),
    "testnet": ("tb", b"\x6f", b"\xc4"),
    "testnet4": ("tb", b"\x6f", b"\xc4"),
    "signet": ("tb", b"\x6f", b"\xc4"),
    "regtest": ("bcrt", b"\x6f", b"\xc4"),
}


class WalletError(Exception):
    """Wallet capability failure; the message is shown to the user."""


class InvalidAddressError(WalletError):
    pass


class InsufficientFundsError(WalletError):
    pass


class OutputBelowDustError(WalletError):
    pass


class TransactionBuildError(WalletError):
    pass


# ---------------------------------------------------------------------------
# Addresses
# ---------------------------------------------------------------------------


def parse_address(address: str, network: str) -> str:
    """
    Validate an address for a network and return its normalized form.

    Bech32 addresses are lower-cased; base58 addresses are returned as given.
    """
    text = (address or "").strip()
    if network not in _ADDRESS_PARAMS:
        raise InvalidAddressError(f"Unsupported network {network!r}.")
    if not text:
        raise InvalidAddressError("Address is required.")
    hrp, p2pkh_ver, p2sh_ver = _ADDRESS_PARAMS[network]

    if text.lower().startswith(hrp + "1"):
        try:
            SegwitBech32Decoder.Decode(hrp, text.lower())
        except Exception as exc:  # noqa: BLE001
            raise InvalidAddressError(f"Invalid {network} address: {text}") from exc
        return text.lower()

    for decoder, net_ver in ((P2PKHAddrDecoder(), p2pkh_ver), (P2SHAddrDecoder(), p2sh_ver)):
        try:
            decoder.DecodeAddr(text, net_ver=net_ver)
        except Exception:  # noqa: BLE001
            continue
        return text
    raise InvalidAddressError(f"Invalid {network} address: {text}")


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Utxo:
    txid: str
    vout: int
    value: int
    confirmed: bool = True

    @property
    def outpoint(self) -> str:
        return f"{self.txid}:{self.vout}"

    @classmethod
    def from_esplora(cls, data: dict[str, object]) -> Utxo:
        status = data.get("status") or {}
        return cls(
            txid=str(data.get("txid", "")),
            vout=int(data.get("vout", 0)),
            value=int(data.get("value", 0)),
            confirmed=bool(status.get("confirmed", False)) if isinstance(status, dict) else False,
        )


@dataclass
class WalletAccount:
    id: str
    address: str
    network: str
    address_type: str = "p2wpkh"
    utxos: list[Utxo] = field(default_factory=list)

    @property
    def balance(self) -> int:
        """Trusted spendable balance: confirmed outputs only."""
        return sum(u.value for u in self.utxos if u.confirmed)

    def build_transaction(self) -> TxBuilder:
        return TxBuilder(self)


# ---------------------------------------------------------------------------
# Drafts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DraftTransaction:
    inputs: list[str]
    outputs: list[tuple[str, int]]
    fee_sats: int
    vsize: int

    def fee(self) -> int:
        return self.fee_sats


class TxBuilder:
    """
    Fluent draft builder over a single account's confirmed UTXOs.

    Fixed-amount drafts select the largest UTXOs first and return change to the
    account address; change below the dust limit is left to the miners.
    Drain drafts spend every spendable UTXO to the drain address.
    """

    def __init__(self, account: WalletAccount) -> None:
        self._account = account
        self._fee_rate = 1.0
        self._recipients: list[tuple[str, int]] = []
        self._drain_wallet = False
        self._drain_to: str | None = None
        self._excluded: set[str] = set()

    def fee_rate(self, sat_per_vb: float) -> TxBuilder:
        rate = float(sat_per_vb)
        if not math.isfinite(rate) or rate <= 0:
            raise TransactionBuildError(f"Invalid fee rate {sat_per_vb!r} sat/vB.")
        self._fee_rate = rate
        return self

    def add_recipient(self, amount_sats: int | str, address: str) -> TxBuilder:
        amount = int(amount_sats)
        if amount < DUST_LIMIT_SATS:
            raise OutputBelowDustError(
                f"Output of {amount} sats is below the dust limit of {DUST_LIMIT_SATS} sats."
            )
        self._recipients.append((parse_address(address, self._account.network), amount))
        return self

    def drain_wallet(self) -> TxBuilder:
        self._drain_wallet = True
        return self

    def drain_to(self, address: str) -> TxBuilder:
        self._drain_to = parse_address(address, self._account.network)
        return self

    def exclude_outpoints(self, outpoints: Iterable[str]) -> TxBuilder:
        self._excluded.update(outpoints)
        return self

    def finish(self) -> DraftTransaction:
        spendable = [
            u for u in self._account.utxos if u.confirmed and u.outpoint not in self._excluded
        ]
        if self._drain_wallet:
            return self._finish_drain(spendable)
        if not self._recipients:
            raise TransactionBuildError("Transaction has no recipients.")
        return self._finish_fixed(spendable)

    def _input_vbytes(self) -> int:
        return INPUT_VBYTES.get(self._account.address_type, INPUT_VBYTES["p2wpkh"])

    def _fee_for(self, num_inputs: int, num_outputs: int) -> tuple[int, int]:
        vsize = TX_OVERHEAD_VBYTES + num_inputs * self._input_vbytes() + num_outputs * OUTPUT_VBYTES
        return math.ceil(vsize * self._fee_rate), vsize

    def _finish_drain(self, spendable: list[Utxo]) -> DraftTransaction:
        if self._drain_to is None:
            raise TransactionBuildError("Draining the wallet requires a drain address.")
        if not spendable:
            raise InsufficientFundsError("No spendable funds available.")

        total = sum(u.value for u in spendable)
        fixed = sum(amount for _, amount in self._recipients)
        fee, vsize = self._fee_for(len(spendable), len(self._recipients) + 1)
        drained = total - fixed - fee
        if drained < DUST_LIMIT_SATS:
            raise OutputBelowDustError(
                f"After fees ({fee} sats), remaining amount ({drained} sats) is dust."
            )
        return DraftTransaction(
            inputs=[u.outpoint for u in spendable],
            outputs=[*self._recipients, (self._drain_to, drained)],
            fee_sats=fee,
            vsize=vsize,
        )

    def _finish_fixed(self, spendable: list[Utxo]) -> DraftTransaction:
        target = sum(amount for _, amount in self._recipients)
        change_address = self._drain_to or self._account.address
        ordered = sorted(spendable, key=lambda u: u.value, reverse=True)
        num_outputs = len(self._recipients)

        selected_sum = 0
        for n, utxo in enumerate(ordered, start=1):
            selected_sum += utxo.value
            fee_no_change, vsize_no_change = self._fee_for(n, num_outputs)
            if selected_sum < target + fee_no_change:
                continue
            inputs = [u.outpoint for u in ordered[:n]]
            fee_change, vsize_change = self._fee_for(n, num_outputs + 1)
            change = selected_sum - target - fee_change
            if change >= DUST_LIMIT_SATS:
                return DraftTransaction(
                    inputs=inputs,
                    outputs=[*self._recipients, (change_address, change)],
                    fee_sats=fee_change,
                    vsize=vsize_change,
                )
            return DraftTransaction(
                inputs=inputs,
                outputs=list(self._recipients),
                fee_sats=selected_sum - target,
                vsize=vsize_no_change,
            )

        available = sum(u.value for u in ordered)
        fee_all, _ = self._fee_for(max(len(ordered), 1), num_outputs)
        raise InsufficientFundsError(
            f"Insufficient funds: {available} sats available, "
            f"{target + fee_all} sats needed (amount + fee)."
        )
