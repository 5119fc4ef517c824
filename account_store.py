"""
Account repository for the send flow.

Accounts are watch-only: receive addresses derived from a BIP-39 mnemonic
(BIP-84 native SegWit and BIP-86 taproot, account 0, index 0) plus any extra
watch addresses. UTXOs are loaded from Esplora on every lookup so balances are
always current.

Outpoints holding inscriptions are reported as frozen so that fee estimation
and drafts never spend them as plain sats.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import requests
from bip_utils import (
    Bip39MnemonicValidator,
    Bip39SeedGenerator,
    Bip44Changes,
    Bip84,
    Bip84Coins,
    Bip86,
    Bip86Coins,
    P2TRAddrEncoder,
    P2WPKHAddrEncoder,
)

from chain_client import EsploraChainClient
from esplora_wallet import Utxo, WalletAccount, parse_address
from send_flow_config import SendFlowConfig, SendFlowConfigError

HIRO_ORDINALS_URLS: dict[str, str] = {
    "bitcoin": "https://api.hiro.so",
    "testnet": "https://api.testnet.hiro.so",
}

_SEGWIT_HRP = {
    "bitcoin": "bc",
    "testnet": "tb",
    "testnet4": "tb",
    "signet": "tb",
    "regtest": "bcrt",
}

# Hiro caps page size at 60.
_INSCRIPTIONS_PAGE = 60


@dataclass(frozen=True)
class AccountInfo:
    id: str
    address: str
    address_type: str
    derivation_path: str = ""


def derive_accounts(mnemonic: str, network: str, passphrase: str = "") -> list[AccountInfo]:
    """
    Derive the BIP-84 (p2wpkh) and BIP-86 (p2tr) receive addresses of account 0.
    """
    try:
        Bip39MnemonicValidator().Validate(mnemonic)
    except Exception as exc:  # noqa: BLE001
        raise SendFlowConfigError(
            "BTC_MNEMONIC is not a valid BIP-39 seed phrase. "
            "Double-check words and spacing."
        ) from exc

    seed_bytes = Bip39SeedGenerator(mnemonic).Generate(passphrase)
    mainnet = network == "bitcoin"
    coin_type = 0 if mainnet else 1
    hrp = _SEGWIT_HRP[network]

    ctx84 = (
        Bip84.FromSeed(seed_bytes, Bip84Coins.BITCOIN if mainnet else Bip84Coins.BITCOIN_TESTNET)
        .Purpose()
        .Coin()
        .Account(0)
        .Change(Bip44Changes.CHAIN_EXT)
        .AddressIndex(0)
    )
    ctx86 = (
        Bip86.FromSeed(seed_bytes, Bip86Coins.BITCOIN if mainnet else Bip86Coins.BITCOIN_TESTNET)
        .Purpose()
        .Coin()
        .Account(0)
        .Change(Bip44Changes.CHAIN_EXT)
        .AddressIndex(0)
    )

    return [
        AccountInfo(
            id="bip84_p2wpkh_0",
            address=P2WPKHAddrEncoder.EncodeKey(
                ctx84.PublicKey().RawCompressed().ToBytes(), hrp=hrp, wit_ver=0
            ),
            address_type="p2wpkh",
            derivation_path=f"m/84'/{coin_type}'/0'/0/0",
        ),
        AccountInfo(
            id="bip86_p2tr_0",
            address=P2TRAddrEncoder.EncodeKey(
                ctx86.PublicKey().RawCompressed().ToBytes(), hrp=hrp
            ),
            address_type="p2tr",
            derivation_path=f"m/86'/{coin_type}'/0'/0/0",
        ),
    ]


def guess_address_type(address: str) -> str:
    lower = address.lower()
    for hrp in set(_SEGWIT_HRP.values()):
        if lower.startswith(hrp + "1p"):
            return "p2tr"
        if lower.startswith(hrp + "1q"):
            return "p2wpkh"
    if address[:1] in ("3", "2"):
        return "p2sh-p2wpkh"
    return "p2pkh"


class AccountStore:
    def __init__(
        self,
        accounts: list[AccountInfo],
        network: str,
        chain: EsploraChainClient,
        ordinals_url: str | None = None,
        timeout: float = 10,
    ) -> None:
        self._accounts = {a.id: a for a in accounts}
        self._network = network
        self._chain = chain
        self._ordinals_url = ordinals_url or HIRO_ORDINALS_URLS.get(network)
        self._timeout = timeout

    @classmethod
    def from_config(cls, cfg: SendFlowConfig, chain: EsploraChainClient) -> AccountStore:
        accounts: list[AccountInfo] = []
        if cfg.mnemonic:
            accounts.extend(derive_accounts(cfg.mnemonic, cfg.network, cfg.mnemonic_passphrase))
        for n, raw in enumerate(cfg.watch_addresses):
            try:
                address = parse_address(raw, cfg.network)
            except Exception as exc:  # noqa: BLE001
                raise SendFlowConfigError(
                    f"Invalid SEND_FLOW_WATCH_ADDRESSES entry {raw!r}: {exc}"
                ) from exc
            accounts.append(
                AccountInfo(id=f"watch_{n}", address=address, address_type=guess_address_type(address))
            )
        return cls(accounts, cfg.network, chain, ordinals_url=cfg.ordinals_api_url)

    @property
    def network(self) -> str:
        return self._network

    def list_accounts(self) -> list[dict[str, str]]:
        return [
            {
                "id": a.id,
                "address": a.address,
                "address_type": a.address_type,
                "derivation_path": a.derivation_path,
                "network": self._network,
            }
            for a in self._accounts.values()
        ]

    def get(self, account_id: str) -> WalletAccount | None:
        info = self._accounts.get(account_id)
        if info is None:
            return None
        raw_utxos = self._chain.fetch_utxos(info.address, self._network)
        return WalletAccount(
            id=info.id,
            address=info.address,
            network=self._network,
            address_type=info.address_type,
            utxos=[Utxo.from_esplora(u) for u in raw_utxos],
        )

    def frozen_outpoints(self, account_id: str) -> set[str]:
        """
        Outpoints ("txid:vout") of this account that carry inscriptions.

        Networks without an ordinals index have nothing to freeze. Lookup
        failures raise: spending an inscription by accident is not recoverable.
        """
        info = self._accounts.get(account_id)
        if info is None or not self._ordinals_url:
            return set()

        frozen: set[str] = set()
        offset = 0
        while True:
            data = self._ord_get(
                "/ordinals/v1/inscriptions",
                params={"address": info.address, "offset": offset, "limit": _INSCRIPTIONS_PAGE},
            )
            results = data.get("results", []) or []
            for r in results:
                output = str(r.get("output", ""))
                if ":" in output:
                    frozen.add(output)
            offset += len(results)
            if not results or offset >= int(data.get("total", 0) or 0):
                return frozen

    def _ord_get(self, path: str, params: dict | None = None) -> Any:
        """GET request to the Hiro Ordinals API."""
        resp = requests.get(f"{self._ordinals_url}{path}", params=params, timeout=self._timeout)
        resp.raise_for_status()
        return resp.json()
