from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from send_flow_types import NETWORKS

PROJECT_ROOT = Path(__file__).resolve().parent
load_dotenv(PROJECT_ROOT / ".env")


class SendFlowConfigError(Exception):
    """Invalid or missing send flow configuration."""

    pass


@dataclass
class SendFlowConfig:
    """
    Configuration for the send flow service.

    Values are sourced from environment variables or a .env file.

    Accounts:
    - BTC_MNEMONIC: BIP-39 seed phrase; BIP-84 and BIP-86 account 0 receive
      addresses are derived from it (no private key leaves derivation).
    - BTC_MNEMONIC_PASSPHRASE: Optional BIP-39 passphrase used with BTC_MNEMONIC.
    - SEND_FLOW_WATCH_ADDRESSES: comma separated watch-only addresses.

    Network and rates:
    - BTC_NETWORK: bitcoin (alias mainnet), testnet, testnet4, signet, regtest.
    - SEND_FLOW_TARGET_BLOCKS: confirmation target used to pick a fee estimate.
    - SEND_FLOW_FALLBACK_FEE_RATE: sat/vB used until (or unless) estimates load.
    - SEND_FLOW_REFRESH_INTERVAL_SECONDS: delay between background refreshes.
    - PRICE_API_URL / ORDINALS_API_URL: API base overrides.

    Preferences:
    - SEND_FLOW_LOCALE, SEND_FLOW_FIAT_CURRENCY, LOG_LEVEL.
    """

    network: str
    mnemonic: str | None = None
    mnemonic_passphrase: str = ""
    watch_addresses: list[str] = field(default_factory=list)
    target_blocks_confirmation: int = 1
    fallback_fee_rate: float = 5.0
    refresh_interval_seconds: float = 20.0
    locale: str = "en"
    fiat_currency: str = "usd"
    price_api_url: str | None = None
    ordinals_api_url: str | None = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> SendFlowConfig:
        raw_network = os.getenv("BTC_NETWORK", "bitcoin").strip().lower()
        network = "bitcoin" if raw_network == "mainnet" else raw_network
        if network not in NETWORKS:
            raise SendFlowConfigError(
                f"Invalid BTC_NETWORK={raw_network!r}. Expected one of: "
                f"mainnet, {', '.join(NETWORKS)}."
            )

        mnemonic = os.getenv("BTC_MNEMONIC", "").strip() or None
        watch_raw = os.getenv("SEND_FLOW_WATCH_ADDRESSES", "")
        watch_addresses = [a.strip() for a in watch_raw.split(",") if a.strip()]
        if not mnemonic and not watch_addresses:
            raise SendFlowConfigError(
                "No accounts configured. Set BTC_MNEMONIC (BIP-39 seed phrase) or "
                "SEND_FLOW_WATCH_ADDRESSES in your environment or .env file."
            )

        target_blocks = _env_number("SEND_FLOW_TARGET_BLOCKS", 1, int)
        fallback_fee_rate = _env_number("SEND_FLOW_FALLBACK_FEE_RATE", 5.0, float)
        refresh_interval = _env_number("SEND_FLOW_REFRESH_INTERVAL_SECONDS", 20.0, float)
        if target_blocks < 1:
            raise SendFlowConfigError("SEND_FLOW_TARGET_BLOCKS must be at least 1.")
        if fallback_fee_rate <= 0:
            raise SendFlowConfigError("SEND_FLOW_FALLBACK_FEE_RATE must be greater than zero.")
        if refresh_interval <= 0:
            raise SendFlowConfigError(
                "SEND_FLOW_REFRESH_INTERVAL_SECONDS must be greater than zero."
            )

        return cls(
            network=network,
            mnemonic=mnemonic,
            mnemonic_passphrase=os.getenv("BTC_MNEMONIC_PASSPHRASE", ""),
            watch_addresses=watch_addresses,
            target_blocks_confirmation=target_blocks,
            fallback_fee_rate=fallback_fee_rate,
            refresh_interval_seconds=refresh_interval,
            locale=os.getenv("SEND_FLOW_LOCALE", "en").strip() or "en",
            fiat_currency=os.getenv("SEND_FLOW_FIAT_CURRENCY", "usd").strip().lower() or "usd",
            price_api_url=os.getenv("PRICE_API_URL", "").strip() or None,
            ordinals_api_url=os.getenv("ORDINALS_API_URL", "").strip() or None,
            log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
        )


def _env_number(name: str, default, cast):
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return cast(raw.strip())
    except ValueError as exc:
        raise SendFlowConfigError(f"Invalid {name}={raw!r}.") from exc
