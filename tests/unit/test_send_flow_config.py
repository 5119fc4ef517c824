import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(REPO_ROOT))

from send_flow_config import SendFlowConfig, SendFlowConfigError  # noqa: E402

_ENV_VARS = (
    "BTC_NETWORK",
    "BTC_MNEMONIC",
    "BTC_MNEMONIC_PASSPHRASE",
    "SEND_FLOW_WATCH_ADDRESSES",
    "SEND_FLOW_TARGET_BLOCKS",
    "SEND_FLOW_FALLBACK_FEE_RATE",
    "SEND_FLOW_REFRESH_INTERVAL_SECONDS",
    "SEND_FLOW_LOCALE",
    "SEND_FLOW_FIAT_CURRENCY",
    "PRICE_API_URL",
    "ORDINALS_API_URL",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SEND_FLOW_WATCH_ADDRESSES", "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4")


def test_defaults():
    cfg = SendFlowConfig.from_env()

    assert cfg.network == "bitcoin"
    assert cfg.target_blocks_confirmation == 1
    assert cfg.fallback_fee_rate == 5.0
    assert cfg.refresh_interval_seconds == 20.0
    assert cfg.locale == "en"
    assert cfg.fiat_currency == "usd"
    assert cfg.log_level == "INFO"
    assert cfg.mnemonic is None
    assert cfg.watch_addresses == ["bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4"]


def test_mainnet_alias_and_overrides(monkeypatch):
    monkeypatch.setenv("BTC_NETWORK", "MAINNET")
    monkeypatch.setenv("SEND_FLOW_WATCH_ADDRESSES", " addr1 , ,addr2 ")
    monkeypatch.setenv("SEND_FLOW_TARGET_BLOCKS", "3")
    monkeypatch.setenv("SEND_FLOW_FALLBACK_FEE_RATE", "2.5")
    monkeypatch.setenv("SEND_FLOW_REFRESH_INTERVAL_SECONDS", "60")
    monkeypatch.setenv("SEND_FLOW_FIAT_CURRENCY", "EUR")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    cfg = SendFlowConfig.from_env()

    assert cfg.network == "bitcoin"
    assert cfg.watch_addresses == ["addr1", "addr2"]
    assert cfg.target_blocks_confirmation == 3
    assert cfg.fallback_fee_rate == 2.5
    assert cfg.refresh_interval_seconds == 60.0
    assert cfg.fiat_currency == "eur"
    assert cfg.log_level == "DEBUG"


def test_requires_accounts(monkeypatch):
    monkeypatch.delenv("SEND_FLOW_WATCH_ADDRESSES")
    with pytest.raises(SendFlowConfigError, match="No accounts configured"):
        SendFlowConfig.from_env()


def test_mnemonic_alone_is_enough(monkeypatch):
    monkeypatch.delenv("SEND_FLOW_WATCH_ADDRESSES")
    monkeypatch.setenv("BTC_MNEMONIC", "  word " * 12)
    assert SendFlowConfig.from_env().mnemonic


@pytest.mark.parametrize(
    "name,value",
    [
        ("BTC_NETWORK", "liquid"),
        ("SEND_FLOW_TARGET_BLOCKS", "0"),
        ("SEND_FLOW_TARGET_BLOCKS", "one"),
        ("SEND_FLOW_FALLBACK_FEE_RATE", "-1"),
        ("SEND_FLOW_REFRESH_INTERVAL_SECONDS", "0"),
    ],
)
def test_invalid_values(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(SendFlowConfigError):
        SendFlowConfig.from_env()
