import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(REPO_ROOT))

import account_store  # noqa: E402
from account_store import AccountInfo, AccountStore, derive_accounts, guess_address_type  # noqa: E402
from send_flow_config import SendFlowConfig, SendFlowConfigError  # noqa: E402

MNEMONIC = (
    "abandon abandon abandon abandon abandon abandon "
    "abandon abandon abandon abandon abandon about"
)
WATCH = "tb1qw508d6qejxtdg4y5r3zarvary0c5xw7kxpjzsx"


class DummyResponse:
    def __init__(self, payload):
        self._payload = payload

    def raise_for_status(self):
        return None

    def json(self):
        return self._payload


class DummyChain:
    def __init__(self, utxos=None):
        self.utxos = utxos or []
        self.requests = []

    def fetch_utxos(self, address, network):
        self.requests.append((address, network))
        return list(self.utxos)


# ---------------------------------------------------------------------------
# Derivation
# ---------------------------------------------------------------------------


def test_derive_mainnet_accounts_match_bip_vectors():
    accounts = derive_accounts(MNEMONIC, "bitcoin")
    by_id = {a.id: a for a in accounts}

    assert by_id["bip84_p2wpkh_0"].address == "bc1qcr8te4kr609gcawutmrza0j4xv80jy8z306fyu"
    assert by_id["bip84_p2wpkh_0"].derivation_path == "m/84'/0'/0'/0/0"
    assert by_id["bip86_p2tr_0"].address == (
        "bc1p5cyxnuxmeuwuvkwfem96lqzszd02n6xdcjrs20cac6yqjjwudpxqkedrcr"
    )
    assert by_id["bip86_p2tr_0"].address_type == "p2tr"


def test_derive_testnet_accounts_use_testnet_hrp():
    accounts = derive_accounts(MNEMONIC, "signet")
    assert all(a.address.startswith("tb1") for a in accounts)
    assert accounts[0].derivation_path == "m/84'/1'/0'/0/0"


def test_derive_rejects_invalid_mnemonic():
    with pytest.raises(SendFlowConfigError):
        derive_accounts("not a seed phrase", "bitcoin")


@pytest.mark.parametrize(
    "address,expected",
    [
        ("bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4", "p2wpkh"),
        ("tb1p0xlxvlhemja6c4dqv22uapctqupfhlxm9h8z3k2e72q4k9hcz7vq5zuyut", "p2tr"),
        ("3J98t1WpEZ73CNmQviecrnyiWrnqRhWNLy", "p2sh-p2wpkh"),
        ("1BvBMSEYstWetqTFn5Au4m4GFg7xJaNVN2", "p2pkh"),
    ],
)
def test_guess_address_type(address, expected):
    assert guess_address_type(address) == expected


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


def test_from_config_combines_mnemonic_and_watch_addresses():
    cfg = SendFlowConfig(network="testnet", mnemonic=MNEMONIC, watch_addresses=[WATCH])
    store = AccountStore.from_config(cfg, DummyChain())
    ids = [a["id"] for a in store.list_accounts()]

    assert ids == ["bip84_p2wpkh_0", "bip86_p2tr_0", "watch_0"]
    assert store.network == "testnet"
    assert store.list_accounts()[2]["address"] == WATCH


def test_from_config_rejects_watch_address_of_other_network():
    cfg = SendFlowConfig(
        network="bitcoin", watch_addresses=["tb1qw508d6qejxtdg4y5r3zarvary0c5xw7kxpjzsx"]
    )
    with pytest.raises(SendFlowConfigError):
        AccountStore.from_config(cfg, DummyChain())


def test_get_loads_utxos_into_wallet_account():
    chain = DummyChain(
        [
            {"txid": "aa" * 32, "vout": 0, "value": 12000, "status": {"confirmed": True}},
            {"txid": "bb" * 32, "vout": 1, "value": 3000, "status": {"confirmed": False}},
        ]
    )
    store = AccountStore([AccountInfo("watch_0", WATCH, "p2wpkh")], "testnet", chain)

    account = store.get("watch_0")
    assert account.balance == 12000
    assert account.network == "testnet"
    assert chain.requests == [(WATCH, "testnet")]
    assert store.get("missing") is None


def test_frozen_outpoints_pages_through_inscriptions(monkeypatch):
    pages = [
        {"total": 3, "results": [{"output": "aa:0"}, {"output": "bb:1"}]},
        {"total": 3, "results": [{"output": "cc:2"}]},
    ]
    seen = []

    def fake_get(url, params=None, timeout=None):
        seen.append((url, dict(params)))
        return DummyResponse(pages[len(seen) - 1])

    monkeypatch.setattr(account_store.requests, "get", fake_get)
    store = AccountStore([AccountInfo("watch_0", WATCH, "p2wpkh")], "testnet", DummyChain())

    assert store.frozen_outpoints("watch_0") == {"aa:0", "bb:1", "cc:2"}
    assert seen[0][0] == "https://api.testnet.hiro.so/ordinals/v1/inscriptions"
    assert seen[0][1]["address"] == WATCH
    assert [p["offset"] for _, p in seen] == [0, 2]


def test_frozen_outpoints_empty_without_ordinals_index(monkeypatch):
    def fail_get(*_args, **_kwargs):
        raise AssertionError("no HTTP expected")

    monkeypatch.setattr(account_store.requests, "get", fail_get)
    store = AccountStore([AccountInfo("watch_0", WATCH, "p2wpkh")], "signet", DummyChain())
    assert store.frozen_outpoints("watch_0") == set()
