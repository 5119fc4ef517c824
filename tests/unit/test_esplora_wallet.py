import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(REPO_ROOT))

from esplora_wallet import (  # noqa: E402
    DUST_LIMIT_SATS,
    InsufficientFundsError,
    InvalidAddressError,
    OutputBelowDustError,
    TransactionBuildError,
    Utxo,
    WalletAccount,
    parse_address,
)

MAINNET_P2WPKH = "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4"
MAINNET_P2TR = "bc1p0xlxvlhemja6c4dqv22uapctqupfhlxm9h8z3k2e72q4k9hcz7vqzk5jj0"
MAINNET_P2PKH = "1BvBMSEYstWetqTFn5Au4m4GFg7xJaNVN2"
TESTNET_P2WPKH = "tb1qw508d6qejxtdg4y5r3zarvary0c5xw7kxpjzsx"
SENDER = "tb1p0xlxvlhemja6c4dqv22uapctqupfhlxm9h8z3k2e72q4k9hcz7vq5zuyut"


def _account(*values, address_type="p2wpkh", confirmed=True):
    utxos = [Utxo(f"{n:064x}", n, v, confirmed) for n, v in enumerate(values)]
    return WalletAccount(
        id="acct_0",
        address=SENDER,
        network="testnet",
        address_type=address_type,
        utxos=utxos,
    )


# ---------------------------------------------------------------------------
# Address parsing
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("address", [MAINNET_P2WPKH, MAINNET_P2TR, MAINNET_P2PKH])
def test_parse_mainnet_addresses(address):
    assert parse_address(address, "bitcoin") == address


def test_parse_bech32_is_case_insensitive():
    assert parse_address(MAINNET_P2WPKH.upper(), "bitcoin") == MAINNET_P2WPKH


def test_parse_testnet_address_on_signet():
    assert parse_address(TESTNET_P2WPKH, "signet") == TESTNET_P2WPKH


@pytest.mark.parametrize(
    "address,network",
    [
        ("bad-address", "testnet"),
        ("", "bitcoin"),
        (MAINNET_P2WPKH, "testnet"),
        (TESTNET_P2WPKH, "bitcoin"),
        (MAINNET_P2PKH, "regtest"),
        (MAINNET_P2WPKH[:-1] + "5", "bitcoin"),
    ],
)
def test_parse_rejects_invalid_addresses(address, network):
    with pytest.raises(InvalidAddressError):
        parse_address(address, network)


def test_parse_rejects_unknown_network():
    with pytest.raises(InvalidAddressError):
        parse_address(MAINNET_P2WPKH, "liquid")


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


def test_utxo_from_esplora_payload():
    utxo = Utxo.from_esplora(
        {"txid": "ab" * 32, "vout": 2, "value": 1500, "status": {"confirmed": True}}
    )
    assert utxo == Utxo("ab" * 32, 2, 1500, True)
    assert utxo.outpoint == "ab" * 32 + ":2"
    assert Utxo.from_esplora({"txid": "cd" * 32, "vout": 0, "value": 1}).confirmed is False


def test_balance_counts_confirmed_only():
    account = _account(10000, 5000)
    account.utxos.append(Utxo("ee" * 32, 0, 7000, False))
    assert account.balance == 15000


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


def test_fixed_amount_with_change():
    draft = (
        _account(50000, 20000)
        .build_transaction()
        .fee_rate(2)
        .add_recipient(10000, TESTNET_P2WPKH)
        .finish()
    )
    # 11 + 68 + 2 * 34 = 147 vB
    assert draft.fee() == 294
    assert draft.vsize == 147
    assert len(draft.inputs) == 1
    assert draft.outputs == [(TESTNET_P2WPKH, 10000), (SENDER, 50000 - 10000 - 294)]


def test_fixed_amount_selects_largest_first_across_inputs():
    draft = (
        _account(3000, 8000, 4000)
        .build_transaction()
        .fee_rate(1)
        .add_recipient(10000, TESTNET_P2WPKH)
        .finish()
    )
    assert draft.inputs == [f"{1:064x}:1", f"{2:064x}:2"]


def test_dust_change_goes_to_fee():
    # 11 + 68 + 34 = 113 vB; change would be 10500 - 10000 - 147 = 353 < dust
    draft = (
        _account(10500)
        .build_transaction()
        .fee_rate(1)
        .add_recipient(10000, TESTNET_P2WPKH)
        .finish()
    )
    assert draft.fee() == 500
    assert draft.outputs == [(TESTNET_P2WPKH, 10000)]


def test_insufficient_funds():
    builder = _account(5000).build_transaction().fee_rate(1).add_recipient(5000, TESTNET_P2WPKH)
    with pytest.raises(InsufficientFundsError):
        builder.finish()


def test_unconfirmed_and_excluded_outputs_are_not_spent():
    account = _account(8000, 9000)
    account.utxos.append(Utxo("ee" * 32, 0, 50000, False))
    builder = (
        account.build_transaction()
        .fee_rate(1)
        .exclude_outpoints({f"{1:064x}:1"})
        .add_recipient(8500, TESTNET_P2WPKH)
    )
    with pytest.raises(InsufficientFundsError):
        builder.finish()


def test_recipient_below_dust_is_rejected():
    with pytest.raises(OutputBelowDustError):
        _account(50000).build_transaction().add_recipient(DUST_LIMIT_SATS - 1, TESTNET_P2WPKH)


def test_recipient_address_is_validated():
    with pytest.raises(InvalidAddressError):
        _account(50000).build_transaction().add_recipient(1000, MAINNET_P2WPKH)


@pytest.mark.parametrize("rate", [0, -1, float("nan"), float("inf")])
def test_invalid_fee_rate(rate):
    with pytest.raises(TransactionBuildError):
        _account(50000).build_transaction().fee_rate(rate)


def test_no_recipients():
    with pytest.raises(TransactionBuildError):
        _account(50000).build_transaction().finish()


def test_drain_spends_everything():
    draft = (
        _account(15000, 5000, address_type="p2tr")
        .build_transaction()
        .fee_rate(1.5)
        .drain_wallet()
        .drain_to(TESTNET_P2WPKH)
        .finish()
    )
    # 11 + 2 * 58 + 34 = 161 vB; ceil(161 * 1.5) = 242
    assert draft.fee() == 242
    assert draft.outputs == [(TESTNET_P2WPKH, 20000 - 242)]
    assert len(draft.inputs) == 2


def test_drain_requires_address():
    with pytest.raises(TransactionBuildError):
        _account(15000).build_transaction().drain_wallet().finish()


def test_drain_of_dust_balance_fails():
    builder = _account(600).build_transaction().fee_rate(2).drain_wallet().drain_to(TESTNET_P2WPKH)
    with pytest.raises(OutputBelowDustError):
        builder.finish()


def test_drain_with_nothing_spendable():
    builder = _account().build_transaction().drain_wallet().drain_to(TESTNET_P2WPKH)
    with pytest.raises(InsufficientFundsError):
        builder.finish()
