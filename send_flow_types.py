"""
Data model for the Bitcoin send flow.

Form and Review contexts are what the interface host persists between events.
They serialize to JSON-compatible dicts; satoshi quantities (balance, amount,
fee) travel as decimal strings so nothing is lost to float or 64-bit limits.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Literal, Protocol

Network = Literal["bitcoin", "testnet", "testnet4", "signet", "regtest"]

NETWORKS: tuple[str, ...] = ("bitcoin", "testnet", "testnet4", "signet", "regtest")

# Fiat pricing is only meaningful for real bitcoin.
FIAT_PRICED_NETWORK = "bitcoin"

SATS_PER_BTC = 100_000_000
MAX_MONEY_SATS = 21_000_000 * SATS_PER_BTC

FORM_SCREEN = "send_form"
REVIEW_SCREEN = "review_transaction"


class CurrencyUnit(str, Enum):
    BITCOIN = "BTC"
    TESTNET = "tBTC"
    SIGNET = "sBTC"
    REGTEST = "rBTC"


NETWORK_TO_CURRENCY: dict[str, CurrencyUnit] = {
    "bitcoin": CurrencyUnit.BITCOIN,
    "testnet": CurrencyUnit.TESTNET,
    "testnet4": CurrencyUnit.TESTNET,
    "signet": CurrencyUnit.SIGNET,
    "regtest": CurrencyUnit.REGTEST,
}


class FormEvent(str, Enum):
    AMOUNT = "amount"
    RECIPIENT = "recipient"
    CLEAR_RECIPIENT = "clearRecipient"
    CLEAR_AMOUNT = "clearAmount"
    CONFIRM = "confirm"
    CANCEL = "cancel"
    SET_MAX = "max"
    ACCOUNT = "account"
    ASSET = "asset"
    REFRESH_RATES = "refreshRates"


class ReviewEvent(str, Enum):
    SEND = "send"
    HEADER_BACK = "headerBack"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class SendFlowError(Exception):
    """Base class for send flow failures that reach the caller."""


class AccountNotFoundError(SendFlowError):
    pass


class UserCancelledError(SendFlowError):
    """The interface was resolved without a transaction request."""


class InconsistentStateError(SendFlowError):
    """The persisted context does not allow the requested transition."""


class UnrecognizedEventError(SendFlowError):
    pass


class InvalidAmountError(ValueError):
    pass


class InterfaceNotFoundError(LookupError):
    """The interface was resolved or never existed."""


# ---------------------------------------------------------------------------
# Contexts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccountRef:
    id: str
    address: str


@dataclass(frozen=True)
class ExchangeRate:
    currency: str
    conversion_rate: float
    conversion_date: int

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExchangeRate:
        return cls(
            currency=str(data["currency"]),
            conversion_rate=float(data["conversion_rate"]),
            conversion_date=int(data["conversion_date"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "currency": self.currency,
            "conversion_rate": self.conversion_rate,
            "conversion_date": self.conversion_date,
        }


@dataclass(frozen=True)
class FormErrors:
    recipient: str | None = None
    amount: str | None = None
    tx: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> FormErrors:
        data = data or {}
        return cls(
            recipient=data.get("recipient"),
            amount=data.get("amount"),
            tx=data.get("tx"),
        )

    def to_dict(self) -> dict[str, str]:
        out = {}
        for name in ("recipient", "amount", "tx"):
            value = getattr(self, name)
            if value is not None:
                out[name] = value
        return out


@dataclass(frozen=True)
class FormContext:
    """Persisted state of the send form screen."""

    account: AccountRef
    network: str
    currency: str
    balance: str
    fee_rate: float
    locale: str
    errors: FormErrors = field(default_factory=FormErrors)
    exchange_rate: ExchangeRate | None = None
    recipient: str | None = None
    amount: str | None = None
    fee: str | None = None
    drain: bool = False
    background_event_id: str | None = None

    def with_errors(self, **changes: str | None) -> FormContext:
        return replace(self, errors=replace(self.errors, **changes))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FormContext:
        account = data["account"]
        rate = data.get("exchange_rate")
        return cls(
            account=AccountRef(id=str(account["id"]), address=str(account["address"])),
            network=str(data["network"]),
            currency=str(data["currency"]),
            balance=str(data["balance"]),
            fee_rate=float(data["fee_rate"]),
            locale=str(data.get("locale", "en")),
            errors=FormErrors.from_dict(data.get("errors")),
            exchange_rate=ExchangeRate.from_dict(rate) if rate else None,
            recipient=data.get("recipient"),
            amount=_optional_str(data.get("amount")),
            fee=_optional_str(data.get("fee")),
            drain=bool(data.get("drain", False)),
            background_event_id=data.get("background_event_id"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "account": {"id": self.account.id, "address": self.account.address},
            "network": self.network,
            "currency": self.currency,
            "balance": self.balance,
            "fee_rate": self.fee_rate,
            "locale": self.locale,
            "errors": self.errors.to_dict(),
            "exchange_rate": self.exchange_rate.to_dict() if self.exchange_rate else None,
            "recipient": self.recipient,
            "amount": self.amount,
            "fee": self.fee,
            "drain": self.drain,
            "background_event_id": self.background_event_id,
        }


@dataclass(frozen=True)
class ReviewContext:
    """
    Persisted state of the review screen.

    send_form is the form snapshot restored on back-navigation. It is absent
    when review was entered without a form, in which case going back ends the
    flow.
    """

    from_address: str
    network: str
    currency: str
    recipient: str
    amount: str
    fee_rate: float
    fee: str
    locale: str
    explorer_url: str = ""
    exchange_rate: ExchangeRate | None = None
    send_form: FormContext | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReviewContext:
        rate = data.get("exchange_rate")
        form = data.get("send_form")
        return cls(
            from_address=str(data["from"]),
            network=str(data["network"]),
            currency=str(data["currency"]),
            recipient=str(data["recipient"]),
            amount=str(data["amount"]),
            fee_rate=float(data["fee_rate"]),
            fee=str(data["fee"]),
            locale=str(data.get("locale", "en")),
            explorer_url=str(data.get("explorer_url") or ""),
            exchange_rate=ExchangeRate.from_dict(rate) if rate else None,
            send_form=FormContext.from_dict(form) if form else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "from": self.from_address,
            "network": self.network,
            "currency": self.currency,
            "recipient": self.recipient,
            "amount": self.amount,
            "fee_rate": self.fee_rate,
            "fee": self.fee,
            "locale": self.locale,
            "explorer_url": self.explorer_url,
            "exchange_rate": self.exchange_rate.to_dict() if self.exchange_rate else None,
            "send_form": self.send_form.to_dict() if self.send_form else None,
        }


@dataclass(frozen=True)
class TransactionRequest:
    """
    Terminal value of a completed send flow.

    The draft transaction is deliberately not part of it: callers rebuild the
    draft from these fields and the current wallet state.
    """

    recipient: str
    amount: str
    fee_rate: float

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TransactionRequest:
        return cls(
            recipient=str(data["recipient"]),
            amount=str(data["amount"]),
            fee_rate=float(data["fee_rate"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"recipient": self.recipient, "amount": self.amount, "fee_rate": self.fee_rate}


@dataclass(frozen=True)
class Preferences:
    locale: str = "en"
    currency: str = "usd"


# ---------------------------------------------------------------------------
# Ports
# ---------------------------------------------------------------------------


class DraftTransaction(Protocol):
    def fee(self) -> int: ...


class TransactionBuilder(Protocol):
    def fee_rate(self, sat_per_vb: float) -> TransactionBuilder: ...
    def add_recipient(self, amount_sats: int | str, address: str) -> TransactionBuilder: ...
    def drain_wallet(self) -> TransactionBuilder: ...
    def drain_to(self, address: str) -> TransactionBuilder: ...
    def exclude_outpoints(self, outpoints: set[str]) -> TransactionBuilder: ...
    def finish(self) -> DraftTransaction: ...


class Account(Protocol):
    id: str
    address: str
    network: str

    @property
    def balance(self) -> int: ...

    def build_transaction(self) -> TransactionBuilder: ...


class AccountRepository(Protocol):
    def get(self, account_id: str) -> Account | None: ...
    def frozen_outpoints(self, account_id: str) -> set[str]: ...


class ChainPort(Protocol):
    def fee_estimates(self, network: str) -> dict[int, float]: ...
    def explorer_url(self, network: str) -> str: ...


class RatesPort(Protocol):
    def exchange_rates(self) -> dict[str, float]: ...


class InterfaceHost(Protocol):
    """Interactive surface owned by the host platform."""

    async def create_interface(self, screen: str, context: dict[str, Any]) -> str: ...
    async def update_interface(
        self, interface_id: str, screen: str, context: dict[str, Any]
    ) -> None: ...
    async def get_interface(self, interface_id: str) -> tuple[str, dict[str, Any]]: ...
    async def get_state(self, interface_id: str) -> dict[str, Any]: ...
    async def resolve_interface(self, interface_id: str, value: Any) -> None: ...
    async def display_interface(self, interface_id: str) -> Any: ...
    async def schedule_background_event(
        self, interval_seconds: float, method: str, params: dict[str, Any]
    ) -> str: ...
    async def cancel_background_event(self, event_id: str) -> None: ...
    async def get_preferences(self) -> Preferences: ...


# ---------------------------------------------------------------------------
# Amounts
# ---------------------------------------------------------------------------


def btc_to_sats(value: str) -> int:
    """
    Convert an amount typed in whole-coin units ("0.0005") to satoshis.

    Raises InvalidAmountError for anything that is not a positive amount with
    at most 8 decimal places and no larger than the 21M coin supply.
    """
    text = (value or "").strip()
    if not text:
        raise InvalidAmountError("Amount is required.")
    try:
        parsed = Decimal(text)
    except (InvalidOperation, ValueError) as exc:
        raise InvalidAmountError(f"Invalid amount {text!r}. Must be a number.") from exc
    if not parsed.is_finite():
        raise InvalidAmountError(f"Invalid amount {text!r}. Must be a number.")
    if parsed <= 0:
        raise InvalidAmountError("Amount must be greater than zero.")
    sats = parsed * SATS_PER_BTC
    if sats != sats.to_integral_value():
        raise InvalidAmountError("Amount cannot have more than 8 decimal places.")
    if sats > MAX_MONEY_SATS:
        raise InvalidAmountError("Amount exceeds the 21,000,000 BTC supply.")
    return int(sats)


def sats_to_btc(sats: int | str) -> Decimal:
    return Decimal(int(sats)) / Decimal(SATS_PER_BTC)


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)
