from __future__ import annotations

"""
Exchange — Common primitives
============================

Canonical, exchange-independent types shared by every adapter:
- Errors (transport, malformed response, credentials, rejections)
- Reference data (coins, pairs) and per-exchange constraints
- Orders and order-book snapshots ("makers")
- The HTTP client protocol adapters talk through
- The abstract adapter contract every exchange implements

This module **does not** perform network I/O.
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping, Optional, Protocol

from common.decimal_utils import parse_float

if TYPE_CHECKING:
    from core.exchange.config import ExchangeConfig
    from core.exchange.registry import BalanceMap, ConstraintStore, ReferenceRegistry
    from core.exchange.signing import NonceSource

logger = logging.getLogger(__name__)


# --------------------------- Errors ---------------------------


class ExchangeError(RuntimeError):
    pass


class ValidationError(ExchangeError):
    pass


class TransportError(ExchangeError):
    """Network failure or HTTP error status."""


class MalformedResponseError(ExchangeError):
    """Unparsable payload or an application error embedded in a 200 response."""


class MissingCredentialsError(ExchangeError):
    pass


class OrderNotFoundError(ExchangeError):
    pass


class OrderRejectedError(ExchangeError):
    pass


class CancelRejectedError(ExchangeError):
    pass


# --------------------------- Enums ---------------------------


class Side(str, Enum):
    BUY = "Buy"
    SELL = "Sell"


class OrderStatus(str, Enum):
    NEW = "New"
    PARTIAL = "Partial"
    FILLED = "Filled"
    CANCELING = "Canceling"
    CANCELED = "Canceled"
    OTHER = "Other"


class SourceMode(str, Enum):
    """Where coin/pair discovery resolves reference data.

    EXCHANGE_API writes through to the live registry; JSON_FILE only reads a
    pre-seeded snapshot and never creates coins or pairs.
    """

    EXCHANGE_API = "exchange_api"
    JSON_FILE = "json_file"


# --------------------------- Reference data ---------------------------


@dataclass(frozen=True)
class Coin:
    id: int
    code: str
    name: str = ""


@dataclass(frozen=True)
class Pair:
    id: int
    base: Coin
    quote: Coin

    @property
    def key(self) -> tuple[str, str]:
        return (self.base.code, self.quote.code)

    @property
    def symbol(self) -> str:
        return f"{self.base.code}/{self.quote.code}"


@dataclass(frozen=True)
class CoinConstraint:
    exchange: str
    coin: Coin
    ex_symbol: str
    tx_fee: float
    withdraw: bool
    deposit: bool
    confirmation: int
    listed: bool

    @property
    def coin_id(self) -> int:
        return self.coin.id


@dataclass(frozen=True)
class PairConstraint:
    exchange: str
    pair: Pair
    ex_symbol: str
    maker_fee: float
    taker_fee: float
    lot_size: float
    price_filter: float
    listed: bool

    @property
    def pair_id(self) -> int:
        return self.pair.id


@dataclass(frozen=True)
class ExchangeDefaults:
    """Per-exchange fallbacks used when the exchange does not publish a value."""

    maker_fee: float
    taker_fee: float
    lot_size: float
    price_filter: float
    tx_fee: float = 0.0
    withdraw: bool = True
    deposit: bool = True
    confirmation: int = 2
    listed: bool = True


# --------------------------- Orders & books ---------------------------


@dataclass
class Order:
    pair: Pair
    side: Side
    rate: float
    quantity: float
    order_id: str = ""
    exchange: str = ""
    status: OrderStatus = OrderStatus.NEW
    deal_rate: float = 0.0
    deal_quantity: float = 0.0
    raw: str = ""
    cancel_raw: Optional[str] = None
    status_raw: Optional[str] = None

    @property
    def remaining(self) -> float:
        return max(0.0, self.quantity - self.deal_quantity)


@dataclass(frozen=True)
class BookLevel:
    rate: float
    quantity: float


@dataclass(frozen=True)
class Maker:
    """Point-in-time order-book snapshot.

    Timestamps are epoch milliseconds taken right before and after the
    network call. Level order is whatever the adapter supplied.
    """

    bids: tuple[BookLevel, ...]
    asks: tuple[BookLevel, ...]
    before_timestamp: float
    after_timestamp: float
    worker_ip: str = ""

    @property
    def best_bid(self) -> Optional[BookLevel]:
        return self.bids[0] if self.bids else None

    @property
    def best_ask(self) -> Optional[BookLevel]:
        return self.asks[0] if self.asks else None

    @property
    def latency_ms(self) -> float:
        return self.after_timestamp - self.before_timestamp


def now_ms() -> float:
    return float(time.time_ns() // 1_000_000)


def load_json(exchange: str, operation: str, text: str) -> Any:
    try:
        return json.loads(text)
    except (TypeError, ValueError) as e:
        raise MalformedResponseError(f"{exchange} {operation} unmarshal error: {e} {text[:200]!r}") from e


def parse_levels(exchange: str, side: str, rows, *, rate_at=0, qty_at=1) -> tuple[BookLevel, ...]:
    """Parse a list of price levels; one bad entry fails the whole list.

    ``rows`` items are either sequences (indexed by ``rate_at``/``qty_at``)
    or mappings (keyed by them).
    """
    levels = []
    for i, row in enumerate(rows or ()):
        try:
            rate = parse_float(row[rate_at])
            qty = parse_float(row[qty_at])
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise MalformedResponseError(
                f"{exchange} OrderBook {side}[{i}] parse error: {e} ({row!r})"
            ) from e
        levels.append(BookLevel(rate=rate, quantity=qty))
    return tuple(levels)


# --------------------------- HTTP Protocol ---------------------------


class HttpClient(Protocol):
    def request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Mapping[str, object]] = None,
        headers: Optional[Mapping[str, str]] = None,
        body: Optional[str] = None,
    ) -> str: ...

    def get(self, url: str, params: Optional[Mapping[str, object]] = None) -> str: ...

    def external_ip(self) -> str: ...


# --------------------------- Adapter contract ---------------------------


class ExchangeAdapter(ABC):
    """Contract every exchange adapter satisfies.

    Only plumbing lives here (collaborators, credential check). Operation
    bodies are per exchange: symbol matching and fee derivation differ too
    much for shared defaults.
    """

    name: str = "abstract"
    nonce_divisor: int = 1

    def __init__(
        self,
        config: "ExchangeConfig",
        *,
        http: HttpClient,
        registry: "ReferenceRegistry",
        constraints: "ConstraintStore",
        balances: "BalanceMap",
        nonce: "NonceSource",
    ) -> None:
        self.config = config
        self._http = http
        self.registry = registry
        self.constraints = constraints
        self.balances = balances
        self._nonce = nonce

    @property
    def source(self) -> SourceMode:
        return self.config.settings.source

    def has_credentials(self) -> bool:
        creds = self.config.credentials
        return bool(creds.api_key) and bool(creds.api_secret)

    def require_credentials(self, operation: str) -> None:
        if not self.has_credentials():
            raise MissingCredentialsError(f"{self.name} {operation}: API Key or Secret Key are nil")

    # ---- reference data ----
    @abstractmethod
    def get_coins_data(self) -> None: ...

    @abstractmethod
    def get_pairs_data(self) -> None: ...

    # ---- market data ----
    @abstractmethod
    def order_book(self, pair: Pair) -> Maker: ...

    # ---- account ----
    @abstractmethod
    def update_all_balances(self) -> None: ...

    @abstractmethod
    def withdraw(self, coin: Coin, quantity: float, address: str, tag: str = "") -> bool: ...

    # ---- orders ----
    @abstractmethod
    def limit_buy(self, pair: Pair, quantity: float, rate: float) -> Order: ...

    @abstractmethod
    def limit_sell(self, pair: Pair, quantity: float, rate: float) -> Order: ...

    @abstractmethod
    def order_status(self, order: Order) -> None: ...

    @abstractmethod
    def list_orders(self) -> list[Order]: ...

    @abstractmethod
    def cancel_order(self, order: Order) -> None: ...

    @abstractmethod
    def cancel_all_orders(self) -> None: ...


__all__ = [
    "ExchangeError",
    "ValidationError",
    "TransportError",
    "MalformedResponseError",
    "MissingCredentialsError",
    "OrderNotFoundError",
    "OrderRejectedError",
    "CancelRejectedError",
    "Side",
    "OrderStatus",
    "SourceMode",
    "Coin",
    "Pair",
    "CoinConstraint",
    "PairConstraint",
    "ExchangeDefaults",
    "Order",
    "BookLevel",
    "Maker",
    "now_ms",
    "load_json",
    "parse_levels",
    "HttpClient",
    "ExchangeAdapter",
]
