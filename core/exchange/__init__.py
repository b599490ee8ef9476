# Exchange adapters
# Uniform interface over exchange REST dialects (Bitfinex, Kraken, Liquid)

from .bitfinex import BitfinexExchange
from .common import (
    BookLevel,
    CancelRejectedError,
    Coin,
    CoinConstraint,
    ExchangeAdapter,
    ExchangeDefaults,
    ExchangeError,
    HttpClient,
    Maker,
    MalformedResponseError,
    MissingCredentialsError,
    Order,
    OrderNotFoundError,
    OrderRejectedError,
    OrderStatus,
    Pair,
    PairConstraint,
    Side,
    SourceMode,
    TransportError,
    ValidationError,
)
from .kraken import KrakenExchange
from .liquid import LiquidExchange

__all__ = [
    # Common primitives
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
    "HttpClient",
    "ExchangeAdapter",
    # Exchange adapters
    "BitfinexExchange",
    "KrakenExchange",
    "LiquidExchange",
]
