from __future__ import annotations

"""
Exchange Adapter — Kraken
=========================

Kraken REST dialect. Every response is wrapped in an envelope::

    {"error": ["EGeneral:..."], "result": {...}}

A non-empty ``error`` list is an application error even on HTTP 200.

Private endpoints are GET requests signed with the query-HMAC scheme: the
``apikey``/``nonce`` params are appended to the query string and the full URL
is signed into the ``apisign`` header.
"""

import logging
from typing import Any, Optional, Type

from common.decimal_utils import parse_float, str_decimal
from core.exchange.common import (
    CancelRejectedError,
    Coin,
    CoinConstraint,
    ExchangeAdapter,
    ExchangeDefaults,
    ExchangeError,
    MalformedResponseError,
    Maker,
    Order,
    OrderNotFoundError,
    OrderRejectedError,
    OrderStatus,
    Pair,
    PairConstraint,
    Side,
    SourceMode,
    ValidationError,
    load_json,
    now_ms,
    parse_levels,
)
from core.exchange.error_handling import best_effort, exchange_operation_context
from core.exchange.lifecycle import apply_status, mark_canceling, resolve_status
from core.exchange.signing import SigningScheme, make_signer

logger = logging.getLogger(__name__)

DEFAULTS = ExchangeDefaults(
    maker_fee=0.001,
    taker_fee=0.001,
    lot_size=0.0001,
    price_filter=1e-8,
    tx_fee=0.0,
    confirmation=2,
)

BOOK_DEPTH = 100

# QueryOrders errors meaning the txid does not resolve to an order of this account
ORDER_NOT_FOUND_ERRORS = ("EOrder:Unknown order", "EOrder:Invalid order")


class KrakenExchange(ExchangeAdapter):
    name = "kraken"

    def __init__(self, config, **collaborators) -> None:
        super().__init__(config, **collaborators)
        self._base = config.settings.base_url.rstrip("/")
        self._signer = make_signer(SigningScheme.QUERY_HMAC, config.credentials, self._nonce)

    # ------------- transport -------------

    def _public(self, path: str, params: Optional[dict[str, Any]] = None) -> str:
        return self._http.get(self._base + path, params)

    def _private(self, path: str, params: Optional[dict[str, Any]] = None) -> str:
        signed = self._signer.sign("GET", self._base, path, params or {})
        headers = {"Content-Type": "application/json;charset=utf-8", "Accept": "application/json", **signed.headers}
        return self._http.request(signed.method, signed.url, headers=headers)

    def _result(self, operation: str, text: str, error_cls: Type[ExchangeError] = MalformedResponseError) -> Any:
        data = load_json(self.name, operation, text)
        if not isinstance(data, dict):
            raise MalformedResponseError(f"{self.name} {operation} unexpected payload: {text[:200]}")
        errors = data.get("error") or []
        if errors:
            raise error_cls(f"{self.name} {operation} failed: {errors}")
        if "result" not in data:
            raise MalformedResponseError(f"{self.name} {operation} missing result: {text[:200]}")
        return data["result"]

    # ------------- reference data -------------

    def get_coins_data(self) -> None:
        with best_effort(self.name, "get_coins_data"):
            assets = self._result("GetCoinsData", self._public("/public/Assets"))
            for key, data in assets.items():
                if self.source == SourceMode.EXCHANGE_API:
                    coin = self.registry.get_or_create_coin(data.get("altname") or key)
                else:
                    coin = self.constraints.coin_by_symbol(self.name, key)
                if coin is None:
                    continue
                self.constraints.set_coin_constraint(
                    CoinConstraint(
                        exchange=self.name,
                        coin=coin,
                        ex_symbol=key,
                        tx_fee=DEFAULTS.tx_fee,
                        withdraw=DEFAULTS.withdraw,
                        deposit=DEFAULTS.deposit,
                        confirmation=DEFAULTS.confirmation,
                        listed=DEFAULTS.listed,
                    )
                )

    @staticmethod
    def _first_tier_fee(tiers: Any, default: float) -> float:
        # tiers are [[volume, percent], ...]
        try:
            return parse_float(tiers[0][1]) / 100.0
        except (IndexError, KeyError, TypeError, ValueError):
            return default

    @staticmethod
    def _decimals(value: Any, default: float) -> float:
        try:
            return 10.0 ** -int(value)
        except (TypeError, ValueError):
            return default

    def get_pairs_data(self) -> None:
        with best_effort(self.name, "get_pairs_data"):
            pairs = self._result("GetPairsData", self._public("/public/AssetPairs"))
            for key, data in pairs.items():
                if "." in key:
                    # dark pool books (e.g. XXBTZUSD.d)
                    continue
                pair = self._resolve_pair(key, data)
                if pair is None:
                    continue
                self.constraints.set_pair_constraint(
                    PairConstraint(
                        exchange=self.name,
                        pair=pair,
                        ex_symbol=key,
                        maker_fee=self._first_tier_fee(data.get("fees_maker"), DEFAULTS.maker_fee),
                        taker_fee=self._first_tier_fee(data.get("fees"), DEFAULTS.taker_fee),
                        lot_size=self._decimals(data.get("lot_decimals"), DEFAULTS.lot_size),
                        price_filter=self._decimals(data.get("pair_decimals"), DEFAULTS.price_filter),
                        listed=DEFAULTS.listed,
                    )
                )

    def _resolve_pair(self, key: str, data: dict) -> Optional[Pair]:
        if self.source == SourceMode.JSON_FILE:
            return self.constraints.pair_by_symbol(self.name, key)
        base = self.constraints.coin_by_symbol(self.name, str(data.get("base", "")))
        quote = self.constraints.coin_by_symbol(self.name, str(data.get("quote", "")))
        if base is None or quote is None:
            logger.debug(f"{self.name} skipping {key}: unknown asset")
            return None
        return self.registry.get_or_create_pair(base, quote)

    def _symbol(self, pair: Pair) -> str:
        symbol = self.constraints.symbol_for_pair(self.name, pair)
        if not symbol:
            raise ValidationError(f"{self.name} has no symbol for pair {pair.symbol}")
        return symbol

    # ------------- market data -------------

    def order_book(self, pair: Pair) -> Maker:
        with exchange_operation_context(self.name, "order_book", symbol=pair.symbol):
            params = {"pair": self._symbol(pair), "count": str(BOOK_DEPTH)}
            worker_ip = self._http.external_ip()
            before = now_ms()
            text = self._public("/public/Depth", params)
            after = now_ms()

            books = self._result("OrderBook", text)
            if not isinstance(books, dict) or len(books) != 1:
                raise MalformedResponseError(f"{self.name} OrderBook expected one book: {text[:200]}")
            book = next(iter(books.values()))
            return Maker(
                bids=parse_levels(self.name, "bids", book.get("bids")),
                asks=parse_levels(self.name, "asks", book.get("asks")),
                before_timestamp=before,
                after_timestamp=after,
                worker_ip=worker_ip,
            )

    # ------------- account -------------

    def update_all_balances(self) -> None:
        if not self.has_credentials():
            logger.warning(f"{self.name} UpdateAllBalances: API Key or Secret Key are nil")
            return
        with best_effort(self.name, "update_all_balances"):
            result = self._result("UpdateAllBalances", self._private("/private/Balance"))
            if not isinstance(result, dict):
                raise MalformedResponseError(f"{self.name} UpdateAllBalances unexpected result: {result!r}")
            parsed = []
            for asset, amount in result.items():
                try:
                    parsed.append((asset, parse_float(amount)))
                except ValueError as e:
                    raise MalformedResponseError(f"{self.name} UpdateAllBalances bad amount for {asset}: {e}") from e
            for asset, free in parsed:
                coin = self.constraints.coin_by_symbol(self.name, asset)
                if coin is not None:
                    self.balances.set(coin.code, free)

    def withdraw(self, coin: Coin, quantity: float, address: str, tag: str = "") -> bool:
        return False

    # ------------- orders -------------

    def _place(self, pair: Pair, side: Side, quantity: float, rate: float) -> Order:
        op = "limit_buy" if side == Side.BUY else "limit_sell"
        self.require_credentials(op)
        with exchange_operation_context(self.name, op, symbol=pair.symbol):
            params = {
                "pair": self._symbol(pair),
                "type": side.value.lower(),
                "ordertype": "limit",
                "price": str_decimal(rate),
                "volume": str_decimal(quantity),
            }
            text = self._private("/private/AddOrder", params)
            result = self._result(op, text, OrderRejectedError)
            txids = result.get("txid") if isinstance(result, dict) else None
            if not txids:
                raise OrderRejectedError(f"{self.name} {op} returned no txid: {text[:200]}")
            return Order(
                pair=pair,
                side=side,
                rate=rate,
                quantity=quantity,
                order_id=str(txids[0]),
                exchange=self.name,
                status=OrderStatus.NEW,
                raw=text,
            )

    def limit_buy(self, pair: Pair, quantity: float, rate: float) -> Order:
        return self._place(pair, Side.BUY, quantity, rate)

    def limit_sell(self, pair: Pair, quantity: float, rate: float) -> Order:
        return self._place(pair, Side.SELL, quantity, rate)

    def order_status(self, order: Order) -> None:
        self.require_credentials("order_status")
        with exchange_operation_context(self.name, "order_status", symbol=order.pair.symbol, order_id=order.order_id):
            text = self._private("/private/QueryOrders", {"txid": order.order_id})
            data = load_json(self.name, "OrderStatus", text)
            errors = data.get("error") if isinstance(data, dict) else None
            if errors and any(msg in str(e) for e in errors for msg in ORDER_NOT_FOUND_ERRORS):
                raise OrderNotFoundError(f"{self.name} OrderStatus: {errors}")
            result = self._result("OrderStatus", text)
            info = result.get(order.order_id) if isinstance(result, dict) else None
            if not isinstance(info, dict):
                raise OrderNotFoundError(f"{self.name} OrderStatus: {order.order_id} not in response")

            try:
                requested = parse_float(info.get("vol", order.quantity))
                executed = parse_float(info.get("vol_exec", 0))
            except ValueError as e:
                raise MalformedResponseError(f"{self.name} OrderStatus bad volumes: {e}") from e
            remaining = max(0.0, requested - executed)
            label = str(info.get("status", ""))
            if label == "canceled":
                status = OrderStatus.CANCELED
            elif label in ("open", "pending"):
                status = resolve_status(requested, remaining)
            elif label == "closed":
                status = resolve_status(requested, remaining, live=False)
            else:
                status = OrderStatus.OTHER

            try:
                deal_rate = parse_float(info.get("price"))
            except ValueError:
                deal_rate = 0.0
            apply_status(
                order,
                status,
                deal_quantity=executed,
                deal_rate=deal_rate if deal_rate > 0 else order.rate,
                raw=text,
            )

    def list_orders(self) -> list[Order]:
        return []

    def cancel_order(self, order: Order) -> None:
        self.require_credentials("cancel_order")
        with exchange_operation_context(self.name, "cancel_order", symbol=order.pair.symbol, order_id=order.order_id):
            text = self._private("/private/CancelOrder", {"txid": order.order_id})
            result = self._result("CancelOrder", text, CancelRejectedError)
            count = result.get("count", 0) if isinstance(result, dict) else 0
            if not count:
                raise CancelRejectedError(f"{self.name} CancelOrder nothing cancelled: {text[:200]}")
            mark_canceling(order, text)

    def cancel_all_orders(self) -> None:
        return None


__all__ = ["KrakenExchange", "DEFAULTS", "BOOK_DEPTH"]
