from __future__ import annotations

"""
Exchange Adapter — Liquid
=========================

Liquid (Quoine) REST dialect. Coins and pairs are both derived from the
``/products`` listing; the exchange symbol of a pair is its numeric product
id. Private calls carry a JWT-style token in ``X-Quoine-Auth`` whose nonce is
in milliseconds.
"""

import logging
from typing import Any, Optional

from common.decimal_utils import parse_float, str_decimal
from core.exchange.common import (
    CancelRejectedError,
    Coin,
    CoinConstraint,
    ExchangeAdapter,
    ExchangeDefaults,
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

API_VERSION = "2"


class LiquidExchange(ExchangeAdapter):
    name = "liquid"
    nonce_divisor = 1_000_000

    def __init__(self, config, **collaborators) -> None:
        super().__init__(config, **collaborators)
        self._base = config.settings.base_url.rstrip("/")
        self._signer = make_signer(
            SigningScheme.TOKEN,
            config.credentials,
            self._nonce,
            extra_headers={"X-Quoine-API-Version": API_VERSION},
        )

    # ------------- transport -------------

    def _public(self, path: str) -> str:
        return self._http.get(self._base + path)

    def _private(self, method: str, path: str, params: Optional[dict[str, Any]] = None) -> str:
        signed = self._signer.sign(method, self._base, path, params)
        return self._http.request(signed.method, signed.url, headers=signed.headers, body=signed.body or None)

    def _products(self, operation: str) -> list:
        data = load_json(self.name, operation, self._public("/products"))
        if not isinstance(data, list):
            raise MalformedResponseError(f"{self.name} {operation} expected a list of products")
        return data

    # ------------- reference data -------------

    def _coin(self, ex_symbol: str) -> Optional[Coin]:
        if self.source == SourceMode.EXCHANGE_API:
            return self.registry.get_or_create_coin(ex_symbol)
        return self.constraints.coin_by_symbol(self.name, ex_symbol)

    def get_coins_data(self) -> None:
        with best_effort(self.name, "get_coins_data"):
            for product in self._products("GetCoinsData"):
                for field in ("base_currency", "quoted_currency"):
                    ex_symbol = str(product.get(field) or "")
                    if not ex_symbol:
                        continue
                    coin = self._coin(ex_symbol)
                    if coin is None:
                        continue
                    self.constraints.set_coin_constraint(
                        CoinConstraint(
                            exchange=self.name,
                            coin=coin,
                            ex_symbol=ex_symbol,
                            tx_fee=DEFAULTS.tx_fee,
                            withdraw=DEFAULTS.withdraw,
                            deposit=DEFAULTS.deposit,
                            confirmation=DEFAULTS.confirmation,
                            listed=DEFAULTS.listed,
                        )
                    )

    @staticmethod
    def _fee(value: Any, default: float) -> float:
        try:
            return parse_float(value)
        except ValueError:
            return default

    def get_pairs_data(self) -> None:
        with best_effort(self.name, "get_pairs_data"):
            for product in self._products("GetPairsData"):
                product_id = str(product.get("id", ""))
                if not product_id:
                    continue
                if self.source == SourceMode.JSON_FILE:
                    pair = self.constraints.pair_by_symbol(self.name, product_id)
                else:
                    base = self.constraints.coin_by_symbol(self.name, str(product.get("base_currency", "")))
                    quote = self.constraints.coin_by_symbol(self.name, str(product.get("quoted_currency", "")))
                    pair = self.registry.get_or_create_pair(base, quote) if base and quote else None
                if pair is None:
                    logger.debug(f"{self.name} skipping product {product_id} ({product.get('currency_pair_code')})")
                    continue
                self.constraints.set_pair_constraint(
                    PairConstraint(
                        exchange=self.name,
                        pair=pair,
                        ex_symbol=product_id,
                        maker_fee=self._fee(product.get("maker_fee"), DEFAULTS.maker_fee),
                        taker_fee=self._fee(product.get("taker_fee"), DEFAULTS.taker_fee),
                        lot_size=DEFAULTS.lot_size,
                        price_filter=DEFAULTS.price_filter,
                        listed=not bool(product.get("disabled", False)),
                    )
                )

    def _symbol(self, pair: Pair) -> str:
        symbol = self.constraints.symbol_for_pair(self.name, pair)
        if not symbol:
            raise ValidationError(f"{self.name} has no product id for pair {pair.symbol}")
        return symbol

    # ------------- market data -------------

    def order_book(self, pair: Pair) -> Maker:
        with exchange_operation_context(self.name, "order_book", symbol=pair.symbol):
            path = f"/products/{self._symbol(pair)}/price_levels"
            worker_ip = self._http.external_ip()
            before = now_ms()
            text = self._public(path)
            after = now_ms()

            data = load_json(self.name, "OrderBook", text)
            if not isinstance(data, dict):
                raise MalformedResponseError(f"{self.name} OrderBook unexpected payload: {text[:200]}")
            return Maker(
                bids=parse_levels(self.name, "buy_price_levels", data.get("buy_price_levels")),
                asks=parse_levels(self.name, "sell_price_levels", data.get("sell_price_levels")),
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
            data = load_json(self.name, "UpdateAllBalances", self._private("GET", "/accounts/balance"))
            if not isinstance(data, list):
                raise MalformedResponseError(f"{self.name} UpdateAllBalances expected a list: {data!r}")
            parsed = []
            for entry in data:
                try:
                    parsed.append((str(entry["currency"]), parse_float(entry["balance"])))
                except (KeyError, TypeError, ValueError) as e:
                    raise MalformedResponseError(f"{self.name} UpdateAllBalances bad entry {entry!r}: {e}") from e
            for symbol, free in parsed:
                coin = self.constraints.coin_by_symbol(self.name, symbol)
                if coin is not None:
                    self.balances.set(coin.code, free)

    def withdraw(self, coin: Coin, quantity: float, address: str, tag: str = "") -> bool:
        return False

    # ------------- orders -------------

    @staticmethod
    def _id_of(data: Any) -> str:
        if isinstance(data, dict) and data.get("id") not in (None, "", 0):
            return str(data["id"])
        return ""

    def _place(self, pair: Pair, side: Side, quantity: float, rate: float) -> Order:
        op = "limit_buy" if side == Side.BUY else "limit_sell"
        self.require_credentials(op)
        with exchange_operation_context(self.name, op, symbol=pair.symbol):
            params = {
                "order_type": "limit",
                "product_id": self._symbol(pair),
                "side": side.value.lower(),
                "quantity": str_decimal(quantity),
                "price": str_decimal(rate),
            }
            text = self._private("POST", "/orders/", params)
            order_id = self._id_of(load_json(self.name, op, text))
            if not order_id:
                raise OrderRejectedError(f"{self.name} {op} rejected: {text[:200]}")
            return Order(
                pair=pair,
                side=side,
                rate=rate,
                quantity=quantity,
                order_id=order_id,
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
            text = self._private("GET", f"/orders/{order.order_id}")
            data = load_json(self.name, "OrderStatus", text)
            if self._id_of(data) != order.order_id:
                raise OrderNotFoundError(f"{self.name} OrderStatus: {order.order_id} not found: {text[:200]}")
            try:
                requested = parse_float(data.get("quantity", order.quantity))
                filled = parse_float(data.get("filled_quantity", 0))
            except ValueError as e:
                raise MalformedResponseError(f"{self.name} OrderStatus bad quantities: {e}") from e

            label = str(data.get("status", ""))
            if label == "filled":
                status = OrderStatus.FILLED
            elif label == "cancelled":
                status = OrderStatus.CANCELED
            elif label in ("live", "partially_filled"):
                status = resolve_status(requested, max(0.0, requested - filled))
            else:
                status = OrderStatus.OTHER

            try:
                deal_rate = parse_float(data.get("average_price"))
            except ValueError:
                deal_rate = 0.0
            apply_status(
                order,
                status,
                deal_quantity=filled,
                deal_rate=deal_rate if deal_rate > 0 else order.rate,
                raw=text,
            )

    def list_orders(self) -> list[Order]:
        return []

    def cancel_order(self, order: Order) -> None:
        self.require_credentials("cancel_order")
        with exchange_operation_context(self.name, "cancel_order", symbol=order.pair.symbol, order_id=order.order_id):
            text = self._private("PUT", f"/orders/{order.order_id}/cancel")
            data = load_json(self.name, "CancelOrder", text)
            if self._id_of(data) != order.order_id:
                raise CancelRejectedError(f"{self.name} CancelOrder failed: {text[:200]}")
            mark_canceling(order, text)

    def cancel_all_orders(self) -> None:
        return None


__all__ = ["LiquidExchange", "DEFAULTS", "API_VERSION"]
