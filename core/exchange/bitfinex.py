from __future__ import annotations

"""
Exchange Adapter — Bitfinex
===========================

Bitfinex v1/v2 REST dialect mapped onto the canonical adapter contract.

Notes
-----
- Coins come from two configuration maps: ``pub:map:currency:sym`` (exchange
  symbol -> canonical code) then ``pub:map:currency:label`` (symbol -> name).
- Pair symbols are concatenated (``btcusd``); the quote is resolved by suffix
  against ``QUOTES`` in list order.
- Private calls are POSTs signed with the header-HMAC scheme (payload and
  signature travel in ``X-BFX-*`` headers, the body is empty).
"""

import logging
from dataclasses import replace
from typing import Any, Optional

from common.decimal_utils import parse_float, str_decimal
from common.symbol_codec import QuoteSuffixCodec
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

QUOTES = ("usd", "eur", "gbp", "jpy", "btc", "eth", "eos", "xlm", "dai", "ust")

DEFAULTS = ExchangeDefaults(
    maker_fee=0.001,
    taker_fee=0.001,
    lot_size=0.0001,
    price_filter=1e-8,
    tx_fee=0.0,
    confirmation=2,
)


class BitfinexExchange(ExchangeAdapter):
    name = "bitfinex"

    def __init__(self, config, **collaborators) -> None:
        super().__init__(config, **collaborators)
        self._base = config.settings.base_url.rstrip("/")
        self._codec = QuoteSuffixCodec(QUOTES)
        self._signer = make_signer(SigningScheme.HEADER_HMAC, config.credentials, self._nonce)

    # ------------- transport -------------

    def _public(self, path: str) -> str:
        return self._http.get(self._base + path)

    def _private(self, path: str, params: Optional[dict[str, Any]] = None) -> str:
        signed = self._signer.sign("POST", self._base, path, params or {})
        return self._http.request(signed.method, signed.url, headers=signed.headers, body=signed.body or None)

    # ------------- reference data -------------

    def _constraint_for(self, coin: Coin, ex_symbol: str) -> CoinConstraint:
        return CoinConstraint(
            exchange=self.name,
            coin=coin,
            ex_symbol=ex_symbol,
            tx_fee=DEFAULTS.tx_fee,
            withdraw=DEFAULTS.withdraw,
            deposit=DEFAULTS.deposit,
            confirmation=DEFAULTS.confirmation,
            listed=True,
        )

    def _conf_map(self, field: str) -> list:
        data = load_json(self.name, "GetCoinsData", self._public(f"/v2/conf/{field}"))
        if not isinstance(data, list) or not data or not isinstance(data[0], list):
            raise MalformedResponseError(f"{self.name} GetCoinsData unexpected {field} payload")
        return data[0]

    def get_coins_data(self) -> None:
        with best_effort(self.name, "get_coins_data"):
            # symbol map: [ex_symbol, canonical code]
            for entry in self._conf_map("pub:map:currency:sym"):
                ex_symbol, code = str(entry[0]), str(entry[1])
                if self.source == SourceMode.EXCHANGE_API:
                    coin = self.registry.get_or_create_coin(code)
                else:
                    coin = self.constraints.coin_by_symbol(self.name, ex_symbol)
                if coin is not None:
                    self.constraints.set_coin_constraint(self._constraint_for(coin, ex_symbol))

            # label map: [ex_symbol, display name]
            for entry in self._conf_map("pub:map:currency:label"):
                ex_symbol, label = str(entry[0]), str(entry[1])
                coin = self.constraints.coin_by_symbol(self.name, ex_symbol)
                if coin is None and self.source == SourceMode.EXCHANGE_API:
                    coin = self.registry.get_or_create_coin(ex_symbol, label)
                if coin is not None:
                    self.constraints.set_coin_constraint(self._constraint_for(coin, ex_symbol))

        self.get_withdraw_fees()

    def get_withdraw_fees(self) -> None:
        """Refresh ``tx_fee`` of known coins from ``/v1/account_fees``."""
        if not self.has_credentials():
            logger.warning(f"{self.name} GetWithdrawFees: API Key or Secret Key are nil")
            return
        with best_effort(self.name, "get_withdraw_fees"):
            data = load_json(self.name, "GetWithdrawFees", self._private("/v1/account_fees"))
            fees = data.get("withdraw") if isinstance(data, dict) else None
            if not isinstance(fees, dict):
                raise MalformedResponseError(f"{self.name} GetWithdrawFees missing 'withdraw': {data!r}")
            for symbol, fee in fees.items():
                coin = self.constraints.coin_by_symbol(self.name, symbol)
                if coin is None:
                    continue
                current = self.constraints.get_coin_constraint(self.name, coin)
                if current is None:
                    continue
                try:
                    tx_fee = parse_float(fee)
                except ValueError:
                    logger.warning(f"{self.name} withdraw fee for {symbol} is not a number: {fee!r}")
                    continue
                self.constraints.set_coin_constraint(replace(current, tx_fee=tx_fee))

    def get_pairs_data(self) -> None:
        with best_effort(self.name, "get_pairs_data"):
            data = load_json(self.name, "GetPairsData", self._public("/v1/symbols_details"))
            if not isinstance(data, list):
                raise MalformedResponseError(f"{self.name} GetPairsData expected a list: {data!r}")
            for item in data:
                symbol = str(item.get("pair", ""))
                pair = self._resolve_pair(symbol)
                if pair is None:
                    continue
                try:
                    precision = int(item.get("price_precision"))
                    price_filter = 10.0 ** -precision
                except (TypeError, ValueError):
                    price_filter = DEFAULTS.price_filter
                self.constraints.set_pair_constraint(
                    PairConstraint(
                        exchange=self.name,
                        pair=pair,
                        ex_symbol=symbol,
                        maker_fee=DEFAULTS.maker_fee,
                        taker_fee=DEFAULTS.taker_fee,
                        lot_size=DEFAULTS.lot_size,
                        price_filter=price_filter,
                        listed=True,
                    )
                )

    def _resolve_pair(self, symbol: str) -> Optional[Pair]:
        if self.source == SourceMode.JSON_FILE:
            return self.constraints.pair_by_symbol(self.name, symbol)
        try:
            base_sym, quote_sym = self._codec.decode(symbol)
        except ValueError:
            logger.debug(f"{self.name} skipping symbol without known quote: {symbol}")
            return None
        base = self.constraints.coin_by_symbol(self.name, base_sym) or self.registry.lookup_coin(base_sym)
        quote = self.constraints.coin_by_symbol(self.name, quote_sym) or self.registry.lookup_coin(quote_sym)
        if base is None or quote is None:
            logger.debug(f"{self.name} skipping {symbol}: unknown coin")
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
            symbol = self._symbol(pair)
            worker_ip = self._http.external_ip()
            before = now_ms()
            text = self._public(f"/v1/book/{symbol}")
            after = now_ms()

            data = load_json(self.name, "OrderBook", text)
            if not isinstance(data, dict) or "message" in data:
                raise MalformedResponseError(f"{self.name} OrderBook error response: {text[:200]}")
            return Maker(
                bids=parse_levels(self.name, "bids", data.get("bids"), rate_at="price", qty_at="amount"),
                asks=parse_levels(self.name, "asks", data.get("asks"), rate_at="price", qty_at="amount"),
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
            data = load_json(self.name, "UpdateAllBalances", self._private("/v1/balances"))
            if not isinstance(data, list):
                raise MalformedResponseError(f"{self.name} UpdateAllBalances expected a list: {data!r}")
            parsed = []
            for entry in data:
                # only the exchange wallet funds "exchange limit" orders
                if entry.get("type", "exchange") != "exchange":
                    continue
                try:
                    parsed.append((str(entry["currency"]), parse_float(entry["available"])))
                except (KeyError, ValueError) as e:
                    raise MalformedResponseError(f"{self.name} UpdateAllBalances bad entry {entry!r}: {e}") from e
            for symbol, free in parsed:
                coin = self.constraints.coin_by_symbol(self.name, symbol)
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
                "symbol": self._symbol(pair),
                "amount": str_decimal(quantity),
                "price": str_decimal(rate),
                "side": side.value.lower(),
                "type": "exchange limit",
            }
            text = self._private("/v1/order/new", params)
            data = load_json(self.name, op, text)
            order_id = self._order_id(data)
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

    @staticmethod
    def _order_id(data: Any) -> str:
        if not isinstance(data, dict):
            return ""
        value = data.get("order_id", data.get("id"))
        try:
            return str(int(value)) if value and int(value) != 0 else ""
        except (TypeError, ValueError):
            return ""

    def _numeric_id(self, order: Order) -> int:
        try:
            return int(order.order_id)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"{self.name} order id must be numeric: {order.order_id!r}") from e

    def limit_buy(self, pair: Pair, quantity: float, rate: float) -> Order:
        return self._place(pair, Side.BUY, quantity, rate)

    def limit_sell(self, pair: Pair, quantity: float, rate: float) -> Order:
        return self._place(pair, Side.SELL, quantity, rate)

    def order_status(self, order: Order) -> None:
        self.require_credentials("order_status")
        with exchange_operation_context(self.name, "order_status", symbol=order.pair.symbol, order_id=order.order_id):
            numeric_id = self._numeric_id(order)
            text = self._private("/v1/order/status", {"order_id": numeric_id})
            data = load_json(self.name, "OrderStatus", text)
            returned_id = self._order_id(data)
            if not returned_id:
                raise OrderNotFoundError(f"{self.name} OrderStatus failed: {text[:200]}")
            if returned_id != str(numeric_id):
                raise MalformedResponseError(
                    f"{self.name} OrderStatus returned order {returned_id}, expected {numeric_id}"
                )
            try:
                remaining = parse_float(data["remaining_amount"])
                executed = parse_float(data["executed_amount"])
            except (KeyError, ValueError) as e:
                raise MalformedResponseError(f"{self.name} OrderStatus bad amounts: {e}") from e
            status = resolve_status(
                order.quantity,
                remaining,
                live=bool(data.get("is_live")),
                cancelled=bool(data.get("is_cancelled")),
            )
            try:
                deal_rate = parse_float(data.get("avg_execution_price"))
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
            text = self._private("/v1/order/cancel", {"order_id": self._numeric_id(order)})
            data = load_json(self.name, "CancelOrder", text)
            if not self._order_id(data):
                raise CancelRejectedError(f"{self.name} CancelOrder failed: {text[:200]}")
            mark_canceling(order, text)

    def cancel_all_orders(self) -> None:
        return None


__all__ = ["BitfinexExchange", "DEFAULTS", "QUOTES"]
