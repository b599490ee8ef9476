from __future__ import annotations

"""
Reference data registry
=======================

Process-wide stores shared by all adapters:
- ReferenceRegistry: canonical coins and pairs (lookup-or-create, no duplicates)
- ConstraintStore: per-exchange coin/pair constraints, indexed by exchange symbol
- BalanceMap: free balance per coin code

All three are thread-safe. Global instances are created lazily through
``get_registry()``, ``get_constraint_store()`` and ``get_balance_map()`` and
dropped with ``reset_state()``.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from core.exchange.common import Coin, CoinConstraint, Pair, PairConstraint, ValidationError
from core.exchange.signing import reset_nonce_sources

logger = logging.getLogger(__name__)


def _code(code: str) -> str:
    c = (code or "").strip().upper()
    if not c:
        raise ValidationError("coin code must be non-empty")
    return c


class ReferenceRegistry:
    def __init__(self):
        self._lock = threading.RLock()
        self._coins: Dict[str, Coin] = {}
        self._pairs: Dict[Tuple[str, str], Pair] = {}
        self._next_coin_id = 1
        self._next_pair_id = 1

    # ---- coins ----
    def lookup_coin(self, code: str) -> Optional[Coin]:
        with self._lock:
            return self._coins.get((code or "").strip().upper())

    def register_coin(self, coin: Coin) -> Coin:
        """Register ``coin``; an existing coin with the same code is returned instead."""
        code = _code(coin.code)
        with self._lock:
            existing = self._coins.get(code)
            if existing is not None:
                return existing
            taken = {c.id for c in self._coins.values()}
            if coin.id <= 0 or coin.id in taken:
                coin = Coin(id=self._next_coin_id, code=code, name=coin.name)
            elif coin.code != code:
                coin = Coin(id=coin.id, code=code, name=coin.name)
            self._coins[code] = coin
            self._next_coin_id = max(self._next_coin_id, coin.id + 1)
            logger.debug(f"registered coin {code} id={coin.id}")
            return coin

    def get_or_create_coin(self, code: str, name: str = "") -> Coin:
        code = _code(code)
        with self._lock:
            existing = self._coins.get(code)
            if existing is not None:
                return existing
            return self.register_coin(Coin(id=self._next_coin_id, code=code, name=name))

    def coins(self) -> List[Coin]:
        with self._lock:
            return list(self._coins.values())

    # ---- pairs ----
    def lookup_pair(self, base: Coin, quote: Coin) -> Optional[Pair]:
        with self._lock:
            return self._pairs.get((base.code, quote.code))

    def register_pair(self, pair: Pair) -> Pair:
        with self._lock:
            for coin in (pair.base, pair.quote):
                if self._coins.get(coin.code) != coin:
                    raise ValidationError(f"pair {pair.symbol} references unregistered coin {coin.code}")
            existing = self._pairs.get(pair.key)
            if existing is not None:
                return existing
            if pair.id <= 0 or any(p.id == pair.id for p in self._pairs.values()):
                pair = Pair(id=self._next_pair_id, base=pair.base, quote=pair.quote)
            self._pairs[pair.key] = pair
            self._next_pair_id = max(self._next_pair_id, pair.id + 1)
            logger.debug(f"registered pair {pair.symbol} id={pair.id}")
            return pair

    def get_or_create_pair(self, base: Coin, quote: Coin) -> Pair:
        with self._lock:
            existing = self._pairs.get((base.code, quote.code))
            if existing is not None:
                return existing
            return self.register_pair(Pair(id=self._next_pair_id, base=base, quote=quote))

    def pairs(self) -> List[Pair]:
        with self._lock:
            return list(self._pairs.values())


class ConstraintStore:
    """Exchange-specific constraints keyed by (exchange, coin id) / (exchange, pair id).

    Writes are last-write-wins. Exchange symbols are indexed case-insensitively
    so adapters can map a wire symbol back to the canonical coin or pair.
    """

    def __init__(self, registry: ReferenceRegistry):
        self.registry = registry
        self._lock = threading.RLock()
        self._coin: Dict[Tuple[str, int], CoinConstraint] = {}
        self._pair: Dict[Tuple[str, int], PairConstraint] = {}
        self._coin_by_symbol: Dict[Tuple[str, str], Coin] = {}
        self._pair_by_symbol: Dict[Tuple[str, str], Pair] = {}

    # ---- coins ----
    def set_coin_constraint(self, constraint: CoinConstraint) -> None:
        if self.registry.lookup_coin(constraint.coin.code) != constraint.coin:
            raise ValidationError(f"constraint references unregistered coin {constraint.coin.code}")
        key = (constraint.exchange, constraint.coin.id)
        with self._lock:
            old = self._coin.get(key)
            if old is not None and old.ex_symbol.lower() != constraint.ex_symbol.lower():
                self._coin_by_symbol.pop((constraint.exchange, old.ex_symbol.lower()), None)
            self._coin[key] = constraint
            self._coin_by_symbol[(constraint.exchange, constraint.ex_symbol.lower())] = constraint.coin

    def get_coin_constraint(self, exchange: str, coin: Coin) -> Optional[CoinConstraint]:
        with self._lock:
            return self._coin.get((exchange, coin.id))

    def coin_by_symbol(self, exchange: str, ex_symbol: str) -> Optional[Coin]:
        with self._lock:
            return self._coin_by_symbol.get((exchange, ex_symbol.lower()))

    def symbol_for_coin(self, exchange: str, coin: Coin) -> Optional[str]:
        c = self.get_coin_constraint(exchange, coin)
        return c.ex_symbol if c is not None else None

    def coin_constraints(self, exchange: str) -> List[CoinConstraint]:
        with self._lock:
            return [c for (ex, _), c in self._coin.items() if ex == exchange]

    # ---- pairs ----
    def set_pair_constraint(self, constraint: PairConstraint) -> None:
        pair = constraint.pair
        if self.registry.lookup_pair(pair.base, pair.quote) != pair:
            raise ValidationError(f"constraint references unregistered pair {pair.symbol}")
        key = (constraint.exchange, pair.id)
        with self._lock:
            old = self._pair.get(key)
            if old is not None and old.ex_symbol.lower() != constraint.ex_symbol.lower():
                self._pair_by_symbol.pop((constraint.exchange, old.ex_symbol.lower()), None)
            self._pair[key] = constraint
            self._pair_by_symbol[(constraint.exchange, constraint.ex_symbol.lower())] = pair

    def get_pair_constraint(self, exchange: str, pair: Pair) -> Optional[PairConstraint]:
        with self._lock:
            return self._pair.get((exchange, pair.id))

    def pair_by_symbol(self, exchange: str, ex_symbol: str) -> Optional[Pair]:
        with self._lock:
            return self._pair_by_symbol.get((exchange, ex_symbol.lower()))

    def symbol_for_pair(self, exchange: str, pair: Pair) -> Optional[str]:
        c = self.get_pair_constraint(exchange, pair)
        return c.ex_symbol if c is not None else None

    def pair_constraints(self, exchange: str) -> List[PairConstraint]:
        with self._lock:
            return [c for (ex, _), c in self._pair.items() if ex == exchange]

    # ---- snapshot ----
    def load_snapshot(self, path: Union[str, Path], registry: Optional[ReferenceRegistry] = None) -> int:
        """Seed coins, pairs and constraints from a JSON snapshot.

        Layout::

            {"coin_constraints": [{"exchange", "code", "ex_symbol", ...}],
             "pair_constraints": [{"exchange", "base", "quote", "ex_symbol", ...}]}

        Missing numeric fields default to zero, flags to true. Returns the
        number of constraints loaded.
        """
        registry = registry or self.registry
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ValidationError(f"cannot read snapshot {path}: {e}") from e

        count = 0
        try:
            for item in data.get("coin_constraints", []):
                coin = registry.get_or_create_coin(item["code"], item.get("name", ""))
                self.set_coin_constraint(
                    CoinConstraint(
                        exchange=item["exchange"],
                        coin=coin,
                        ex_symbol=item["ex_symbol"],
                        tx_fee=float(item.get("tx_fee", 0.0)),
                        withdraw=bool(item.get("withdraw", True)),
                        deposit=bool(item.get("deposit", True)),
                        confirmation=int(item.get("confirmation", 0)),
                        listed=bool(item.get("listed", True)),
                    )
                )
                count += 1
            for item in data.get("pair_constraints", []):
                base = registry.get_or_create_coin(item["base"])
                quote = registry.get_or_create_coin(item["quote"])
                pair = registry.get_or_create_pair(base, quote)
                self.set_pair_constraint(
                    PairConstraint(
                        exchange=item["exchange"],
                        pair=pair,
                        ex_symbol=item["ex_symbol"],
                        maker_fee=float(item.get("maker_fee", 0.0)),
                        taker_fee=float(item.get("taker_fee", 0.0)),
                        lot_size=float(item.get("lot_size", 0.0)),
                        price_filter=float(item.get("price_filter", 0.0)),
                        listed=bool(item.get("listed", True)),
                    )
                )
                count += 1
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ValidationError(f"invalid snapshot {path}: {e}") from e
        logger.info(f"Loaded {count} constraints from snapshot {path}")
        return count


class BalanceMap:
    def __init__(self):
        self._lock = threading.Lock()
        self._free: Dict[str, float] = {}

    def set(self, code: str, free: float) -> None:
        with self._lock:
            self._free[code.upper()] = free

    def get(self, code: str) -> Optional[float]:
        with self._lock:
            return self._free.get(code.upper())

    def snapshot(self) -> Dict[str, float]:
        with self._lock:
            return dict(self._free)

    def clear(self) -> None:
        with self._lock:
            self._free.clear()


# Global instances
_state_lock = threading.Lock()
_registry: Optional[ReferenceRegistry] = None
_constraint_store: Optional[ConstraintStore] = None
_balance_map: Optional[BalanceMap] = None


def get_registry() -> ReferenceRegistry:
    global _registry
    with _state_lock:
        if _registry is None:
            _registry = ReferenceRegistry()
        return _registry


def get_constraint_store() -> ConstraintStore:
    global _constraint_store
    registry = get_registry()
    with _state_lock:
        if _constraint_store is None:
            _constraint_store = ConstraintStore(registry)
        return _constraint_store


def get_balance_map() -> BalanceMap:
    global _balance_map
    with _state_lock:
        if _balance_map is None:
            _balance_map = BalanceMap()
        return _balance_map


def reset_state() -> None:
    global _registry, _constraint_store, _balance_map
    with _state_lock:
        _registry = None
        _constraint_store = None
        _balance_map = None
    reset_nonce_sources()


__all__ = [
    "ReferenceRegistry",
    "ConstraintStore",
    "BalanceMap",
    "get_registry",
    "get_constraint_store",
    "get_balance_map",
    "reset_state",
]
