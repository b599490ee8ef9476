from __future__ import annotations

import json
import threading

import pytest

from core.exchange.common import Coin, CoinConstraint, Pair, PairConstraint, ValidationError
from core.exchange.registry import (
    BalanceMap,
    ConstraintStore,
    ReferenceRegistry,
    get_balance_map,
    get_constraint_store,
    get_registry,
    reset_state,
)


def _coin_constraint(exchange, coin, ex_symbol, tx_fee=0.0):
    return CoinConstraint(
        exchange=exchange, coin=coin, ex_symbol=ex_symbol, tx_fee=tx_fee,
        withdraw=True, deposit=True, confirmation=2, listed=True,
    )


def _pair_constraint(exchange, pair, ex_symbol, maker_fee=0.001):
    return PairConstraint(
        exchange=exchange, pair=pair, ex_symbol=ex_symbol, maker_fee=maker_fee,
        taker_fee=0.002, lot_size=0.0001, price_filter=1e-8, listed=True,
    )


def test_coin_registration_is_idempotent(registry):
    first = registry.get_or_create_coin("btc", "Bitcoin")
    second = registry.get_or_create_coin("BTC")
    assert first is second
    assert first.code == "BTC"
    assert first.name == "Bitcoin"
    assert registry.register_coin(Coin(id=0, code="Btc")) is first
    assert len(registry.coins()) == 1


def test_register_coin_assigns_fresh_id_on_collision(registry):
    btc = registry.get_or_create_coin("BTC")
    eth = registry.register_coin(Coin(id=btc.id, code="ETH"))
    assert eth.id != btc.id
    assert registry.lookup_coin("eth") is eth


def test_empty_coin_code_rejected(registry):
    with pytest.raises(ValidationError):
        registry.get_or_create_coin("  ")


def test_concurrent_get_or_create_coin_yields_one_coin(registry):
    results = []
    lock = threading.Lock()

    def worker():
        coin = registry.get_or_create_coin("ETH")
        with lock:
            results.append(coin)

    threads = [threading.Thread(target=worker) for _ in range(32)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len({id(c) for c in results}) == 1
    assert len(registry.coins()) == 1


def test_pair_identity_by_codes(registry):
    btc = registry.get_or_create_coin("BTC")
    usd = registry.get_or_create_coin("USD")
    p1 = registry.get_or_create_pair(btc, usd)
    p2 = registry.get_or_create_pair(btc, usd)
    assert p1 is p2
    assert p1.symbol == "BTC/USD"
    assert registry.lookup_pair(usd, btc) is None


def test_pair_with_unregistered_coin_rejected(registry):
    btc = registry.get_or_create_coin("BTC")
    with pytest.raises(ValidationError):
        registry.register_pair(Pair(id=0, base=btc, quote=Coin(id=99, code="XYZ")))


def test_constraint_store_upsert_and_symbol_index(registry, store):
    btc = registry.get_or_create_coin("BTC")
    store.set_coin_constraint(_coin_constraint("bitfinex", btc, "btc"))
    store.set_coin_constraint(_coin_constraint("bitfinex", btc, "BTC", tx_fee=0.0004))

    assert len(store.coin_constraints("bitfinex")) == 1
    assert store.get_coin_constraint("bitfinex", btc).tx_fee == 0.0004
    assert store.coin_by_symbol("bitfinex", "btc") is btc
    assert store.symbol_for_coin("bitfinex", btc) == "BTC"
    assert store.coin_by_symbol("kraken", "btc") is None


def test_constraint_store_pair_symbol_reindex(registry, store):
    btc = registry.get_or_create_coin("BTC")
    usd = registry.get_or_create_coin("USD")
    pair = registry.get_or_create_pair(btc, usd)
    store.set_pair_constraint(_pair_constraint("liquid", pair, "1"))
    store.set_pair_constraint(_pair_constraint("liquid", pair, "5"))

    assert store.pair_by_symbol("liquid", "1") is None
    assert store.pair_by_symbol("liquid", "5") is pair
    assert store.symbol_for_pair("liquid", pair) == "5"
    assert [c.ex_symbol for c in store.pair_constraints("liquid")] == ["5"]


def test_constraint_store_rejects_unregistered(registry, store):
    ghost = Coin(id=7, code="GHOST")
    with pytest.raises(ValidationError):
        store.set_coin_constraint(_coin_constraint("kraken", ghost, "GHOST"))

    btc = registry.get_or_create_coin("BTC")
    usd = registry.get_or_create_coin("USD")
    with pytest.raises(ValidationError):
        store.set_pair_constraint(_pair_constraint("kraken", Pair(id=3, base=btc, quote=usd), "XBTUSD"))


def test_load_snapshot(tmp_path, registry, store):
    snapshot = {
        "coin_constraints": [
            {"exchange": "kraken", "code": "BTC", "name": "Bitcoin", "ex_symbol": "XXBT", "tx_fee": 0.0005},
            {"exchange": "kraken", "code": "USD", "ex_symbol": "ZUSD"},
        ],
        "pair_constraints": [
            {"exchange": "kraken", "base": "BTC", "quote": "USD", "ex_symbol": "XXBTZUSD", "maker_fee": 0.0016},
        ],
    }
    path = tmp_path / "snapshot.json"
    path.write_text(json.dumps(snapshot), encoding="utf-8")

    assert store.load_snapshot(path) == 3
    btc = store.coin_by_symbol("kraken", "XXBT")
    assert btc.code == "BTC" and btc.name == "Bitcoin"
    assert store.get_coin_constraint("kraken", btc).tx_fee == 0.0005
    pair = store.pair_by_symbol("kraken", "XXBTZUSD")
    assert pair.key == ("BTC", "USD")
    assert store.get_pair_constraint("kraken", pair).maker_fee == 0.0016


def test_load_snapshot_invalid(tmp_path, store):
    path = tmp_path / "bad.json"
    path.write_text('{"coin_constraints": [{"exchange": "kraken"}]}', encoding="utf-8")
    with pytest.raises(ValidationError):
        store.load_snapshot(path)
    with pytest.raises(ValidationError):
        store.load_snapshot(tmp_path / "missing.json")


def test_balance_map_last_write_wins():
    balances = BalanceMap()
    balances.set("btc", 1.0)
    balances.set("BTC", 2.5)
    assert balances.get("btc") == 2.5
    assert balances.snapshot() == {"BTC": 2.5}
    balances.clear()
    assert balances.get("BTC") is None


def test_global_state_lifecycle():
    reg = get_registry()
    assert get_registry() is reg
    assert get_constraint_store().registry is reg
    bal = get_balance_map()
    reset_state()
    assert get_registry() is not reg
    assert get_balance_map() is not bal


def test_store_uses_given_registry():
    reg = ReferenceRegistry()
    st = ConstraintStore(reg)
    coin = reg.get_or_create_coin("ETH")
    st.set_coin_constraint(_coin_constraint("liquid", coin, "ETH"))
    assert st.coin_by_symbol("liquid", "eth") is coin
