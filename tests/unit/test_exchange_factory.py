from __future__ import annotations

import json

import pytest

from core.exchange.bitfinex import BitfinexExchange
from core.exchange.common import ExchangeError, SourceMode, ValidationError
from core.exchange.config import ExchangeConfig, ExchangeType
from core.exchange.kraken import KrakenExchange
from core.exchange.liquid import LiquidExchange
from core.exchange.registry import get_balance_map, get_constraint_store, get_registry, reset_state
from core.exchange.transport import RequestsTransport
from core.exchange.unified import ExchangeAdapterFactory, create_exchange_adapter
from tests.fixtures.exchange_fakes import RecordingHttp


@pytest.mark.parametrize(
    "exchange_type,cls",
    [
        (ExchangeType.BITFINEX, BitfinexExchange),
        (ExchangeType.KRAKEN, KrakenExchange),
        (ExchangeType.LIQUID, LiquidExchange),
    ],
)
def test_factory_builds_each_adapter(exchange_type, cls):
    config = ExchangeConfig.create(exchange_type.value, exchange_type, "k", "s")
    adapter = ExchangeAdapterFactory.create_adapter(config, RecordingHttp())
    assert isinstance(adapter, cls)
    assert adapter.name == exchange_type.value
    assert adapter.registry is get_registry()
    assert adapter.constraints is get_constraint_store()
    assert adapter.balances is get_balance_map()


def test_supported_exchanges():
    assert ExchangeAdapterFactory.get_supported_exchanges() == ["bitfinex", "kraken", "liquid"]


def test_adapters_share_process_state():
    a = create_exchange_adapter("bitfinex", "k", "s", http_client=RecordingHttp())
    b = create_exchange_adapter("Kraken", "k", "s", http_client=RecordingHttp())
    assert a.registry is b.registry
    assert a.balances is b.balances


def test_adapters_with_one_key_never_repeat_a_nonce():
    a = create_exchange_adapter("liquid", "k", "s", http_client=RecordingHttp())
    b = create_exchange_adapter("liquid", "k", "s", http_client=RecordingHttp())
    assert a._nonce is b._nonce

    seen = []
    for _ in range(50):
        seen.append(a._nonce())
        seen.append(b._nonce())
    assert len(seen) == len(set(seen))
    assert seen == sorted(seen)
    assert b._nonce.last == seen[-1]


def test_nonce_sources_are_per_key_and_reset():
    a = create_exchange_adapter("liquid", "k", "s", http_client=RecordingHttp())
    other_key = create_exchange_adapter("liquid", "k2", "s", http_client=RecordingHttp())
    assert a._nonce is not other_key._nonce

    reset_state()
    fresh = create_exchange_adapter("liquid", "k", "s", http_client=RecordingHttp())
    assert fresh._nonce is not a._nonce


def test_default_transport_uses_configured_timeout():
    adapter = create_exchange_adapter("liquid", "k", "s", timeout_ms=2500)
    assert isinstance(adapter._http, RequestsTransport)
    assert adapter._http.timeout_s == 2.5
    assert adapter._nonce.divisor == LiquidExchange.nonce_divisor


def test_custom_registry_gets_own_store(registry):
    config = ExchangeConfig.create("kraken", ExchangeType.KRAKEN, "k", "s")
    adapter = ExchangeAdapterFactory.create_adapter(config, RecordingHttp(), registry=registry)
    assert adapter.registry is registry
    assert adapter.constraints is not get_constraint_store()
    assert adapter.constraints.registry is registry


def test_json_file_source_seeds_snapshot(tmp_path):
    path = tmp_path / "kraken.json"
    path.write_text(
        json.dumps(
            {
                "coin_constraints": [
                    {"exchange": "kraken", "code": "BTC", "ex_symbol": "XXBT"},
                    {"exchange": "kraken", "code": "USD", "ex_symbol": "ZUSD"},
                ],
                "pair_constraints": [{"exchange": "kraken", "base": "BTC", "quote": "USD", "ex_symbol": "XXBTZUSD"}],
            }
        ),
        encoding="utf-8",
    )
    adapter = create_exchange_adapter(
        "kraken", "k", "s", http_client=RecordingHttp(), source="json_file", snapshot_path=str(path)
    )
    assert adapter.source == SourceMode.JSON_FILE
    pair = adapter.constraints.pair_by_symbol("kraken", "XXBTZUSD")
    assert pair.key == ("BTC", "USD")
    assert get_registry().lookup_coin("BTC") is pair.base


def test_json_file_source_requires_path():
    config = ExchangeConfig.create("bitfinex", ExchangeType.BITFINEX, "k", "s", source=SourceMode.JSON_FILE)
    with pytest.raises(ValidationError):
        ExchangeAdapterFactory.create_adapter(config, RecordingHttp())


def test_unsupported_type(monkeypatch):
    monkeypatch.setattr(ExchangeAdapterFactory, "_adapters", {ExchangeType.KRAKEN: KrakenExchange})
    config = ExchangeConfig.create("liquid", ExchangeType.LIQUID, "k", "s")
    with pytest.raises(ValidationError):
        ExchangeAdapterFactory.create_adapter(config, RecordingHttp())


def test_construction_failure_is_wrapped():
    config = ExchangeConfig.create("bitfinex", ExchangeType.BITFINEX, "k", "s")
    config.settings.base_url = None
    with pytest.raises(ExchangeError):
        ExchangeAdapterFactory.create_adapter(config, RecordingHttp())


def test_unknown_exchange_name():
    with pytest.raises(ValueError):
        create_exchange_adapter("binance", "k", "s")
