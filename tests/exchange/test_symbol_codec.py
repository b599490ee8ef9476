from __future__ import annotations

import pytest

from common.symbol_codec import QuoteSuffixCodec, SeparatorCodec

BITFINEX_QUOTES = ("usd", "eur", "gbp", "jpy", "btc", "eth", "eos", "xlm", "dai", "ust")


def test_quote_suffix_decode_cases():
    c = QuoteSuffixCodec(BITFINEX_QUOTES)
    cases = {
        "btcusd": ("BTC", "USD"),
        "ethbtc": ("ETH", "BTC"),
        "eoseth": ("EOS", "ETH"),
        "xlmeur": ("XLM", "EUR"),
        "BTC-USD": ("BTC", "USD"),
    }
    for sym, expected in cases.items():
        assert c.decode(sym) == expected


def test_quote_suffix_first_in_list_order_wins():
    c = QuoteSuffixCodec(BITFINEX_QUOTES)
    assert c.decode("eosust") == ("EOS", "UST")
    # "xbtceth": ends with "eth"; "btc" is an infix and must not match
    assert c.candidates("xbtceth") == [("XBTC", "ETH")]


def test_quote_suffix_ambiguous_symbol_uses_list_order():
    c = QuoteSuffixCodec(("usd", "sd"))
    assert c.candidates("btcusd") == [("BTC", "USD"), ("BTCU", "SD")]
    assert c.decode("btcusd") == ("BTC", "USD")

    reversed_codec = QuoteSuffixCodec(("sd", "usd"))
    assert reversed_codec.decode("btcusd") == ("BTCU", "SD")


def test_quote_suffix_requires_non_empty_base():
    c = QuoteSuffixCodec(BITFINEX_QUOTES)
    with pytest.raises(ValueError):
        c.decode("usd")
    with pytest.raises(ValueError):
        c.decode("btcxyz")


def test_quote_suffix_encode_case():
    assert QuoteSuffixCodec(BITFINEX_QUOTES).encode("BTC", "USD") == "btcusd"
    assert QuoteSuffixCodec(BITFINEX_QUOTES, lowercase=False).encode("btc", "usd") == "BTCUSD"


def test_separator_codec():
    s = SeparatorCodec("/")
    assert s.encode("btc", "usd") == "BTC/USD"
    assert s.decode("eth/btc") == ("ETH", "BTC")
    assert s.decode("ETH_BTC") == ("ETH", "BTC")
    with pytest.raises(ValueError):
        s.decode("BTCUSD")
    with pytest.raises(ValueError):
        s.decode("/USD")
