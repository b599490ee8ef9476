from __future__ import annotations

import base64
import hashlib
import hmac
import json
import threading
from urllib.parse import parse_qs, urlsplit

import pytest

from core.exchange.common import ValidationError
from core.exchange.config import ExchangeCredentials
from core.exchange.signing import (
    HeaderHmacSigner,
    NonceSource,
    QueryHmacSigner,
    SigningScheme,
    TokenSigner,
    get_nonce_source,
    make_signer,
    reset_nonce_sources,
)

CREDS = ExchangeCredentials(api_key="k", api_secret="s")


def _constant(value):
    return NonceSource(clock=lambda: value)


# ------------- nonce -------------


def test_nonce_strictly_increasing_when_clock_stalls():
    nonce = _constant(1000)
    values = [nonce() for _ in range(5)]
    assert values == [1000, 1001, 1002, 1003, 1004]


def test_nonce_follows_clock_and_divisor():
    ticks = iter([5_000_000, 9_000_000, 9_000_001])
    nonce = NonceSource(clock=lambda: next(ticks), divisor=1_000_000)
    assert [nonce(), nonce(), nonce()] == [5, 9, 10]


def test_nonce_unique_across_threads():
    nonce = _constant(1)
    seen = []
    lock = threading.Lock()

    def worker():
        local = [nonce() for _ in range(200)]
        with lock:
            seen.extend(local)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(seen) == len(set(seen)) == 1600


def test_nonce_rejects_bad_divisor():
    with pytest.raises(ValidationError):
        NonceSource(divisor=0)


def test_shared_nonce_source_per_key_and_divisor():
    source = get_nonce_source(CREDS, 1_000_000)
    assert get_nonce_source(ExchangeCredentials(api_key="k", api_secret="other"), 1_000_000) is source
    assert get_nonce_source(CREDS, 1) is not source
    assert get_nonce_source(ExchangeCredentials(api_key="k2", api_secret="s"), 1_000_000) is not source

    first = source()
    assert get_nonce_source(CREDS, 1_000_000)() > first

    reset_nonce_sources()
    assert get_nonce_source(CREDS, 1_000_000) is not source


# ------------- header HMAC -------------


def test_header_hmac_is_deterministic():
    signer = HeaderHmacSigner(CREDS, _constant(123))
    payload = signer.payload("/v1/order/new", {}, 123)

    decoded = json.loads(base64.b64decode(payload))
    assert decoded == {"request": "/v1/order/new", "nonce": "123"}
    assert base64.b64decode(payload) == b'{"nonce":"123","request":"/v1/order/new"}'

    expected = hmac.new(b"s", payload.encode(), hashlib.sha384).hexdigest()
    assert signer.signature(payload) == expected
    assert signer.signature(payload) == signer.signature(payload)


def test_header_hmac_changes_with_any_byte():
    signer = HeaderHmacSigner(CREDS, _constant(123))
    payload = signer.payload("/v1/order/new", {}, 123)
    base_sig = signer.signature(payload)

    for i in range(len(payload)):
        flipped = payload[:i] + chr(ord(payload[i]) ^ 1) + payload[i + 1:]
        assert signer.signature(flipped) != base_sig

    other_secret = HeaderHmacSigner(ExchangeCredentials("k", "t"), _constant(123))
    assert other_secret.signature(payload) != base_sig


def test_header_hmac_sign_builds_headers():
    signer = HeaderHmacSigner(CREDS, _constant(7))
    req = signer.sign("POST", "https://api.example.com", "/v1/balances", {"a": 1})
    assert req.method == "POST"
    assert req.url == "https://api.example.com/v1/balances"
    assert req.body == ""
    assert req.headers["X-BFX-APIKEY"] == "k"
    payload = req.headers["X-BFX-PAYLOAD"]
    assert json.loads(base64.b64decode(payload)) == {"a": 1, "request": "/v1/balances", "nonce": "7"}
    assert req.headers["X-BFX-SIGNATURE"] == hmac.new(b"s", payload.encode(), hashlib.sha384).hexdigest()


# ------------- query HMAC -------------


def test_query_hmac_signs_full_url():
    signer = QueryHmacSigner(CREDS, _constant(99))
    req = signer.sign("GET", "https://api.example.com/0", "/private/Balance", {"pair": "XBTUSD"})
    parts = urlsplit(req.url)
    assert parts.path == "/0/private/Balance"
    assert parse_qs(parts.query) == {"apikey": ["k"], "nonce": ["99"], "pair": ["XBTUSD"]}
    assert req.headers["apisign"] == hmac.new(b"s", req.url.encode(), hashlib.sha512).hexdigest()
    assert req.body == ""


# ------------- token -------------


def _b64json(part: str) -> dict:
    return json.loads(base64.b64decode(part))


def test_token_signer_format():
    signer = TokenSigner(CREDS, _constant(1_700_000_000_000), extra_headers={"X-Quoine-API-Version": "2"})
    req = signer.sign("POST", "https://api.example.com", "/orders/", {"side": "buy"})

    token = req.headers["X-Quoine-Auth"]
    header64, payload64, sig = token.split(".")
    assert _b64json(header64) == {"alg": "HS256", "typ": "JWT"}
    assert _b64json(payload64) == {"nonce": "1700000000000", "path": "/orders/", "token_id": "k"}

    digest = hmac.new(b"s", f"{header64}.{payload64}".encode(), hashlib.sha256).digest()
    assert sig == base64.urlsafe_b64encode(digest).decode()
    assert req.headers["X-Quoine-API-Version"] == "2"
    assert json.loads(req.body) == {"side": "buy"}


def test_token_signer_empty_body_without_params():
    req = TokenSigner(CREDS, _constant(1)).sign("GET", "https://api.example.com", "/accounts/balance")
    assert req.body == ""
    assert req.url == "https://api.example.com/accounts/balance"


# ------------- factory -------------


def test_make_signer_dispatch():
    nonce = _constant(1)
    assert isinstance(make_signer(SigningScheme.HEADER_HMAC, CREDS, nonce), HeaderHmacSigner)
    assert isinstance(make_signer("query_hmac", CREDS, nonce), QueryHmacSigner)
    assert isinstance(make_signer(SigningScheme.TOKEN, CREDS, nonce, auth_header="X-Auth"), TokenSigner)
    with pytest.raises(ValidationError):
        make_signer("rsa", CREDS, nonce)
