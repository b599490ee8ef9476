from __future__ import annotations

"""
Exchange request signing
========================

Three authentication schemes cover the supported exchanges:
- HEADER_HMAC: JSON payload (base64) signed with HMAC-SHA384, sent in headers
- QUERY_HMAC: URL-encoded query string; the full URL is HMAC-SHA512 signed
- TOKEN: JWT-style ``header.payload.signature`` token signed with HMAC-SHA256

Signers only build requests; they never touch the network. Nonces come from
an injected ``NonceSource`` so tests can pin them.
"""

import base64
import hashlib
import hmac
import json
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable, Mapping, Optional
from urllib.parse import urlencode

from core.exchange.common import ValidationError

if TYPE_CHECKING:
    from core.exchange.config import ExchangeCredentials


class NonceSource:
    """Strictly increasing integer nonces.

    ``clock`` returns an integer timestamp, ``divisor`` scales it (1 keeps
    nanoseconds, 1_000_000 gives milliseconds). When the clock stalls or ticks
    slower than the call rate, the previous nonce plus one is returned.
    """

    def __init__(self, clock: Callable[[], int] = time.time_ns, divisor: int = 1):
        if divisor < 1:
            raise ValidationError(f"nonce divisor must be >= 1, got {divisor}")
        self._clock = clock
        self._divisor = divisor
        self._last = 0
        self._lock = threading.Lock()

    def __call__(self) -> int:
        with self._lock:
            value = max(int(self._clock()) // self._divisor, self._last + 1)
            self._last = value
            return value

    @property
    def last(self) -> int:
        return self._last

    @property
    def divisor(self) -> int:
        return self._divisor


class SigningScheme(str, Enum):
    HEADER_HMAC = "header_hmac"
    QUERY_HMAC = "query_hmac"
    TOKEN = "token"


@dataclass(frozen=True)
class SignedRequest:
    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""


def _compact_json(obj: Mapping[str, object]) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"))


class HeaderHmacSigner:
    def __init__(
        self,
        credentials: "ExchangeCredentials",
        nonce: NonceSource,
        *,
        key_header: str = "X-BFX-APIKEY",
        payload_header: str = "X-BFX-PAYLOAD",
        signature_header: str = "X-BFX-SIGNATURE",
    ):
        self._creds = credentials
        self._nonce = nonce
        self.key_header = key_header
        self.payload_header = payload_header
        self.signature_header = signature_header

    def payload(self, path: str, params: Optional[Mapping[str, object]], nonce: int) -> str:
        data = dict(params or {})
        data["request"] = path
        data["nonce"] = str(nonce)
        return base64.b64encode(_compact_json(data).encode()).decode()

    def signature(self, payload: str) -> str:
        return hmac.new(self._creds.api_secret.encode(), payload.encode(), hashlib.sha384).hexdigest()

    def sign(
        self,
        method: str,
        base_url: str,
        path: str,
        params: Optional[Mapping[str, object]] = None,
    ) -> SignedRequest:
        payload = self.payload(path, params, self._nonce())
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            self.key_header: self._creds.api_key,
            self.payload_header: payload,
            self.signature_header: self.signature(payload),
        }
        return SignedRequest(method=method, url=base_url + path, headers=headers, body="")


class QueryHmacSigner:
    def __init__(
        self,
        credentials: "ExchangeCredentials",
        nonce: NonceSource,
        *,
        signature_header: str = "apisign",
    ):
        self._creds = credentials
        self._nonce = nonce
        self.signature_header = signature_header

    def sign(
        self,
        method: str,
        base_url: str,
        path: str,
        params: Optional[Mapping[str, object]] = None,
    ) -> SignedRequest:
        query = dict(params or {})
        query["apikey"] = self._creds.api_key
        query["nonce"] = str(self._nonce())
        url = f"{base_url}{path}?{urlencode(sorted(query.items()))}"
        sig = hmac.new(self._creds.api_secret.encode(), url.encode(), hashlib.sha512).hexdigest()
        return SignedRequest(method=method, url=url, headers={self.signature_header: sig}, body="")


class TokenSigner:
    """JWT-style auth token; the nonce is expected in milliseconds."""

    HEADER = {"alg": "HS256", "typ": "JWT"}

    def __init__(
        self,
        credentials: "ExchangeCredentials",
        nonce: NonceSource,
        *,
        auth_header: str = "X-Quoine-Auth",
        extra_headers: Optional[Mapping[str, str]] = None,
    ):
        self._creds = credentials
        self._nonce = nonce
        self.auth_header = auth_header
        self.extra_headers = dict(extra_headers or {})

    def token(self, path: str, nonce: int) -> str:
        header64 = base64.b64encode(_compact_json(self.HEADER).encode()).decode()
        payload = {"nonce": str(nonce), "path": path, "token_id": self._creds.api_key}
        payload64 = base64.b64encode(_compact_json(payload).encode()).decode()
        signing_input = f"{header64}.{payload64}"
        digest = hmac.new(self._creds.api_secret.encode(), signing_input.encode(), hashlib.sha256).digest()
        return f"{signing_input}.{base64.urlsafe_b64encode(digest).decode()}"

    def sign(
        self,
        method: str,
        base_url: str,
        path: str,
        params: Optional[Mapping[str, object]] = None,
    ) -> SignedRequest:
        headers = {"Content-Type": "application/json", **self.extra_headers}
        headers[self.auth_header] = self.token(path, self._nonce())
        body = _compact_json(params) if params else ""
        return SignedRequest(method=method, url=base_url + path, headers=headers, body=body)


_SIGNERS = {
    SigningScheme.HEADER_HMAC: HeaderHmacSigner,
    SigningScheme.QUERY_HMAC: QueryHmacSigner,
    SigningScheme.TOKEN: TokenSigner,
}


def make_signer(scheme: SigningScheme, credentials: "ExchangeCredentials", nonce: NonceSource, **options):
    try:
        cls = _SIGNERS[SigningScheme(scheme)]
    except (KeyError, ValueError) as e:
        raise ValidationError(f"Unsupported signing scheme: {scheme}") from e
    return cls(credentials, nonce, **options)


# Nonce sources shared per API key
_nonce_lock = threading.Lock()
_nonce_sources: dict[tuple[str, int], NonceSource] = {}


def get_nonce_source(credentials: "ExchangeCredentials", divisor: int = 1) -> NonceSource:
    """Process-wide ``NonceSource`` for ``credentials.api_key`` at ``divisor``.

    Adapters sharing a key must share the source, otherwise their nonces can
    collide and the exchange rejects the later request.
    """
    key = (credentials.api_key, divisor)
    with _nonce_lock:
        source = _nonce_sources.get(key)
        if source is None:
            source = NonceSource(divisor=divisor)
            _nonce_sources[key] = source
        return source


def reset_nonce_sources() -> None:
    with _nonce_lock:
        _nonce_sources.clear()


__all__ = [
    "NonceSource",
    "get_nonce_source",
    "reset_nonce_sources",
    "SigningScheme",
    "SignedRequest",
    "HeaderHmacSigner",
    "QueryHmacSigner",
    "TokenSigner",
    "make_signer",
]
