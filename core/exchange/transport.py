from __future__ import annotations

"""
HTTP transport
==============

``requests``-backed implementation of the ``HttpClient`` protocol. It returns
raw response text and leaves parsing to the adapters. Failures surface as
``TransportError``; there is no retry layer here, so order submissions are
never sent twice.
"""

import logging
import threading
import time
from typing import Callable, Mapping, Optional

import requests

from core.exchange.common import TransportError

logger = logging.getLogger(__name__)

DEFAULT_IP_ECHO_URL = "https://api.ipify.org"


class RequestsTransport:
    def __init__(
        self,
        *,
        timeout_s: float = 10.0,
        session: Optional[requests.Session] = None,
        ip_echo_url: str = DEFAULT_IP_ECHO_URL,
        ip_retry_s: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.timeout_s = timeout_s
        self._session = session or requests.Session()
        self._ip_echo_url = ip_echo_url
        self._ip: Optional[str] = None
        self._ip_failed_at: Optional[float] = None
        self._ip_retry_s = ip_retry_s
        self._clock = clock
        self._ip_lock = threading.Lock()

    def request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Mapping[str, object]] = None,
        headers: Optional[Mapping[str, str]] = None,
        body: Optional[str] = None,
    ) -> str:
        try:
            resp = self._session.request(
                method.upper(),
                url,
                params=dict(params) if params else None,
                headers=dict(headers) if headers else None,
                data=body.encode("utf-8") if body else None,
                timeout=self.timeout_s,
            )
        except requests.RequestException as e:
            raise TransportError(f"{method} {url} failed: {e}") from e
        if resp.status_code >= 400:
            raise TransportError(f"{method} {url} returned HTTP {resp.status_code}: {resp.text[:200]}")
        return resp.text

    def get(self, url: str, params: Optional[Mapping[str, object]] = None) -> str:
        return self.request("GET", url, params=params)

    def external_ip(self) -> str:
        """Public IP of this worker, fetched once. Empty string when unknown.

        After a failed lookup no new attempt is made for ``ip_retry_s`` seconds.
        """
        with self._ip_lock:
            if self._ip is not None:
                return self._ip
            now = self._clock()
            if self._ip_failed_at is not None and now - self._ip_failed_at < self._ip_retry_s:
                return ""
            try:
                self._ip = self.get(self._ip_echo_url).strip()
            except TransportError as e:
                self._ip_failed_at = now
                logger.warning(f"Could not discover external IP (next attempt in {self._ip_retry_s:.0f}s): {e}")
                return ""
            return self._ip

    def close(self) -> None:
        self._session.close()


__all__ = ["RequestsTransport", "DEFAULT_IP_ECHO_URL"]
