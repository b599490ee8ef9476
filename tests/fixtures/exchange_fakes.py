"""
Test Fixtures — Exchange Fakes
==============================

Recording HTTP client that serves canned response text by URL substring,
so adapters can be exercised without network access.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from core.exchange.common import TransportError


@dataclass
class RecordedCall:
    method: str
    url: str
    params: Optional[Dict[str, Any]] = None
    headers: Optional[Dict[str, str]] = None
    body: Optional[str] = None


@dataclass
class RecordingHttp:
    """Fake ``HttpClient``.

    ``routes`` maps a URL substring to response text, a list of texts (served
    in order, the last one repeats) or an exception instance to raise. The
    longest matching pattern wins.
    """

    routes: Dict[str, Any] = field(default_factory=dict)
    ip: str = "10.0.0.1"
    calls: List[RecordedCall] = field(default_factory=list)

    def request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Mapping[str, object]] = None,
        headers: Optional[Mapping[str, str]] = None,
        body: Optional[str] = None,
    ) -> str:
        self.calls.append(
            RecordedCall(
                method=method,
                url=url,
                params=dict(params) if params else None,
                headers=dict(headers) if headers else None,
                body=body,
            )
        )
        for pattern in sorted(self.routes, key=len, reverse=True):
            if pattern in url:
                return self._serve(pattern)
        raise TransportError(f"no fake route for {method} {url}")

    def get(self, url: str, params: Optional[Mapping[str, object]] = None) -> str:
        return self.request("GET", url, params=params)

    def external_ip(self) -> str:
        return self.ip

    def _serve(self, pattern: str) -> str:
        response = self.routes[pattern]
        if isinstance(response, list):
            response = response.pop(0) if len(response) > 1 else response[0]
        if isinstance(response, Exception):
            raise response
        return response

    def calls_to(self, fragment: str) -> List[RecordedCall]:
        return [c for c in self.calls if fragment in c.url]
