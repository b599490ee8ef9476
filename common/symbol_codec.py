from __future__ import annotations

"""
Symbol Codec utilities

Split exchange-local pair symbols into (base, quote) codes. Some exchanges
publish only a concatenated symbol (``btcusd``, ``ethbtc``); for those the
quote is found by suffix-matching against a known list of quote currencies.
"""

import logging
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)


class SymbolCodec(Protocol):
    def encode(self, base: str, quote: str) -> str: ...

    def decode(self, symbol: str) -> tuple[str, str]: ...


@dataclass(frozen=True)
class QuoteSuffixCodec:
    """Concatenated symbols, quote resolved by suffix.

    The first quote in ``quotes`` order whose suffix leaves a non-empty base
    wins. Order is the tie-break: a base ticker that itself ends in a quote
    code (e.g. ``ustusd``) is only split correctly when the intended quote
    comes earlier in the list.
    """

    quotes: tuple[str, ...]
    lowercase: bool = True

    def encode(self, base: str, quote: str) -> str:
        s = f"{base}{quote}"
        return s.lower() if self.lowercase else s.upper()

    def candidates(self, symbol: str) -> list[tuple[str, str]]:
        s = symbol.replace("-", "").replace("/", "").replace("_", "").upper()
        out = []
        for quote in self.quotes:
            q = quote.upper()
            if s.endswith(q) and len(s) > len(q):
                out.append((s[: -len(q)], q))
        return out

    def decode(self, symbol: str) -> tuple[str, str]:
        found = self.candidates(symbol)
        if not found:
            raise ValueError(f"Cannot decode symbol: {symbol}")
        if len(found) > 1:
            logger.debug(f"ambiguous symbol {symbol}: {found}, using {found[0]}")
        return found[0]


@dataclass(frozen=True)
class SeparatorCodec:
    """Symbols with an explicit separator, e.g. ``BTC/USD`` or ``BTC_USD``."""

    sep: str = "/"

    def encode(self, base: str, quote: str) -> str:
        return f"{base}{self.sep}{quote}".upper()

    def decode(self, symbol: str) -> tuple[str, str]:
        s = symbol.replace("-", self.sep).replace("_", self.sep).replace("/", self.sep).upper()
        if self.sep in s:
            base, quote = s.split(self.sep, 1)
            if base and quote:
                return base, quote
        raise ValueError(f"Cannot decode symbol: {symbol}")


__all__ = [
    "SymbolCodec",
    "QuoteSuffixCodec",
    "SeparatorCodec",
]
