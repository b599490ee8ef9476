#!/usr/bin/env python3
"""Order-book smoke check for one configured exchange.

Loads reference data, then fetches top of book for each pair a number of
times and appends one JSON line per snapshot.

Record format per line:
{"ts": 1690000000000, "exchange": "kraken", "pair": "BTC/USD", "bid": 68000.1, "ask": 68000.3,
 "spread_bps": 0.29, "latency_ms": 120.0, "worker_ip": "1.2.3.4", "ok": true}
"""

import argparse
import json
import logging
import time
from pathlib import Path
from typing import Dict, List, Optional

from common.symbol_codec import SeparatorCodec
from core.exchange.common import ExchangeAdapter, ExchangeError, Maker, Pair
from core.exchange.config import ExchangeType
from core.exchange.unified import create_exchange_adapter

logger = logging.getLogger("orderbook_smoke")


def snapshot_record(exchange: str, pair: Pair, maker: Optional[Maker], error: str = "") -> Dict[str, object]:
    bid = maker.best_bid.rate if maker and maker.best_bid else None
    ask = maker.best_ask.rate if maker and maker.best_ask else None
    spread_bps = None
    if bid is not None and ask is not None and bid > 0:
        spread_bps = (ask - bid) / bid * 10000.0
    rec: Dict[str, object] = {
        "ts": int(maker.after_timestamp) if maker else int(time.time() * 1e3),
        "exchange": exchange,
        "pair": pair.symbol,
        "bid": bid,
        "ask": ask,
        "spread_bps": spread_bps,
        "latency_ms": maker.latency_ms if maker else None,
        "worker_ip": maker.worker_ip if maker else "",
        "ok": bool(spread_bps is not None and spread_bps >= 0),
    }
    if error:
        rec["error"] = error
    return rec


def resolve_pairs(adapter: ExchangeAdapter, symbols: List[str]) -> List[Pair]:
    codec = SeparatorCodec("/")
    pairs = []
    for s in symbols:
        try:
            base_code, quote_code = codec.decode(s)
        except ValueError:
            logger.warning(f"Skipping malformed pair {s!r}; use BASE/QUOTE")
            continue
        base = adapter.registry.lookup_coin(base_code)
        quote = adapter.registry.lookup_coin(quote_code)
        pair = adapter.registry.lookup_pair(base, quote) if base and quote else None
        if pair is None or adapter.constraints.symbol_for_pair(adapter.name, pair) is None:
            logger.warning(f"{adapter.name} does not list {s}")
            continue
        pairs.append(pair)
    return pairs


def run(adapter: ExchangeAdapter, pairs: List[Pair], rounds: int, interval_ms: int, out_path: Path) -> Dict[str, int]:
    counts = {p.symbol: 0 for p in pairs}
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with out_path.open("a", encoding="utf-8") as f:
        for i in range(rounds):
            for pair in pairs:
                try:
                    rec = snapshot_record(adapter.name, pair, adapter.order_book(pair))
                except ExchangeError as e:
                    rec = snapshot_record(adapter.name, pair, None, error=str(e))
                f.write(json.dumps(rec, ensure_ascii=False) + "\n")
                if rec["ok"]:
                    counts[pair.symbol] += 1
            if i + 1 < rounds:
                time.sleep(max(0.05, interval_ms / 1000.0))
    return counts


def main(argv: Optional[List[str]] = None) -> int:
    p = argparse.ArgumentParser(description="Exchange order-book smoke")
    p.add_argument("--exchange", required=True, choices=[t.value for t in ExchangeType])
    p.add_argument("--pairs", default="BTC/USD", help="Comma-separated BASE/QUOTE pairs")
    p.add_argument("--rounds", type=int, default=3, help="Snapshots per pair")
    p.add_argument("--interval-ms", type=int, default=1000, help="Delay between rounds in ms")
    p.add_argument("--out", default=str(Path("logs") / "orderbook_smoke.jsonl"), help="Output JSONL path")
    args = p.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    adapter = create_exchange_adapter(args.exchange)
    adapter.get_coins_data()
    adapter.get_pairs_data()

    pairs = resolve_pairs(adapter, [s.strip() for s in args.pairs.split(",") if s.strip()])
    if not pairs:
        print("No listed pairs to check")
        return 2

    counts = run(adapter, pairs, args.rounds, args.interval_ms, Path(args.out))
    print("Counts:", counts)
    return 0 if all(counts.values()) else 1


if __name__ == "__main__":
    raise SystemExit(main())
