"""Command-line entrypoint for the market data layer."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import sys
from typing import Any

from marketlink.config import AppConfig, load_config
from marketlink.http_client import BackendHttpClient
from marketlink.live_channel import build_live_channel
from marketlink.logger import setup_logger
from marketlink.market_data_client import MarketDataClient
from marketlink.models import DisplaySummary, SeriesResult
from marketlink.normalizer import normalize


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="marketlink", description="Market data backend client")
    parser.add_argument("--config", default=None, help="Path to config.yml")
    sub = parser.add_subparsers(dest="command", required=True)

    for name in ("quote", "predict"):
        cmd = sub.add_parser(name)
        cmd.add_argument("name", help="Company name or ticker")
        cmd.add_argument("--timeframe", default="1d")

    train = sub.add_parser("train")
    train.add_argument("name", help="Company name or ticker")

    sub.add_parser("stocks")

    watch = sub.add_parser("watch")
    watch.add_argument("symbol", help="Already resolved ticker")
    watch.add_argument("--seconds", type=float, default=None, help="Stop after N seconds")
    watch.add_argument("--variant", choices=["enveloped", "raw"], default=None)
    return parser


def _print_series(result: SeriesResult, summary: DisplaySummary) -> None:
    if not result.success:
        print(f"FAIL: {result.message}")
        return
    print(f"{result.company or result.ticker} ({result.ticker}): {len(result.points)} points")
    print(f"current={summary.current:.2f} change={summary.change:+.2f}%")


async def _run_watch(config: AppConfig, symbol: str, seconds: float | None, logger: Any) -> int:
    channel = build_live_channel(config.live, logger=logger)

    def on_update(payload: Any) -> None:
        print(json.dumps(payload, default=str), flush=True)

    await channel.subscribe(symbol, on_update)
    try:
        if seconds is None:
            await channel.wait_closed()
        else:
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(channel.wait_closed(), timeout=seconds)
    finally:
        await channel.unsubscribe()
    return 0


async def run(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = load_config(args.config)
    logger = setup_logger(config.logging)

    if args.command == "watch":
        if args.variant:
            config.live.variant = args.variant
        return await _run_watch(config, args.symbol, args.seconds, logger)

    http = BackendHttpClient(config.backend.base_url, config.backend.timeout_sec, logger=logger)
    client = MarketDataClient(http, logger=logger)

    if args.command == "quote":
        result = await client.get_live_data(args.name, args.timeframe)
        _print_series(result, normalize(result))
        return 0 if result.success else 1

    if args.command == "predict":
        prediction = await client.get_prediction(args.name, args.timeframe)
        _print_series(prediction, normalize(prediction))
        if prediction.success:
            print(f"prediction points: {len(prediction.prediction)}")
        return 0 if prediction.success else 1

    if args.command == "train":
        training = await client.trigger_training(args.name)
        print("OK" if training.success else "FAIL", training.message)
        return 0 if training.success else 1

    stocks = await client.get_stocks()
    if not stocks.success:
        print(f"FAIL: {stocks.message}")
        return 1
    for stock in stocks.stocks:
        print(stock)
    return 0


def main() -> None:
    try:
        sys.exit(asyncio.run(run()))
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    main()
