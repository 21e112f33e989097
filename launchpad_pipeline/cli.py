"""
Launchpad Pipeline - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line access to the pipeline.

- price:  fetch a pool's price once and print the snapshot
- watch:  poll a pool's price until interrupted
- trades: reconcile and print a pool's trade history

Configuration comes from the environment (and .env); a few
options can be overridden on the command line.

============================================================
USAGE
============================================================
python -m launchpad_pipeline price 0x04ab...
python -m launchpad_pipeline watch 0x04ab... --count 10
python -m launchpad_pipeline trades 0x04ab... --kind buy --ascending

EXIT CODES:
    0   success
    1   configuration, network or data error
    130 interrupted

============================================================
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from . import __version__
from .cache import SqlTradeCache, TradeCacheStore
from .config import PipelineConfig
from .errors import ConfigurationError, PipelineError
from .ledger import LedgerReader, StarknetRpcLedger
from .logging_utils import mask_address, mask_url, setup_logging
from .normalizer import EventNormalizer
from .poller import PricePoller, PriceSnapshot
from .pricing import format_units
from .reconciliation import TradeFilter, TradeReconciler
from .types import DataState, TradeKind


logger = logging.getLogger(__name__)


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="launchpad-pipeline",
        description="Bonding-curve price and trade reconciliation pipeline",
    )

    parser.add_argument(
        "--env-file",
        type=str,
        metavar="PATH",
        help="Load environment variables from this file",
    )
    parser.add_argument(
        "--rpc-url",
        type=str,
        help="Ledger JSON-RPC endpoint (overrides LAUNCHPAD_RPC_URL)",
    )
    parser.add_argument(
        "--decimals",
        type=int,
        help="Token decimals (overrides LAUNCHPAD_TOKEN_DECIMALS)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print machine-readable JSON",
    )

    # --------------------------------------------------------
    # Logging Options
    # --------------------------------------------------------
    logging_group = parser.add_argument_group("Logging Options")

    logging_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: LAUNCHPAD_LOG_LEVEL or INFO)",
    )
    logging_group.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        help="Logging format (default: LAUNCHPAD_LOG_FORMAT or text)",
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    # --------------------------------------------------------
    # Commands
    # --------------------------------------------------------
    commands = parser.add_subparsers(dest="command", required=True)

    price = commands.add_parser("price", help="Fetch a pool's price once")
    price.add_argument("pool", help="Pool contract address")

    watch = commands.add_parser("watch", help="Poll a pool's price until interrupted")
    watch.add_argument("pool", help="Pool contract address")
    watch.add_argument(
        "--count",
        type=int,
        default=0,
        help="Stop after this many snapshots (default: run until interrupted)",
    )

    trades = commands.add_parser("trades", help="Reconcile and print trade history")
    trades.add_argument("pool", help="Pool contract address")
    trades.add_argument("--kind", choices=[k.value for k in TradeKind], help="Only this side")
    trades.add_argument("--ascending", action="store_true", help="Oldest first")
    trades.add_argument("--limit", type=int, default=20, help="Trades to print (default: 20)")

    return parser


# ============================================================
# CLI CONFIGURATION BUILDER
# ============================================================

def build_config(args: argparse.Namespace) -> PipelineConfig:
    """
    Build configuration from the environment and CLI overrides.

    Raises:
        ConfigurationError: If the result is invalid
    """
    config = PipelineConfig.from_env(args.env_file)

    if args.rpc_url:
        config.ledger.rpc_url = args.rpc_url
    if args.decimals is not None:
        config.normalizer.token_decimals = args.decimals
    if args.log_level:
        config.log_level = args.log_level
    if args.log_format:
        config.log_format = args.log_format
    if getattr(args, "ascending", False):
        config.reconciler.newest_first = False

    config.validate()
    return config


def create_ledger(config: PipelineConfig) -> LedgerReader:
    """Ledger client for the configured endpoint."""
    return StarknetRpcLedger(config.ledger)


async def create_cache(config: PipelineConfig) -> Optional[TradeCacheStore]:
    """SQL trade cache, or None when no cache URL is configured."""
    if not config.cache.enabled:
        return None
    cache = SqlTradeCache.from_config(config.cache)
    await cache.create_tables()
    return cache


# ============================================================
# OUTPUT
# ============================================================

def format_snapshot(snapshot: PriceSnapshot, decimals: int) -> str:
    """One-line human-readable snapshot."""
    if snapshot.price is None:
        error = f" ({snapshot.last_error.message})" if snapshot.last_error else ""
        return f"{mask_address(snapshot.pool_address)} [{snapshot.status.value}] no price{error}"

    change = f"{snapshot.change.percentage:+.2f}%"
    stale = " STALE" if snapshot.is_stale else ""
    return (
        f"{mask_address(snapshot.pool_address)} [{snapshot.status.value}{stale}] "
        f"price={format_units(snapshot.price, decimals)} "
        f"change={change} "
        f"progress={snapshot.progress:.2f}% "
        f"market_cap={format_units(snapshot.market_cap or 0, decimals * 2)}"
        + (" migrated" if snapshot.migrated else "")
    )


def _print_snapshot(snapshot: PriceSnapshot, args: argparse.Namespace, decimals: int) -> None:
    if args.json:
        print(json.dumps(snapshot.to_dict()))
    else:
        print(format_snapshot(snapshot, decimals))


# ============================================================
# COMMANDS
# ============================================================

async def run_price(args: argparse.Namespace, config: PipelineConfig) -> int:
    ledger = create_ledger(config)
    poller = PricePoller(ledger, args.pool, config.poller)
    try:
        snapshot = await poller.refresh()
        _print_snapshot(snapshot, args, config.normalizer.token_decimals)
        return 0 if snapshot.data_state == DataState.FRESH else 1
    finally:
        await poller.stop()
        await ledger.close()


async def run_watch(args: argparse.Namespace, config: PipelineConfig) -> int:
    ledger = create_ledger(config)
    poller = PricePoller(ledger, args.pool, config.poller)
    done = asyncio.Event()
    seen = 0

    def on_snapshot(snapshot: PriceSnapshot) -> None:
        nonlocal seen
        seen += 1
        _print_snapshot(snapshot, args, config.normalizer.token_decimals)
        if args.count and seen >= args.count:
            done.set()

    poller.add_listener(on_snapshot)
    try:
        await poller.start()
        await done.wait()
        return 0
    finally:
        await poller.stop()
        await ledger.close()


async def run_trades(args: argparse.Namespace, config: PipelineConfig) -> int:
    ledger = create_ledger(config)
    cache = await create_cache(config)
    reconciler = TradeReconciler(
        ledger,
        EventNormalizer.from_config(config.normalizer, pool_address=args.pool),
        cache=cache,
        config=config.reconciler,
    )

    try:
        history = await reconciler.refresh(args.pool)
        trade_filter = TradeFilter(kind=TradeKind(args.kind) if args.kind else None)
        records = history.filter(trade_filter)
        stats = history.stats(trade_filter)
        decimals = config.normalizer.token_decimals

        if args.json:
            print(json.dumps({
                "pool_address": history.pool_address,
                "trades": [r.to_dict() for r in records[:args.limit]],
                "stats": {
                    "buy_count": stats.buy_count,
                    "sell_count": stats.sell_count,
                    "total_volume": str(stats.total_volume),
                },
            }))
            return 0

        for record in records[:args.limit]:
            print(
                f"{record.timestamp.isoformat()} {record.kind.value.upper():4s} "
                f"{format_units(record.amount, decimals)} @ {format_units(record.price, decimals)} "
                f"by {mask_address(record.trader)} tx={mask_address(record.tx_hash)}"
            )
        print(
            f"{stats.total_count} trades ({stats.buy_count} buys, {stats.sell_count} sells), "
            f"volume {format_units(stats.total_volume, decimals)}"
        )
        return 0
    finally:
        await reconciler.close()
        if cache is not None:
            await cache.close()
        await ledger.close()


COMMANDS = {
    "price": run_price,
    "watch": run_watch,
    "trades": run_trades,
}


# ============================================================
# MAIN ENTRY POINT
# ============================================================

async def async_main(args: argparse.Namespace, config: PipelineConfig) -> int:
    """
    Async main entry point.

    Returns:
        Exit code
    """
    logger.info(f"Ledger endpoint: {mask_url(config.ledger.rpc_url)}")
    try:
        return await COMMANDS[args.command](args, config)
    except PipelineError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    try:
        config = build_config(args)
    except ConfigurationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    setup_logging(config.log_level, config.log_format)

    try:
        return asyncio.run(async_main(args, config))
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        return 130


# ============================================================
# MODULE EXECUTION
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
