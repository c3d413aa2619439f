"""
RadFi market maker - main entry point.

Usage:
    python -m radmm.main config.json --user bc1q... --capital 0.01             # Live trading
    python -m radmm.main config.json --user demo --capital 0.01 --dry-run      # Paper pool
    python -m radmm.main portfolio.json --user demo --capital 1 --weights 3,1  # Several instruments

A config document with an `instruments` list starts one quoting loop per
instrument and splits --capital across them (evenly unless --weights is
given).
"""
import argparse
import asyncio
import signal
import sys
from typing import List

from .adapters import PaperExchange, RadFiAdapter
from .config import load_configs
from .logging import make_logger
from .market_data import RandomWalkPriceFeed
from .store import JsonFileStateStore
from .supervisor import Supervisor


def parse_weights(text: str) -> List[float]:
    """Parse '3,1' into [3.0, 1.0]."""
    try:
        return [float(w) for w in text.split(",")]
    except ValueError:
        raise argparse.ArgumentTypeError(f"weights must be comma-separated numbers, got {text!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run the RadFi concentrated-liquidity market maker"
    )
    parser.add_argument("config", help="Path to configuration JSON file (one or several instruments)")
    parser.add_argument("--user", required=True, help="User id (wallet address for live runs)")
    parser.add_argument("--capital", type=float, required=True,
                        help="Starting capital in base units, split across instruments")
    parser.add_argument("--weights", type=parse_weights, default=None,
                        help="Comma-separated capital weights, one per instrument")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Quote against a simulated pool instead of placing real positions",
    )
    parser.add_argument("--price", type=float, default=1.0,
                        help="Starting price of the simulated pool (dry-run only)")
    parser.add_argument("--volatility", type=float, default=0.03,
                        help="Daily volatility of the simulated pool (dry-run only)")
    parser.add_argument("--seed", type=int, default=None, help="Seed for the simulated pool")
    parser.add_argument("--state-dir", default=None, help="Override state_dir from the config")
    return parser


async def _amain(argv=None) -> int:
    """Main async entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    cfgs = load_configs(args.config)
    if args.weights is not None and len(args.weights) != len(cfgs):
        parser.error(f"--weights has {len(args.weights)} entries for {len(cfgs)} instruments")
    ids = [c.instrument.instrument_id for c in cfgs]

    if args.dry_run:
        print("⚠️  DRY RUN MODE ACTIVE ⚠️")
        print("No positions will be placed. Quoting against simulated pools...")
        print("=" * 60)
        # one independent pool per instrument
        feeds = {
            iid: RandomWalkPriceFeed(args.price, args.volatility,
                                     seed=None if args.seed is None else args.seed + i)
            for i, iid in enumerate(ids)
        }

        def exchange_factory(c):
            return PaperExchange(feeds[c.instrument.instrument_id],
                                 swap_fee_rate=c.instrument.swap_fee_rate, echo=True)
    else:
        print("🚀 Starting live market maker...")
        print("=" * 60)

        def exchange_factory(c):
            return RadFiAdapter(c.instrument, user_address=args.user)

    store = JsonFileStateStore(args.state_dir or cfgs[0].state_dir)
    logger = make_logger(cfgs[0].log_path, cfgs[0].logging)
    supervisor = Supervisor(exchange_factory, store=store, logger=logger, verbose=True)

    try:
        statuses = await supervisor.start_portfolio(args.user, cfgs, args.capital, args.weights)
        for status in statuses:
            print(f"Started {status['instrument_id']} for {status['user_id']} "
                  f"(capital={status['initial_capital']}, state={status['state']})")

        loop = asyncio.get_running_loop()
        stopping = []

        def _request_shutdown():
            if not stopping:
                stopping.append(asyncio.create_task(supervisor.shutdown_all()))

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, _request_shutdown)
            except NotImplementedError:
                pass

        await supervisor.wait()
        if stopping:
            await stopping[0]
        else:
            await supervisor.shutdown_all()
    except Exception as e:
        print(f"\n\n❌ Fatal error: {e}")
        await supervisor.shutdown_all()
        raise
    finally:
        logger.close()

    finals = [supervisor.get_status(args.user, iid) for iid in ids]
    for final in finals:
        print(f"\nMarket maker stopped: {final['instrument_id']} (state={final['state']}).")
    return 1 if any(f["state"] == "failed" for f in finals) else 0


def main() -> None:
    sys.exit(asyncio.run(_amain()))


if __name__ == "__main__":
    main()
