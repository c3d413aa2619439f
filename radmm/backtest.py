"""
Offline backtest over a seeded price path.

Drives a QuotingLoop cycle by cycle against a PaperExchange fed by a
mean-reverting random walk, then prints a summary report.

Usage:
    python -m radmm.backtest config.json --capital 0.01 --cycles 288 --seed 7
"""
import argparse
import asyncio
import os
import tempfile
from typing import Any, Dict, Optional

from .adapters import PaperExchange
from .config import load_config
from .logging import make_logger
from .market_data import RandomWalkPriceFeed
from .trading import QuotingLoop
from .types import TERMINAL_STATES, BotConfig


async def _no_sleep(_delay: float) -> None:
    return None


async def run_backtest(cfg: BotConfig, capital: float, cycles: int, start_price: float = 1.0,
                       volatility: float = 0.03, seed: Optional[int] = None,
                       log_path: Optional[str] = None) -> Dict[str, Any]:
    """Run `cycles` quoting cycles and return the loop's final status plus
    price path statistics."""
    feed = RandomWalkPriceFeed(start_price, volatility, seed=seed)
    ex = PaperExchange(feed, swap_fee_rate=cfg.instrument.swap_fee_rate)
    logger = make_logger(log_path or cfg.log_path, cfg.logging)
    loop = QuotingLoop(cfg, ex, user_id="backtest", capital=capital, logger=logger, sleep=_no_sleep)
    await loop.start()

    prices = [feed.current()]
    skipped = 0
    for _ in range(cycles):
        summary = await loop.run_cycle()
        prices.append(feed.current())
        if summary.get("skipped"):
            skipped += 1
        if loop.state in TERMINAL_STATES:
            break
    await loop.stop()
    logger.close()

    status = loop.status()
    status["backtest"] = {
        "cycles_run": loop.cycles,
        "cycles_skipped": skipped,
        "price_start": prices[0],
        "price_end": prices[-1],
        "price_min": min(prices),
        "price_max": max(prices),
        "swaps": len(ex.swaps),
    }
    return status


def print_backtest_report(status: Dict[str, Any]) -> None:
    """Print human-readable backtest report."""
    bt = status["backtest"]
    pnl = status["pnl"]
    inv = status["inventory"] or {}
    print("\n" + "=" * 40)
    print("BACKTEST REPORT")
    print("=" * 40)
    print(f"Instrument: {status['instrument_id']}")
    print(f"Cycles: {bt['cycles_run']} ({bt['cycles_skipped']} skipped)")
    print(f"Final State: {status['state']}")

    print("\nPrice Path:")
    print(f"  - Start / End: {bt['price_start']:.8f} / {bt['price_end']:.8f}")
    print(f"  - Range: {bt['price_min']:.8f} - {bt['price_max']:.8f}")

    print("\nInventory:")
    print(f"  - Base: {inv.get('base_balance', 0.0):.8f}")
    print(f"  - Asset: {inv.get('asset_balance', 0.0):.8f}")
    skew = inv.get("skew")
    print(f"  - Skew: {skew:+.4f}" if skew is not None else "  - Skew: n/a")

    print("\nPnL:")
    print(f"  - Initial Capital: {status['initial_capital']:.8f}")
    print(f"  - Realized: {pnl['realized']:.8f}")
    print(f"  - Unrealized: {pnl['unrealized']:.8f}")
    print(f"  - Fees Paid: {pnl['fees_paid']:.8f}")
    print(f"  - Return: {status['pnl_ratio'] * 100:.2f}%")

    print("\nActivity:")
    print(f"  - Fills: {pnl['trade_count']}")
    print(f"  - Reversals: {pnl['reversals']}")
    print(f"  - Swaps: {bt['swaps']}")
    print(f"  - Volume: {pnl['volume']:.8f}")

    if status["alerts"]:
        print("\nAlerts:")
        for a in status["alerts"][-10:]:
            print(f"  - [{a['level']}] {a['kind']}: {a['message']}")
    print("=" * 40)


def main() -> None:
    parser = argparse.ArgumentParser(description="Backtest the market maker over a simulated pool")
    parser.add_argument("config", help="Path to configuration JSON file")
    parser.add_argument("--capital", type=float, required=True, help="Starting capital in base units")
    parser.add_argument("--cycles", type=int, default=288, help="Number of quoting cycles")
    parser.add_argument("--seed", type=int, default=None, help="Random walk seed")
    parser.add_argument("--price", type=float, default=1.0, help="Starting pool price")
    parser.add_argument("--volatility", type=float, default=0.03, help="Daily volatility of the walk")
    args = parser.parse_args()

    cfg = load_config(args.config)
    log_path = os.path.join(tempfile.gettempdir(), f"radmm_backtest_{os.getpid()}.jsonl")
    status = asyncio.run(run_backtest(cfg, args.capital, args.cycles, args.price,
                                      args.volatility, args.seed, log_path))
    print_backtest_report(status)
    print(f"Event log: {log_path}")


if __name__ == "__main__":
    main()
