"""
Supervisor: registry and control surface for quoting loops.

One QuotingLoop (and one asyncio task) per (user_id, instrument_id). The
registry is an explicit object owned by the caller, so tests and processes
can run several independent supervisors side by side.
"""
import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from .adapters import ExchangeClient
from .errors import InstanceExists, InstanceNotFound
from .inventory import pnl_ratio
from .logging import ErrorContext, JsonlLogger
from .store import StateStore
from .trading import QuotingLoop
from .types import TERMINAL_STATES, BotConfig

Key = Tuple[str, str]

MIN_INSTRUMENT_CAPITAL = 0.00127


def split_capital(capital: float, n: int, weights: Optional[Sequence[float]] = None,
                  minimum: float = MIN_INSTRUMENT_CAPITAL) -> List[float]:
    """Divide `capital` across n instruments (evenly unless weights are given).

    Raises:
        ValueError: weights do not match n, or a share falls below `minimum`
    """
    if n <= 0:
        return []
    if weights is None:
        weights = [1.0] * n
    if len(weights) != n or any(w < 0 for w in weights) or sum(weights) <= 0:
        raise ValueError("weights must be non-negative, one per instrument, and not all zero")
    total = float(sum(weights))
    shares = [capital * w / total for w in weights]
    for s in shares:
        if s < minimum:
            raise ValueError(f"capital share {s:.8f} below minimum {minimum}")
    return shares


class Supervisor:
    """Start, stop, pause and inspect quoting loops.

    Args:
        exchange_factory: Builds the exchange client for an instrument config
        store: Snapshot store shared by all loops (keys never collide)
        logger: Supervisor-level event log
        loop_factory: Override for building QuotingLoop instances
    """

    def __init__(
        self,
        exchange_factory: Callable[[BotConfig], ExchangeClient],
        store: Optional[StateStore] = None,
        logger: Optional[JsonlLogger] = None,
        loop_factory: Optional[Callable[..., QuotingLoop]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        verbose: bool = False,
    ):
        self.exchange_factory = exchange_factory
        self.store = store
        self.logger = logger
        self.loop_factory = loop_factory or QuotingLoop
        self._sleep = sleep
        self.verbose = verbose
        self._loops: Dict[Key, QuotingLoop] = {}
        self._tasks: Dict[Key, asyncio.Task] = {}

    def _log(self, event: str, payload: Dict[str, Any]) -> None:
        if self.logger is not None:
            self.logger.info(event, payload)

    def _get(self, user_id: str, instrument_id: str) -> QuotingLoop:
        loop = self._loops.get((user_id, instrument_id))
        if loop is None:
            raise InstanceNotFound(f"no quoting loop for {user_id}/{instrument_id}")
        return loop

    def is_active(self, user_id: str, instrument_id: str) -> bool:
        task = self._tasks.get((user_id, instrument_id))
        return task is not None and not task.done()

    async def start(self, user_id: str, cfg: BotConfig, capital: float) -> Dict[str, Any]:
        """Create, initialize and launch a loop; returns its first status.

        Raises:
            InstanceExists: a loop for this pair is still running
        """
        key = (user_id, cfg.instrument.instrument_id)
        if self.is_active(*key):
            raise InstanceExists(f"quoting loop already running for {key[0]}/{key[1]}")
        ex = self.exchange_factory(cfg)
        loop = self.loop_factory(cfg, ex, user_id=user_id, capital=capital, store=self.store,
                                 sleep=self._sleep, verbose=self.verbose)
        await loop.start()
        self._loops[key] = loop
        self._tasks[key] = asyncio.create_task(loop.run(), name=f"radmm:{key[0]}:{key[1]}")
        self._log("instance_started", {"user_id": user_id, "instrument_id": key[1], "capital": capital,
                                       "state": loop.state.value})
        return loop.status()

    async def start_portfolio(self, user_id: str, cfgs: Sequence[BotConfig], capital: float,
                              weights: Optional[Sequence[float]] = None) -> List[Dict[str, Any]]:
        """Split `capital` across several instruments and start each."""
        shares = split_capital(capital, len(cfgs), weights)
        return [await self.start(user_id, cfg, share) for cfg, share in zip(cfgs, shares)]

    async def stop(self, user_id: str, instrument_id: str) -> Dict[str, Any]:
        """Stop a loop after cancelling its orders; returns its final status."""
        key = (user_id, instrument_id)
        loop = self._get(*key)
        task = self._tasks.pop(key, None)
        if task is not None and not task.done():
            loop.request_stop()
            try:
                await task
            except Exception as e:
                if self.logger is not None:
                    ErrorContext.log_operation_error(self.logger, "stop", e, {
                        "user_id": user_id, "instrument_id": instrument_id,
                    })
        if loop.state not in TERMINAL_STATES:
            await loop.stop()
        await loop.close()
        self._log("instance_stopped", {"user_id": user_id, "instrument_id": instrument_id,
                                       "state": loop.state.value})
        return loop.status()

    def pause(self, user_id: str, instrument_id: str) -> Dict[str, Any]:
        loop = self._get(user_id, instrument_id)
        loop.pause()
        return loop.status()

    def resume(self, user_id: str, instrument_id: str) -> Dict[str, Any]:
        loop = self._get(user_id, instrument_id)
        loop.resume()
        return loop.status()

    def get_status(self, user_id: str, instrument_id: str) -> Dict[str, Any]:
        """Status dict; unknown pairs report `state: not_found` instead of raising."""
        loop = self._loops.get((user_id, instrument_id))
        if loop is None:
            return {"user_id": user_id, "instrument_id": instrument_id,
                    "running": False, "state": "not_found"}
        return loop.status()

    def get_user_position(self, user_id: str) -> Dict[str, Any]:
        """Aggregate PnL and volume over every instrument of `user_id`."""
        loops = [lp for (uid, _), lp in self._loops.items() if uid == user_id]
        capital = sum(lp.initial_capital for lp in loops)
        realized = sum(lp.pnl.realized for lp in loops)
        unrealized = sum(lp.pnl.unrealized for lp in loops)
        return {
            "user_id": user_id,
            "instruments": [lp.instrument_id for lp in loops],
            "initial_capital": capital,
            "realized": realized,
            "unrealized": unrealized,
            "fees_paid": sum(lp.pnl.fees_paid for lp in loops),
            "volume": sum(lp.pnl.volume for lp in loops),
            "pnl_ratio": (realized + unrealized) / capital if capital > 0 else 0.0,
            "by_instrument": {
                lp.instrument_id: pnl_ratio(lp.pnl, lp.initial_capital) for lp in loops
            },
        }

    def list_instances(self) -> List[Dict[str, Any]]:
        return [
            {"user_id": uid, "instrument_id": iid, "state": lp.state.value,
             "active": self.is_active(uid, iid)}
            for (uid, iid), lp in sorted(self._loops.items())
        ]

    async def wait(self) -> None:
        """Wait until every launched loop task has finished."""
        tasks = [t for t in self._tasks.values() if not t.done()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown_all(self) -> None:
        for uid, iid in list(self._loops):
            await self.stop(uid, iid)
