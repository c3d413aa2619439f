"""
Pool market data tracking and price feeds.

MarketData keeps the latest pool snapshot plus a rolling price history
(288 samples, one day at five-minute cycles) and derives the volatility
estimate the spread policy consumes:

    volatility = stdev(prices[-lookback:]) / mean(prices[-lookback:])

Until enough samples exist the configured default is used.

Price feeds supply prices to the paper exchange. Randomness lives only in
RandomWalkPriceFeed and is driven by an injected or seeded random.Random,
so quoting logic stays deterministic under test.
"""
import math
import random
import statistics
from collections import deque
from dataclasses import dataclass
from typing import Deque, Iterable, List, Optional

from .logging import JsonlLogger
from .types import PoolState
from .utils import now_ms


@dataclass
class PoolSnapshot:
    """Latest observed pool state.

    Attributes:
        price: Base per asset
        volume_24h: Pool volume over the last day (base units)
        tvl: Total value locked (base units)
        initial_price: First price seen this session
        last_update_ms: Time of the last snapshot
    """
    price: float = 0.0
    volume_24h: float = 0.0
    tvl: float = 0.0
    initial_price: Optional[float] = None
    last_update_ms: int = 0


class MarketData:
    """Rolling pool state for one instrument."""

    def __init__(self, logger: Optional[JsonlLogger] = None, history: int = 288):
        self.state = PoolSnapshot()
        self.logger = logger
        self.prices: Deque[float] = deque(maxlen=history)

    def on_pool_state(self, ps: PoolState, ts_ms: Optional[int] = None) -> None:
        s = self.state
        s.price = ps.price
        s.volume_24h = ps.volume_24h
        s.tvl = ps.tvl
        s.last_update_ms = ts_ms if ts_ms is not None else now_ms()
        if s.initial_price is None:
            s.initial_price = ps.price
        self.prices.append(ps.price)

    def has_price(self) -> bool:
        return self.state.price > 0

    def volatility(self, lookback: int = 48, min_samples: int = 5, default: float = 0.03) -> float:
        """Relative price dispersion over the lookback window."""
        recent = list(self.prices)[-lookback:]
        if len(recent) < max(2, min_samples):
            return default
        mean = statistics.fmean(recent)
        if mean <= 0:
            return default
        return statistics.pstdev(recent, mu=mean) / mean

    def token_appreciation(self) -> float:
        """Fractional price change since the first snapshot of the session."""
        s = self.state
        if not s.initial_price or s.price <= 0:
            return 0.0
        return (s.price - s.initial_price) / s.initial_price

    def restore(self, prices: Iterable[float], initial_price: Optional[float] = None) -> None:
        self.prices.extend(float(p) for p in prices)
        if self.prices:
            self.state.price = self.prices[-1]
        self.state.initial_price = initial_price


class PriceFeed:
    """Source of pool prices for simulated exchanges."""

    def current(self) -> float:
        raise NotImplementedError

    def advance(self) -> float:
        raise NotImplementedError


class ScriptedPriceFeed(PriceFeed):
    """Replays a fixed price path; the last price repeats once exhausted."""

    def __init__(self, prices: Iterable[float]):
        self._prices: List[float] = [float(p) for p in prices]
        if not self._prices:
            raise ValueError("price path must not be empty")
        self._i = 0

    def current(self) -> float:
        return self._prices[self._i]

    def advance(self) -> float:
        if self._i < len(self._prices) - 1:
            self._i += 1
        return self.current()


class RandomWalkPriceFeed(PriceFeed):
    """Mean-reverting random walk bounded to [0.5x, 2x] of the base price.

    Each step applies drift = -mean_reversion * (p - base) / base plus a
    uniform shock in [-1, 1] scaled by volatility * sqrt(step_minutes / 1440).
    """

    def __init__(self, base_price: float, volatility: float, seed: Optional[int] = None,
                 mean_reversion: float = 0.1, step_minutes: float = 5.0,
                 rng: Optional[random.Random] = None):
        self.base_price = base_price
        self.volatility = volatility
        self.mean_reversion = mean_reversion
        self.step_minutes = step_minutes
        self.rng = rng or random.Random(seed)
        self._price = base_price

    def current(self) -> float:
        return self._price

    def advance(self) -> float:
        drift = -self.mean_reversion * (self._price - self.base_price) / self.base_price
        shock = self.rng.uniform(-1.0, 1.0)
        change = drift + shock * self.volatility * math.sqrt(self.step_minutes / 1440.0)
        price = self._price * (1.0 + change)
        self._price = max(self.base_price * 0.5, min(self.base_price * 2.0, price))
        return self._price
