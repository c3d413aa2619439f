"""
Spread policy: turns mid price, inventory skew, volatility and pool volume
into bid/ask quote prices.

    spread = base
           x skew multiplier        (step function of |skew|)
           x volatility multiplier  (step function of volatility)
           x illiquidity multiplier (higher for thin pools)
    spread = clip(spread, min, max)

The clamped spread is split into two halves. Past the bias threshold one
half is tightened and the other widened by the same fraction, so the total
width is unchanged while quotes lean against the current inventory.
"""
from typing import Optional

from .errors import InvalidPrice
from .inventory import InventoryLedger
from .logging import JsonlLogger, performance_trace
from .types import SpreadConfig, SpreadQuote
from .utils import below_band_multiplier, bps_to_frac, clip, is_finite_positive, step_multiplier


class SpreadPolicy:
    """Deterministic spread computation for one instrument."""

    def __init__(self, cfg: SpreadConfig, logger: Optional[JsonlLogger] = None):
        self.cfg = cfg
        self.logger = logger

    def skew_multiplier(self, skew: float) -> float:
        return step_multiplier(abs(skew), self.cfg.skew_bands, 1.0)

    def volatility_multiplier(self, volatility: float) -> float:
        return step_multiplier(max(0.0, volatility), self.cfg.volatility_bands,
                               self.cfg.low_volatility_multiplier)

    def illiquidity_multiplier(self, volume_24h: float) -> float:
        return below_band_multiplier(max(0.0, volume_24h), self.cfg.volume_bands,
                                     self.cfg.high_volume_multiplier)

    def spread_bps(self, skew: float, volatility: float, volume_24h: float) -> float:
        """Total clamped spread in basis points."""
        c = self.cfg
        spread = c.base_spread_bps
        spread *= self.skew_multiplier(skew)
        spread *= self.volatility_multiplier(volatility)
        spread *= self.illiquidity_multiplier(volume_24h)
        return clip(spread, c.min_spread_bps, c.max_spread_bps)

    @performance_trace()
    def quote(self, mid: float, inventory: InventoryLedger,
              volatility: float, volume_24h: float) -> SpreadQuote:
        """Compute bid/ask around `mid` for the given inventory state.

        Args:
            mid: Current pool price (base per asset)
            inventory: Ledger whose skew at `mid` drives the adjustments
            volatility: Fractional volatility estimate (0.25 = 25%)
            volume_24h: Pool trading volume over the last day (base units)

        Returns:
            SpreadQuote with prices and the per-side half spreads

        Raises:
            InvalidPrice: mid is not a positive finite number
        """
        if not is_finite_positive(mid):
            raise InvalidPrice(f"mid must be positive and finite, got {mid!r}")
        c = self.cfg
        skew = inventory.skew(mid)
        spread = self.spread_bps(skew, volatility, volume_24h)

        bid_half = ask_half = spread / 2.0
        if skew > c.bias_threshold:
            # excess base: lean the ask in, push the bid out
            ask_half *= (1.0 - c.bias_adjust)
            bid_half *= (1.0 + c.bias_adjust)
        elif skew < -c.bias_threshold:
            bid_half *= (1.0 - c.bias_adjust)
            ask_half *= (1.0 + c.bias_adjust)

        return SpreadQuote(
            mid=mid,
            bid_price=mid * (1.0 - bps_to_frac(bid_half)),
            ask_price=mid * (1.0 + bps_to_frac(ask_half)),
            spread_bps=spread,
            bid_half_bps=bid_half,
            ask_half_bps=ask_half,
            skew=skew,
        )
