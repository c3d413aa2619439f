"""
Tick math for concentrated-liquidity pools.

Prices map to integer ticks on a geometric grid, price = 1.0001 ** tick.
Positions can only start and end on multiples of the pool's tick spacing
(200 on RadFi pools), so every quote is snapped to that grid before it is
sent to the exchange.
"""
import math
from typing import Tuple

from .errors import InvalidPrice
from .types import TICK_BASE, QuoteRange, Side
from .utils import is_finite_positive

MIN_TICK = -887272
MAX_TICK = 887272

_LOG_BASE = math.log(TICK_BASE)


def clamp_tick(tick: int) -> int:
    return max(MIN_TICK, min(MAX_TICK, int(tick)))


def price_to_tick(price: float) -> int:
    """Nearest tick for `price`, halves rounded up, clamped to the tick bounds.

    Raises:
        InvalidPrice: price is zero, negative, NaN or infinite
    """
    if not is_finite_positive(price):
        raise InvalidPrice(f"price must be positive and finite, got {price!r}")
    return clamp_tick(math.floor(math.log(price) / _LOG_BASE + 0.5))


def tick_to_price(tick: int) -> float:
    return TICK_BASE ** clamp_tick(tick)


def usable_tick_bounds(spacing: int) -> Tuple[int, int]:
    """(lowest, highest) multiples of `spacing` inside [MIN_TICK, MAX_TICK]."""
    if spacing <= 0:
        raise ValueError(f"tick spacing must be positive, got {spacing}")
    return -(-MIN_TICK // spacing) * spacing, (MAX_TICK // spacing) * spacing


def nearest_usable_tick(tick: int, spacing: int) -> int:
    """Closest multiple of `spacing` to `tick`.

    Ties (tick exactly halfway between two multiples) go toward +infinity.
    The result is clamped to the usable bounds, so it is always a multiple
    of `spacing`.
    """
    lo, hi = usable_tick_bounds(spacing)
    snapped = math.floor(tick / spacing + 0.5) * spacing
    return max(lo, min(hi, snapped))


def range_around(target_price: float, spacing: int) -> QuoteRange:
    """One-spacing-wide band anchored on the usable tick nearest to target_price.

    lower = nearest usable tick of the target, upper = lower + spacing. At the
    top of the tick space the band is shifted down one spacing so that
    lower < upper always holds.
    """
    lo, hi = usable_tick_bounds(spacing)
    lower = nearest_usable_tick(price_to_tick(target_price), spacing)
    if lower + spacing > hi:
        lower = hi - spacing
    lower = max(lo, lower)
    return QuoteRange(lower_tick=lower, upper_tick=lower + spacing)


def side_range(target_price: float, spacing: int, side: Side) -> QuoteRange:
    """One-spacing-wide band on the passive side of target_price.

    A bid band ends at the highest usable tick at or below the target, an
    ask band starts at the lowest usable tick at or above it. A bid target
    under the mid therefore never yields a band reaching above the mid, and
    likewise for asks. Bands are clamped to the usable bounds with
    lower < upper.

    Raises:
        InvalidPrice: price is zero, negative, NaN or infinite
    """
    if not is_finite_positive(target_price):
        raise InvalidPrice(f"price must be positive and finite, got {target_price!r}")
    lo, hi = usable_tick_bounds(spacing)
    exact = math.log(target_price) / _LOG_BASE / spacing
    if side == Side.BID:
        upper = math.floor(exact + 1e-9) * spacing
        upper = max(lo + spacing, min(hi, upper))
        return QuoteRange(lower_tick=upper - spacing, upper_tick=upper)
    lower = math.ceil(exact - 1e-9) * spacing
    lower = max(lo, min(hi - spacing, lower))
    return QuoteRange(lower_tick=lower, upper_tick=lower + spacing)
