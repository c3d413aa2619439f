"""
Utility functions for radmm.
"""
import math
import time
from typing import Sequence, Tuple, Union


def now_ms() -> int:
    """Get current timestamp in milliseconds."""
    return int(time.time() * 1000)


def clip(x: float, lo: float, hi: float) -> float:
    """Clip value to [lo, hi] range."""
    return max(lo, min(hi, x))


def is_finite_positive(x: float) -> bool:
    return isinstance(x, (int, float)) and math.isfinite(x) and x > 0


def bps_to_frac(bps: float) -> float:
    """Convert basis points to a fraction (100 bps -> 0.01)."""
    return bps / 10_000.0


def step_multiplier(x: float, bands: Sequence[Tuple[float, float]], default: float = 1.0) -> float:
    """Multiplier of the highest band whose threshold x strictly exceeds.

    Args:
        x: Observed value (e.g. |skew| or volatility)
        bands: (threshold, multiplier) pairs in ascending threshold order
        default: Multiplier when no threshold is exceeded

    Returns:
        Step-function multiplier
    """
    mult = default
    for threshold, m in bands:
        if x > threshold:
            mult = m
        else:
            break
    return mult


def below_band_multiplier(x: float, bands: Sequence[Tuple[float, float]], default: float = 1.0) -> float:
    """Multiplier of the first band whose threshold x is still below.

    Used for inverse scales such as pool volume, where thin pools get the
    largest multiplier.
    """
    for threshold, m in bands:
        if x < threshold:
            return m
    return default


def fmt(x: Union[int, float], nd: int = 4) -> str:
    """Format number with specified decimal places."""
    return f"{x:.{nd}f}"
