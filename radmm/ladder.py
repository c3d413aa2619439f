"""
Volume ladder extension.

Replaces the single bid/ask of the quoting loop with a ladder of pseudo-orders
on each side and reverses a share of fills with an opposite market swap.
A reversed fill leaves asset inventory where it was, costs the round-trip
fees, and counts twice toward reported volume.

Which fills are reversed is decided deterministically: the n-th fill is
reversed while fewer than ceil(n * reverse_trade_ratio) fills have been
reversed so far. A fill that would pull inventory skew back toward the
(bullish-shifted) target is kept instead, and does not use up the quota.
"""
import math
from typing import Any, Dict, List, Optional, Tuple

from .adapters import swap_fee_in_base
from .errors import ExchangeRejected, ExchangeUnavailable, InsufficientInventory
from .inventory import add_volume
from .logging import ErrorContext, JsonlLogger
from .ticks import side_range
from .types import (
    InstrumentConfig,
    LadderConfig,
    PseudoOrder,
    Side,
    SpreadQuote,
    SwapDirection,
    TradeRecord,
)
from .utils import bps_to_frac, clip


def build_ladder(
    *,
    mid: float,
    bid_offset: float,
    ask_offset: float,
    spacing: float,
    levels: int,
    base_available: float,
    asset_available: float,
    tick_spacing: int,
    max_order_size: Optional[float] = None,
) -> Dict[str, List[Dict[str, Any]]]:
    """Build bid and ask ladders around `mid`.

    Level i sits at mid * (1 - bid_offset - i*spacing) on the bid side and
    mid * (1 + ask_offset + i*spacing) on the ask side. Base inventory is
    split evenly across bid levels; asset inventory is split evenly across
    ask levels and valued at each level's fill price. Levels that snap to the
    same tick range are merged, keeping the level closest to mid and summing
    sizes.

    Args:
        mid: Reference price (base per asset)
        bid_offset: Fractional distance of the first bid from mid
        ask_offset: Fractional distance of the first ask from mid
        spacing: Fractional step between consecutive levels
        levels: Levels per side
        base_available: Base that bids may commit
        asset_available: Asset quantity that asks may sell
        tick_spacing: Pool tick spacing used to detect colliding levels
        max_order_size: Optional per-order cap (base units)

    Returns:
        {"bids": [...], "asks": [...]}, each entry holding 'level', 'price',
        'size' (base units) and 'range'. Bids descend in price, asks ascend.
    """
    bids: List[Dict[str, Any]] = []
    asks: List[Dict[str, Any]] = []
    if levels <= 0 or mid <= 0:
        return {"bids": bids, "asks": asks}

    base_per_level = max(0.0, base_available) / levels
    asset_per_level = max(0.0, asset_available) / levels

    for i in range(levels):
        p = mid * (1.0 - bid_offset - i * spacing)
        if p <= 0:
            break
        size = base_per_level
        if max_order_size is not None:
            size = min(size, max_order_size)
        if size > 0:
            bids.append({"level": i, "price": p, "size": size, "range": side_range(p, tick_spacing, Side.BID)})

    for i in range(levels):
        p = mid * (1.0 + ask_offset + i * spacing)
        rng = side_range(p, tick_spacing, Side.ASK)
        size = asset_per_level * rng.mid_price
        if max_order_size is not None:
            size = min(size, max_order_size)
        if size > 0:
            asks.append({"level": i, "price": p, "size": size, "range": rng})

    def merge(ladder, side):
        seen: Dict[Any, Dict[str, Any]] = {}
        for lv in ladder:
            key = lv["range"]
            if key not in seen:
                seen[key] = dict(lv)
            else:
                seen[key]["size"] += lv["size"]
        return sorted(seen.values(), key=lambda x: x["price"], reverse=(side == "bid"))

    return {
        "bids": merge(bids, "bid"),
        "asks": merge(asks, "ask"),
    }


class VolumeLadderExtension:
    """Ladder quoting and fill reversal for a QuotingLoop."""

    def __init__(self, cfg: LadderConfig, instrument: InstrumentConfig,
                 logger: Optional[JsonlLogger] = None):
        self.cfg = cfg
        self.instrument = instrument
        self.logger = logger
        self.fills_seen = 0
        self.reversed_count = 0

    def effective_target(self, target_base_ratio: float) -> float:
        """Target base share after leaning toward holding the asset."""
        return clip(target_base_ratio - self.cfg.bullish_bias, 0.05, 0.95)

    def desired_orders(self, quote: SpreadQuote, base_available: float,
                       asset_available: float) -> List[Tuple[Side, float, float]]:
        ladder = build_ladder(
            mid=quote.mid,
            bid_offset=bps_to_frac(quote.bid_half_bps),
            ask_offset=bps_to_frac(quote.ask_half_bps),
            spacing=self.cfg.level_spacing_pct,
            levels=self.cfg.levels,
            base_available=base_available,
            asset_available=asset_available,
            tick_spacing=self.instrument.tick_spacing,
            max_order_size=self.cfg.max_order_size_base,
        )
        out = [(Side.BID, lv["price"], lv["size"]) for lv in ladder["bids"]]
        out += [(Side.ASK, lv["price"], lv["size"]) for lv in ladder["asks"]]
        return out

    def select(self) -> bool:
        """Count a fill and report whether the reversal quota has room for it.

        Only reversals that execute use up the quota, so a kept fill or a
        failed swap leaves room for the next fill.
        """
        self.fills_seen += 1
        quota = math.ceil(self.fills_seen * self.cfg.reverse_trade_ratio - 1e-9)
        return self.reversed_count < quota

    async def on_fill(self, loop, order: PseudoOrder, fill_price: float, price: float,
                      skew_before: float) -> Optional[TradeRecord]:
        """Reverse `order`'s fill through the loop's exchange when selected.

        Returns the reverse trade record, or None when the fill is kept or
        the reversal could not execute.
        """
        if not self.select():
            return None
        ledger = loop.ledger
        skew_after = ledger.skew(price)
        if abs(skew_after) < abs(skew_before):
            self._log("reverse_skipped", {"order_id": order.order_id, "reason": "toward_target",
                                          "skew_before": skew_before, "skew_after": skew_after})
            return None

        fee_rate = self.instrument.swap_fee_rate
        qty = order.size_base / fill_price
        if order.side == Side.ASK:
            direction = SwapDirection.BASE_TO_ASSET
            amount_in = qty * price / (1.0 - fee_rate)
            available = ledger.base_balance
        else:
            direction = SwapDirection.ASSET_TO_BASE
            amount_in = qty
            available = ledger.asset_balance

        try:
            if amount_in > available:
                raise InsufficientInventory("base" if direction == SwapDirection.BASE_TO_ASSET else "asset",
                                            amount_in, available)
            amount_out = await loop.call_exchange("swap", loop.ex.swap, amount_in, direction)
            fee = swap_fee_in_base(amount_in, direction, price, fee_rate)
            rec = ledger.apply_swap(direction, amount_in, amount_out, price, fee,
                                    kind="reverse", ref=order.order_id)
        except (ExchangeUnavailable, ExchangeRejected, InsufficientInventory) as e:
            if self.logger is not None:
                ErrorContext.log_operation_error(self.logger, "reverse_trade", e, {
                    "order_id": order.order_id, "amount_in": amount_in, "direction": direction.value,
                })
            loop.add_alert("warning", "reverse_trade_failed", str(e))
            return None

        pnl = loop.pnl
        pnl.fees_paid += fee
        pnl.reversals += 1
        self.reversed_count += 1
        add_volume(pnl, order.size_base, rec.ts_ms, loop.volume_window_ms)
        self._log("reverse_trade", {
            "order_id": order.order_id,
            "direction": direction.value,
            "amount_in": amount_in,
            "amount_out": amount_out,
            "fee": fee,
            "price": price,
        })
        return rec

    def _log(self, event: str, payload: Dict[str, Any]) -> None:
        if self.logger is not None:
            self.logger.info(event, payload)

    def snapshot(self) -> Dict[str, Any]:
        return {"fills_seen": self.fills_seen, "reversed_count": self.reversed_count}

    def restore(self, d: Dict[str, Any]) -> None:
        self.fills_seen = int(d.get("fills_seen", 0))
        self.reversed_count = int(d.get("reversed_count", 0))
