"""
Inventory ledger and PnL accounting.

The ledger holds the two balances of one instrument (base currency and the
quoted asset) and is only mutated by applying fills and explicit swaps.
Skew is measured against a target share of value held in base:

    total_value(p) = base + asset * p
    skew(p)        = base / total_value(p) - target_base_ratio

PnL identity kept by `mark_to_market`:

    total_value(p) == initial_capital + realized + unrealized
"""
from dataclasses import asdict
from typing import Any, Dict, List, Optional, Set

from .errors import DuplicateFill, InsufficientInventory, InvalidPrice
from .types import (
    PnLAccount,
    PseudoOrder,
    RebalanceTrade,
    Side,
    SwapDirection,
    TradeRecord,
)
from .utils import is_finite_positive, now_ms

_EPS = 1e-12
SNAPSHOT_TRADES = 1000


def _require(token: str, required: float, available: float) -> None:
    if required > available + _EPS:
        raise InsufficientInventory(token, required, available)


def _check_price(price: float) -> None:
    if not is_finite_positive(price):
        raise InvalidPrice(f"price must be positive and finite, got {price!r}")


class InventoryLedger:
    """Base/asset balances with fill idempotence and a trade log."""

    def __init__(self, base_balance: float, asset_balance: float, target_base_ratio: float = 0.5):
        if not 0.0 < target_base_ratio < 1.0:
            raise ValueError(f"target_base_ratio must be in (0, 1), got {target_base_ratio}")
        self.base_balance = float(base_balance)
        self.asset_balance = float(asset_balance)
        self.target_base_ratio = float(target_base_ratio)
        self.trades: List[TradeRecord] = []
        self._applied: Set[str] = set()

    @classmethod
    def allocate(cls, capital: float, price: float, target_base_ratio: float) -> "InventoryLedger":
        """Split starting capital (base units) between base and asset at `price`."""
        _check_price(price)
        base = capital * target_base_ratio
        asset = (capital - base) / price
        return cls(base, asset, target_base_ratio)

    def total_value(self, price: float) -> float:
        _check_price(price)
        return self.base_balance + self.asset_balance * price

    def skew(self, price: float) -> float:
        tv = self.total_value(price)
        if tv <= 0:
            return 0.0
        return self.base_balance / tv - self.target_base_ratio

    def needs_rebalance(self, price: float, threshold: float) -> bool:
        return abs(self.skew(price)) > threshold

    def has_fill(self, order_id: str) -> bool:
        return order_id in self._applied

    def apply_fill(self, order: PseudoOrder, fill_price: float, fee: float = 0.0,
                   ts_ms: Optional[int] = None) -> TradeRecord:
        """Move balances for a filled pseudo-order.

        A bid spends `size_base` (plus fee) of base for asset; an ask sells
        asset worth `size_base` at `fill_price`. The fee is charged in base.

        Raises:
            DuplicateFill: this order id was already applied (nothing changes)
            InsufficientInventory: balance too small (nothing changes)
        """
        if order.order_id in self._applied:
            raise DuplicateFill(order.order_id)
        _check_price(fill_price)
        qty = order.size_base / fill_price
        if order.side == Side.BID:
            _require("base", order.size_base + fee, self.base_balance)
            self.base_balance -= order.size_base + fee
            self.asset_balance += qty
            base_delta, asset_delta = -(order.size_base + fee), qty
        else:
            _require("asset", qty, self.asset_balance)
            self.asset_balance -= qty
            self.base_balance += order.size_base - fee
            base_delta, asset_delta = order.size_base - fee, -qty
        self._applied.add(order.order_id)
        rec = TradeRecord(
            kind="fill",
            ref=order.order_id,
            side=order.side.value,
            price=fill_price,
            base_amount=base_delta,
            asset_amount=asset_delta,
            fee=fee,
            ts_ms=ts_ms if ts_ms is not None else now_ms(),
        )
        self.trades.append(rec)
        return rec

    def apply_swap(self, direction: SwapDirection, amount_in: float, amount_out: float,
                   price: float, fee: float = 0.0, kind: str = "rebalance",
                   ref: str = "", ts_ms: Optional[int] = None) -> TradeRecord:
        """Apply an executed market swap. `fee` is informational (base units);
        it is already reflected in `amount_out`."""
        if direction == SwapDirection.BASE_TO_ASSET:
            _require("base", amount_in, self.base_balance)
            self.base_balance -= amount_in
            self.asset_balance += amount_out
            base_delta, asset_delta = -amount_in, amount_out
            side = Side.BID.value
        else:
            _require("asset", amount_in, self.asset_balance)
            self.asset_balance -= amount_in
            self.base_balance += amount_out
            base_delta, asset_delta = amount_out, -amount_in
            side = Side.ASK.value
        rec = TradeRecord(
            kind=kind,
            ref=ref,
            side=side,
            price=price,
            base_amount=base_delta,
            asset_amount=asset_delta,
            fee=fee,
            ts_ms=ts_ms if ts_ms is not None else now_ms(),
        )
        self.trades.append(rec)
        return rec

    def rebalance_trade(self, price: float, target: float = 0.0,
                        fee_rate: float = 0.0) -> Optional[RebalanceTrade]:
        """Smallest swap that puts skew exactly on `target` after fees.

        With t = target_base_ratio + target, V = total value and f = fee rate:
          base -> asset:  a = (base - t*V) / (1 - t*f)            (base in)
          asset -> base:  q = (t*V - base) / (p * (1 - f + t*f))  (asset in)

        Returns None when skew is already at target.
        """
        tv = self.total_value(price)
        t = self.target_base_ratio + target
        if tv <= 0 or not 0.0 < t < 1.0:
            return None
        excess = self.base_balance - t * tv
        if abs(excess) <= _EPS * max(1.0, tv):
            return None
        if excess > 0:
            amount = excess / (1.0 - t * fee_rate)
            return RebalanceTrade(SwapDirection.BASE_TO_ASSET, amount)
        amount = -excess / (price * (1.0 - fee_rate + t * fee_rate))
        return RebalanceTrade(SwapDirection.ASSET_TO_BASE, amount)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "base_balance": self.base_balance,
            "asset_balance": self.asset_balance,
            "target_base_ratio": self.target_base_ratio,
            "applied_fills": sorted(self._applied),
            "trades": [asdict(t) for t in self.trades[-SNAPSHOT_TRADES:]],
        }

    @classmethod
    def from_snapshot(cls, d: Dict[str, Any]) -> "InventoryLedger":
        ledger = cls(d["base_balance"], d["asset_balance"], d["target_base_ratio"])
        ledger._applied = set(d.get("applied_fills", []))
        ledger.trades = [TradeRecord(**t) for t in d.get("trades", [])]
        return ledger


def captured_spread(order: PseudoOrder, fill_price: float) -> float:
    """Spread earned by a fill versus the mid it was quoted against (base units)."""
    if order.quote_mid is None:
        return 0.0
    qty = order.size_base / fill_price
    if order.side == Side.ASK:
        return (fill_price - order.quote_mid) * qty
    return (order.quote_mid - fill_price) * qty


def record_fill(pnl: PnLAccount, captured: float, fee: float, value: float, ts_ms: int,
                window_ms: int) -> None:
    """Account for one filled pseudo-order."""
    pnl.realized += captured
    pnl.fees_paid += fee
    pnl.trade_count += 1
    add_volume(pnl, value, ts_ms, window_ms)


def add_volume(pnl: PnLAccount, value: float, ts_ms: int, window_ms: int) -> None:
    roll_volume_window(pnl, ts_ms, window_ms)
    pnl.volume += value
    pnl.volume_24h += value


def roll_volume_window(pnl: PnLAccount, ts_ms: int, window_ms: int) -> None:
    """Reset the rolling volume counter once its window has elapsed."""
    if pnl.volume_window_start_ms == 0:
        pnl.volume_window_start_ms = ts_ms
    elif ts_ms - pnl.volume_window_start_ms >= window_ms:
        pnl.volume_24h = 0.0
        pnl.volume_window_start_ms = ts_ms


def mark_to_market(pnl: PnLAccount, ledger: InventoryLedger, price: float,
                   initial_capital: float) -> None:
    pnl.unrealized = ledger.total_value(price) - initial_capital - pnl.realized


def pnl_ratio(pnl: PnLAccount, initial_capital: float) -> float:
    if initial_capital <= 0:
        return 0.0
    return (pnl.realized + pnl.unrealized) / initial_capital
