"""
Pseudo-order book with two-phase fill detection.

A pseudo-order is a one-spacing-wide liquidity range. Pool prices move
continuously, so a move from the last observed price to the new one sweeps
every price in between. An order is considered:

    open     -> filling  when the sweep touches its range (the edge it came
                         through is remembered)
    filling  -> filled   once price has left the range through the opposite
                         edge, i.e. the range was fully traversed

A single large move may run both steps in order; an order never jumps
from open to filled. Open and filling orders can be cancelled at any time,
filled ones cannot.
"""
from collections import deque
from typing import Any, Deque, Dict, List, Optional

from .errors import InvalidPrice, InvalidSize, InvalidTransition
from .logging import JsonlLogger
from .ticks import side_range
from .types import OrderStatus, PseudoOrder, Side
from .utils import is_finite_positive, now_ms

ALLOWED_TRANSITIONS = {
    OrderStatus.OPEN: (OrderStatus.FILLING, OrderStatus.CANCELLED),
    OrderStatus.FILLING: (OrderStatus.FILLED, OrderStatus.CANCELLED),
    OrderStatus.FILLED: (),
    OrderStatus.CANCELLED: (),
}

LOWER = "lower"
UPPER = "upper"


def transition(order: PseudoOrder, new_status: OrderStatus) -> None:
    """Move `order` to `new_status` or raise InvalidTransition."""
    if new_status not in ALLOWED_TRANSITIONS[order.status]:
        raise InvalidTransition(order.order_id, order.status.value, new_status.value)
    order.history.append(f"{order.status.value}->{new_status.value}")
    order.status = new_status


def depletion_edge(side: Side) -> str:
    """Edge through which price enters a range when it consumes that side."""
    return UPPER if side == Side.BID else LOWER


class QuoteBook:
    """Active pseudo-orders for one instrument."""

    def __init__(self, instrument_id: str, tick_spacing: int,
                 logger: Optional[JsonlLogger] = None, history: int = 500):
        self.instrument_id = instrument_id
        self.tick_spacing = tick_spacing
        self.logger = logger
        self._active: Dict[str, PseudoOrder] = {}
        self._last_seen: Dict[str, Optional[float]] = {}
        self.closed: Deque[PseudoOrder] = deque(maxlen=history)
        self._seq = 0

    def create_order(self, side: Side, target_price: float, size: float,
                     quote_mid: Optional[float] = None) -> PseudoOrder:
        """Register a new open order on the passive side of `target_price`.

        Raises:
            InvalidSize: size <= 0
            InvalidPrice: target_price not positive and finite
        """
        if not (isinstance(size, (int, float)) and size > 0):
            raise InvalidSize(f"order size must be positive, got {size!r}")
        rng = side_range(target_price, self.tick_spacing, side)
        self._seq += 1
        order = PseudoOrder(
            order_id=f"{self.instrument_id}-{self._seq:06d}-{side.value}",
            side=side,
            target_price=target_price,
            size_base=float(size),
            range=rng,
            created_at=now_ms(),
            quote_mid=quote_mid,
        )
        self._active[order.order_id] = order
        self._last_seen[order.order_id] = quote_mid
        return order

    def get(self, order_id: str) -> Optional[PseudoOrder]:
        return self._active.get(order_id)

    def active_orders(self) -> List[PseudoOrder]:
        return list(self._active.values())

    def open_orders(self) -> List[PseudoOrder]:
        return [o for o in self._active.values()
                if o.status in (OrderStatus.OPEN, OrderStatus.FILLING)]

    def _enter(self, order: PseudoOrder, edge: str) -> None:
        order.entry_edge = edge
        transition(order, OrderStatus.FILLING)

    def _observe(self, order: PseudoOrder, price: float) -> bool:
        """Advance one order for a sweep to `price`; True when it becomes filled."""
        lo = order.range.lower_price
        hi = order.range.upper_price
        prev = self._last_seen.get(order.order_id)
        self._last_seen[order.order_id] = price

        if order.status == OrderStatus.OPEN:
            if prev is None or lo <= prev <= hi:
                # no earlier price outside the range
                if prev is None and not (lo <= price <= hi):
                    return False
                self._enter(order, depletion_edge(order.side))
            elif prev < lo:
                if price < lo:
                    return False
                self._enter(order, LOWER)
            else:
                if price > hi:
                    return False
                self._enter(order, UPPER)

        if order.status != OrderStatus.FILLING:
            return False
        exited = price > hi if order.entry_edge == LOWER else price < lo
        if not exited:
            return False
        transition(order, OrderStatus.FILLED)
        order.filled_at = now_ms()
        return True

    def detect_fills(self, price: float) -> List[PseudoOrder]:
        """Apply a new pool price to every active order.

        Returns:
            Orders that reached `filled` on this observation, oldest first.
            They leave the active set.

        Raises:
            InvalidPrice: price not positive and finite
        """
        if not is_finite_positive(price):
            raise InvalidPrice(f"price must be positive and finite, got {price!r}")
        filled = []
        for order in list(self._active.values()):
            if self._observe(order, price):
                filled.append(order)
                self._retire(order)
        return filled

    def _retire(self, order: PseudoOrder) -> None:
        self._active.pop(order.order_id, None)
        self._last_seen.pop(order.order_id, None)
        self.closed.append(order)

    def cancel(self, order_id: str) -> PseudoOrder:
        order = self._active.get(order_id)
        if order is None:
            raise KeyError(order_id)
        transition(order, OrderStatus.CANCELLED)
        self._retire(order)
        return order

    def cancel_all(self) -> List[PseudoOrder]:
        """Cancel every non-filled active order and empty the active set."""
        cancelled = []
        for order in list(self._active.values()):
            if order.status != OrderStatus.FILLED:
                transition(order, OrderStatus.CANCELLED)
                cancelled.append(order)
            self._retire(order)
        return cancelled

    def snapshot(self) -> Dict[str, Any]:
        return {
            "seq": self._seq,
            "orders": [
                dict(o.to_dict(), last_seen=self._last_seen.get(o.order_id))
                for o in self._active.values()
            ],
        }

    def restore(self, d: Dict[str, Any]) -> None:
        self._seq = int(d.get("seq", 0))
        self._active.clear()
        self._last_seen.clear()
        for od in d.get("orders", []):
            order = PseudoOrder.from_dict(od)
            self._active[order.order_id] = order
            self._last_seen[order.order_id] = od.get("last_seen", order.quote_mid)
