"""
Quoting loop for one (user, instrument) pair.

Each cycle:
  1. fetch pool state
  2. detect fills on the live pseudo-orders and book them
  3. rebalance inventory when skew is past the threshold
  4. cancel the previous cycle's orders
  5. compute a spread quote
  6. place new bid/ask orders (or a ladder)
  7. mark unrealized PnL
  8. check the stop-loss
then persist a snapshot and wait `refresh_s`.

Exchange calls are retried with exponential backoff on ExchangeUnavailable.
When retries run out the rest of the cycle is skipped (orders from the
previous cycle stay live) and the loop carries on; the stop-loss check still
runs against the last good price.
"""
import asyncio
import datetime as dt
from collections import deque
from dataclasses import asdict
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set, Tuple

from .adapters import ExchangeClient, swap_fee_in_base
from .errors import (
    CancellationFailed,
    DuplicateFill,
    ExchangeRejected,
    ExchangeUnavailable,
    InsufficientInventory,
    InvalidPrice,
    InvalidSize,
    StopLossTriggered,
)
from .inventory import (
    InventoryLedger,
    captured_spread,
    mark_to_market,
    pnl_ratio,
    record_fill,
)
from .ladder import VolumeLadderExtension
from .logging import ErrorContext, JsonlLogger, make_logger, performance_trace
from .market_data import MarketData
from .quote_book import QuoteBook
from .spread import SpreadPolicy
from .store import StateStore
from .ticks import side_range
from .types import (
    TERMINAL_STATES,
    BotConfig,
    LoopState,
    PnLAccount,
    PseudoOrder,
    Side,
    SpreadQuote,
    SwapDirection,
)
from .utils import fmt, now_ms

SNAPSHOT_VERSION = 1


async def call_with_retry(
    fn: Callable[..., Awaitable[Any]],
    *args: Any,
    retries: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    on_retry: Optional[Callable[[int, float, Exception], None]] = None,
) -> Any:
    """Await fn(*args), retrying ExchangeUnavailable up to `retries` times.

    The delay before retry k (0-based) is min(base_delay * 2**k, max_delay).
    Other exceptions propagate immediately; the last ExchangeUnavailable
    propagates once retries are exhausted.
    """
    attempt = 0
    while True:
        try:
            return await fn(*args)
        except ExchangeUnavailable as e:
            if attempt >= retries:
                raise
            delay = min(base_delay * (2 ** attempt), max_delay)
            if on_retry is not None:
                on_retry(attempt, delay, e)
            await sleep(delay)
            attempt += 1


class QuotingLoop:
    """Market making loop for one instrument.

    State changes only happen on the task that runs `run()` (or on the
    caller of `run_cycle()` in tests and backtests). The control methods
    `pause`, `resume` and `request_stop` just flip events the loop checks.

    Args:
        cfg: Instrument configuration
        ex: Exchange client bound to the instrument's pool
        user_id: Owner of the capital
        capital: Starting capital in base units (ignored when resuming)
        store: Optional snapshot store; a saved snapshot is resumed on start
        logger: Event logger; built from cfg.logging when omitted
        sleep: Awaitable used for retry backoff
        verbose: Print a one-line summary per cycle
    """

    def __init__(
        self,
        cfg: BotConfig,
        ex: ExchangeClient,
        user_id: str = "default",
        capital: float = 0.0,
        store: Optional[StateStore] = None,
        logger: Optional[JsonlLogger] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        verbose: bool = False,
    ):
        self.cfg = cfg
        self.ex = ex
        self.user_id = user_id
        self.instrument_id = cfg.instrument.instrument_id
        self.capital = capital
        self.store = store
        self.owns_logger = logger is None
        self.logger = logger or make_logger(cfg.log_path, cfg.logging)
        self._sleep = sleep
        self.verbose = verbose

        self.policy = SpreadPolicy(cfg.spread, self.logger)
        self.book = QuoteBook(self.instrument_id, cfg.instrument.tick_spacing, self.logger)
        self.md = MarketData(self.logger, history=cfg.quote.price_history)
        self.ladder: Optional[VolumeLadderExtension] = None
        target = cfg.inventory.target_base_ratio
        if cfg.ladder.enabled:
            self.ladder = VolumeLadderExtension(cfg.ladder, cfg.instrument, self.logger)
            target = self.ladder.effective_target(target)
        self.target_base_ratio = target

        self.ledger: Optional[InventoryLedger] = None
        self.pnl = PnLAccount()
        self.initial_capital = capital
        self.state = LoopState.IDLE
        self.cycles = 0
        self.alerts: Deque[Dict[str, Any]] = deque(maxlen=50)
        self._risk_breaches: Set[str] = set()
        self.last_quote: Optional[SpreadQuote] = None
        self._pending_withdrawals: List[str] = []
        self._shutdown = asyncio.Event()
        self._resume = asyncio.Event()
        self._resume.set()

    @property
    def volume_window_ms(self) -> int:
        return int(self.cfg.ladder.volume_window_s * 1000)

    # ------------------------------------------------------------------
    # exchange access

    async def call_exchange(self, operation: str, fn: Callable[..., Awaitable[Any]], *args: Any,
                            retries: Optional[int] = None) -> Any:
        q = self.cfg.quote

        def _on_retry(attempt: int, delay: float, e: Exception) -> None:
            self.logger.warning("exchange_retry", {
                "operation": operation, "attempt": attempt + 1, "delay_s": delay, "err": str(e),
            })

        try:
            return await call_with_retry(
                fn, *args,
                retries=q.max_retries if retries is None else retries,
                base_delay=q.retry_base_delay_s,
                max_delay=q.retry_max_delay_s,
                sleep=self._sleep,
                on_retry=_on_retry,
            )
        except (ExchangeUnavailable, ExchangeRejected) as e:
            ErrorContext.log_operation_error(self.logger, operation, e, {
                "instrument_id": self.instrument_id, "user_id": self.user_id,
            })
            raise

    def add_alert(self, level: str, kind: str, message: str) -> None:
        self.alerts.append({"ts_ms": now_ms(), "level": level, "kind": kind, "message": message})

    # ------------------------------------------------------------------
    # lifecycle

    async def start(self) -> None:
        """Resume from the store when a snapshot exists, else allocate capital."""
        snap = self.store.load(self.user_id, self.instrument_id) if self.store else None
        if snap:
            self._restore(snap)
            self.logger.info("state_restored", {
                "user_id": self.user_id, "instrument_id": self.instrument_id,
                "state": self.state.value, "open_orders": len(self.book.active_orders()),
            })
            # a stop-loss or failed shutdown needs the snapshot cleared before trading again
            if self.state not in (LoopState.STOPPED_LOSS, LoopState.FAILED):
                self.state = LoopState.RUNNING
            return

        if self.capital <= 0:
            raise ValueError(f"capital must be positive, got {self.capital}")
        ps = await self.call_exchange("get_pool_state", self.ex.get_pool_state,
                                      self.cfg.instrument.pool_id)
        self.md.on_pool_state(ps)
        self.ledger = InventoryLedger.allocate(self.capital, ps.price, self.target_base_ratio)
        self.initial_capital = self.capital
        self.pnl.volume_window_start_ms = now_ms()
        self.state = LoopState.RUNNING
        self.logger.info("start", {
            "user_id": self.user_id,
            "instrument_id": self.instrument_id,
            "capital": self.capital,
            "price": ps.price,
            "base_balance": self.ledger.base_balance,
            "asset_balance": self.ledger.asset_balance,
            "target_base_ratio": self.target_base_ratio,
        })
        self._persist()

    def pause(self) -> None:
        if self.state == LoopState.RUNNING:
            self.state = LoopState.PAUSED
            self._resume.clear()
            self.logger.info("paused", {"instrument_id": self.instrument_id})

    def resume(self) -> None:
        if self.state == LoopState.PAUSED:
            self.state = LoopState.RUNNING
            self._resume.set()
            self.logger.info("resumed", {"instrument_id": self.instrument_id})

    def request_stop(self) -> None:
        self._shutdown.set()
        self._resume.set()

    @property
    def stopping(self) -> bool:
        return self._shutdown.is_set()

    async def run(self) -> None:
        """Run cycles until stopped or a terminal state is reached."""
        if self.state == LoopState.IDLE:
            await self.start()
        try:
            while not self._shutdown.is_set() and self.state not in TERMINAL_STATES:
                if self.state == LoopState.PAUSED:
                    await self._resume.wait()
                    continue
                try:
                    await self.run_cycle()
                except Exception as e:
                    ErrorContext.capture_error(self.logger, e, {
                        "operation": "quote_loop",
                        "instrument_id": self.instrument_id,
                        "price": self.md.state.price,
                    })
                    self.add_alert("error", "cycle_error", str(e))
                if self.state in TERMINAL_STATES:
                    break
                try:
                    await asyncio.wait_for(self._shutdown.wait(), timeout=self.cfg.quote.refresh_s)
                except asyncio.TimeoutError:
                    pass
        finally:
            if self.state not in TERMINAL_STATES:
                await self._finalize(LoopState.STOPPED)
            self.logger.write("shutdown", {"state": self.state.value})

    async def stop(self) -> None:
        """Stop a loop that is not being driven by `run()`."""
        self.request_stop()
        if self.state not in TERMINAL_STATES:
            await self._finalize(LoopState.STOPPED)

    async def close(self) -> None:
        """Release the exchange client and the event log if this loop opened it."""
        await self.ex.close()
        if self.owns_logger:
            self.logger.close()

    async def _finalize(self, final_state: LoopState) -> None:
        """Cancel every live order; FAILED with a critical alert if that fails."""
        try:
            await self._cancel_orders(retries=self.cfg.risk.cancel_max_retries)
            self.state = final_state
        except CancellationFailed as e:
            self.state = LoopState.FAILED
            self.logger.critical("cancel_failed", {
                "instrument_id": self.instrument_id,
                "user_id": self.user_id,
                "open_orders": [o.order_id for o in self.book.active_orders()],
                "err": str(e),
                "cause": type(e.__cause__).__name__,
            })
            self.add_alert("critical", "cancel_failed", str(e))
        if self.ledger is not None and self.md.has_price():
            mark_to_market(self.pnl, self.ledger, self.md.state.price, self.initial_capital)
        self._persist()

    # ------------------------------------------------------------------
    # one cycle

    @performance_trace()
    async def run_cycle(self) -> Dict[str, Any]:
        """Execute one quoting cycle and return a summary dict."""
        if self.state in TERMINAL_STATES or self.state == LoopState.PAUSED:
            return {"skipped": self.state.value}
        if self.ledger is None:
            await self.start()
        self.cycles += 1
        summary: Dict[str, Any] = {"cycle": self.cycles, "fills": 0, "placed": 0, "skipped": None}

        try:
            ps = await self.call_exchange("get_pool_state", self.ex.get_pool_state,
                                          self.cfg.instrument.pool_id)
        except (ExchangeUnavailable, ExchangeRejected) as e:
            return await self._skip(summary, "get_pool_state", e)
        price = ps.price
        self.md.on_pool_state(ps)

        for order in self.book.detect_fills(price):
            await self._book_fill(order, price)
            summary["fills"] += 1

        if not await self._maybe_rebalance(price):
            return await self._skip(summary, "swap", None)

        try:
            await self._cancel_orders()
        except CancellationFailed as e:
            return await self._skip(summary, "cancel_liquidity", e)

        volatility = self.md.volatility(
            self.cfg.quote.volatility_lookback,
            self.cfg.quote.volatility_min_samples,
            self.cfg.quote.volatility_default,
        )
        quote = self.policy.quote(price, self.ledger, volatility, ps.volume_24h)
        self.last_quote = quote
        summary["placed"] = await self._place_orders(quote)

        mark_to_market(self.pnl, self.ledger, price, self.initial_capital)
        self._check_risk_limits(price)
        self._check_stop_loss(price)
        if self.state == LoopState.STOPPED_LOSS:
            await self._finalize(LoopState.STOPPED_LOSS)
            summary["skipped"] = "stop_loss"
        else:
            self._persist()

        self.logger.info("cycle", {
            "cycle": self.cycles,
            "price": price,
            "volatility": volatility,
            "spread_bps": quote.spread_bps,
            "bid": quote.bid_price,
            "ask": quote.ask_price,
            "skew": quote.skew,
            "fills": summary["fills"],
            "placed": summary["placed"],
            "realized": self.pnl.realized,
            "unrealized": self.pnl.unrealized,
        })
        if self.verbose:
            print(
                f"[{dt.datetime.now().isoformat(timespec='seconds')}] {self.instrument_id} "
                f"p={fmt(price, 8)} spr={fmt(quote.spread_bps, 1)}bps skew={fmt(quote.skew, 3)} "
                f"fills={summary['fills']} pnl={fmt(self.pnl.realized + self.pnl.unrealized, 8)}"
            )
        return summary

    async def _skip(self, summary: Dict[str, Any], operation: str, err: Optional[Exception]) -> Dict[str, Any]:
        summary["skipped"] = operation
        message = str(err) if err is not None else "exchange unavailable"
        self.logger.warning("cycle_skipped", {
            "cycle": self.cycles, "operation": operation, "err": message,
        })
        self.add_alert("warning", "cycle_skipped", f"{operation}: {message}")
        # stop-loss is still evaluated from the last good price
        if self.ledger is not None and self.md.has_price():
            mark_to_market(self.pnl, self.ledger, self.md.state.price, self.initial_capital)
            self._check_stop_loss(self.md.state.price)
            if self.state == LoopState.STOPPED_LOSS:
                await self._finalize(LoopState.STOPPED_LOSS)
        return summary

    async def _book_fill(self, order: PseudoOrder, price: float) -> None:
        fill_price = order.range.mid_price
        fee = self.cfg.instrument.fill_fee_rate * order.size_base
        skew_before = self.ledger.skew(price)
        try:
            rec = self.ledger.apply_fill(order, fill_price, fee)
        except DuplicateFill as e:
            self.logger.warning("duplicate_fill", {"order_id": order.order_id, "err": str(e)})
            return
        except InsufficientInventory as e:
            ErrorContext.log_operation_error(self.logger, "apply_fill", e, {"order_id": order.order_id})
            self.add_alert("error", "fill_rejected", str(e))
            return
        if order.external_id:
            self._pending_withdrawals.append(order.external_id)
        captured = captured_spread(order, fill_price)
        record_fill(self.pnl, captured, fee, order.size_base, rec.ts_ms, self.volume_window_ms)
        self.logger.info("fill", {
            "order_id": order.order_id,
            "side": order.side.value,
            "fill_price": fill_price,
            "size_base": order.size_base,
            "quote_mid": order.quote_mid,
            "captured": captured,
            "fee": fee,
        })
        if self.ladder is not None:
            await self.ladder.on_fill(self, order, fill_price, price, skew_before)

    async def _maybe_rebalance(self, price: float) -> bool:
        """Swap back toward target when skew is past the threshold.

        Returns False only when the exchange stayed unavailable, which skips
        the rest of the cycle.
        """
        inv = self.cfg.inventory
        if not self.ledger.needs_rebalance(price, inv.rebalance_threshold):
            return True
        fee_rate = self.cfg.instrument.swap_fee_rate
        trade = self.ledger.rebalance_trade(price, inv.rebalance_target_skew, fee_rate)
        if trade is None:
            return True
        skew = self.ledger.skew(price)
        try:
            available = (self.ledger.base_balance if trade.direction == SwapDirection.BASE_TO_ASSET
                         else self.ledger.asset_balance)
            if trade.amount > available:
                raise InsufficientInventory(
                    "base" if trade.direction == SwapDirection.BASE_TO_ASSET else "asset",
                    trade.amount, available)
            amount_out = await self.call_exchange("swap", self.ex.swap, trade.amount, trade.direction)
            fee = swap_fee_in_base(trade.amount, trade.direction, price, fee_rate)
            self.ledger.apply_swap(trade.direction, trade.amount, amount_out, price, fee,
                                   kind="rebalance", ref=f"cycle-{self.cycles}")
        except InsufficientInventory as e:
            ErrorContext.log_operation_error(self.logger, "rebalance", e, {"skew": skew})
            self.add_alert("warning", "rebalance_blocked", str(e))
            return True
        except ExchangeRejected as e:
            self.add_alert("warning", "rebalance_rejected", str(e))
            return True
        except ExchangeUnavailable:
            return False
        self.pnl.fees_paid += fee
        self.logger.info("rebalance", {
            "direction": trade.direction.value,
            "amount_in": trade.amount,
            "amount_out": amount_out,
            "fee": fee,
            "skew_before": skew,
            "skew_after": self.ledger.skew(price),
        })
        return True

    async def _cancel_orders(self, retries: Optional[int] = None) -> None:
        """Cancel every live order on the exchange, then in the book.

        Orders whose exchange cancellation fails stay active.

        Raises:
            CancellationFailed: the exchange stayed unavailable or refused a cancel
        """
        try:
            while self._pending_withdrawals:
                ext = self._pending_withdrawals[0]
                await self.call_exchange("cancel_liquidity", self.ex.cancel_liquidity, ext, retries=retries)
                self._pending_withdrawals.pop(0)

            for order in self.book.active_orders():
                if order.external_id is not None:
                    found = await self.call_exchange("cancel_liquidity", self.ex.cancel_liquidity,
                                                     order.external_id, retries=retries)
                    if not found:
                        self.logger.warning("cancel_missing", {"order_id": order.order_id,
                                                               "external_id": order.external_id})
                self.book.cancel(order.order_id)
                self.logger.info("order_cancel", {"order_id": order.order_id, "external_id": order.external_id})
        except (ExchangeUnavailable, ExchangeRejected) as e:
            live = len(self.book.active_orders()) + len(self._pending_withdrawals)
            raise CancellationFailed(f"{live} orders still live: {e}") from e
        self.book.cancel_all()

    def _desired_orders(self, quote: SpreadQuote) -> List[Tuple[Side, float, float]]:
        ledger = self.ledger
        base_avail = ledger.base_balance / (1.0 + self.cfg.instrument.fill_fee_rate)
        if self.ladder is not None:
            return self.ladder.desired_orders(quote, base_avail, ledger.asset_balance)
        size = self.cfg.quote.order_size_base
        spacing = self.cfg.instrument.tick_spacing
        ask_fill_price = side_range(quote.ask_price, spacing, Side.ASK).mid_price
        return [
            (Side.BID, quote.bid_price, min(size, base_avail)),
            (Side.ASK, quote.ask_price, min(size, ledger.asset_balance * ask_fill_price)),
        ]

    async def _place_orders(self, quote: SpreadQuote) -> int:
        placed = 0
        for side, px, size in self._desired_orders(quote):
            try:
                order = self.book.create_order(side, px, size, quote_mid=quote.mid)
            except (InvalidSize, InvalidPrice) as e:
                self.logger.warning("order_skipped", {"side": side.value, "price": px, "size": size,
                                                      "err": str(e)})
                continue
            if side == Side.BID:
                amounts = {"base": size, "asset": 0.0}
            else:
                amounts = {"base": 0.0, "asset": size / order.range.mid_price}
            try:
                order.external_id = await self.call_exchange(
                    "place_liquidity", self.ex.place_liquidity, order.range, amounts)
            except ExchangeRejected as e:
                self.book.cancel(order.order_id)
                self.add_alert("warning", "order_rejected", str(e))
                continue
            except ExchangeUnavailable as e:
                self.book.cancel(order.order_id)
                self.add_alert("warning", "placement_halted", str(e))
                break
            placed += 1
            self.logger.info("order_place", {
                "order_id": order.order_id,
                "external_id": order.external_id,
                "side": side.value,
                "target_price": px,
                "size_base": size,
                "lower_tick": order.range.lower_tick,
                "upper_tick": order.range.upper_tick,
            })
        return placed

    def risk_metrics(self, price: float) -> Dict[str, Optional[float]]:
        """Drawdown, inventory skew and share of pool TVL held at `price`."""
        total = self.ledger.total_value(price) if self.ledger is not None and price > 0 else None
        tvl = self.md.state.tvl
        return {
            "drawdown": pnl_ratio(self.pnl, self.initial_capital),
            "skew": self.ledger.skew(price) if total is not None else None,
            "tvl_exposure": total / tvl if total is not None and tvl > 0 else None,
        }

    def _check_risk_limits(self, price: float) -> None:
        """Warn when a soft limit is crossed; a limit warns again only after clearing."""
        risk = self.cfg.risk
        m = self.risk_metrics(price)
        checks = [
            ("drawdown_warning", m["drawdown"], risk.drawdown_warning_threshold,
             m["drawdown"] < risk.drawdown_warning_threshold),
            ("inventory_skew_high", m["skew"], risk.max_inventory_skew,
             m["skew"] is not None and abs(m["skew"]) > risk.max_inventory_skew),
            ("tvl_exposure_high", m["tvl_exposure"], risk.max_tvl_exposure,
             m["tvl_exposure"] is not None and m["tvl_exposure"] > risk.max_tvl_exposure),
        ]
        for kind, value, limit, breached in checks:
            if not breached:
                self._risk_breaches.discard(kind)
                continue
            if kind in self._risk_breaches:
                continue
            self._risk_breaches.add(kind)
            self.logger.warning(kind, {
                "instrument_id": self.instrument_id,
                "value": value,
                "limit": limit,
                "price": price,
            })
            self.add_alert("warning", kind, f"{kind}: {fmt(value)} past limit {fmt(limit)}")

    def _check_stop_loss(self, price: float) -> None:
        ratio = pnl_ratio(self.pnl, self.initial_capital)
        threshold = self.cfg.risk.stop_loss_threshold
        if ratio >= threshold:
            return
        err = StopLossTriggered(ratio, threshold)
        self.state = LoopState.STOPPED_LOSS
        self.logger.critical("stop_loss", {
            "instrument_id": self.instrument_id,
            "pnl_ratio": ratio,
            "threshold": threshold,
            "price": price,
        })
        self.add_alert("critical", "stop_loss", str(err))

    # ------------------------------------------------------------------
    # reporting and persistence

    def status(self) -> Dict[str, Any]:
        price = self.md.state.price
        inventory = None
        if self.ledger is not None:
            inventory = {
                "base_balance": self.ledger.base_balance,
                "asset_balance": self.ledger.asset_balance,
                "target_base_ratio": self.ledger.target_base_ratio,
                "total_value": self.ledger.total_value(price) if price > 0 else None,
                "skew": self.ledger.skew(price) if price > 0 else None,
            }
        risk = None
        if price > 0:
            risk = dict(self.risk_metrics(price), breaches=sorted(self._risk_breaches))
        return {
            "user_id": self.user_id,
            "instrument_id": self.instrument_id,
            "state": self.state.value,
            "running": self.state == LoopState.RUNNING,
            "cycles": self.cycles,
            "last_price": price or None,
            "volatility": self.md.volatility(
                self.cfg.quote.volatility_lookback,
                self.cfg.quote.volatility_min_samples,
                self.cfg.quote.volatility_default,
            ),
            "token_appreciation": self.md.token_appreciation(),
            "initial_capital": self.initial_capital,
            "inventory": inventory,
            "pnl": asdict(self.pnl),
            "pnl_ratio": pnl_ratio(self.pnl, self.initial_capital),
            "risk": risk,
            "open_orders": [o.to_dict() for o in self.book.open_orders()],
            "alerts": list(self.alerts),
        }

    def snapshot(self) -> Dict[str, Any]:
        return {
            "version": SNAPSHOT_VERSION,
            "saved_at_ms": now_ms(),
            "state": self.state.value,
            "initial_capital": self.initial_capital,
            "cycles": self.cycles,
            "ledger": self.ledger.snapshot() if self.ledger else None,
            "pnl": asdict(self.pnl),
            "book": self.book.snapshot(),
            "pending_withdrawals": list(self._pending_withdrawals),
            "prices": list(self.md.prices),
            "initial_price": self.md.state.initial_price,
            "ladder": self.ladder.snapshot() if self.ladder else None,
            "config": asdict(self.cfg),
        }

    def _restore(self, snap: Dict[str, Any]) -> None:
        self.state = LoopState(snap.get("state", LoopState.IDLE.value))
        self.initial_capital = float(snap.get("initial_capital", self.capital))
        self.cycles = int(snap.get("cycles", 0))
        if snap.get("ledger"):
            self.ledger = InventoryLedger.from_snapshot(snap["ledger"])
        self.pnl = PnLAccount(**snap.get("pnl", {}))
        self.book.restore(snap.get("book", {}))
        self._pending_withdrawals = list(snap.get("pending_withdrawals", []))
        self.md.restore(snap.get("prices", []), snap.get("initial_price"))
        if self.ladder is not None and snap.get("ladder"):
            self.ladder.restore(snap["ladder"])

    def _persist(self) -> None:
        if self.store is None or self.ledger is None:
            return
        try:
            self.store.save(self.user_id, self.instrument_id, self.snapshot())
        except (OSError, TypeError, ValueError) as e:
            ErrorContext.log_operation_error(self.logger, "persist_state", e, {
                "user_id": self.user_id, "instrument_id": self.instrument_id,
            })
            self.add_alert("error", "persist_failed", str(e))
