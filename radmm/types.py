"""
Configuration types and domain dataclasses for radmm.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


@dataclass
class InstrumentConfig:
    """Pool and instrument identity."""
    instrument_id: str
    pool_id: str
    tick_spacing: int = 200
    base_token_id: str = "0:0"
    asset_token_id: str = ""
    fill_fee_rate: float = 0.0
    swap_fee_rate: float = 0.01


@dataclass
class SpreadConfig:
    """Spread policy parameters (basis points and multiplier bands)."""
    base_spread_bps: float = 100.0
    min_spread_bps: float = 50.0
    max_spread_bps: float = 200.0
    # (threshold, multiplier): multiplier applies once |skew| exceeds threshold
    skew_bands: List[Tuple[float, float]] = field(
        default_factory=lambda: [(0.10, 1.2), (0.20, 1.5)])
    low_volatility_multiplier: float = 0.8
    volatility_bands: List[Tuple[float, float]] = field(
        default_factory=lambda: [(0.10, 1.0), (0.20, 1.3), (0.30, 1.8)])
    # (threshold, multiplier): multiplier applies while volume is below threshold
    volume_bands: List[Tuple[float, float]] = field(
        default_factory=lambda: [(200.0, 1.5), (500.0, 1.2), (1000.0, 1.0)])
    high_volume_multiplier: float = 0.8
    bias_threshold: float = 0.10
    bias_adjust: float = 0.20


@dataclass
class InventoryConfig:
    """Inventory target and rebalancing."""
    target_base_ratio: float = 0.5
    rebalance_threshold: float = 0.15
    rebalance_target_skew: float = 0.0


@dataclass
class QuoteConfig:
    """Quote sizing, cadence and exchange retry settings."""
    order_size_base: float = 0.0001
    refresh_s: float = 30.0
    max_retries: int = 3
    retry_base_delay_s: float = 0.5
    retry_max_delay_s: float = 8.0
    volatility_default: float = 0.03
    volatility_lookback: int = 48
    volatility_min_samples: int = 5
    price_history: int = 288


@dataclass
class RiskConfig:
    """Risk limits.

    The stop-loss ends the loop. The other limits only raise warning alerts
    when they are first crossed.
    """
    stop_loss_threshold: float = -0.10
    cancel_max_retries: int = 5
    drawdown_warning_threshold: float = -0.05
    max_inventory_skew: float = 0.20
    max_tvl_exposure: float = 0.10


@dataclass
class LadderConfig:
    """Volume ladder extension."""
    enabled: bool = False
    levels: int = 5
    level_spacing_pct: float = 0.01
    reverse_trade_ratio: float = 0.5
    bullish_bias: float = 0.0
    max_order_size_base: Optional[float] = None
    volume_window_s: float = 24 * 3600.0


@dataclass
class LoggingConfig:
    """Logging configuration for debugging and monitoring."""
    level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    enable_performance: bool = False


@dataclass
class BotConfig:
    """Complete per-instrument configuration."""
    instrument: InstrumentConfig
    spread: SpreadConfig = field(default_factory=SpreadConfig)
    inventory: InventoryConfig = field(default_factory=InventoryConfig)
    quote: QuoteConfig = field(default_factory=QuoteConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    ladder: LadderConfig = field(default_factory=LadderConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    log_path: str = "./data/logs/mm_events.jsonl"
    state_dir: str = "./data/state"


class Side(str, Enum):
    BID = "bid"
    ASK = "ask"


class OrderStatus(str, Enum):
    OPEN = "open"
    FILLING = "filling"
    FILLED = "filled"
    CANCELLED = "cancelled"


class SwapDirection(str, Enum):
    BASE_TO_ASSET = "base_to_asset"
    ASSET_TO_BASE = "asset_to_base"


class LoopState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"
    STOPPED_LOSS = "stopped_loss"
    FAILED = "failed"


TERMINAL_STATES = (LoopState.STOPPED, LoopState.STOPPED_LOSS, LoopState.FAILED)

TICK_BASE = 1.0001


@dataclass(frozen=True)
class QuoteRange:
    """Tick-aligned liquidity band; lower_tick < upper_tick."""
    lower_tick: int
    upper_tick: int

    @property
    def lower_price(self) -> float:
        return TICK_BASE ** self.lower_tick

    @property
    def upper_price(self) -> float:
        return TICK_BASE ** self.upper_tick

    @property
    def mid_price(self) -> float:
        """Average execution price of a fully crossed range (geometric mean)."""
        return TICK_BASE ** ((self.lower_tick + self.upper_tick) / 2.0)

    def contains(self, price: float) -> bool:
        return self.lower_price <= price <= self.upper_price


@dataclass
class PseudoOrder:
    """A limit order emulated by a narrow liquidity range."""
    order_id: str
    side: Side
    target_price: float
    size_base: float
    range: QuoteRange
    status: OrderStatus = OrderStatus.OPEN
    created_at: int = 0
    filled_at: Optional[int] = None
    quote_mid: Optional[float] = None
    entry_edge: Optional[str] = None  # "lower" or "upper"
    external_id: Optional[str] = None
    history: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "side": self.side.value,
            "target_price": self.target_price,
            "size_base": self.size_base,
            "lower_tick": self.range.lower_tick,
            "upper_tick": self.range.upper_tick,
            "status": self.status.value,
            "created_at": self.created_at,
            "filled_at": self.filled_at,
            "quote_mid": self.quote_mid,
            "entry_edge": self.entry_edge,
            "external_id": self.external_id,
            "history": list(self.history),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PseudoOrder":
        return cls(
            order_id=d["order_id"],
            side=Side(d["side"]),
            target_price=float(d["target_price"]),
            size_base=float(d["size_base"]),
            range=QuoteRange(int(d["lower_tick"]), int(d["upper_tick"])),
            status=OrderStatus(d.get("status", "open")),
            created_at=int(d.get("created_at", 0)),
            filled_at=d.get("filled_at"),
            quote_mid=d.get("quote_mid"),
            entry_edge=d.get("entry_edge"),
            external_id=d.get("external_id"),
            history=list(d.get("history", [])),
        )


@dataclass(frozen=True)
class SpreadQuote:
    """Bid/ask prices produced by the spread policy for one cycle."""
    mid: float
    bid_price: float
    ask_price: float
    spread_bps: float
    bid_half_bps: float
    ask_half_bps: float
    skew: float


@dataclass
class PnLAccount:
    """Profit and loss plus activity counters, all in base units."""
    realized: float = 0.0
    unrealized: float = 0.0
    fees_paid: float = 0.0
    trade_count: int = 0
    volume: float = 0.0
    volume_24h: float = 0.0
    volume_window_start_ms: int = 0
    reversals: int = 0


@dataclass(frozen=True)
class PoolState:
    """Pool snapshot. base_price_ratio is base per asset (the quoted price)."""
    base_price_ratio: float
    asset_price_ratio: float
    volume_24h: float = 0.0
    tvl: float = 0.0

    @property
    def price(self) -> float:
        return self.base_price_ratio


@dataclass(frozen=True)
class TradeRecord:
    kind: str  # fill, rebalance, reverse
    ref: str
    side: str
    price: float
    base_amount: float
    asset_amount: float
    fee: float
    ts_ms: int


@dataclass(frozen=True)
class RebalanceTrade:
    direction: SwapDirection
    amount: float  # denominated in the input token
