"""
Tests for the inventory ledger and PnL helpers in radmm/inventory.py.

Tests cover:
- Capital allocation and skew
- Fill application (bid/ask), fees and value conservation
- DuplicateFill idempotence and InsufficientInventory
- Rebalance trade sizing with and without fees
- Snapshot round trip
- Realized/unrealized PnL and rolling volume
"""
import pytest

from radmm.adapters import expected_swap_out
from radmm.errors import DuplicateFill, InsufficientInventory, InvalidPrice
from radmm.inventory import (
    InventoryLedger,
    add_volume,
    captured_spread,
    mark_to_market,
    pnl_ratio,
    record_fill,
)
from radmm.types import PnLAccount, PseudoOrder, QuoteRange, Side, SwapDirection


def make_order(order_id, side, size, quote_mid=None):
    return PseudoOrder(
        order_id=order_id,
        side=side,
        target_price=1.0,
        size_base=size,
        range=QuoteRange(0, 10),
        quote_mid=quote_mid,
    )


class TestAllocation:
    """Test ledger construction and skew."""

    @pytest.mark.unit
    def test_allocate_splits_by_target(self):
        """Test that capital is split into base and asset by target ratio."""
        ledger = InventoryLedger.allocate(1.0, 100.0, 0.5)
        assert ledger.base_balance == pytest.approx(0.5)
        assert ledger.asset_balance == pytest.approx(0.005)
        assert ledger.total_value(100.0) == pytest.approx(1.0)
        assert ledger.skew(100.0) == pytest.approx(0.0)

    @pytest.mark.unit
    def test_skew_follows_price(self):
        """Test that skew turns negative when the asset appreciates."""
        ledger = InventoryLedger.allocate(1.0, 100.0, 0.5)
        # asset worth 0.6 at 120, base 0.5 -> base share 0.4545
        assert ledger.skew(120.0) == pytest.approx(0.5 / 1.1 - 0.5)
        assert ledger.skew(80.0) > 0

    @pytest.mark.unit
    @pytest.mark.parametrize("ratio", [0.0, 1.0, -0.1, 1.5])
    def test_target_ratio_must_be_inside_unit_interval(self, ratio):
        """Test that target_base_ratio outside (0, 1) is rejected."""
        with pytest.raises(ValueError):
            InventoryLedger(1.0, 1.0, ratio)

    @pytest.mark.unit
    def test_needs_rebalance(self):
        """Test the rebalance threshold check."""
        ledger = InventoryLedger(0.7, 0.3, 0.5)
        assert ledger.needs_rebalance(1.0, 0.15)
        assert not ledger.needs_rebalance(1.0, 0.25)

    @pytest.mark.unit
    def test_invalid_price(self):
        """Test that valuation rejects invalid prices."""
        ledger = InventoryLedger(1.0, 1.0, 0.5)
        with pytest.raises(InvalidPrice):
            ledger.total_value(0.0)


class TestApplyFill:
    """Test InventoryLedger.apply_fill."""

    @pytest.mark.unit
    def test_bid_fill_buys_asset(self):
        """Test that a bid spends base and receives asset."""
        ledger = InventoryLedger(1.0, 0.0, 0.5)
        rec = ledger.apply_fill(make_order("o1", Side.BID, 0.2), fill_price=2.0)
        assert ledger.base_balance == pytest.approx(0.8)
        assert ledger.asset_balance == pytest.approx(0.1)
        assert rec.kind == "fill"
        assert rec.base_amount == pytest.approx(-0.2)
        assert rec.asset_amount == pytest.approx(0.1)

    @pytest.mark.unit
    def test_ask_fill_sells_asset(self):
        """Test that an ask sells asset worth size_base."""
        ledger = InventoryLedger(0.0, 1.0, 0.5)
        ledger.apply_fill(make_order("o1", Side.ASK, 0.5), fill_price=2.0)
        assert ledger.base_balance == pytest.approx(0.5)
        assert ledger.asset_balance == pytest.approx(0.75)

    @pytest.mark.unit
    @pytest.mark.parametrize("side", [Side.BID, Side.ASK])
    def test_fill_conserves_value_at_fill_price(self, side):
        """Test that without fees total value at the fill price is unchanged."""
        ledger = InventoryLedger(0.6, 0.3, 0.5)
        before = ledger.total_value(1.7)
        ledger.apply_fill(make_order("o1", side, 0.25), fill_price=1.7)
        assert ledger.total_value(1.7) == pytest.approx(before)

    @pytest.mark.unit
    @pytest.mark.parametrize("side", [Side.BID, Side.ASK])
    def test_fill_fee_reduces_value_by_fee(self, side):
        """Test that the fee is the only value lost on a fill."""
        ledger = InventoryLedger(0.6, 0.3, 0.5)
        before = ledger.total_value(1.7)
        ledger.apply_fill(make_order("o1", side, 0.25), fill_price=1.7, fee=0.001)
        assert ledger.total_value(1.7) == pytest.approx(before - 0.001)

    @pytest.mark.unit
    def test_duplicate_fill_is_rejected_without_change(self):
        """Test that applying the same order twice changes nothing."""
        ledger = InventoryLedger(1.0, 1.0, 0.5)
        order = make_order("o1", Side.BID, 0.1)
        ledger.apply_fill(order, 1.0)
        base, asset = ledger.base_balance, ledger.asset_balance

        with pytest.raises(DuplicateFill):
            ledger.apply_fill(order, 1.0)
        assert ledger.base_balance == base
        assert ledger.asset_balance == asset
        assert len(ledger.trades) == 1
        assert ledger.has_fill("o1")

    @pytest.mark.unit
    def test_insufficient_base(self):
        """Test that a bid larger than base raises and changes nothing."""
        ledger = InventoryLedger(0.1, 1.0, 0.5)
        with pytest.raises(InsufficientInventory) as exc:
            ledger.apply_fill(make_order("o1", Side.BID, 0.2), 1.0)
        assert exc.value.token == "base"
        assert ledger.base_balance == 0.1
        assert not ledger.has_fill("o1")

    @pytest.mark.unit
    def test_insufficient_asset(self):
        """Test that an ask larger than asset inventory raises."""
        ledger = InventoryLedger(1.0, 0.1, 0.5)
        with pytest.raises(InsufficientInventory) as exc:
            ledger.apply_fill(make_order("o1", Side.ASK, 0.5), 1.0)
        assert exc.value.token == "asset"
        assert ledger.asset_balance == 0.1


class TestRebalance:
    """Test rebalance trade sizing."""

    @pytest.mark.unit
    def test_no_trade_at_target(self):
        """Test that a balanced ledger needs no trade."""
        ledger = InventoryLedger(0.5, 0.5, 0.5)
        assert ledger.rebalance_trade(1.0) is None

    @pytest.mark.unit
    def test_excess_base_buys_asset(self):
        """Test sizing without fees when holding too much base."""
        ledger = InventoryLedger(0.8, 0.2, 0.5)
        trade = ledger.rebalance_trade(1.0)
        assert trade.direction == SwapDirection.BASE_TO_ASSET
        assert trade.amount == pytest.approx(0.3)

    @pytest.mark.unit
    def test_excess_asset_sells_asset(self):
        """Test sizing without fees when holding too much asset."""
        ledger = InventoryLedger(0.2, 0.4, 0.5)
        trade = ledger.rebalance_trade(2.0)
        assert trade.direction == SwapDirection.ASSET_TO_BASE
        # value 1.0, need 0.3 more base -> sell 0.15 asset at 2.0
        assert trade.amount == pytest.approx(0.15)

    @pytest.mark.unit
    @pytest.mark.parametrize("base,asset,price", [
        (0.9, 0.1, 1.0),
        (0.1, 0.9, 1.0),
        (0.7, 0.00042, 250.0),
        (0.05, 0.01, 40.0),
    ])
    def test_rebalance_lands_on_target_after_fees(self, base, asset, price):
        """Test that executing the trade with a 1% fee gives zero skew."""
        fee = 0.01
        ledger = InventoryLedger(base, asset, 0.5)
        trade = ledger.rebalance_trade(price, 0.0, fee)
        out = expected_swap_out(trade.amount, trade.direction, price, fee)
        ledger.apply_swap(trade.direction, trade.amount, out, price)
        assert ledger.skew(price) == pytest.approx(0.0, abs=1e-9)

    @pytest.mark.unit
    def test_rebalance_to_offset_target(self):
        """Test rebalancing toward a non-zero target skew."""
        fee = 0.01
        ledger = InventoryLedger(0.9, 0.1, 0.5)
        trade = ledger.rebalance_trade(1.0, 0.05, fee)
        out = expected_swap_out(trade.amount, trade.direction, 1.0, fee)
        ledger.apply_swap(trade.direction, trade.amount, out, 1.0)
        assert ledger.skew(1.0) == pytest.approx(0.05)

    @pytest.mark.unit
    def test_apply_swap_requires_balance(self):
        """Test that swaps cannot spend more than is held."""
        ledger = InventoryLedger(0.1, 0.1, 0.5)
        with pytest.raises(InsufficientInventory):
            ledger.apply_swap(SwapDirection.BASE_TO_ASSET, 0.2, 0.2, 1.0)


class TestSnapshot:
    """Test ledger persistence helpers."""

    @pytest.mark.unit
    def test_snapshot_round_trip_keeps_applied_fills(self):
        """Test that a restored ledger still rejects old fills."""
        ledger = InventoryLedger(1.0, 1.0, 0.4)
        order = make_order("o1", Side.ASK, 0.1)
        ledger.apply_fill(order, 1.0)

        restored = InventoryLedger.from_snapshot(ledger.snapshot())
        assert restored.base_balance == ledger.base_balance
        assert restored.asset_balance == ledger.asset_balance
        assert restored.target_base_ratio == 0.4
        assert restored.trades == ledger.trades
        with pytest.raises(DuplicateFill):
            restored.apply_fill(order, 1.0)


class TestPnL:
    """Test PnL helpers."""

    @pytest.mark.unit
    def test_captured_spread_ask(self):
        """Test that an ask above mid captures positive spread."""
        order = make_order("o1", Side.ASK, 1.1, quote_mid=1.0)
        assert captured_spread(order, 1.1) == pytest.approx(0.1)

    @pytest.mark.unit
    def test_captured_spread_bid(self):
        """Test that a bid below mid captures positive spread."""
        order = make_order("o1", Side.BID, 0.9, quote_mid=1.0)
        assert captured_spread(order, 0.9) == pytest.approx(0.1)

    @pytest.mark.unit
    def test_captured_spread_without_mid(self):
        """Test that orders without a quote mid capture nothing."""
        assert captured_spread(make_order("o1", Side.ASK, 1.0), 1.0) == 0.0

    @pytest.mark.unit
    def test_mark_to_market_identity(self):
        """Test total value == initial + realized + unrealized."""
        ledger = InventoryLedger(0.55, 0.5, 0.5)
        pnl = PnLAccount(realized=0.02)
        mark_to_market(pnl, ledger, 1.1, 1.0)
        assert ledger.total_value(1.1) == pytest.approx(1.0 + pnl.realized + pnl.unrealized)
        assert pnl_ratio(pnl, 1.0) == pytest.approx(0.1)

    @pytest.mark.unit
    def test_pnl_ratio_without_capital(self):
        """Test that zero capital gives a zero ratio."""
        assert pnl_ratio(PnLAccount(realized=1.0), 0.0) == 0.0

    @pytest.mark.unit
    def test_record_fill_counts(self):
        """Test that a recorded fill updates every counter."""
        pnl = PnLAccount()
        record_fill(pnl, 0.01, 0.002, 0.5, ts_ms=1_000, window_ms=10_000)
        assert pnl.realized == pytest.approx(0.01)
        assert pnl.fees_paid == pytest.approx(0.002)
        assert pnl.trade_count == 1
        assert pnl.volume == pytest.approx(0.5)
        assert pnl.volume_24h == pytest.approx(0.5)

    @pytest.mark.unit
    def test_rolling_volume_window_resets(self):
        """Test that the rolling volume restarts after its window."""
        pnl = PnLAccount()
        add_volume(pnl, 1.0, ts_ms=1_000, window_ms=10_000)
        add_volume(pnl, 1.0, ts_ms=5_000, window_ms=10_000)
        assert pnl.volume_24h == pytest.approx(2.0)
        add_volume(pnl, 0.5, ts_ms=11_000, window_ms=10_000)
        assert pnl.volume_24h == pytest.approx(0.5)
        assert pnl.volume == pytest.approx(2.5)
