"""
Tests for the spread policy in radmm/spread.py.

Tests cover:
- Multiplier step functions (skew, volatility, pool volume)
- Spread clamping to [min, max]
- Monotonicity in |skew| and volatility
- Bias toward reducing inventory skew
- Determinism and invalid mid handling
"""
import pytest

from radmm.errors import InvalidPrice
from radmm.inventory import InventoryLedger
from radmm.spread import SpreadPolicy
from radmm.types import SpreadConfig


def ledger_with_skew(skew, price=1.0, target=0.5, total=1.0):
    """Ledger whose skew at `price` is exactly `skew`."""
    base = (target + skew) * total
    return InventoryLedger(base, (total - base) / price, target)


@pytest.fixture
def policy():
    return SpreadPolicy(SpreadConfig())


class TestMultipliers:
    """Test the individual spread multipliers."""

    @pytest.mark.unit
    @pytest.mark.parametrize("skew,expected", [
        (0.0, 1.0),
        (0.05, 1.0),
        (0.10, 1.0),
        (0.15, 1.2),
        (-0.15, 1.2),
        (0.25, 1.5),
        (-0.4, 1.5),
    ])
    def test_skew_multiplier(self, policy, skew, expected):
        """Test skew bands: >0.10 -> 1.2, >0.20 -> 1.5."""
        assert policy.skew_multiplier(skew) == expected

    @pytest.mark.unit
    @pytest.mark.parametrize("vol,expected", [
        (0.0, 0.8),
        (0.03, 0.8),
        (0.10, 0.8),
        (0.15, 1.0),
        (0.25, 1.3),
        (0.35, 1.8),
        (2.0, 1.8),
    ])
    def test_volatility_multiplier(self, policy, vol, expected):
        """Test volatility bands with the low-volatility tightening."""
        assert policy.volatility_multiplier(vol) == expected

    @pytest.mark.unit
    @pytest.mark.parametrize("volume,expected", [
        (0.0, 1.5),
        (199.0, 1.5),
        (200.0, 1.2),
        (499.0, 1.2),
        (500.0, 1.0),
        (999.0, 1.0),
        (1000.0, 0.8),
        (1e9, 0.8),
    ])
    def test_illiquidity_multiplier(self, policy, volume, expected):
        """Test that thin pools widen and busy pools tighten the spread."""
        assert policy.illiquidity_multiplier(volume) == expected


class TestSpreadBps:
    """Test total spread computation."""

    @pytest.mark.unit
    def test_neutral_spread(self, policy):
        """Test base spread with neutral multipliers."""
        # skew 0 -> 1.0, vol 0.15 -> 1.0, volume 500 -> 1.0
        assert policy.spread_bps(0.0, 0.15, 500.0) == pytest.approx(100.0)

    @pytest.mark.unit
    def test_combined_multipliers(self, policy):
        """Test that multipliers compound."""
        # 100 * 1.2 * 1.3 * 1.2 = 187.2
        assert policy.spread_bps(0.15, 0.25, 300.0) == pytest.approx(187.2)

    @pytest.mark.unit
    def test_clamped_to_max(self, policy):
        """Test that extreme conditions clamp to max_spread_bps."""
        assert policy.spread_bps(0.5, 1.0, 0.0) == 200.0

    @pytest.mark.unit
    def test_clamped_to_min(self):
        """Test that a tight configuration clamps to min_spread_bps."""
        policy = SpreadPolicy(SpreadConfig(base_spread_bps=40.0))
        assert policy.spread_bps(0.0, 0.0, 5000.0) == 50.0

    @pytest.mark.unit
    def test_monotonic_in_abs_skew(self, policy):
        """Test that spread never narrows as |skew| grows."""
        skews = [i / 100 for i in range(0, 45)]
        spreads = [policy.spread_bps(s, 0.05, 800.0) for s in skews]
        assert all(b >= a for a, b in zip(spreads, spreads[1:]))
        neg = [policy.spread_bps(-s, 0.05, 800.0) for s in skews]
        assert neg == spreads

    @pytest.mark.unit
    def test_monotonic_in_volatility(self, policy):
        """Test that spread never narrows as volatility grows."""
        vols = [i / 100 for i in range(0, 60)]
        spreads = [policy.spread_bps(0.0, v, 800.0) for v in vols]
        assert all(b >= a for a, b in zip(spreads, spreads[1:]))


class TestQuote:
    """Test SpreadPolicy.quote."""

    @pytest.mark.unit
    def test_balanced_quote_is_symmetric(self, policy):
        """Test that a balanced inventory quotes symmetric halves."""
        q = policy.quote(100.0, ledger_with_skew(0.0, price=100.0), 0.15, 500.0)
        assert q.skew == pytest.approx(0.0)
        assert q.spread_bps == pytest.approx(100.0)
        assert q.bid_half_bps == pytest.approx(50.0)
        assert q.ask_half_bps == pytest.approx(50.0)
        assert q.bid_price == pytest.approx(99.5)
        assert q.ask_price == pytest.approx(100.5)
        assert q.bid_price < q.mid < q.ask_price

    @pytest.mark.unit
    def test_excess_base_leans_ask_in(self, policy):
        """Test that too much base tightens the ask and widens the bid."""
        q = policy.quote(1.0, ledger_with_skew(0.15), 0.15, 500.0)
        # spread 120 bps (skew band 1.2); ask half 60*0.8, bid half 60*1.2
        assert q.spread_bps == pytest.approx(120.0)
        assert q.ask_half_bps == pytest.approx(48.0)
        assert q.bid_half_bps == pytest.approx(72.0)
        assert q.ask_half_bps + q.bid_half_bps == pytest.approx(q.spread_bps)

    @pytest.mark.unit
    def test_excess_asset_leans_bid_in(self, policy):
        """Test that too much asset tightens the bid and widens the ask."""
        q = policy.quote(1.0, ledger_with_skew(-0.15), 0.15, 500.0)
        assert q.bid_half_bps == pytest.approx(48.0)
        assert q.ask_half_bps == pytest.approx(72.0)

    @pytest.mark.unit
    def test_no_bias_inside_threshold(self, policy):
        """Test that small skew leaves the halves equal."""
        q = policy.quote(1.0, ledger_with_skew(0.05), 0.15, 500.0)
        assert q.bid_half_bps == pytest.approx(q.ask_half_bps)

    @pytest.mark.unit
    def test_quote_is_deterministic(self, policy):
        """Test that identical inputs give identical quotes."""
        ledger = ledger_with_skew(0.12, price=0.00042)
        a = policy.quote(0.00042, ledger, 0.22, 150.0)
        b = policy.quote(0.00042, ledger, 0.22, 150.0)
        assert a == b

    @pytest.mark.unit
    def test_spread_within_bounds(self, policy):
        """Test that quoted spread always respects min/max."""
        for skew in (-0.4, -0.1, 0.0, 0.1, 0.4):
            for vol in (0.0, 0.2, 0.9):
                for volume in (0.0, 600.0, 1e6):
                    q = policy.quote(1.0, ledger_with_skew(skew), vol, volume)
                    assert 50.0 <= q.spread_bps <= 200.0

    @pytest.mark.unit
    @pytest.mark.parametrize("mid", [0.0, -1.0, float("nan"), float("inf")])
    def test_invalid_mid_raises(self, policy, mid):
        """Test that invalid mid prices raise InvalidPrice."""
        with pytest.raises(InvalidPrice):
            policy.quote(mid, ledger_with_skew(0.0), 0.1, 500.0)
