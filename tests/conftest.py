"""
Pytest configuration and shared fixtures for radmm tests.

This module provides:
- Common test fixtures for mocking external dependencies
- Test configuration helpers
- Paper exchanges driven by scripted price paths
- Mock objects for RadFi API responses
"""
import json
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from radmm.adapters import ExchangeClient, PaperExchange
from radmm.logging import JsonlLogger
from radmm.market_data import ScriptedPriceFeed
from radmm.types import (
    BotConfig,
    InstrumentConfig,
    LoggingConfig,
    PoolState,
    QuoteConfig,
    RiskConfig,
)


async def no_sleep(_delay):
    """Drop-in for asyncio.sleep that returns immediately."""
    return None


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests that need file I/O."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_config(temp_dir):
    """Sample bot configuration for testing.

    Tick spacing 10 keeps each pseudo-order range about 0.1% wide so
    scripted price moves of a few percent cross it completely.
    """
    instrument = InstrumentConfig(
        instrument_id="RAD",
        pool_id="pool-rad-btc",
        tick_spacing=10,
        asset_token_id="840000:3",
        swap_fee_rate=0.01,
    )
    return BotConfig(
        instrument=instrument,
        quote=QuoteConfig(refresh_s=0.0, retry_base_delay_s=0.0),
        risk=RiskConfig(),
        logging=LoggingConfig(),
        log_path=str(temp_dir / "test_events.jsonl"),
        state_dir=str(temp_dir / "state"),
    )


@pytest.fixture
def mock_logger(temp_dir):
    """Mock JsonlLogger for testing."""
    log_path = temp_dir / "test_log.jsonl"
    logger = JsonlLogger(str(log_path))

    # Keep writing to disk but record every call
    original_write = logger.write
    logger.write = MagicMock(side_effect=original_write)

    yield logger

    logger.close()


def logged_events(logger):
    """Event names passed to a mock_logger's write()."""
    return [c.args[0] for c in logger.write.call_args_list]


@pytest.fixture
def paper_exchange_factory():
    """Build a PaperExchange over a fixed price path."""
    def _make(prices, swap_fee_rate=0.01, volume_24h=500.0):
        return PaperExchange(ScriptedPriceFeed(prices), swap_fee_rate=swap_fee_rate,
                             volume_24h=volume_24h)
    return _make


@pytest.fixture
def mock_exchange():
    """Mock ExchangeClient for testing loop logic without real API calls."""
    ex = MagicMock(spec=ExchangeClient)
    ex.get_pool_state = AsyncMock(return_value=PoolState(
        base_price_ratio=100.0,
        asset_price_ratio=0.01,
        volume_24h=500.0,
        tvl=10_000.0,
    ))
    ex.place_liquidity = AsyncMock(side_effect=[f"nft-{i}" for i in range(1, 1000)])
    ex.cancel_liquidity = AsyncMock(return_value=True)
    ex.swap = AsyncMock(return_value=0.0)
    ex.close = AsyncMock(return_value=None)
    return ex


@pytest.fixture
def radfi_pools_response():
    """Sample /api/pools payload."""
    return {
        "data": [
            {
                "_id": "pool-other",
                "token0Reserve": "1.0",
                "token1Reserve": "1.0",
            },
            {
                "_id": "pool-rad-btc",
                "token0Reserve": "2.5",
                "token1Reserve": "250000",
                "volume24h": "0.75",
                "tvl": "5.0",
            },
        ]
    }


@pytest.fixture
def sample_config_file(temp_dir, sample_config):
    """Create a temporary config file for testing config loading."""
    config_path = temp_dir / "test_config.json"
    config_data = {
        "instrument": {
            "instrument_id": sample_config.instrument.instrument_id,
            "pool_id": sample_config.instrument.pool_id,
            "tick_spacing": sample_config.instrument.tick_spacing,
            "asset_token_id": sample_config.instrument.asset_token_id,
        },
        "spread": {
            "base_spread_bps": 120.0,
            "skew_bands": [[0.1, 1.2], [0.2, 1.5]],
        },
        "inventory": {},
        "quote": {"refresh_s": 15},
        "risk": {},
        "ladder": {},
        "logging": {},
        "log_path": sample_config.log_path,
        "state_dir": sample_config.state_dir,
    }

    with open(config_path, 'w') as f:
        json.dump(config_data, f, indent=2)

    return config_path
