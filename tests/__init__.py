"""
radmm Test Suite

Tests for the concentrated-liquidity market maker covering:
- Tick math, spread policy and inventory accounting
- Pseudo-order fill detection and the volume ladder
- Exchange adapters (with mocked HTTP) and the paper exchange
- The quoting loop, supervisor and state store
- Configuration, logging and backtests
"""
