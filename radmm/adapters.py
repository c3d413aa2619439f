"""
Exchange adapters for concentrated-liquidity pools.
"""
import asyncio
import os
from typing import Any, Callable, Dict, Optional

import requests

from .errors import ExchangeRejected, ExchangeUnavailable, InvalidPrice
from .market_data import PriceFeed
from .types import InstrumentConfig, PoolState, QuoteRange, SwapDirection

RADFI_API_BASE = "https://api.radfi.co"

HEADERS = {
    "Accept": "application/json, text/plain, */*",
    "Content-Type": "application/json",
    "Origin": "https://app.radfi.co",
    "Referer": "https://app.radfi.co/",
}


class ExchangeClient:
    """Abstract base class for pool exchange interfaces.

    `amounts` passed to place_liquidity is {"base": float, "asset": float}.
    Implementations raise ExchangeUnavailable for transient failures and
    ExchangeRejected for requests the exchange refuses.
    """

    async def get_pool_state(self, pool_id: str) -> PoolState:
        raise NotImplementedError

    async def place_liquidity(self, range: QuoteRange, amounts: Dict[str, float]) -> str:
        raise NotImplementedError

    async def cancel_liquidity(self, order_id: str) -> bool:
        raise NotImplementedError

    async def swap(self, amount_in: float, direction: SwapDirection) -> float:
        raise NotImplementedError

    async def close(self) -> None:
        pass


def expected_swap_out(amount_in: float, direction: SwapDirection, price: float,
                      fee_rate: float) -> float:
    """Output of a swap at `price` (base per asset) after the pool fee."""
    if direction == SwapDirection.BASE_TO_ASSET:
        return amount_in * (1.0 - fee_rate) / price
    return amount_in * price * (1.0 - fee_rate)


def swap_fee_in_base(amount_in: float, direction: SwapDirection, price: float,
                     fee_rate: float) -> float:
    """Pool fee of a swap expressed in base units."""
    if direction == SwapDirection.BASE_TO_ASSET:
        return amount_in * fee_rate
    return amount_in * price * fee_rate


class RadFiAdapter(ExchangeClient):
    """RadFi REST API adapter.

    Pool state comes from /api/pools (price = token0Reserve / token1Reserve,
    token0 being BTC, the base currency). Liquidity positions and swaps are
    submitted as VM transactions (`provide-liquidity`, `withdraw-liquidity`,
    `swap`) to /api/vm-transactions. Position ids are the NFT ids returned
    by the exchange.

    Blocking `requests` calls run in a worker thread via asyncio.to_thread so
    one slow request never stalls other instruments' loops.

    Error mapping:
        network errors, HTTP 429 and 5xx -> ExchangeUnavailable (retryable)
        other HTTP 4xx                    -> ExchangeRejected

    Environment Variables:
        RADFI_USER_ADDRESS: Wallet address positions belong to (required
                            unless passed explicitly)
        RADFI_ACCESS_TOKEN: Bearer token used when no token_provider is given
        RADFI_API_BASE: API host override (default: https://api.radfi.co)
    """

    def __init__(
        self,
        instrument: InstrumentConfig,
        user_address: Optional[str] = None,
        token_provider: Optional[Callable[[], Optional[str]]] = None,
        session: Optional[requests.Session] = None,
        base_url: Optional[str] = None,
        timeout: float = 10.0,
        slippage_bps: int = 100,
    ):
        self.instrument = instrument
        self.user_address = user_address or os.getenv("RADFI_USER_ADDRESS")
        if not self.user_address:
            raise ValueError("RADFI_USER_ADDRESS not set. Required for RadFi positions.")
        self._token_provider = token_provider or (lambda: os.getenv("RADFI_ACCESS_TOKEN"))
        self.base_url = (base_url or os.getenv("RADFI_API_BASE", RADFI_API_BASE)).rstrip("/")
        self.session = session or requests.Session()
        self.session.headers.update(HEADERS)
        self.timeout = timeout
        self.slippage_bps = slippage_bps
        self._last_price: Optional[float] = None

    def _request(self, method: str, endpoint: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        headers = {}
        token = self._token_provider()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        url = f"{self.base_url}{endpoint}"
        try:
            resp = self.session.request(method, url, json=body, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise ExchangeUnavailable(f"{method} {endpoint}: {e}") from e
        if resp.status_code == 429 or resp.status_code >= 500:
            raise ExchangeUnavailable(f"{method} {endpoint}: HTTP {resp.status_code}")
        if resp.status_code >= 400:
            raise ExchangeRejected(f"{method} {endpoint}: HTTP {resp.status_code} {resp.text[:500]}")
        try:
            return resp.json()
        except ValueError as e:
            raise ExchangeUnavailable(f"{method} {endpoint}: invalid JSON response") from e

    def _vm_transaction(self, tx_type: str, params: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/api/vm-transactions", {"type": tx_type, "params": params})

    @staticmethod
    def _extract_id(resp: Dict[str, Any]) -> Optional[str]:
        data = resp.get("data", resp)
        if isinstance(data, dict):
            for key in ("nftId", "_id", "id", "txId"):
                if data.get(key) is not None:
                    return str(data[key])
        return None

    async def get_pool_state(self, pool_id: str) -> PoolState:
        """Current price, volume and TVL of `pool_id`.

        Raises:
            ExchangeUnavailable: request failed or pool has no usable reserves
            ExchangeRejected: pool id unknown to the exchange
        """
        def _fetch() -> PoolState:
            resp = self._request("GET", "/api/pools")
            pool = next((p for p in resp.get("data") or [] if p.get("_id") == pool_id), None)
            if pool is None:
                raise ExchangeRejected(f"pool {pool_id} not found")
            base_reserve = float(pool.get("token0Reserve") or 0)
            asset_reserve = float(pool.get("token1Reserve") or 0)
            if base_reserve <= 0 or asset_reserve <= 0:
                raise ExchangeUnavailable(f"pool {pool_id} has empty reserves")
            price = base_reserve / asset_reserve
            return PoolState(
                base_price_ratio=price,
                asset_price_ratio=1.0 / price,
                volume_24h=float(pool.get("volume24h") or 0.0),
                tvl=float(pool.get("tvl") or 0.0),
            )

        state = await asyncio.to_thread(_fetch)
        self._last_price = state.price
        return state

    async def place_liquidity(self, range: QuoteRange, amounts: Dict[str, float]) -> str:
        """Open a liquidity position over `range`; returns its NFT id."""
        inst = self.instrument

        def _exec() -> str:
            resp = self._vm_transaction("provide-liquidity", {
                "userAddress": self.user_address,
                "poolId": inst.pool_id,
                "token0Id": inst.base_token_id,
                "token1Id": inst.asset_token_id,
                "amount0": str(amounts.get("base", 0.0)),
                "amount1": str(amounts.get("asset", 0.0)),
                "lowerTick": str(range.lower_tick),
                "upperTick": str(range.upper_tick),
                "tickSpacing": inst.tick_spacing,
                "scVersion": "v4",
            })
            oid = self._extract_id(resp)
            if oid is None:
                raise ExchangeRejected("provide-liquidity response carried no position id")
            return oid

        return await asyncio.to_thread(_exec)

    async def cancel_liquidity(self, order_id: str) -> bool:
        """Withdraw the position `order_id`.

        Returns False when the position no longer exists on the exchange.
        """
        inst = self.instrument

        def _exec() -> bool:
            resp = self._request("GET", f"/api/user-assets/{self.user_address}")
            nfts = (resp.get("data") or {}).get("nfts") or []
            nft = next((n for n in nfts if str(n.get("nftId", n.get("_id"))) == str(order_id)), None)
            if nft is None:
                return False
            self._vm_transaction("withdraw-liquidity", {
                "userAddress": self.user_address,
                "nftId": str(order_id),
                "liquidityValue": str(nft.get("liquidity", nft.get("liquidityValue", "0"))),
                "amount0": str(nft.get("amount0", "0")),
                "amount1": str(nft.get("amount1", "0")),
                "token0Id": inst.base_token_id,
                "token1Id": inst.asset_token_id,
                "scVersion": "v4",
            })
            return True

        return await asyncio.to_thread(_exec)

    async def swap(self, amount_in: float, direction: SwapDirection) -> float:
        """Market swap; returns the output amount reported by the exchange,
        falling back to the quoted minimum when the response has none."""
        inst = self.instrument
        price = self._last_price
        if price is None:
            price = (await self.get_pool_state(inst.pool_id)).price
        if not price or price <= 0:
            raise InvalidPrice(f"no usable pool price for swap: {price!r}")
        expected = expected_swap_out(amount_in, direction, price, inst.swap_fee_rate)
        if direction == SwapDirection.BASE_TO_ASSET:
            token_in, token_out = inst.base_token_id, inst.asset_token_id
        else:
            token_in, token_out = inst.asset_token_id, inst.base_token_id

        def _exec() -> float:
            resp = self._vm_transaction("swap", {
                "userAddress": self.user_address,
                "poolId": inst.pool_id,
                "amountIn": str(amount_in),
                "amountOut": str(expected),
                "tokenIn": token_in,
                "tokenOut": token_out,
                "slippage": self.slippage_bps,
            })
            data = resp.get("data", resp)
            if isinstance(data, dict) and data.get("amountOut") is not None:
                return float(data["amountOut"])
            return expected

        return await asyncio.to_thread(_exec)

    async def close(self) -> None:
        self.session.close()


class PaperExchange(ExchangeClient):
    """In-memory exchange driven by a PriceFeed.

    Used for --dry-run, backtests and tests. Every get_pool_state call after
    the first advances the feed one step. Swaps execute at the current feed
    price less `swap_fee_rate`.

    Args:
        feed: Price source
        swap_fee_rate: Pool fee charged on swaps
        volume_24h: Reported pool volume
        tvl: Reported total value locked
        echo: Print each action like a dry-run console
    """

    def __init__(self, feed: PriceFeed, swap_fee_rate: float = 0.01,
                 volume_24h: float = 500.0, tvl: float = 10_000.0, echo: bool = False):
        self.feed = feed
        self.swap_fee_rate = swap_fee_rate
        self.volume_24h = volume_24h
        self.tvl = tvl
        self.echo = echo
        self.positions: Dict[str, Dict[str, Any]] = {}
        self.swaps = []
        self._seq = 0
        self._polled = False

    async def get_pool_state(self, pool_id: str) -> PoolState:
        price = self.feed.advance() if self._polled else self.feed.current()
        self._polled = True
        return PoolState(
            base_price_ratio=price,
            asset_price_ratio=1.0 / price,
            volume_24h=self.volume_24h,
            tvl=self.tvl,
        )

    async def place_liquidity(self, range: QuoteRange, amounts: Dict[str, float]) -> str:
        self._seq += 1
        oid = f"paper-{self._seq}"
        self.positions[oid] = {"range": range, "amounts": dict(amounts)}
        if self.echo:
            print(f"[DRY] PLACE {oid} ticks=[{range.lower_tick},{range.upper_tick}] "
                  f"base={amounts.get('base', 0.0):.8f} asset={amounts.get('asset', 0.0):.8f}")
        return oid

    async def cancel_liquidity(self, order_id: str) -> bool:
        existed = self.positions.pop(order_id, None) is not None
        if self.echo:
            print(f"[DRY] CANCEL {order_id}")
        return existed

    async def swap(self, amount_in: float, direction: SwapDirection) -> float:
        price = self.feed.current()
        out = expected_swap_out(amount_in, direction, price, self.swap_fee_rate)
        self.swaps.append({"amount_in": amount_in, "direction": direction.value,
                           "amount_out": out, "price": price})
        if self.echo:
            print(f"[DRY] SWAP {direction.value} in={amount_in:.8f} out={out:.8f} @ {price:.8f}")
        return out
