"""
Gas cost for the on-chain convert that settles a NO basket. Queries Polygon
RPC for gas price and CoinGecko for POL/USD, both cached to avoid hammering
endpoints. With network access disabled, configured defaults are used.
"""

from __future__ import annotations

import logging
import time

import httpx

logger = logging.getLogger(__name__)

_TIMEOUT = 5.0


class GasOracle:
    """
    Cached gas price + POL/USD oracle.
    Queries Polygon RPC and CoinGecko with configurable cache TTL.
    """

    def __init__(
        self,
        rpc_url: str = "https://polygon-rpc.com",
        cache_sec: float = 10.0,
        default_gas_gwei: float = 30.0,
        default_pol_usd: float = 0.50,
        allow_network: bool = False,
    ):
        self._rpc_url = rpc_url
        self._cache_sec = cache_sec
        self._default_gas_gwei = default_gas_gwei
        self._default_pol_usd = default_pol_usd
        self._allow_network = allow_network

        self._cached_gas_gwei: float | None = None
        self._gas_ts: float = 0.0
        self._cached_pol_usd: float | None = None
        self._pol_ts: float = 0.0

    def get_gas_price_gwei(self) -> float:
        """Current gas price in gwei. Falls back to the default on any failure."""
        now = time.time()
        if self._cached_gas_gwei is not None and (now - self._gas_ts) < self._cache_sec:
            return self._cached_gas_gwei
        if not self._allow_network:
            return self._default_gas_gwei

        try:
            resp = httpx.post(
                self._rpc_url,
                json={"jsonrpc": "2.0", "method": "eth_gasPrice", "params": [], "id": 1},
                timeout=_TIMEOUT,
            )
            resp.raise_for_status()
            gwei = int(resp.json()["result"], 16) / 1e9
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as e:
            logger.warning("Gas price fetch failed, using default %.1f gwei: %s", self._default_gas_gwei, e)
            return self._default_gas_gwei
        self._cached_gas_gwei = gwei
        self._gas_ts = now
        logger.debug("Gas price: %.1f gwei", gwei)
        return gwei

    def get_pol_usd(self) -> float:
        """Current POL/USD price. Falls back to the default on any failure."""
        now = time.time()
        if self._cached_pol_usd is not None and (now - self._pol_ts) < self._cache_sec:
            return self._cached_pol_usd
        if not self._allow_network:
            return self._default_pol_usd

        try:
            resp = httpx.get(
                "https://api.coingecko.com/api/v3/simple/price",
                params={"ids": "polygon-ecosystem-token", "vs_currencies": "usd"},
                timeout=_TIMEOUT,
            )
            resp.raise_for_status()
            price = float(resp.json()["polygon-ecosystem-token"]["usd"])
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as e:
            logger.warning("POL/USD fetch failed, using default $%.2f: %s", self._default_pol_usd, e)
            return self._default_pol_usd
        self._cached_pol_usd = price
        self._pol_ts = now
        logger.debug("POL/USD: $%.4f", price)
        return price

    def estimate_cost_usd(self, n_txs: int, gas_per_tx: int) -> float:
        """Total gas cost in USD for n_txs transactions."""
        total_gas = n_txs * gas_per_tx
        cost_pol = (total_gas * self.get_gas_price_gwei() * 1e9) / 1e18
        return cost_pol * self.get_pol_usd()


class ConvertCostEstimator:
    """
    Settlement cost of a NO basket: one convert transaction whose gas grows
    with the number of positions it merges.
    """

    def __init__(self, gas_oracle: GasOracle, gas_per_convert: int, gas_per_extra_leg: int = 0):
        self._oracle = gas_oracle
        self._gas_per_convert = gas_per_convert
        self._gas_per_extra_leg = gas_per_extra_leg

    def estimate_usd(self, n_legs: int) -> float:
        gas = self._gas_per_convert + self._gas_per_extra_leg * max(0, n_legs - 2)
        return self._oracle.estimate_cost_usd(1, gas)
