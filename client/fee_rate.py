"""
NegRisk fee rate from the adapter contract on Polygon, behind a TTL cache.

The fee rate is the one input the edge math cannot guess. A lookup either
yields a FeeRate with its provenance or a FeeRateUnavailable with the reason;
there is no silent default. Only successful lookups are cached, so a failed
RPC call is retried on the next cycle.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Protocol, Union

import httpx
from eth_utils import function_signature_to_4byte_selector

from scanner.validation import validate_rate

logger = logging.getLogger(__name__)

_TIMEOUT = 10.0
POLYGON_CHAIN_ID = 137
DEFAULT_ADAPTER = "0xC5d563A36AE78145C45a50134d48A1215220f80a"
DEFAULT_FEE_DENOMINATOR = 10_000  # basis points

FEE_RATE_SELECTOR = "0x" + function_signature_to_4byte_selector("feeRate()").hex()
FEE_DENOMINATOR_SELECTOR = "0x" + function_signature_to_4byte_selector("FEE_DENOMINATOR()").hex()


@dataclass(frozen=True)
class FeeRate:
    rate: float
    source: str  # "on-chain" | "config"
    fetched_at: float
    raw: int | None = None
    denominator: int | None = None


@dataclass(frozen=True)
class FeeRateUnavailable:
    reason: str
    fetched_at: float


FeeRateResult = Union[FeeRate, FeeRateUnavailable]


class FeeRateSource(Protocol):
    def get(self) -> FeeRateResult: ...


class RPCError(Exception):
    """JSON-RPC call failed or returned an error object."""
    pass


def _rpc(rpc_url: str, method: str, params: list, timeout: float) -> str:
    resp = httpx.post(
        rpc_url,
        json={"jsonrpc": "2.0", "method": method, "params": params, "id": 1},
        timeout=timeout,
    )
    resp.raise_for_status()
    body = resp.json()
    if not isinstance(body, dict):
        raise RPCError(f"{method}: malformed response body")
    if body.get("error"):
        raise RPCError(f"{method}: {body['error']}")
    result = body.get("result")
    if not isinstance(result, str):
        raise RPCError(f"{method}: missing result")
    return result


def _decode_uint(hex_value: str, what: str) -> int:
    data = hex_value[2:] if hex_value.startswith("0x") else hex_value
    if not data:
        raise RPCError(f"{what}: empty return data")
    return int(data, 16)


class FeeRateOracle:
    """
    Cached on-chain fee rate lookup.

    Verifies the RPC is on the expected chain, then calls feeRate() and
    FEE_DENOMINATOR() on the adapter. A missing denominator falls back to
    basis points.
    """

    def __init__(
        self,
        rpc_url: str = "https://polygon-rpc.com",
        adapter_address: str = DEFAULT_ADAPTER,
        cache_sec: float = 300.0,
        chain_id: int = POLYGON_CHAIN_ID,
        timeout: float = _TIMEOUT,
        clock=time.time,
    ):
        self._rpc_url = rpc_url
        self._adapter = adapter_address
        self._cache_sec = cache_sec
        self._chain_id = chain_id
        self._timeout = timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._cached: FeeRate | None = None
        self._cached_ts: float = 0.0

    def _call(self, selector: str) -> str:
        return _rpc(
            self._rpc_url,
            "eth_call",
            [{"to": self._adapter, "data": selector}, "latest"],
            self._timeout,
        )

    def fetch(self) -> FeeRateResult:
        """Uncached lookup."""
        now = self._clock()
        try:
            chain = _decode_uint(_rpc(self._rpc_url, "eth_chainId", [], self._timeout), "eth_chainId")
        except (httpx.HTTPError, RPCError, ValueError) as e:
            return FeeRateUnavailable(f"RPC connection failed: {e}", now)
        if chain != self._chain_id:
            return FeeRateUnavailable(
                f"Wrong chain: expected {self._chain_id}, got {chain}", now,
            )

        try:
            raw_rate = _decode_uint(self._call(FEE_RATE_SELECTOR), "feeRate()")
        except (httpx.HTTPError, RPCError, ValueError) as e:
            return FeeRateUnavailable(f"feeRate() call failed: {e}", now)

        try:
            denominator = _decode_uint(self._call(FEE_DENOMINATOR_SELECTOR), "FEE_DENOMINATOR()")
        except (httpx.HTTPError, RPCError, ValueError) as e:
            logger.debug("FEE_DENOMINATOR() unavailable, using %d: %s", DEFAULT_FEE_DENOMINATOR, e)
            denominator = DEFAULT_FEE_DENOMINATOR
        if denominator <= 0:
            denominator = DEFAULT_FEE_DENOMINATOR

        try:
            rate = validate_rate(raw_rate / denominator)
        except ValueError as e:
            return FeeRateUnavailable(str(e), now)
        return FeeRate(rate=rate, source="on-chain", fetched_at=now, raw=raw_rate, denominator=denominator)

    def get(self) -> FeeRateResult:
        """Cached lookup. Failures are returned but not cached."""
        with self._lock:
            now = self._clock()
            if self._cached is not None and (now - self._cached_ts) < self._cache_sec:
                return self._cached

            result = self.fetch()
            if isinstance(result, FeeRate):
                self._cached = result
                self._cached_ts = now
                logger.info("NegRisk fee rate: %.4f (raw %s / %s)", result.rate, result.raw, result.denominator)
            else:
                logger.warning("NegRisk fee rate unavailable: %s", result.reason)
            return result


class StaticFeeRate:
    """Operator-configured fee rate."""

    def __init__(self, rate: float, clock=time.time):
        self._rate = validate_rate(rate)
        self._clock = clock

    def get(self) -> FeeRateResult:
        return FeeRate(rate=self._rate, source="config", fetched_at=self._clock())
