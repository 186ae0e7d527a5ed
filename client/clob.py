"""
CLOB REST client wrapper for public orderbook reads. Converts SDK book
summaries into validated OrderBook models and every failure into a failed
BookFetch, so callers never have to catch.
"""

from __future__ import annotations

import logging
import time

from py_clob_client.client import ClobClient

from scanner.models import BookFetch, OrderBook, PriceLevel
from scanner.validation import parse_level

logger = logging.getLogger(__name__)

# Retry config for flaky CLOB API (connection resets, SSL errors)
_MAX_RETRIES = 3
_RETRY_BACKOFF_SEC = 1.0


def create_client(clob_host: str, chain_id: int = 137) -> ClobClient:
    """Level-0 client: no key, public endpoints only."""
    return ClobClient(clob_host, chain_id=chain_id)


def _sort_book_levels(
    raw_bids: list, raw_asks: list, token_id: str = "",
) -> tuple[tuple[PriceLevel, ...], tuple[PriceLevel, ...]]:
    """
    Convert raw SDK levels to validated, sorted PriceLevel tuples.
    Asks ascending (best first), bids descending (best first). The SDK does
    not guarantee order. Raises ValueError on any malformed level.
    """
    def _levels(raw: list, side: str) -> list[PriceLevel]:
        out = []
        for lvl in raw or []:
            price, size = parse_level(
                getattr(lvl, "price", None), getattr(lvl, "size", None), f"{token_id} {side}",
            )
            out.append(PriceLevel(price=price, size=size))
        return out

    bids = tuple(sorted(_levels(raw_bids, "bid"), key=lambda lvl: lvl.price, reverse=True))
    asks = tuple(sorted(_levels(raw_asks, "ask"), key=lambda lvl: lvl.price))
    return bids, asks


def _parse_timestamp(raw) -> float:
    """Upstream book timestamp (epoch millis, str or int) to epoch seconds. 0 if unknown."""
    if raw in (None, ""):
        return 0.0
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0.0
    if value <= 0:
        return 0.0
    # millis vs seconds
    return value / 1000.0 if value > 1e11 else value


def _retry_api_call(fn, *args, max_retries: int = _MAX_RETRIES, sleep=time.sleep, **kwargs):
    """Retry a py_clob_client call with exponential backoff on connection errors."""
    last_exc = None
    for attempt in range(max_retries):
        try:
            return fn(*args, **kwargs)
        except Exception as exc:
            last_exc = exc
            err_str = str(exc)
            # Only retry on connection-level errors (status_code=None), not 4xx/5xx
            is_connection_error = "Request exception" in err_str or "status_code=None" in err_str
            if not is_connection_error or attempt == max_retries - 1:
                raise
            wait = _RETRY_BACKOFF_SEC * (2 ** attempt)
            logger.debug("CLOB API retry %d/%d after %.1fs: %s", attempt + 1, max_retries, wait, exc)
            sleep(wait)
    raise last_exc


def fetch_book(client: ClobClient, token_id: str, sleep=time.sleep) -> BookFetch:
    """Fetch one orderbook. Never raises; failures come back as BookFetch.error."""
    try:
        raw = _retry_api_call(client.get_order_book, token_id, sleep=sleep)
    except Exception as e:
        logger.warning("Orderbook fetch failed for %s: %s", token_id, e)
        return BookFetch(token_id=token_id, error=f"fetch failed: {e}")

    try:
        bids, asks = _sort_book_levels(raw.bids, raw.asks, token_id)
    except ValueError as e:
        logger.warning("Malformed orderbook for %s: %s", token_id, e)
        return BookFetch(token_id=token_id, error=f"malformed book: {e}")

    book = OrderBook(
        token_id=token_id,
        bids=bids,
        asks=asks,
        timestamp=_parse_timestamp(getattr(raw, "timestamp", None)),
    )
    return BookFetch(token_id=token_id, book=book)


class ClobBookSource:
    """Book source for the scan cycle."""

    def __init__(self, client: ClobClient) -> None:
        self._client = client

    def fetch_book(self, token_id: str) -> BookFetch:
        return fetch_book(self._client, token_id)
