"""
Leg normalizer. Turns per-outcome orderbook fetch results into canonical
OutcomeLegs. Never raises for upstream problems: a failed or unusable fetch
becomes a leg at the least-favorable price for the opportunity shape, marked
stale, so a data failure can never manufacture profit.
"""

from __future__ import annotations

import logging
import time

from scanner.depth import DEFAULT_PRICE_BAND, band_depth_usd, band_levels
from scanner.models import BookFetch, OpportunityType, OrderBook, OutcomeLeg, OutcomeRef

logger = logging.getLogger(__name__)

DEFAULT_FRESHNESS_WINDOW_SEC = 60.0

# Worst possible price per shape: a YES basket can't cost more than 1 per leg,
# a NO basket's trigger (sum of YES > 1) can't be helped by a YES price of 0.
LEAST_FAVORABLE_PRICE = {
    OpportunityType.BUY_ALL_YES: 1.0,
    OpportunityType.BUY_ALL_NO_CONVERT: 0.0,
}


def is_stale(book: OrderBook, now: float, freshness_window_sec: float) -> bool:
    """A book is stale if its last update is unknown or older than the window."""
    if book.timestamp <= 0:
        return True
    return now - book.timestamp > freshness_window_sec


def failed_leg(
    ref: OutcomeRef,
    opp_type: OpportunityType,
    reason: str,
) -> OutcomeLeg:
    token_id = ref.yes_token_id if opp_type == OpportunityType.BUY_ALL_YES else ref.no_token_id
    return OutcomeLeg(
        token_id=token_id,
        outcome=ref.label,
        price=LEAST_FAVORABLE_PRICE[opp_type],
        depth=0.0,
        spread=1.0,
        stale=True,
        error=reason or "fetch failed",
    )


def normalize_leg(
    ref: OutcomeRef,
    yes_fetch: BookFetch,
    opp_type: OpportunityType,
    no_fetch: BookFetch | None = None,
    now: float | None = None,
    freshness_window_sec: float = DEFAULT_FRESHNESS_WINDOW_SEC,
    band: float = DEFAULT_PRICE_BAND,
    log: logging.Logger = logger,
) -> OutcomeLeg:
    """
    Build one OutcomeLeg.

    BUY_ALL_YES: price, depth and levels all come from the YES ask side.
    BUY_ALL_NO_CONVERT: price is still the YES best ask (the edge math runs on
    YES prices); depth and levels come from the NO ask side, which is what the
    basket actually lifts.
    """
    now = time.time() if now is None else now

    if not yes_fetch.ok:
        log.warning("Leg %s: YES book unavailable (%s)", ref.label[:40], yes_fetch.error)
        return failed_leg(ref, opp_type, yes_fetch.error)

    yes_book = yes_fetch.book
    spread = yes_book.spread if yes_book.spread is not None else 1.0
    yes_stale = is_stale(yes_book, now, freshness_window_sec)
    worst = LEAST_FAVORABLE_PRICE[opp_type]

    if opp_type == OpportunityType.BUY_ALL_YES:
        if not yes_book.best_ask:
            log.debug("Leg %s: no asks on YES book", ref.label[:40])
            return OutcomeLeg(
                token_id=ref.yes_token_id, outcome=ref.label, price=worst,
                depth=0.0, spread=spread, stale=yes_stale,
            )
        levels = band_levels(yes_book, band)
        return OutcomeLeg(
            token_id=ref.yes_token_id,
            outcome=ref.label,
            price=yes_book.best_ask.price,
            depth=band_depth_usd(levels),
            spread=spread,
            stale=yes_stale,
            levels=levels,
        )

    if no_fetch is None or not no_fetch.ok:
        reason = no_fetch.error if no_fetch is not None else "NO book not fetched"
        log.warning("Leg %s: NO book unavailable (%s)", ref.label[:40], reason)
        return failed_leg(ref, opp_type, reason)

    no_book = no_fetch.book
    levels = band_levels(no_book, band)
    price = yes_book.best_ask.price if yes_book.best_ask else worst
    return OutcomeLeg(
        token_id=ref.no_token_id,
        outcome=ref.label,
        price=price,
        depth=band_depth_usd(levels),
        spread=spread,
        stale=yes_stale or is_stale(no_book, now, freshness_window_sec),
        levels=levels,
    )


def normalize_group(
    outcomes: tuple[OutcomeRef, ...] | list[OutcomeRef],
    fetches: dict[str, BookFetch],
    opp_type: OpportunityType,
    now: float | None = None,
    freshness_window_sec: float = DEFAULT_FRESHNESS_WINDOW_SEC,
    band: float = DEFAULT_PRICE_BAND,
    log: logging.Logger = logger,
) -> list[OutcomeLeg]:
    """
    Normalize every outcome of a group. `fetches` is keyed by token id and
    must hold the YES book of each outcome (and the NO book for the NO shape).
    Outcomes repeating an already-seen YES token id are dropped.
    """
    now = time.time() if now is None else now
    seen: set[str] = set()
    legs: list[OutcomeLeg] = []
    for ref in outcomes:
        if ref.yes_token_id in seen:
            log.debug("Duplicate outcome token %s dropped", ref.yes_token_id)
            continue
        seen.add(ref.yes_token_id)

        yes_fetch = fetches.get(ref.yes_token_id) or BookFetch(ref.yes_token_id, error="not fetched")
        no_fetch = None
        if opp_type == OpportunityType.BUY_ALL_NO_CONVERT:
            no_fetch = fetches.get(ref.no_token_id) or BookFetch(ref.no_token_id, error="not fetched")
        legs.append(normalize_leg(
            ref, yes_fetch, opp_type, no_fetch=no_fetch, now=now,
            freshness_window_sec=freshness_window_sec, band=band, log=log,
        ))
    return legs
