"""
Orderbook depth inside a price-impact band. Looks past the best ask up to
best + band and measures what a basket leg could actually lift there, in
quote-currency terms.
"""

from __future__ import annotations

from scanner.models import OrderBook, PriceLevel

DEFAULT_PRICE_BAND = 0.05


def band_levels(book: OrderBook, band: float = DEFAULT_PRICE_BAND) -> tuple[PriceLevel, ...]:
    """
    Ask levels priced within [best_ask, best_ask + band].
    Asks are sorted ascending, so this is a prefix of the ask side.
    """
    if not book.asks:
        return ()
    ceiling = book.asks[0].price + band
    out: list[PriceLevel] = []
    for level in book.asks:
        # tolerance for float noise on tick-aligned prices
        if level.price > ceiling + 1e-12:
            break
        out.append(level)
    return tuple(out)


def band_depth_usd(levels: tuple[PriceLevel, ...]) -> float:
    """Quote-currency value available across the given levels."""
    return sum(level.price * level.size for level in levels)


def walk_notional(levels: tuple[PriceLevel, ...], notional: float) -> float:
    """
    Spend `notional` quote currency walking the levels from best.
    Returns the number of shares received. Raises ValueError if the levels
    cannot absorb the full notional.
    """
    remaining = notional
    shares = 0.0

    for level in levels:
        if remaining <= 0:
            break
        level_value = level.price * level.size
        take = min(remaining, level_value)
        if level.price > 0:
            shares += take / level.price
        remaining -= take

    if remaining > 1e-9:
        raise ValueError(
            f"Insufficient band depth: need ${notional:.2f}, "
            f"have ${notional - remaining:.2f}"
        )
    return shares
