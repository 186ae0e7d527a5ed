"""
Unit tests for scanner/depth.py -- in-band depth and notional walks.
"""

import pytest

from scanner.depth import band_depth_usd, band_levels, walk_notional
from scanner.models import OrderBook, PriceLevel


def _make_book(token_id="tok1", bids=None, asks=None):
    return OrderBook(
        token_id=token_id,
        bids=tuple(bids or []),
        asks=tuple(asks or []),
    )


class TestBandLevels:
    def test_prefix_within_band(self):
        book = _make_book(asks=[PriceLevel(0.40, 100), PriceLevel(0.44, 50), PriceLevel(0.46, 80)])
        levels = band_levels(book, band=0.05)
        assert [lvl.price for lvl in levels] == [0.40, 0.44]

    def test_edge_of_band_included(self):
        # 0.30 + 0.05 in floats is 0.35000000000000003
        book = _make_book(asks=[PriceLevel(0.30, 10), PriceLevel(0.35, 10)])
        assert len(band_levels(book, band=0.05)) == 2

    def test_empty_book(self):
        assert band_levels(_make_book()) == ()


class TestBandDepth:
    def test_quote_value(self):
        levels = (PriceLevel(0.40, 100), PriceLevel(0.44, 50))
        assert band_depth_usd(levels) == pytest.approx(40.0 + 22.0)


class TestWalkNotional:
    def test_single_level(self):
        shares = walk_notional((PriceLevel(0.50, 100),), 25.0)
        assert shares == pytest.approx(50.0)

    def test_multi_level(self):
        levels = (PriceLevel(0.50, 50), PriceLevel(0.52, 100))
        # $25 buys 50 @ 0.50, remaining $15.6 buys 30 @ 0.52
        assert walk_notional(levels, 40.6) == pytest.approx(80.0)

    def test_insufficient_depth(self):
        with pytest.raises(ValueError, match="Insufficient band depth"):
            walk_notional((PriceLevel(0.50, 10),), 10.0)

    def test_zero_notional(self):
        assert walk_notional((PriceLevel(0.50, 10),), 0.0) == 0.0
