"""
Unit tests for scanner/edge.py -- gross edge from outcome price sums.
"""

import pytest

from scanner.edge import detect_type, gross_edge, sum_prices
from scanner.models import OpportunityType, OutcomeLeg


def _legs(prices):
    return [
        OutcomeLeg(token_id=f"t{i}", outcome=f"O{i}", price=p, depth=100.0, spread=0.01, stale=False)
        for i, p in enumerate(prices)
    ]


class TestSumPrices:
    def test_sum(self):
        assert abs(sum_prices(_legs([0.20, 0.25, 0.30, 0.20])) - 0.95) < 1e-12

    def test_empty(self):
        assert sum_prices([]) == 0.0


class TestDetectType:
    def test_below_one_buys_yes(self):
        assert detect_type(0.95) == OpportunityType.BUY_ALL_YES

    def test_above_one_buys_no(self):
        assert detect_type(1.04) == OpportunityType.BUY_ALL_NO_CONVERT

    def test_exactly_one_no_trigger(self):
        assert detect_type(1.0) is None


class TestGrossEdge:
    def test_yes(self):
        assert abs(gross_edge(OpportunityType.BUY_ALL_YES, 0.95) - 0.05) < 1e-12

    def test_no(self):
        assert abs(gross_edge(OpportunityType.BUY_ALL_NO_CONVERT, 1.04) - 0.04) < 1e-12

    def test_yes_requires_sum_below_one(self):
        with pytest.raises(ValueError):
            gross_edge(OpportunityType.BUY_ALL_YES, 1.0)

    def test_no_requires_sum_above_one(self):
        with pytest.raises(ValueError):
            gross_edge(OpportunityType.BUY_ALL_NO_CONVERT, 0.99)
