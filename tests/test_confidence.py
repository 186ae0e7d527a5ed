"""
Unit tests for scanner/confidence.py -- data-quality confidence scoring.
"""

import pytest

from scanner.confidence import leg_count_penalty, score_confidence
from scanner.models import OutcomeLeg


def _leg(name="A", depth=500.0, stale=False):
    return OutcomeLeg(token_id=name, outcome=name, price=0.3, depth=depth, spread=0.01, stale=stale)


class TestLegCountPenalty:
    def test_pair_free(self):
        assert leg_count_penalty(2) == 0.0

    def test_grows_then_caps(self):
        assert leg_count_penalty(4) == pytest.approx(0.04)
        assert leg_count_penalty(12) == pytest.approx(0.20)
        assert leg_count_penalty(40) == pytest.approx(0.20)


class TestScoreConfidence:
    def test_clean_pair(self):
        c = score_confidence([_leg("A"), _leg("B")], 0.02, 100.0)
        assert c.overall == 1.0
        assert c.depth_complete and c.all_legs_live and c.fee_rate_known
        assert c.factors == ("All data quality checks passed",)

    def test_fee_unknown(self):
        c = score_confidence([_leg("A"), _leg("B")], None, 100.0)
        assert c.overall == pytest.approx(0.70)
        assert not c.fee_rate_known
        assert any("fee rate unknown" in f for f in c.factors)

    def test_stale_leg_named(self):
        c = score_confidence([_leg("SOL", stale=True), _leg("ETH")], 0.02, 100.0)
        assert c.overall == pytest.approx(0.80)
        assert not c.all_legs_live
        assert "SOL leg stale" in c.factors

    def test_thin_leg(self):
        c = score_confidence([_leg("A", depth=50.0), _leg("B")], 0.02, 100.0)
        assert c.overall == pytest.approx(0.75)
        assert not c.depth_complete

    def test_everything_wrong_clamped(self):
        legs = [_leg(str(i), depth=0.0, stale=True) for i in range(20)]
        c = score_confidence(legs, None, 100.0)
        # 1 - 0.25 - 0.20 - 0.30 - 0.20
        assert c.overall == pytest.approx(0.05)
        assert 0.0 <= c.overall <= 1.0

    def test_pure(self):
        legs = [_leg("A", stale=True), _leg("B", depth=10.0), _leg("C")]
        assert score_confidence(legs, None, 100.0) == score_confidence(legs, None, 100.0)
