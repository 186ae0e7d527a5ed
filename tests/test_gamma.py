"""
Tests for client/gamma.py -- negRisk discovery with mocked HTTP.
"""

import json

import httpx
import pytest
import respx

from client.gamma import (
    GammaMarketSource,
    build_groups,
    fetch_negrisk_markets,
    parse_outcome,
)

GAMMA_HOST = "https://gamma-api.polymarket.com"


def _market(mid, nrm, yes_id, no_id, label=None, **extra):
    m = {
        "id": mid,
        "question": f"Will {label or mid} win?",
        "groupItemTitle": label or mid,
        "conditionId": f"c-{mid}",
        "clobTokenIds": json.dumps([yes_id, no_id]),
        "negRisk": True,
        "negRiskMarketID": nrm,
        "events": [{"id": "e1", "title": "Election winner"}],
        "slug": f"slug-{mid}",
        "endDate": "2030-11-05T00:00:00Z",
    }
    m.update(extra)
    return m


class TestParseOutcome:
    def test_camel_case_string_ids(self):
        ref = parse_outcome(_market("m1", "g1", "y1", "n1", label="Alice"))
        assert ref.label == "Alice"
        assert (ref.yes_token_id, ref.no_token_id) == ("y1", "n1")
        assert ref.condition_id == "c-m1"
        assert ref.end_date == "2030-11-05T00:00:00Z"

    def test_snake_case_list_ids(self):
        ref = parse_outcome({
            "question": "Will Bob win?",
            "clob_token_ids": ["y2", "n2"],
            "condition_id": "c2",
            "end_date_iso": "2030-11-05",
        })
        assert ref.label == "Will Bob win?"
        assert ref.yes_token_id == "y2"
        assert ref.condition_id == "c2"

    def test_tokens_array(self):
        ref = parse_outcome({
            "question": "Q",
            "tokens": [{"outcome": "No", "token_id": "n3"}, {"outcome": "Yes", "token_id": "y3"}],
        })
        assert (ref.yes_token_id, ref.no_token_id) == ("y3", "n3")

    def test_no_token_ids(self):
        assert parse_outcome({"question": "Q", "clobTokenIds": "not json"}) is None
        assert parse_outcome({"question": "Q", "clobTokenIds": ["only-one"]}) is None


class TestBuildGroups:
    def test_groups_by_negrisk_market_id(self):
        raw = [
            _market("m1", "g1", "y1", "n1"),
            _market("m2", "g1", "y2", "n2"),
            _market("m3", "g2", "y3", "n3"),
            _market("m4", "g2", "y4", "n4", negRisk=False),
        ]
        groups = build_groups(raw)
        assert [g.group_id for g in groups] == ["g1", "g2"]
        assert len(groups[0].outcomes) == 2
        assert len(groups[1].outcomes) == 1
        assert groups[0].title == "Election winner"
        assert groups[0].event_id == "e1"

    def test_snake_case_group_keys(self):
        raw = [
            {"neg_risk": True, "neg_risk_market_id": "g9", "question": "A?", "clobTokenIds": ["a", "b"]},
            {"neg_risk": True, "neg_risk_market_id": "g9", "question": "B?", "clobTokenIds": ["c", "d"]},
        ]
        groups = build_groups(raw)
        assert len(groups) == 1
        assert groups[0].title == "A?"

    def test_malformed_market_skipped(self):
        raw = [_market("m1", "g1", "y1", "n1"), _market("m2", "g1", "y2", "n2", clobTokenIds="[")]
        assert len(build_groups(raw)[0].outcomes) == 1

    def test_max_legs(self):
        raw = [_market(f"m{i}", "g1", f"y{i}", f"n{i}") for i in range(5)]
        assert build_groups(raw, max_legs=4) == []
        assert len(build_groups(raw, max_legs=5)) == 1


class TestFetchNegriskMarkets:
    @respx.mock
    def test_pages_until_short_page(self):
        page1 = [_market(f"m{i}", "g1", f"y{i}", f"n{i}") for i in range(2)]
        page2 = [_market("m9", "g1", "y9", "n9")]
        route = respx.get(f"{GAMMA_HOST}/markets").mock(
            side_effect=[httpx.Response(200, json=page1), httpx.Response(200, json=page2)]
        )
        markets = fetch_negrisk_markets(GAMMA_HOST, page_size=2)
        assert len(markets) == 3
        assert route.call_count == 2
        params = route.calls[0].request.url.params
        assert params["neg_risk"] == "true"
        assert params["closed"] == "false"
        assert route.calls[1].request.url.params["offset"] == "2"

    @respx.mock
    def test_empty(self):
        respx.get(f"{GAMMA_HOST}/markets").mock(return_value=httpx.Response(200, json=[]))
        assert fetch_negrisk_markets(GAMMA_HOST) == []

    @respx.mock
    def test_http_error_raises(self):
        respx.get(f"{GAMMA_HOST}/markets").mock(return_value=httpx.Response(503))
        with pytest.raises(httpx.HTTPStatusError):
            fetch_negrisk_markets(GAMMA_HOST)

    @respx.mock
    def test_market_source(self):
        raw = [_market("m1", "g1", "y1", "n1"), _market("m2", "g1", "y2", "n2")]
        respx.get(f"{GAMMA_HOST}/markets").mock(return_value=httpx.Response(200, json=raw))
        groups = GammaMarketSource(GAMMA_HOST).fetch_groups()
        assert len(groups) == 1
        assert groups[0].outcomes[1].yes_token_id == "y2"
