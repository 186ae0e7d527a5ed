"""
Gamma API client for negRisk market discovery. Pure REST, no SDK dependency.

Upstream market records come in several shapes (camelCase and snake_case
keys, token ids as a JSON string, a list or a `tokens` array). All of that is
resolved here; nothing past this module sees a raw market dict.
"""

from __future__ import annotations

import json
import logging

import httpx

from scanner.models import OutcomeGroup, OutcomeRef

logger = logging.getLogger(__name__)

_TIMEOUT = 30.0
PAGE_SIZE = 100
MAX_OFFSET = 2000


def _get(base_url: str, path: str, params: dict | None = None, timeout: float = _TIMEOUT) -> dict | list:
    """Make a GET request to the Gamma API. Raises on non-200."""
    url = f"{base_url}{path}"
    resp = httpx.get(url, params=params, headers={"Accept": "application/json"}, timeout=timeout)
    resp.raise_for_status()
    return resp.json()


def fetch_negrisk_markets(
    gamma_host: str,
    page_size: int = PAGE_SIZE,
    max_offset: int = MAX_OFFSET,
    timeout: float = _TIMEOUT,
) -> list[dict]:
    """
    Fetch all active, open negRisk markets as raw dicts, paging until an empty
    or short page. Paging stops at `max_offset` so a misbehaving API can't
    keep us here forever.
    """
    markets: list[dict] = []
    offset = 0
    while True:
        page = _get(
            gamma_host,
            "/markets",
            {
                "closed": "false",
                "active": "true",
                "neg_risk": "true",
                "limit": page_size,
                "offset": offset,
            },
            timeout=timeout,
        )
        if not isinstance(page, list) or not page:
            break
        markets.extend(page)
        if len(page) < page_size:
            break
        offset += page_size
        if offset > max_offset:
            logger.warning("Gamma paging stopped at offset %d (%d markets)", offset, len(markets))
            break
    logger.debug("Fetched %d negRisk markets", len(markets))
    return markets


def _token_ids(m: dict) -> tuple[str, str] | None:
    """(yes_token_id, no_token_id) from whichever token field is present."""
    raw_ids = m.get("clobTokenIds") or m.get("clob_token_ids")
    if isinstance(raw_ids, str):
        try:
            raw_ids = json.loads(raw_ids)
        except (json.JSONDecodeError, TypeError):
            raw_ids = None
    if isinstance(raw_ids, list) and len(raw_ids) >= 2:
        return str(raw_ids[0]), str(raw_ids[1])

    tokens = m.get("tokens")
    if isinstance(tokens, list) and len(tokens) >= 2:
        by_outcome = {
            str(t.get("outcome", "")).lower(): str(t.get("token_id") or t.get("tokenId") or "")
            for t in tokens
            if isinstance(t, dict)
        }
        yes_id, no_id = by_outcome.get("yes"), by_outcome.get("no")
        if yes_id and no_id:
            return yes_id, no_id
    return None


def _event_id(m: dict) -> str:
    event_id = str(m.get("eventId") or m.get("event_id") or "")
    if not event_id:
        events_list = m.get("events") or []
        if events_list and isinstance(events_list, list) and isinstance(events_list[0], dict):
            event_id = str(events_list[0].get("id", ""))
    return event_id


def _event_title(m: dict) -> str:
    events_list = m.get("events") or []
    if events_list and isinstance(events_list, list) and isinstance(events_list[0], dict):
        return str(events_list[0].get("title") or "")
    return ""


def is_negrisk(m: dict) -> bool:
    return bool(m.get("negRisk", m.get("neg_risk", False)))


def negrisk_market_id(m: dict) -> str:
    return str(m.get("negRiskMarketID") or m.get("neg_risk_market_id") or "")


def parse_outcome(m: dict) -> OutcomeRef | None:
    """Canonical outcome from one raw market. None if it carries no usable token ids."""
    ids = _token_ids(m)
    if ids is None:
        return None
    label = str(m.get("groupItemTitle") or m.get("group_item_title") or m.get("question") or "").strip()
    end_date = str(
        m.get("endDateIso")
        or m.get("end_date_iso")
        or m.get("endDate")
        or m.get("end_date")
        or ""
    )
    return OutcomeRef(
        label=label or ids[0],
        yes_token_id=ids[0],
        no_token_id=ids[1],
        condition_id=str(m.get("conditionId") or m.get("condition_id") or ""),
        end_date=end_date,
    )


def build_groups(raw_markets: list[dict], max_legs: int = 0) -> list[OutcomeGroup]:
    """
    Group outcomes by negRisk market id, one OutcomeGroup per mutually
    exclusive outcome set. Markets that aren't negRisk, lack a group id or
    lack token ids are skipped. Groups above `max_legs` outcomes are skipped
    (0 = no limit). Group order follows first appearance.
    """
    grouped: dict[str, list[dict]] = {}
    for m in raw_markets:
        if not isinstance(m, dict) or not is_negrisk(m):
            continue
        key = negrisk_market_id(m)
        if not key:
            continue
        grouped.setdefault(key, []).append(m)

    groups: list[OutcomeGroup] = []
    for key, mkt_list in grouped.items():
        outcomes = []
        for m in mkt_list:
            ref = parse_outcome(m)
            if ref is None:
                logger.debug("Market %s in group %s has no token ids; skipped", m.get("id"), key)
                continue
            outcomes.append(ref)

        if max_legs and len(outcomes) > max_legs:
            logger.info("Group %s has %d outcomes (> %d); skipped", key, len(outcomes), max_legs)
            continue

        first = mkt_list[0]
        groups.append(OutcomeGroup(
            group_id=key,
            event_id=_event_id(first),
            title=_event_title(first) or str(first.get("question") or key),
            outcomes=tuple(outcomes),
            slug=str(first.get("slug") or ""),
        ))
    return groups


class GammaMarketSource:
    """Market source for the scan cycle: fetch then group."""

    def __init__(self, gamma_host: str, max_legs: int = 0, timeout: float = _TIMEOUT) -> None:
        self._host = gamma_host
        self._max_legs = max_legs
        self._timeout = timeout

    def fetch_groups(self) -> list[OutcomeGroup]:
        raw = fetch_negrisk_markets(self._host, timeout=self._timeout)
        return build_groups(raw, max_legs=self._max_legs)
