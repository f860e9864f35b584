from __future__ import annotations

import json
import math
from datetime import datetime, timezone
from typing import Any

from dateutil import parser as date_parser
from loguru import logger

from app.domain import NormalizedMarket
from app.errors import MalformedRecord

UNKNOWN_QUESTION = "Unknown Market"


def _as_list(value: Any) -> list[Any]:
    """Return value as a list, decoding JSON strings; raise on anything else."""
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError as exc:
            raise MalformedRecord(f"outcome prices are not valid JSON: {value!r}") from exc
        if isinstance(parsed, list):
            return parsed
    raise MalformedRecord(f"outcome prices are not a list: {value!r}")


def _parse_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(parsed) or math.isinf(parsed):
        return None
    return parsed


def _parse_datetime(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        parsed = date_parser.isoparse(str(value))
    except (ValueError, TypeError, OverflowError):
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _first_text(*values: Any) -> str | None:
    for value in values:
        if isinstance(value, str) and value.strip():
            return value
    return None


def _first_positive(*values: Any) -> float:
    for value in values:
        parsed = _parse_float(value)
        if parsed is not None and parsed > 0:
            return parsed
    return 0.0


def _identifier(*values: Any) -> str | None:
    for value in values:
        if value is None or isinstance(value, bool):
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def parse_outcome_prices(raw_prices: Any) -> tuple[float, float]:
    """Return ``(yes_price, no_price)`` from an upstream outcome-price encoding.

    Upstream usually sends a JSON string such as ``'["0.97", "0.01"]'``. Any
    missing, malformed or short encoding yields ``(0.0, 0.0)``; a single
    non-numeric entry becomes ``0.0`` on its own side.
    """

    if raw_prices is None:
        return 0.0, 0.0
    try:
        prices = _as_list(raw_prices)
        if len(prices) < 2:
            raise MalformedRecord(f"expected two outcome prices, got {len(prices)}")
    except MalformedRecord as exc:
        logger.debug("Degrading outcome prices to zero: {}", exc)
        return 0.0, 0.0

    yes_price = _parse_float(prices[0])
    no_price = _parse_float(prices[1])
    return yes_price or 0.0, no_price or 0.0


def _normalize_nested_market(
    raw_market: dict[str, Any], event: dict[str, Any], ordinal: int
) -> NormalizedMarket:
    market_id = _identifier(raw_market.get("id"), event.get("id")) or f"market-{ordinal}"
    raw_prices = raw_market.get("outcomePrices")
    yes_price, no_price = parse_outcome_prices(raw_prices)
    closed = raw_market.get("closed")
    if closed is None:
        closed = event.get("closed")

    return NormalizedMarket(
        market_id=market_id,
        question=_first_text(raw_market.get("question"), event.get("title")) or UNKNOWN_QUESTION,
        volume=_first_positive(raw_market.get("volume"), raw_market.get("volumeNum"), event.get("volume")),
        liquidity=_first_positive(
            raw_market.get("liquidity"), raw_market.get("liquidityNum"), event.get("liquidity")
        ),
        yes_price=yes_price,
        no_price=no_price,
        created_at=_parse_datetime(raw_market.get("createdAt") or event.get("createdAt")),
        closed=bool(closed),
        event_title=_first_text(event.get("title")),
        has_price_data=yes_price > 0 or no_price > 0,
    )


def _normalize_synthetic_market(event: dict[str, Any], ordinal: int) -> NormalizedMarket:
    market_id = _identifier(event.get("id"), event.get("slug")) or f"event-{ordinal}"
    yes_price, no_price = parse_outcome_prices(event.get("outcomePrices"))
    return NormalizedMarket(
        market_id=market_id,
        question=_first_text(event.get("title"), event.get("description")) or UNKNOWN_QUESTION,
        volume=_first_positive(event.get("volume")),
        liquidity=_first_positive(event.get("liquidity")),
        yes_price=yes_price,
        no_price=no_price,
        created_at=_parse_datetime(event.get("createdAt")),
        closed=bool(event.get("closed")),
        event_title=_first_text(event.get("title")),
        has_price_data=yes_price > 0 or no_price > 0,
    )


def normalize_event(raw_event: dict[str, Any], *, ordinal: int = 1) -> list[NormalizedMarket]:
    """Expand an upstream event into its alert-eligible markets.

    ``ordinal`` is the running count of markets seen so far in the run and
    only feeds the fallback identifiers of records that carry no id at all.
    An event without nested markets becomes a single synthetic market.
    """

    nested = raw_event.get("markets")
    raw_markets = [item for item in nested if isinstance(item, dict)] if isinstance(nested, list) else []
    if not raw_markets:
        return [_normalize_synthetic_market(raw_event, ordinal)]

    return [
        _normalize_nested_market(raw_market, raw_event, ordinal + index)
        for index, raw_market in enumerate(raw_markets)
    ]


def normalize_events(raw_events: list[dict[str, Any]]) -> list[NormalizedMarket]:
    markets: list[NormalizedMarket] = []
    for raw_event in raw_events:
        markets.extend(normalize_event(raw_event, ordinal=len(markets) + 1))
    return markets
