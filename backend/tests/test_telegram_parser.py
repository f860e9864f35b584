from __future__ import annotations

import pytest

from app.domain import AlertKind
from ingestion.telegram import (
    MAX_QUESTION_LENGTH,
    classify_message,
    extract_messages,
    parse_alert_message,
)


@pytest.mark.parametrize(
    "text, kind",
    [
        ("WHALE spotted on the election market", AlertKind.WHALE_BET),
        ("Someone placed a large bet on rates", AlertKind.WHALE_BET),
        ("Huge volume on BTC > 100k", AlertKind.WHALE_BET),
        ("Arbitrage open on the Fed market", AlertKind.PRICE_IMBALANCE),
        ("Odds look off here", AlertKind.PRICE_IMBALANCE),
        ("New market: Will it snow in Nairobi?", AlertKind.NEW_MARKET),
    ],
)
def test_classify_message_by_keyword(text, kind):
    assert classify_message(text) is kind


def test_parse_alert_message_uses_first_line_as_question(fixed_now):
    text = "\n  Will the Fed cut in December?  \nodds moving fast\n"

    candidate = parse_alert_message(text, fixed_now)

    assert candidate is not None
    assert candidate.kind is AlertKind.PRICE_IMBALANCE
    assert candidate.market_question == "Will the Fed cut in December?"
    assert candidate.market_id.startswith(f"tg_{int(fixed_now.timestamp() * 1000)}_")
    assert candidate.detected_at == fixed_now
    assert candidate.details["source"] == "telegram"
    assert candidate.details["full_message"] == text
    assert candidate.details["parsed_at"] == fixed_now.isoformat()


def test_parse_alert_message_caps_question_length(fixed_now):
    candidate = parse_alert_message("x" * 900, fixed_now)

    assert len(candidate.market_question) == MAX_QUESTION_LENGTH


@pytest.mark.parametrize("text", [None, "", "   \n  "])
def test_parse_alert_message_skips_blank_text(fixed_now, text):
    assert parse_alert_message(text, fixed_now) is None


def test_parsed_messages_get_distinct_ids(fixed_now):
    first = parse_alert_message("one", fixed_now)
    second = parse_alert_message("one", fixed_now)

    assert first.market_id != second.market_id


@pytest.mark.parametrize(
    "payload, expected",
    [
        ({"message": {"text": "a"}}, [{"text": "a"}]),
        ({"channel_post": {"text": "b"}}, [{"text": "b"}]),
        ({"messages": [{"text": "c"}, "junk", {"text": "d"}]}, [{"text": "c"}, {"text": "d"}]),
        ({"text": "e"}, [{"text": "e"}]),
        ({"update_id": 1}, []),
    ],
)
def test_extract_messages_accepts_known_shapes(payload, expected):
    assert extract_messages(payload) == expected


@pytest.mark.parametrize("text", [123, 4.5, ["list"], {"nested": "dict"}, True])
def test_parse_alert_message_ignores_non_string_text(fixed_now, text):
    assert parse_alert_message(text, fixed_now) is None
