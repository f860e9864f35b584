"""Turn free-form Telegram channel posts into alert candidates."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import uuid4

from app.domain import AlertCandidate, AlertKind

MAX_QUESTION_LENGTH = 500

_KEYWORDS: tuple[tuple[AlertKind, tuple[str, ...]], ...] = (
    (AlertKind.WHALE_BET, ("whale", "large bet", "big money", "volume")),
    (AlertKind.PRICE_IMBALANCE, ("imbalance", "arbitrage", "mispricing", "odds")),
)


def classify_message(text: str) -> AlertKind:
    lowered = text.lower()
    for kind, keywords in _KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return kind
    return AlertKind.NEW_MARKET


def parse_alert_message(text: Any, received_at: datetime) -> AlertCandidate | None:
    if not isinstance(text, str) or not text.strip():
        return None

    lines = [line.strip() for line in text.splitlines() if line.strip()]
    question = (lines[0] if lines else text.strip())[:MAX_QUESTION_LENGTH]
    market_id = f"tg_{int(received_at.timestamp() * 1000)}_{uuid4().hex[:9]}"

    return AlertCandidate(
        kind=classify_message(text),
        market_id=market_id,
        market_question=question,
        detected_at=received_at,
        details={
            "full_message": text,
            "source": "telegram",
            "parsed_at": received_at.isoformat(),
        },
    )


def extract_messages(payload: dict[str, Any]) -> list[dict[str, Any]]:
    """Collect message objects from the update shapes the webhook accepts."""

    if isinstance(payload.get("message"), dict):
        return [payload["message"]]
    if isinstance(payload.get("channel_post"), dict):
        return [payload["channel_post"]]
    messages = payload.get("messages")
    if isinstance(messages, list):
        return [message for message in messages if isinstance(message, dict)]
    if isinstance(payload.get("text"), str):
        return [{"text": payload["text"]}]
    return []
