"""Typed domain representations used across ingestion, detection, and persistence."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class AlertKind(str, Enum):
    NEW_MARKET = "new_market"
    PRICE_IMBALANCE = "price_imbalance"
    WHALE_BET = "whale_bet"
    NEW_WALLET = "new_wallet"


@dataclass(slots=True)
class NormalizedMarket:
    """One alert-eligible market derived from an upstream event snapshot.

    Prices are parsed independently and are not forced to sum to one; a
    market whose prices could not be parsed carries ``0.0`` for both sides and
    ``has_price_data=False``.
    """

    market_id: str
    question: str
    volume: float = 0.0
    liquidity: float = 0.0
    yes_price: float = 0.0
    no_price: float = 0.0
    created_at: datetime | None = None
    closed: bool = False
    event_title: str | None = None
    has_price_data: bool = False


@dataclass(slots=True)
class AlertCandidate:
    """Alert derived during a run, not yet checked against the store."""

    kind: AlertKind
    market_id: str
    market_question: str
    detected_at: datetime
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def dedup_key(self) -> tuple[str, str]:
        return (self.market_id, self.kind.value)
