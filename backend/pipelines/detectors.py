"""Detection rules that turn normalized markets into alert candidates."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from app.core.config import Settings
from app.domain import AlertCandidate, AlertKind, NormalizedMarket

DEFAULT_IMBALANCE_THRESHOLD = 0.01
DEFAULT_WHALE_VOLUME_THRESHOLD = 100_000.0


@dataclass(slots=True, frozen=True)
class DetectionThresholds:
    imbalance_deviation: float = DEFAULT_IMBALANCE_THRESHOLD
    whale_volume: float = DEFAULT_WHALE_VOLUME_THRESHOLD

    @classmethod
    def from_settings(cls, settings: Settings) -> "DetectionThresholds":
        return cls(
            imbalance_deviation=settings.alert_imbalance_threshold,
            whale_volume=settings.alert_whale_volume_threshold,
        )


# Sub-picocent float noise (0.5 + 0.49 != 0.99) must not push a price pair over
# the threshold.
_DEVIATION_PRECISION = 12


def price_deviation(yes_price: float, no_price: float) -> float:
    return round(abs(1 - (yes_price + no_price)), _DEVIATION_PRECISION)


class SignalDetector:
    """Evaluate every rule independently against each market.

    A market may yield zero, one, or all of ``new_market``,
    ``price_imbalance`` and ``whale_bet``. Rules never look at other markets
    or at the store. `detect_all` drops repeats of an alert key within one
    batch; suppression against stored alerts is the dedup filter's job.
    """

    def __init__(self, thresholds: DetectionThresholds | None = None) -> None:
        self.thresholds = thresholds or DetectionThresholds()

    def detect(self, market: NormalizedMarket, detected_at: datetime) -> list[AlertCandidate]:
        candidates = [self._new_market(market, detected_at)]

        imbalance = self._price_imbalance(market, detected_at)
        if imbalance is not None:
            candidates.append(imbalance)

        whale = self._whale_bet(market, detected_at)
        if whale is not None:
            candidates.append(whale)
        return candidates

    def detect_all(
        self, markets: Iterable[NormalizedMarket], detected_at: datetime
    ) -> list[AlertCandidate]:
        """Run every rule over ``markets``, keeping the first candidate per alert key."""

        candidates: list[AlertCandidate] = []
        seen: set[tuple[str, str]] = set()
        for market in markets:
            for candidate in self.detect(market, detected_at):
                if candidate.dedup_key in seen:
                    continue
                seen.add(candidate.dedup_key)
                candidates.append(candidate)
        return candidates

    # ------------------------------------------------------------------
    # Rules

    @staticmethod
    def _candidate(
        kind: AlertKind,
        market: NormalizedMarket,
        detected_at: datetime,
        details: dict[str, Any],
    ) -> AlertCandidate:
        return AlertCandidate(
            kind=kind,
            market_id=market.market_id,
            market_question=market.question,
            detected_at=detected_at,
            details={"eventTitle": market.event_title or "Unknown", **details},
        )

    def _new_market(self, market: NormalizedMarket, detected_at: datetime) -> AlertCandidate:
        return self._candidate(
            AlertKind.NEW_MARKET,
            market,
            detected_at,
            {
                "yesPrice": market.yes_price,
                "noPrice": market.no_price,
                "volume": market.volume,
                "liquidity": market.liquidity,
            },
        )

    def _price_imbalance(
        self, market: NormalizedMarket, detected_at: datetime
    ) -> AlertCandidate | None:
        # Degraded 0/0 prices would read as a 100% deviation.
        if not market.has_price_data:
            return None
        deviation = price_deviation(market.yes_price, market.no_price)
        if deviation <= self.thresholds.imbalance_deviation:
            return None
        return self._candidate(
            AlertKind.PRICE_IMBALANCE,
            market,
            detected_at,
            {
                "yesPrice": market.yes_price,
                "noPrice": market.no_price,
                "deviation": deviation * 100,
            },
        )

    def _whale_bet(self, market: NormalizedMarket, detected_at: datetime) -> AlertCandidate | None:
        if market.volume <= self.thresholds.whale_volume:
            return None
        return self._candidate(
            AlertKind.WHALE_BET,
            market,
            detected_at,
            {
                "amount": market.volume,
                "outcome": "YES" if market.yes_price > market.no_price else "NO",
            },
        )
