from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from app.domain import AlertCandidate
from app.errors import PersistenceFailed
from app.repositories import AlertRepository


class DeduplicationFilter:
    """Drop candidates whose ``(market_id, alert_type)`` was stored inside the window.

    Only durable state is consulted. Two identical candidates from the same
    run are either both kept or both dropped.
    """

    def __init__(self, repository: AlertRepository, window: timedelta) -> None:
        if window <= timedelta(0):
            raise ValueError("dedup window must be positive")
        self._repository = repository
        self.window = window

    def window_start(self, now: datetime) -> datetime:
        return now - self.window

    def filter(self, candidates: Sequence[AlertCandidate], now: datetime) -> list[AlertCandidate]:
        if not candidates:
            return []

        since = self.window_start(now)
        try:
            existing_keys = self._repository.recent_alert_keys(since)
        except SQLAlchemyError as exc:
            raise PersistenceFailed(f"Failed to read recent alerts: {exc}") from exc

        fresh = [candidate for candidate in candidates if candidate.dedup_key not in existing_keys]
        suppressed = len(candidates) - len(fresh)
        if suppressed:
            logger.info(
                "Suppressed {} duplicate alert(s) seen since {}",
                suppressed,
                since.isoformat(),
            )
        return fresh
