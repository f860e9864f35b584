from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from sqlalchemy.orm import Session

from app.domain import AlertCandidate
from app.repositories import AlertRepository, ProfileRepository

from .models import MarketAlert, Profile


def insert_alerts(session: Session, candidates: Sequence[AlertCandidate]) -> list[MarketAlert]:
    return AlertRepository(session).insert_alerts(candidates)


def list_alerts(
    session: Session,
    *,
    alert_type: str | None = None,
    detected_after: datetime | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[MarketAlert], int]:
    return AlertRepository(session).list_alerts(
        alert_type=alert_type,
        detected_after=detected_after,
        limit=limit,
        offset=offset,
    )


def count_alerts_by_type(session: Session) -> dict[str, int]:
    return AlertRepository(session).count_by_type()


def mark_profiles_premium(session: Session, subscription_id: str) -> list[Profile]:
    return ProfileRepository(session).mark_premium(subscription_id)
