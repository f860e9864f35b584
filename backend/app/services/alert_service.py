"""Read-side conveniences for the alert feed consumed by the dashboard."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from app import crud
from app.domain import AlertKind
from app.schemas import AlertList, AlertRead, AlertStats


@dataclass(slots=True)
class AlertQuery:
    alert_type: str | None = None
    detected_after: datetime | None = None
    limit: int = 20
    offset: int = 0

    def to_repository_kwargs(self) -> dict[str, Any]:
        return {
            "alert_type": self.alert_type,
            "detected_after": self.detected_after,
            "limit": self.limit,
            "offset": self.offset,
        }


class AlertService:
    def __init__(self, session: Session) -> None:
        self._session = session

    def list_alerts(self, query: AlertQuery) -> AlertList:
        alerts, total = crud.list_alerts(self._session, **query.to_repository_kwargs())
        return AlertList(total=total, items=[AlertRead.model_validate(alert) for alert in alerts])

    def alert_stats(self) -> AlertStats:
        counts = crud.count_alerts_by_type(self._session)
        by_type = {kind.value: counts.get(kind.value, 0) for kind in AlertKind}
        return AlertStats(
            generated_at=datetime.now(timezone.utc),
            total=sum(counts.values()),
            by_type=by_type,
        )
