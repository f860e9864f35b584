"""Alert-focused data access helpers."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import desc, func, select
from sqlalchemy.orm import Session

from app.domain import AlertCandidate
from app.models import MarketAlert


class AlertRepository:
    """Encapsulate reads and inserts against the ``market_alerts`` table.

    Rows are append-only: nothing here updates or deletes an existing alert.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Mutations

    def insert_alerts(self, candidates: Sequence[AlertCandidate]) -> list[MarketAlert]:
        records = [
            MarketAlert(
                alert_type=candidate.kind.value,
                market_id=candidate.market_id,
                market_question=candidate.market_question,
                details=dict(candidate.details),
                detected_at=candidate.detected_at,
            )
            for candidate in candidates
        ]
        if not records:
            return []
        self._session.add_all(records)
        self._session.flush()
        return records

    # ------------------------------------------------------------------
    # Queries

    def recent_alert_keys(self, since: datetime) -> set[tuple[str, str]]:
        query = select(MarketAlert.market_id, MarketAlert.alert_type).where(
            MarketAlert.detected_at >= since
        )
        rows = self._session.execute(query).all()
        return {(str(market_id), str(alert_type)) for market_id, alert_type in rows}

    def list_alerts(
        self,
        *,
        alert_type: str | None = None,
        detected_after: datetime | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[MarketAlert], int]:
        filters: list[Any] = []
        if alert_type:
            filters.append(MarketAlert.alert_type == alert_type)
        if detected_after:
            filters.append(MarketAlert.detected_at >= detected_after)

        query = (
            select(MarketAlert)
            .where(*filters)
            .order_by(desc(MarketAlert.detected_at), MarketAlert.id)
            .limit(limit)
            .offset(offset)
        )
        total_query = select(func.count(MarketAlert.id)).where(*filters)

        alerts = self._session.execute(query).scalars().all()
        total = self._session.execute(total_query).scalar_one()
        return list(alerts), int(total)

    def count_by_type(self) -> dict[str, int]:
        rows = self._session.execute(
            select(MarketAlert.alert_type, func.count(MarketAlert.id)).group_by(
                MarketAlert.alert_type
            )
        ).all()
        return {str(alert_type): int(count) for alert_type, count in rows}

