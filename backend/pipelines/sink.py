from __future__ import annotations

from collections.abc import Sequence

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from app.domain import AlertCandidate
from app.errors import PersistenceFailed
from app.repositories import AlertRepository


class AlertSink:
    """Write surviving candidates as a single batch inside the caller's transaction."""

    def __init__(self, repository: AlertRepository) -> None:
        self._repository = repository

    def write(self, candidates: Sequence[AlertCandidate]) -> int:
        if not candidates:
            return 0
        try:
            records = self._repository.insert_alerts(candidates)
        except SQLAlchemyError as exc:
            raise PersistenceFailed(f"Failed to insert alerts: {exc}") from exc
        logger.info("Staged {} new alert(s) for commit", len(records))
        return len(records)
