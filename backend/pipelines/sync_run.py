from __future__ import annotations

import argparse
import json
from contextlib import closing
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, ContextManager
from uuid import uuid4

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import Settings, get_settings
from app.core.logging_config import configure_logging
from app.db import init_db, session_scope
from app.errors import AlertSyncError, PersistenceFailed
from app.repositories import AlertRepository
from ingestion.client import PolymarketClient
from ingestion.normalize import normalize_events

from .context import PipelineContext
from .dedup import DeduplicationFilter
from .detectors import DetectionThresholds, SignalDetector
from .sink import AlertSink


@dataclass(slots=True)
class SyncReport:
    run_id: str
    detected_at: datetime
    dry_run: bool = False
    events_fetched: int = 0
    markets_processed: int = 0
    alerts_generated: int = 0
    alerts_suppressed: int = 0
    alerts_inserted: int = 0

    def to_dict(self) -> dict[str, object]:
        return {
            "run_id": self.run_id,
            "detected_at": self.detected_at.isoformat(),
            "dry_run": self.dry_run,
            "events_fetched": self.events_fetched,
            "markets_processed": self.markets_processed,
            "alerts_generated": self.alerts_generated,
            "alerts_suppressed": self.alerts_suppressed,
            "alerts_inserted": self.alerts_inserted,
        }


MIN_WINDOW_MINUTES = 15
MAX_WINDOW_MINUTES = 1440


def window_minutes(raw: str) -> int:
    """argparse type accepting a dedup window between 15 minutes and 24 hours."""

    try:
        minutes = int(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid window {raw!r}: expected minutes") from exc
    if not MIN_WINDOW_MINUTES <= minutes <= MAX_WINDOW_MINUTES:
        raise argparse.ArgumentTypeError(
            f"window must be between {MIN_WINDOW_MINUTES} and {MAX_WINDOW_MINUTES} minutes"
        )
    return minutes


def _parse_args() -> argparse.Namespace:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Sync Polymarket events into market alerts")
    parser.add_argument(
        "--window-minutes",
        type=window_minutes,
        default=settings.alert_dedup_window_minutes,
        help="Trailing dedup window in minutes",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Detect and deduplicate without writing alerts",
    )
    parser.add_argument(
        "--summary-path",
        type=Path,
        default=None,
        help="Write JSON summary to the specified path",
    )
    return parser.parse_args()


def run_sync(
    settings: Settings,
    *,
    now: datetime | None = None,
    dry_run: bool = False,
    window: timedelta | None = None,
    detector: SignalDetector | None = None,
    client_factory: Callable[[], PolymarketClient] | None = None,
    session_factory: Callable[[], ContextManager[Any]] | None = None,
    init_db_fn: Callable[[], None] = init_db,
) -> SyncReport:
    """Fetch, detect, deduplicate and persist alerts in one pass.

    ``now`` is read once and stamped onto every candidate as well as used for
    the dedup window. Nothing is written unless the fetch and detection steps
    succeed; the alert batch commits as a single transaction.
    """

    now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    context = PipelineContext(
        run_id=str(uuid4()),
        now=now,
        dedup_window=window or timedelta(minutes=settings.alert_dedup_window_minutes),
        settings=settings,
        dry_run=dry_run,
    )
    detector = detector or SignalDetector(DetectionThresholds.from_settings(settings))
    client_factory = client_factory or (lambda: PolymarketClient())

    report = SyncReport(run_id=context.run_id, detected_at=now, dry_run=dry_run)

    with closing(client_factory()) as client:
        events = client.fetch_events()

    markets = normalize_events(events)
    candidates = detector.detect_all(markets, context.now)
    report.events_fetched = len(events)
    report.markets_processed = len(markets)
    report.alerts_generated = len(candidates)
    logger.info(
        "Run {}: processed {} markets from {} events, generated {} alerts",
        context.run_id,
        report.markets_processed,
        report.events_fetched,
        report.alerts_generated,
    )

    if session_factory is None:
        init_db_fn()
        session_factory = session_scope

    try:
        with session_factory() as session:
            repository = AlertRepository(session)
            fresh = DeduplicationFilter(repository, context.dedup_window).filter(
                candidates, context.now
            )
            report.alerts_suppressed = len(candidates) - len(fresh)
            if context.dry_run:
                logger.info("Dry-run enabled; skipping insert of {} alerts", len(fresh))
            else:
                report.alerts_inserted = AlertSink(repository).write(fresh)
    except SQLAlchemyError as exc:
        report.alerts_inserted = 0
        raise PersistenceFailed(f"Failed to commit alerts: {exc}") from exc

    logger.info(
        "Run {}: inserted {} new alerts ({} suppressed since {})",
        context.run_id,
        report.alerts_inserted,
        report.alerts_suppressed,
        context.window_start.isoformat(),
    )
    return report


def _write_summary(path: Path, report: SyncReport) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(report.to_dict(), indent=2, sort_keys=True) + "\n",
        encoding="utf-8",
    )


def main() -> None:
    args = _parse_args()
    settings = get_settings()
    configure_logging(settings)

    try:
        report = run_sync(
            settings,
            dry_run=args.dry_run,
            window=timedelta(minutes=args.window_minutes),
        )
    except AlertSyncError:
        logger.exception("Alert sync failed; alerts may be stale")
        raise SystemExit(1)

    if args.summary_path:
        _write_summary(args.summary_path, report)


if __name__ == "__main__":
    main()
