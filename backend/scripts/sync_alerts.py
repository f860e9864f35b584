import argparse
import json
from datetime import timedelta

from loguru import logger

from app.core.config import get_settings
from app.core.logging_config import configure_logging
from app.errors import AlertSyncError
from ingestion.client import ALLOWED_FILTER_KEYS, PolymarketClient
from pipelines.sync_run import run_sync, window_minutes


def _parse_filters(raw_filters: list[str] | None) -> dict[str, object]:
    filters: dict[str, object] = {}
    for raw_filter in raw_filters or []:
        if not raw_filter or "=" not in raw_filter:
            logger.warning("Ignoring invalid filter argument: {}", raw_filter)
            continue
        key, value = raw_filter.split("=", 1)
        key = key.strip()
        raw_value = value.strip()
        if not key:
            logger.warning("Ignoring filter with empty key: {}", raw_filter)
            continue
        parsed_value: object
        try:
            parsed_value = json.loads(raw_value)
        except json.JSONDecodeError:
            parsed_value = raw_value
        if key not in ALLOWED_FILTER_KEYS:
            logger.warning(
                "Ignoring unsupported filter '{}'. Allowed keys: {}",
                key,
                ", ".join(sorted(ALLOWED_FILTER_KEYS)),
            )
            continue
        filters[key] = parsed_value
    return filters


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Fetch Polymarket events and store new alerts")
    parser.add_argument("--page-size", type=int, default=None, help="Override the events page size")
    parser.add_argument(
        "--window-minutes",
        type=window_minutes,
        default=None,
        help="Override the trailing dedup window in minutes",
    )
    parser.add_argument(
        "--filter",
        action="append",
        default=None,
        metavar="KEY=VALUE",
        help="Additional Polymarket query parameter (repeatable, e.g. --filter closed=false)",
    )
    parser.add_argument("--dry-run", action="store_true", help="Do not write alerts")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    settings = get_settings()
    configure_logging(settings)

    client_filters = dict(settings.ingestion_filters)
    client_filters.update(_parse_filters(args.filter))
    dedup_minutes = args.window_minutes or settings.alert_dedup_window_minutes

    try:
        report = run_sync(
            settings,
            dry_run=args.dry_run,
            window=timedelta(minutes=dedup_minutes),
            client_factory=lambda: PolymarketClient(
                page_size=args.page_size, filters=client_filters
            ),
        )
    except AlertSyncError:
        logger.exception("Alert sync failed")
        raise SystemExit(1)

    print(json.dumps(report.to_dict(), indent=2, sort_keys=True))


if __name__ == "__main__":
    main()
