from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import httpx
from loguru import logger

from app.core.config import settings
from app.errors import UpstreamUnavailable


ALLOWED_FILTER_KEYS = {
    "order",
    "ascending",
    "id",
    "slug",
    "tag_id",
    "tag_slug",
    "related_tags",
    "active",
    "archived",
    "closed",
    "featured",
    "liquidity_min",
    "liquidity_max",
    "volume_min",
    "volume_max",
    "start_date_min",
    "start_date_max",
    "end_date_min",
    "end_date_max",
}

_WRAPPER_KEYS = ("events", "data", "result", "markets")


class PolymarketClient:
    """Thin wrapper around the Polymarket Gamma events endpoint."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        events_path: str | None = None,
        page_size: int | None = None,
        filters: dict[str, Any] | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url or str(settings.polymarket_base_url)
        self.events_path = events_path or settings.polymarket_events_path
        self.page_size = page_size or settings.ingestion_page_size
        base_filters = settings.ingestion_filters if filters is None else filters
        normalized_filters = dict(base_filters)
        self.filters = {
            key: value for key, value in normalized_filters.items() if key in ALLOWED_FILTER_KEYS
        }
        dropped_filters = sorted(set(normalized_filters) - ALLOWED_FILTER_KEYS)
        if dropped_filters:
            logger.warning(
                "Dropped unsupported Polymarket query filters from configuration: {}",
                ", ".join(dropped_filters),
            )
        self.timeout = timeout or settings.upstream_timeout_seconds
        self.client = httpx.Client(
            base_url=self.base_url, timeout=self.timeout, transport=transport
        )

    def _build_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {"limit": self.page_size}
        for key, value in self.filters.items():
            serialized = self._serialize_filter_value(value)
            if serialized is not None:
                params[key] = serialized
        return params

    @staticmethod
    def _serialize_filter_value(value: Any) -> str | None:
        if value is None:
            return None
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
            parts: list[str] = []
            for item in value:
                serialized = PolymarketClient._serialize_filter_value(item)
                if serialized is not None:
                    parts.append(serialized)
            return ",".join(parts) if parts else None
        return str(value)

    @staticmethod
    def _extract_events(payload: Any) -> list[dict[str, Any]]:
        if isinstance(payload, list):
            raw_events = payload
        elif isinstance(payload, dict):
            raw_events = next(
                (payload[key] for key in _WRAPPER_KEYS if isinstance(payload.get(key), list)),
                [],
            )
            if not raw_events and isinstance(payload.get("event"), dict):
                raw_events = [payload["event"]]
        else:
            raw_events = []
        return [event for event in raw_events if isinstance(event, dict)]

    def fetch_events(self) -> list[dict[str, Any]]:
        """Fetch one page of events, raising ``UpstreamUnavailable`` on any failure."""

        params = self._build_params()
        logger.info("Polymarket GET {} params={}", self.events_path, params)
        try:
            response = self.client.get(self.events_path, params=params)
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(f"Polymarket API request failed: {exc}") from exc

        if not response.is_success:
            raise UpstreamUnavailable(f"Polymarket API error: {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamUnavailable("Polymarket API returned a non-JSON body") from exc

        events = self._extract_events(payload)
        logger.info("Fetched {} events from Polymarket", len(events))
        return events

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "PolymarketClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
