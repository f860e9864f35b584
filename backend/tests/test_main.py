from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from app.domain import AlertCandidate, AlertKind
from app.errors import PaymentVerificationError, UpstreamUnavailable
from app.main import (
    _alert_service,
    _invocation_gate,
    _payment_verifier,
    _polymarket_client_factory,
    _session_factory,
    _settings,
    app,
)
from app.models import MarketAlert, Profile
from app.repositories import AlertRepository
from app.services.alert_service import AlertService
from app.services.invocation_gate import InvocationGate
from app.services.payment_verifier import TransactionVerification

SERVICE_AUTH = {"Authorization": "Bearer service-secret"}
USER_AUTH = {"Authorization": "Bearer user-token"}


class StubClient:
    def __init__(self, events):
        self._events = events

    def fetch_events(self):
        if isinstance(self._events, Exception):
            raise self._events
        return self._events

    def close(self) -> None:
        pass


@pytest.fixture
def client():
    """Test client that cleans up dependency overrides after each test."""
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def wired(test_settings, session_factory):
    """Point the app at test settings, a private database and a stubbed auth provider."""

    def user_lookup(request: httpx.Request) -> httpx.Response:
        if request.headers.get("authorization") == "Bearer user-token":
            return httpx.Response(200, json={"id": "user-1"})
        return httpx.Response(401, json={"msg": "invalid JWT"})

    gate = InvocationGate(
        test_settings,
        http_client_factory=lambda: httpx.Client(transport=httpx.MockTransport(user_lookup)),
    )
    app.dependency_overrides[_settings] = lambda: test_settings
    app.dependency_overrides[_invocation_gate] = lambda: gate
    app.dependency_overrides[_session_factory] = lambda: session_factory
    return gate


def _use_feed(events) -> MagicMock:
    factory = MagicMock(side_effect=lambda: StubClient(events))
    app.dependency_overrides[_polymarket_client_factory] = lambda: factory
    return factory


def test_healthcheck(client):
    """Verify the healthcheck endpoint returns a successful response."""
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_preflight_returns_empty_body_with_cors_headers(client):
    response = client.options("/sync-polymarket")

    assert response.status_code == 200
    assert response.content == b""
    assert response.headers["access-control-allow-origin"] == "*"
    assert "authorization" in response.headers["access-control-allow-headers"]


def test_sync_rejects_unauthenticated_caller_before_fetching(client, wired, sample_events_payload):
    factory = _use_feed(sample_events_payload)

    response = client.post("/sync-polymarket")

    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}
    assert response.headers["access-control-allow-origin"] == "*"
    factory.assert_not_called()


def test_sync_rejects_unknown_token(client, wired, sample_events_payload):
    factory = _use_feed(sample_events_payload)

    response = client.post("/sync-polymarket", headers={"Authorization": "Bearer forged"})

    assert response.status_code == 401
    factory.assert_not_called()


def test_sync_reports_counts_in_camel_case(client, wired, sample_events_payload, session_maker):
    _use_feed(sample_events_payload)

    response = client.post("/sync-polymarket", headers=SERVICE_AUTH)

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "eventsProcessed": 2,
        "marketsProcessed": 3,
        "alertsGenerated": 4,
        "alertsInserted": 4,
    }
    with session_maker() as session:
        assert len(session.execute(select(MarketAlert)).scalars().all()) == 4


def test_sync_repeated_by_end_user_inserts_nothing_new(client, wired, sample_events_payload):
    _use_feed(sample_events_payload)

    first = client.post("/sync-polymarket", headers=SERVICE_AUTH)
    second = client.post("/sync-polymarket", headers=USER_AUTH)

    assert first.json()["alertsInserted"] == 4
    assert second.status_code == 200
    assert second.json()["alertsGenerated"] == 4
    assert second.json()["alertsInserted"] == 0


def test_sync_upstream_failure_is_a_500(client, wired, session_maker):
    _use_feed(UpstreamUnavailable("Polymarket API error: 503"))

    response = client.post("/sync-polymarket", headers=SERVICE_AUTH)

    assert response.status_code == 500
    assert response.json() == {"error": "Polymarket API error: 503"}
    with session_maker() as session:
        assert session.execute(select(MarketAlert)).scalars().all() == []


def _seed_alerts(session, fixed_now) -> None:
    AlertRepository(session).insert_alerts(
        [
            AlertCandidate(AlertKind.NEW_MARKET, "m-1", "Q1", fixed_now - timedelta(minutes=30)),
            AlertCandidate(AlertKind.WHALE_BET, "m-2", "Q2", fixed_now, {"amount": 2e5, "outcome": "YES"}),
            AlertCandidate(AlertKind.NEW_MARKET, "m-2", "Q2", fixed_now - timedelta(minutes=10)),
        ]
    )
    session.commit()


def test_list_alerts_newest_first(client, wired, db_session, fixed_now):
    _seed_alerts(db_session, fixed_now)
    app.dependency_overrides[_alert_service] = lambda: AlertService(db_session)

    response = client.get("/alerts", headers=USER_AUTH)

    assert response.status_code == 200
    payload = response.json()
    assert payload["total"] == 3
    assert [item["market_id"] for item in payload["items"]] == ["m-2", "m-2", "m-1"]
    assert payload["items"][0]["alert_type"] == "whale_bet"
    assert payload["items"][0]["details"] == {"amount": 200000.0, "outcome": "YES"}


def test_list_alerts_filters_and_paginates(client, wired, db_session, fixed_now):
    _seed_alerts(db_session, fixed_now)
    app.dependency_overrides[_alert_service] = lambda: AlertService(db_session)

    response = client.get(
        "/alerts", params={"alert_type": "new_market", "limit": 1, "offset": 1}, headers=USER_AUTH
    )

    payload = response.json()
    assert payload["total"] == 2
    assert [item["market_id"] for item in payload["items"]] == ["m-1"]


def test_list_alerts_rejects_unknown_type(client, wired):
    app.dependency_overrides[_alert_service] = lambda: MagicMock()

    response = client.get("/alerts", params={"alert_type": "rumour"}, headers=USER_AUTH)

    assert response.status_code == 422


def test_list_alerts_requires_a_caller(client, wired):
    service = MagicMock()
    app.dependency_overrides[_alert_service] = lambda: service

    response = client.get("/alerts")

    assert response.status_code == 401
    service.list_alerts.assert_not_called()


def test_alert_stats_counts_every_kind(client, wired, db_session, fixed_now):
    _seed_alerts(db_session, fixed_now)
    app.dependency_overrides[_alert_service] = lambda: AlertService(db_session)

    response = client.get("/alerts/stats", headers=SERVICE_AUTH)

    payload = response.json()
    assert payload["total"] == 3
    assert payload["by_type"] == {
        "new_market": 2,
        "price_imbalance": 0,
        "whale_bet": 1,
        "new_wallet": 0,
    }


def test_telegram_webhook_stores_parsed_messages(client, wired, session_maker):
    response = client.post(
        "/webhooks/telegram",
        json={"messages": [{"text": "Whale alert on rates\nbig size"}, {"text": "  "}]},
        headers=SERVICE_AUTH,
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["count"] == 1
    assert payload["items"][0]["alert_type"] == "whale_bet"
    assert payload["items"][0]["market_question"] == "Whale alert on rates"
    with session_maker() as session:
        stored = session.execute(select(MarketAlert)).scalars().one()
    assert stored.market_id.startswith("tg_")
    assert stored.details["source"] == "telegram"


def test_telegram_webhook_without_text_stores_nothing(client, wired):
    response = client.post("/webhooks/telegram", json={"update_id": 7}, headers=SERVICE_AUTH)

    assert response.status_code == 200
    assert response.json() == {"success": True, "count": 0, "items": []}


def test_telegram_webhook_is_internal_only(client, wired):
    response = client.post("/webhooks/telegram", json={"text": "hello"}, headers=USER_AUTH)

    assert response.status_code == 401


def _use_verifier(verification=None, error=None) -> MagicMock:
    verifier = MagicMock()
    if error is not None:
        verifier.verify_transaction.side_effect = error
    else:
        verifier.verify_transaction.return_value = verification
    app.dependency_overrides[_payment_verifier] = lambda: verifier
    return verifier


def test_pesapal_callback_rejects_missing_tracking_id(client, wired):
    verifier = _use_verifier()

    response = client.post("/payments/pesapal/callback", json={"OrderNotificationType": "COMPLETED"})

    assert response.status_code == 400
    assert response.json() == {"status": "REJECTED", "reason": "Invalid request"}
    verifier.verify_transaction.assert_not_called()


def test_pesapal_callback_acknowledges_other_notifications(client, wired):
    verifier = _use_verifier()

    response = client.post(
        "/payments/pesapal/callback",
        json={"OrderTrackingId": "t-1", "OrderNotificationType": "IPNCHANGE"},
    )

    assert response.status_code == 200
    assert response.json() == {"status": "ACKNOWLEDGED"}
    verifier.verify_transaction.assert_not_called()


def test_pesapal_callback_upgrades_only_verified_payments(client, wired, session_maker):
    with session_maker() as session:
        session.add(Profile(id="p-1", email="a@example.test", subscription_id="t-1"))
        session.commit()
    _use_verifier(TransactionVerification("t-1", True, "Completed"))

    response = client.post(
        "/payments/pesapal/callback",
        json={"OrderTrackingId": "t-1", "OrderNotificationType": "COMPLETED"},
    )

    assert response.status_code == 200
    assert response.json() == {"status": "OK"}
    with session_maker() as session:
        assert session.get(Profile, "p-1").is_premium is True


def test_pesapal_callback_rejects_unverified_payment(client, wired, session_maker):
    with session_maker() as session:
        session.add(Profile(id="p-1", subscription_id="t-2"))
        session.commit()
    _use_verifier(TransactionVerification("t-2", False, "Failed"))

    response = client.post(
        "/payments/pesapal/callback",
        json={"OrderTrackingId": "t-2", "OrderNotificationType": "COMPLETED"},
    )

    assert response.status_code == 400
    assert response.json() == {"status": "REJECTED", "reason": "Transaction not verified"}
    with session_maker() as session:
        assert session.get(Profile, "p-1").is_premium is False


def test_pesapal_callback_without_matching_profile(client, wired):
    _use_verifier(TransactionVerification("t-3", True, "Completed"))

    response = client.post(
        "/payments/pesapal/callback",
        json={"OrderTrackingId": "t-3", "OrderNotificationType": "COMPLETED"},
    )

    assert response.status_code == 200
    assert response.json() == {"status": "ACKNOWLEDGED", "note": "No matching profile"}


def test_pesapal_callback_verification_error(client, wired):
    _use_verifier(error=PaymentVerificationError("Failed to verify transaction with PesaPal"))

    response = client.post(
        "/payments/pesapal/callback",
        json={"OrderTrackingId": "t-4", "OrderNotificationType": "COMPLETED"},
    )

    assert response.status_code == 500
    payload = response.json()
    assert payload["status"] == "ERROR"
    assert len(payload["errorId"]) == 8


def test_telegram_webhook_ignores_non_string_text(client, wired, session_maker):
    response = client.post(
        "/webhooks/telegram", json={"message": {"text": 123}}, headers=SERVICE_AUTH
    )

    assert response.status_code == 200
    assert response.json() == {"success": True, "count": 0, "items": []}
    with session_maker() as session:
        assert session.execute(select(MarketAlert)).scalars().all() == []


def test_unexpected_failure_returns_json_error_with_cors(wired):
    factory = MagicMock(side_effect=RuntimeError("bad events path"))
    app.dependency_overrides[_polymarket_client_factory] = lambda: factory
    client = TestClient(app, raise_server_exceptions=False)
    try:
        response = client.post("/sync-polymarket", headers=SERVICE_AUTH)
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 500
    assert response.json() == {"error": "bad events path"}
    assert response.headers["access-control-allow-origin"] == "*"
