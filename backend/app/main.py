from __future__ import annotations

from collections.abc import Generator
from datetime import datetime, timezone
from typing import Annotated, Any, Callable, ContextManager
from uuid import uuid4

from fastapi import Body, Depends, FastAPI, Header, Query, Request, Response
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from . import crud, schemas
from .core.config import Settings, get_settings, settings
from .core.logging_config import configure_logging
from .db import get_db, init_db, session_scope
from .domain import AlertKind
from .errors import AlertSyncError, PaymentVerificationError, PersistenceFailed
from .services.alert_service import AlertQuery, AlertService
from .services.invocation_gate import InvocationGate
from .services.payment_verifier import PesapalVerifier
from ingestion.client import PolymarketClient
from ingestion.telegram import extract_messages, parse_alert_message
from pipelines.sync_run import run_sync

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
}

_ALERT_TYPE_PATTERN = "^(" + "|".join(kind.value for kind in AlertKind) + ")$"

app = FastAPI(title="Polymarket Alerts API", version="0.1.0", debug=settings.debug)


@app.on_event("startup")
def on_startup() -> None:
    """Initialize logging and database tables when the API boots."""

    configure_logging(settings)
    init_db()


@app.middleware("http")
async def add_cors_headers(request: Request, call_next):
    response = await call_next(request)
    for key, value in CORS_HEADERS.items():
        response.headers.setdefault(key, value)
    return response


@app.exception_handler(AlertSyncError)
async def alert_sync_error_handler(request: Request, exc: AlertSyncError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("{} {} failed: {}", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc) or exc.__class__.__name__},
        headers=CORS_HEADERS,
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("{} {} failed unexpectedly", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": str(exc) or exc.__class__.__name__},
        headers=CORS_HEADERS,
    )


@app.options("/{path:path}", include_in_schema=False)
def preflight(path: str) -> Response:
    """Answer CORS preflight requests with an empty body."""

    return Response(status_code=200, headers=CORS_HEADERS)


@app.get("/healthz", tags=["system"])
def healthcheck() -> dict[str, str]:
    """Basic readiness probe consumed by infrastructure monitors."""

    return {"status": "ok"}


# ----------------------------------------------------------------------
# Dependencies


def _settings() -> Settings:
    return get_settings()


def _invocation_gate(app_settings: Settings = Depends(_settings)) -> InvocationGate:
    return InvocationGate(app_settings)


def _polymarket_client_factory() -> Callable[[], PolymarketClient]:
    return PolymarketClient


def _session_factory() -> Callable[[], ContextManager[Any]]:
    return session_scope


def _alert_service(db=Depends(get_db)) -> AlertService:
    return AlertService(db)


def _payment_verifier(
    app_settings: Settings = Depends(_settings),
) -> Generator[PesapalVerifier, None, None]:
    with PesapalVerifier(app_settings) as verifier:
        yield verifier


def _admitted_caller(
    authorization: Annotated[str | None, Header()] = None,
    gate: InvocationGate = Depends(_invocation_gate),
) -> None:
    gate.authorize(authorization)


def _internal_caller(
    authorization: Annotated[str | None, Header()] = None,
    gate: InvocationGate = Depends(_invocation_gate),
) -> None:
    gate.require_internal(authorization)


# ----------------------------------------------------------------------
# Alert sync trigger


@app.post(
    "/sync-polymarket",
    response_model=schemas.SyncResponse,
    response_model_by_alias=True,
    responses={401: {"model": schemas.ErrorResponse}, 500: {"model": schemas.ErrorResponse}},
    tags=["sync"],
)
def sync_polymarket(
    authorization: Annotated[str | None, Header()] = None,
    gate: InvocationGate = Depends(_invocation_gate),
    app_settings: Settings = Depends(_settings),
    client_factory: Callable[[], PolymarketClient] = Depends(_polymarket_client_factory),
    session_factory: Callable[[], ContextManager[Any]] = Depends(_session_factory),
):
    """Run one fetch → detect → dedup → insert pass for an admitted caller."""

    gate.authorize(authorization)
    report = run_sync(
        app_settings,
        client_factory=client_factory,
        session_factory=session_factory,
    )
    return schemas.SyncResponse(
        events_processed=report.events_fetched,
        markets_processed=report.markets_processed,
        alerts_generated=report.alerts_generated,
        alerts_inserted=report.alerts_inserted,
    )


# ----------------------------------------------------------------------
# Alert feed


def _alert_query(
    *,
    alert_type: Annotated[
        str | None, Query(description="Alert type filter", pattern=_ALERT_TYPE_PATTERN)
    ] = None,
    detected_after: Annotated[
        datetime | None, Query(description="Only alerts detected at or after this timestamp")
    ] = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 20,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> AlertQuery:
    if detected_after is not None and detected_after.tzinfo is not None:
        detected_after = detected_after.astimezone(timezone.utc)
    return AlertQuery(
        alert_type=alert_type,
        detected_after=detected_after,
        limit=limit,
        offset=offset,
    )


@app.get(
    "/alerts",
    response_model=schemas.AlertList,
    dependencies=[Depends(_admitted_caller)],
    tags=["alerts"],
)
def list_alerts(
    *,
    query: AlertQuery = Depends(_alert_query),
    service: AlertService = Depends(_alert_service),
):
    """List stored alerts, newest detection first."""

    return service.list_alerts(query)


@app.get(
    "/alerts/stats",
    response_model=schemas.AlertStats,
    dependencies=[Depends(_admitted_caller)],
    tags=["alerts"],
)
def alert_stats(service: AlertService = Depends(_alert_service)):
    """Return per-type alert counts for dashboard tiles."""

    return service.alert_stats()


# ----------------------------------------------------------------------
# Telegram intake


@app.post(
    "/webhooks/telegram",
    response_model=schemas.TelegramIngestResponse,
    dependencies=[Depends(_internal_caller)],
    tags=["webhooks"],
)
def telegram_webhook(
    payload: Annotated[dict[str, Any], Body()],
    session_factory: Callable[[], ContextManager[Any]] = Depends(_session_factory),
):
    """Store alerts parsed from forwarded Telegram posts."""

    received_at = datetime.now(timezone.utc)
    candidates = [
        candidate
        for candidate in (
            parse_alert_message(message.get("text"), received_at)
            for message in extract_messages(payload)
        )
        if candidate is not None
    ]
    if not candidates:
        logger.info("No valid alerts parsed from Telegram payload")
        return schemas.TelegramIngestResponse(count=0)

    try:
        with session_factory() as session:
            records = crud.insert_alerts(session, candidates)
            items = [schemas.AlertRead.model_validate(record) for record in records]
    except SQLAlchemyError as exc:
        raise PersistenceFailed(f"Failed to store Telegram alerts: {exc}") from exc

    logger.info("Stored {} alert(s) from Telegram", len(candidates))
    return schemas.TelegramIngestResponse(count=len(candidates), items=items)


# ----------------------------------------------------------------------
# Payment verification boundary


@app.post("/payments/pesapal/callback", tags=["payments"])
def pesapal_callback(
    notification: Annotated[schemas.PesapalNotification, Body()],
    verifier: PesapalVerifier = Depends(_payment_verifier),
    session_factory: Callable[[], ContextManager[Any]] = Depends(_session_factory),
) -> JSONResponse:
    """Upgrade an account only after PesaPal itself confirms the payment."""

    callback_id = uuid4().hex[:8]
    tracking_id = notification.order_tracking_id
    if not tracking_id or not isinstance(tracking_id, str):
        logger.info("[Callback {}] Invalid OrderTrackingId", callback_id)
        return JSONResponse(status_code=400, content={"status": "REJECTED", "reason": "Invalid request"})

    if notification.order_notification_type != "COMPLETED":
        logger.info(
            "[Callback {}] Non-completion notification: {}",
            callback_id,
            notification.order_notification_type,
        )
        return JSONResponse(status_code=200, content={"status": "ACKNOWLEDGED"})

    try:
        verification = verifier.verify_transaction(tracking_id)
    except PaymentVerificationError:
        error_id = uuid4().hex[:8]
        logger.exception("[Callback {}] Verification error [{}]", callback_id, error_id)
        return JSONResponse(status_code=500, content={"status": "ERROR", "errorId": error_id})

    if not verification.is_completed:
        logger.info(
            "[Callback {}] Transaction not verified as completed. Status: {}",
            callback_id,
            verification.status,
        )
        return JSONResponse(
            status_code=400, content={"status": "REJECTED", "reason": "Transaction not verified"}
        )

    try:
        with session_factory() as session:
            upgraded = [profile.id for profile in crud.mark_profiles_premium(session, tracking_id)]
    except SQLAlchemyError:
        logger.exception("[Callback {}] Database update error", callback_id)
        return JSONResponse(status_code=500, content={"status": "ERROR", "reason": "Update failed"})

    if not upgraded:
        logger.info("[Callback {}] No profile found for tracking id", callback_id)
        return JSONResponse(
            status_code=200, content={"status": "ACKNOWLEDGED", "note": "No matching profile"}
        )

    logger.info("[Callback {}] Upgraded {} profile(s) to premium", callback_id, len(upgraded))
    return JSONResponse(status_code=200, content={"status": "OK"})
