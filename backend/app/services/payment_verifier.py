"""Independent confirmation of PesaPal payment notifications."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx
from loguru import logger

from app.core.config import Settings
from app.errors import PaymentVerificationError

# PesaPal status codes: 0 invalid, 1 completed, 2 failed, 3 reversed.
COMPLETED_STATUS_CODE = 1


@dataclass(slots=True, frozen=True)
class TransactionVerification:
    tracking_id: str
    is_completed: bool
    status: str


class PesapalVerifier:
    """Re-query PesaPal for a transaction instead of trusting the webhook body."""

    def __init__(self, settings: Settings, *, transport: httpx.BaseTransport | None = None) -> None:
        self._settings = settings
        self._client = httpx.Client(
            base_url=str(settings.pesapal_base_url).rstrip("/"),
            timeout=settings.pesapal_timeout_seconds,
            transport=transport,
            headers={"Accept": "application/json", "Content-Type": "application/json"},
        )

    def request_token(self) -> str:
        key = self._settings.pesapal_consumer_key
        secret = self._settings.pesapal_consumer_secret
        if not key or not secret:
            raise PaymentVerificationError("PesaPal credentials not configured")

        try:
            response = self._client.post(
                "/api/Auth/RequestToken",
                json={"consumer_key": key, "consumer_secret": secret},
            )
        except httpx.HTTPError as exc:
            raise PaymentVerificationError("Failed to authenticate with PesaPal") from exc
        if not response.is_success:
            raise PaymentVerificationError("Failed to authenticate with PesaPal")

        token = self._json(response).get("token")
        if not token:
            raise PaymentVerificationError("PesaPal did not return an access token")
        return str(token)

    def verify_transaction(self, tracking_id: str) -> TransactionVerification:
        token = self.request_token()
        try:
            response = self._client.get(
                "/api/Transactions/GetTransactionStatus",
                params={"orderTrackingId": tracking_id},
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as exc:
            raise PaymentVerificationError("Failed to verify transaction with PesaPal") from exc
        if not response.is_success:
            logger.error("PesaPal verification failed with status {}", response.status_code)
            raise PaymentVerificationError("Failed to verify transaction with PesaPal")

        data = self._json(response)
        description = data.get("payment_status_description")
        is_completed = data.get("status_code") == COMPLETED_STATUS_CODE or description == "Completed"
        return TransactionVerification(
            tracking_id=tracking_id,
            is_completed=is_completed,
            status=str(description or data.get("status") or "unknown"),
        )

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise PaymentVerificationError("PesaPal returned a non-JSON body") from exc
        if not isinstance(payload, dict):
            raise PaymentVerificationError("PesaPal returned an unexpected payload")
        return payload

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "PesapalVerifier":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
