"""Error taxonomy shared by the sync pipeline, HTTP API and CLI."""

from __future__ import annotations


class AlertSyncError(Exception):
    """Base class for failures surfaced by an alert sync run."""

    status_code = 500


class Unauthorized(AlertSyncError):
    """Raised when the caller of a run holds no acceptable credential."""

    status_code = 401

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class UpstreamUnavailable(AlertSyncError):
    """Raised when the market feed cannot be fetched or decoded."""


class MalformedRecord(AlertSyncError):
    """Raised for an unparseable upstream field; always recovered locally."""


class PersistenceFailed(AlertSyncError):
    """Raised when reading from or writing to the alert store fails."""


class PaymentVerificationError(Exception):
    """Raised when the payment provider cannot confirm a transaction status."""


__all__ = [
    "AlertSyncError",
    "MalformedRecord",
    "PaymentVerificationError",
    "PersistenceFailed",
    "Unauthorized",
    "UpstreamUnavailable",
]
