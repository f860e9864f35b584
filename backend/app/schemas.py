from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AlertRead(BaseModel):
    id: str
    alert_type: str
    market_id: str
    market_question: str
    details: dict[str, Any] = Field(default_factory=dict)
    detected_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("details", mode="before")
    @classmethod
    def _coerce_details(cls, value: Any) -> dict[str, Any]:
        if value is None:
            return {}
        return value

    @field_validator("detected_at", mode="after")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # SQLite hands back naive timestamps; every stored value is UTC.
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class AlertList(BaseModel):
    total: int
    items: list[AlertRead]


class AlertStats(BaseModel):
    generated_at: datetime
    total: int
    by_type: dict[str, int]


class SyncResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    events_processed: int = Field(alias="eventsProcessed")
    markets_processed: int = Field(alias="marketsProcessed")
    alerts_generated: int = Field(alias="alertsGenerated")
    alerts_inserted: int = Field(alias="alertsInserted")


class ErrorResponse(BaseModel):
    error: str


class PesapalNotification(BaseModel):
    model_config = ConfigDict(extra="allow")

    order_tracking_id: Any = Field(default=None, alias="OrderTrackingId")
    order_merchant_reference: str | None = Field(default=None, alias="OrderMerchantReference")
    order_notification_type: str | None = Field(default=None, alias="OrderNotificationType")


class TelegramIngestResponse(BaseModel):
    success: bool = True
    count: int
    items: list[AlertRead] = Field(default_factory=list)
