from typing import List, Optional, Union
from pydantic import BaseModel, HttpUrl, Field
from datetime import datetime

from core.database.models import AlertType, AvailabilityStrategy, CheckStatus, DeliveryStatus


# Request Models
class WatchTaskCreate(BaseModel):
    """Request model for creating a watch task."""

    name: str = Field(..., min_length=1, max_length=255)
    url: HttpUrl
    currency: str = Field(default="CLP", max_length=8)
    price_selector: str = Field(..., min_length=1, description="CSS selector of the price element")
    stock_selector: Optional[str] = None
    availability_strategy: AvailabilityStrategy = AvailabilityStrategy.PRICE_SELECTOR_ONLY
    out_of_stock_keywords: Optional[Union[List[str], str]] = Field(
        default=None, description="Keyword list, JSON-encoded list or a single keyword"
    )
    target_price: Optional[int] = Field(default=None, ge=0)
    alert_on_drop: bool = True
    alert_on_back_in_stock: bool = True
    check_frequency_minutes: int = Field(default=60, ge=1)
    enabled: bool = True


class WatchTaskUpdate(BaseModel):
    """Partial update; only the fields sent are changed."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    url: Optional[HttpUrl] = None
    currency: Optional[str] = Field(default=None, max_length=8)
    price_selector: Optional[str] = Field(default=None, min_length=1)
    stock_selector: Optional[str] = None
    availability_strategy: Optional[AvailabilityStrategy] = None
    out_of_stock_keywords: Optional[Union[List[str], str]] = None
    target_price: Optional[int] = Field(default=None, ge=0)
    alert_on_drop: Optional[bool] = None
    alert_on_back_in_stock: Optional[bool] = None
    check_frequency_minutes: Optional[int] = Field(default=None, ge=1)
    enabled: Optional[bool] = None


class DetectSelectorRequest(BaseModel):
    url: HttpUrl


class AdHocCheckRequest(BaseModel):
    """An unsaved task configuration to try against the live page."""

    url: HttpUrl
    price_selector: str = Field(..., min_length=1)
    stock_selector: Optional[str] = None
    availability_strategy: AvailabilityStrategy = AvailabilityStrategy.PRICE_SELECTOR_ONLY
    out_of_stock_keywords: Optional[Union[List[str], str]] = None


# Response Models
class CheckResultOut(BaseModel):
    """API representation of one check attempt."""

    id: int
    watcher_id: str
    price_value: Optional[int] = None
    price_text: Optional[str] = None
    in_stock: Optional[bool] = None
    status: CheckStatus
    error_message: Optional[str] = None
    raw_excerpt: Optional[str] = None
    response_time_ms: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


class NotificationOut(BaseModel):
    id: int
    watcher_id: str
    type: AlertType
    channel: str
    status: DeliveryStatus
    payload: Optional[dict] = None
    created_at: datetime

    class Config:
        from_attributes = True


class WatchTaskOut(BaseModel):
    """API representation of a watch task."""

    id: str
    name: str
    url: str
    store_domain: str
    currency: str
    price_selector: str
    stock_selector: Optional[str] = None
    availability_strategy: AvailabilityStrategy
    out_of_stock_keywords: Optional[str] = None
    target_price: Optional[int] = None
    alert_on_drop: bool
    alert_on_back_in_stock: bool
    check_frequency_minutes: int
    enabled: bool
    created_at: datetime

    class Config:
        from_attributes = True


class WatchTaskSummary(WatchTaskOut):
    """A task with its most recent check, for dashboards."""

    latest_check: Optional[CheckResultOut] = None


class WatchTaskDetail(WatchTaskOut):
    """A task with its recent history, newest first."""

    checks: List[CheckResultOut]
    notifications: List[NotificationOut]


class CheckOutcomeResponse(BaseModel):
    """Result of an ad-hoc check; nothing is stored."""

    price_value: Optional[int] = None
    price_text: Optional[str] = None
    in_stock: Optional[bool] = None
    status: CheckStatus
    error_message: Optional[str] = None
    raw_excerpt: Optional[str] = None
    response_time_ms: int


class DetectSelectorResponse(BaseModel):
    selector: Optional[str] = None
    price: Optional[float] = None
    strategy: Optional[str] = None


class PresetResponse(BaseModel):
    selector: Optional[str] = None
    name: Optional[str] = None


class RunChecksResponse(BaseModel):
    message: str
    dispatched: int


class ErrorResponse(BaseModel):
    """Error response model."""

    detail: str
