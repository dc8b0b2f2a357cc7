# This file defines the database schema for our application using SQLAlchemy's Object Relational Mapper (ORM)
# It creates the structure for storing watch tasks, the results of each check and the alerts they raised

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship

# Create a base class for all ORM models
Base = declarative_base()


# Largest price an Integer column holds on every supported backend
MAX_PRICE_VALUE = 2**31 - 1
PRICE_TEXT_LENGTH = 512


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class AvailabilityStrategy(str, enum.Enum):
    """How a task decides whether the product is in stock."""

    PRICE_SELECTOR_ONLY = "PRICE_SELECTOR_ONLY"
    OUT_OF_STOCK_TEXT_PRESENT = "OUT_OF_STOCK_TEXT_PRESENT"
    STOCK_TEXT_SELECTOR = "STOCK_TEXT_SELECTOR"


class CheckStatus(str, enum.Enum):
    OK = "OK"
    FAILED = "FAILED"
    BLOCKED = "BLOCKED"


class AlertType(str, enum.Enum):
    PRICE_DROP = "PRICE_DROP"
    TARGET_REACHED = "TARGET_REACHED"
    BACK_IN_STOCK = "BACK_IN_STOCK"


class DeliveryStatus(str, enum.Enum):
    SENT = "SENT"
    FAILED = "FAILED"


class WatchTask(Base):
    """A user's monitoring configuration for one product page.

    The scheduler only ever reads tasks; they change through user edits.
    Deleting a task removes its check history and notifications.
    """
    __tablename__ = "watch_tasks"

    # Primary key using UUID, stored as a string for broader database compatibility
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    name = Column(String(255), nullable=False)
    url = Column(String(2048), nullable=False)

    # Hostname of the URL; the key for per-origin throttling and block cooldowns
    # Always derived from url by the operations layer, never set by hand
    store_domain = Column(String(255), nullable=False, index=True)

    currency = Column(String(8), nullable=False, default="CLP")

    # Extraction rule
    price_selector = Column(String(512), nullable=False)
    stock_selector = Column(String(512), nullable=True)
    availability_strategy = Column(
        Enum(AvailabilityStrategy, native_enum=False, length=32),
        nullable=False,
        default=AvailabilityStrategy.PRICE_SELECTOR_ONLY,
    )
    # Serialized JSON list or a single bare keyword
    out_of_stock_keywords = Column(Text, nullable=True)

    # Alert preferences
    target_price = Column(Integer, nullable=True)
    alert_on_drop = Column(Boolean, nullable=False, default=True)
    alert_on_back_in_stock = Column(Boolean, nullable=False, default=True)

    check_frequency_minutes = Column(Integer, nullable=False, default=60)
    enabled = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(DateTime, default=utcnow, index=True)

    checks = relationship(
        "CheckResult",
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="CheckResult.created_at.desc()",
    )
    notifications = relationship(
        "Notification",
        back_populates="task",
        cascade="all, delete-orphan",
    )


class CheckResult(Base):
    """One immutable observation of a WatchTask.

    Every attempt of a check is stored, retries included, so a task's history
    reads as an ordered log of attempts. Most-recent-first is the canonical
    read order.
    """
    __tablename__ = "check_results"

    # Integer key keeps insertion order as a tie-breaker for equal timestamps
    id = Column(Integer, primary_key=True, autoincrement=True)
    watcher_id = Column(
        String(36), ForeignKey("watch_tasks.id", ondelete="CASCADE"), nullable=False, index=True
    )

    price_value = Column(Integer, nullable=True)
    price_text = Column(String(PRICE_TEXT_LENGTH), nullable=True)
    # None means availability is unknown
    in_stock = Column(Boolean, nullable=True)
    status = Column(Enum(CheckStatus, native_enum=False, length=16), nullable=False, index=True)
    error_message = Column(Text, nullable=True)
    raw_excerpt = Column(String(255), nullable=True)
    response_time_ms = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)

    task = relationship("WatchTask", back_populates="checks")


class Notification(Base):
    """A record of an alert condition firing, delivered or not."""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    watcher_id = Column(
        String(36), ForeignKey("watch_tasks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type = Column(Enum(AlertType, native_enum=False, length=32), nullable=False)
    channel = Column(String(32), nullable=False)
    status = Column(Enum(DeliveryStatus, native_enum=False, length=16), nullable=False)
    payload = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    task = relationship("WatchTask", back_populates="notifications")
