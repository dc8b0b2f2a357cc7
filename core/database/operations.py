# This file contains the database access layer that handles connections to the database
# and provides reusable CRUD (Create, Read, Update, Delete) operations for our models

import json
from datetime import timedelta
from typing import Any, Dict, Generator, List, Optional, Sequence, Union
from urllib.parse import urlparse

import pymysql
import sqlalchemy.exc
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from config.settings import get_settings
from .models import (
    AlertType,
    AvailabilityStrategy,
    Base,
    CheckResult,
    CheckStatus,
    DeliveryStatus,
    Notification,
    WatchTask,
    utcnow,
)

# Get application settings
settings = get_settings()


def make_engine(url: str):
    """Create an engine for the given SQLAlchemy URL."""
    connect_args = {}
    if url.startswith("sqlite"):
        # Session work runs in worker threads as well as on the event loop
        connect_args["check_same_thread"] = False
    if url in ("sqlite://", "sqlite:///:memory:"):
        # Every connection must see the same in-memory database
        return create_engine(url, connect_args=connect_args, poolclass=StaticPool)
    return create_engine(url, connect_args=connect_args)


# Database Connection Setup
# The engine is the low-level interface to the database that handles the connection pool
engine = make_engine(settings.DATABASE_URL)

# Session Factory
# Objects stay readable after commit so tasks can be handed to checks running
# outside the session that loaded them
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)

# Fields a user may set on a task; store_domain is always derived from url
TASK_FIELDS = (
    "name",
    "url",
    "currency",
    "price_selector",
    "stock_selector",
    "availability_strategy",
    "out_of_stock_keywords",
    "target_price",
    "alert_on_drop",
    "alert_on_back_in_stock",
    "check_frequency_minutes",
    "enabled",
)


def ensure_database_exists():
    """Ensure that the MySQL database exists before attempting operations."""
    if not settings.DATABASE_URL.startswith("mysql"):
        return
    try:
        # Test if we can connect to the database
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return  # Database exists and connection works
    except sqlalchemy.exc.OperationalError as e:
        # This is the specific exception for connection problems including "Unknown database"
        if "Unknown database" in str(e):
            try:
                create_db_connection = pymysql.connect(
                    host=settings.DB_HOST,
                    user=settings.DB_USER,
                    password=settings.DB_PASS,
                    port=int(settings.DB_PORT)
                )
                try:
                    with create_db_connection.cursor() as cursor:
                        cursor.execute(f"CREATE DATABASE IF NOT EXISTS {settings.DB_NAME}")
                    create_db_connection.close()
                    print(f"Created database '{settings.DB_NAME}'")
                except pymysql.Error as db_err:
                    print(f"Failed to create database: {db_err}")
                    raise
            except pymysql.Error as conn_err:
                print(f"Failed to connect to MySQL server: {conn_err}")
                raise
        else:
            print(f"Database connection error: {e}")
            raise


def init_db(bind=None):
    """Create database tables if they don't exist.

    In a production environment you would typically use migrations (Alembic)
    instead of creating tables directly.
    """
    if bind is None:
        ensure_database_exists()
        bind = engine
    Base.metadata.create_all(bind=bind)


def get_db() -> Generator:
    """Create and yield a database session.

    Used as a FastAPI dependency: one session per request, always closed
    even if the request fails.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        # This ensures the session is closed even if an exception occurs
        db.close()


def derive_origin(url: str) -> str:
    """Return the hostname of a task URL, the key for per-origin throttling.

    Raises:
        ValueError: if the URL has no hostname
    """
    hostname = urlparse(str(url)).hostname
    if not hostname:
        raise ValueError(f"Invalid URL, no hostname: {url}")
    return hostname


def serialize_keywords(keywords: Union[None, str, Sequence[str]]) -> Optional[str]:
    """Store keyword lists as JSON and bare strings untouched."""
    if keywords is None:
        return None
    if isinstance(keywords, str):
        return keywords
    return json.dumps(list(keywords))


def _apply_task_fields(task: WatchTask, fields: Dict[str, Any]):
    for key, value in fields.items():
        if key not in TASK_FIELDS:
            raise ValueError(f"Unknown task field: {key}")
        if key == "out_of_stock_keywords":
            value = serialize_keywords(value)
        elif key == "availability_strategy" and value is not None:
            value = AvailabilityStrategy(value)
        setattr(task, key, value)
    if "url" in fields:
        task.store_domain = derive_origin(task.url)


def create_task(db, **fields) -> WatchTask:
    """Create a watch task. The origin is derived from the URL.

    Raises:
        ValueError: on an unknown field or a URL without hostname
    """
    if "url" not in fields:
        raise ValueError("A task needs a url")
    task = WatchTask()
    _apply_task_fields(task, fields)
    db.add(task)
    db.commit()
    db.refresh(task)
    return task


def get_task(db, task_id: str) -> Optional[WatchTask]:
    return db.query(WatchTask).filter(WatchTask.id == task_id).first()


def update_task(db, task_id: str, **fields) -> WatchTask:
    """Apply user edits to a task, re-deriving its origin when the URL changes.

    Raises:
        LookupError: if the task does not exist
    """
    task = get_task(db, task_id)
    if task is None:
        raise LookupError(f"Task with ID {task_id} not found")
    _apply_task_fields(task, fields)
    db.commit()
    db.refresh(task)
    return task


def delete_task(db, task_id: str) -> bool:
    """Delete a task together with its check results and notifications."""
    task = get_task(db, task_id)
    if task is None:
        return False
    db.delete(task)
    db.commit()
    return True


def list_tasks(db) -> List[WatchTask]:
    """All tasks, newest first."""
    return db.query(WatchTask).order_by(WatchTask.created_at.desc()).all()


def list_enabled_tasks(db) -> List[WatchTask]:
    return db.query(WatchTask).filter(WatchTask.enabled.is_(True)).all()


def add_check_result(db, watcher_id: str, status: CheckStatus, created_at=None, **fields) -> CheckResult:
    """Append one check attempt to a task's history."""
    check = CheckResult(watcher_id=watcher_id, status=CheckStatus(status), **fields)
    if created_at is not None:
        check.created_at = created_at
    db.add(check)
    db.commit()
    db.refresh(check)
    return check


def get_recent_checks(db, watcher_id: str, limit: int = 50) -> List[CheckResult]:
    """The most recent check results for a task, newest first."""
    return db.query(CheckResult)\
        .filter(CheckResult.watcher_id == watcher_id)\
        .order_by(CheckResult.created_at.desc(), CheckResult.id.desc())\
        .limit(limit)\
        .all()


def get_latest_check(db, watcher_id: str) -> Optional[CheckResult]:
    """The most recent check of any status, or None for a never-checked task."""
    checks = get_recent_checks(db, watcher_id, limit=1)
    return checks[0] if checks else None


def get_latest_ok_check(db, watcher_id: str) -> Optional[CheckResult]:
    return db.query(CheckResult)\
        .filter(CheckResult.watcher_id == watcher_id, CheckResult.status == CheckStatus.OK)\
        .order_by(CheckResult.created_at.desc(), CheckResult.id.desc())\
        .first()


def add_notification(db, watcher_id: str, alert_type: AlertType, channel: str,
                     status: DeliveryStatus, message: str) -> Notification:
    """Record an alert firing and whether its delivery succeeded."""
    notification = Notification(
        watcher_id=watcher_id,
        type=AlertType(alert_type),
        channel=channel,
        status=DeliveryStatus(status),
        payload={"message": message},
    )
    db.add(notification)
    db.commit()
    db.refresh(notification)
    return notification


def get_notifications(db, watcher_id: str, limit: int = 50) -> List[Notification]:
    return db.query(Notification)\
        .filter(Notification.watcher_id == watcher_id)\
        .order_by(Notification.created_at.desc(), Notification.id.desc())\
        .limit(limit)\
        .all()


def ensure_seed_data(db) -> bool:
    """Populate an empty store with two example tasks and a short history.

    Returns:
        True if seed data was written, False if tasks already existed
    """
    if db.query(WatchTask).count() > 0:
        return False

    falabella = create_task(
        db,
        name="Ejemplo Falabella",
        url="https://www.ejemplo-falabella.cl/producto-placeholder",
        currency="CLP",
        price_selector=".product-price",
        availability_strategy=AvailabilityStrategy.PRICE_SELECTOR_ONLY,
        out_of_stock_keywords=["agotado", "sin stock"],
        alert_on_drop=True,
        alert_on_back_in_stock=True,
        check_frequency_minutes=60,
        enabled=True,
    )
    mercadolibre = create_task(
        db,
        name="Ejemplo MercadoLibre",
        url="https://www.ejemplo-mercadolibre.cl/producto-placeholder",
        currency="CLP",
        price_selector=".price-tag-fraction",
        availability_strategy=AvailabilityStrategy.OUT_OF_STOCK_TEXT_PRESENT,
        out_of_stock_keywords=["agotado", "sin stock"],
        alert_on_drop=True,
        alert_on_back_in_stock=True,
        check_frequency_minutes=45,
        enabled=True,
    )

    # Older observation first so the history reads in creation order
    now = utcnow()
    history = [
        (falabella, 599990, "$599.990", True, "Precio normal: $599.990"),
        (falabella, 549990, "$549.990", True, "Oferta: $549.990"),
        (mercadolibre, 129999, "$129.999", False, "Producto agotado"),
        (mercadolibre, 119999, "$119.999", True, "Stock disponible"),
    ]
    for offset, (task, value, text_value, in_stock, excerpt) in enumerate(history):
        add_check_result(
            db,
            task.id,
            CheckStatus.OK,
            created_at=now - timedelta(minutes=len(history) - offset),
            price_value=value,
            price_text=text_value,
            in_stock=in_stock,
            raw_excerpt=excerpt,
        )
    return True
