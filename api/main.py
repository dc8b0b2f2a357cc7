import logging
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import List

import sqlalchemy.exc
from fastapi import Depends, FastAPI, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from config.settings import get_settings
from core.database.operations import (
    SessionLocal,
    create_task,
    delete_task,
    ensure_seed_data,
    get_db,
    get_latest_check,
    get_notifications,
    get_recent_checks,
    get_task,
    init_db,
    list_tasks,
    update_task,
)
from core.monitoring.runner import CheckRunner
from core.monitoring.scheduler import DueTaskScheduler, build_scheduler
from core.scrapers.extraction import ExtractionRule
from core.scrapers.selector_detector import SelectorDetector, preset_for_url

from .models import (
    AdHocCheckRequest,
    CheckOutcomeResponse,
    CheckResultOut,
    DetectSelectorRequest,
    DetectSelectorResponse,
    ErrorResponse,
    NotificationOut,
    PresetResponse,
    RunChecksResponse,
    WatchTaskCreate,
    WatchTaskDetail,
    WatchTaskOut,
    WatchTaskSummary,
    WatchTaskUpdate,
)

logger = logging.getLogger("pricewatch.api")

HISTORY_LIMIT = 50

NOT_FOUND = {404: {"model": ErrorResponse, "description": "Task not found"}}
BAD_REQUEST = {400: {"model": ErrorResponse, "description": "Invalid task fields"}}


@lru_cache()
def get_scheduler() -> DueTaskScheduler:
    """The process-wide scheduler; its origin table lives as long as the process."""
    return build_scheduler()


def get_runner(scheduler: DueTaskScheduler = Depends(get_scheduler)) -> CheckRunner:
    return scheduler.runner


def get_detector(runner: CheckRunner = Depends(get_runner)) -> SelectorDetector:
    return SelectorDetector(runner.renderer)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    settings = get_settings()
    init_db()
    db = SessionLocal()
    try:
        if ensure_seed_data(db):
            logger.info("Seeded example watch tasks")
    finally:
        db.close()

    job_scheduler = None
    if settings.SCHEDULER_ENABLED:
        job_scheduler = get_scheduler().start(settings.SCHEDULER_TICK_SECONDS)
    try:
        yield
    finally:
        if job_scheduler is not None:
            job_scheduler.shutdown(wait=False)


app = FastAPI(
    title="Price Watch API",
    description="REST API for tracking product prices and stock across online stores",
    version="0.1.0",
    lifespan=lifespan,
)

# Enable CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, replace with specific origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _task_or_404(db: Session, task_id: str):
    task = get_task(db, task_id)
    if task is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Task with ID {task_id} not found",
        )
    return task


@app.get("/", tags=["General"])
async def root():
    """Root endpoint providing API information."""
    return {
        "name": "Price Watch API",
        "version": "0.1.0",
        "description": "API for monitoring product prices and availability",
        "endpoints": {
            "GET /": "This information",
            "GET /api/watchers": "List watch tasks with their latest check",
            "GET /api/watchers/{id}": "Get a watch task with its recent history",
            "POST /api/watchers": "Create a watch task",
            "PUT /api/watchers/{id}": "Update a watch task",
            "DELETE /api/watchers/{id}": "Delete a watch task and its history",
            "POST /api/detect-selector": "Suggest a price selector for a URL",
            "GET /api/presets": "Known selector for a store URL",
            "POST /api/test-check": "Run a check for an unsaved configuration",
            "POST /api/jobs/run-checks": "Run a due-task pass now",
        },
    }


@app.get("/api/watchers", response_model=List[WatchTaskSummary], tags=["Watchers"])
def list_watchers(db: Session = Depends(get_db)):
    """List tasks, newest first, each with its most recent check."""
    summaries = []
    for task in list_tasks(db):
        latest = get_latest_check(db, task.id)
        summaries.append(
            WatchTaskSummary(
                **WatchTaskOut.model_validate(task).model_dump(),
                latest_check=CheckResultOut.model_validate(latest) if latest else None,
            )
        )
    return summaries


@app.get("/api/watchers/{task_id}", response_model=WatchTaskDetail, responses=NOT_FOUND, tags=["Watchers"])
def get_watcher(task_id: str, limit: int = Query(HISTORY_LIMIT, ge=1, le=500), db: Session = Depends(get_db)):
    """Get a task with its recent checks and notifications."""
    task = _task_or_404(db, task_id)
    return WatchTaskDetail(
        **WatchTaskOut.model_validate(task).model_dump(),
        checks=[CheckResultOut.model_validate(c) for c in get_recent_checks(db, task_id, limit=limit)],
        notifications=[NotificationOut.model_validate(n) for n in get_notifications(db, task_id, limit=limit)],
    )


@app.post(
    "/api/watchers",
    response_model=WatchTaskOut,
    status_code=status.HTTP_201_CREATED,
    responses=BAD_REQUEST,
    tags=["Watchers"],
)
def create_watcher(request: WatchTaskCreate, db: Session = Depends(get_db)):
    """Create a watch task; its origin is derived from the URL."""
    fields = request.model_dump()
    fields["url"] = str(request.url)
    try:
        task = create_task(db, **fields)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return WatchTaskOut.model_validate(task)


@app.put(
    "/api/watchers/{task_id}",
    response_model=WatchTaskOut,
    responses={**NOT_FOUND, **BAD_REQUEST},
    tags=["Watchers"],
)
def update_watcher(task_id: str, request: WatchTaskUpdate, db: Session = Depends(get_db)):
    """Update only the fields present in the request."""
    fields = request.model_dump(exclude_unset=True)
    if "url" in fields:
        if fields["url"] is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="url cannot be null")
        fields["url"] = str(request.url)
    try:
        task = update_task(db, task_id, **fields)
    except LookupError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return WatchTaskOut.model_validate(task)


@app.delete("/api/watchers/{task_id}", responses=NOT_FOUND, tags=["Watchers"])
def delete_watcher(task_id: str, db: Session = Depends(get_db)):
    """Delete a task together with its checks and notifications."""
    if not delete_task(db, task_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Task with ID {task_id} not found",
        )
    return {"success": True}


@app.post("/api/detect-selector", response_model=DetectSelectorResponse, tags=["Tools"])
async def detect_selector(request: DetectSelectorRequest, detector: SelectorDetector = Depends(get_detector)):
    """Render the URL and suggest a price selector for it."""
    result = await detector.detect(str(request.url))
    return DetectSelectorResponse(selector=result.selector, price=result.price, strategy=result.strategy)


@app.get("/api/presets", response_model=PresetResponse, tags=["Tools"])
async def get_preset(url: str):
    """Known price selector for a store, if the store is one we know."""
    preset = preset_for_url(url)
    return PresetResponse(**preset) if preset else PresetResponse()


@app.post("/api/test-check", response_model=CheckOutcomeResponse, tags=["Tools"])
async def run_test_check(request: AdHocCheckRequest, runner: CheckRunner = Depends(get_runner)):
    """Run a single check attempt for an unsaved configuration. Nothing is stored."""
    rule = ExtractionRule(
        price_selector=request.price_selector,
        stock_selector=request.stock_selector,
        availability_strategy=request.availability_strategy,
        out_of_stock_keywords=request.out_of_stock_keywords,
    )
    outcome = await runner.check(rule, str(request.url))
    return CheckOutcomeResponse(**outcome.as_record())


@app.post("/api/jobs/run-checks", response_model=RunChecksResponse, tags=["Jobs"])
async def run_checks(scheduler: DueTaskScheduler = Depends(get_scheduler)):
    """Run a due-task pass now. Dispatched checks continue in the background."""
    dispatched = await scheduler.tick()
    return RunChecksResponse(message="Checks executed", dispatched=len(dispatched))


@app.get("/api/origins", tags=["Jobs"])
async def get_origins(scheduler: DueTaskScheduler = Depends(get_scheduler)):
    """Per-origin throttle and cooldown state of this process."""
    return scheduler.origins.snapshot()


# Error handlers
@app.exception_handler(HTTPException)
async def http_exception_handler(_request, exc):
    return JSONResponse(status_code=exc.status_code, content=ErrorResponse(detail=str(exc.detail)).model_dump())


@app.exception_handler(sqlalchemy.exc.SQLAlchemyError)
async def database_exception_handler(_request, exc):
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(detail=f"Database error: {str(exc)}").model_dump(),
    )


@app.exception_handler(Exception)
async def general_exception_handler(_request, exc):
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(detail=f"Unexpected error: {str(exc)}").model_dump(),
    )


# Run with: uvicorn api.main:app --reload
if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.main:app", host="0.0.0.0", port=8000, reload=True)
