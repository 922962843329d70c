from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from loguru import logger

from src.api.router import api_router
from src.config import get_settings
from src.db.database import init_db
from src.exceptions import NotFoundError, ValidationError
from src.scheduler.jobs import notification_executor
from src.scheduler.runner import run_job, scheduler_status, start_scheduler

settings = get_settings()
scheduler: Optional[object] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global scheduler
    logger.info("Starting up...")
    await init_db()

    scheduler = start_scheduler()

    yield

    if scheduler:
        scheduler.shutdown()
    # Let in-flight activation notices finish
    notification_executor().shutdown(wait=True)
    notification_executor.cache_clear()
    logger.info("Shutting down...")


# Disable interactive docs in production
docs_url = None if settings.is_production else "/docs"
redoc_url = None if settings.is_production else "/redoc"

app = FastAPI(
    title="Ride Dispatch Scheduler API",
    description="Scheduled-ride promotion, reminders and alerts",
    version="0.1.0",
    lifespan=lifespan,
    docs_url=docs_url,
    redoc_url=redoc_url,
)

app.include_router(api_router)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


def _require_admin(x_admin_key: Optional[str]) -> None:
    # Require admin key in production
    if settings.is_production:
        if not settings.admin_api_key:
            raise HTTPException(status_code=503, detail="Admin API not configured")
        if x_admin_key != settings.admin_api_key:
            raise HTTPException(status_code=401, detail="Invalid admin key")


@app.get("/health")
async def health_check():
    return {"status": "ok"}


@app.get("/api/admin/status")
async def admin_status(x_admin_key: str = Header(None)):
    _require_admin(x_admin_key)
    return scheduler_status(scheduler)


@app.post("/api/admin/jobs/{job_id}/run")
def admin_run_job(job_id: str, x_admin_key: str = Header(None)):
    # Sync endpoint: jobs use blocking sessions and HTTP clients
    _require_admin(x_admin_key)
    try:
        result = run_job(job_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown job: {job_id}")
    return {"job_id": job_id, "result": result}
