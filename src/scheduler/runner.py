from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger

from src.config import get_settings
from src.scheduler import jobs


@dataclass(frozen=True)
class JobDefinition:
    id: str
    name: str
    schedule: str  # crontab expression, evaluated in the configured zone
    description: str
    func: Callable[[], Any]


def job_definitions() -> List[JobDefinition]:
    settings = get_settings()
    return [
        JobDefinition(
            id="daily_reminders",
            name="Daily Reminders",
            schedule=f"{settings.daily_reminder_minute} {settings.daily_reminder_hour} * * *",
            description="Remind drivers of tomorrow's scheduled rides",
            func=jobs.send_daily_reminders,
        ),
        JobDefinition(
            id="process_scheduled_rides",
            name="Process Scheduled Rides",
            schedule="* * * * *",
            description="Promote due bookings into live rides every minute",
            func=jobs.process_scheduled_rides,
        ),
        JobDefinition(
            id="upcoming_ride_alerts",
            name="Upcoming Ride Alerts",
            schedule="*/5 * * * *",
            description="Alert drivers of rides starting soon every 5 minutes",
            func=jobs.send_upcoming_ride_alerts,
        ),
    ]


def get_job_definition(job_id: str) -> Optional[JobDefinition]:
    for definition in job_definitions():
        if definition.id == job_id:
            return definition
    return None


def create_scheduler() -> BackgroundScheduler:
    settings = get_settings()
    scheduler = BackgroundScheduler(
        timezone=settings.timezone,
        job_defaults={"coalesce": True, "max_instances": 1},
    )

    for definition in job_definitions():
        scheduler.add_job(
            definition.func,
            CronTrigger.from_crontab(definition.schedule, timezone=settings.timezone),
            id=definition.id,
            name=definition.name,
        )

    logger.info(f"Scheduler configured with {len(scheduler.get_jobs())} jobs ({settings.timezone})")
    return scheduler


def start_scheduler() -> BackgroundScheduler:
    scheduler = create_scheduler()
    scheduler.start()
    logger.info("Scheduler started")
    return scheduler


def run_job(job_id: str) -> Any:
    """Run one job immediately, outside its cadence (operational testing).

    Raises:
        KeyError: unknown job id.
    """
    definition = get_job_definition(job_id)
    if definition is None:
        raise KeyError(job_id)
    logger.info(f"Running job {job_id} manually")
    return definition.func()


def scheduler_status(scheduler: Optional[BackgroundScheduler]) -> Dict[str, Any]:
    """Read-only description of the cadences and whether each is active."""
    settings = get_settings()
    running = scheduler is not None and scheduler.running

    job_list = []
    for definition in job_definitions():
        job = scheduler.get_job(definition.id) if scheduler is not None else None
        # Jobs of a scheduler that was never started carry no next_run_time
        next_run = getattr(job, "next_run_time", None)
        job_list.append(
            {
                "id": definition.id,
                "name": definition.name,
                "schedule": definition.schedule,
                "timezone": settings.timezone,
                "description": definition.description,
                "active": running and next_run is not None,
                "next_run": str(next_run) if next_run else None,
            }
        )

    return {"scheduler_running": running, "jobs": job_list}
