import argparse
import json

from loguru import logger
from sqlalchemy import create_engine

from src.config import get_settings
from src.db.database import Base

settings = get_settings()
sync_database_url = settings.database_url.replace("+aiosqlite", "")


def init_database():
    """Create all tables."""
    import src.models  # noqa: F401

    engine = create_engine(sync_database_url)
    Base.metadata.create_all(engine)
    logger.info("Database initialized")


def run_job(job_id: str):
    """Run a scheduler job once, outside its cadence."""
    from src.scheduler.runner import job_definitions
    from src.scheduler.runner import run_job as run_scheduler_job

    try:
        result = run_scheduler_job(job_id)
    except KeyError:
        available = [definition.id for definition in job_definitions()]
        logger.error(f"Unknown job: {job_id}. Available: {available}")
        return
    logger.info(f"Result: {result}")


def show_status():
    from src.scheduler.runner import create_scheduler, scheduler_status

    # Not started: shows the configured cadences only
    print(json.dumps(scheduler_status(create_scheduler()), indent=2))


def main():
    parser = argparse.ArgumentParser(description="Ride Dispatch Scheduler CLI")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("init", help="Initialize database")
    subparsers.add_parser("serve", help="Start API server with the scheduler")
    subparsers.add_parser("status", help="Show configured scheduler jobs")

    run_parser = subparsers.add_parser("run-job", help="Run a scheduler job now")
    run_parser.add_argument(
        "job_id",
        help="daily_reminders, process_scheduled_rides or upcoming_ride_alerts",
    )

    args = parser.parse_args()

    if args.command == "init":
        init_database()
    elif args.command == "serve":
        import uvicorn

        uvicorn.run(
            "src.main:app",
            host=settings.api_host,
            port=settings.api_port,
            reload=settings.debug,
        )
    elif args.command == "status":
        show_status()
    elif args.command == "run-job":
        run_job(args.job_id)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
