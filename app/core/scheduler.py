import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.jobstores.memory import MemoryJobStore

from app.core.config import settings

logger = logging.getLogger(__name__)

MAINTENANCE_JOB_ID = "auth_maintenance"

scheduler = BackgroundScheduler(
    jobstores={"default": MemoryJobStore()},
    job_defaults={"coalesce": True, "max_instances": 1},
)


def run_maintenance(runtime) -> dict[str, int]:
    """
    Sweep expired in-memory auth state, then purge expired verification
    codes and long-dead token rows from the database.
    """
    from app.core.database import SessionLocal
    from app.services.token_service import TokenService
    from app.services.verification_code_service import VerificationCodeService

    result = runtime.run_maintenance()

    db = SessionLocal()
    try:
        result["verification_codes"] = VerificationCodeService.purge_expired(db)
        result["token_rows"] = TokenService.purge_expired(db)
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

    runtime.flush()
    logger.info(f"Auth maintenance completed: {result}")
    return result


def start_scheduler(runtime):
    """Start the scheduler with the periodic maintenance job."""
    scheduler.add_job(
        run_maintenance,
        "interval",
        seconds=settings.MAINTENANCE_INTERVAL_SECONDS,
        args=[runtime],
        id=MAINTENANCE_JOB_ID,
        replace_existing=True,
    )
    scheduler.start()
    logger.info(f"APScheduler started, maintenance every {settings.MAINTENANCE_INTERVAL_SECONDS}s")


def shutdown_scheduler():
    """Gracefully shut down the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("APScheduler shut down")
