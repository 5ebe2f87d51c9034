"""
Celery worker: periodic reminder sweep and validity recomputation.
"""
from celery import Celery
import logging
from .config import settings
from .database import SessionLocal
from .notifier import get_notifier
from .services.requirement_state import now_utc
from .use_cases.dispatcher import run_reminder_sweep
from .use_cases.validity_refresh import refresh_requirement_validity_use_case

logger = logging.getLogger(__name__)

celery_app = Celery(
    "compliance_reminders",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
)


@celery_app.task(name="process_reminder_jobs")
def process_reminder_jobs(batch_size: int | None = None):
    """
    Run one reminder sweep.

    Claims are conditional updates, so overlapping beats or several workers
    never send the same attempt twice.
    """
    db = SessionLocal()

    try:
        result = run_reminder_sweep(
            db=db,
            notifier=get_notifier(),
            now=now_utc(),
            batch_size=batch_size or settings.REMINDER_SWEEP_BATCH_SIZE,
        )
    except Exception as e:
        db.rollback()
        logger.error(f"Error processing reminder jobs: {e}", exc_info=True)
        raise

    finally:
        db.close()

    return result.as_dict()


@celery_app.task(name="refresh_requirement_validity")
def refresh_requirement_validity():
    """Demote valid/expiring requirements whose validity window moved on."""
    db = SessionLocal()

    try:
        changed = refresh_requirement_validity_use_case(db=db, today=now_utc().date())
    except Exception as e:
        db.rollback()
        logger.error(f"Error refreshing requirement validity: {e}", exc_info=True)
        raise

    finally:
        db.close()

    return {"changed": changed}


# Schedule periodic processing
celery_app.conf.beat_schedule = {
    'process-reminder-jobs': {
        'task': 'process_reminder_jobs',
        'schedule': float(settings.REMINDER_SWEEP_INTERVAL_SECONDS),
    },
    'refresh-requirement-validity': {
        'task': 'refresh_requirement_validity',
        'schedule': float(settings.VALIDITY_SWEEP_INTERVAL_SECONDS),
    },
}
