from celery import shared_task

from video_converter.logger import get_logger

from .sweeper import sweep_expired

logger = get_logger(__name__)


@shared_task(bind=True)
def sweep_expired_jobs(self):
    """Daily beat task; see CELERY_BEAT_SCHEDULE."""
    try:
        report = sweep_expired()
    except Exception:
        logger.exception("Expiry sweep failed", task_id=self.request.id)
        raise
    return report.as_dict()
