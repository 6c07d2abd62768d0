from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from django.conf import settings

from video_converter.logger import get_logger

from . import store
from .errors import PersistenceError

logger = get_logger(__name__)


@dataclass
class SweepReport:
    jobs_deleted: int = 0
    files_deleted: int = 0
    files_missing: int = 0
    files_failed: int = 0
    jobs_failed: int = 0

    def as_dict(self) -> dict:
        return {
            "jobs_deleted": self.jobs_deleted,
            "files_deleted": self.files_deleted,
            "files_missing": self.files_missing,
            "files_failed": self.files_failed,
            "jobs_failed": self.jobs_failed,
        }


def sweep_expired(now: Optional[datetime] = None) -> SweepReport:
    """
    Delete the artifacts and rows of completed jobs past their expiry.

    A missing or undeletable artifact never stops the sweep; the row is
    removed once every artifact of the job has been attempted.
    """
    report = SweepReport()
    media_root = Path(settings.MEDIA_ROOT)
    expired = store.list_expired(now)
    logger.info("Running expiry sweep", expired_jobs=len(expired))

    for job in expired:
        job_id = str(job.id)
        for result in job.step_results():
            path = media_root / result.file_name
            try:
                path.unlink()
            except FileNotFoundError:
                report.files_missing += 1
                logger.warning("Expired artifact already gone", job_id=job_id, path=str(path))
            except OSError as e:
                report.files_failed += 1
                logger.warning("Could not delete expired artifact", job_id=job_id, path=str(path), error=str(e))
            else:
                report.files_deleted += 1
                logger.info("Deleted expired artifact", job_id=job_id, kind=result.kind.value, path=str(path))

        try:
            store.delete_job(job.id)
        except PersistenceError as e:
            report.jobs_failed += 1
            logger.error("Could not delete expired job record", job_id=job_id, error=str(e))
        else:
            report.jobs_deleted += 1

    logger.info("Expiry sweep completed", **report.as_dict())
    return report
