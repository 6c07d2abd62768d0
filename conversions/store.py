"""
Job store: every read and write of ConversionJob rows goes through here.

State changes are single conditional UPDATE statements (``WHERE status = ...``)
so concurrent workers, the executor and the sweeper never read-modify-write a
row across process boundaries.
"""
from datetime import datetime, timedelta
from typing import Iterable, Optional

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import DatabaseError, IntegrityError, transaction
from django.utils import timezone

from video_converter.logger import get_logger

from .errors import (
    DuplicateJobError,
    InvalidTransitionError,
    JobNotFound,
    PersistenceError,
)
from .models import ConversionJob
from .options import PipelineOptions, StepKind, StepResult

logger = get_logger(__name__)

Status = ConversionJob.Status


def create_job(
    job_id: str,
    original_file_name: str,
    original_file_size: int,
    options: PipelineOptions,
) -> ConversionJob:
    now = timezone.now()
    try:
        with transaction.atomic():
            job = ConversionJob.objects.create(
                id=job_id,
                original_file_name=original_file_name,
                original_file_size=original_file_size,
                status=Status.PENDING,
                progress=0,
                options=options.to_dict(),
                created_at=now,
                expires_at=now + timedelta(days=settings.JOB_TTL_DAYS),
            )
    except IntegrityError as e:
        raise DuplicateJobError(f"Job {job_id} already exists") from e
    except DatabaseError as e:
        raise PersistenceError(f"Could not create job {job_id}: {e}") from e

    logger.info("Created conversion job", job_id=str(job.id), file_name=original_file_name)
    return job


def get_job(job_id) -> ConversionJob:
    try:
        return ConversionJob.objects.get(pk=job_id)
    except (ConversionJob.DoesNotExist, ValidationError) as e:
        raise JobNotFound(f"Job {job_id} not found") from e


def next_pending_job_id():
    """Id of the oldest pending job, or None."""
    return (
        ConversionJob.objects.filter(status=Status.PENDING)
        .order_by("created_at", "id")
        .values_list("id", flat=True)
        .first()
    )


def claim_job(job_id) -> bool:
    """
    Atomically move a job from pending to processing.

    Exactly one caller gets True for a given job; everyone else gets False.
    """
    now = timezone.now()
    try:
        claimed = ConversionJob.objects.filter(pk=job_id, status=Status.PENDING).update(
            status=Status.PROCESSING, started_at=now, updated_at=now
        )
    except DatabaseError as e:
        raise PersistenceError(f"Could not claim job {job_id}: {e}") from e

    if claimed:
        logger.info("Claimed job", job_id=str(job_id))
    return claimed == 1


def update_progress(job_id, percent: int) -> bool:
    """
    Best-effort progress write. Never raises; returns whether the row moved.

    Progress only grows, and only while the job is processing.
    """
    percent = max(0, min(100, int(percent)))
    try:
        updated = ConversionJob.objects.filter(
            pk=job_id, status=Status.PROCESSING, progress__lt=percent
        ).update(progress=percent, updated_at=timezone.now())
    except DatabaseError as e:
        logger.warning("Failed to update progress", job_id=str(job_id), progress=percent, error=str(e))
        return False

    logger.debug("Updated progress", job_id=str(job_id), progress=percent)
    return updated == 1


def _result_fields(results: Iterable[StepResult]) -> dict:
    fields = {
        "converted_files": [],
        "compressed_file_name": None,
        "compressed_file_size": None,
        "audio_removed": False,
        "audio_removed_file": None,
        "poster_file_name": None,
        "poster_file_size": None,
    }
    for result in results:
        if result.kind == StepKind.AUDIO_REMOVED:
            fields["audio_removed"] = True
            fields["audio_removed_file"] = {"fileName": result.file_name, "fileSize": result.file_size}
        elif result.kind == StepKind.COMPRESSED:
            fields["compressed_file_name"] = result.file_name
            fields["compressed_file_size"] = result.file_size
        elif result.kind == StepKind.CONVERTED:
            fields["converted_files"].append(
                {"format": result.format, "fileName": result.file_name, "fileSize": result.file_size}
            )
        elif result.kind == StepKind.POSTER:
            fields["poster_file_name"] = result.file_name
            fields["poster_file_size"] = result.file_size
    return fields


def transition_status(
    job_id,
    status: str,
    *,
    results: Optional[Iterable[StepResult]] = None,
    error: Optional[str] = None,
) -> None:
    """
    Conditional write of a job's next state.

    ``completed`` stores the step results and sets progress to exactly 100
    in the same statement; ``failed`` stores the error message.
    """
    now = timezone.now()
    fields = {"status": status, "updated_at": now}

    if status == Status.PROCESSING:
        fields["started_at"] = now
    elif status == Status.COMPLETED:
        if results is None:
            raise ValueError("A completed transition needs the step results")
        fields.update(_result_fields(results))
        fields.update(progress=100, ended_at=now)
    elif status == Status.FAILED:
        if not error:
            raise ValueError("A failed transition needs an error message")
        fields.update(error_message=error[: settings.ERROR_MESSAGE_MAX_LENGTH], ended_at=now)
    else:
        raise InvalidTransitionError(str(job_id), status)

    sources = [src for src, targets in ConversionJob.TRANSITIONS.items() if status in targets]
    try:
        updated = ConversionJob.objects.filter(pk=job_id, status__in=sources).update(**fields)
        if not updated:
            current = ConversionJob.objects.filter(pk=job_id).values_list("status", flat=True).first()
    except DatabaseError as e:
        raise PersistenceError(f"Could not move job {job_id} to {status}: {e}") from e

    if not updated:
        if current is None:
            raise JobNotFound(f"Job {job_id} not found")
        raise InvalidTransitionError(str(job_id), status, current)

    logger.info("Job status changed", job_id=str(job_id), status=status)


def list_expired(now: Optional[datetime] = None) -> list[ConversionJob]:
    now = now or timezone.now()
    return list(ConversionJob.objects.filter(status=Status.COMPLETED, expires_at__lt=now))


def delete_job(job_id) -> bool:
    try:
        deleted, _ = ConversionJob.objects.filter(pk=job_id).delete()
    except DatabaseError as e:
        raise PersistenceError(f"Could not delete job {job_id}: {e}") from e

    logger.info("Deleted job record", job_id=str(job_id), found=bool(deleted))
    return bool(deleted)
