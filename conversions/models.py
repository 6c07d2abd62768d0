import uuid
from datetime import timedelta

from django.conf import settings
from django.db import models
from django.utils import timezone

from .options import PipelineOptions, StepKind, StepResult


def default_expiry():
    return timezone.now() + timedelta(days=settings.JOB_TTL_DAYS)


class ConversionJob(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending"
        PROCESSING = "processing"
        COMPLETED = "completed"
        FAILED = "failed"

    # Only forward moves are legal; terminal states never change again
    TRANSITIONS = {
        Status.PENDING: frozenset({Status.PROCESSING}),
        Status.PROCESSING: frozenset({Status.COMPLETED, Status.FAILED}),
        Status.COMPLETED: frozenset(),
        Status.FAILED: frozenset(),
    }

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    original_file_name = models.CharField(max_length=255)
    original_file_size = models.BigIntegerField(default=0)
    conversion_type = models.CharField(max_length=32, default="multi_step")
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING, db_index=True)
    progress = models.PositiveSmallIntegerField(default=0)  # 0..100
    options = models.JSONField(default=dict)

    # Results, one column group per step kind
    converted_files = models.JSONField(default=list, blank=True)  # [{format, fileName, fileSize}]
    compressed_file_name = models.CharField(max_length=255, null=True, blank=True)
    compressed_file_size = models.BigIntegerField(null=True, blank=True)
    audio_removed = models.BooleanField(default=False)
    audio_removed_file = models.JSONField(null=True, blank=True)  # {fileName, fileSize}
    poster_file_name = models.CharField(max_length=255, null=True, blank=True)
    poster_file_size = models.BigIntegerField(null=True, blank=True)
    error_message = models.TextField(blank=True, default="")

    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    started_at = models.DateTimeField(null=True, blank=True)
    ended_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)
    expires_at = models.DateTimeField(default=default_expiry, db_index=True)

    class Meta:
        ordering = ["created_at", "id"]

    def __str__(self):
        return f"{self.id} [{self.status} {self.progress}%]"

    @classmethod
    def can_transition(cls, current: str, target: str) -> bool:
        return target in cls.TRANSITIONS.get(current, frozenset())

    @property
    def is_expired(self) -> bool:
        return self.expires_at <= timezone.now()

    def pipeline_options(self) -> PipelineOptions:
        return PipelineOptions.from_dict(self.options)

    def step_results(self) -> list[StepResult]:
        """Artifacts of a completed job, in pipeline order."""
        results = []
        if self.audio_removed and self.audio_removed_file:
            results.append(StepResult(
                kind=StepKind.AUDIO_REMOVED,
                file_name=self.audio_removed_file["fileName"],
                file_size=self.audio_removed_file.get("fileSize") or 0,
            ))
        if self.compressed_file_name:
            results.append(StepResult(
                kind=StepKind.COMPRESSED,
                file_name=self.compressed_file_name,
                file_size=self.compressed_file_size or 0,
            ))
        for item in self.converted_files or []:
            results.append(StepResult(
                kind=StepKind.CONVERTED,
                file_name=item["fileName"],
                file_size=item.get("fileSize") or 0,
                format=item.get("format"),
            ))
        if self.poster_file_name:
            results.append(StepResult(
                kind=StepKind.POSTER,
                file_name=self.poster_file_name,
                file_size=self.poster_file_size or 0,
            ))
        return results

    def owns_file(self, file_name: str) -> bool:
        return any(r.file_name == file_name for r in self.step_results())
