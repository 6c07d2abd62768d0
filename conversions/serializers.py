from django.conf import settings
from django.urls import reverse
from rest_framework import serializers

from .errors import InputError
from .models import ConversionJob
from .options import (
    CONTAINER_FORMATS,
    CUSTOM_RESOLUTION,
    DEFAULT_POSTER_FORMAT,
    DEFAULT_POSTER_TIME,
    POSTER_FORMATS,
    RESOLUTIONS,
    PipelineOptions,
)
from .utils import guess_kind

Status = ConversionJob.Status


class PipelineOptionsSerializer(serializers.Serializer):
    """
    Operation flags sent with an upload. Field names match the JSON stored
    on the job (camelCase).
    """
    removeAudio = serializers.BooleanField(source="remove_audio", default=False)
    compress = serializers.BooleanField(default=False)
    resolution = serializers.ChoiceField(choices=RESOLUTIONS, required=False, allow_null=True)
    width = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    convert = serializers.BooleanField(default=False)
    formats = serializers.ListField(child=serializers.CharField(), required=False, default=list)
    generatePoster = serializers.BooleanField(source="generate_poster", default=False)
    posterFormat = serializers.ChoiceField(
        source="poster_format", choices=POSTER_FORMATS, default=DEFAULT_POSTER_FORMAT
    )
    posterTime = serializers.FloatField(source="poster_time", min_value=0, default=DEFAULT_POSTER_TIME)

    def validate_formats(self, value):
        """
        Accept repeated fields or comma-separated values.
        De-duplicate while preserving order.
        """
        seen = set()
        deduped = []
        for item in value:
            for fmt in item.split(","):
                fmt = fmt.strip().lower()
                if fmt and fmt not in seen:
                    seen.add(fmt)
                    deduped.append(fmt)
        bad = [f for f in deduped if f not in CONTAINER_FORMATS]
        if bad:
            raise serializers.ValidationError(
                f"Unsupported formats: {bad}. Allowed: {sorted(CONTAINER_FORMATS)}"
            )
        return deduped

    def validate(self, attrs):
        if not any(attrs.get(flag) for flag in ("remove_audio", "compress", "convert", "generate_poster")):
            raise serializers.ValidationError("Select at least one operation.")
        if attrs.get("compress"):
            resolution = attrs.get("resolution")
            if not resolution:
                raise serializers.ValidationError({"resolution": "Required when compress is set."})
            if resolution == CUSTOM_RESOLUTION and not attrs.get("width"):
                raise serializers.ValidationError({"width": "A numeric width is required for custom resolution."})
            if resolution != CUSTOM_RESOLUTION:
                attrs["width"] = None
        if attrs.get("convert") and not attrs.get("formats"):
            raise serializers.ValidationError({"formats": "At least one format is required when convert is set."})
        return attrs

    def to_options(self, video_extension: str) -> PipelineOptions:
        try:
            return PipelineOptions(video_extension=video_extension, **self.validated_data)
        except InputError as e:
            raise serializers.ValidationError(str(e)) from e


class UploadCreateSerializer(serializers.Serializer):
    file = serializers.FileField()

    def validate_file(self, value):
        if value.size > settings.MAX_UPLOAD_SIZE:
            raise serializers.ValidationError(f"File exceeds the {settings.MAX_UPLOAD_SIZE} byte limit.")
        if guess_kind(value.name or "") != "video":
            raise serializers.ValidationError("Unsupported file type; upload a video.")
        return value


class JobStatusSerializer(serializers.BaseSerializer):
    """
    Client view of a job: progress while in flight, artifacts once
    completed, the error once failed.
    """

    def to_representation(self, job: ConversionJob):
        if job.status in (Status.PENDING, Status.PROCESSING):
            return {
                "status": job.status,
                "progress": job.progress,
                "initialSize": job.original_file_size,
            }
        if job.status == Status.FAILED:
            return {"status": job.status, "error": job.error_message}

        step_results = []
        for result in job.step_results():
            item = {
                "kind": result.kind.value,
                "fileName": result.file_name,
                "fileSize": result.file_size,
                "downloadRef": self._link(result.file_name),
            }
            if result.format:
                item["format"] = result.format
            step_results.append(item)

        return {
            "status": job.status,
            "progress": 100,
            "initialSize": job.original_file_size,
            "finalSize": sum(r["fileSize"] for r in step_results),
            "expiresAt": job.expires_at.isoformat(),
            "stepResults": step_results,
            "files": [
                {**f, "link": self._link(f["fileName"])} for f in (job.converted_files or [])
            ],
            "compressed": self._file_entry(job.compressed_file_name, job.compressed_file_size),
            "poster": self._file_entry(job.poster_file_name, job.poster_file_size),
            "audioRemovedFile": (
                self._file_entry(job.audio_removed_file["fileName"], job.audio_removed_file.get("fileSize"))
                if job.audio_removed and job.audio_removed_file
                else None
            ),
        }

    def _file_entry(self, file_name, file_size):
        if not file_name:
            return None
        return {"fileName": file_name, "fileSize": file_size or 0, "link": self._link(file_name)}

    def _link(self, file_name: str) -> str:
        path = reverse("artifact_download", kwargs={"file_name": file_name})
        request = self.context.get("request")
        return request.build_absolute_uri(path) if request else path
