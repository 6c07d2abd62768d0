import mimetypes
import uuid
from pathlib import Path

from django.conf import settings
from django.http import FileResponse
from rest_framework import status, views
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from video_converter.logger import get_logger

from . import store
from .errors import InputError, JobNotFound, PersistenceError, StorageError
from .models import ConversionJob
from .serializers import JobStatusSerializer, PipelineOptionsSerializer, UploadCreateSerializer
from .utils import remove_tree, save_uploaded_file, scratch_dir_for, video_extension

logger = get_logger(__name__)

# UUID in its canonical 36-character form prefixes every artifact name
JOB_ID_LENGTH = 36


class UploadAndCreateJobView(views.APIView):
    """
    Accepts a video upload plus operation flags, stages the file under
    SCRATCH_ROOT/<job_id>/ and creates a pending job for the dispatcher.
    Nothing is written when the options or the file are rejected.
    """
    permission_classes = [AllowAny]
    authentication_classes = []

    def post(self, request):
        opts = PipelineOptionsSerializer(data=request.data)
        opts.is_valid(raise_exception=True)
        upload = UploadCreateSerializer(data=request.data)
        upload.is_valid(raise_exception=True)

        djangofile = upload.validated_data["file"]
        options = opts.to_options(video_extension(djangofile.name))
        job_id = uuid.uuid4()

        try:
            save_uploaded_file(djangofile, job_id)
            store.create_job(str(job_id), djangofile.name, djangofile.size, options)
        except InputError as e:
            return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)
        except (StorageError, PersistenceError) as e:
            remove_tree(scratch_dir_for(job_id))
            logger.error("Could not create conversion job", job_id=str(job_id), error=str(e))
            return Response({"detail": "Could not create job"}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

        return Response({"job_id": str(job_id)}, status=status.HTTP_202_ACCEPTED)


class JobDetailView(views.APIView):
    permission_classes = [AllowAny]
    authentication_classes = []

    def get(self, request, job_id):
        try:
            job = store.get_job(job_id)
        except JobNotFound:
            return Response({"detail": "Not found"}, status=404)

        return Response(JobStatusSerializer(job, context={"request": request}).data)


class ArtifactDownloadView(views.APIView):
    """Streams an artifact of a completed job until the job expires."""
    permission_classes = [AllowAny]
    authentication_classes = []

    def get(self, request, file_name):
        try:
            job = store.get_job(file_name[:JOB_ID_LENGTH])
        except JobNotFound:
            return Response({"detail": "File not found"}, status=404)

        if job.status != ConversionJob.Status.COMPLETED or not job.owns_file(file_name):
            return Response({"detail": "File not found"}, status=404)
        if job.is_expired:
            return Response({"detail": "File has expired and is no longer available"}, status=410)

        path = Path(settings.MEDIA_ROOT) / file_name
        if not path.is_file():
            logger.warning("Artifact missing on disk", job_id=str(job.id), path=str(path))
            return Response({"detail": "File not found"}, status=404)

        content_type, _ = mimetypes.guess_type(file_name)
        response = FileResponse(
            open(path, "rb"),
            as_attachment=True,
            filename=file_name,
            content_type=content_type or "application/octet-stream",
        )
        if job.audio_removed:
            response["X-Audio-Removed"] = "true"
        return response
