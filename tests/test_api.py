from datetime import timedelta
from unittest import mock

import pytest
from django.core.files.uploadedfile import SimpleUploadedFile
from django.urls import reverse
from django.utils import timezone
from rest_framework.test import APIClient

from conversions import store
from conversions.errors import PersistenceError
from conversions.models import ConversionJob
from conversions.options import StepKind, StepResult
from conversions.utils import staged_input_path

Status = ConversionJob.Status

pytestmark = pytest.mark.django_db


@pytest.fixture
def client():
    return APIClient()


def _video(name="holiday.mp4", size=1024):
    return SimpleUploadedFile(name, b"\0" * size, content_type="video/mp4")


def _upload(client, **data):
    data.setdefault("file", _video())
    return client.post(reverse("upload_create_job"), data, format="multipart")


def _completed(claimed_job, settings, results):
    job = claimed_job(remove_audio=True)
    results = [
        StepResult(kind, name.format(id=job.id), size, format=fmt)
        for kind, name, size, fmt in results
    ]
    for result in results:
        (settings.MEDIA_ROOT / result.file_name).write_bytes(b"x" * result.file_size)
    store.transition_status(job.id, Status.COMPLETED, results=results)
    return store.get_job(job.id)


# ----------------------------------------------------------------------
# Upload
# ----------------------------------------------------------------------
def test_upload_creates_pending_job_and_stages_input(client):
    resp = _upload(client, compress="true", resolution="720p", convert="true", formats=["webm", "mov"])

    assert resp.status_code == 202
    job = store.get_job(resp.json()["job_id"])
    assert job.status == Status.PENDING
    assert job.original_file_name == "holiday.mp4"
    assert job.original_file_size == 1024
    options = job.pipeline_options()
    assert options.compress and options.resolution == "720p"
    assert options.formats == ("webm", "mov")
    assert options.video_extension == "mp4"
    assert staged_input_path(job.id, "mp4").stat().st_size == 1024


def test_upload_accepts_comma_separated_formats(client):
    resp = _upload(client, convert="true", formats="WEBM, avi,webm")

    assert resp.status_code == 202
    job = store.get_job(resp.json()["job_id"])
    assert job.pipeline_options().formats == ("webm", "avi")


@pytest.mark.parametrize(
    "data",
    [
        {},
        {"compress": "true"},
        {"compress": "true", "resolution": "custom"},
        {"convert": "true"},
        {"convert": "true", "formats": "flv"},
        {"generatePoster": "true", "posterFormat": "gif"},
        {"removeAudio": "true", "file": SimpleUploadedFile("notes.txt", b"hello", content_type="text/plain")},
    ],
)
def test_rejected_upload_writes_nothing(client, settings, data):
    resp = _upload(client, **data)

    assert resp.status_code == 400
    assert ConversionJob.objects.count() == 0
    assert list(settings.SCRATCH_ROOT.iterdir()) == []


def test_upload_over_size_limit_is_rejected(client, settings):
    settings.MAX_UPLOAD_SIZE = 100

    resp = _upload(client, removeAudio="true", file=_video(size=101))

    assert resp.status_code == 400
    assert ConversionJob.objects.count() == 0


def test_store_failure_removes_staged_input(client, settings):
    with mock.patch.object(store, "create_job", side_effect=PersistenceError("db down")):
        resp = _upload(client, removeAudio="true")

    assert resp.status_code == 500
    assert list(settings.SCRATCH_ROOT.iterdir()) == []


# ----------------------------------------------------------------------
# Status
# ----------------------------------------------------------------------
def test_pending_status(client, make_job):
    job = make_job()

    resp = client.get(reverse("job_detail", kwargs={"job_id": job.id}))

    assert resp.status_code == 200
    assert resp.json() == {"status": "pending", "progress": 0, "initialSize": 4096}


def test_completed_status_lists_artifacts(client, claimed_job, settings):
    job = _completed(claimed_job, settings, [
        (StepKind.AUDIO_REMOVED, "{id}-noaudio.mp4", 10, None),
        (StepKind.CONVERTED, "{id}-1.webm", 20, "webm"),
        (StepKind.POSTER, "{id}-poster.png", 30, None),
    ])

    body = client.get(reverse("job_detail", kwargs={"job_id": job.id})).json()

    assert body["status"] == "completed"
    assert body["progress"] == 100
    assert body["finalSize"] == 60
    assert [r["kind"] for r in body["stepResults"]] == ["audio_removed", "converted", "poster"]
    converted = body["stepResults"][1]
    assert converted["format"] == "webm"
    assert converted["downloadRef"] == f"http://testserver/api/files/{job.id}-1.webm"
    assert body["files"][0]["fileName"] == f"{job.id}-1.webm"
    assert body["compressed"] is None
    assert body["poster"]["fileSize"] == 30
    assert body["audioRemovedFile"]["fileName"] == f"{job.id}-noaudio.mp4"


def test_failed_status_reports_error(client, claimed_job):
    job = claimed_job()
    store.transition_status(job.id, Status.FAILED, error="compress failed: bad codec")

    body = client.get(reverse("job_detail", kwargs={"job_id": job.id})).json()

    assert body == {"status": "failed", "error": "compress failed: bad codec"}


def test_unknown_job_is_404(client):
    resp = client.get("/api/jobs/00000000-0000-0000-0000-000000000000/")

    assert resp.status_code == 404


# ----------------------------------------------------------------------
# Download
# ----------------------------------------------------------------------
def test_download_streams_artifact(client, claimed_job, settings):
    job = _completed(claimed_job, settings, [(StepKind.AUDIO_REMOVED, "{id}-noaudio.mp4", 12, None)])
    name = f"{job.id}-noaudio.mp4"

    resp = client.get(reverse("artifact_download", kwargs={"file_name": name}))

    assert resp.status_code == 200
    assert b"".join(resp.streaming_content) == b"x" * 12
    assert "attachment" in resp["Content-Disposition"]
    assert resp["X-Audio-Removed"] == "true"
    resp.close()


def test_expired_download_is_gone(client, claimed_job, settings):
    job = _completed(claimed_job, settings, [(StepKind.POSTER, "{id}-poster.png", 5, None)])
    ConversionJob.objects.filter(pk=job.id).update(expires_at=timezone.now() - timedelta(minutes=1))

    resp = client.get(reverse("artifact_download", kwargs={"file_name": f"{job.id}-poster.png"}))

    assert resp.status_code == 410


@pytest.mark.parametrize("suffix", ["-poster.jpg", "-noaudio.mp4"])
def test_download_of_file_not_owned_by_job_is_404(client, claimed_job, settings, suffix):
    job = _completed(claimed_job, settings, [(StepKind.POSTER, "{id}-poster.png", 5, None)])
    (settings.MEDIA_ROOT / f"{job.id}{suffix}").write_bytes(b"stray")

    resp = client.get(reverse("artifact_download", kwargs={"file_name": f"{job.id}{suffix}"}))

    assert resp.status_code == 404


def test_download_of_unfinished_job_is_404(client, claimed_job, settings):
    job = claimed_job()
    (settings.MEDIA_ROOT / f"{job.id}.mp4").write_bytes(b"partial")

    resp = client.get(reverse("artifact_download", kwargs={"file_name": f"{job.id}.mp4"}))

    assert resp.status_code == 404


def test_download_with_garbage_name_is_404(client):
    resp = client.get(reverse("artifact_download", kwargs={"file_name": "not-a-job.mp4"}))

    assert resp.status_code == 404
