import uuid
from pathlib import Path

import pytest

from conversions import store
from conversions.errors import TranscodeError
from conversions.models import ConversionJob
from conversions.options import PipelineOptions
from conversions.transcoder import Transcoder, TranscodeOutput
from conversions.utils import staged_input_path


class FakeTranscoder(Transcoder):
    """Writes small placeholder files and records every call."""

    def __init__(self, aspect_ratio=16 / 9, probe_fails=False, fail_steps=(), fail_formats=(), output_size=2048):
        self.aspect_ratio = aspect_ratio
        self.probe_fails = probe_fails
        self.fail_steps = set(fail_steps)
        self.fail_formats = set(fail_formats)
        self.output_size = output_size
        self.calls = []

    def _produce(self, step, input_path, output_path, **params):
        self.calls.append({"step": step, "input": Path(input_path), "output": Path(output_path), **params})
        if step in self.fail_steps or params.get("fmt") in self.fail_formats:
            output_path.write_bytes(b"partial")
            raise TranscodeError(f"{step} exploded", step=step)
        output_path.write_bytes(b"\0" * self.output_size)
        return TranscodeOutput(path=output_path, size_bytes=self.output_size)

    def probe_aspect_ratio(self, input_path):
        self.calls.append({"step": "probe", "input": Path(input_path)})
        if self.probe_fails:
            raise TranscodeError("No video stream found", step="probe")
        return self.aspect_ratio

    def remove_audio(self, input_path, output_path):
        return self._produce("remove_audio", input_path, output_path)

    def compress(self, input_path, output_path, width, height):
        return self._produce("compress", input_path, output_path, width=width, height=height)

    def convert(self, input_path, output_path, fmt):
        return self._produce("convert", input_path, output_path, fmt=fmt)

    def capture_frame(self, input_path, output_path, at_seconds):
        return self._produce("poster", input_path, output_path, at_seconds=at_seconds)

    def steps(self):
        return [c["step"] for c in self.calls]

    def call(self, step):
        return next(c for c in self.calls if c["step"] == step)


@pytest.fixture(autouse=True)
def media_dirs(settings, tmp_path):
    settings.MEDIA_ROOT = tmp_path / "media"
    settings.SCRATCH_ROOT = tmp_path / "scratch"
    settings.MEDIA_ROOT.mkdir()
    settings.SCRATCH_ROOT.mkdir()
    settings.TERMINAL_WRITE_BACKOFF = 0
    settings.DISPATCH_POLL_INTERVAL = 0
    return settings


@pytest.fixture
def transcoder():
    return FakeTranscoder()


@pytest.fixture
def make_job(db, media_dirs):
    def _make(created_at=None, stage=True, **options):
        opts = PipelineOptions(**(options or {"compress": True, "resolution": "720p"}))
        job = store.create_job(str(uuid.uuid4()), "clip.mp4", 4096, opts)
        if created_at is not None:
            ConversionJob.objects.filter(pk=job.id).update(created_at=created_at)
        if stage:
            path = staged_input_path(job.id, opts.video_extension)
            path.parent.mkdir(parents=True)
            path.write_bytes(b"\0" * 4096)
        return store.get_job(job.id)

    return _make


@pytest.fixture
def claimed_job(make_job):
    def _make(**options):
        job = make_job(**options)
        assert store.claim_job(job.id)
        return store.get_job(job.id)

    return _make
