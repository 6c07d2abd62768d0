"""
Pipeline executor: runs the enabled steps of one claimed job and writes its
terminal state.

Steps always run in this order::

    remove_audio -> compress -> convert (one output per format) -> poster

remove_audio and compress produce the new working file for every later
step. convert and poster read the working file but never replace it.
"""
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from django.conf import settings

from video_converter.logger import get_logger

from . import store
from .errors import InputError, PersistenceError, StorageError, TranscodeError
from .models import ConversionJob
from .options import RESOLUTION_PRESETS, PipelineOptions, StepKind, StepResult
from .transcoder import FFmpegTranscoder, Transcoder
from .utils import remove_tree, scratch_dir_for, staged_input_path

logger = get_logger(__name__)

Status = ConversionJob.Status

PROGRESS_PER_STEP = 20
FALLBACK_ASPECT_RATIO = 16 / 9


@dataclass
class JobRun:
    """State of a single execution of one job. Created fresh for every claim."""
    job_id: str
    options: PipelineOptions
    input_path: Path
    scratch_dir: Path
    media_root: Path
    progress: int = 0
    results: list = field(default_factory=list)
    produced: list = field(default_factory=list)
    _last_stamp: int = 0

    def output_path(self, file_name: str) -> Path:
        path = self.media_root / file_name
        # registered before the transcoder runs so partial output is also discarded on failure
        self.produced.append(path)
        return path

    def next_disambiguator(self) -> int:
        stamp = time.time_ns() // 1000
        self._last_stamp = max(stamp, self._last_stamp + 1)
        return self._last_stamp


@dataclass(frozen=True)
class StepOutcome:
    results: tuple
    working_file: Optional[Path] = None


class PipelineExecutor:
    def __init__(self, transcoder: Optional[Transcoder] = None, sleep: Callable[[float], None] = time.sleep):
        self.transcoder = transcoder or FFmpegTranscoder()
        self._sleep = sleep

    def build_run(self, job: ConversionJob) -> JobRun:
        job_id = str(job.id)
        options = job.pipeline_options()
        input_path = staged_input_path(job_id, options.video_extension)
        if not input_path.is_file():
            raise StorageError("Input file not found")

        media_root = Path(settings.MEDIA_ROOT)
        try:
            media_root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Media directory unavailable: {e}") from e

        return JobRun(
            job_id=job_id,
            options=options,
            input_path=input_path,
            scratch_dir=input_path.parent,
            media_root=media_root,
        )

    def execute(self, job: ConversionJob) -> str:
        """
        Run a job that the caller has already claimed and record its outcome.

        Returns the terminal status. Unexpected errors fail the job and are
        re-raised; a terminal write that keeps failing raises PersistenceError.
        """
        job_id = str(job.id)
        log = logger.bind(job_id=job_id)
        run = None
        started = time.monotonic()

        try:
            run = self.build_run(job)
            log.info("Starting pipeline", options=run.options.to_dict())
            self.run_steps(run)
        except (TranscodeError, StorageError, InputError) as e:
            log.error("Pipeline failed", error=str(e), step=getattr(e, "step", ""))
            self._fail(job_id, run, str(e))
            return Status.FAILED
        except Exception as e:
            log.exception("Unexpected error while processing job")
            self._fail(job_id, run, f"Internal error: {e}")
            raise

        self._complete(run)
        log.info(
            "Pipeline completed",
            artifacts=len(run.results),
            elapsed=round(time.monotonic() - started, 2),
        )
        return Status.COMPLETED

    def run_steps(self, run: JobRun) -> list[StepResult]:
        options = run.options
        steps = (
            ("remove_audio", options.remove_audio, self._remove_audio),
            ("compress", options.compress, self._compress),
            ("convert", options.convert, self._convert),
            ("poster", options.generate_poster, self._generate_poster),
        )

        working_file = run.input_path
        for name, enabled, step in steps:
            if not enabled:
                continue
            logger.info("Starting step", job_id=run.job_id, step=name, input=working_file.name)
            try:
                outcome = step(run, working_file)
            except OSError as e:
                raise StorageError(f"{name} failed: {e}") from e

            run.results.extend(outcome.results)
            if outcome.working_file is not None:
                working_file = outcome.working_file

            run.progress += PROGRESS_PER_STEP
            self._report_progress(run)

        return run.results

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------
    def _remove_audio(self, run: JobRun, working_file: Path) -> StepOutcome:
        target = run.output_path(f"{run.job_id}-noaudio.{run.options.video_extension}")
        output = self.transcoder.remove_audio(working_file, target)
        result = StepResult(StepKind.AUDIO_REMOVED, output.path.name, output.size_bytes)
        return StepOutcome(results=(result,), working_file=output.path)

    def _compress(self, run: JobRun, working_file: Path) -> StepOutcome:
        width, height = self.compression_size(run.options, working_file)
        target = run.output_path(f"{run.job_id}.{run.options.video_extension}")
        output = self.transcoder.compress(working_file, target, width, height)
        result = StepResult(StepKind.COMPRESSED, output.path.name, output.size_bytes)
        return StepOutcome(results=(result,), working_file=output.path)

    def _convert(self, run: JobRun, working_file: Path) -> StepOutcome:
        results = []
        for fmt in run.options.formats:
            target = run.output_path(f"{run.job_id}-{run.next_disambiguator()}.{fmt}")
            output = self.transcoder.convert(working_file, target, fmt)
            results.append(StepResult(StepKind.CONVERTED, output.path.name, output.size_bytes, format=fmt))
            logger.info("Converted", job_id=run.job_id, format=fmt, file_name=output.path.name)
        return StepOutcome(results=tuple(results))

    def _generate_poster(self, run: JobRun, working_file: Path) -> StepOutcome:
        target = run.output_path(f"{run.job_id}-poster.{run.options.poster_format}")
        output = self.transcoder.capture_frame(working_file, target, run.options.poster_time)
        result = StepResult(StepKind.POSTER, output.path.name, output.size_bytes)
        return StepOutcome(results=(result,))

    def compression_size(self, options: PipelineOptions, input_path: Path) -> tuple[int, int]:
        if options.resolution in RESOLUTION_PRESETS:
            return RESOLUTION_PRESETS[options.resolution]

        try:
            ratio = self.transcoder.probe_aspect_ratio(input_path)
        except TranscodeError as e:
            logger.warning(
                "Aspect ratio probe failed, assuming 16:9",
                input=input_path.name,
                error=str(e),
            )
            ratio = FALLBACK_ASPECT_RATIO
        return options.width, round(options.width / ratio)

    # ------------------------------------------------------------------
    # Finalization
    # ------------------------------------------------------------------
    def _report_progress(self, run: JobRun) -> None:
        if not store.update_progress(run.job_id, run.progress):
            logger.debug("Progress not advanced", job_id=run.job_id, progress=run.progress)

    def _complete(self, run: JobRun) -> None:
        self._clean_scratch(run.scratch_dir, run.job_id)
        self._write_terminal(run.job_id, Status.COMPLETED, results=run.results)

    def _fail(self, job_id: str, run: Optional[JobRun], message: str) -> None:
        if run is not None:
            self._discard_artifacts(run)
        self._clean_scratch(scratch_dir_for(job_id), job_id)
        self._write_terminal(job_id, Status.FAILED, error=message)

    def _discard_artifacts(self, run: JobRun) -> None:
        for path in run.produced:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("Could not discard partial artifact", job_id=run.job_id, path=str(path), error=str(e))
        if run.produced:
            logger.info("Discarded partial artifacts", job_id=run.job_id, count=len(run.produced))

    def _clean_scratch(self, scratch_dir: Path, job_id: str) -> None:
        if not remove_tree(scratch_dir):
            logger.warning("Could not clean scratch directory", job_id=job_id, path=str(scratch_dir))

    def _write_terminal(self, job_id: str, status: str, **payload) -> None:
        attempts = max(1, settings.TERMINAL_WRITE_ATTEMPTS)
        for attempt in range(attempts):
            try:
                store.transition_status(job_id, status, **payload)
                return
            except PersistenceError as e:
                if attempt == attempts - 1:
                    logger.error(
                        "Terminal status write failed after all retries",
                        job_id=job_id,
                        status=status,
                        error=str(e),
                    )
                    raise
                logger.warning(
                    "Terminal status write failed, retrying",
                    job_id=job_id,
                    status=status,
                    attempt=attempt + 1,
                    error=str(e),
                )
                self._sleep(settings.TERMINAL_WRITE_BACKOFF * 2**attempt)
