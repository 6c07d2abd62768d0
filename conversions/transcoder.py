import json
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from django.conf import settings
from PIL import Image, UnidentifiedImageError

from video_converter.logger import get_logger

from .errors import TranscodeError

logger = get_logger(__name__)

# ffmpeg muxer names for the container formats we accept
MUXERS = {
    "mp4": "mp4",
    "webm": "webm",
    "avi": "avi",
    "mov": "mov",
    "mkv": "matroska",
}


@dataclass(frozen=True)
class TranscodeOutput:
    path: Path
    size_bytes: int


class Transcoder(ABC):
    """
    Media engine used by the pipeline. Every call blocks until the output is
    written and either returns it or raises TranscodeError.
    """

    @abstractmethod
    def probe_aspect_ratio(self, input_path: Path) -> float:
        pass

    @abstractmethod
    def remove_audio(self, input_path: Path, output_path: Path) -> TranscodeOutput:
        pass

    @abstractmethod
    def compress(self, input_path: Path, output_path: Path, width: int, height: int) -> TranscodeOutput:
        pass

    @abstractmethod
    def convert(self, input_path: Path, output_path: Path, fmt: str) -> TranscodeOutput:
        pass

    @abstractmethod
    def capture_frame(self, input_path: Path, output_path: Path, at_seconds: float) -> TranscodeOutput:
        pass


class FFmpegTranscoder(Transcoder):
    def __init__(
        self,
        ffmpeg_bin: Optional[str] = None,
        ffprobe_bin: Optional[str] = None,
        timeout: Optional[int] = None,
        min_output_bytes: Optional[int] = None,
        poster_size: Optional[str] = None,
    ):
        self.ffmpeg_bin = ffmpeg_bin or settings.FFMPEG_BIN
        self.ffprobe_bin = ffprobe_bin or settings.FFPROBE_BIN
        self.timeout = timeout or settings.TRANSCODE_STEP_TIMEOUT
        self.min_output_bytes = (
            settings.TRANSCODE_MIN_OUTPUT_BYTES if min_output_bytes is None else min_output_bytes
        )
        self.poster_size = poster_size or settings.POSTER_SIZE

    def _run(self, cmd: list[str], step: str) -> subprocess.CompletedProcess:
        logger.debug("Running transcoder command", step=step, cmd=" ".join(cmd))
        try:
            return subprocess.run(
                cmd, check=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE, timeout=self.timeout
            )
        except subprocess.TimeoutExpired as e:
            raise TranscodeError(f"{step} timed out after {self.timeout}s", step=step) from e
        except subprocess.CalledProcessError as e:
            err = e.stderr.decode("utf-8", errors="ignore") if e.stderr else str(e)
            raise TranscodeError(f"{step} failed: {err[-2000:].strip()}", step=step) from e
        except OSError as e:
            # binary missing or not executable
            raise TranscodeError(f"{step} could not start {cmd[0]}: {e}", step=step) from e

    def _finalize(self, output_path: Path, step: str) -> TranscodeOutput:
        try:
            size = output_path.stat().st_size
        except FileNotFoundError as e:
            raise TranscodeError(f"{step} produced no output at {output_path.name}", step=step) from e
        if size < self.min_output_bytes:
            raise TranscodeError(
                f"{step} output {output_path.name} is implausibly small ({size} bytes)", step=step
            )
        logger.info("Transcoder output ready", step=step, path=str(output_path), size=size)
        return TranscodeOutput(path=output_path, size_bytes=size)

    def probe_aspect_ratio(self, input_path: Path) -> float:
        cmd = [
            self.ffprobe_bin,
            "-v", "error",
            "-select_streams", "v:0",
            "-show_entries", "stream=width,height",
            "-of", "json",
            str(input_path),
        ]
        proc = self._run(cmd, "probe")
        try:
            streams = json.loads(proc.stdout.decode("utf-8", errors="ignore")).get("streams") or []
            width, height = int(streams[0]["width"]), int(streams[0]["height"])
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise TranscodeError(f"No video stream found in {input_path.name}", step="probe") from e
        if width <= 0 or height <= 0:
            raise TranscodeError(f"Invalid dimensions {width}x{height}", step="probe")
        return width / height

    def remove_audio(self, input_path: Path, output_path: Path) -> TranscodeOutput:
        cmd = [
            self.ffmpeg_bin,
            "-y",
            "-i", str(input_path),
            "-an",
            "-c:v", "copy",
            str(output_path),
        ]
        self._run(cmd, "remove_audio")
        return self._finalize(output_path, "remove_audio")

    def compress(self, input_path: Path, output_path: Path, width: int, height: int) -> TranscodeOutput:
        cmd = [
            self.ffmpeg_bin,
            "-y",
            "-i", str(input_path),
            "-vf", f"scale={width}:{height}",
            "-c:v", "libx264",
            "-preset", "veryfast",
            "-crf", "23",
            "-c:a", "aac",
            "-b:a", "128k",
            str(output_path),
        ]
        self._run(cmd, "compress")
        return self._finalize(output_path, "compress")

    def convert(self, input_path: Path, output_path: Path, fmt: str) -> TranscodeOutput:
        muxer = MUXERS.get(fmt)
        if muxer is None:
            raise TranscodeError(f"Unsupported output format: {fmt}", step="convert")
        cmd = [
            self.ffmpeg_bin,
            "-y",
            "-i", str(input_path),
            "-f", muxer,
            str(output_path),
        ]
        self._run(cmd, "convert")
        return self._finalize(output_path, "convert")

    def capture_frame(self, input_path: Path, output_path: Path, at_seconds: float) -> TranscodeOutput:
        width, _, height = self.poster_size.partition("x")
        cmd = [
            self.ffmpeg_bin,
            "-y",
            "-ss", f"{at_seconds:g}",
            "-i", str(input_path),
            "-frames:v", "1",
            "-vf", f"scale={width}:{height}",
            str(output_path),
        ]
        self._run(cmd, "poster")
        output = self._finalize(output_path, "poster")
        verify_image(output_path)
        return output


def verify_image(path: Path) -> None:
    """Raise TranscodeError unless ``path`` is a decodable image."""
    try:
        with Image.open(path) as img:
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise TranscodeError(f"Poster {path.name} is not a valid image: {e}", step="poster") from e
