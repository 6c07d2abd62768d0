from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .errors import InputError

RESOLUTION_PRESETS = {
    "1080p": (1920, 1080),
    "720p": (1280, 720),
    "480p": (854, 480),
}
CUSTOM_RESOLUTION = "custom"
RESOLUTIONS = (*RESOLUTION_PRESETS, CUSTOM_RESOLUTION)

CONTAINER_FORMATS = ("mp4", "webm", "avi", "mov", "mkv")
POSTER_FORMATS = ("png", "jpg", "jpeg")

DEFAULT_POSTER_FORMAT = "png"
DEFAULT_POSTER_TIME = 1.0
DEFAULT_VIDEO_EXTENSION = "mp4"


class StepKind(str, Enum):
    AUDIO_REMOVED = "audio_removed"
    COMPRESSED = "compressed"
    CONVERTED = "converted"
    POSTER = "poster"


@dataclass(frozen=True)
class StepResult:
    kind: StepKind
    file_name: str
    file_size: int
    format: Optional[str] = None


@dataclass(frozen=True)
class PipelineOptions:
    """
    Operations requested for one job. Immutable once the job is created.
    """
    remove_audio: bool = False
    compress: bool = False
    resolution: Optional[str] = None
    width: Optional[int] = None
    convert: bool = False
    formats: Tuple[str, ...] = field(default_factory=tuple)
    generate_poster: bool = False
    poster_format: str = DEFAULT_POSTER_FORMAT
    poster_time: float = DEFAULT_POSTER_TIME
    video_extension: str = DEFAULT_VIDEO_EXTENSION

    def __post_init__(self):
        # lists coming from JSON or serializers are frozen here
        object.__setattr__(self, "formats", tuple(self.formats or ()))
        self.validate()

    def validate(self) -> None:
        if not self.has_operation:
            raise InputError("At least one operation must be enabled")
        if self.compress:
            if self.resolution not in RESOLUTIONS:
                raise InputError(f"Unsupported resolution: {self.resolution!r}")
            if self.resolution == CUSTOM_RESOLUTION and (
                not isinstance(self.width, int) or isinstance(self.width, bool) or self.width <= 0
            ):
                raise InputError("Custom resolution requires a positive numeric width")
        if self.convert:
            if not self.formats:
                raise InputError("Conversion requires at least one format")
            bad = [f for f in self.formats if f not in CONTAINER_FORMATS]
            if bad:
                raise InputError(f"Unsupported formats: {bad}")
        if self.generate_poster:
            if self.poster_format not in POSTER_FORMATS:
                raise InputError(f"Unsupported poster format: {self.poster_format!r}")
            if self.poster_time < 0:
                raise InputError("Poster time must not be negative")

    @property
    def has_operation(self) -> bool:
        return self.remove_audio or self.compress or self.convert or self.generate_poster

    def to_dict(self) -> Dict[str, Any]:
        return {
            "removeAudio": self.remove_audio,
            "compress": self.compress,
            "resolution": self.resolution,
            "width": self.width,
            "convert": self.convert,
            "formats": list(self.formats),
            "generatePoster": self.generate_poster,
            "posterFormat": self.poster_format,
            "posterTime": self.poster_time,
            "videoExtension": self.video_extension,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PipelineOptions":
        if not isinstance(data, dict):
            raise InputError("Options must be a JSON object")
        try:
            width = data.get("width")
            return cls(
                remove_audio=bool(data.get("removeAudio", False)),
                compress=bool(data.get("compress", False)),
                resolution=data.get("resolution"),
                width=int(width) if width not in (None, "") else None,
                convert=bool(data.get("convert", False)),
                formats=tuple(data.get("formats") or ()),
                generate_poster=bool(data.get("generatePoster", False)),
                poster_format=data.get("posterFormat") or DEFAULT_POSTER_FORMAT,
                poster_time=float(data.get("posterTime", DEFAULT_POSTER_TIME)),
                video_extension=data.get("videoExtension") or DEFAULT_VIDEO_EXTENSION,
            )
        except (TypeError, ValueError) as e:
            raise InputError(f"Invalid options format: {e}") from e
