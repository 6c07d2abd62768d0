import mimetypes
import os
import shutil
from pathlib import Path

from django.conf import settings

from .errors import InputError, StorageError
from .options import CONTAINER_FORMATS


def scratch_dir_for(job_id) -> Path:
    return Path(settings.SCRATCH_ROOT) / str(job_id)


def staged_input_path(job_id, extension: str) -> Path:
    """SCRATCH_ROOT/<job_id>/<job_id>.<ext>"""
    return scratch_dir_for(job_id) / f"{job_id}.{extension}"


def guess_kind(path: str) -> str:
    """Return 'image' | 'video' | 'other' based on mimetype/extension."""
    mime, _ = mimetypes.guess_type(path)
    if not mime:
        # mimetypes has no entry for mkv on some platforms
        return "video" if video_extension(path) in CONTAINER_FORMATS else "other"
    if mime.startswith("image/"):
        return "image"
    if mime.startswith("video/"):
        return "video"
    return "other"


def video_extension(name: str) -> str:
    return Path(name).suffix.lower().lstrip(".")


def save_uploaded_file(djangofile, job_id) -> Path:
    """Stage an upload at SCRATCH_ROOT/<job_id>/<job_id>.<ext> and return the path."""
    name = os.path.basename(djangofile.name or "")
    if guess_kind(name) != "video":
        raise InputError(f"Unsupported file type: {name or 'unnamed upload'}")

    dest = staged_input_path(job_id, video_extension(name))
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        with open(dest, "wb") as f:
            for chunk in djangofile.chunks():
                f.write(chunk)
    except OSError as e:
        remove_tree(dest.parent)
        raise StorageError(f"Could not stage upload for job {job_id}: {e}") from e
    return dest


def remove_tree(path: Path) -> bool:
    """Delete a directory tree. Returns False when it could not be removed."""
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        return True
    except OSError:
        return False
    return True
