"""Exceptions raised by the conversion core"""


class ConversionError(Exception):
    """Base exception for conversion job errors"""


class InputError(ConversionError):
    """Invalid options or unsupported upload, rejected before a job exists"""


class TranscodeError(ConversionError):
    """The transcoder failed, timed out, or produced unusable output"""

    def __init__(self, message: str, step: str = ""):
        super().__init__(message)
        self.step = step


class StorageError(ConversionError):
    """Filesystem failure while staging, producing or removing files"""


class PersistenceError(ConversionError):
    """Job store write or read failed"""


class DuplicateJobError(PersistenceError):
    """A job with the same id already exists"""


class JobNotFound(ConversionError):
    """No job with the given id"""


class InvalidTransitionError(ConversionError):
    """The job is not in a state that allows the requested transition"""

    def __init__(self, job_id: str, target: str, current: str = ""):
        detail = f" (current: {current})" if current else ""
        super().__init__(f"Job {job_id} cannot move to {target}{detail}")
        self.job_id = job_id
        self.target = target
        self.current = current
