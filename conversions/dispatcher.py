import threading
from enum import Enum
from typing import Optional

from django.conf import settings
from django.db import close_old_connections

from video_converter.logger import get_logger

from . import store
from .errors import PersistenceError
from .pipeline import PipelineExecutor

logger = get_logger(__name__)


class DispatchOutcome(Enum):
    IDLE = "idle"
    CLAIM_LOST = "claim_lost"
    PROCESSED = "processed"


class Dispatcher:
    """
    Polling worker loop. Claims the oldest pending job and runs it to a
    terminal state before polling again; one job at a time per process.
    """

    def __init__(self, executor: Optional[PipelineExecutor] = None, poll_interval: Optional[float] = None):
        self.executor = executor or PipelineExecutor()
        self.poll_interval = settings.DISPATCH_POLL_INTERVAL if poll_interval is None else poll_interval
        self._stop_event = threading.Event()

    def stop(self) -> None:
        self._stop_event.set()

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def run_once(self) -> DispatchOutcome:
        job_id = store.next_pending_job_id()
        if job_id is None:
            return DispatchOutcome.IDLE

        if not store.claim_job(job_id):
            logger.info("Job claimed by another worker", job_id=str(job_id))
            return DispatchOutcome.CLAIM_LOST

        job = store.get_job(job_id)
        status = self.executor.execute(job)
        logger.info("Job finished", job_id=str(job_id), status=str(status))
        return DispatchOutcome.PROCESSED

    def run_forever(self, max_cycles: Optional[int] = None) -> None:
        logger.info("Dispatcher started", poll_interval=self.poll_interval)
        cycles = 0
        while not self.stopping:
            if max_cycles is not None and cycles >= max_cycles:
                break
            cycles += 1

            try:
                close_old_connections()
                outcome = self.run_once()
            except PersistenceError as e:
                logger.error("Job store error in dispatcher loop", error=str(e), exc_info=True)
                self._sleep()
                continue
            except Exception:
                logger.exception("Unexpected error in dispatcher loop")
                self._sleep()
                continue

            if outcome is DispatchOutcome.IDLE:
                logger.debug("No pending jobs, sleeping", seconds=self.poll_interval)
                self._sleep()

        logger.info("Dispatcher stopped", cycles=cycles)

    def _sleep(self) -> None:
        # returns early when stop() is called
        self._stop_event.wait(self.poll_interval)
