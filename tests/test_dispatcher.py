from datetime import timedelta
from unittest import mock

import pytest
from django.utils import timezone

from conversions import store
from conversions.dispatcher import DispatchOutcome, Dispatcher
from conversions.errors import PersistenceError
from conversions.models import ConversionJob
from conversions.pipeline import PipelineExecutor

Status = ConversionJob.Status


class RecordingExecutor(PipelineExecutor):
    """Remembers which job ran and what the store looked like at that moment."""

    def __init__(self, transcoder):
        super().__init__(transcoder=transcoder, sleep=lambda _s: None)
        self.executed = []

    def execute(self, job):
        snapshot = dict(ConversionJob.objects.values_list("id", "status"))
        self.executed.append((job.id, snapshot))
        return super().execute(job)


@pytest.fixture
def executor(transcoder):
    return RecordingExecutor(transcoder)


@pytest.mark.django_db
def test_idle_when_nothing_pending(executor):
    assert Dispatcher(executor=executor, poll_interval=0).run_once() is DispatchOutcome.IDLE
    assert executor.executed == []


@pytest.mark.django_db
def test_oldest_job_runs_to_completion_before_next_claim(make_job, executor):
    now = timezone.now()
    job_b = make_job(created_at=now + timedelta(seconds=1), remove_audio=True)
    job_a = make_job(created_at=now, remove_audio=True)
    dispatcher = Dispatcher(executor=executor, poll_interval=0)

    assert dispatcher.run_once() is DispatchOutcome.PROCESSED
    assert store.get_job(job_a.id).status == Status.COMPLETED
    assert store.get_job(job_b.id).status == Status.PENDING

    assert dispatcher.run_once() is DispatchOutcome.PROCESSED
    assert dispatcher.run_once() is DispatchOutcome.IDLE

    (first_id, first_snapshot), (second_id, second_snapshot) = executor.executed
    assert (first_id, second_id) == (job_a.id, job_b.id)
    assert first_snapshot[job_a.id] == Status.PROCESSING
    assert first_snapshot[job_b.id] == Status.PENDING
    assert second_snapshot[job_a.id] == Status.COMPLETED


@pytest.mark.django_db
def test_lost_claim_is_not_executed(make_job, executor):
    make_job()

    with mock.patch.object(store, "claim_job", return_value=False):
        outcome = Dispatcher(executor=executor, poll_interval=0).run_once()

    assert outcome is DispatchOutcome.CLAIM_LOST
    assert executor.executed == []


@pytest.mark.django_db
def test_two_workers_never_share_a_job(make_job, transcoder):
    job = make_job(remove_audio=True)
    first, second = RecordingExecutor(transcoder), RecordingExecutor(transcoder)

    with mock.patch.object(store, "next_pending_job_id", return_value=job.id):
        assert Dispatcher(executor=first, poll_interval=0).run_once() is DispatchOutcome.PROCESSED
        assert Dispatcher(executor=second, poll_interval=0).run_once() is DispatchOutcome.CLAIM_LOST

    assert len(first.executed) == 1
    assert second.executed == []


@pytest.mark.django_db(transaction=True)
def test_failed_job_does_not_stop_the_worker(make_job, transcoder):
    transcoder.fail_steps = {"remove_audio"}
    failing = make_job(created_at=timezone.now() - timedelta(seconds=1), remove_audio=True)
    healthy = make_job(generate_poster=True)
    dispatcher = Dispatcher(executor=RecordingExecutor(transcoder), poll_interval=0)

    dispatcher.run_forever(max_cycles=3)

    assert store.get_job(failing.id).status == Status.FAILED
    assert store.get_job(healthy.id).status == Status.COMPLETED


@pytest.mark.django_db
def test_loop_survives_errors_and_sleeps():
    dispatcher = Dispatcher(executor=mock.Mock(), poll_interval=0)
    outcomes = [RuntimeError("boom"), PersistenceError("db away"), DispatchOutcome.IDLE, DispatchOutcome.PROCESSED]

    with mock.patch.object(dispatcher, "run_once", side_effect=outcomes) as run_once, \
            mock.patch.object(dispatcher, "_sleep") as sleep:
        dispatcher.run_forever(max_cycles=4)

    assert run_once.call_count == 4
    # two errors and one idle poll
    assert sleep.call_count == 3


@pytest.mark.django_db
def test_claim_lost_polls_again_without_sleeping():
    dispatcher = Dispatcher(executor=mock.Mock(), poll_interval=0)

    with mock.patch.object(dispatcher, "run_once", return_value=DispatchOutcome.CLAIM_LOST), \
            mock.patch.object(dispatcher, "_sleep") as sleep:
        dispatcher.run_forever(max_cycles=5)

    sleep.assert_not_called()


@pytest.mark.django_db
def test_stop_ends_the_loop():
    dispatcher = Dispatcher(executor=mock.Mock(), poll_interval=60)

    def stop_after_first_poll():
        dispatcher.stop()
        return DispatchOutcome.IDLE

    with mock.patch.object(dispatcher, "run_once", side_effect=stop_after_first_poll) as run_once:
        dispatcher.run_forever()

    assert run_once.call_count == 1
    assert dispatcher.stopping
