"""
Tests for the render job queue.
"""

import asyncio

import pytest

from conftest import FakeRenderBackend, make_request
from vidwizard.automation.automation_models import JobStatus, QueueSnapshot, RenderJob
from vidwizard.automation.queue_store import InMemoryQueueStore, JsonFileQueueStore, QueueStore
from vidwizard.automation.render_queue import RenderJobQueue
from vidwizard.utils.config import QueueConfig
from vidwizard.utils.errors import InvariantViolation


def make_queue(backend, max_concurrent=2, store=None, clock=None, **overrides):
    config = QueueConfig(max_concurrent=max_concurrent, backoff_base_seconds=0.0, **overrides)
    kwargs = {"store": store, "config": config}
    if clock is not None:
        kwargs["clock"] = clock
    return RenderJobQueue(backend, **kwargs)


def tick(queue):
    asyncio.run(queue.tick())


def statuses(queue):
    return [job.status for job in queue.jobs]


class TestEnqueue:

    def test_fills_free_slots_then_queues(self, backend):
        queue = make_queue(backend, max_concurrent=2)
        for name in ("A", "B", "C"):
            queue.enqueue(make_request(name))

        assert statuses(queue) == [JobStatus.PROCESSING, JobStatus.PROCESSING, JobStatus.QUEUED]
        assert backend.submitted == []  # enqueue never talks to the backend

    def test_accepts_plain_dict_requests(self, backend):
        queue = make_queue(backend)
        job_id = queue.enqueue({
            "flow_type": "multi-image",
            "name": "dict",
            "voiceover_url": "/temp/v.mp3",
            "voiceover_duration": 10,
            "images": [{"image_url": "/temp/a.png", "duration": 5}, {"image_url": "/temp/b.png", "duration": 5}],
        })
        job = queue.get_job(job_id)
        assert job.request.flow_type == "multi-image"
        assert job.name == "dict"

    def test_ids_are_unique(self, backend):
        queue = make_queue(backend)
        ids = {queue.enqueue(make_request(str(i))) for i in range(10)}
        assert len(ids) == 10


class TestReconciliation:

    def test_submit_poll_complete_and_promote(self, backend):
        queue = make_queue(backend, max_concurrent=2)
        a = queue.enqueue(make_request("A"))
        b = queue.enqueue(make_request("B"))
        c = queue.enqueue(make_request("C"))

        tick(queue)
        assert backend.submitted == ["A", "B"]
        assert queue.get_job(a).backend_handle == "h-1"
        assert queue.get_job(b).backend_handle == "h-2"
        assert queue.get_job(c).status == JobStatus.QUEUED

        backend.complete("A")
        tick(queue)
        job_a = queue.get_job(a)
        assert job_a.status == JobStatus.COMPLETED
        assert job_a.progress == 100
        assert job_a.result_url == "http://cdn/A.mp4"
        assert job_a.error is None
        assert queue.get_job(c).status == JobStatus.PROCESSING
        assert queue.get_job(c).backend_handle is None

        tick(queue)
        assert backend.submitted == ["A", "B", "C"]
        assert queue.get_job(c).backend_handle == "h-3"

    def test_submission_failure_frees_slot_in_same_tick(self, backend):
        queue = make_queue(backend, max_concurrent=1)
        backend.fail_submit["A"] = "Invalid image URL"
        a = queue.enqueue(make_request("A"))
        b = queue.enqueue(make_request("B"))

        tick(queue)

        job_a = queue.get_job(a)
        assert job_a.status == JobStatus.FAILED
        assert job_a.error == "Invalid image URL"
        assert job_a.result_url is None
        assert queue.get_job(b).status == JobStatus.PROCESSING
        assert backend.submitted == ["A"]

        tick(queue)
        assert backend.submitted == ["A", "B"]

    def test_rejection_without_message_still_records_an_error(self, backend):
        queue = make_queue(backend, max_concurrent=1)
        backend.fail_submit["A"] = ""
        a = queue.enqueue(make_request("A"))

        tick(queue)

        job = queue.get_job(a)
        assert job.status == JobStatus.FAILED
        assert job.error == "Render submission rejected"
        assert job.result_url is None

    def test_backend_reported_failure(self, backend):
        queue = make_queue(backend, max_concurrent=1)
        a = queue.enqueue(make_request("A"))
        b = queue.enqueue(make_request("B"))
        tick(queue)

        backend.fail("A", "Out of disk space")
        tick(queue)

        assert queue.get_job(a).status == JobStatus.FAILED
        assert queue.get_job(a).error == "Out of disk space"
        assert queue.get_job(b).status == JobStatus.PROCESSING

    def test_progress_updates_without_status_change(self, backend):
        queue = make_queue(backend)
        a = queue.enqueue(make_request("A"))
        tick(queue)

        backend.progress("A", 40)
        tick(queue)
        assert queue.get_job(a).progress == 40
        assert queue.get_job(a).status == JobStatus.PROCESSING

        # never goes backwards
        backend.progress("A", 25)
        tick(queue)
        assert queue.get_job(a).progress == 40

    def test_completed_without_url_is_a_failure(self, backend):
        from vidwizard.automation.automation_models import BackendJobStatus, BackendStatus

        queue = make_queue(backend)
        a = queue.enqueue(make_request("A"))
        tick(queue)
        backend.statuses["h-1"] = BackendStatus(status=BackendJobStatus.COMPLETED, progress=100)
        tick(queue)

        job = queue.get_job(a)
        assert job.status == JobStatus.FAILED
        assert job.result_url is None
        assert job.error

    def test_poll_errors_are_retried(self, backend):
        queue = make_queue(backend)
        a = queue.enqueue(make_request("A"))
        tick(queue)

        backend.poll_errors["h-1"] = 2
        backend.complete("A")
        tick(queue)
        tick(queue)
        assert queue.get_job(a).status == JobStatus.PROCESSING
        assert queue.get_job(a).error is None

        tick(queue)
        assert queue.get_job(a).status == JobStatus.COMPLETED

    def test_one_failing_record_does_not_affect_others(self, backend):
        class ExplodingBackend(FakeRenderBackend):
            async def poll_status(self, handle):
                if handle == "h-1":
                    raise RuntimeError("boom")
                return await super().poll_status(handle)

        backend = ExplodingBackend()
        queue = make_queue(backend, max_concurrent=2)
        a = queue.enqueue(make_request("A"))
        b = queue.enqueue(make_request("B"))
        tick(queue)

        backend.complete("B")
        tick(queue)

        assert queue.get_job(a).status == JobStatus.PROCESSING
        assert queue.get_job(b).status == JobStatus.COMPLETED

    def test_fifo_promotion(self, backend):
        queue = make_queue(backend, max_concurrent=1)
        first = queue.enqueue(make_request("A"))
        waiting = [queue.enqueue(make_request(name)) for name in ("B", "C", "D")]
        tick(queue)

        backend.complete("A")
        tick(queue)

        assert queue.get_job(first).status == JobStatus.COMPLETED
        assert [queue.get_job(j).status for j in waiting] == [
            JobStatus.PROCESSING, JobStatus.QUEUED, JobStatus.QUEUED
        ]


class TestInvariants:

    def test_concurrency_bound_holds_throughout(self, backend):
        queue = make_queue(backend, max_concurrent=3)
        names = [f"job{i}" for i in range(12)]
        for name in names:
            queue.enqueue(make_request(name))

        rounds = 0
        while not queue.is_idle() and rounds < 50:
            tick(queue)
            assert queue.active_count <= 3
            for name in list(backend.handles):
                if name in names[::3]:
                    backend.fail(name)
                else:
                    backend.complete(name)
            rounds += 1

        assert queue.is_idle()
        assert queue.active_count == 0
        for job in queue.jobs:
            assert (job.result_url is None) != (job.error is None)

    def test_submit_called_at_most_once_under_overlapping_ticks(self, backend):
        backend.submit_delay = 0.01
        queue = make_queue(backend, max_concurrent=2)
        queue.enqueue(make_request("A"))
        queue.enqueue(make_request("B"))

        async def overlapping():
            await asyncio.gather(queue.tick(), queue.tick(), queue.tick())
            await queue.tick()
            await queue.tick()

        asyncio.run(overlapping())
        assert sorted(backend.submitted) == ["A", "B"]

    def test_remove_rejects_processing_job(self, backend):
        queue = make_queue(backend, max_concurrent=1)
        a = queue.enqueue(make_request("A"))
        b = queue.enqueue(make_request("B"))

        with pytest.raises(InvariantViolation):
            queue.remove(a)

        assert queue.remove(b) is True
        assert queue.get_job(b) is None
        assert queue.remove("missing") is False

    def test_clear_completed_keeps_active_jobs(self, backend):
        queue = make_queue(backend, max_concurrent=2)
        backend.fail_submit["B"] = "rejected"
        a = queue.enqueue(make_request("A"))
        queue.enqueue(make_request("B"))
        c = queue.enqueue(make_request("C"))
        tick(queue)
        backend.complete("A")
        tick(queue)

        assert queue.clear_completed() == 2
        assert [job.id for job in queue.jobs] == [c]
        assert queue.get_job(a) is None

    def test_metrics(self, backend):
        queue = make_queue(backend, max_concurrent=1)
        queue.enqueue(make_request("A"))
        queue.enqueue(make_request("B"))

        metrics = queue.get_queue_metrics()
        assert metrics.processing_count == 1
        assert metrics.queued_count == 1
        assert not metrics.can_start_new


class TestTimeouts:

    def test_submission_timeout_fails_job(self, backend):
        backend.submit_delay = 0.5
        queue = make_queue(backend, max_concurrent=1, call_timeout_seconds=0.05)
        a = queue.enqueue(make_request("A"))

        tick(queue)

        assert queue.get_job(a).status == JobStatus.FAILED
        assert "timed out" in queue.get_job(a).error

    def test_job_deadline(self, backend, clock):
        queue = make_queue(backend, max_concurrent=1, clock=clock, job_deadline_seconds=60)
        a = queue.enqueue(make_request("A"))
        b = queue.enqueue(make_request("B"))
        tick(queue)

        clock.advance(61)
        tick(queue)

        assert queue.get_job(a).status == JobStatus.FAILED
        assert "timed out" in queue.get_job(a).error
        assert queue.get_job(b).status == JobStatus.PROCESSING

    def test_poll_backoff(self, backend, clock):
        config = QueueConfig(max_concurrent=1, backoff_base_seconds=2.0, backoff_max_seconds=5.0)
        queue = RenderJobQueue(backend, config=config, clock=clock)
        queue.enqueue(make_request("A"))
        tick(queue)

        backend.poll_errors["h-1"] = 10
        tick(queue)
        assert len(backend.poll_calls) == 1

        tick(queue)  # still backing off
        assert len(backend.poll_calls) == 1

        clock.advance(2.0)
        tick(queue)
        assert len(backend.poll_calls) == 2

        clock.advance(3.5)
        tick(queue)
        assert len(backend.poll_calls) == 2
        clock.advance(0.5)
        tick(queue)
        assert len(backend.poll_calls) == 3


class TestPersistence:

    def test_every_mutation_is_saved(self, backend):
        store = InMemoryQueueStore()
        queue = make_queue(backend, store=store)
        a = queue.enqueue(make_request("A"))
        saves_after_enqueue = store.save_count
        tick(queue)

        assert saves_after_enqueue >= 1
        assert store.save_count > saves_after_enqueue
        snapshot = store.load()
        assert snapshot.jobs[0].id == a
        assert snapshot.jobs[0].backend_handle == "h-1"

    def test_restore_requeues_jobs_without_handle(self, backend, tmp_path):
        store = JsonFileQueueStore(str(tmp_path / "queue.json"))
        first = make_queue(backend, max_concurrent=2, store=store)
        a = first.enqueue(make_request("A"))
        b = first.enqueue(make_request("B"))
        c = first.enqueue(make_request("C"))
        # A gets a handle, B is interrupted before submission completes
        first.get_job(a).backend_handle = "h-9"
        first._persist()

        restored = make_queue(FakeRenderBackend(), max_concurrent=2, store=store)

        assert restored.get_job(a).status == JobStatus.PROCESSING
        assert restored.get_job(a).backend_handle == "h-9"
        # B was demoted and then re-promoted ahead of C
        assert restored.get_job(b).status == JobStatus.PROCESSING
        assert restored.get_job(b).backend_handle is None
        assert restored.get_job(c).status == JobStatus.QUEUED
        assert restored.get_job(a).request.name == "A"

    def test_restored_job_with_handle_is_polled_not_resubmitted(self, tmp_path):
        store = JsonFileQueueStore(str(tmp_path / "queue.json"))
        job = RenderJob(id="job-1", request=make_request("A"),
                        status=JobStatus.PROCESSING, backend_handle="h-1", progress=30)
        store.save(QueueSnapshot(jobs=[job]))

        backend = FakeRenderBackend()
        backend.handles["A"] = "h-1"
        backend.complete("A")
        queue = make_queue(backend, store=store)
        tick(queue)

        assert backend.submitted == []
        assert queue.get_job("job-1").status == JobStatus.COMPLETED

    def test_store_failures_do_not_block_the_queue(self, backend):
        class BrokenStore(QueueStore):
            def save(self, snapshot):
                raise OSError("disk full")

            def load(self):
                raise OSError("unreadable")

        queue = make_queue(backend, store=BrokenStore())
        a = queue.enqueue(make_request("A"))
        tick(queue)
        assert queue.get_job(a).backend_handle == "h-1"


class TestListenersAndDriver:

    def test_listeners_see_lifecycle_changes(self, backend):
        seen = []
        queue = make_queue(backend)
        queue.add_listener(lambda job: seen.append((job.name, job.status)))
        queue.add_listener(lambda job: 1 / 0)  # a broken observer is ignored

        queue.enqueue(make_request("A"))
        tick(queue)
        backend.complete("A")
        tick(queue)

        assert ("A", JobStatus.PROCESSING) in seen
        assert seen[-1] == ("A", JobStatus.COMPLETED)

    def test_run_loop_until_stopped(self, backend):
        queue = make_queue(backend, poll_interval_seconds=0.01)
        a = queue.enqueue(make_request("A"))

        async def drive():
            runner = asyncio.create_task(queue.run())
            await asyncio.sleep(0.05)
            backend.complete("A")
            await asyncio.sleep(0.05)
            queue.stop()
            await asyncio.wait_for(runner, timeout=1)

        asyncio.run(drive())
        assert queue.get_job(a).status == JobStatus.COMPLETED
        assert not queue.is_running

    def test_wait_until_idle(self, backend):
        queue = make_queue(backend, max_concurrent=1, poll_interval_seconds=0.01)
        queue.enqueue(make_request("A"))
        queue.enqueue(make_request("B"))

        async def finish_all():
            while True:
                await asyncio.sleep(0.005)
                for name in list(backend.handles):
                    backend.complete(name)
                if queue.is_idle():
                    return

        async def drive():
            await asyncio.gather(queue.wait_until_idle(), finish_all())

        asyncio.run(drive())
        assert all(job.status == JobStatus.COMPLETED for job in queue.jobs)
