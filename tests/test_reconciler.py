"""Tests for the job queue reconciler (kitchen.app.reconciler)."""

import asyncio
import random

import pytest
from fakes import FakeSource, make_job

from kitchen.app.errors import DeleteFailed, UnknownJob
from kitchen.app.models import JobStatus
from kitchen.app.reconciler import JobQueueReconciler

COOKING = JobStatus.COOKING
QUEUED = JobStatus.QUEUED
FINISHED = JobStatus.FINISHED


def _state(kitchen):
    return {j.id: (j.status, j.time_remaining) for j in kitchen.jobs()}


class TestTicking:
    """Test local ticks through the reconciler."""

    def test_five_queued_jobs_through_three_slots(self, limits, clock):
        """Three ticks should finish three jobs and start the other two."""
        kitchen = JobQueueReconciler(None, None, limits, clock=clock)
        kitchen._admit([make_job(f"j{i}", created_at=100 * i) for i in range(5)])

        for _ in range(3):
            kitchen.tick()

        groups = kitchen.partition()
        assert len(groups[FINISHED]) == 3
        assert [j.time_remaining for j in groups[COOKING]] == [3, 3]
        assert groups[QUEUED] == []

    def test_idle_tick_does_not_notify(self, kitchen):
        """A tick with nothing to do should not bump the version or notify."""
        calls = []
        kitchen.add_listener(calls.append)
        version = kitchen.version

        assert kitchen.tick() is False
        assert kitchen.version == version
        assert calls == []

    @pytest.mark.asyncio
    async def test_state_changing_tick_notifies(self, kitchen):
        """A real change should bump the version and reach listeners."""
        await kitchen.create_job("images/a.jpg")
        calls = []
        kitchen.add_listener(calls.append)
        version = kitchen.version

        assert kitchen.tick() is True
        assert kitchen.version == version + 1
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_removed_listener_is_not_called(self, kitchen):
        """Removing a listener twice should be harmless."""
        calls = []
        remove = kitchen.add_listener(calls.append)

        remove()
        remove()
        await kitchen.create_job("images/a.jpg")

        assert calls == []


class TestPolling:
    """Test poll results being merged into the view."""

    @pytest.mark.asyncio
    async def test_poll_adopts_remote_jobs(self, kitchen, source):
        """Should show the remote snapshot after a successful poll."""
        source.jobs = [
            make_job("r1", COOKING, 8, created_at=1),
            make_job("r2", FINISHED, created_at=2),
        ]

        assert await kitchen.poll() is True

        assert _state(kitchen) == {"r1": (COOKING, 8), "r2": (FINISHED, None)}
        assert [j.id for j in kitchen.jobs()] == ["r2", "r1"]
        assert not kitchen.stale

    @pytest.mark.asyncio
    async def test_lagging_remote_does_not_rewind_timer(self, kitchen, source):
        """Local ticks should not jump back when the remote lags."""
        source.jobs = [make_job("r1", COOKING, 8)]
        await kitchen.poll()
        for _ in range(3):
            kitchen.tick()

        await kitchen.poll()

        assert _state(kitchen) == {"r1": (COOKING, 5)}

    @pytest.mark.asyncio
    async def test_remote_finish_overrides_local_countdown(self, kitchen, source):
        """A finished report should end a locally cooking job at once."""
        source.jobs = [make_job("r1", COOKING, 8)]
        await kitchen.poll()
        source.jobs = [make_job("r1", FINISHED)]

        await kitchen.poll()

        assert _state(kitchen) == {"r1": (FINISHED, None)}

    @pytest.mark.asyncio
    async def test_failed_polls_keep_last_known_jobs(self, kitchen, source):
        """Two outages in a row should leave the last snapshot plus local ticks."""
        source.jobs = [
            make_job("r1", COOKING, 8, created_at=1),
            make_job("q1", created_at=2),
        ]
        await kitchen.poll()
        kitchen.tick()
        source.fail_list = True

        assert await kitchen.poll() is False
        assert await kitchen.poll() is False

        assert kitchen.stale
        assert _state(kitchen) == {"r1": (COOKING, 7), "q1": (QUEUED, None)}
        assert kitchen.poller.failures == 2
        assert [j.id for j in kitchen.state.remote_snapshot] == ["r1", "q1"]

        kitchen.tick()
        assert _state(kitchen)["r1"] == (COOKING, 6)

    @pytest.mark.asyncio
    async def test_failed_first_poll_falls_back_to_local_jobs(self, kitchen, source):
        """With no snapshot yet, locally known jobs should stay visible."""
        source.fail_create = True
        await kitchen.create_job("images/a.jpg")
        source.fail_list = True

        await kitchen.poll()

        assert len(kitchen.jobs()) == 1
        assert kitchen.stale

    @pytest.mark.asyncio
    async def test_overlapping_poll_is_skipped(self, kitchen, source):
        """A poll requested while one is in flight should not run."""
        source.gate = asyncio.Event()
        source.jobs = [make_job("r1", FINISHED)]
        first = asyncio.create_task(kitchen.poll())
        await asyncio.sleep(0)

        assert await kitchen.refresh() is False
        assert source.list_calls == 1

        source.gate.set()
        assert await first is True
        assert _state(kitchen) == {"r1": (FINISHED, None)}

    @pytest.mark.asyncio
    async def test_result_after_stop_is_discarded(self, kitchen, source):
        """A poll landing after shutdown should not touch the jobs."""
        source.gate = asyncio.Event()
        source.jobs = [make_job("r1", FINISHED)]
        pending = asyncio.create_task(kitchen.poll())
        await asyncio.sleep(0)

        await kitchen.stop()
        source.gate.set()

        assert await pending is False
        assert kitchen.jobs() == []

    @pytest.mark.asyncio
    async def test_capacity_holds_under_random_updates(self, source, store, limits, clock):
        """Cooking count and timer invariants should hold for any interleaving."""
        rng = random.Random(7)
        kitchen = JobQueueReconciler(source, store, limits, clock=clock)
        for step in range(200):
            if rng.random() < 0.3:
                source.jobs = [
                    make_job(
                        f"j{i}",
                        rng.choice(list(JobStatus)),
                        rng.choice([None, 0, 1, 2, 5]),
                        created_at=i,
                    )
                    for i in rng.sample(range(12), rng.randint(0, 8))
                ]
                await kitchen.poll()
            else:
                kitchen.tick()
            cooking = kitchen.by_status(COOKING)
            assert len(cooking) <= limits.max_concurrent
            for job in kitchen.jobs():
                if job.status != COOKING:
                    assert job.time_remaining is None


class TestCreateAndSync:
    """Test job creation, upload fallback and retry."""

    @pytest.mark.asyncio
    async def test_create_uploads_and_persists(self, kitchen, source, store):
        """A created job should reach the source and local persistence."""
        job = await kitchen.create_job("images/a.jpg", "anime")

        assert source.created == [job.id]
        assert not job.pending_upload
        assert job.style_tag == "anime"
        [saved] = store.list_jobs()
        assert saved.id == job.id
        assert not saved.pending_upload

    @pytest.mark.asyncio
    async def test_failed_upload_keeps_job_local(self, kitchen, source, store):
        """An upload failure should leave a visible, tickable local job."""
        source.fail_create = True

        job = await kitchen.create_job("images/a.jpg")

        assert job.pending_upload
        assert kitchen.get(job.id).status == COOKING
        kitchen.tick()
        assert kitchen.get(job.id).time_remaining == 2
        assert store.list_jobs()[0].pending_upload

    @pytest.mark.asyncio
    async def test_failed_upload_is_retried_on_next_poll(self, kitchen, source, store):
        """The next poll should upload the pending job and adopt the remote view."""
        source.fail_create = True
        job = await kitchen.create_job("images/a.jpg")
        source.fail_create = False

        await kitchen.poll()

        assert source.created == [job.id]
        merged = kitchen.get(job.id)
        assert not merged.pending_upload
        assert merged.status == QUEUED
        assert not store.list_jobs()[0].pending_upload

    @pytest.mark.asyncio
    async def test_local_job_takes_slot_freed_by_remote(self, kitchen, source):
        """A local-only job should start cooking once remote jobs free a slot."""
        source.jobs = [make_job(f"c{i}", COOKING, 2, created_at=i) for i in range(3)]
        source.jobs.append(make_job("q1", QUEUED, created_at=0))
        await kitchen.poll()
        source.fail_create = True
        job = await kitchen.create_job("images/a.jpg")
        assert kitchen.get(job.id).status == QUEUED

        source.jobs = [make_job(f"c{i}", FINISHED, created_at=i) for i in range(3)]
        source.jobs.append(make_job("q1", QUEUED, created_at=0))
        await kitchen.poll()

        local = kitchen.get(job.id)
        assert local.pending_upload
        assert (local.status, local.time_remaining) == (COOKING, 3)
        # The remote still decides for the jobs it reports
        assert kitchen.get("q1").status == QUEUED

    @pytest.mark.asyncio
    async def test_unlisted_new_job_survives_grace_window(self, kitchen, source, store, clock):
        """A job the remote has not listed yet should outlive a poll or two."""
        source.visible_on_create = False
        job = await kitchen.create_job("images/a.jpg")

        clock.advance(10)
        await kitchen.poll()
        assert kitchen.get(job.id) is not None

        clock.advance(25)
        await kitchen.poll()
        assert kitchen.get(job.id) is None
        assert store.list_jobs() == []

    @pytest.mark.asyncio
    async def test_local_only_mode(self, store, limits, clock):
        """Without a source jobs stay local and polling is a no-op."""
        kitchen = JobQueueReconciler(None, store, limits, clock=clock)

        job = await kitchen.create_job("images/a.jpg")

        assert job.pending_upload
        assert await kitchen.poll() is False


class TestDelete:
    """Test delete_job() ordering and failures."""

    @pytest.mark.asyncio
    async def test_delete_removes_everywhere(self, kitchen, source, store):
        """A successful delete should clear remote, view and persistence."""
        job = await kitchen.create_job("images/a.jpg")

        await kitchen.delete_job(job.id)

        assert source.deleted == [job.id]
        assert kitchen.get(job.id) is None
        assert store.list_jobs() == []

    @pytest.mark.asyncio
    async def test_failed_delete_keeps_local_job(self, kitchen, source):
        """A remote failure should surface and leave the job in place."""
        source.jobs = [make_job("r1", FINISHED)]
        await kitchen.poll()
        source.fail_delete = True

        with pytest.raises(DeleteFailed):
            await kitchen.delete_job("r1")

        assert kitchen.get("r1") is not None

    @pytest.mark.asyncio
    async def test_pending_job_deletes_locally(self, kitchen, source):
        """A job the remote never accepted needs no remote delete."""
        source.fail_create = True
        job = await kitchen.create_job("images/a.jpg")
        source.fail_delete = True

        await kitchen.delete_job(job.id)

        assert kitchen.jobs() == []

    @pytest.mark.asyncio
    async def test_delete_during_upload_stays_deleted(self, kitchen, source):
        """An upload landing after the delete should be removed from the remote."""
        source.create_gate = asyncio.Event()
        creating = asyncio.create_task(kitchen.create_job("images/a.jpg"))
        await asyncio.sleep(0)
        [job] = kitchen.jobs()

        await kitchen.delete_job(job.id)
        source.create_gate.set()
        await creating
        await kitchen.poll()

        assert kitchen.jobs() == []
        assert source.deleted == [job.id]
        assert source.jobs == []

    @pytest.mark.asyncio
    async def test_late_upload_hidden_when_remote_delete_fails(self, kitchen, source):
        """A late upload the remote refuses to delete should still stay hidden."""
        source.create_gate = asyncio.Event()
        creating = asyncio.create_task(kitchen.create_job("images/a.jpg"))
        await asyncio.sleep(0)
        [job] = kitchen.jobs()
        await kitchen.delete_job(job.id)
        source.fail_delete = True

        source.create_gate.set()
        await creating
        await kitchen.poll()

        assert [j.id for j in source.jobs] == [job.id]
        assert kitchen.jobs() == []

    @pytest.mark.asyncio
    async def test_delete_unknown_job(self, kitchen):
        """Deleting an untracked id should raise UnknownJob."""
        with pytest.raises(UnknownJob):
            await kitchen.delete_job("nope")

    @pytest.mark.asyncio
    async def test_stale_snapshot_does_not_resurrect_deleted_job(self, kitchen, source):
        """A listing taken before the delete should not bring the job back."""
        source.jobs = [make_job("r1", FINISHED)]
        await kitchen.poll()
        await kitchen.delete_job("r1")
        source.jobs = [make_job("r1", FINISHED)]

        await kitchen.poll()

        assert kitchen.get("r1") is None


class TestRestore:
    """Test restoring jobs from local persistence on start."""

    @pytest.mark.asyncio
    async def test_restart_restores_and_restarts_cooking(self, store, limits, clock):
        """Cooking jobs come back queued and retake slots oldest first."""
        for i in range(4):
            store.create(make_job(f"j{i}", COOKING, 2, created_at=i, pending_upload=True))
        kitchen = JobQueueReconciler(FakeSource(), store, limits, clock=clock)

        kitchen.restore()

        state = _state(kitchen)
        assert state["j0"] == state["j1"] == state["j2"] == (COOKING, 3)
        assert state["j3"] == (QUEUED, None)

    @pytest.mark.asyncio
    async def test_start_and_stop(self, kitchen, source, store):
        """start() should restore jobs and run the first poll right away."""
        store.create(make_job("local", pending_upload=True, created_at=5))
        source.jobs = [make_job("remote", FINISHED, created_at=1)]

        await kitchen.start()
        await asyncio.sleep(0.05)
        assert kitchen.running
        await kitchen.stop()

        assert not kitchen.running
        assert {j.id for j in kitchen.jobs()} == {"local", "remote"}
