import logging
import time
import uuid
from typing import Callable, Optional, Sequence

from .config import KitchenLimits
from .errors import DeleteFailed, UnknownJob, UploadFailed
from .models import Job, JobStatus
from .persistence import LocalJobStore
from .poller import PollResult, RemotePoller
from .reconcile import reconcile
from .scheduler import PeriodicTask
from .source import StatusSource
from .state import KitchenState
from .timer import fill_slots, tick

logger = logging.getLogger("letmecook-kitchen")

Listener = Callable[[tuple[Job, ...]], None]


def _epoch_ms() -> int:
    return int(time.time() * 1000)


class JobQueueReconciler:
    """Single writer for the kitchen's job state.

    The local tick, poll results and user actions all land here and are applied
    synchronously on the event loop, so one never sees a half-applied other.
    Without a status source the kitchen runs local-only.
    """

    def __init__(
        self,
        source: Optional[StatusSource],
        store: Optional[LocalJobStore] = None,
        limits: Optional[KitchenLimits] = None,
        clock: Callable[[], float] = time.monotonic,
        now_ms: Callable[[], int] = _epoch_ms,
    ):
        self.source = source
        self.store = store
        self.limits = limits or KitchenLimits.from_env()
        self.state = KitchenState()
        self._clock = clock
        self._now_ms = now_ms
        self._listeners: list[Listener] = []
        self._tombstones: set[str] = set()
        self._session = 0
        self._closed = False
        self.poller = (
            RemotePoller(source, before_fetch=self._retry_uploads) if source else None
        )
        self._timer_task = PeriodicTask(
            "kitchen-tick", self.limits.tick_seconds, self.tick
        )
        self._poll_task = (
            PeriodicTask(
                "kitchen-poll", self.limits.poll_seconds, self.poll, immediate=True
            )
            if source
            else None
        )

    # --- lifecycle ---

    @property
    def running(self) -> bool:
        return self._timer_task.running

    async def start(self) -> None:
        self._session += 1
        self._closed = False
        self.restore()
        self._timer_task.start()
        if self._poll_task:
            self._poll_task.start()
        logger.info(
            "Kitchen started: %d slots, %ss per job, source=%s",
            self.limits.max_concurrent,
            self.limits.cook_duration,
            "remote" if self.source else "none",
        )

    async def stop(self) -> None:
        self._closed = True
        await self._timer_task.stop()
        if self._poll_task:
            await self._poll_task.stop()
        logger.info("Kitchen stopped")

    def restore(self) -> None:
        """Load jobs kept in local persistence into the current view."""
        if not self.store:
            return
        known = {j.id for j in self.state.jobs}
        restored = [j for j in self.store.list_jobs() if j.id not in known]
        if restored:
            self._admit(restored)

    # --- observers ---

    def add_listener(self, fn: Listener) -> Callable[[], None]:
        self._listeners.append(fn)

        def remove() -> None:
            if fn in self._listeners:
                self._listeners.remove(fn)

        return remove

    def jobs(self) -> list[Job]:
        return list(self.state.jobs)

    def get(self, job_id: str) -> Optional[Job]:
        return self.state.get(job_id)

    def by_status(self, status: JobStatus) -> list[Job]:
        return self.state.by_status(status)

    def partition(self) -> dict[JobStatus, list[Job]]:
        return self.state.partition()

    @property
    def stale(self) -> bool:
        return self.state.stale

    @property
    def version(self) -> int:
        return self.state.version

    # --- updates ---

    def _apply(self, jobs: Sequence[Job]) -> bool:
        before = {j.id: j.status for j in self.state.jobs}
        if not self.state.replace(jobs):
            return False
        if self.store:
            moved = [j for j in self.state.jobs if before.get(j.id) != j.status]
            if moved:
                self.store.record_statuses(moved)
        for fn in list(self._listeners):
            try:
                fn(self.state.jobs)
            except Exception:
                logger.exception("Job listener failed")
        return True

    def _admit(self, new_jobs: Sequence[Job]) -> None:
        jobs = list(new_jobs) + list(self.state.jobs)
        jobs, _ = fill_slots(
            jobs, self.limits.max_concurrent, self.limits.cook_duration
        )
        self._apply(jobs)

    def tick(self) -> bool:
        """Advance every cooking countdown by one step."""
        result = tick(
            self.state.jobs, self.limits.max_concurrent, self.limits.cook_duration
        )
        if not result.changed:
            return False
        return self._apply(result.jobs)

    async def poll(self) -> bool:
        """Fetch the remote view and merge it; False if skipped or failed."""
        if self.poller is None:
            return False
        session = self._session
        result = await self.poller.poll()
        if result.skipped:
            return False
        if self._closed or session != self._session:
            logger.warning("Discarding poll result that arrived after shutdown")
            return False
        return self._apply_poll(result)

    refresh = poll

    def _apply_poll(self, result: PollResult) -> bool:
        if not result.ok:
            # Keep the current view: it is already the last good snapshot plus
            # every tick since, or the locally known jobs if nothing came yet.
            self.state.stale = True
            return False
        remote = [j for j in result.jobs if j.id not in self._tombstones]
        self._tombstones &= {j.id for j in result.jobs}
        now = self._clock()
        pending = {j.id for j in self.state.jobs if j.pending_upload}
        merged = reconcile(
            self.state.jobs,
            remote,
            now=now,
            grace_seconds=self.limits.grace_seconds,
            max_concurrent=self.limits.max_concurrent,
        )
        # Jobs the remote does not report yet are still cooked locally
        reported = {j.id for j in remote}
        merged, _ = fill_slots(
            merged,
            self.limits.max_concurrent,
            self.limits.cook_duration,
            eligible={j.id for j in merged if j.id not in reported},
        )
        self.state.remote_snapshot = tuple(remote)
        self.state.stale = False
        self.state.last_poll_ok_at = now
        self._apply(merged)
        if self.store:
            for job in remote:
                if job.id in pending:
                    self.store.mark_synced(job.id)
            self.store.prune(j.id for j in self.state.jobs)
        return True

    # --- user actions ---

    async def create_job(self, image_ref: str, style: Optional[str] = None) -> Job:
        """Track a new job and hand it to the status source.

        The job is visible and cooks locally right away; if the upload fails it
        stays local-only and is retried before the next poll.
        """
        job = Job(
            id=str(uuid.uuid4()),
            image_ref=image_ref,
            style_tag=style,
            created_at=self._now_ms(),
            pending_upload=True,
            admitted_at=self._clock(),
        )
        if self.store:
            self.store.create(job)
        self._admit([job])
        if self.source is None:
            return self.state.get(job.id) or job
        try:
            await self._upload(job)
        except UploadFailed as e:
            logger.warning("Upload of job %s failed, keeping it local: %s", job.id, e)
        return self.state.get(job.id) or job

    async def _upload(self, job: Job) -> None:
        session = self._session
        remote = await self.source.create_job(
            job.image_ref, job.style_tag, job_id=job.id, created_at=job.created_at
        )
        current = self.state.get(job.id)
        if current is None:
            await self._drop_orphan(remote.id)
            return
        if self._closed or session != self._session:
            return
        synced = current.model_copy(
            update={
                "id": remote.id,
                "pending_upload": False,
                "admitted_at": self._clock(),
            }
        )
        self._apply([synced if j.id == job.id else j for j in self.state.jobs])
        if self.store:
            if remote.id != job.id:
                self.store.delete(job.id)
                self.store.create(synced)
            else:
                self.store.mark_synced(job.id)

    async def _drop_orphan(self, job_id: str) -> None:
        """Remove a remote record whose local job was deleted mid-upload."""
        self._tombstones.add(job_id)
        try:
            await self.source.delete_job(job_id)
        except DeleteFailed as e:
            logger.warning("Could not delete orphaned remote job %s: %s", job_id, e)
            return
        logger.info("Deleted remote job %s uploaded after a local delete", job_id)

    async def _retry_uploads(self) -> None:
        for job in [j for j in self.state.jobs if j.pending_upload]:
            if self.state.get(job.id) is None:
                continue
            try:
                await self._upload(job)
            except UploadFailed as e:
                logger.warning("Retry of job %s upload failed: %s", job.id, e)
                return
            logger.info("Job %s uploaded on retry", job.id)

    async def delete_job(self, job_id: str) -> Job:
        """Delete a job remotely, then locally.

        Raises ``DeleteFailed`` without touching local state when the remote
        delete does not go through.
        """
        job = self.state.get(job_id)
        if job is None:
            raise UnknownJob(job_id)
        if not job.pending_upload and self.source is not None:
            await self.source.delete_job(job_id)
        # An upload still in flight may land under this id
        self._tombstones.add(job_id)
        self._apply([j for j in self.state.jobs if j.id != job_id])
        if self.state.remote_snapshot is not None:
            self.state.remote_snapshot = tuple(
                j for j in self.state.remote_snapshot if j.id != job_id
            )
        if self.store:
            self.store.delete(job_id)
        return job
