from typing import Optional, Sequence

from .models import Job, JobStatus
from .reconcile import newest_first, partition


class KitchenState:
    """Job view owned by a single reconciler.

    ``version`` only moves when the jobs really change, so observers can skip
    identical updates. The status partition is computed once per version.
    """

    def __init__(self, jobs: Sequence[Job] = ()):
        self.jobs: tuple[Job, ...] = tuple(newest_first(jobs))
        self.version = 0
        self.remote_snapshot: Optional[tuple[Job, ...]] = None
        self.stale = False
        self.last_poll_ok_at: Optional[float] = None
        self._groups: Optional[dict[JobStatus, list[Job]]] = None
        self._groups_version = -1

    def replace(self, jobs: Sequence[Job]) -> bool:
        """Swap in a new job list; returns False when nothing differs."""
        ordered = tuple(newest_first(jobs))
        if ordered == self.jobs:
            return False
        self.jobs = ordered
        self.version += 1
        return True

    def get(self, job_id: str) -> Optional[Job]:
        for job in self.jobs:
            if job.id == job_id:
                return job
        return None

    def by_status(self, status: JobStatus) -> list[Job]:
        return list(self.partition()[status])

    def partition(self) -> dict[JobStatus, list[Job]]:
        if self._groups is None or self._groups_version != self.version:
            self._groups = partition(self.jobs)
            self._groups_version = self.version
        return self._groups

    def cooking_count(self) -> int:
        return len(self.partition()[JobStatus.COOKING])
