"""Merge the locally ticked view with a remote snapshot.

Everything here is a pure function of its arguments so a merge can be replayed
and compared in tests.
"""

import logging
from typing import Optional, Sequence

from .models import Job, JobStatus

logger = logging.getLogger("letmecook-kitchen")


def _lower(a: Optional[int], b: Optional[int]) -> Optional[int]:
    if a is None:
        return b
    if b is None:
        return a
    return min(a, b)


def merge_job(local: Job, remote: Job) -> Job:
    """Merge one matched pair.

    A status disagreement means the remote knows something new, so it wins
    outright. While both sides say cooking, the countdown closer to zero is kept
    so the local display never jumps backward between polls.
    """
    if local.status != remote.status:
        return remote
    if remote.status == JobStatus.COOKING:
        remaining = _lower(local.time_remaining, remote.time_remaining)
        return remote.model_copy(update={"time_remaining": remaining})
    return remote


def within_grace(job: Job, now: float, grace_seconds: float) -> bool:
    """Whether a local job the remote has not reported yet should be kept."""
    if job.pending_upload:
        return True
    return job.admitted_at is not None and now - job.admitted_at < grace_seconds


def cap_cooking(jobs: Sequence[Job], max_concurrent: int) -> list[Job]:
    """Send cooking jobs beyond the slot count back to the queue, newest first."""
    cooking = sorted(
        (j for j in jobs if j.is_cooking), key=lambda j: (j.created_at, j.id)
    )
    excess = {j.id for j in cooking[max_concurrent:]}
    if not excess:
        return list(jobs)
    logger.warning(
        "Remote reported %d cooking jobs for %d slots; requeueing %s",
        len(cooking),
        max_concurrent,
        sorted(excess),
    )
    return [
        j.model_copy(update={"status": JobStatus.QUEUED, "time_remaining": None})
        if j.id in excess
        else j
        for j in jobs
    ]


def newest_first(jobs: Sequence[Job]) -> list[Job]:
    return sorted(jobs, key=lambda j: (j.created_at, j.id), reverse=True)


def reconcile(
    local: Sequence[Job],
    remote: Sequence[Job],
    now: float,
    grace_seconds: float,
    max_concurrent: int,
) -> list[Job]:
    """Build the merged view from one local and one remote snapshot.

    The remote decides which jobs exist; local jobs it does not report survive
    only while they are waiting for upload or inside their grace window.
    """
    local_by_id = {j.id: j for j in local}
    merged: dict[str, Job] = {}
    for r in remote:
        if r.id in merged:
            continue
        mine = local_by_id.get(r.id)
        merged[r.id] = merge_job(mine, r) if mine is not None else r
    for mine in local:
        if mine.id not in merged and within_grace(mine, now, grace_seconds):
            merged[mine.id] = mine
    return newest_first(cap_cooking(list(merged.values()), max_concurrent))


def partition(jobs: Sequence[Job]) -> dict[JobStatus, list[Job]]:
    groups: dict[JobStatus, list[Job]] = {s: [] for s in JobStatus}
    for j in jobs:
        groups[j.status].append(j)
    return groups
