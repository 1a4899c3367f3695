"""Local countdown for cooking jobs.

Never touches the network: each call takes a job list and returns the list to
show next, plus whether anything actually changed.
"""

from typing import Container, NamedTuple, Optional, Sequence

from .models import Job, JobStatus


class TickResult(NamedTuple):
    jobs: list[Job]
    changed: bool


def _promotion_order(job: Job):
    return (job.created_at, job.id)


def fill_slots(
    jobs: Sequence[Job],
    max_concurrent: int,
    cook_duration: int,
    eligible: Optional[Container[str]] = None,
) -> TickResult:
    """Move queued jobs into free cooking slots, oldest ``created_at`` first.

    Every cooking job counts against the slots; with ``eligible`` given, only
    queued jobs whose id is in it may be promoted.
    """
    free = max_concurrent - sum(1 for j in jobs if j.is_cooking)
    if free <= 0:
        return TickResult(list(jobs), False)
    queued = sorted(
        (
            j
            for j in jobs
            if j.status == JobStatus.QUEUED and (eligible is None or j.id in eligible)
        ),
        key=_promotion_order,
    )
    promote = {j.id for j in queued[:free]}
    if not promote:
        return TickResult(list(jobs), False)
    out = [
        j.model_copy(
            update={"status": JobStatus.COOKING, "time_remaining": cook_duration}
        )
        if j.id in promote
        else j
        for j in jobs
    ]
    return TickResult(out, True)


def tick(jobs: Sequence[Job], max_concurrent: int, cook_duration: int) -> TickResult:
    changed = False
    finished_any = False
    out: list[Job] = []
    for job in jobs:
        if job.is_cooking and job.time_remaining:
            left = job.time_remaining - 1
            if left == 0:
                job = job.model_copy(
                    update={"status": JobStatus.FINISHED, "time_remaining": None}
                )
                finished_any = True
            else:
                job = job.model_copy(update={"time_remaining": left})
            changed = True
        out.append(job)
    if finished_any:
        out, _ = fill_slots(out, max_concurrent, cook_duration)
    return TickResult(out, changed)
