import logging
from typing import Any, Optional, Protocol

import httpx
from pydantic import ValidationError

from .errors import DeleteFailed, RemoteUnavailable, UploadFailed
from .models import Job, JobStatus

logger = logging.getLogger("letmecook-kitchen")


class StatusSource(Protocol):
    async def list_jobs(self) -> list[Job]: ...

    async def create_job(
        self,
        image_ref: str,
        style: Optional[str] = None,
        job_id: Optional[str] = None,
        created_at: Optional[int] = None,
    ) -> Job: ...

    async def delete_job(self, job_id: str) -> None: ...


def parse_entry(entry: Any) -> Job:
    if not isinstance(entry, dict):
        raise ValueError("entry is not an object")
    if not entry.get("id"):
        raise ValueError("missing id")
    if not entry.get("uri"):
        raise ValueError("missing uri")
    status = JobStatus(entry.get("status"))
    remaining = entry.get("timeRemaining")
    if remaining is not None:
        remaining = max(0, int(remaining))
    return Job(
        id=str(entry["id"]),
        image_ref=str(entry["uri"]),
        style_tag=entry.get("style"),
        status=status,
        time_remaining=remaining,
        created_at=int(entry.get("timestamp") or 0),
    )


def parse_snapshot(payload: Any) -> list[Job]:
    """Validate a remote job listing entry by entry.

    Bad entries are dropped with a warning so one broken record cannot hide the
    rest; a payload that is not a list at all means the source is unusable.
    """
    if isinstance(payload, dict) and isinstance(payload.get("jobs"), list):
        payload = payload["jobs"]
    if not isinstance(payload, list):
        raise RemoteUnavailable(f"Expected a job list, got {type(payload).__name__}")
    jobs: list[Job] = []
    seen: set[str] = set()
    for i, entry in enumerate(payload):
        try:
            job = parse_entry(entry)
        except (ValueError, TypeError, ValidationError) as e:
            logger.warning("Dropping malformed remote entry #%d: %s", i, e)
            continue
        if job.id in seen:
            logger.warning("Dropping duplicate remote entry for job %s", job.id)
            continue
        seen.add(job.id)
        jobs.append(job)
    return jobs


class HttpStatusSource:
    """Status source reached over HTTP (see ``stove`` for a dev server)."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._headers = {"X-API-Key": api_key} if api_key else {}
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=self._headers,
            transport=self._transport,
        )

    async def list_jobs(self) -> list[Job]:
        try:
            async with self._client() as client:
                r = await client.get("/jobs")
                r.raise_for_status()
                payload = r.json()
        except (httpx.HTTPError, ValueError) as e:
            raise RemoteUnavailable(f"{type(e).__name__}: {e}") from e
        return parse_snapshot(payload)

    async def create_job(
        self,
        image_ref: str,
        style: Optional[str] = None,
        job_id: Optional[str] = None,
        created_at: Optional[int] = None,
    ) -> Job:
        body = {
            "uri": image_ref,
            "style": style,
            "job_id": job_id,
            "timestamp": created_at,
        }
        try:
            async with self._client() as client:
                r = await client.post("/jobs", json=body)
                r.raise_for_status()
                return parse_entry(r.json())
        except (httpx.HTTPError, ValueError, TypeError, ValidationError) as e:
            raise UploadFailed(f"{type(e).__name__}: {e}") from e

    async def delete_job(self, job_id: str) -> None:
        try:
            async with self._client() as client:
                r = await client.delete(f"/jobs/{job_id}")
                if r.status_code == 404:
                    return
                r.raise_for_status()
        except httpx.HTTPError as e:
            raise DeleteFailed(f"{type(e).__name__}: {e}") from e
