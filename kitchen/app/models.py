from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class JobStatus(str, Enum):
    QUEUED = "queued"
    COOKING = "cooking"
    FINISHED = "finished"


class Job(BaseModel):
    """One photo moving through the kitchen.

    ``pending_upload`` and ``admitted_at`` are local bookkeeping: the first marks
    a job the remote has not accepted yet, the second is the monotonic time the
    job was created or synced locally and starts its grace window.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    image_ref: str
    style_tag: Optional[str] = None
    status: JobStatus = JobStatus.QUEUED
    time_remaining: Optional[int] = Field(default=None, ge=0)
    created_at: int = 0
    pending_upload: bool = False
    admitted_at: Optional[float] = None

    @model_validator(mode="before")
    @classmethod
    def _drop_idle_timer(cls, data):
        # Only cooking jobs carry a countdown
        if not isinstance(data, dict):
            return data
        if JobStatus(data.get("status", JobStatus.QUEUED)) != JobStatus.COOKING:
            data = {**data, "time_remaining": None}
        return data

    @property
    def is_cooking(self) -> bool:
        return self.status == JobStatus.COOKING

    def to_wire(self) -> dict:
        return {
            "id": self.id,
            "uri": self.image_ref,
            "timestamp": self.created_at,
            "status": self.status.value,
            "style": self.style_tag,
            "timeRemaining": self.time_remaining,
        }


class JobOut(BaseModel):
    id: str
    image_ref: str
    image_url: Optional[str] = None
    style_tag: Optional[str] = None
    styles: list[str] = []
    status: JobStatus
    time_remaining: Optional[int] = None
    created_at: int
    pending_upload: bool = False


class CreateJobRequest(BaseModel):
    uri: str
    timestamp: Optional[int] = None
    style: Optional[str] = None
    job_id: Optional[str] = None
