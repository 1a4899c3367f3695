"""Development status source: a remote kitchen that actually cooks.

Stores ``ProcessedImage`` records in SQLite and advances them with the same
slot and countdown rules the client uses, so the client's poller has an
authoritative source to reconcile against.
"""

import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import Column, Integer, String, Text, create_engine, select
from sqlalchemy.orm import declarative_base, sessionmaker

from kitchen.app.auth import api_key_dependency
from kitchen.app.config import STATIC_DIR, KitchenLimits
from kitchen.app.models import CreateJobRequest, Job, JobStatus
from kitchen.app.scheduler import PeriodicTask
from kitchen.app.timer import fill_slots, tick

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("letmecook-stove")

STOVE_API_KEY = os.getenv("STOVE_API_KEY")
STOVE_SQLITE_PATH = os.getenv("STOVE_SQLITE_PATH") or os.path.join(
    STATIC_DIR, "stove.sqlite"
)

Base = declarative_base()


class ProcessedImageORM(Base):
    __tablename__ = "processed_images"
    id = Column(String, primary_key=True)
    uri = Column(Text, nullable=False)
    timestamp = Column(Integer, nullable=False)
    status = Column(String, nullable=False)
    style = Column(String)
    time_remaining = Column(Integer)


def _to_job(row: ProcessedImageORM) -> Job:
    return Job(
        id=row.id,
        image_ref=row.uri,
        style_tag=row.style,
        status=JobStatus(row.status),
        time_remaining=row.time_remaining,
        created_at=row.timestamp,
    )


class Stove:
    def __init__(self, db_path: str, limits: KitchenLimits):
        os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
        self.limits = limits
        self.engine = create_engine(
            f"sqlite:///{db_path}", connect_args={"check_same_thread": False}
        )
        self.Session = sessionmaker(
            bind=self.engine, autoflush=False, autocommit=False, expire_on_commit=False
        )
        Base.metadata.create_all(self.engine)

    def list_jobs(self) -> list[Job]:
        with self.Session() as db:
            rows = db.scalars(
                select(ProcessedImageORM).order_by(ProcessedImageORM.timestamp.desc())
            ).all()
        return [_to_job(r) for r in rows]

    def create(self, req: CreateJobRequest) -> Job:
        job_id = req.job_id or str(uuid.uuid4())
        with self.Session() as db:
            # Idempotent: a retried upload returns the record already stored
            row = db.get(ProcessedImageORM, job_id)
            if row is None:
                row = ProcessedImageORM(
                    id=job_id,
                    uri=req.uri,
                    timestamp=req.timestamp or int(time.time() * 1000),
                    status=JobStatus.QUEUED.value,
                    style=req.style,
                    time_remaining=None,
                )
                db.add(row)
                db.commit()
                logger.info("Queued job %s", job_id)
        return _to_job(row)

    def delete(self, job_id: str) -> bool:
        with self.Session() as db:
            row = db.get(ProcessedImageORM, job_id)
            if not row:
                return False
            db.delete(row)
            db.commit()
        logger.info("Deleted job %s", job_id)
        return True

    def cook(self) -> int:
        """Advance every record by one tick; returns how many rows changed."""
        limits = self.limits
        with self.Session() as db:
            rows = {r.id: r for r in db.scalars(select(ProcessedImageORM)).all()}
            before = [_to_job(r) for r in rows.values()]
            jobs, _ = tick(before, limits.max_concurrent, limits.cook_duration)
            jobs, _ = fill_slots(jobs, limits.max_concurrent, limits.cook_duration)
            changed = 0
            for old, new in zip(before, jobs):
                if old == new:
                    continue
                row = rows[new.id]
                row.status = new.status.value
                row.time_remaining = new.time_remaining
                changed += 1
                if new.status == JobStatus.FINISHED:
                    logger.info("Job %s finished", new.id)
            if changed:
                db.commit()
        return changed


def get_stove(request: Request) -> Stove:
    return request.app.state.stove


def create_app(
    db_path: Optional[str] = None,
    limits: Optional[KitchenLimits] = None,
    cooking: bool = True,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        stove = Stove(db_path or STOVE_SQLITE_PATH, limits or KitchenLimits.from_env())
        app.state.stove = stove
        burner = PeriodicTask("stove-cook", stove.limits.tick_seconds, stove.cook)
        if cooking:
            burner.start()
        try:
            yield
        finally:
            await burner.stop()

    app = FastAPI(lifespan=lifespan)
    verify_api_key = api_key_dependency(STOVE_API_KEY)

    @app.get("/healthz")
    def healthz():
        return {"stove": "ok"}

    @app.get("/jobs", dependencies=[Depends(verify_api_key)])
    def list_jobs(stove: Stove = Depends(get_stove)):
        return [j.to_wire() for j in stove.list_jobs()]

    @app.post("/jobs", dependencies=[Depends(verify_api_key)])
    def create_job(req: CreateJobRequest, stove: Stove = Depends(get_stove)):
        if not req.uri.strip():
            return JSONResponse({"error": "uri is required"}, status_code=400)
        return stove.create(req).to_wire()

    @app.delete("/jobs/{job_id}", dependencies=[Depends(verify_api_key)])
    def delete_job(job_id: str, stove: Stove = Depends(get_stove)):
        if not stove.delete(job_id):
            return JSONResponse({"error": "not_found"}, status_code=404)
        return {"ok": True}

    return app


app = create_app()
