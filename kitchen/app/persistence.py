import os
from typing import Iterable

from sqlalchemy import Boolean, Column, Integer, String, Text, create_engine, select
from sqlalchemy.orm import declarative_base, sessionmaker

from .models import Job, JobStatus

Base = declarative_base()


class LocalJobORM(Base):
    __tablename__ = "local_jobs"
    id = Column(String, primary_key=True)
    image_ref = Column(Text, nullable=False)
    style_tag = Column(String)
    created_at = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default=JobStatus.QUEUED.value)
    pending_upload = Column(Boolean, nullable=False, default=True)


class LocalJobStore:
    """Durable record of jobs created on this device.

    Only creation metadata and the last known status are kept; countdowns are
    not, so jobs that were cooking come back queued after a restart.
    """

    def __init__(self, db_path: str):
        if db_path != ":memory:":
            os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
        self.engine = create_engine(
            f"sqlite:///{db_path}", connect_args={"check_same_thread": False}
        )
        self.Session = sessionmaker(
            bind=self.engine,
            autoflush=False,
            autocommit=False,
            expire_on_commit=False,
        )
        Base.metadata.create_all(self.engine)

    def create(self, job: Job) -> None:
        with self.Session() as db:
            db.merge(
                LocalJobORM(
                    id=job.id,
                    image_ref=job.image_ref,
                    style_tag=job.style_tag,
                    created_at=job.created_at,
                    status=job.status.value,
                    pending_upload=job.pending_upload,
                )
            )
            db.commit()

    def list_jobs(self) -> list[Job]:
        with self.Session() as db:
            rows = db.scalars(
                select(LocalJobORM).order_by(LocalJobORM.created_at.desc())
            ).all()
        jobs = []
        for row in rows:
            status = JobStatus(row.status)
            if status == JobStatus.COOKING:
                status = JobStatus.QUEUED
            jobs.append(
                Job(
                    id=row.id,
                    image_ref=row.image_ref,
                    style_tag=row.style_tag,
                    status=status,
                    created_at=row.created_at,
                    pending_upload=row.pending_upload,
                )
            )
        return jobs

    def delete(self, job_id: str) -> bool:
        with self.Session() as db:
            row = db.get(LocalJobORM, job_id)
            if not row:
                return False
            db.delete(row)
            db.commit()
        return True

    def mark_synced(self, job_id: str) -> None:
        with self.Session() as db:
            row = db.get(LocalJobORM, job_id)
            if row and row.pending_upload:
                row.pending_upload = False
                db.commit()

    def record_statuses(self, jobs: Iterable[Job]) -> int:
        """Write status changes; returns how many rows were touched."""
        wanted = {j.id: j.status.value for j in jobs}
        if not wanted:
            return 0
        touched = 0
        with self.Session() as db:
            rows = db.scalars(
                select(LocalJobORM).where(LocalJobORM.id.in_(list(wanted)))
            ).all()
            for row in rows:
                if row.status != wanted[row.id]:
                    row.status = wanted[row.id]
                    touched += 1
            if touched:
                db.commit()
        return touched

    def prune(self, keep_ids: Iterable[str]) -> int:
        """Drop rows for jobs no longer tracked."""
        keep = set(keep_ids)
        with self.Session() as db:
            rows = db.scalars(select(LocalJobORM)).all()
            gone = [row for row in rows if row.id not in keep]
            for row in gone:
                db.delete(row)
            if gone:
                db.commit()
        return len(gone)
