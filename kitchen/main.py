import logging
import os
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from kitchen.app.auth import api_key_dependency
from kitchen.app.config import (
    APP_ORIGIN,
    KITCHEN_API_KEY,
    SQLITE_PATH,
    STATIC_DIR,
    STATUS_SOURCE_API_KEY,
    STATUS_SOURCE_TIMEOUT,
    STATUS_SOURCE_URL,
    KitchenLimits,
)
from kitchen.app.errors import DeleteFailed, UnknownJob
from kitchen.app.models import Job, JobOut, JobStatus
from kitchen.app.persistence import LocalJobStore
from kitchen.app.reconciler import JobQueueReconciler
from kitchen.app.source import HttpStatusSource
from kitchen.app.storage import (
    delete_object,
    make_key,
    put_object,
    resolve_image_url,
    storage_mode,
)
from kitchen.app.styles import (
    STYLES,
    get_style,
    join_styles,
    split_styles,
    unknown_styles,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("letmecook-kitchen")


def build_reconciler() -> JobQueueReconciler:
    """Wire the reconciler from environment settings."""
    source = None
    if STATUS_SOURCE_URL:
        source = HttpStatusSource(
            STATUS_SOURCE_URL,
            api_key=STATUS_SOURCE_API_KEY,
            timeout=STATUS_SOURCE_TIMEOUT,
        )
    else:
        logger.info("STATUS_SOURCE_URL not set; kitchen runs local-only")
    return JobQueueReconciler(
        source, LocalJobStore(SQLITE_PATH), KitchenLimits.from_env()
    )


def _job_out(job: Job) -> dict:
    return JobOut(
        **job.model_dump(exclude={"admitted_at"}),
        image_url=resolve_image_url(job.image_ref),
        styles=split_styles(job.style_tag),
    ).model_dump(mode="json")


def get_kitchen(request: Request) -> JobQueueReconciler:
    return request.app.state.kitchen


def create_app(reconciler: Optional[JobQueueReconciler] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        kitchen = reconciler or build_reconciler()
        app.state.kitchen = kitchen
        await kitchen.start()
        try:
            yield
        finally:
            await kitchen.stop()

    app = FastAPI(lifespan=lifespan)
    verify_api_key = api_key_dependency(KITCHEN_API_KEY)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[APP_ORIGIN, "http://localhost:8081", "http://127.0.0.1:8081"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "X-API-Key"],
    )

    @app.get("/healthz")
    def healthz(kitchen: JobQueueReconciler = Depends(get_kitchen)):
        return {
            "ok": True,
            "storage": storage_mode(),
            "source": "remote" if kitchen.source else "none",
            "stale": kitchen.stale,
            "version": kitchen.version,
        }

    @app.get("/styles", dependencies=[Depends(verify_api_key)])
    def list_styles():
        return {"styles": [s.model_dump() for s in STYLES]}

    @app.get("/styles/{style_id}", dependencies=[Depends(verify_api_key)])
    def style_detail(style_id: str):
        style = get_style(style_id)
        if not style:
            return JSONResponse({"error": "not_found"}, status_code=404)
        return style.model_dump()

    @app.get("/jobs", dependencies=[Depends(verify_api_key)])
    def list_jobs(
        status: Optional[JobStatus] = None,
        kitchen: JobQueueReconciler = Depends(get_kitchen),
    ):
        jobs = kitchen.by_status(status) if status else kitchen.jobs()
        return {
            "version": kitchen.version,
            "stale": kitchen.stale,
            "jobs": [_job_out(j) for j in jobs],
        }

    @app.get("/jobs/grouped", dependencies=[Depends(verify_api_key)])
    def grouped_jobs(kitchen: JobQueueReconciler = Depends(get_kitchen)):
        groups = kitchen.partition()
        return {
            "version": kitchen.version,
            "stale": kitchen.stale,
            "groups": {s.value: [_job_out(j) for j in groups[s]] for s in JobStatus},
        }

    @app.get("/jobs/{job_id}", dependencies=[Depends(verify_api_key)])
    def get_job(job_id: str, kitchen: JobQueueReconciler = Depends(get_kitchen)):
        job = kitchen.get(job_id)
        if not job:
            return JSONResponse({"error": "not_found"}, status_code=404)
        return _job_out(job)

    @app.post("/jobs", dependencies=[Depends(verify_api_key)])
    async def create_job(
        file: UploadFile = File(...),
        styles: list[str] = Form(default=[]),
        kitchen: JobQueueReconciler = Depends(get_kitchen),
    ):
        unknown = unknown_styles(styles)
        if unknown:
            return JSONResponse(
                {"error": f"Unknown styles: {', '.join(unknown)}"}, status_code=400
            )
        raw = await file.read()
        name = os.path.basename(file.filename or "photo.jpg")
        key = make_key("images", f"{uuid.uuid4()}_{name}")
        put_object(key, raw, content_type=file.content_type or "image/jpeg")
        job = await kitchen.create_job(key, join_styles(styles))
        return _job_out(job)

    @app.post("/refresh", dependencies=[Depends(verify_api_key)])
    async def refresh(kitchen: JobQueueReconciler = Depends(get_kitchen)):
        refreshed = await kitchen.refresh()
        return {
            "refreshed": refreshed,
            "stale": kitchen.stale,
            "version": kitchen.version,
        }

    @app.delete("/jobs/{job_id}", dependencies=[Depends(verify_api_key)])
    async def delete_job(
        job_id: str, kitchen: JobQueueReconciler = Depends(get_kitchen)
    ):
        try:
            job = await kitchen.delete_job(job_id)
        except UnknownJob:
            return JSONResponse({"error": "not_found"}, status_code=404)
        except DeleteFailed as e:
            logger.warning("Remote delete of job %s failed: %s", job_id, e)
            return JSONResponse(
                {"error": "delete_failed", "detail": str(e)}, status_code=502
            )
        delete_object(job.image_ref)
        return {"ok": True, "id": job.id}

    # Dev-only static file serving for local storage
    os.makedirs(STATIC_DIR, exist_ok=True)
    app.mount("/assets", StaticFiles(directory=STATIC_DIR), name="assets")
    return app


app = create_app()
