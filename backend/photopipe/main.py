from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Dict, Optional

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from photopipe.config import load_settings
from photopipe.context import PipelineContext
from photopipe.errors import QueueUnavailableError, ValidationError
from photopipe.pipeline.ffmpeg_runtime import resolve_ffmpeg_bin, resolve_ffprobe_bin, tool_available
from photopipe.schemas import (
    JobCreate,
    JobCreateResponse,
    JobStatusResponse,
    QueueSnapshot,
    RuntimeStatusResponse,
)


def create_app(context: Optional[PipelineContext] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ctx = context or PipelineContext.from_settings(load_settings())
        app.state.context = ctx
        ctx.recover()
        try:
            yield
        finally:
            ctx.shutdown(wait=False)

    app = FastAPI(title="Photopipe Media Jobs API", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/runtime", response_model=RuntimeStatusResponse)
    def runtime_status(request: Request) -> RuntimeStatusResponse:
        ctx = _context(request)
        ffmpeg_bin = resolve_ffmpeg_bin()
        return RuntimeStatusResponse(
            ffmpeg_bin=ffmpeg_bin,
            ffprobe_bin=resolve_ffprobe_bin(),
            ffmpeg_available=tool_available(ffmpeg_bin),
            queues=[QueueSnapshot(**snapshot) for snapshot in ctx.snapshot()],
        )

    @app.post("/jobs", response_model=JobCreateResponse, status_code=202)
    def create_job(
        payload: JobCreate,
        request: Request,
        x_user_id: Optional[str] = Header(default=None),
    ) -> JobCreateResponse:
        ctx = _context(request)
        try:
            job = ctx.submit(payload.type, payload.payload, owner_id=x_user_id)
        except ValidationError as exc:
            raise HTTPException(status_code=422, detail=exc.to_dict())
        except QueueUnavailableError as exc:
            raise HTTPException(status_code=503, detail=exc.to_dict())
        return JobCreateResponse(job_id=job.id, status=job.status.value)

    @app.get("/jobs/{job_id}", response_model=JobStatusResponse)
    def get_job(job_id: str, request: Request, x_user_id: Optional[str] = Header(default=None)) -> JobStatusResponse:
        job = _context(request).get_status(job_id, owner_id=x_user_id)
        if job is None:
            raise HTTPException(status_code=404, detail="job not found")
        return JobStatusResponse(**job.to_public_dict())

    return app


def _context(request: Request) -> PipelineContext:
    return request.app.state.context


app = create_app()
