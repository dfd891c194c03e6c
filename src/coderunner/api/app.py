from __future__ import annotations
import asyncio
import threading
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

import structlog
from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from ..core.errors import OverloadedError
from ..core.models import JobStatus
from ..logging import setup_logging
from ..services.job_service import ExecutionService
from ..settings import Settings, load_settings

log = structlog.get_logger(__name__)

# how often a running request checks whether its client went away
DISCONNECT_POLL_S = 0.5


# --------- Schemas ---------
class RunReq(BaseModel):
    # optional here so a missing field gets our 400, not FastAPI's 422
    language: Optional[str] = None
    code: Optional[str] = None
    input: Optional[str] = None


class RunRes(BaseModel):
    output: str


class ErrorRes(BaseModel):
    error: str


class LanguagesRes(BaseModel):
    languages: List[str]


class HistoryItem(BaseModel):
    job_id: str
    language: str
    code: str
    input: Optional[str] = None
    output: str
    status: str
    created_at: datetime


class HistoryRes(BaseModel):
    items: List[HistoryItem]


def _error(status_code: int, message: str, headers: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message}, headers=headers)


def create_app(settings: Optional[Settings] = None, service: Optional[ExecutionService] = None) -> FastAPI:
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.log_level)
        svc = service or ExecutionService(settings)
        app.state.service = svc
        try:
            yield
        finally:
            svc.close()

    app = FastAPI(title="Code Runner API", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def _bad_request(request: Request, exc: RequestValidationError):
        return _error(400, "Invalid request body")

    # --------- Endpoints ---------

    @app.get("/", response_class=PlainTextResponse)
    async def root():
        return "Online IDE Backend Running"

    @app.get("/health")
    def health():
        return {"ok": True}

    @app.get("/languages", response_model=LanguagesRes)
    def languages(request: Request):
        return LanguagesRes(languages=request.app.state.service.languages())

    @app.post("/run", response_model=RunRes, responses={400: {"model": ErrorRes}, 503: {"model": ErrorRes}})
    async def run_code(req: RunReq, request: Request):
        svc: ExecutionService = request.app.state.service
        cancel = threading.Event()
        task = asyncio.ensure_future(
            run_in_threadpool(svc.submit, req.language or "", req.code or "", req.input, cancel)
        )
        try:
            while True:
                done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_S)
                if done:
                    break
                if not cancel.is_set() and await request.is_disconnected():
                    log.info("run.client_disconnected")
                    cancel.set()
            job = task.result()
        except OverloadedError as e:
            return _error(503, str(e), headers={"Retry-After": str(e.retry_after_s)})
        except Exception as e:
            log.exception("run.internal_error")
            return _error(500, str(e) or type(e).__name__)
        finally:
            if not task.done():
                cancel.set()

        if job.status is JobStatus.REJECTED:
            return _error(400, job.error or "Invalid request")
        return RunRes(output=job.output)

    @app.get("/history", response_model=HistoryRes)
    def history(request: Request, limit: int = Query(20, ge=1, le=200)):
        svc: ExecutionService = request.app.state.service
        if svc.history is None:
            return HistoryRes(items=[])
        rows = svc.history.recent(limit)
        return HistoryRes(items=[HistoryItem.model_validate(r, from_attributes=True) for r in rows])

    return app


app = create_app()
