"""FastAPI application exposing docassist services."""

from __future__ import annotations

import tempfile
import time
from pathlib import Path
from typing import Callable
from uuid import uuid4

from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from docassist.api.schemas import (
    AnswerResponse,
    AskRequest,
    CitationModel,
    CleanupResponse,
    DocumentInfo,
    DocumentUploadResponse,
    HistoryEntryModel,
    HistoryResponse,
    ResetResponse,
    SessionStatusModel,
    StatusResponse,
    TaskRequest,
)
from docassist.config import Settings, get_settings
from docassist.errors import DocAssistError
from docassist.metrics.observability import bind_correlation_id, clear_correlation_id, configure_logging, get_logger
from docassist.models import Answer, Session
from docassist.services.prompts import Task
from docassist.sessions.manager import SessionManager, build_session_manager

_ERROR_STATUS: dict[str, int] = {
    "not_initialized": status.HTTP_503_SERVICE_UNAVAILABLE,
    "no_active_session": status.HTTP_400_BAD_REQUEST,
    "no_agent": status.HTTP_400_BAD_REQUEST,
    "document_not_found": status.HTTP_400_BAD_REQUEST,
    "empty_question": 422,
    "indexing_failed": status.HTTP_502_BAD_GATEWAY,
    "run_failed": status.HTTP_502_BAD_GATEWAY,
    "timeout": status.HTTP_504_GATEWAY_TIMEOUT,
    "rate_limited": status.HTTP_429_TOO_MANY_REQUESTS,
    "remote_call_failed": status.HTTP_502_BAD_GATEWAY,
}


class RateLimiter:
    """Sliding-window request limiter keyed by client address and path."""

    def __init__(self, requests: int, window_seconds: int, *, clock: Callable[[], float] = time.time) -> None:
        self.requests = requests
        self.window = window_seconds
        self._clock = clock
        self._buckets: dict[str, list[float]] = {}

    def __call__(self, request: Request) -> None:
        client_ip = request.headers.get("x-forwarded-for") or (request.client.host if request.client else "-")
        key = f"{client_ip}:{request.url.path}"
        now = self._clock()
        cutoff = now - self.window
        # Forget clients with no request inside the window
        stale = [k for k, times in self._buckets.items() if not times or times[-1] < cutoff]
        for k in stale:
            del self._buckets[k]
        bucket = self._buckets.setdefault(key, [])
        while bucket and bucket[0] < cutoff:
            bucket.pop(0)
        if len(bucket) >= self.requests:
            raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="Rate limit exceeded")
        bucket.append(now)


def create_app(*, settings: Settings | None = None, manager: SessionManager | None = None) -> FastAPI:
    settings = settings or get_settings()
    manager = manager or build_session_manager(settings)

    configure_logging()
    logger = get_logger("api")
    app = FastAPI(title="docassist API", version="0.1.0")
    app.state.manager = manager

    # Optional CORS
    if settings.cors_allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.cors_allow_origins),
            allow_credentials=settings.cors_allow_credentials,
            allow_methods=list(settings.cors_allow_methods),
            allow_headers=list(settings.cors_allow_headers),
        )

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):  # type: ignore[override]
        correlation_id = request.headers.get("X-Request-ID", uuid4().hex)
        request.state.correlation_id = correlation_id
        bind_correlation_id(correlation_id)
        try:
            response = await call_next(request)
        finally:
            clear_correlation_id()
        response.headers["X-Correlation-ID"] = correlation_id
        return response

    # Security dependencies
    def require_api_key(request: Request) -> None:
        expected = settings.api_key
        if not expected:
            return
        provided = request.headers.get("X-API-Key")
        if provided != expected:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")

    rate_limiter = RateLimiter(settings.rate_limit_requests, settings.rate_limit_window_seconds)

    @app.exception_handler(DocAssistError)
    async def handle_docassist_error(request: Request, exc: DocAssistError) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", uuid4().hex)
        logger.error("request.error", correlation_id=correlation_id, kind=exc.kind, detail=exc.message)
        return JSONResponse(
            status_code=_ERROR_STATUS.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR),
            content={**exc.to_dict(), "correlation_id": correlation_id},
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", uuid4().hex)
        logger.error("unhandled.error", correlation_id=correlation_id, detail=str(exc))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"kind": "internal", "message": "Internal Server Error", "correlation_id": correlation_id},
        )

    def get_manager(request: Request) -> SessionManager:
        return request.app.state.manager

    guards = [Depends(require_api_key), Depends(rate_limiter)]

    @app.post("/documents", response_model=DocumentUploadResponse, dependencies=guards)
    def upload_document(
        file: UploadFile = File(...),
        manager: SessionManager = Depends(get_manager),
    ) -> DocumentUploadResponse:
        filename = Path(file.filename or f"upload-{uuid4().hex}.pdf").name
        suffix = Path(filename).suffix.lower()
        if suffix not in settings.allowed_extensions_tuple:
            file.file.close()
            raise HTTPException(
                status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
                detail=f"Unsupported file type: {suffix or 'unknown'}",
            )
        size_limit = settings.max_upload_size_mb * 1024 * 1024
        with tempfile.TemporaryDirectory() as tmpdir:
            destination = Path(tmpdir) / filename
            # Stream copy to avoid loading entire file into memory
            bytes_written = 0
            with destination.open("wb") as out_f:
                while True:
                    chunk = file.file.read(1024 * 1024)  # 1MB chunks
                    if not chunk:
                        break
                    out_f.write(chunk)
                    bytes_written += len(chunk)
                    if bytes_written > size_limit:
                        file.file.close()
                        raise HTTPException(
                            status_code=413,
                            detail=f"File too large (>{settings.max_upload_size_mb}MB): {filename}",
                        )
            file.file.close()
            if bytes_written == 0:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"File is empty: {filename}")
            logger.info("upload.received", filename=filename, size_bytes=bytes_written)
            session = manager.establish_session(destination)
        return DocumentUploadResponse(info=_document_info(session))

    @app.get("/documents/current", response_model=DocumentUploadResponse, dependencies=guards)
    def current_document(manager: SessionManager = Depends(get_manager)) -> DocumentUploadResponse:
        session = manager.session
        if session.is_empty:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No document currently loaded")
        return DocumentUploadResponse(message="Document loaded", info=_document_info(session))

    @app.post("/ask", response_model=AnswerResponse, dependencies=guards)
    def ask(payload: AskRequest, manager: SessionManager = Depends(get_manager)) -> AnswerResponse:
        return _answer_response(manager.ask(payload.question))

    @app.post("/mcq", response_model=AnswerResponse, dependencies=guards)
    def generate_mcq(payload: TaskRequest, manager: SessionManager = Depends(get_manager)) -> AnswerResponse:
        return _answer_response(manager.ask_task(Task.MCQ, payload.language))

    @app.post("/summary", response_model=AnswerResponse, dependencies=guards)
    def generate_summary(payload: TaskRequest, manager: SessionManager = Depends(get_manager)) -> AnswerResponse:
        return _answer_response(manager.ask_task(Task.SUMMARY, payload.language))

    @app.post("/rubric", response_model=AnswerResponse, dependencies=guards)
    def generate_rubric(payload: TaskRequest, manager: SessionManager = Depends(get_manager)) -> AnswerResponse:
        return _answer_response(manager.ask_task(Task.RUBRIC, payload.language))

    @app.get("/history", response_model=HistoryResponse, dependencies=guards)
    def history(
        limit: int = Query(default=settings.history_limit, ge=1, le=100),
        manager: SessionManager = Depends(get_manager),
    ) -> HistoryResponse:
        entries = manager.get_history(limit)
        return HistoryResponse(
            messages=[HistoryEntryModel(role=e.role, content=e.content, timestamp=e.timestamp) for e in entries]
        )

    @app.post("/conversation/reset", response_model=ResetResponse, dependencies=guards)
    def reset_conversation(manager: SessionManager = Depends(get_manager)) -> ResetResponse:
        return ResetResponse(thread_ref=manager.reset_conversation())

    @app.post("/cleanup", response_model=CleanupResponse, dependencies=guards)
    def cleanup(manager: SessionManager = Depends(get_manager)) -> CleanupResponse:
        result = manager.teardown()
        message = "Cleanup completed successfully" if result.ok else "Cleanup completed with errors"
        return CleanupResponse(success=result.ok, message=message, errors=list(result.errors))

    @app.get("/status", response_model=StatusResponse, dependencies=guards)
    def system_status(manager: SessionManager = Depends(get_manager)) -> StatusResponse:
        snapshot = manager.get_status()
        session = manager.session
        return StatusResponse(
            status=SessionStatusModel(**snapshot.to_dict()),
            current_document=None if session.is_empty else _document_info(session),
            is_ready=manager.is_ready(),
        )

    @app.get("/metrics")
    async def metrics() -> Response:
        payload = generate_latest()
        return Response(content=payload, media_type=CONTENT_TYPE_LATEST)

    @app.get("/healthz")
    async def healthcheck(manager: SessionManager = Depends(get_manager)) -> dict[str, object]:
        from docassist import __version__

        return {
            "status": "ok",
            "version": __version__,
            "environment": settings.environment,
            "document_loaded": not manager.session.is_empty,
            "assistant_status": manager.get_status().to_dict(),
        }

    @app.head("/healthz")
    async def healthcheck_head() -> Response:
        return Response(status_code=status.HTTP_200_OK)

    @app.get("/livez")
    async def liveness() -> dict[str, str]:
        return {"status": "alive"}

    return app


def _document_info(session: Session) -> DocumentInfo:
    return DocumentInfo(
        filename=session.document_name,
        uploaded_at=session.established_at,
        file_ref=session.file_ref,
        index_ref=session.index_ref,
        agent_ref=session.agent_ref,
        thread_ref=session.thread_ref,
    )


def _answer_response(answer: Answer) -> AnswerResponse:
    return AnswerResponse(
        answer=answer.text,
        citations=[
            CitationModel(index=c.ordinal, quote=c.quote, file_ref=c.file_ref) for c in answer.citations
        ],
        attempts=answer.attempts,
        latency_ms=answer.latency_ms,
    )


app = create_app()
