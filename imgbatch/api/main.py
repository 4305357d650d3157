"""FastAPI entrypoint and HTTP routes."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, File, Header, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from prometheus_client import make_asgi_app

from imgbatch.api.streaming import sse_events, stream_batch
from imgbatch.config.settings import Settings, get_settings
from imgbatch.errors import PreconditionError
from imgbatch.imgproc import ImageNormalizer, SourceImage
from imgbatch.monitoring.logging import configure_logging
from imgbatch.services.batch import BatchOrchestrator
from imgbatch.services.progress import ProgressEvent, SessionRegistry
from imgbatch.services.stages import ProgressEventType

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def create_app(settings: Settings | None = None, sessions: SessionRegistry | None = None) -> FastAPI:
    """Initialise the FastAPI application."""

    settings = settings or get_settings()
    configure_logging(settings.log_level)
    sessions = sessions or SessionRegistry()
    spec = settings.target_spec()

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await sessions.close()

    app = FastAPI(
        title="Image Batch Normalizer API",
        version="0.1.0",
        docs_url="/docs" if settings.environment != "prod" else None,
        redoc_url="/redoc" if settings.environment != "prod" else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.sessions = sessions

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Session-ID"],
        expose_headers=["Content-Disposition"],
        allow_credentials=False,
    )
    if settings.metrics_enabled:
        app.mount("/metrics", make_asgi_app())

    @app.get("/", tags=["system"])
    async def index() -> dict[str, str]:
        return {"status": "Image processor API is running"}

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Simple health endpoint used for readiness probes."""

        return {"status": "ok"}

    @app.get("/api/progress/{session_id}", tags=["progress"])
    async def progress_stream(session_id: str) -> StreamingResponse:
        """Server-sent events with the progress of the session's batch."""

        logger.info("[%s] SSE connection request received", session_id)
        channel = sessions.register(session_id)
        channel.notify(ProgressEvent.create(ProgressEventType.CONNECTED, "Progress tracking connected"))
        return StreamingResponse(
            sse_events(sessions, channel, heartbeat=settings.heartbeat_seconds),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    @app.post("/api/process", tags=["images"], response_model=None)
    async def process_images(
        images: list[UploadFile] | None = File(default=None),
        x_session_id: str = Header(default="unknown", alias="X-Session-ID"),
    ) -> StreamingResponse | JSONResponse:
        """Normalise the uploaded images and stream them back as a zip archive."""

        session_id = x_session_id or "unknown"
        sources = []
        for position, upload in enumerate(images or [], start=1):
            data = await upload.read()
            sources.append(SourceImage(filename=upload.filename or f"image-{position}", data=data))

        orchestrator = BatchOrchestrator(ImageNormalizer(spec), session_id=session_id)
        try:
            orchestrator.check_batch(sources)
        except PreconditionError as exc:
            logger.info("[%s] %s", session_id, exc)
            return JSONResponse(status_code=400, content={"error": str(exc)})

        total_size = sum(source.size for source in sources)
        logger.info(
            "[%s] Upload complete: %d files, %.2f MB total",
            session_id,
            len(sources),
            total_size / 1024 / 1024,
        )
        notifier = sessions.notifier(session_id)
        notifier.notify(
            ProgressEvent.create(
                ProgressEventType.UPLOAD_COMPLETE,
                f"Received {len(sources)} images ({total_size / 1024 / 1024:.2f} MB)",
                totalFiles=len(sources),
            ),
        )

        return StreamingResponse(
            stream_batch(
                orchestrator,
                sources,
                notifier,
                compression_level=settings.zip_compression_level,
                on_finish=lambda: sessions.schedule_removal(session_id, settings.session_grace_seconds),
            ),
            media_type="application/zip",
            headers={"Content-Disposition": f"attachment; filename={settings.archive_filename}"},
        )

    return app


app = create_app()
