"""FastAPI app: request logging, files router, health/readiness, metrics."""
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse, Response

from storage_service.api.files import router as files_router
from storage_service.core.config import get_settings
from storage_service.core.logging_config import configure_logging
from storage_service.core.metrics import get_metrics
from storage_service.core.request_logging import RequestLoggingMiddleware
from storage_service.services.pipeline import UploadPipeline, get_pipeline

settings = get_settings()
configure_logging(settings)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.storage_create_container:
        storage = get_pipeline().storage
        try:
            await storage.ensure_container()
            logger.info("Blob container '%s' initialized", storage.container)
        except Exception:
            logger.exception("Failed to initialize blob container '%s'", storage.container)
            raise
    yield


app = FastAPI(title=settings.app_name, lifespan=lifespan)
app.add_middleware(RequestLoggingMiddleware)

app.include_router(files_router, prefix="/api")


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/healthz")
async def healthz():
    """Liveness: no dependencies checked."""
    return {"status": "ok"}


@app.get("/readyz")
async def readyz(pipeline: UploadPipeline = Depends(get_pipeline)):
    """Readiness: ClamAV daemon answers PING when scanning is enabled and fail-closed."""
    scanner = pipeline.scanner
    if scanner is not None and not pipeline.allow_on_error:
        if not await scanner.ping():
            return JSONResponse(
                status_code=503,
                content={"status": "unavailable", "detail": "antivirus daemon unreachable"},
            )
    return {"status": "ok"}


@app.get("/metrics", response_class=Response)
async def metrics():
    body, content_type = get_metrics()
    return Response(content=body, media_type=content_type)
