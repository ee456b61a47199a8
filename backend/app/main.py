import logging
import os
from contextlib import asynccontextmanager
from dataclasses import replace

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Configure structured JSON logging as early as possible so every subsequent
# log record (including import-time warnings) uses the JSON formatter.
from app.logging_config import RequestIdMiddleware, configure_logging

# Use LOG_LEVEL env var directly here because settings hasn't been imported yet
configure_logging(level=os.environ.get("LOG_LEVEL", "INFO"))

from app.api.files import router as files_router  # noqa: E402
from app.api.tryon import router as tryon_router  # noqa: E402
from app.config import Settings, settings  # noqa: E402
from app.database import SessionLocal, init_db  # noqa: E402
from app.services.artifact_fetcher import ArtifactFetcher  # noqa: E402
from app.services.job_service import JobService  # noqa: E402
from app.services.orchestrator import JobOrchestrator  # noqa: E402
from app.services.quality_service import QualityService  # noqa: E402
from app.services.reference_resolver import ReferenceResolver  # noqa: E402
from app.services.status_publisher import StatusPublisher  # noqa: E402
from app.services.storage import StorageService  # noqa: E402
from tryon_engine.prediction_client import PredictionClient  # noqa: E402
from tryon_engine.validators import DEFAULT_VALIDATION_CONFIG, QualityValidator  # noqa: E402

logger = logging.getLogger(__name__)


def build_services(
    config: Settings,
    session_factory=SessionLocal,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict:
    """Construct the service graph once; returned as ``app.state`` attributes.

    ``transport`` replaces the network for every outbound HTTP client.
    """
    storage = StorageService(
        config.storage_path,
        signing_secret=config.storage_signing_secret,
        public_base_url=config.public_base_url,
    )
    job_service = JobService()
    publisher = StatusPublisher(session_factory, job_service)
    fetcher = ArtifactFetcher(storage, transport=transport)
    validator = QualityValidator(
        replace(DEFAULT_VALIDATION_CONFIG, sample_pixels=config.quality_sample_pixels)
    )
    prediction_client = PredictionClient(
        config.replicate_api_token or None,
        model_version=config.replicate_model_version,
        base_url=config.replicate_base_url,
        timeout=config.http_timeout_seconds,
        transport=transport,
    )
    orchestrator = JobOrchestrator(
        session_factory=session_factory,
        job_service=job_service,
        prediction_client=prediction_client,
        fetcher=fetcher,
        resolver=ReferenceResolver(
            session_factory, storage, url_ttl_seconds=config.signed_url_ttl_seconds
        ),
        publisher=publisher,
        quality_service=QualityService(fetcher, validator),
        poll_interval=config.poll_interval_seconds,
        max_attempts=config.poll_max_attempts,
        auto_validate=config.auto_validate,
        url_ttl_seconds=config.signed_url_ttl_seconds,
    )
    return {
        "session_factory": session_factory,
        "storage": storage,
        "job_service": job_service,
        "publisher": publisher,
        "orchestrator": orchestrator,
        "prediction_client": prediction_client,
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up")
    init_db()
    logger.info("Database initialised")

    for name, service in build_services(settings).items():
        setattr(app.state, name, service)

    resumed = app.state.orchestrator.resume_inflight()
    if resumed:
        logger.info("Resumed polling for %d in-flight job(s)", resumed)
    yield
    logger.info("Application shutting down")
    await app.state.orchestrator.shutdown()


app = FastAPI(title="Virtual Try-On API", lifespan=lifespan)

# Request ID middleware must be added BEFORE CORS so every response carries
# the X-Request-ID header (including preflight OPTIONS responses).
app.add_middleware(RequestIdMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
)

app.include_router(tryon_router)
app.include_router(files_router)


@app.get("/api/health")
async def health():
    client = getattr(app.state, "prediction_client", None)
    return {
        "status": "ok",
        "provider_configured": bool(client is not None and client.is_configured),
    }
