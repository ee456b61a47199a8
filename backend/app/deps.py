"""FastAPI dependency functions shared across routers.

The services are built once in the application lifespan (see ``app.main``)
and parked on ``app.state``; these helpers hand them to route functions.
Tests swap in their own instances by assigning to ``app.state`` directly.
"""

from fastapi import HTTPException, Request

from app.services.job_service import JobService
from app.services.orchestrator import JobOrchestrator
from app.services.status_publisher import StatusPublisher
from app.services.storage import StorageService


def _service(request: Request, name: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(status_code=503, detail="Service is starting up")
    return service


def get_orchestrator(request: Request) -> JobOrchestrator:
    return _service(request, "orchestrator")


def get_publisher(request: Request) -> StatusPublisher:
    return _service(request, "publisher")


def get_storage(request: Request) -> StorageService:
    return _service(request, "storage")


def get_job_service(request: Request) -> JobService:
    return _service(request, "job_service")


def get_session_factory(request: Request):
    return _service(request, "session_factory")
