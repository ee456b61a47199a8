"""Status publisher: read-only projections of job state for observers.

Two channels, both fed only with committed state:

* push: ``subscribe(job_id)`` yields a snapshot dict on every transition
* poll: ``get(job_id)`` reads the committed record

The orchestrator is the only writer; it calls ``publish`` after each commit
and ``close`` once a job will produce no further snapshots.
"""

import asyncio
import logging
from collections import defaultdict
from datetime import datetime
from typing import Any, AsyncIterator, Callable

from sqlalchemy.orm import Session

from app.models.job import TryOnJob
from app.services.job_service import JobService
from tryon_engine.state import TERMINAL_STATUSES

logger = logging.getLogger(__name__)

# Marks the end of a job's stream
_CLOSED = object()


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def job_snapshot(job: TryOnJob) -> dict[str, Any]:
    """Public, JSON-safe representation of a job."""
    return {
        "job_id": job.job_id,
        "owner_id": job.owner_id,
        "garment_id": job.garment_id,
        "photo_id": job.photo_id,
        "status": job.status,
        "provider": job.provider,
        "provider_job_id": job.provider_job_id,
        "result_artifact_key": job.result_artifact_key,
        "error_message": job.error_message,
        "quality_report": job.quality_report,
        "created_at": _iso(job.created_at),
        "updated_at": _iso(job.updated_at),
        "submitted_at": _iso(job.submitted_at),
        "completed_at": _iso(job.completed_at),
        "validated_at": _iso(job.validated_at),
    }


class StatusPublisher:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        job_service: JobService,
    ) -> None:
        self._session_factory = session_factory
        self._job_service = job_service
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)

    # ------------------------------------------------------------------
    # Poll channel
    # ------------------------------------------------------------------

    def get(self, job_id: str) -> dict[str, Any] | None:
        db = self._session_factory()
        try:
            job = self._job_service.get_by_job_id(db, job_id)
            return job_snapshot(job) if job is not None else None
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Push channel
    # ------------------------------------------------------------------

    def publish(self, snapshot: dict[str, Any]) -> None:
        """Deliver a committed snapshot to every subscriber of its job."""
        queues = self._subscribers.get(snapshot["job_id"], ())
        for queue in list(queues):
            queue.put_nowait(snapshot)
        logger.debug(
            "Published %s for job %s to %d subscriber(s)",
            snapshot["status"],
            snapshot["job_id"],
            len(queues),
        )

    def close(self, job_id: str) -> None:
        """End every open subscription for ``job_id``."""
        for queue in self._subscribers.pop(job_id, set()):
            queue.put_nowait(_CLOSED)

    def subscriber_count(self, job_id: str) -> int:
        return len(self._subscribers.get(job_id, ()))

    async def subscribe(self, job_id: str) -> AsyncIterator[dict[str, Any]]:
        """Yield the current snapshot, then one per transition until closed.

        A job that is already terminal yields its snapshot once and ends.
        Yields nothing for unknown jobs.
        """
        queue: asyncio.Queue = asyncio.Queue()
        # Register before reading so no transition falls between the two
        self._subscribers[job_id].add(queue)
        try:
            current = self.get(job_id)
            if current is None:
                return
            yield current
            if current["status"] in TERMINAL_STATUSES:
                return

            while True:
                item = await queue.get()
                if item is _CLOSED:
                    return
                yield item
        finally:
            subscribers = self._subscribers.get(job_id)
            if subscribers is not None:
                subscribers.discard(queue)
                if not subscribers:
                    self._subscribers.pop(job_id, None)
