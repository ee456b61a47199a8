"""Job service: creates, transitions and queries TryOnJob records.

Keeps DB operations isolated from the orchestrator and API layers so the
logic is easily testable and reusable.

Every status transition is a compare-and-set: the UPDATE only matches rows
whose current status is one of the allowed source states.  A transition that
loses the race returns ``None`` and writes nothing, which is what makes
concurrent pollers and finalizers safe.
"""

import logging
import uuid
from typing import Any, Iterable

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.models.job import (
    TryOnJob,
    JOB_STATUS_PENDING,
    JOB_STATUS_PROCESSING,
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
    utcnow,
)

logger = logging.getLogger(__name__)

_NON_TERMINAL = (JOB_STATUS_PENDING, JOB_STATUS_PROCESSING)


class JobService:
    """CRUD operations and status helpers for TryOnJob records."""

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_job(
        self,
        db: Session,
        *,
        owner_id: str,
        garment_id: str,
        photo_id: str,
    ) -> TryOnJob:
        """Create a new TryOnJob in PENDING state and return it."""
        job = TryOnJob(
            job_id=uuid.uuid4().hex,
            owner_id=owner_id,
            garment_id=garment_id,
            photo_id=photo_id,
            status=JOB_STATUS_PENDING,
        )
        db.add(job)
        db.commit()
        db.refresh(job)
        logger.info("Created job %s for garment %s", job.job_id, garment_id)
        return job

    # ------------------------------------------------------------------
    # Transitions (compare-and-set on status)
    # ------------------------------------------------------------------

    def _transition(
        self,
        db: Session,
        job_id: str,
        from_statuses: Iterable[str],
        **values: Any,
    ) -> TryOnJob | None:
        """Apply ``values`` only if the job is currently in ``from_statuses``.

        Returns the refreshed job when this call performed the write, or
        ``None`` when the job is missing or already moved on.
        """
        result = db.execute(
            update(TryOnJob)
            .where(TryOnJob.job_id == job_id, TryOnJob.status.in_(tuple(from_statuses)))
            .values(updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        if result.rowcount != 1:
            logger.info(
                "Transition of job %s to %s skipped (status changed concurrently)",
                job_id,
                values.get("status"),
            )
            return None
        return self.get_by_job_id(db, job_id)

    def mark_processing(
        self, db: Session, job_id: str, provider_job_id: str
    ) -> TryOnJob | None:
        """PENDING → PROCESSING; records the provider handle and starts the budget clock."""
        return self._transition(
            db,
            job_id,
            (JOB_STATUS_PENDING,),
            status=JOB_STATUS_PROCESSING,
            provider_job_id=provider_job_id,
            submitted_at=utcnow(),
        )

    def mark_completed(
        self, db: Session, job_id: str, result_artifact_key: str
    ) -> TryOnJob | None:
        """Non-terminal → COMPLETED with the stored result key."""
        job = self._transition(
            db,
            job_id,
            _NON_TERMINAL,
            status=JOB_STATUS_COMPLETED,
            result_artifact_key=result_artifact_key,
            completed_at=utcnow(),
        )
        if job is not None:
            logger.info("Job %s completed → %s", job_id, result_artifact_key)
        return job

    def mark_failed(
        self, db: Session, job_id: str, error_message: str
    ) -> TryOnJob | None:
        """Non-terminal → FAILED and record the error."""
        job = self._transition(
            db,
            job_id,
            _NON_TERMINAL,
            status=JOB_STATUS_FAILED,
            error_message=error_message,
            completed_at=utcnow(),
        )
        if job is not None:
            logger.info("Job %s failed: %s", job_id, error_message)
        return job

    def attach_quality_report(
        self, db: Session, job_id: str, report: dict[str, Any]
    ) -> TryOnJob | None:
        """Replace the quality report of a COMPLETED job. Status is untouched."""
        return self._transition(
            db,
            job_id,
            (JOB_STATUS_COMPLETED,),
            quality_report=report,
            validated_at=utcnow(),
        )

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get_by_job_id(self, db: Session, job_id: str) -> TryOnJob | None:
        """Fetch a job by its public job_id UUID string."""
        return db.query(TryOnJob).filter(TryOnJob.job_id == job_id).first()

    def list_for_owner(
        self,
        db: Session,
        owner_id: str,
        *,
        status: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[TryOnJob], int]:
        """Return a page of jobs for an owner plus the total count.

        Jobs are ordered newest-first.
        """
        q = db.query(TryOnJob).filter(TryOnJob.owner_id == owner_id)
        if status is not None:
            q = q.filter(TryOnJob.status == status)
        total = q.count()
        offset = (page - 1) * page_size
        jobs = (
            q.order_by(TryOnJob.created_at.desc(), TryOnJob.id.desc())
            .offset(offset)
            .limit(page_size)
            .all()
        )
        return jobs, total

    def list_processing(self, db: Session) -> list[TryOnJob]:
        """All jobs waiting on the provider (used to resume polling at startup)."""
        return (
            db.query(TryOnJob)
            .filter(TryOnJob.status == JOB_STATUS_PROCESSING)
            .order_by(TryOnJob.id)
            .all()
        )

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete_job(self, db: Session, job_id: str) -> bool:
        """Delete a job record. Returns False when it does not exist."""
        job = self.get_by_job_id(db, job_id)
        if job is None:
            return False
        db.delete(job)
        db.commit()
        logger.info("Deleted job %s", job_id)
        return True
