"""TryOnJob model: one try-on request and its lifecycle.

Status lifecycle:
    pending → processing → completed
                         ↘ failed
    pending ─────────────→ failed   (submission rejected)

Invariants:
    result_artifact_key is set iff status == completed
    error_message is set iff status == failed
    completed_at is set iff the status is terminal
"""

from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.models import Base
from tryon_engine.state import TERMINAL_STATUSES, JobStatus

# Valid job status values, in lifecycle order
JOB_STATUS_PENDING = JobStatus.PENDING.value
JOB_STATUS_PROCESSING = JobStatus.PROCESSING.value
JOB_STATUS_COMPLETED = JobStatus.COMPLETED.value
JOB_STATUS_FAILED = JobStatus.FAILED.value

VALID_JOB_STATUSES: list[str] = [
    JOB_STATUS_PENDING,
    JOB_STATUS_PROCESSING,
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
]

PROVIDER_REPLICATE = "replicate"


def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite drops tzinfo, so we never store it)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TryOnJob(Base):
    __tablename__ = "tryon_jobs"

    id: Mapped[int] = mapped_column(primary_key=True)

    # --- Identity ---
    job_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)

    # --- Ownership / references ---
    owner_id: Mapped[str] = mapped_column(String(64), index=True)
    garment_id: Mapped[str] = mapped_column(String(64))
    photo_id: Mapped[str] = mapped_column(String(64))

    # --- Status tracking ---
    status: Mapped[str] = mapped_column(
        String(20), default=JOB_STATUS_PENDING, index=True
    )
    provider: Mapped[str] = mapped_column(String(30), default=PROVIDER_REPLICATE)
    # Prediction handle; null until submission succeeds
    provider_job_id: Mapped[str | None] = mapped_column(String(128), default=None)

    # --- Results ---
    # Key of the generated image inside the "tryon-results" bucket
    result_artifact_key: Mapped[str | None] = mapped_column(String(255), default=None)
    # Failure cause when status == "failed"
    error_message: Mapped[str | None] = mapped_column(Text, default=None)
    # QualityReport.to_dict(); attached after validation, may lag completion
    quality_report: Mapped[dict | None] = mapped_column(JSON, default=None)

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
    # Start of the polling budget
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)
    validated_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
