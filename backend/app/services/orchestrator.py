"""Job orchestrator: drives a TryOnJob through its state machine.

    create ──submit──▶ processing ──poll…──▶ finalize ──▶ completed
       │                   │                     │
       └─ SubmissionError  ├─ provider failed    └─ DownloadError /
          ▼                ├─ provider canceled     StorageError
        failed             ├─ attempt cap hit        ▼
                           └─ loop crashed         failed
                              ▼
                            failed

The orchestrator is the single writer of job state.  After ``create``
submits a prediction, an asyncio task polls the provider every
``poll_interval`` seconds for at most ``max_attempts`` attempts counted from
submission.  ``poll`` can also be triggered on demand; it is idempotent, and
every terminal write is a compare-and-set in JobService, so the background
loop and on-demand polls can race safely.

Every committed transition is published to the StatusPublisher.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Callable

from sqlalchemy.orm import Session

from app.logging_config import bind_job_id
from app.models.job import JOB_STATUS_COMPLETED, TryOnJob, utcnow
from app.services.artifact_fetcher import ArtifactFetcher, result_key
from app.services.job_service import JobService
from app.services.quality_service import QualityService
from app.services.reference_resolver import ReferenceResolver
from app.services.status_publisher import StatusPublisher, job_snapshot
from tryon_engine.errors import (
    DownloadError,
    PollingTimeoutError,
    PredictionCanceled,
    PredictionFailure,
    StorageError,
    SubmissionError,
    TransientQueryError,
    ValidationError,
)
from tryon_engine.prediction_client import (
    PredictionClient,
    PredictionInput,
    PredictionStatus,
)
from tryon_engine.state import QualityReport

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Processing timeout (exceeded 5 minutes)"
PROVIDER_FAILED_MESSAGE = "AI processing failed"
CANCELED_MESSAGE = "Processing was canceled"


class JobNotFoundError(LookupError):
    """No job with the given id exists."""


class JobOrchestrator:
    def __init__(
        self,
        *,
        session_factory: Callable[[], Session],
        job_service: JobService,
        prediction_client: PredictionClient,
        fetcher: ArtifactFetcher,
        resolver: ReferenceResolver,
        publisher: StatusPublisher,
        quality_service: QualityService | None = None,
        poll_interval: float = 5.0,
        max_attempts: int = 60,
        auto_validate: bool = True,
        url_ttl_seconds: int = 3600,
    ) -> None:
        self._session_factory = session_factory
        self._jobs = job_service
        self._client = prediction_client
        self._fetcher = fetcher
        self._resolver = resolver
        self._publisher = publisher
        self._quality = quality_service
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self._auto_validate = auto_validate and quality_service is not None
        self._url_ttl = url_ttl_seconds

        self._tasks: dict[str, asyncio.Task] = {}
        # job_id -> (lock, number of holders and waiters)
        self._job_locks: dict[str, tuple[asyncio.Lock, int]] = {}

    # ------------------------------------------------------------------
    # Record helpers
    # ------------------------------------------------------------------

    def _get(self, job_id: str) -> TryOnJob | None:
        db = self._session_factory()
        try:
            return self._jobs.get_by_job_id(db, job_id)
        finally:
            db.close()

    def _require(self, job_id: str) -> TryOnJob:
        job = self._get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return job

    def _commit(self, job: TryOnJob | None) -> TryOnJob | None:
        """Publish a transition that JobService just committed."""
        if job is not None:
            self._publisher.publish(job_snapshot(job))
        return job

    def _fail(self, job_id: str, error: Exception | str) -> TryOnJob | None:
        """Move a non-terminal job to FAILED; a job that already ended is left as is."""
        message = str(error)
        db = self._session_factory()
        try:
            job = self._commit(self._jobs.mark_failed(db, job_id, message))
        finally:
            db.close()
        if job is None:
            # Already terminal, or deleted underneath us
            return self._get(job_id)
        self._publisher.close(job_id)
        return job

    def _budget(self) -> timedelta:
        return timedelta(seconds=self.poll_interval * self.max_attempts)

    @asynccontextmanager
    async def _job_lock(self, job_id: str):
        """Serialize finalize and delete for one job.

        The entry is dropped only when nobody holds or waits for it, so a
        late caller never gets a fresh lock while a waiter is still queued.
        """
        lock, users = self._job_locks.get(job_id, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._job_locks[job_id] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._job_locks[job_id]
            if users == 1:
                del self._job_locks[job_id]
            else:
                self._job_locks[job_id] = (lock, users - 1)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create(self, garment_id: str, photo_id: str) -> TryOnJob:
        """Create a job and submit it; polling continues in the background.

        Returns as soon as submission succeeded (job ``processing``) or failed
        (job ``failed``).

        Raises:
            ReferenceNotFoundError: Unknown garment or photo; no job is created.
        """
        refs = self._resolver.resolve(garment_id, photo_id)

        db = self._session_factory()
        try:
            job = self._commit(
                self._jobs.create_job(
                    db,
                    owner_id=refs.owner_id,
                    garment_id=refs.garment_id,
                    photo_id=refs.photo_id,
                )
            )
        finally:
            db.close()
        job_id = job.job_id

        try:
            provider_job_id = await self._client.submit(
                PredictionInput(
                    garment_url=refs.garment_url,
                    person_url=refs.photo_url,
                    category=refs.category,
                )
            )
        except SubmissionError as exc:
            logger.warning("Submission for job %s rejected: %s", job_id, exc)
            return self._fail(job_id, exc) or self._require(job_id)

        db = self._session_factory()
        try:
            processing = self._commit(self._jobs.mark_processing(db, job_id, provider_job_id))
        finally:
            db.close()
        if processing is None:
            # Deleted or failed while we were submitting
            return self._require(job_id)

        self._start_polling(job_id, self.max_attempts)
        return processing

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def _start_polling(self, job_id: str, attempts: int) -> None:
        if job_id in self._tasks:
            return
        task = asyncio.create_task(
            self._poll_until_terminal(job_id, attempts), name=f"poll-{job_id}"
        )
        self._tasks[job_id] = task

    def is_polling(self, job_id: str) -> bool:
        return job_id in self._tasks

    async def _poll_until_terminal(self, job_id: str, attempts: int) -> None:
        """Background loop: poll until terminal or the attempt budget is spent."""
        bind_job_id(job_id)
        logger.info("Starting polling (%d attempts, every %.1fs)", attempts, self.poll_interval)
        try:
            for attempt in range(1, attempts + 1):
                await asyncio.sleep(self.poll_interval)
                logger.debug("Polling attempt %d/%d", attempt, attempts)
                job = await self._poll_once(job_id)
                if job is None or job.is_terminal:
                    return
            logger.error("Polling timeout after %d attempts", attempts)
            self._fail(job_id, PollingTimeoutError(TIMEOUT_MESSAGE))
        except asyncio.CancelledError:
            logger.info("Polling cancelled")
            raise
        except Exception as exc:
            logger.exception("Polling loop crashed")
            self._fail(job_id, f"Polling error: {exc}")
        finally:
            self._tasks.pop(job_id, None)

    async def _poll_once(self, job_id: str) -> TryOnJob | None:
        job = self._get(job_id)
        if job is None or job.is_terminal or job.provider_job_id is None:
            return job

        try:
            prediction = await self._client.query_status(job.provider_job_id)
        except TransientQueryError as exc:
            logger.warning("Transient polling error for job %s: %s", job_id, exc)
            return job

        if prediction.status == PredictionStatus.SUCCEEDED:
            if not prediction.output_url:
                return self._fail(
                    job_id, PredictionFailure("Prediction succeeded without an output image")
                )
            return await self.finalize(job_id, prediction.output_url)
        if prediction.status == PredictionStatus.FAILED:
            logger.error("Prediction failed for job %s: %s", job_id, prediction.error)
            return self._fail(job_id, PredictionFailure(prediction.error or PROVIDER_FAILED_MESSAGE))
        if prediction.status == PredictionStatus.CANCELED:
            return self._fail(job_id, PredictionCanceled(CANCELED_MESSAGE))

        logger.debug("Job %s still %s at provider", job_id, prediction.status.value)
        return job

    async def poll(self, job_id: str) -> TryOnJob:
        """On-demand poll. Terminal jobs are returned untouched.

        Also enforces the time budget, so a job whose background loop died
        with its process still reaches a terminal state.
        """
        job = self._require(job_id)
        if job.is_terminal or job.provider_job_id is None:
            return job
        if job.submitted_at is not None and utcnow() - job.submitted_at > self._budget():
            logger.error("Job %s exceeded its polling budget", job_id)
            return self._fail(job_id, PollingTimeoutError(TIMEOUT_MESSAGE)) or self._require(job_id)
        polled = await self._poll_once(job_id)
        return polled if polled is not None else self._require(job_id)

    # ------------------------------------------------------------------
    # Finalize
    # ------------------------------------------------------------------

    async def finalize(self, job_id: str, output_url: str) -> TryOnJob:
        """Persist the provider output and complete the job.

        Concurrent calls for one job are serialized; whoever runs second sees
        the terminal state and returns without touching storage.
        """
        async with self._job_lock(job_id):
            job = self._require(job_id)
            if job.is_terminal:
                return job

            try:
                data = await self._fetcher.fetch(output_url)
                key = await self._persist(job_id, job.owner_id, data)
            except (DownloadError, StorageError) as exc:
                logger.error("Saving result for job %s failed: %s", job_id, exc)
                return self._fail(job_id, f"Failed to save result: {exc}") or self._require(job_id)

            db = self._session_factory()
            try:
                completed = self._commit(self._jobs.mark_completed(db, job_id, key))
            finally:
                db.close()
            if completed is None:
                current = self._get(job_id)
                if current is None:
                    # Record removed by another process while we were uploading
                    await self._fetcher.remove(key)
                    raise JobNotFoundError(f"Job {job_id} not found")
                return current

        if self._auto_validate:
            try:
                await self.validate(job_id)
            except ValidationError as exc:
                logger.warning("Automatic validation of job %s failed: %s", job_id, exc)
            completed = self._get(job_id) or completed
        self._publisher.close(job_id)
        return completed

    async def _persist(self, job_id: str, owner_id: str, data: bytes) -> str:
        # The upload runs in a worker thread that cancellation cannot stop;
        # keep the job lock until it lands so delete sees the file.
        upload = asyncio.ensure_future(self._fetcher.persist(job_id, owner_id, data))
        try:
            return await asyncio.shield(upload)
        except asyncio.CancelledError:
            await asyncio.wait([upload])
            raise

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    async def validate(self, job_id: str) -> QualityReport:
        """Score a completed job and attach the report. Never changes status.

        Raises:
            JobNotFoundError: Unknown job.
            ValidationError: The job has no result yet, or scoring failed.
        """
        if self._quality is None:
            raise ValidationError("Quality validation is not configured")

        job = self._require(job_id)
        if job.status != JOB_STATUS_COMPLETED or not job.result_artifact_key:
            raise ValidationError(f"Job {job_id} has no result to validate (status={job.status})")

        try:
            refs = self._resolver.resolve(job.garment_id, job.photo_id)
            result_url = self.result_url(job.result_artifact_key)
        except (LookupError, StorageError) as exc:
            raise ValidationError(f"Cannot locate images for job {job_id}: {exc}") from exc

        report = await self._quality.assess(refs.garment_url, result_url, refs.photo_url)

        db = self._session_factory()
        try:
            self._commit(self._jobs.attach_quality_report(db, job_id, report.to_dict()))
        finally:
            db.close()
        return report

    def result_url(self, key: str, ttl_seconds: int | None = None) -> str:
        return self._fetcher.signed_result_url(key, ttl_seconds or self._url_ttl)

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete(self, job_id: str) -> None:
        """Remove the result artifact (if any) and then the job record.

        Waits for an in-flight finalize, so an upload that is already under
        way cannot leave a file behind.
        """
        job = self._require(job_id)

        task = self._tasks.pop(job_id, None)
        if task is not None:
            task.cancel()
            await asyncio.wait([task])

        async with self._job_lock(job_id):
            job = self._require(job_id)
            # The key is deterministic; removing a missing object is a no-op
            await self._fetcher.remove(job.result_artifact_key or result_key(job.owner_id, job_id))

            db = self._session_factory()
            try:
                self._jobs.delete_job(db, job_id)
            finally:
                db.close()
        self._publisher.close(job_id)

    # ------------------------------------------------------------------
    # Process lifecycle
    # ------------------------------------------------------------------

    def resume_inflight(self) -> int:
        """Restart polling for jobs left ``processing`` by a previous process.

        Each job gets whatever remains of its attempt budget; a job with no
        budget left is polled once more before it times out.
        """
        db = self._session_factory()
        try:
            jobs = self._jobs.list_processing(db)
        finally:
            db.close()

        now = utcnow()
        for job in jobs:
            elapsed = (now - job.submitted_at).total_seconds() if job.submitted_at else 0.0
            used = int(elapsed // self.poll_interval) if self.poll_interval > 0 else 0
            remaining = max(1, self.max_attempts - used)
            logger.info("Resuming polling for job %s (%d attempts left)", job.job_id, remaining)
            self._start_polling(job.job_id, remaining)
        return len(jobs)

    async def shutdown(self) -> None:
        """Cancel outstanding polling tasks (they are resumed on next startup)."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
