"""Artifact fetcher: downloads generated images and persists them.

Result images live in the ``tryon-results`` bucket under a deterministic,
job-scoped key ``{owner_id}/{job_id}.jpg``.  Writes overwrite, so running
finalization twice for the same job leaves one object behind.
"""

import asyncio
import logging

import httpx

from app.services.storage import RESULTS_BUCKET, StorageService
from tryon_engine.errors import DownloadError

logger = logging.getLogger(__name__)


def result_key(owner_id: str, job_id: str) -> str:
    return f"{owner_id}/{job_id}.jpg"


class ArtifactFetcher:
    """Downloads a URL and writes the bytes into object storage."""

    def __init__(
        self,
        storage: StorageService,
        *,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._storage = storage
        self._timeout = timeout
        self._transport = transport

    async def fetch(self, url: str) -> bytes:
        """Download ``url``.

        Raises:
            DownloadError: On a non-2xx response or a transport failure.
        """
        logger.debug("Downloading %s", url)
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                resp = await client.get(url)
        except httpx.HTTPError as exc:
            raise DownloadError(f"Download failed: {exc}") from exc

        if not resp.is_success:
            raise DownloadError(
                f"Download failed with status {resp.status_code} {resp.reason_phrase}"
            )
        logger.debug("Downloaded %d bytes", len(resp.content))
        return resp.content

    async def persist(self, job_id: str, owner_id: str, data: bytes) -> str:
        """Store ``data`` as the job's result and return its storage key.

        Raises:
            StorageError: If the write fails.
        """
        key = result_key(owner_id, job_id)
        await asyncio.to_thread(
            self._storage.upload,
            RESULTS_BUCKET,
            key,
            data,
            content_type="image/jpeg",
            overwrite=True,
        )
        logger.info("Persisted result for job %s (%d bytes)", job_id, len(data))
        return key

    async def remove(self, key: str) -> None:
        """Delete a stored result."""
        await asyncio.to_thread(self._storage.delete, RESULTS_BUCKET, [key])

    def signed_result_url(self, key: str, ttl_seconds: int) -> str:
        return self._storage.signed_url(RESULTS_BUCKET, key, ttl_seconds)
