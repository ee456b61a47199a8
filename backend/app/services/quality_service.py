"""Quality service: downloads images and runs the rule-based validator.

The person-similarity signal comes from an optional external
``PersonSimilarityProvider``.  Without one, or when it cannot answer, the
report is built from garment consistency alone and records the person
signal as unavailable.
"""

import asyncio
import logging
import time
from typing import Protocol

from app.services.artifact_fetcher import ArtifactFetcher
from tryon_engine.errors import DownloadError, ValidationError
from tryon_engine.imaging import sample_pixels
from tryon_engine.state import PersonConsistency, QualityReport
from tryon_engine.validators import QualityValidator

logger = logging.getLogger(__name__)


class PersonSimilarityProvider(Protocol):
    """External face comparison between the source photo and the result.

    Returns ``None`` when no answer is available.
    """

    async def compare(self, photo_url: str, result_url: str) -> PersonConsistency | None:
        ...


class QualityService:
    def __init__(
        self,
        fetcher: ArtifactFetcher,
        validator: QualityValidator,
        person_provider: PersonSimilarityProvider | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._validator = validator
        self._person_provider = person_provider

    async def _download(self, url: str, label: str) -> bytes:
        try:
            return await self._fetcher.fetch(url)
        except DownloadError as exc:
            raise ValidationError(f"Could not download {label} image: {exc}") from exc

    async def _person_signal(self, photo_url: str | None, result_url: str) -> PersonConsistency | None:
        if self._person_provider is None or not photo_url:
            return None
        try:
            return await self._person_provider.compare(photo_url, result_url)
        except Exception:
            logger.exception("Person similarity check failed, continuing without it")
            return None

    async def assess(
        self,
        garment_url: str,
        result_url: str,
        photo_url: str | None = None,
    ) -> QualityReport:
        """Score the result image against the garment image.

        Raises:
            ValidationError: If an image cannot be downloaded or decoded.
        """
        start = time.monotonic()
        garment_bytes, result_bytes = await asyncio.gather(
            self._download(garment_url, "garment"),
            self._download(result_url, "result"),
        )
        limit = self._validator.config.sample_pixels
        garment_pixels = sample_pixels(garment_bytes, limit)
        result_pixels = sample_pixels(result_bytes, limit)

        person = await self._person_signal(photo_url, result_url)
        report = self._validator.assess(garment_pixels, result_pixels, person=person)

        logger.info(
            "Validation finished: score=%d recommendation=%s",
            report.overall_score,
            report.recommendation.value,
            extra={
                "processing_time_ms": round((time.monotonic() - start) * 1000, 1),
                "issue_count": len(report.issues),
                "person_signal": person is not None,
            },
        )
        return report
