"""Tests for QualityService: download, sample and score."""

import io
from unittest.mock import AsyncMock

import pytest
from PIL import Image

from app.services.artifact_fetcher import ArtifactFetcher
from app.services.quality_service import QualityService
from conftest import image_bytes
from tryon_engine.errors import DownloadError, ValidationError
from tryon_engine.state import PersonConsistency, Recommendation
from tryon_engine.validators import QualityValidator, ValidationConfig

GARMENT_URL = "https://files.example/garment.png"
RESULT_URL = "https://files.example/result.png"
PHOTO_URL = "https://files.example/photo.png"


def _fetcher(mapping: dict[str, bytes]) -> ArtifactFetcher:
    fetcher = AsyncMock(spec=ArtifactFetcher)

    async def fetch(url):
        if url not in mapping:
            raise DownloadError("Download failed with status 404 Not Found")
        return mapping[url]

    fetcher.fetch.side_effect = fetch
    return fetcher


@pytest.mark.asyncio
async def test_identical_images_accept():
    red = image_bytes((200, 50, 50))
    service = QualityService(_fetcher({GARMENT_URL: red, RESULT_URL: red}), QualityValidator())

    report = await service.assess(GARMENT_URL, RESULT_URL)

    assert report.overall_score == 100
    assert report.recommendation == Recommendation.ACCEPT
    assert report.person_consistency is None


@pytest.mark.asyncio
async def test_uses_configured_sample_size():
    # Top row matches, everything below differs
    img = Image.new("RGB", (10, 10), (255, 255, 255))
    for x in range(10):
        img.putpixel((x, 0), (0, 0, 0))
    buf = io.BytesIO()
    img.save(buf, format="PNG")

    mapping = {GARMENT_URL: image_bytes((0, 0, 0), size=(10, 10)), RESULT_URL: buf.getvalue()}
    service = QualityService(_fetcher(mapping), QualityValidator(ValidationConfig(sample_pixels=10)))

    report = await service.assess(GARMENT_URL, RESULT_URL)
    assert report.overall_score == 100


@pytest.mark.asyncio
async def test_download_failure_is_validation_error():
    service = QualityService(_fetcher({GARMENT_URL: image_bytes((1, 2, 3))}), QualityValidator())
    with pytest.raises(ValidationError, match="result image"):
        await service.assess(GARMENT_URL, RESULT_URL)


@pytest.mark.asyncio
async def test_undecodable_image_is_validation_error():
    mapping = {GARMENT_URL: image_bytes((1, 2, 3)), RESULT_URL: b"<html>oops</html>"}
    service = QualityService(_fetcher(mapping), QualityValidator())
    with pytest.raises(ValidationError, match="Cannot decode image"):
        await service.assess(GARMENT_URL, RESULT_URL)


@pytest.mark.asyncio
async def test_person_provider_signal_is_used():
    red = image_bytes((200, 50, 50))
    person = PersonConsistency(
        face_similarity=0.0, face_detected_original=True, face_detected_result=False
    )
    provider = AsyncMock()
    provider.compare.return_value = person
    service = QualityService(
        _fetcher({GARMENT_URL: red, RESULT_URL: red}), QualityValidator(), person_provider=provider
    )

    report = await service.assess(GARMENT_URL, RESULT_URL, PHOTO_URL)

    provider.compare.assert_awaited_once_with(PHOTO_URL, RESULT_URL)
    assert report.person_consistency == person
    assert report.recommendation == Recommendation.REJECT


@pytest.mark.asyncio
async def test_failing_person_provider_is_treated_as_unavailable():
    red = image_bytes((200, 50, 50))
    provider = AsyncMock()
    provider.compare.side_effect = RuntimeError("face service down")
    service = QualityService(
        _fetcher({GARMENT_URL: red, RESULT_URL: red}), QualityValidator(), person_provider=provider
    )

    report = await service.assess(GARMENT_URL, RESULT_URL, PHOTO_URL)

    assert report.person_consistency is None
    assert report.overall_score == 100
