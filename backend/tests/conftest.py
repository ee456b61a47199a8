"""Shared fixtures: in-memory database, temp storage and a seeded wardrobe."""

import io
from urllib.parse import unquote, urlparse

import httpx
import pytest
from PIL import Image
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.models import Base
from app.models.reference import Garment, UserPhoto
from app.services.storage import GARMENTS_BUCKET, USER_PHOTOS_BUCKET, StorageService

OWNER_ID = "user-1"
RESULT_URL = "https://replicate.delivery/pbxt/result.jpg"


def image_bytes(color: tuple[int, int, int], size=(16, 16), fmt: str = "PNG") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def session_factory():
    """A shared in-memory DB; every session sees the same data."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine)


@pytest.fixture
def storage(tmp_path) -> StorageService:
    return StorageService(
        str(tmp_path / "storage"),
        signing_secret="test-secret",
        public_base_url="http://testserver",
    )


@pytest.fixture
def wardrobe(session_factory, storage) -> tuple[str, str]:
    """One garment and one photo owned by OWNER_ID; returns their ids."""
    storage.upload(GARMENTS_BUCKET, f"{OWNER_ID}/shirt.png", image_bytes((200, 50, 50)))
    storage.upload(USER_PHOTOS_BUCKET, f"{OWNER_ID}/me.png", image_bytes((180, 150, 120)))

    s = session_factory()
    garment = Garment(user_id=OWNER_ID, category="shirt", image_key=f"{OWNER_ID}/shirt.png")
    photo = UserPhoto(user_id=OWNER_ID, image_key=f"{OWNER_ID}/me.png")
    s.add_all([garment, photo])
    s.commit()
    ids = (garment.id, photo.id)
    s.close()
    return ids


@pytest.fixture
def file_transport(storage):
    """Mock network: serves signed storage URLs from disk and the provider's output image.

    ``file_transport.result_bytes`` can be replaced to change what the
    provider "generated"; ``file_transport.requests`` records every URL.
    """

    class _Transport(httpx.MockTransport):
        def __init__(self):
            self.result_bytes = image_bytes((200, 50, 50), fmt="JPEG")
            self.requests: list[str] = []
            super().__init__(self._handle)

        def _handle(self, request: httpx.Request) -> httpx.Response:
            url = str(request.url)
            self.requests.append(url)
            if url == RESULT_URL:
                return httpx.Response(200, content=self.result_bytes)
            parsed = urlparse(url)
            if parsed.path.startswith("/api/files/"):
                bucket, key = parsed.path[len("/api/files/"):].split("/", 1)
                key = unquote(key)
                if storage.exists(bucket, key):
                    return httpx.Response(200, content=storage.read(bucket, key))
            return httpx.Response(404, text="not found")

    return _Transport()
