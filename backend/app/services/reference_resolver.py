"""Resolves garment / photo references into signed image URLs."""

import logging
from dataclasses import dataclass
from typing import Callable

from sqlalchemy.orm import Session

from app.models.reference import Garment, UserPhoto
from app.services.storage import GARMENTS_BUCKET, USER_PHOTOS_BUCKET, StorageService

logger = logging.getLogger(__name__)


class ReferenceNotFoundError(LookupError):
    """A garment or photo does not exist, or the two belong to different users."""


@dataclass(frozen=True)
class TryOnReferences:
    owner_id: str
    garment_id: str
    photo_id: str
    category: str
    garment_url: str
    photo_url: str


class ReferenceResolver:
    """Reads the wardrobe tables and signs URLs for the referenced images."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        storage: StorageService,
        *,
        url_ttl_seconds: int = 3600,
    ) -> None:
        self._session_factory = session_factory
        self._storage = storage
        self._ttl = url_ttl_seconds

    def resolve(self, garment_id: str, photo_id: str) -> TryOnReferences:
        db = self._session_factory()
        try:
            garment = db.get(Garment, garment_id)
            photo = db.get(UserPhoto, photo_id)
        finally:
            db.close()

        if garment is None:
            raise ReferenceNotFoundError(f"Garment {garment_id} not found")
        if photo is None:
            raise ReferenceNotFoundError(f"Photo {photo_id} not found")
        if garment.user_id != photo.user_id:
            logger.warning(
                "Garment %s and photo %s belong to different users", garment_id, photo_id
            )
            raise ReferenceNotFoundError(f"Photo {photo_id} not found")

        return TryOnReferences(
            owner_id=garment.user_id,
            garment_id=garment.id,
            photo_id=photo.id,
            category=garment.category,
            garment_url=self._storage.signed_url(GARMENTS_BUCKET, garment.image_key, self._ttl),
            photo_url=self._storage.signed_url(USER_PHOTOS_BUCKET, photo.image_key, self._ttl),
        )
