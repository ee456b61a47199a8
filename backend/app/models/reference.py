"""Garment and user-photo references.

These rows are owned by the wardrobe CRUD service; the try-on pipeline only
reads them to resolve image keys, the garment category and the owner.
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from app.models import Base


class Garment(Base):
    __tablename__ = "garments"

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=lambda: uuid.uuid4().hex
    )
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    # Wardrobe category: shirt, coat, dress, pants, shoes, accessories, other
    category: Mapped[str] = mapped_column(String(30), default="other")
    # Object key inside the "garments" bucket
    image_key: Mapped[str] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class UserPhoto(Base):
    __tablename__ = "user_photos"

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=lambda: uuid.uuid4().hex
    )
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    # Object key inside the "user-photos" bucket
    image_key: Mapped[str] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
