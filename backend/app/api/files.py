"""Signed object serving for the local storage backend.

URL pattern: /api/files/{bucket}/{key}?expires=<unix>&signature=<hex>

These are the URLs handed to the prediction provider and to clients, so a
request is only served with a valid, unexpired signature.
"""

import logging
from pathlib import PurePosixPath

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import FileResponse

from app.deps import get_storage
from app.services.storage import StorageService
from tryon_engine.errors import StorageError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/files", tags=["files"])

_MEDIA_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
}


@router.get("/{bucket}/{key:path}")
def serve_file(
    bucket: str,
    key: str,
    expires: int = Query(...),
    signature: str = Query(..., min_length=1),
    storage: StorageService = Depends(get_storage),
) -> FileResponse:
    """Serve a stored object.

    Returns 403 for a bad or expired signature and 404 when the object
    does not exist (or the bucket/key is invalid).
    """
    if not storage.verify(bucket, key, expires, signature):
        logger.warning("Rejected file request with bad signature", extra={"bucket": bucket})
        raise HTTPException(status_code=403, detail="Invalid or expired signature")

    try:
        path = storage.resolve(bucket, key)
    except StorageError:
        raise HTTPException(status_code=404, detail="Not found")
    if not path.is_file():
        raise HTTPException(status_code=404, detail="Not found")

    media_type = _MEDIA_TYPES.get(PurePosixPath(key).suffix.lower(), "application/octet-stream")
    return FileResponse(path, media_type=media_type)
