"""Object storage service.

Provides a local-disk backend with a bucket/key interface designed for
drop-in replacement by a hosted object store later.

Objects are stored at:  {base_path}/buckets/{bucket}/{key}
Served at signed URLs:  {public_base_url}/api/files/{bucket}/{key}?expires=..&signature=..

Signed URLs are what the prediction provider downloads garment and person
images from, so ``public_base_url`` must be reachable from the provider.
"""

import hashlib
import hmac
import logging
import secrets
import time
from pathlib import Path
from urllib.parse import quote, urlencode

from tryon_engine.errors import StorageError

logger = logging.getLogger(__name__)

GARMENTS_BUCKET = "garments"
USER_PHOTOS_BUCKET = "user-photos"
RESULTS_BUCKET = "tryon-results"

KNOWN_BUCKETS = frozenset({GARMENTS_BUCKET, USER_PHOTOS_BUCKET, RESULTS_BUCKET})


class StorageService:
    """Manages stored objects for the try-on pipeline.

    The local backend writes files to ``{base_path}/buckets/{bucket}/``.
    The content type passed to ``upload`` is not persisted; the local file
    route derives it from the key's suffix.
    """

    def __init__(
        self,
        base_path: str,
        *,
        signing_secret: str = "",
        public_base_url: str = "http://localhost:8000",
    ) -> None:
        self._base = Path(base_path)
        if not signing_secret:
            # Signed URLs stay valid only for this process's lifetime
            logger.warning("No storage signing secret configured, using an ephemeral key")
            signing_secret = secrets.token_hex(32)
        self._secret = signing_secret.encode()
        self._public_base_url = public_base_url.rstrip("/")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _bucket_dir(self, bucket: str) -> Path:
        if bucket not in KNOWN_BUCKETS:
            raise StorageError(f"Unknown bucket: {bucket}")
        return self._base / "buckets" / bucket

    def _sign(self, bucket: str, key: str, expires: int) -> str:
        message = f"{bucket}/{key}:{expires}".encode()
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def resolve(self, bucket: str, key: str) -> Path:
        """Return the absolute path for an object.

        Raises StorageError for keys that would escape the bucket directory.
        """
        root = self._bucket_dir(bucket).resolve()
        path = (root / key).resolve()
        if not key or not path.is_relative_to(root) or path == root:
            raise StorageError(f"Invalid object key: {key!r}")
        return path

    def upload(
        self,
        bucket: str,
        key: str,
        data: bytes,
        *,
        content_type: str = "application/octet-stream",
        overwrite: bool = False,
    ) -> str:
        """Write bytes under ``bucket/key`` and return the key.

        With ``overwrite=False`` an existing object is an error.
        """
        dest = self.resolve(bucket, key)
        if dest.exists() and not overwrite:
            raise StorageError(f"Object already exists: {bucket}/{key}")
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            tmp = dest.with_name(f".{dest.name}.{secrets.token_hex(4)}.tmp")
            tmp.write_bytes(data)
            tmp.replace(dest)
        except OSError as exc:
            raise StorageError(f"Failed to write {bucket}/{key}: {exc}") from exc
        logger.debug("Stored %s bytes (%s) → %s/%s", len(data), content_type, bucket, key)
        return key

    def read(self, bucket: str, key: str) -> bytes:
        path = self.resolve(bucket, key)
        try:
            return path.read_bytes()
        except OSError as exc:
            raise StorageError(f"Failed to read {bucket}/{key}: {exc}") from exc

    def exists(self, bucket: str, key: str) -> bool:
        return self.resolve(bucket, key).is_file()

    def delete(self, bucket: str, keys: list[str]) -> None:
        """Remove objects; missing keys are ignored."""
        for key in keys:
            path = self.resolve(bucket, key)
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                raise StorageError(f"Failed to delete {bucket}/{key}: {exc}") from exc
            logger.info("Deleted %s/%s", bucket, key)

    def signed_url(self, bucket: str, key: str, ttl_seconds: int) -> str:
        """Return a URL that serves the object until ``ttl_seconds`` from now."""
        self.resolve(bucket, key)
        expires = int(time.time()) + ttl_seconds
        query = urlencode({"expires": expires, "signature": self._sign(bucket, key, expires)})
        return f"{self._public_base_url}/api/files/{bucket}/{quote(key)}?{query}"

    def verify(self, bucket: str, key: str, expires: int, signature: str) -> bool:
        """Check a signature produced by ``signed_url`` and that it has not expired."""
        if expires < int(time.time()):
            return False
        expected = self._sign(bucket, key, expires)
        return hmac.compare_digest(expected, signature)
