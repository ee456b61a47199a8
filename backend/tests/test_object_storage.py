"""Tests for the bucket/key object storage service and its signed URLs."""

import time
from urllib.parse import parse_qs, urlparse

import pytest

from app.services.storage import GARMENTS_BUCKET, RESULTS_BUCKET, StorageService
from tryon_engine.errors import StorageError


def test_upload_and_read(storage: StorageService):
    key = storage.upload(RESULTS_BUCKET, "user-1/job.jpg", b"jpeg-bytes", content_type="image/jpeg")

    assert key == "user-1/job.jpg"
    assert storage.exists(RESULTS_BUCKET, key)
    assert storage.read(RESULTS_BUCKET, key) == b"jpeg-bytes"


def test_upload_refuses_overwrite_by_default(storage: StorageService):
    storage.upload(RESULTS_BUCKET, "k.jpg", b"one")
    with pytest.raises(StorageError, match="already exists"):
        storage.upload(RESULTS_BUCKET, "k.jpg", b"two")


def test_upload_with_overwrite(storage: StorageService):
    storage.upload(RESULTS_BUCKET, "k.jpg", b"one")
    storage.upload(RESULTS_BUCKET, "k.jpg", b"two", overwrite=True)
    assert storage.read(RESULTS_BUCKET, "k.jpg") == b"two"


def test_upload_leaves_no_temp_files(storage: StorageService):
    storage.upload(RESULTS_BUCKET, "user-1/k.jpg", b"data")
    files = [p.name for p in storage.resolve(RESULTS_BUCKET, "user-1/k.jpg").parent.iterdir()]
    assert files == ["k.jpg"]


def test_unknown_bucket(storage: StorageService):
    with pytest.raises(StorageError, match="Unknown bucket"):
        storage.upload("secrets", "k", b"x")


@pytest.mark.parametrize("key", ["../escape.jpg", "a/../../escape.jpg", ""])
def test_path_traversal_is_blocked(storage: StorageService, key: str):
    with pytest.raises(StorageError):
        storage.resolve(RESULTS_BUCKET, key)


def test_delete_ignores_missing(storage: StorageService):
    storage.upload(RESULTS_BUCKET, "a.jpg", b"x")
    storage.delete(RESULTS_BUCKET, ["a.jpg", "never-existed.jpg"])
    assert not storage.exists(RESULTS_BUCKET, "a.jpg")


def test_read_missing_raises(storage: StorageService):
    with pytest.raises(StorageError):
        storage.read(RESULTS_BUCKET, "nope.jpg")


def test_signed_url_round_trip(storage: StorageService):
    url = storage.signed_url(GARMENTS_BUCKET, "user-1/shirt.png", 600)
    parsed = urlparse(url)
    query = parse_qs(parsed.query)

    assert url.startswith("http://testserver/api/files/garments/user-1/shirt.png?")
    assert storage.verify(
        GARMENTS_BUCKET, "user-1/shirt.png", int(query["expires"][0]), query["signature"][0]
    )


def test_signature_is_bound_to_object(storage: StorageService):
    url = storage.signed_url(GARMENTS_BUCKET, "user-1/shirt.png", 600)
    query = parse_qs(urlparse(url).query)
    expires, signature = int(query["expires"][0]), query["signature"][0]

    assert not storage.verify(GARMENTS_BUCKET, "user-1/other.png", expires, signature)
    assert not storage.verify(RESULTS_BUCKET, "user-1/shirt.png", expires, signature)
    assert not storage.verify(GARMENTS_BUCKET, "user-1/shirt.png", expires + 1, signature)


def test_expired_signature(storage: StorageService):
    expires = int(time.time()) - 1
    signature = storage._sign(GARMENTS_BUCKET, "k.png", expires)
    assert not storage.verify(GARMENTS_BUCKET, "k.png", expires, signature)


def test_different_secrets_do_not_verify(tmp_path):
    a = StorageService(str(tmp_path), signing_secret="a")
    b = StorageService(str(tmp_path), signing_secret="b")
    query = parse_qs(urlparse(a.signed_url(GARMENTS_BUCKET, "k.png", 60)).query)
    assert not b.verify(GARMENTS_BUCKET, "k.png", int(query["expires"][0]), query["signature"][0])
