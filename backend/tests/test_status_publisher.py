"""Tests for the status publisher's poll and push channels."""

import asyncio

import pytest

from app.services.job_service import JobService
from app.services.status_publisher import StatusPublisher, job_snapshot

_svc = JobService()


@pytest.fixture
def publisher(session_factory) -> StatusPublisher:
    return StatusPublisher(session_factory, _svc)


def _job(session_factory):
    s = session_factory()
    try:
        return _svc.create_job(s, owner_id="user-1", garment_id="g1", photo_id="p1")
    finally:
        s.close()


def _transition(session_factory, fn, *args):
    s = session_factory()
    try:
        return fn(s, *args)
    finally:
        s.close()


def test_get_returns_snapshot(session_factory, publisher):
    job = _job(session_factory)
    snap = publisher.get(job.job_id)

    assert snap["job_id"] == job.job_id
    assert snap["status"] == "pending"
    assert snap["completed_at"] is None
    assert isinstance(snap["created_at"], str)


def test_get_unknown(publisher):
    assert publisher.get("missing") is None


@pytest.mark.asyncio
async def test_subscribe_yields_transitions_until_closed(session_factory, publisher):
    job = _job(session_factory)
    received = []

    async def consume():
        async for snap in publisher.subscribe(job.job_id):
            received.append(snap["status"])

    consumer = asyncio.create_task(consume())
    await asyncio.sleep(0)
    assert publisher.subscriber_count(job.job_id) == 1

    processing = _transition(session_factory, _svc.mark_processing, job.job_id, "pred-1")
    publisher.publish(job_snapshot(processing))
    failed = _transition(session_factory, _svc.mark_failed, job.job_id, "boom")
    publisher.publish(job_snapshot(failed))
    publisher.close(job.job_id)

    await asyncio.wait_for(consumer, timeout=1)
    assert received == ["pending", "processing", "failed"]
    assert publisher.subscriber_count(job.job_id) == 0


@pytest.mark.asyncio
async def test_subscribe_to_terminal_job_ends_immediately(session_factory, publisher):
    job = _job(session_factory)
    _transition(session_factory, _svc.mark_failed, job.job_id, "boom")

    snaps = [snap async for snap in publisher.subscribe(job.job_id)]

    assert [s["status"] for s in snaps] == ["failed"]
    assert snaps[0]["error_message"] == "boom"
    assert publisher.subscriber_count(job.job_id) == 0


@pytest.mark.asyncio
async def test_subscribe_to_unknown_job_yields_nothing(publisher):
    assert [snap async for snap in publisher.subscribe("missing")] == []


def test_publish_without_subscribers_is_noop(session_factory, publisher):
    job = _job(session_factory)
    publisher.publish(job_snapshot(job))
    publisher.close(job.job_id)
