# Tests for the Replicate prediction client (httpx.MockTransport, no network)

import json

import httpx
import pytest

from tryon_engine.errors import SubmissionError, TransientQueryError
from tryon_engine.prediction_client import (
    DEFAULT_MODEL_VERSION,
    PredictionClient,
    PredictionInput,
    PredictionStatus,
    map_category,
    parse_prediction,
)

INPUTS = PredictionInput(
    garment_url="https://files.example/garments/g.jpg",
    person_url="https://files.example/user-photos/p.jpg",
    category="dress",
)


def _client(handler) -> PredictionClient:
    return PredictionClient("test-token", transport=httpx.MockTransport(handler))


class TestCategoryMapping:
    def test_known_categories(self):
        assert map_category("dress") == "dresses"
        assert map_category("pants") == "lower_body"
        assert map_category("Shirt") == "upper_body"

    def test_unknown_defaults_to_upper_body(self):
        assert map_category("hat") == "upper_body"
        assert map_category("") == "upper_body"


class TestParsePrediction:
    def test_list_output_takes_first_url(self):
        p = parse_prediction(
            {"id": "p1", "status": "succeeded", "output": ["https://out/1.jpg", "https://out/2.jpg"]}
        )
        assert p.status == PredictionStatus.SUCCEEDED
        assert p.output_url == "https://out/1.jpg"
        assert p.is_terminal

    def test_string_output(self):
        p = parse_prediction({"id": "p1", "status": "succeeded", "output": "https://out/1.jpg"})
        assert p.output_url == "https://out/1.jpg"

    def test_provider_status_names(self):
        assert parse_prediction({"id": "p", "status": "starting"}).status == PredictionStatus.QUEUED
        assert parse_prediction({"id": "p", "status": "processing"}).status == PredictionStatus.RUNNING

    def test_unknown_status_is_running(self):
        p = parse_prediction({"id": "p", "status": "warming_up"})
        assert p.status == PredictionStatus.RUNNING
        assert not p.is_terminal

    def test_failed_carries_error(self):
        p = parse_prediction({"id": "p", "status": "failed", "error": "CUDA out of memory"})
        assert p.status == PredictionStatus.FAILED
        assert p.error == "CUDA out of memory"


class TestSubmit:
    @pytest.mark.asyncio
    async def test_submit_returns_prediction_id(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"id": "pred-123", "status": "starting"})

        prediction_id = await _client(handler).submit(INPUTS)

        assert prediction_id == "pred-123"
        assert seen["path"] == "/v1/predictions"
        assert seen["auth"] == "Token test-token"
        assert seen["body"]["version"] == DEFAULT_MODEL_VERSION
        assert seen["body"]["input"] == {
            "garm_img": INPUTS.garment_url,
            "human_img": INPUTS.person_url,
            "garment_des": "clothing item",
            "category": "dresses",
        }

    @pytest.mark.asyncio
    async def test_submit_non_2xx(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="model is down")

        with pytest.raises(SubmissionError) as exc_info:
            await _client(handler).submit(INPUTS)
        assert str(exc_info.value) == "Replicate API error: Internal Server Error - model is down"

    @pytest.mark.asyncio
    async def test_submit_unreachable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(SubmissionError, match="unreachable"):
            await _client(handler).submit(INPUTS)

    @pytest.mark.asyncio
    async def test_submit_without_id(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(201, json={"status": "starting"})

        with pytest.raises(SubmissionError, match="prediction id"):
            await _client(handler).submit(INPUTS)


class TestQueryStatus:
    @pytest.mark.asyncio
    async def test_query_status(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/predictions/pred-123"
            return httpx.Response(
                200, json={"id": "pred-123", "status": "succeeded", "output": "https://out/r.jpg"}
            )

        prediction = await _client(handler).query_status("pred-123")
        assert prediction.status == PredictionStatus.SUCCEEDED
        assert prediction.output_url == "https://out/r.jpg"

    @pytest.mark.asyncio
    async def test_non_2xx_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="busy")

        with pytest.raises(TransientQueryError):
            await _client(handler).query_status("pred-123")

    @pytest.mark.asyncio
    async def test_network_error_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(TransientQueryError):
            await _client(handler).query_status("pred-123")


def test_is_configured_with_token():
    assert PredictionClient("tok").is_configured
