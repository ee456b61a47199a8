# Replicate prediction client for virtual try-on (IDM-VTON)
# Thin wrapper: submit a prediction, query its status. Polling policy lives
# in the backend orchestrator, not here.

import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import httpx
from dotenv import load_dotenv

from tryon_engine.errors import SubmissionError, TransientQueryError

# Load .env file
env_path = Path(__file__).parent.parent.parent / ".env"
load_dotenv(env_path)

logger = logging.getLogger(__name__)

REPLICATE_API_TOKEN = os.environ.get("REPLICATE_API_TOKEN", "")
REPLICATE_API_BASE = "https://api.replicate.com/v1"

# IDM-VTON model version
DEFAULT_MODEL_VERSION = "c871bb9b046607b680449ecbae55fd8c6d945e0a1948644bf2361b3d021d3ff4"

DEFAULT_GARMENT_DESCRIPTION = "clothing item"

# Garment category -> provider taxonomy
CATEGORY_MAPPING: dict[str, str] = {
    "shirt": "upper_body",
    "coat": "upper_body",
    "dress": "dresses",
    "pants": "lower_body",
    "shoes": "lower_body",
    "accessories": "upper_body",
    "other": "upper_body",
}
DEFAULT_PROVIDER_CATEGORY = "upper_body"


def map_category(category: str) -> str:
    """Map a wardrobe category onto the provider's garment taxonomy."""
    return CATEGORY_MAPPING.get((category or "").strip().lower(), DEFAULT_PROVIDER_CATEGORY)


class PredictionStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            PredictionStatus.SUCCEEDED,
            PredictionStatus.FAILED,
            PredictionStatus.CANCELED,
        )


# Provider status strings -> our status
_STATUS_MAPPING: dict[str, PredictionStatus] = {
    "starting": PredictionStatus.QUEUED,
    "queued": PredictionStatus.QUEUED,
    "processing": PredictionStatus.RUNNING,
    "running": PredictionStatus.RUNNING,
    "succeeded": PredictionStatus.SUCCEEDED,
    "failed": PredictionStatus.FAILED,
    "canceled": PredictionStatus.CANCELED,
    "cancelled": PredictionStatus.CANCELED,
}


@dataclass(frozen=True)
class PredictionInput:
    """Inputs for one try-on prediction."""

    garment_url: str
    person_url: str
    category: str  # wardrobe category, mapped before submission
    description: str = DEFAULT_GARMENT_DESCRIPTION


@dataclass(frozen=True)
class Prediction:
    """Snapshot of a prediction as reported by the provider."""

    id: str
    status: PredictionStatus
    output_url: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


def _extract_output_url(output: Any) -> Optional[str]:
    """Output is a URL string, or a list of URLs where the first one is the image."""
    if isinstance(output, str):
        return output or None
    if isinstance(output, (list, tuple)) and output:
        first = output[0]
        return str(first) if first else None
    return None


def parse_prediction(data: dict[str, Any]) -> Prediction:
    raw_status = str(data.get("status", "")).lower()
    status = _STATUS_MAPPING.get(raw_status)
    if status is None:
        logger.warning("Unknown prediction status %r, treating as running", raw_status)
        status = PredictionStatus.RUNNING
    error = data.get("error")
    return Prediction(
        id=str(data.get("id", "")),
        status=status,
        output_url=_extract_output_url(data.get("output")),
        error=str(error) if error else None,
    )


class PredictionClient:
    """Async client for the hosted prediction API.

    A fresh ``httpx.AsyncClient`` is opened per call so the client object is
    safe to share between concurrent polling tasks.  ``transport`` lets tests
    plug in an ``httpx.MockTransport``.
    """

    def __init__(
        self,
        api_token: Optional[str] = None,
        *,
        model_version: str = DEFAULT_MODEL_VERSION,
        base_url: str = REPLICATE_API_BASE,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_token = api_token or REPLICATE_API_TOKEN
        self.model_version = model_version
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.api_token)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Token {self.api_token}",
                "Content-Type": "application/json",
            },
            timeout=self.timeout,
            transport=self._transport,
        )

    def build_payload(self, inputs: PredictionInput) -> dict[str, Any]:
        return {
            "version": self.model_version,
            "input": {
                "garm_img": inputs.garment_url,
                "human_img": inputs.person_url,
                "garment_des": inputs.description,
                "category": map_category(inputs.category),
            },
        }

    async def submit(self, inputs: PredictionInput) -> str:
        """Create a prediction and return its provider-issued id.

        Raises:
            SubmissionError: On a non-2xx response or a transport failure.
                The message is stored on the job as-is.
        """
        payload = self.build_payload(inputs)
        logger.info(
            "Submitting prediction (category=%s)", payload["input"]["category"]
        )
        try:
            async with self._client() as client:
                resp = await client.post("/predictions", json=payload)
        except httpx.HTTPError as exc:
            raise SubmissionError(f"Replicate API unreachable: {exc}") from exc

        if not resp.is_success:
            logger.error(
                "Replicate submission error %s: %s", resp.status_code, resp.text[:500]
            )
            raise SubmissionError(
                f"Replicate API error: {resp.reason_phrase} - {resp.text}"
            )

        try:
            prediction_id = resp.json().get("id")
        except ValueError as exc:
            raise SubmissionError(f"Replicate API returned invalid JSON: {exc}") from exc
        if not prediction_id:
            raise SubmissionError("Replicate API response did not include a prediction id")

        logger.info("Prediction created: %s", prediction_id)
        return str(prediction_id)

    async def query_status(self, provider_job_id: str) -> Prediction:
        """Fetch the current state of a prediction.

        Raises:
            TransientQueryError: On transport failures and non-2xx responses.
                The caller retries on its next polling tick.
        """
        try:
            async with self._client() as client:
                resp = await client.get(f"/predictions/{provider_job_id}")
        except httpx.HTTPError as exc:
            raise TransientQueryError(f"Status query failed: {exc}") from exc

        if not resp.is_success:
            raise TransientQueryError(
                f"Status query returned {resp.status_code}: {resp.text[:200]}"
            )

        try:
            data = resp.json()
        except ValueError as exc:
            raise TransientQueryError(f"Status query returned invalid JSON: {exc}") from exc

        prediction = parse_prediction(data)
        logger.debug("Prediction %s status: %s", provider_job_id, prediction.status.value)
        return prediction
