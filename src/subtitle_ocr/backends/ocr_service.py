"""HTTP OCR job service backend.

Submits one image per job to ``POST /ocr/jobs`` and polls
``GET /ocr/jobs/{job_id}`` until the job completes or fails.
"""

import base64
import logging
import time

import httpx

from .base import RecognitionEngine, RecognitionResult, bcp47_language

logger = logging.getLogger(__name__)

IMAGE_ID = "subtitle"


class OCRServiceError(Exception):
    """The OCR service rejected, failed or timed out a job."""


class OCRServiceBackend(RecognitionEngine):
    """Remote OCR service. The service reports no confidence, so recognized text scores 1.0."""

    name = "ocr_service"

    def __init__(
        self,
        service_url: str,
        poll_interval: float = 0.5,
        timeout: float = 300,
        client: httpx.Client | None = None,
    ):
        self.service_url = service_url.rstrip("/")
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.client = client or httpx.Client()

    def recognize(self, image_bytes: bytes, language: str, timeout: float | None = None) -> RecognitionResult:
        job_id = self._submit(image_bytes, language)
        deadline = time.monotonic() + (timeout or self.timeout)

        while time.monotonic() < deadline:
            try:
                response = self.client.get(f"{self.service_url}/ocr/jobs/{job_id}", timeout=10)
                response.raise_for_status()
            except httpx.HTTPError as e:
                raise OCRServiceError(f"Failed to check job status: {e}") from e

            status = response.json()
            if status["status"] == "completed":
                return self._parse_result(status["result"]["results"])
            if status["status"] == "failed":
                raise OCRServiceError(f"OCR job failed: {status.get('error', 'Unknown error')}")
            time.sleep(self.poll_interval)

        raise OCRServiceError(f"OCR job timed out (job_id: {job_id})")

    def _submit(self, image_bytes: bytes, language: str) -> str:
        payload = {
            "images": [{"id": IMAGE_ID, "data": base64.b64encode(image_bytes).decode("utf-8")}],
            "language": bcp47_language(language),
        }
        try:
            response = self.client.post(f"{self.service_url}/ocr/jobs", json=payload, timeout=30)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise OCRServiceError(f"Failed to submit OCR job: {e}") from e
        job_id = response.json()["job_id"]
        logger.debug(f"Submitted OCR job {job_id}")
        return job_id

    @staticmethod
    def _parse_result(results: list[dict]) -> RecognitionResult:
        result = next((r for r in results if r.get("id") == IMAGE_ID), None)
        if result is None:
            raise OCRServiceError("Image not found in OCR job results")

        text = result.get("text")
        if text is None:
            text = "".join(c["text"] for c in result.get("characters", []))
        return RecognitionResult(text=text, confidence=1.0 if text.strip() else 0.0)

    def health_check(self) -> bool:
        """Check if OCR service is available and healthy."""
        try:
            response = self.client.get(f"{self.service_url}/health", timeout=5)
        except httpx.HTTPError:
            return False
        return response.is_success and response.json().get("status") == "healthy"
