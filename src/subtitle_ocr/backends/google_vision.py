"""Google Cloud Vision API backend."""

import json
import os

from google.cloud import vision
from google.oauth2 import service_account

from .base import RecognitionEngine, RecognitionResult, bcp47_language


class GoogleVisionBackend(RecognitionEngine):
    """Google Vision API backend using SERVICE_ACCOUNT_JSON for credentials."""

    name = "google_vision"

    def __init__(self, credentials_json: str | None = None):
        """Initialize with credentials.

        Args:
            credentials_json: JSON string with service account credentials.
                            If not provided, reads from SERVICE_ACCOUNT_JSON env var.
        """
        if credentials_json is None:
            credentials_json = os.environ.get("SERVICE_ACCOUNT_JSON")

        if credentials_json:
            credentials = service_account.Credentials.from_service_account_info(json.loads(credentials_json))
            self.client = vision.ImageAnnotatorClient(credentials=credentials)
        else:
            # Fall back to default credentials (GOOGLE_APPLICATION_CREDENTIALS)
            self.client = vision.ImageAnnotatorClient()

    def recognize(self, image_bytes: bytes, language: str, timeout: float | None = None) -> RecognitionResult:
        """Run document_text_detection; confidence is the mean symbol confidence."""
        response = self.client.document_text_detection(
            image=vision.Image(content=image_bytes),
            image_context={"language_hints": [bcp47_language(language)]},
            timeout=timeout,
        )
        if response.error.message:
            raise RuntimeError(f"Google Vision API error: {response.error.message}")

        annotation = response.full_text_annotation
        if not annotation or not annotation.text:
            return RecognitionResult(text="", confidence=0.0)

        confidences = [
            symbol.confidence
            for page in annotation.pages
            for block in page.blocks
            for paragraph in block.paragraphs
            for word in paragraph.words
            for symbol in word.symbols
        ]
        confidence = sum(confidences) / len(confidences) if confidences else 0.0
        return RecognitionResult(text=annotation.text, confidence=confidence)
