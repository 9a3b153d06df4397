"""Gemini backend for document extraction.

Sends the document bytes inline next to the prompt; Gemini reads both images
and PDFs natively. Requires APP_GEMINI_API_KEY.
"""

import logging

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from receiptflow.extraction.base import ExtractionBackend, Generation
from receiptflow.extraction.errors import (
    ExtractionFatal,
    ExtractionModelUnavailable,
    ExtractionTransient,
)
from receiptflow.shared.config import Settings

logger = logging.getLogger(__name__)


def classify_api_error(error: genai_errors.APIError, model: str) -> Exception:
    """Map a Gemini API error onto the extraction error taxonomy."""
    message = f"Gemini {model} failed with {error.code}: {error.message or error}"
    if error.code == 429:
        return ExtractionTransient(message, model=model)
    if error.code == 404:
        return ExtractionModelUnavailable(message, model=model)
    return ExtractionFatal(message, model=model)


class GeminiExtractionBackend(ExtractionBackend):
    """Extraction backend using the Google Gen AI SDK."""

    def __init__(self, settings: Settings, client: genai.Client | None = None) -> None:
        super().__init__(settings)
        self._client = client

    @property
    def provider_name(self) -> str:
        return "gemini"

    @property
    def primary_model(self) -> str:
        return self.settings.gemini_model

    @property
    def fallback_models(self) -> list[str]:
        return list(self.settings.gemini_fallback_models)

    def is_available(self) -> bool:
        return self._client is not None or bool(self.settings.gemini_api_key)

    def _get_client(self) -> genai.Client:
        if self._client is None:
            if not self.settings.gemini_api_key:
                raise ExtractionFatal("APP_GEMINI_API_KEY is not set")
            self._client = genai.Client(api_key=self.settings.gemini_api_key)
        return self._client

    def generate(self, prompt: str, document: bytes, mime_type: str, model: str) -> Generation:
        client = self._get_client()
        try:
            response = client.models.generate_content(
                model=model,
                contents=[prompt, types.Part.from_bytes(data=document, mime_type=mime_type)],
            )
        except genai_errors.APIError as e:
            raise classify_api_error(e, model) from e

        usage = response.usage_metadata
        total_tokens = usage.total_token_count if usage is not None else None
        logger.debug(f"Gemini {model} answered, tokens={total_tokens}")
        return Generation(text=response.text or "", total_tokens=total_tokens)
