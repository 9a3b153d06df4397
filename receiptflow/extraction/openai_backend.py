"""OpenAI vision backend for document extraction.

The document is sent as a base64 data URL in an image content part, so only
image MIME types are accepted. Requires OPENAI_API_KEY.

The SDK's own retries are disabled: rate limits are retried by the
extraction client, which owns the backoff schedule.
"""

import base64
import logging
import os

import openai
from openai import OpenAI

from receiptflow.extraction.base import ExtractionBackend, Generation
from receiptflow.extraction.errors import (
    ExtractionFatal,
    ExtractionModelUnavailable,
    ExtractionTransient,
)
from receiptflow.shared.config import Settings

logger = logging.getLogger(__name__)


class OpenAIExtractionBackend(ExtractionBackend):
    """Extraction backend using OpenAI chat completions with image input."""

    def __init__(self, settings: Settings, client: OpenAI | None = None) -> None:
        super().__init__(settings)
        self._client = client

    @property
    def provider_name(self) -> str:
        return "openai"

    @property
    def primary_model(self) -> str:
        return self.settings.openai_model

    def is_available(self) -> bool:
        """Check if OpenAI API key is configured.

        Returns:
            True if OPENAI_API_KEY environment variable is set
        """
        return self._client is not None or os.getenv("OPENAI_API_KEY") is not None

    def _get_client(self) -> OpenAI:
        if self._client is None:
            if not self.is_available():
                raise ExtractionFatal("OPENAI_API_KEY environment variable not set")
            self._client = OpenAI(max_retries=0)
        return self._client

    def generate(self, prompt: str, document: bytes, mime_type: str, model: str) -> Generation:
        if not mime_type.startswith("image/"):
            raise ExtractionFatal(f"OpenAI backend cannot read {mime_type} documents", model=model)

        client = self._get_client()
        data_url = f"data:{mime_type};base64,{base64.b64encode(document).decode('ascii')}"
        try:
            response = client.chat.completions.create(
                model=model,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": prompt},
                            {"type": "image_url", "image_url": {"url": data_url}},
                        ],
                    }
                ],
                response_format={"type": "json_object"},
                temperature=0,  # Deterministic output
            )
        except openai.RateLimitError as e:
            raise ExtractionTransient(f"OpenAI {model} rate limited: {e}", model=model) from e
        except openai.NotFoundError as e:
            raise ExtractionModelUnavailable(
                f"OpenAI model {model} not found: {e}", model=model
            ) from e
        except openai.OpenAIError as e:
            raise ExtractionFatal(f"OpenAI {model} failed: {e}", model=model) from e

        text = response.choices[0].message.content or ""
        total_tokens = response.usage.total_tokens if response.usage is not None else None
        return Generation(text=text, total_tokens=total_tokens)
