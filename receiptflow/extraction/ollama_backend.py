"""Ollama backend for self-hosted vision models.

Uses a local Ollama server for extraction, keeping documents on-premises.
Requires an Ollama server with a vision model (e.g. qwen2.5vl) pulled.
See: https://ollama.ai/
"""

import base64
import logging

import httpx

from receiptflow.extraction.base import ExtractionBackend, Generation
from receiptflow.extraction.errors import (
    ExtractionFatal,
    ExtractionModelUnavailable,
    ExtractionTransient,
)
from receiptflow.shared.config import Settings

logger = logging.getLogger(__name__)


class OllamaExtractionBackend(ExtractionBackend):
    """Extraction backend calling the Ollama generate API with image input."""

    def __init__(self, settings: Settings, client: httpx.Client | None = None) -> None:
        super().__init__(settings)
        self._base_url = settings.ollama_base_url.rstrip("/")
        self._client = client or httpx.Client(timeout=120.0)  # LLMs can be slow

    @property
    def provider_name(self) -> str:
        return "ollama"

    @property
    def primary_model(self) -> str:
        return self.settings.ollama_model

    def is_available(self) -> bool:
        """Check if Ollama server is running and model is available."""
        try:
            response = self._client.get(f"{self._base_url}/api/tags")
            if response.status_code != 200:
                return False
            models = response.json().get("models", [])
            model_names = [m.get("name", "").split(":")[0] for m in models]
            return self.primary_model.split(":")[0] in model_names
        except httpx.HTTPError:
            return False

    def generate(self, prompt: str, document: bytes, mime_type: str, model: str) -> Generation:
        if not mime_type.startswith("image/"):
            raise ExtractionFatal(f"Ollama backend cannot read {mime_type} documents", model=model)

        try:
            response = self._client.post(
                f"{self._base_url}/api/generate",
                json={
                    "model": model,
                    "prompt": prompt,
                    "images": [base64.b64encode(document).decode("ascii")],
                    "stream": False,
                    "format": "json",
                    "options": {"temperature": 0},
                },
            )
        except httpx.TimeoutException as e:
            raise ExtractionTransient(f"Ollama {model} timed out: {e}", model=model) from e
        except httpx.HTTPError as e:
            raise ExtractionFatal(f"Ollama request failed: {e}", model=model) from e

        if response.status_code == 429:
            raise ExtractionTransient(f"Ollama {model} is overloaded", model=model)
        if response.status_code == 404:
            raise ExtractionModelUnavailable(f"Ollama model {model} is not pulled", model=model)
        if response.status_code >= 400:
            raise ExtractionFatal(
                f"Ollama {model} failed with {response.status_code}: {response.text}", model=model
            )

        result = response.json()
        tokens = [result.get("prompt_eval_count"), result.get("eval_count")]
        counted = [t for t in tokens if isinstance(t, int)]
        return Generation(
            text=result.get("response", ""),
            total_tokens=sum(counted) if counted else None,
        )
