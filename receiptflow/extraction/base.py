"""Abstract base class for vision-model extraction backends.

Enables switching between model providers (Gemini, OpenAI, Ollama) while the
extraction client keeps one retry and fallback policy.

Based on Strategy Pattern:
https://refactoring.guru/design-patterns/strategy/python
"""

from abc import ABC, abstractmethod

from pydantic import BaseModel

from receiptflow.shared.config import Settings


class Generation(BaseModel):
    """Raw model answer.

    Attributes:
        text: Response text, expected to hold the invoice JSON
        total_tokens: Tokens billed for the call, if the provider reports it
    """

    text: str
    total_tokens: int | None = None


class ExtractionBackend(ABC):
    """Abstract base class for extraction backends.

    Implementations must raise ExtractionTransient for rate limits,
    ExtractionModelUnavailable for unknown models and ExtractionFatal for
    everything else, so the client can tell them apart.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize backend with settings.

        Args:
            settings: Application settings
        """
        self.settings = settings

    @abstractmethod
    def generate(self, prompt: str, document: bytes, mime_type: str, model: str) -> Generation:
        """Ask a model about a document.

        Args:
            prompt: Extraction instructions
            document: Image or PDF bytes
            mime_type: MIME type of the document
            model: Model identifier

        Returns:
            Generation with the model's answer
        """
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this backend is configured (API keys, server reachable)."""
        pass

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Backend identifier for logging/metrics (e.g., 'gemini')."""
        pass

    @property
    @abstractmethod
    def primary_model(self) -> str:
        """Model tried first."""
        pass

    @property
    def fallback_models(self) -> list[str]:
        """Models tried in order after the primary one."""
        return []
