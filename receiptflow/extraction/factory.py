"""Factory for creating extraction backends based on configuration.

Implements Factory Pattern for backend selection with registry pattern for extensibility.

Based on:
- Factory Pattern: https://refactoring.guru/design-patterns/factory-method/python
- Registry Pattern: Python Cookbook 3rd Edition, Recipe 9.22
"""

import logging

from receiptflow.extraction.base import ExtractionBackend
from receiptflow.extraction.gemini_backend import GeminiExtractionBackend
from receiptflow.extraction.ollama_backend import OllamaExtractionBackend
from receiptflow.extraction.openai_backend import OpenAIExtractionBackend
from receiptflow.shared.config import Settings

logger = logging.getLogger(__name__)


class BackendRegistry:
    """Registry of available extraction backends.

    Maps backend names to their implementation classes and supports runtime
    registration of new backends.
    """

    _backends: dict[str, type[ExtractionBackend]] = {
        "gemini": GeminiExtractionBackend,
        "openai": OpenAIExtractionBackend,
        "ollama": OllamaExtractionBackend,
    }

    @classmethod
    def register(cls, name: str, backend_class: type[ExtractionBackend]) -> None:
        """Register a new backend.

        Args:
            name: Backend identifier (must match Settings.extraction_provider)
            backend_class: Class implementing ExtractionBackend
        """
        cls._backends[name] = backend_class
        logger.info(f"Registered extraction backend: {name}")

    @classmethod
    def get_backend_class(cls, name: str) -> type[ExtractionBackend]:
        """Get backend class by name.

        Raises:
            ValueError: If backend not found in registry
        """
        if name not in cls._backends:
            available = ", ".join(cls._backends.keys())
            raise ValueError(
                f"Unknown extraction backend: '{name}'. Available backends: {available}"
            )
        return cls._backends[name]

    @classmethod
    def list_backends(cls) -> list[str]:
        return list(cls._backends.keys())


def create_extraction_backend(settings: Settings) -> ExtractionBackend:
    """Instantiate the backend named by settings.extraction_provider.

    Logs a warning if the backend is not available (e.g., missing API key);
    the first extraction will then fail with ExtractionFatal.

    Raises:
        ValueError: If configured backend is unknown
    """
    name = settings.extraction_provider
    backend = BackendRegistry.get_backend_class(name)(settings)

    if not backend.is_available():
        logger.warning(
            f"Extraction backend '{name}' is not fully available. "
            f"Check configuration (e.g., API keys, model server)."
        )

    logger.info(f"Created extraction backend: {name}")
    return backend
