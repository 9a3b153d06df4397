"""Error taxonomy of the extraction layer.

Backends translate their SDK errors into these classes; the extraction
client decides per class whether to retry, switch model or abort.
"""


class ExtractionError(Exception):
    """Base class for extraction failures."""

    def __init__(self, message: str, model: str | None = None) -> None:
        super().__init__(message)
        self.model = model


class ExtractionTransient(ExtractionError):
    """Rate limited (429-class); retry the same model after a backoff."""


class ExtractionModelUnavailable(ExtractionError):
    """Model not found or not served (404-class); move to the next model."""


class ExtractionFatal(ExtractionError):
    """Any other failure of the model call; abort the extraction."""


class ResponseParseError(ExtractionError):
    """The model answered, but not with parseable JSON."""


class ValidationWarning(UserWarning):
    """Payload does not match the expected schema; logged, never raised."""
