"""Extraction client: model fallback chain with rate-limit retries.

Every backend error is classified by ERROR_POLICY:

- ExtractionTransient: retry the same model, waiting base * 2**n seconds
  after attempt n, up to max_attempts attempts.
- ExtractionModelUnavailable: move on to the next model of the chain.
- anything else: abort the whole extraction.

A model whose retries are exhausted is also left for the next one. When the
chain runs out, the last error is raised.
"""

import logging
import time
from collections.abc import Callable, Iterable
from enum import Enum

from prometheus_client import Counter, Histogram
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from receiptflow.extraction.base import ExtractionBackend, Generation
from receiptflow.extraction.errors import (
    ExtractionError,
    ExtractionFatal,
    ExtractionModelUnavailable,
    ExtractionTransient,
)
from receiptflow.extraction.factory import create_extraction_backend
from receiptflow.extraction.prompt import INVOICE_PROMPT
from receiptflow.extraction.response import parse_json_response, validate_payload
from receiptflow.invoice.normalizer import normalize
from receiptflow.invoice.schema import Invoice
from receiptflow.shared.config import Settings

logger = logging.getLogger(__name__)


extraction_requests_total = Counter(
    "extraction_requests_total",
    "Model calls by outcome",
    ["provider", "model", "outcome"],  # success, transient, unavailable, fatal
)
extraction_fallbacks_total = Counter(
    "extraction_fallbacks_total",
    "Times a model was abandoned for the next one in the chain",
    ["provider", "model"],
)
extraction_duration_seconds = Histogram(
    "extraction_duration_seconds",
    "End-to-end extraction time including retries and fallbacks",
    ["provider"],
    buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
)


class ModelAction(str, Enum):
    """What the client does after a failed model call."""

    RETRY = "retry"
    NEXT_MODEL = "next_model"
    ABORT = "abort"


ERROR_POLICY: dict[type[ExtractionError], ModelAction] = {
    ExtractionTransient: ModelAction.RETRY,
    ExtractionModelUnavailable: ModelAction.NEXT_MODEL,
    ExtractionFatal: ModelAction.ABORT,
}

_OUTCOMES = {
    ModelAction.RETRY: "transient",
    ModelAction.NEXT_MODEL: "unavailable",
    ModelAction.ABORT: "fatal",
}


def action_for(error: BaseException) -> ModelAction:
    """Look up the policy of an error; unknown errors abort."""
    for error_class, action in ERROR_POLICY.items():
        if isinstance(error, error_class):
            return action
    return ModelAction.ABORT


def build_model_chain(primary: str, fallbacks: Iterable[str]) -> list[str]:
    """Primary model first, then the fallbacks, without duplicates."""
    chain: list[str] = []
    for model in [primary, *fallbacks]:
        if model and model not in chain:
            chain.append(model)
    return chain


class ExtractionClient:
    """Turns document bytes into a normalized Invoice."""

    def __init__(
        self,
        backend: ExtractionBackend,
        max_attempts: int = 3,
        backoff_seconds: float = 5.0,
        models: list[str] | None = None,
        prompt: str = INVOICE_PROMPT,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize extraction client.

        Args:
            backend: Backend performing the model calls
            max_attempts: Attempts per model on rate limits
            backoff_seconds: Backoff base; attempt n is followed by base * 2**n seconds
            models: Model chain; defaults to the backend's primary and fallback models
            prompt: Extraction instructions sent with each document
            sleep: Called with each backoff delay
        """
        self.backend = backend
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.prompt = prompt
        self._sleep = sleep
        if models is None:
            models = [backend.primary_model, *backend.fallback_models]
        self._models = build_model_chain(models[0] if models else "", models[1:])

    @property
    def model_chain(self) -> list[str]:
        return list(self._models)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        wait = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            f"Rate limited on attempt {retry_state.attempt_number}/{self.max_attempts}, "
            f"retrying in {wait:.0f}s: {error}"
        )

    def _generate(self, model: str, document: bytes, mime_type: str) -> Generation:
        """Call one model, retrying while the policy says so."""

        def call() -> Generation:
            try:
                generation = self.backend.generate(self.prompt, document, mime_type, model)
            except ExtractionError as e:
                extraction_requests_total.labels(
                    provider=self.backend.provider_name,
                    model=model,
                    outcome=_OUTCOMES[action_for(e)],
                ).inc()
                raise
            extraction_requests_total.labels(
                provider=self.backend.provider_name, model=model, outcome="success"
            ).inc()
            return generation

        retrying = Retrying(
            retry=retry_if_exception(lambda e: action_for(e) is ModelAction.RETRY),
            wait=wait_exponential(multiplier=2 * self.backoff_seconds, exp_base=2),
            stop=stop_after_attempt(self.max_attempts),
            sleep=self._sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )
        return retrying(call)

    def extract(self, document: bytes, mime_type: str) -> Invoice:
        """Extract and normalize the invoice shown in a document.

        Raises:
            ExtractionError: The error that ended the last model tried, or
                the first error the policy aborts on
        """
        started = time.perf_counter()
        last_error: ExtractionError | None = None

        for model in self._models:
            try:
                generation = self._generate(model, document, mime_type)
            except ExtractionError as e:
                last_error = e
                if action_for(e) is ModelAction.ABORT:
                    logger.error(f"Extraction aborted on model {model}: {e}")
                    raise
                extraction_fallbacks_total.labels(
                    provider=self.backend.provider_name, model=model
                ).inc()
                logger.warning(f"Model {model} failed, trying next model: {e}")
                continue

            payload = parse_json_response(generation.text)
            for warning in validate_payload(payload):
                logger.warning(f"Validation warning from {model}: {warning}")

            invoice = normalize(payload, token_used=generation.total_tokens)
            extraction_duration_seconds.labels(provider=self.backend.provider_name).observe(
                time.perf_counter() - started
            )
            logger.info(
                f"Extracted {invoice.document_type.value} {invoice.invoice_number or '-'} "
                f"with {model}: {len(invoice.line_items)} lines, "
                f"confidence {invoice.confidence:.2f}"
            )
            return invoice

        logger.error("Failed to extract invoice after all models and retries")
        if last_error is None:
            raise ExtractionFatal("No extraction models configured")
        raise last_error


def create_extraction_client(
    settings: Settings, backend: ExtractionBackend | None = None
) -> ExtractionClient:
    """Build the extraction client described by settings."""
    return ExtractionClient(
        backend=backend or create_extraction_backend(settings),
        max_attempts=settings.extraction_max_attempts,
        backoff_seconds=settings.extraction_backoff_seconds,
    )
