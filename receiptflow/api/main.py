"""FastAPI application for receipt ingestion.

Endpoints:
- Health and readiness checks for Kubernetes
- Prometheus metrics
- Usage statistics (global and per tenant)
- Document submission, processed inline or queued to the arq worker
- User onboarding: active tenants and tenant assignment

Based on FastAPI best practices:
https://fastapi.tiangolo.com/
"""

import json
import logging
import time
import uuid
from typing import Any

from arq import create_pool
from arq.connections import ArqRedis
from fastapi import FastAPI, File, Form, HTTPException, Request, Response, UploadFile, status
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel

from receiptflow.api import metrics
from receiptflow.invoice.normalizer import to_raw
from receiptflow.pipeline.messages import usage_message
from receiptflow.pipeline.processor import ProcessingStatus, build_processor
from receiptflow.queue.tasks import (
    JOB_TTL_SECONDS,
    JobResult,
    WorkerSettings,
    job_key,
    utc_now,
)
from receiptflow.sheets.client import SheetsApiError
from receiptflow.sheets.projector import Actor
from receiptflow.shared.config import get_settings
from receiptflow.usage.ledger import UsageStats
from receiptflow.usage.tenants import TenantDirectory, UserRecord

settings = get_settings()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Receiptflow",
    description="Receipt and tax invoice extraction into spreadsheets",
    version=settings.service_version,
)

processor = build_processor(settings)

ACCEPTED_CONTENT_TYPES = ("image/", "application/pdf")
MAX_UPLOAD_BYTES = 10 * 1024 * 1024

_STATUS_CODES = {
    ProcessingStatus.PROCESSED: status.HTTP_200_OK,
    ProcessingStatus.QUOTA_EXCEEDED: status.HTTP_429_TOO_MANY_REQUESTS,
    ProcessingStatus.UNAUTHORIZED: status.HTTP_403_FORBIDDEN,
    ProcessingStatus.FAILED: status.HTTP_502_BAD_GATEWAY,
}

_arq_pool: ArqRedis | None = None


async def get_arq_pool() -> ArqRedis:
    """Get or create the arq Redis pool (lazy initialization)."""
    global _arq_pool
    if _arq_pool is None:
        _arq_pool = await create_pool(WorkerSettings.get_redis_settings())
    return _arq_pool


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Middleware to collect request metrics."""
    # Skip metrics for /metrics endpoint itself
    if request.url.path == "/metrics":
        return await call_next(request)

    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    metrics.http_requests_total.labels(
        method=request.method,
        endpoint=request.url.path,
        status=response.status_code,
    ).inc()
    metrics.http_request_duration_seconds.labels(
        method=request.method,
        endpoint=request.url.path,
    ).observe(duration)

    return response


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    service: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool
    extraction_backend: str
    storage: bool


class UsageResponse(BaseModel):
    """Usage statistics with the chat-formatted summary."""

    stats: UsageStats
    message: str


class DocumentResponse(BaseModel):
    """Result of an inline document submission."""

    document_id: str
    status: ProcessingStatus
    reply: str
    invoice: dict[str, Any] | None = None
    image_url: str | None = None
    rows_appended: int = 0
    error: str | None = None


class QueuedResponse(BaseModel):
    """Result of a queued document submission."""

    job_id: str
    status: str


class TenantListResponse(BaseModel):
    """Tenants a user can be assigned to."""

    tenants: list[str]


class TenantAssignment(BaseModel):
    """Tenant selection of a user; registers the user when unknown."""

    tenant: str
    user_name: str = ""


@app.get("/health", response_model=HealthResponse, tags=["Health"])
def health_check() -> HealthResponse:
    """Health check endpoint for liveness probe."""
    return HealthResponse(
        status="healthy", version=settings.service_version, service=settings.service_name
    )


@app.get("/ready", response_model=ReadinessResponse, tags=["Health"])
def readiness_check() -> ReadinessResponse:
    """Readiness check endpoint for Kubernetes readiness probe.

    Ready when the extraction backend is configured; storage reachability
    is reported but optional.
    """
    backend = processor.extraction.backend
    storage = processor.storage
    return ReadinessResponse(
        ready=backend.is_available(),
        extraction_backend=backend.provider_name,
        storage=storage is not None and storage.health_check(),
    )


@app.get("/metrics", tags=["Monitoring"])
def get_metrics() -> Response:
    """Prometheus metrics endpoint."""
    metrics_data, content_type = metrics.get_metrics()
    return Response(content=metrics_data, media_type=content_type)


@app.get("/usage", response_model=UsageResponse, tags=["Usage"])
def get_usage() -> UsageResponse:
    """Usage of the current month against the global limit."""
    stats = processor.ledger.usage_stats()
    return UsageResponse(stats=stats, message=usage_message(stats))


@app.get("/usage/{tenant}", response_model=UsageResponse, tags=["Usage"])
def get_tenant_usage(tenant: str) -> UsageResponse:
    """Usage of a tenant against its standing quota."""
    if processor.tenants is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Tenant directory is not configured",
        )
    stats = processor.tenants.usage_stats(tenant)
    return UsageResponse(stats=stats, message=usage_message(stats))


async def _read_upload(file: UploadFile) -> tuple[bytes, str]:
    """Validate an uploaded document and return its bytes and MIME type."""
    content_type = file.content_type or ""
    if not content_type.startswith(ACCEPTED_CONTENT_TYPES):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid file type: {file.content_type}. Only images and PDFs are supported",
        )

    content = await file.read()
    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty file")
    if len(content) > MAX_UPLOAD_BYTES:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds {MAX_UPLOAD_BYTES} bytes",
        )

    metrics.receipt_upload_bytes.observe(len(content))
    return content, content_type


@app.post("/api/v1/documents", response_model=DocumentResponse, tags=["Documents"])
async def submit_document(
    response: Response,
    file: UploadFile = File(..., description="Receipt image or PDF"),  # noqa: B008
    user_id: str = Form(..., description="Sender id"),
    display_name: str = Form("", description="Sender display name"),
    tenant: str | None = Form(None, description="Tenant to bill (default: sender's tenant)"),
) -> DocumentResponse:
    """Extract a receipt and append it to the invoice sheet.

    ## Usage Example

    ```bash
    curl -X POST "http://localhost:8000/api/v1/documents" \\
      -F "file=@receipt.jpg" -F "user_id=U123" -F "display_name=Somchai"
    ```

    ## Status Codes

    - 200: processed; `reply` holds the confirmation
    - 400: invalid, empty or unsupported file
    - 403: sender or tenant not authorized
    - 429: monthly quota exhausted; `reply` holds the quota message
    - 502: extraction or spreadsheet failure; `reply` holds a generic retry message
    """
    content, content_type = await _read_upload(file)
    document_id = str(uuid.uuid4())

    outcome = await run_in_threadpool(
        processor.process,
        content,
        content_type,
        Actor(id=user_id, display_name=display_name),
        tenant,
    )
    metrics.receipt_submissions_total.labels(mode="sync", outcome=outcome.status.value).inc()

    response.status_code = _STATUS_CODES[outcome.status]
    return DocumentResponse(
        document_id=document_id,
        status=outcome.status,
        reply=outcome.reply,
        invoice=to_raw(outcome.invoice) if outcome.invoice is not None else None,
        image_url=outcome.image_url,
        rows_appended=outcome.rows_appended,
        error=outcome.error,
    )


@app.post(
    "/api/v1/documents/async",
    response_model=QueuedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["Documents"],
)
async def queue_document(
    file: UploadFile = File(..., description="Receipt image or PDF"),  # noqa: B008
    user_id: str = Form(..., description="Sender id"),
    display_name: str = Form("", description="Sender display name"),
    tenant: str | None = Form(None, description="Tenant to bill (default: sender's tenant)"),
) -> QueuedResponse:
    """Queue a receipt for the background worker; poll /api/v1/jobs/{job_id}."""
    if not settings.queue_enabled:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Queue processing is not enabled",
        )

    content, content_type = await _read_upload(file)
    job_id = str(uuid.uuid4())
    pool = await get_arq_pool()

    pending = JobResult(job_id=job_id, status="pending", created_at=utc_now())
    await pool.set(job_key(job_id), pending.model_dump_json(), ex=JOB_TTL_SECONDS)
    await pool.enqueue_job(
        "process_document",
        job_id=job_id,
        file_content=content,
        content_type=content_type,
        user_id=user_id,
        display_name=display_name,
        tenant=tenant,
    )
    metrics.receipt_submissions_total.labels(mode="queued", outcome="pending").inc()
    logger.info(f"Queued document job {job_id} for user {user_id}")

    return QueuedResponse(job_id=job_id, status="pending")


@app.get("/api/v1/jobs/{job_id}", response_model=JobResult, tags=["Documents"])
async def get_job(job_id: str) -> JobResult:
    """Status and result of a queued document."""
    if not settings.queue_enabled:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Queue processing is not enabled",
        )

    pool = await get_arq_pool()
    raw = await pool.get(job_key(job_id))
    if raw is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return JobResult(**json.loads(raw))


def _directory() -> TenantDirectory:
    if processor.tenants is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Tenant directory is not configured",
        )
    return processor.tenants.directory


def _directory_unavailable(e: SheetsApiError) -> HTTPException:
    logger.error(f"Tenant directory unavailable: {e}")
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY, detail="Tenant directory unavailable"
    )


@app.get("/api/v1/tenants", response_model=TenantListResponse, tags=["Users"])
def list_tenants() -> TenantListResponse:
    """Active tenants, in directory order, for tenant selection."""
    directory = _directory()
    try:
        return TenantListResponse(tenants=directory.list_active_tenants())
    except SheetsApiError as e:
        raise _directory_unavailable(e) from e


@app.post("/api/v1/users/{user_id}/tenant", response_model=UserRecord, tags=["Users"])
def assign_user_tenant(user_id: str, assignment: TenantAssignment) -> UserRecord:
    """Assign a user to a tenant and activate them.

    Unknown users are registered first. Assigning an active user moves them to
    the new tenant.

    ## Status Codes

    - 200: user is active in the tenant
    - 404: directory not configured, or unknown tenant
    - 409: tenant is inactive
    - 502: directory could not be read or written
    """
    directory = _directory()
    try:
        tenant = directory.get_tenant(assignment.tenant)
        if tenant is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Unknown tenant: {assignment.tenant}",
            )
        if not tenant.is_active:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Tenant {assignment.tenant} is not active",
            )
        user = directory.enroll_user(user_id, tenant, assignment.user_name)
    except SheetsApiError as e:
        raise _directory_unavailable(e) from e
    except LookupError as e:
        logger.error(f"User registration not visible in directory: {e}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail="Tenant directory unavailable"
        ) from e
    return user
