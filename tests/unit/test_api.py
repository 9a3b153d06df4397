"""Unit tests for the receipt ingestion API.

Tests cover:
- Health check endpoints
- Usage statistics
- File upload validation
- Inline processing and status codes
- Queued processing and job polling
- Prometheus metrics endpoint
"""

import json
from collections.abc import Generator
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import status
from fastapi.testclient import TestClient

from receiptflow.api.main import app
from receiptflow.invoice.schema import Invoice
from receiptflow.pipeline.processor import ProcessingOutcome, ProcessingStatus
from receiptflow.sheets.client import SheetsApiError
from receiptflow.shared.config import Settings
from receiptflow.usage.ledger import UsageStats
from receiptflow.usage.tenants import TenantConfig, UserRecord

FILES = {"file": ("receipt.jpg", b"\xff\xd8fake-jpeg", "image/jpeg")}
FORM = {"user_id": "U123", "display_name": "Somchai"}


@pytest.fixture
def client() -> TestClient:
    """Create test client."""
    return TestClient(app)


@pytest.fixture
def mock_processor() -> Generator[MagicMock, None, None]:
    """Replace the module-level processor."""
    processor = MagicMock()
    processor.extraction.backend.is_available.return_value = True
    processor.extraction.backend.provider_name = "gemini"
    processor.storage = None
    with patch("receiptflow.api.main.processor", processor):
        yield processor


@pytest.fixture
def queue_enabled() -> Generator[AsyncMock, None, None]:
    """Enable the queue with a mocked arq pool."""
    pool = AsyncMock()
    with (
        patch("receiptflow.api.main.settings", Settings(_env_file=None, queue_enabled=True)),
        patch("receiptflow.api.main.get_arq_pool", new=AsyncMock(return_value=pool)),
    ):
        yield pool


def make_stats(used: int = 195, limit: int = 975) -> UsageStats:
    return UsageStats(
        period="202601",
        period_display="2026-01",
        used=used,
        limit=limit,
        remaining=max(0, limit - used),
        percent_used=round(used / limit * 100),
        quota_exceeded=used >= limit,
    )


def test_health_check(client: TestClient) -> None:
    """Test health check endpoint."""
    response = client.get("/health")

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["status"] == "healthy"
    assert "version" in data
    assert "service" in data


def test_readiness_check(client: TestClient, mock_processor: MagicMock) -> None:
    """Test readiness reports the extraction backend."""
    response = client.get("/ready")

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"ready": True, "extraction_backend": "gemini", "storage": False}


def test_readiness_probes_storage(client: TestClient, mock_processor: MagicMock) -> None:
    """Test readiness reports whether storage answers, not only whether it is configured."""
    mock_processor.storage = MagicMock()
    mock_processor.storage.health_check.return_value = False

    response = client.get("/ready")

    assert response.json()["storage"] is False
    mock_processor.storage.health_check.assert_called_once_with()


def test_usage(client: TestClient, mock_processor: MagicMock) -> None:
    """Test global usage statistics."""
    mock_processor.ledger.usage_stats.return_value = make_stats()

    response = client.get("/usage")

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["stats"]["used"] == 195
    assert "Used: 195/975" in data["message"]


def test_tenant_usage_without_directory(client: TestClient, mock_processor: MagicMock) -> None:
    """Test tenant usage is unavailable without a directory."""
    mock_processor.tenants = None

    response = client.get("/usage/acme")

    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_tenant_usage(client: TestClient, mock_processor: MagicMock) -> None:
    mock_processor.tenants.usage_stats.return_value = make_stats(used=100, limit=100)

    response = client.get("/usage/acme")

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["stats"]["quota_exceeded"] is True
    mock_processor.tenants.usage_stats.assert_called_once_with("acme")


def test_upload_processed(client: TestClient, mock_processor: MagicMock) -> None:
    """Test a processed document returns the reply and invoice."""
    mock_processor.process.return_value = ProcessingOutcome(
        status=ProcessingStatus.PROCESSED,
        reply="Invoice processed and saved!",
        invoice=Invoice(invoice_number="RC-0042", grand_total=Decimal("1080")),
        rows_appended=2,
    )

    response = client.post("/api/v1/documents", files=FILES, data=FORM)

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["status"] == "processed"
    assert data["reply"] == "Invoice processed and saved!"
    assert data["rows_appended"] == 2
    assert data["invoice"]["invoiceNumber"] == "RC-0042"
    content, content_type, actor, tenant = mock_processor.process.call_args.args
    assert content_type == "image/jpeg"
    assert actor.id == "U123"
    assert actor.display_name == "Somchai"
    assert tenant is None


@pytest.mark.parametrize(
    ("outcome_status", "status_code"),
    [
        (ProcessingStatus.QUOTA_EXCEEDED, status.HTTP_429_TOO_MANY_REQUESTS),
        (ProcessingStatus.UNAUTHORIZED, status.HTTP_403_FORBIDDEN),
        (ProcessingStatus.FAILED, status.HTTP_502_BAD_GATEWAY),
    ],
)
def test_upload_status_codes(
    client: TestClient,
    mock_processor: MagicMock,
    outcome_status: ProcessingStatus,
    status_code: int,
) -> None:
    """Test each outcome maps to its status code with the reply in the body."""
    mock_processor.process.return_value = ProcessingOutcome(status=outcome_status, reply="nope")

    response = client.post("/api/v1/documents", files=FILES, data=FORM)

    assert response.status_code == status_code
    assert response.json()["reply"] == "nope"


def test_upload_with_tenant(client: TestClient, mock_processor: MagicMock) -> None:
    mock_processor.process.return_value = ProcessingOutcome(
        status=ProcessingStatus.PROCESSED, reply="ok"
    )

    client.post("/api/v1/documents", files=FILES, data={**FORM, "tenant": "acme"})

    assert mock_processor.process.call_args.args[3] == "acme"


def test_upload_accepts_pdf(client: TestClient, mock_processor: MagicMock) -> None:
    mock_processor.process.return_value = ProcessingOutcome(
        status=ProcessingStatus.PROCESSED, reply="ok"
    )
    files = {"file": ("invoice.pdf", b"%PDF-1.7", "application/pdf")}

    response = client.post("/api/v1/documents", files=files, data=FORM)

    assert response.status_code == status.HTTP_200_OK


def test_upload_no_file(client: TestClient) -> None:
    """Test upload endpoint with no file."""
    response = client.post("/api/v1/documents", data=FORM)

    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


def test_upload_invalid_file_type(client: TestClient, mock_processor: MagicMock) -> None:
    """Test upload endpoint with invalid file type."""
    files = {"file": ("test.txt", b"Not an image", "text/plain")}

    response = client.post("/api/v1/documents", files=files, data=FORM)

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert "detail" in response.json()
    mock_processor.process.assert_not_called()


def test_upload_empty_file(client: TestClient, mock_processor: MagicMock) -> None:
    """Test upload endpoint with empty file."""
    files = {"file": ("test.png", b"", "image/png")}

    response = client.post("/api/v1/documents", files=files, data=FORM)

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    mock_processor.process.assert_not_called()


def test_upload_too_large(client: TestClient, mock_processor: MagicMock) -> None:
    with patch("receiptflow.api.main.MAX_UPLOAD_BYTES", 4):
        response = client.post("/api/v1/documents", files=FILES, data=FORM)

    assert response.status_code == status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
    mock_processor.process.assert_not_called()


def test_queue_disabled(client: TestClient) -> None:
    """Test queued endpoints are unavailable by default."""
    with patch("receiptflow.api.main.settings", Settings(_env_file=None, queue_enabled=False)):
        assert client.post("/api/v1/documents/async", files=FILES, data=FORM).status_code == 503
        assert client.get("/api/v1/jobs/job-1").status_code == 503


def test_queue_document(client: TestClient, queue_enabled: AsyncMock) -> None:
    """Test queuing stores a pending job and enqueues the task."""
    response = client.post("/api/v1/documents/async", files=FILES, data=FORM)

    assert response.status_code == status.HTTP_202_ACCEPTED
    job_id = response.json()["job_id"]
    assert response.json()["status"] == "pending"

    key, raw = queue_enabled.set.call_args.args
    assert key == f"job:{job_id}"
    assert json.loads(raw)["status"] == "pending"
    assert queue_enabled.set.call_args.kwargs["ex"] == 86400

    name = queue_enabled.enqueue_job.call_args.args[0]
    kwargs = queue_enabled.enqueue_job.call_args.kwargs
    assert name == "process_document"
    assert kwargs["job_id"] == job_id
    assert kwargs["file_content"] == b"\xff\xd8fake-jpeg"
    assert kwargs["user_id"] == "U123"


def test_get_job(client: TestClient, queue_enabled: AsyncMock) -> None:
    """Test polling a stored job."""
    queue_enabled.get.return_value = json.dumps(
        {
            "job_id": "job-1",
            "status": "completed",
            "outcome": "processed",
            "reply": "Invoice processed and saved!",
            "rows_appended": 1,
            "created_at": "2026-01-11T07:03:59+00:00",
        }
    ).encode()

    response = client.get("/api/v1/jobs/job-1")

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["outcome"] == "processed"
    queue_enabled.get.assert_called_once_with("job:job-1")


def test_get_unknown_job(client: TestClient, queue_enabled: AsyncMock) -> None:
    queue_enabled.get.return_value = None

    assert client.get("/api/v1/jobs/missing").status_code == status.HTTP_404_NOT_FOUND


def test_metrics_endpoint(client: TestClient) -> None:
    """Test Prometheus metrics endpoint."""
    response = client.get("/metrics")

    assert response.status_code == status.HTTP_200_OK
    content_type = response.headers["content-type"]
    assert "openmetrics-text" in content_type or "text/plain" in content_type
    assert "# HELP" in response.text


def test_metrics_recorded_on_requests(client: TestClient) -> None:
    """Test that metrics are recorded on API requests."""
    client.get("/health")

    content = client.get("/metrics").text

    assert "http_requests_total" in content


@pytest.fixture
def directory(mock_processor: MagicMock) -> MagicMock:
    """Tenant directory behind the mocked processor."""
    directory = mock_processor.tenants.directory
    directory.get_tenant.return_value = TenantConfig(row_number=2, name="acme", quota_limit=100)
    directory.enroll_user.return_value = UserRecord(
        row_number=5, user_id="U123", user_name="Somchai", tenant="acme", status="active"
    )
    return directory


def test_list_tenants(client: TestClient, directory: MagicMock) -> None:
    """Test active tenants are listed for selection."""
    directory.list_active_tenants.return_value = ["acme", "globex"]

    response = client.get("/api/v1/tenants")

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"tenants": ["acme", "globex"]}


def test_list_tenants_without_directory(client: TestClient, mock_processor: MagicMock) -> None:
    mock_processor.tenants = None

    response = client.get("/api/v1/tenants")

    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_assign_tenant(client: TestClient, directory: MagicMock) -> None:
    """Test a user is enrolled in a validated tenant and comes back active."""
    response = client.post(
        "/api/v1/users/U123/tenant", json={"tenant": "acme", "user_name": "Somchai"}
    )

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["tenant"] == "acme"
    assert data["status"] == "active"
    directory.get_tenant.assert_called_once_with("acme")
    user_id, tenant, user_name = directory.enroll_user.call_args.args
    assert user_id == "U123"
    assert tenant.name == "acme"
    assert user_name == "Somchai"


def test_assign_unknown_tenant(client: TestClient, directory: MagicMock) -> None:
    directory.get_tenant.return_value = None

    response = client.post("/api/v1/users/U123/tenant", json={"tenant": "initech"})

    assert response.status_code == status.HTTP_404_NOT_FOUND
    directory.enroll_user.assert_not_called()


def test_assign_inactive_tenant(client: TestClient, directory: MagicMock) -> None:
    directory.get_tenant.return_value = TenantConfig(
        row_number=3, name="globex", quota_limit=100, status="inactive"
    )

    response = client.post("/api/v1/users/U123/tenant", json={"tenant": "globex"})

    assert response.status_code == status.HTTP_409_CONFLICT
    directory.enroll_user.assert_not_called()


def test_assign_tenant_directory_unavailable(client: TestClient, directory: MagicMock) -> None:
    directory.enroll_user.side_effect = SheetsApiError("boom", status_code=500)

    response = client.post("/api/v1/users/U123/tenant", json={"tenant": "acme"})

    assert response.status_code == status.HTTP_502_BAD_GATEWAY
