"""End-to-end processing of one submitted document.

Steps:
1. Authorize the sender and resolve their tenant (when a directory is configured)
2. Gate on the global and per-tenant quota
3. Extract the invoice
4. Count the extraction (only after it succeeded)
5. Store the original document under a per-day folder (inside the tenant folder)
6. Project the invoice onto sheet rows and append them
7. Build the reply text

Usage increments and appended rows are at-least-once: a failure after step 4
leaves the extraction counted, and nothing already written is rolled back.
"""

import logging
import mimetypes
import uuid
from collections.abc import Callable
from enum import Enum

from prometheus_client import Counter
from pydantic import BaseModel

from receiptflow.extraction.client import ExtractionClient, create_extraction_client
from receiptflow.extraction.errors import ExtractionError
from receiptflow.invoice.schema import Invoice
from receiptflow.pipeline import messages
from receiptflow.sheets.client import SheetsApiError, SheetsClient
from receiptflow.sheets.projector import Actor, SheetRow, SheetRowProjector
from receiptflow.sheets.row_store import RowStore, SheetRowStore, ensure_header
from receiptflow.shared.config import Settings
from receiptflow.shared.dates import Clock, date_folder, make_clock
from receiptflow.storage.service import DocumentStorage
from receiptflow.usage.ledger import UsageLedger
from receiptflow.usage.store import InMemoryUsageStore, SheetUsageStore, UsageStore
from receiptflow.usage.tenants import TenantConfig, TenantDirectory, TenantUsageLedger

logger = logging.getLogger(__name__)


documents_processed_total = Counter(
    "documents_processed_total",
    "Submitted documents by processing outcome",
    ["status"],
)
quota_rejections_total = Counter(
    "quota_rejections_total",
    "Documents rejected by a quota gate",
    ["scope"],  # global, tenant
)
sheet_rows_appended_total = Counter(
    "sheet_rows_appended_total",
    "Rows appended to invoice sheets",
)


class ProcessingStatus(str, Enum):
    PROCESSED = "processed"
    QUOTA_EXCEEDED = "quota_exceeded"
    UNAUTHORIZED = "unauthorized"
    FAILED = "failed"


class ProcessingOutcome(BaseModel):
    """Result of processing one document.

    Attributes:
        status: Outcome of the pipeline
        reply: Text to send back to the sender
        invoice: Extracted invoice, when extraction succeeded
        image_url: Link to the stored document, if stored
        rows_appended: Number of sheet rows written
        error: Class name of the error that ended processing
    """

    status: ProcessingStatus
    reply: str
    invoice: Invoice | None = None
    image_url: str | None = None
    rows_appended: int = 0
    error: str | None = None


RowStoreResolver = Callable[[TenantConfig | None], RowStore]


class DocumentProcessor:
    """Runs submitted documents through quota, extraction and persistence."""

    def __init__(
        self,
        extraction: ExtractionClient,
        ledger: UsageLedger,
        row_stores: RowStoreResolver,
        projector: SheetRowProjector | None = None,
        storage: DocumentStorage | None = None,
        tenants: TenantUsageLedger | None = None,
        clock: Clock | None = None,
        verbose_replies: bool = False,
    ) -> None:
        """Initialize document processor.

        Args:
            extraction: Client turning documents into invoices
            ledger: Global monthly usage ledger
            row_stores: Picks the row store for a tenant (None without tenants)
            projector: Sheet row projector
            storage: Document storage; documents are not stored without it
            tenants: Per-tenant ledger; enables sender authorization and tenant quota
            clock: Wall clock for timestamps and storage folders
            verbose_replies: Reply with an invoice summary instead of a confirmation
        """
        self.extraction = extraction
        self.ledger = ledger
        self.row_stores = row_stores
        self.projector = projector or SheetRowProjector()
        self.storage = storage
        self.tenants = tenants
        self._clock = clock or make_clock()
        self.verbose_replies = verbose_replies
        self._headers_checked: set[int] = set()

    def _finish(self, outcome: ProcessingOutcome) -> ProcessingOutcome:
        documents_processed_total.labels(status=outcome.status.value).inc()
        return outcome

    def _resolve_tenant(
        self, actor: Actor, tenant: str | None
    ) -> tuple[TenantConfig | None, ProcessingOutcome | None]:
        """Find the sender's tenant; an outcome is returned when processing must stop."""
        if self.tenants is None:
            return None, None
        directory = self.tenants.directory

        if tenant is None:
            user = directory.get_user(actor.id)
            if user is None or not user.is_active:
                logger.warning(f"Unauthorized sender: {actor.id}")
                return None, ProcessingOutcome(
                    status=ProcessingStatus.UNAUTHORIZED, reply=messages.UNAUTHORIZED_MESSAGE
                )
            tenant = user.tenant

        config = directory.get_tenant(tenant)
        if config is None or not config.is_active:
            logger.warning(f"Tenant {tenant} is unknown or inactive")
            return None, ProcessingOutcome(
                status=ProcessingStatus.UNAUTHORIZED, reply=messages.INACTIVE_TENANT_MESSAGE
            )
        return config, None

    def _upload(self, document: bytes, mime_type: str, tenant: TenantConfig | None) -> str:
        if self.storage is None or not self.storage.is_available():
            return ""
        prefix = f"{tenant.name}_" if tenant else ""
        extension = mimetypes.guess_extension(mime_type) or ".bin"
        name = f"{prefix}receipt_{uuid.uuid4().hex}{extension}"
        folder = date_folder(self._clock())
        if tenant is not None and tenant.drive_folder_id:
            folder = f"{tenant.drive_folder_id}/{folder}"
        result = self.storage.upload_document(document, name, mime_type, folder)
        if not result.success:
            logger.warning(f"Document not stored, row will have no image link: {result.error}")
            return ""
        return result.url or ""

    def _append(self, store: RowStore, rows: list[SheetRow]) -> None:
        if id(store) not in self._headers_checked:
            ensure_header(store)
            self._headers_checked.add(id(store))
        store.append_rows(rows)

    def process(
        self,
        document: bytes,
        mime_type: str,
        actor: Actor,
        tenant: str | None = None,
    ) -> ProcessingOutcome:
        """Process one document sent by a user.

        Args:
            document: Image or PDF bytes
            mime_type: MIME type of the document
            actor: Sender of the document
            tenant: Tenant to bill; resolved from the user directory when omitted

        Returns:
            ProcessingOutcome with the reply for the sender
        """
        try:
            tenant_config, stop = self._resolve_tenant(actor, tenant)
        except SheetsApiError as e:
            logger.error(f"Tenant directory unavailable: {e}")
            return self._finish(
                ProcessingOutcome(
                    status=ProcessingStatus.FAILED,
                    reply=messages.failure_message(e),
                    error=type(e).__name__,
                )
            )
        if stop is not None:
            return self._finish(stop)

        availability = self.ledger.check_availability()
        if not availability.allowed:
            quota_rejections_total.labels(scope="global").inc()
            logger.warning(f"OCR quota limit reached: {availability.used}/{availability.limit}")
            return self._finish(
                ProcessingOutcome(
                    status=ProcessingStatus.QUOTA_EXCEEDED,
                    reply=messages.quota_exceeded_message(availability.message or ""),
                )
            )

        if tenant_config is not None and self.tenants is not None:
            tenant_availability = self.tenants.check_availability(tenant_config.name)
            if not tenant_availability.allowed:
                quota_rejections_total.labels(scope="tenant").inc()
                logger.warning(
                    f"Tenant {tenant_config.name} quota reached: "
                    f"{tenant_availability.used}/{tenant_availability.limit}"
                )
                return self._finish(
                    ProcessingOutcome(
                        status=ProcessingStatus.QUOTA_EXCEEDED,
                        reply=messages.quota_exceeded_message(tenant_availability.message or ""),
                    )
                )

        try:
            invoice = self.extraction.extract(document, mime_type)
        except ExtractionError as e:
            logger.error(f"Failed to process receipt from {actor.id}: {e}")
            return self._finish(
                ProcessingOutcome(
                    status=ProcessingStatus.FAILED,
                    reply=messages.failure_message(e),
                    error=type(e).__name__,
                )
            )

        self.ledger.increment()
        if tenant_config is not None and self.tenants is not None:
            self.tenants.increment(tenant_config.name)

        image_url = self._upload(document, mime_type, tenant_config)
        rows = self.projector.project(invoice, image_url, self._clock(), actor)

        try:
            self._append(self.row_stores(tenant_config), rows)
        except SheetsApiError as e:
            logger.error(f"Failed to save {len(rows)} row(s) for {actor.id}: {e}")
            return self._finish(
                ProcessingOutcome(
                    status=ProcessingStatus.FAILED,
                    reply=messages.failure_message(e),
                    invoice=invoice,
                    image_url=image_url or None,
                    error=type(e).__name__,
                )
            )
        sheet_rows_appended_total.inc(len(rows))

        logger.info(
            f"Invoice processed: number={invoice.invoice_number} seller={invoice.seller_name} "
            f"total={invoice.grand_total} lines={len(invoice.line_items)} "
            f"user={actor.display_name or actor.id}"
        )
        reply = (
            messages.success_message(invoice, image_url or None)
            if self.verbose_replies
            else messages.PROCESSED_MESSAGE
        )
        return self._finish(
            ProcessingOutcome(
                status=ProcessingStatus.PROCESSED,
                reply=reply,
                invoice=invoice,
                image_url=image_url or None,
                rows_appended=len(rows),
            )
        )


def build_usage_store(settings: Settings, client: SheetsClient) -> UsageStore:
    if settings.usage_backend == "memory" or not settings.spreadsheet_id:
        return InMemoryUsageStore()
    return SheetUsageStore(client, settings.spreadsheet_id, settings.usage_sheet_name)


def build_processor(settings: Settings) -> DocumentProcessor:
    """Wire a DocumentProcessor from configuration."""
    sheets = SheetsClient(settings)
    clock = make_clock(settings.timezone)

    ledger = UsageLedger(
        store=build_usage_store(settings, sheets),
        limit=settings.monthly_limit,
        quota_message=settings.quota_message,
        cache_ttl_seconds=settings.usage_cache_ttl_seconds,
        clock=clock,
    )

    tenants = None
    if settings.config_spreadsheet_id:
        directory = TenantDirectory(
            sheets,
            settings.config_spreadsheet_id,
            users_tab=settings.users_tab,
            tenants_tab=settings.tenants_tab,
            default_quota=settings.default_tenant_quota,
            clock=clock,
        )
        tenants = TenantUsageLedger(directory)

    default_store = SheetRowStore(sheets, settings.spreadsheet_id, settings.sheet_name)
    tenant_stores: dict[tuple[str, str], RowStore] = {}

    def row_stores(tenant: TenantConfig | None) -> RowStore:
        if tenant is None or not tenant.sheet_id:
            return default_store
        key = (tenant.sheet_id, tenant.sheet_name)
        if key not in tenant_stores:
            tenant_stores[key] = SheetRowStore(sheets, tenant.sheet_id, tenant.sheet_name)
        return tenant_stores[key]

    return DocumentProcessor(
        extraction=create_extraction_client(settings),
        ledger=ledger,
        row_stores=row_stores,
        projector=SheetRowProjector(additional_vat_rate=settings.additional_vat_rate),
        storage=DocumentStorage(settings) if settings.storage_enabled else None,
        tenants=tenants,
        clock=clock,
        verbose_replies=settings.verbose_return_output,
    )
