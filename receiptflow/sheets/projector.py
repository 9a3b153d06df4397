"""Projection of a canonical Invoice onto the append-only invoice sheet.

One invoice with N line items becomes N rows; each row repeats the invoice
header and totals and varies only the item columns. An invoice without
surviving items still produces a single row so its total is recorded.

The column layout must match the header row of existing spreadsheets
exactly; change SHEET_HEADERS only together with a header migration.
"""

import re
import threading
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from pydantic import BaseModel

from receiptflow.invoice.schema import Invoice, LineItem
from receiptflow.shared.dates import format_date_time

Cell = str | int | Decimal
SheetRow = list[Cell]

SHEET_HEADERS: tuple[str, ...] = (
    "Processed At",
    "Receipt ID",
    "Invoice Date",
    "Invoice Month",
    "Invoice Number",
    "Document Type",
    "Seller Name",
    "Seller Tax ID",
    "Expense Category",
    "Item #",
    "Line Type",
    "Description",
    "Quantity",
    "Unit Price",
    "Amount",
    "Subtotal",
    "Additional VAT 7%",
    "Total Inv VAT 7%",
    "Grand Total",
    "Image URL",
    "Confidence",
    "Token Used",
    "User ID",
    "User Name",
)

# Item columns sit between "Expense Category" and "Subtotal"
ITEM_COLUMNS = 6

_ISO_MONTH = re.compile(r"^(\d{4})-(\d{2})-\d{2}$")
_CENTS = Decimal("0.01")


class Actor(BaseModel):
    """Chat user who sent the document."""

    id: str = ""
    display_name: str = ""


class ReceiptIdGenerator:
    """Sequential receipt ids of the form R<YYMMDD>-<NNN>.

    The counter restarts at 1 on the first id of each calendar day. It lives
    in process memory only, so ids can repeat across restarts or between
    concurrently running instances.
    """

    def __init__(self) -> None:
        self._day: str | None = None
        self._sequence = 0
        self._lock = threading.Lock()

    def next_id(self, now: datetime) -> str:
        day = now.strftime("%y%m%d")
        with self._lock:
            if day != self._day:
                self._day = day
                self._sequence = 0
            self._sequence += 1
            return f"R{day}-{self._sequence:03d}"


def invoice_month(invoice_date: str | None) -> str:
    """YYYYMM of an ISO invoice date, '' when the date is missing or textual."""
    if not invoice_date:
        return ""
    match = _ISO_MONTH.match(invoice_date)
    return f"{match.group(1)}{match.group(2)}" if match else ""


def _blank(value: Decimal | str | None) -> Cell:
    return "" if value is None else value


class SheetRowProjector:
    """Turns an Invoice plus side metadata into rows of the invoice sheet."""

    def __init__(
        self,
        receipt_ids: ReceiptIdGenerator | None = None,
        additional_vat_rate: Decimal | float = Decimal("0.07"),
    ) -> None:
        self.receipt_ids = receipt_ids or ReceiptIdGenerator()
        self.additional_vat_rate = Decimal(str(additional_vat_rate))

    def additional_vat(self, invoice: Invoice, item: LineItem) -> str:
        """Estimated VAT of one line, for manual reconciliation.

        Only filled when the receipt reported VAT as a total (not as a line)
        and the line is a positive amount.
        """
        if not invoice.vat_amount or item.amount <= 0:
            return ""
        value = (item.amount * self.additional_vat_rate).quantize(_CENTS, rounding=ROUND_HALF_UP)
        return f"{value:.2f}"

    def project(
        self,
        invoice: Invoice,
        image_url: str,
        processed_at: datetime,
        actor: Actor,
    ) -> list[SheetRow]:
        """Project an invoice onto sheet rows.

        Args:
            invoice: Canonical invoice
            image_url: Link to the stored document
            processed_at: Processing timestamp (also dates the receipt id)
            actor: User who sent the document

        Returns:
            One row per line item, or a single row when there are none
        """
        receipt_id = self.receipt_ids.next_id(processed_at)

        header: SheetRow = [
            format_date_time(processed_at),
            receipt_id,
            _blank(invoice.invoice_date),
            invoice_month(invoice.invoice_date),
            _blank(invoice.invoice_number),
            invoice.document_type.value,
            _blank(invoice.seller_name),
            _blank(invoice.seller_tax_id),
            invoice.expense_category.value,
        ]

        def footer(additional_vat: str) -> SheetRow:
            return [
                _blank(invoice.subtotal),
                additional_vat,
                _blank(invoice.vat_amount),
                invoice.grand_total,
                image_url or "",
                f"{invoice.confidence:.2f}",
                "" if invoice.token_used is None else invoice.token_used,
                actor.id,
                actor.display_name,
            ]

        if not invoice.line_items:
            return [header + [""] * ITEM_COLUMNS + footer("")]

        rows: list[SheetRow] = []
        for item in invoice.line_items:
            item_cells: SheetRow = [
                item.item_number,
                item.line_type.value,
                item.description,
                item.quantity,
                _blank(item.unit_price),
                item.amount,
            ]
            rows.append(header + item_cells + footer(self.additional_vat(invoice, item)))
        return rows
