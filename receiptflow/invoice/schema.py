"""Canonical invoice data models.

The extraction backend returns loosely-shaped JSON; these models are the
validated, defaulted representation every downstream component reads.
Instances are immutable once built by the normalizer.
"""

from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class LineType(str, Enum):
    """Classification of a receipt line."""

    ITEM = "item"
    DISCOUNT = "discount"
    CREDIT = "credit"
    SERVICE = "service"
    VAT = "vat"


class DocumentType(str, Enum):
    """Kind of document the model recognised."""

    TAX_INVOICE = "Tax Invoice"
    RECEIPT = "Receipt"
    CREDIT_NOTE = "Credit Note"
    QUOTATION = "Quotation"


class ExpenseCategory(str, Enum):
    """Bookkeeping category suggested by the model."""

    FOOD = "Food"
    TRAVEL = "Travel"
    OFFICE = "Office"
    MARKETING = "Marketing"
    UTILITIES = "Utilities"
    OTHER = "Other"


class LineItem(BaseModel):
    """One product, service, discount, credit or VAT line of a document."""

    model_config = ConfigDict(frozen=True)

    item_number: int = Field(..., ge=1, description="1-based position among surviving items")
    line_type: LineType = Field(LineType.ITEM, description="Line classification")
    description: str = Field(..., min_length=1, description="Line text as printed")
    quantity: Decimal = Field(Decimal(1), description="Quantity, 1 when not printed")
    unit_price: Decimal | None = Field(None, description="Price per unit")
    amount: Decimal = Field(..., description="Line total, negative for discounts/credits")


class Invoice(BaseModel):
    """Structured invoice data extracted from one document."""

    model_config = ConfigDict(frozen=True)

    document_type: DocumentType = Field(DocumentType.RECEIPT, description="Document kind")
    invoice_number: str | None = Field(None, description="Invoice/receipt identifier")
    invoice_date: str | None = Field(
        None, description="YYYY-MM-DD, or a text-marker prefixed literal when unparseable"
    )

    # Seller information
    seller_name: str | None = Field(None, description="Seller/vendor name")
    seller_tax_id: str | None = Field(None, description="13-digit seller tax id")
    seller_branch: str | None = Field(None, description="Seller branch (head office or number)")

    # Buyer information
    buyer_name: str | None = Field(None, description="Buyer name")
    buyer_tax_id: str | None = Field(None, description="13-digit buyer tax id")

    expense_category: ExpenseCategory = Field(ExpenseCategory.OTHER, description="Category")
    line_items: tuple[LineItem, ...] = Field((), description="Surviving line items in order")

    # Financial details
    subtotal: Decimal | None = Field(None, description="Subtotal before VAT")
    vat_amount: Decimal | None = Field(
        None, description="Receipt-reported VAT total, 0 when VAT is itemised"
    )
    grand_total: Decimal = Field(Decimal(0), description="Net total after discounts")

    confidence: float = Field(0.5, ge=0, le=1, description="Model-reported certainty (0-1)")
    token_used: int | None = Field(None, description="Tokens consumed by the extraction call")

    @property
    def has_vat_line(self) -> bool:
        """True when VAT is represented as a line item."""
        return any(item.line_type is LineType.VAT for item in self.line_items)
