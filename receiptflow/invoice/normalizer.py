"""Tolerant decoding of model output into the canonical Invoice.

This is the only place that guesses at the shape of the extraction payload.
Every field degrades to a documented default instead of failing, so a
blurry receipt with nothing but a readable total still produces an Invoice.
"""

import logging
from collections.abc import Mapping
from decimal import Decimal
from enum import Enum
from typing import Any, TypeVar

from receiptflow.invoice.schema import (
    DocumentType,
    ExpenseCategory,
    Invoice,
    LineItem,
    LineType,
)
from receiptflow.parsing.fields import extract_tax_id, normalize_date, parse_number

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.5

# Descriptions of negative "item" rows that are really credit notes
CREDIT_KEYWORDS = ("cn", "credit", "refund")

E = TypeVar("E", bound=Enum)


def _field(raw: Mapping[str, Any], camel: str, snake: str) -> Any:
    """Read a field by its camelCase name, falling back to snake_case."""
    value = raw.get(camel)
    if value is None:
        value = raw.get(snake)
    return value


def _text(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def _resolve_enum(value: Any, enum_cls: type[E], default: E) -> E:
    """Case-insensitive match of value against a closed enum."""
    text = _text(value)
    if text is None:
        return default
    lowered = text.lower()
    for member in enum_cls:
        if member.value.lower() == lowered:
            return member
    return default


def _resolve_line_type(raw_type: Any, amount: Decimal, description: str) -> LineType:
    line_type = _resolve_enum(raw_type, LineType, LineType.ITEM)

    # Models often tag negative rows as plain items
    if line_type is LineType.ITEM and amount < 0:
        lowered = description.lower()
        if any(keyword in lowered for keyword in CREDIT_KEYWORDS):
            return LineType.CREDIT
        return LineType.DISCOUNT
    return line_type


def _normalize_line(raw_item: Mapping[str, Any]) -> dict[str, Any]:
    """Parse amounts of one raw line and derive whichever of price/amount is missing."""
    amount = parse_number(raw_item.get("amount"))
    unit_price = parse_number(_field(raw_item, "unitPrice", "unit_price"))
    quantity = parse_number(raw_item.get("quantity"))
    if quantity is None:
        quantity = Decimal(1)

    if amount is not None and unit_price is None:
        if quantity != 0:
            unit_price = amount / quantity
    elif unit_price is not None and amount is None:
        amount = unit_price * quantity
    elif amount is None:
        amount = Decimal(0)

    description = _text(raw_item.get("description")) or ""
    return {
        "line_type": _resolve_line_type(
            _field(raw_item, "lineType", "line_type"), amount, description
        ),
        "description": description,
        "quantity": quantity,
        "unit_price": unit_price,
        "amount": amount,
    }


def normalize_line_items(raw_items: Any) -> tuple[LineItem, ...]:
    """Normalize, filter and renumber raw line items.

    Items with an empty description or a zero amount are dropped; survivors
    keep their relative order and are numbered from 1.
    """
    if not isinstance(raw_items, list):
        return ()

    parsed = [_normalize_line(item) for item in raw_items if isinstance(item, Mapping)]
    survivors = [item for item in parsed if item["description"] and item["amount"] != 0]
    return tuple(
        LineItem(item_number=index, **item) for index, item in enumerate(survivors, start=1)
    )


def _confidence(value: Any) -> float:
    number = parse_number(value)
    if number is None:
        return DEFAULT_CONFIDENCE
    return min(1.0, max(0.0, float(number)))


def normalize(raw: Any, token_used: int | None = None) -> Invoice:
    """Build the canonical Invoice from a raw extraction payload.

    Args:
        raw: Parsed model output; any shape is accepted
        token_used: Tokens consumed by the extraction call, if known

    Returns:
        Invoice with validated and defaulted fields
    """
    if not isinstance(raw, Mapping):
        logger.warning(f"Extraction payload is {type(raw).__name__}, not an object")
        raw = {}

    line_items = normalize_line_items(_field(raw, "lineItems", "line_items"))

    # VAT already itemised must not be counted twice
    if any(item.line_type is LineType.VAT for item in line_items):
        vat_amount: Decimal | None = Decimal(0)
    else:
        vat_amount = parse_number(_field(raw, "vatAmount", "vat_amount"))

    return Invoice(
        document_type=_resolve_enum(
            _field(raw, "documentType", "document_type"), DocumentType, DocumentType.RECEIPT
        ),
        invoice_number=_text(_field(raw, "invoiceNumber", "invoice_number")),
        invoice_date=normalize_date(_text(_field(raw, "invoiceDate", "invoice_date"))),
        seller_name=_text(_field(raw, "sellerName", "seller_name")),
        seller_tax_id=extract_tax_id(_field(raw, "sellerTaxId", "seller_tax_id")),
        seller_branch=_text(_field(raw, "sellerBranch", "seller_branch")),
        buyer_name=_text(_field(raw, "buyerName", "buyer_name")),
        buyer_tax_id=extract_tax_id(_field(raw, "buyerTaxId", "buyer_tax_id")),
        expense_category=_resolve_enum(
            _field(raw, "expenseCategory", "expense_category"),
            ExpenseCategory,
            ExpenseCategory.OTHER,
        ),
        line_items=line_items,
        subtotal=parse_number(raw.get("subtotal")),
        vat_amount=vat_amount,
        grand_total=parse_number(_field(raw, "grandTotal", "grand_total")) or Decimal(0),
        confidence=_confidence(raw.get("confidence")),
        token_used=token_used,
    )


def to_raw(invoice: Invoice) -> dict[str, Any]:
    """Render an Invoice back into the camelCase payload shape the model emits.

    Decimals are kept as strings so that normalizing the result again yields
    the same scalar values.
    """

    def number(value: Decimal | None) -> str | None:
        return None if value is None else str(value)

    return {
        "documentType": invoice.document_type.value,
        "invoiceNumber": invoice.invoice_number,
        "invoiceDate": invoice.invoice_date,
        "sellerName": invoice.seller_name,
        "sellerTaxId": invoice.seller_tax_id,
        "sellerBranch": invoice.seller_branch,
        "buyerName": invoice.buyer_name,
        "buyerTaxId": invoice.buyer_tax_id,
        "expenseCategory": invoice.expense_category.value,
        "lineItems": [
            {
                "lineType": item.line_type.value,
                "description": item.description,
                "quantity": number(item.quantity),
                "unitPrice": number(item.unit_price),
                "amount": number(item.amount),
            }
            for item in invoice.line_items
        ],
        "subtotal": number(invoice.subtotal),
        "vatAmount": number(invoice.vat_amount),
        "grandTotal": number(invoice.grand_total),
        "confidence": invoice.confidence,
    }
