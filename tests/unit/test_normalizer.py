"""Unit tests for invoice normalization.

Tests cover:
- Line item derivation, reclassification, filtering and numbering
- Enum resolution with defaults
- VAT exclusivity
- Tolerance to malformed payloads
- Round trip of canonical invoices through to_raw
"""

from decimal import Decimal
from typing import Any

import pytest

from receiptflow.invoice.normalizer import (
    DEFAULT_CONFIDENCE,
    normalize,
    normalize_line_items,
    to_raw,
)
from receiptflow.invoice.schema import DocumentType, ExpenseCategory, LineType
from receiptflow.parsing.fields import TEXT_MARKER


@pytest.fixture
def massage_payload() -> dict[str, Any]:
    """Receipt with one service line and one discount."""
    return {
        "documentType": "Receipt",
        "invoiceNumber": "RC-0042",
        "invoiceDate": "11 Jan 2026",
        "sellerName": "Baan Spa",
        "sellerTaxId": "010-756-6000-453",
        "expenseCategory": "Other",
        "lineItems": [
            {"lineType": "item", "description": "Massage 60 min", "amount": 1200},
            {"lineType": "discount", "description": "ส่วนลด 10%", "amount": -120},
        ],
        "grandTotal": 1080,
        "confidence": 0.92,
    }


class TestLineItems:
    """Test line item normalization."""

    def test_discount_scenario(self, massage_payload: dict[str, Any]) -> None:
        """Should keep both lines and the grand total."""
        invoice = normalize(massage_payload)

        assert len(invoice.line_items) == 2
        assert invoice.grand_total == Decimal("1080")
        assert invoice.line_items[0].line_type is LineType.ITEM
        assert invoice.line_items[1].line_type is LineType.DISCOUNT
        assert invoice.line_items[1].amount == Decimal("-120")

    def test_negative_item_with_credit_note_becomes_credit(self) -> None:
        """Negative item mentioning a credit note should be a credit."""
        items = normalize_line_items(
            [{"lineType": "item", "amount": -50, "description": "CN-00123"}]
        )
        assert items[0].line_type is LineType.CREDIT

    def test_negative_item_becomes_discount(self) -> None:
        """Other negative items should be discounts."""
        items = normalize_line_items(
            [{"lineType": "item", "amount": -50, "description": "Member Discount"}]
        )
        assert items[0].line_type is LineType.DISCOUNT

    def test_refund_keyword_is_case_insensitive(self) -> None:
        """Keyword matching should ignore case."""
        items = normalize_line_items([{"amount": -10, "description": "REFUND deposit"}])
        assert items[0].line_type is LineType.CREDIT

    def test_negative_service_keeps_its_type(self) -> None:
        """Only plain items are reclassified."""
        items = normalize_line_items(
            [{"lineType": "service", "amount": -10, "description": "Service adj"}]
        )
        assert items[0].line_type is LineType.SERVICE

    def test_unknown_line_type_defaults_to_item(self) -> None:
        """Out-of-set line types should become item."""
        items = normalize_line_items([{"lineType": "gizmo", "amount": 5, "description": "Pen"}])
        assert items[0].line_type is LineType.ITEM

    def test_line_type_is_case_insensitive(self) -> None:
        """Line types should match regardless of case."""
        items = normalize_line_items([{"lineType": "VAT", "amount": 7, "description": "VAT 7%"}])
        assert items[0].line_type is LineType.VAT

    def test_unit_price_derived_from_amount(self) -> None:
        """Should derive unit price as amount / quantity."""
        items = normalize_line_items([{"description": "Coffee", "quantity": 4, "amount": "200"}])
        assert items[0].unit_price == Decimal("50")
        assert items[0].quantity == Decimal("4")

    def test_amount_derived_from_unit_price(self) -> None:
        """Should derive amount as unit price * quantity."""
        items = normalize_line_items([{"description": "Tea", "quantity": "3", "unitPrice": 25}])
        assert items[0].amount == Decimal("75")

    def test_quantity_defaults_to_one(self) -> None:
        """Unparseable quantity should default to 1."""
        items = normalize_line_items([{"description": "Cake", "quantity": "n/a", "amount": 90}])
        assert items[0].quantity == Decimal("1")
        assert items[0].unit_price == Decimal("90")

    def test_zero_quantity_leaves_unit_price_empty(self) -> None:
        """Should not divide by zero."""
        items = normalize_line_items([{"description": "Gift", "quantity": 0, "amount": 10}])
        assert items[0].unit_price is None
        assert items[0].amount == Decimal("10")

    def test_filters_and_renumbers(self) -> None:
        """Should drop empty descriptions and zero amounts, numbering survivors from 1."""
        items = normalize_line_items(
            [
                {"description": "", "amount": 10},
                {"description": "Kept A", "amount": 10},
                {"description": "Free sample", "amount": 0},
                {"description": "No amounts at all"},
                "not an object",
                {"description": "Kept B", "unitPrice": 2, "quantity": 2},
            ]
        )
        assert [item.description for item in items] == ["Kept A", "Kept B"]
        assert [item.item_number for item in items] == [1, 2]

    def test_non_list_yields_no_items(self) -> None:
        """A malformed lineItems field should yield no items."""
        assert normalize_line_items({"description": "x"}) == ()


class TestInvoiceFields:
    """Test invoice-level normalization."""

    def test_scalar_fields(self, massage_payload: dict[str, Any]) -> None:
        """Should normalize dates, tax ids and confidence."""
        invoice = normalize(massage_payload, token_used=1532)

        assert invoice.invoice_number == "RC-0042"
        assert invoice.invoice_date == "2026-01-11"
        assert invoice.seller_tax_id == "0107566000453"
        assert invoice.confidence == pytest.approx(0.92)
        assert invoice.token_used == 1532

    def test_snake_case_keys_are_accepted(self) -> None:
        """Should fall back to snake_case field names."""
        invoice = normalize({"invoice_number": "A1", "grand_total": "50", "vat_amount": "3.5"})
        assert invoice.invoice_number == "A1"
        assert invoice.grand_total == Decimal("50")
        assert invoice.vat_amount == Decimal("3.5")

    def test_enum_defaults(self) -> None:
        """Unknown document types and categories should fall back to defaults."""
        invoice = normalize({"documentType": "Bill", "expenseCategory": "Snacks"})
        assert invoice.document_type is DocumentType.RECEIPT
        assert invoice.expense_category is ExpenseCategory.OTHER

    def test_enum_matching_ignores_case(self) -> None:
        """Enum values should match case-insensitively."""
        invoice = normalize({"documentType": "tax invoice", "expenseCategory": "travel"})
        assert invoice.document_type is DocumentType.TAX_INVOICE
        assert invoice.expense_category is ExpenseCategory.TRAVEL

    def test_vat_line_forces_vat_amount_to_zero(self) -> None:
        """VAT itemised as a line must not be reported twice."""
        invoice = normalize(
            {
                "lineItems": [
                    {"description": "Room", "amount": 1000},
                    {"lineType": "vat", "description": "VAT 7%", "amount": 70},
                ],
                "vatAmount": 70,
                "grandTotal": 1070,
            }
        )
        assert invoice.has_vat_line
        assert invoice.vat_amount == Decimal("0")

    def test_vat_amount_kept_without_vat_line(self) -> None:
        """Reported VAT should be kept when there is no VAT line."""
        invoice = normalize({"vatAmount": "70.00", "grandTotal": 1070})
        assert invoice.vat_amount == Decimal("70.00")

    def test_unparseable_date_is_marked(self) -> None:
        """Unparseable dates should be kept as marked text."""
        invoice = normalize({"invoiceDate": "garbled-not-a-date"})
        assert invoice.invoice_date == f"{TEXT_MARKER}garbled-not-a-date"

    @pytest.mark.parametrize(
        ("raw_confidence", "expected"),
        [(1.7, 1.0), (-0.3, 0.0), ("0.8", 0.8), (None, DEFAULT_CONFIDENCE), ("high", 0.5)],
    )
    def test_confidence_is_clamped(self, raw_confidence: Any, expected: float) -> None:
        """Confidence should be clamped into [0, 1] with a 0.5 default."""
        invoice = normalize({"confidence": raw_confidence})
        assert invoice.confidence == pytest.approx(expected)

    def test_items_filtered_out_keep_grand_total(self) -> None:
        """A readable total survives even when no item does."""
        invoice = normalize({"lineItems": [{"description": "", "amount": 5}], "grandTotal": 55})
        assert invoice.line_items == ()
        assert invoice.grand_total == Decimal("55")


class TestMalformedPayloads:
    """Test that normalization never raises on malformed data."""

    @pytest.mark.parametrize(
        "payload",
        [
            None,
            [],
            "text",
            42,
            {},
            {"lineItems": "nope", "grandTotal": "n/a", "confidence": {"x": 1}},
            {"lineItems": [None, 3, {"amount": "abc", "description": ["x"]}]},
            {"sellerTaxId": 12345, "invoiceDate": 20260111, "documentType": ["Receipt"]},
        ],
    )
    def test_never_raises(self, payload: Any) -> None:
        """Should return a valid invoice for any input."""
        invoice = normalize(payload)

        assert 0.0 <= invoice.confidence <= 1.0
        assert invoice.grand_total.is_finite()
        for item in invoice.line_items:
            assert item.amount != 0
            assert item.description


class TestRoundTrip:
    """Test normalizing a canonical invoice again."""

    def test_scalar_fields_are_stable(self, massage_payload: dict[str, Any]) -> None:
        """Dates, tax ids and amounts should survive a second pass unchanged."""
        first = normalize(massage_payload, token_used=10)
        second = normalize(to_raw(first), token_used=10)

        assert second.invoice_date == first.invoice_date
        assert second.seller_tax_id == first.seller_tax_id
        assert second.grand_total == first.grand_total
        assert second.line_items == first.line_items

    def test_marked_date_is_stable(self) -> None:
        """A marked date should not gain a second marker."""
        first = normalize({"invoiceDate": "garbled-not-a-date"})
        second = normalize(to_raw(first))
        assert second.invoice_date == first.invoice_date
