"""Prompt sent with every document to the vision model."""

INVOICE_PROMPT = """You are reading a scanned tax invoice or receipt. Extract its data and
answer with a single JSON object, no prose and no code fence:

{
  "documentType": "Tax Invoice | Receipt | Credit Note | Quotation",
  "invoiceNumber": "document number as printed",
  "invoiceDate": "YYYY-MM-DD",
  "sellerName": "issuing company",
  "sellerTaxId": "13-digit tax id of the seller",
  "sellerBranch": "branch name or number, e.g. Head Office",
  "buyerName": "customer company or person",
  "buyerTaxId": "13-digit tax id of the buyer, if printed",
  "expenseCategory": "Food | Travel | Office | Marketing | Utilities | Other",
  "lineItems": [
    {
      "lineType": "item | discount | credit | service | vat",
      "description": "text of the line",
      "quantity": 1,
      "unitPrice": 0.00,
      "amount": 0.00
    }
  ],
  "subtotal": 0.00,
  "vatAmount": 0.00,
  "grandTotal": 0.00,
  "confidence": 0.0
}

Rules:
- Amounts are plain numbers without currency symbols or thousands separators.
- Discounts, deposits and credit-note references are separate lines with a
  negative amount and lineType "discount" or "credit".
- If VAT is printed as its own line, add it as a line with lineType "vat".
- Leave a field empty ("" or null) when it is not printed; do not guess.
- confidence is your certainty about the whole extraction, between 0 and 1.
"""
