"""Reply texts sent back to the user who submitted a document."""

from receiptflow.invoice.schema import Invoice
from receiptflow.usage.ledger import UsageStats

MAX_LISTED_ITEMS = 5

PROCESSED_MESSAGE = "Invoice processed and saved!"
UNAUTHORIZED_MESSAGE = (
    "You are not authorized to use this service.\n\nPlease contact admin for access."
)
INACTIVE_TENANT_MESSAGE = "Your corporation is not active. Please contact admin."


def quota_exceeded_message(message: str) -> str:
    return f"⚠️ {message}"


def failure_message(error: BaseException) -> str:
    """Generic failure reply; only the error class is disclosed."""
    return (
        "Sorry, I couldn't process your receipt.\n\n"
        f"Error: {type(error).__name__}\n\n"
        "Please try again with a clearer image."
    )


def _confidence_marker(percent: int) -> str:
    if percent >= 80:
        return "🟢"
    if percent >= 60:
        return "🟡"
    return "🔴"


def success_message(invoice: Invoice, image_url: str | None = None) -> str:
    """Summary of the extracted invoice."""
    lines = ["✅ Invoice saved!", ""]

    if invoice.invoice_number:
        lines.append(f"Number: {invoice.invoice_number}")
    if invoice.invoice_date:
        lines.append(f"Date: {invoice.invoice_date}")
    if invoice.seller_name:
        lines.append(f"Seller: {invoice.seller_name}")
    if invoice.seller_tax_id:
        lines.append(f"Tax ID: {invoice.seller_tax_id}")
    if invoice.seller_branch:
        lines.append(f"Branch: {invoice.seller_branch}")

    if invoice.buyer_name:
        lines.append("")
        lines.append(f"Buyer: {invoice.buyer_name}")
        if invoice.buyer_tax_id:
            lines.append(f"Buyer tax ID: {invoice.buyer_tax_id}")

    if invoice.line_items:
        lines.append("")
        lines.append("Items:")
        for item in invoice.line_items[:MAX_LISTED_ITEMS]:
            lines.append(f"  • {item.description} x{item.quantity} = {item.amount}")
        hidden = len(invoice.line_items) - MAX_LISTED_ITEMS
        if hidden > 0:
            lines.append(f"  ... and {hidden} more")

    lines.append("")
    if invoice.subtotal:
        lines.append(f"Subtotal: {invoice.subtotal}")
    if invoice.vat_amount:
        lines.append(f"VAT 7%: {invoice.vat_amount}")
    lines.append(f"Grand total: {invoice.grand_total}")

    if image_url:
        lines.append("")
        lines.append(f"Document: {image_url}")

    percent = round(invoice.confidence * 100)
    lines.append(f"{_confidence_marker(percent)} Confidence: {percent}%")
    return "\n".join(lines)


def usage_message(stats: UsageStats) -> str:
    lines = [
        "📊 OCR Usage Statistics",
        "",
        f"Month: {stats.period_display}",
        f"Used: {stats.used}/{stats.limit}",
        f"Remaining: {stats.remaining}",
        f"Usage: {stats.percent_used}%",
    ]
    if stats.quota_exceeded:
        lines.append("")
        lines.append("⚠️ Quota exceeded - OCR paused until next month.")
    return "\n".join(lines)
