"""
Invoice delivery: rendering documents and sending them to clients.

The ledger itself never calls these; event handlers do, after the invoice
change is saved. PDF rendering is a separate concern; the document produced
here is a plain-text rendering suitable for email attachments and download.
"""

import logging
from typing import Protocol

from clients.email_client import EmailGatewayClient
from core import ledger
from core.models import Invoice, Payment
from core.money import format_amount

logger = logging.getLogger(__name__)


class InvoiceDelivery(Protocol):
    """Notification and document collaborator."""

    def send_invoice(self, invoice: Invoice) -> None: ...

    def send_receipt(self, invoice: Invoice, payment: Payment) -> None: ...

    def generate_document(self, invoice: Invoice) -> bytes: ...


def render_invoice_text(invoice: Invoice) -> str:
    """Plain-text invoice document."""
    cur = invoice.currency
    summary = ledger.totals(invoice)

    lines = [
        f"INVOICE {invoice.invoice_number}",
        f"Status: {invoice.status.value}",
        f"Bill to: {invoice.client_name}",
    ]
    if invoice.title:
        lines.append(f"Title: {invoice.title}")
    if invoice.issued_at:
        lines.append(f"Issued: {invoice.issued_at.date().isoformat()}")
    lines.append(f"Due: {invoice.due_date.isoformat()}")
    lines.append("")

    for item in invoice.line_items:
        lines.append(
            f"{item.description}  {item.quantity} x {format_amount(item.rate_cents, cur)}"
            f"  = {format_amount(item.amount_cents, cur)}"
        )

    lines.append("")
    lines.append(f"Subtotal: {format_amount(summary.subtotal_cents, cur)}")
    if summary.discount_cents:
        lines.append(f"Discount: -{format_amount(summary.discount_cents, cur)}")
    lines.append(f"Total: {format_amount(summary.total_amount_cents, cur)}")
    lines.append(f"Paid: {format_amount(summary.amount_paid_cents, cur)}")
    lines.append(f"Amount due: {format_amount(summary.amount_due_cents, cur)}")

    if invoice.payments:
        lines.append("")
        lines.append("Payments:")
        for payment in invoice.payments:
            reference = f" ({payment.transaction_id})" if payment.transaction_id else ""
            lines.append(
                f"  {payment.recorded_at.date().isoformat()}  {payment.method.value}"
                f"  {format_amount(payment.amount_cents, cur)}{reference}"
            )

    if invoice.notes:
        lines.append("")
        lines.append(invoice.notes)

    return "\n".join(lines) + "\n"


class EmailInvoiceDelivery:
    """Deliver invoices and receipts through the email gateway."""

    def __init__(self, email_client: EmailGatewayClient):
        self.email_client = email_client

    def generate_document(self, invoice: Invoice) -> bytes:
        return render_invoice_text(invoice).encode("utf-8")

    def send_invoice(self, invoice: Invoice) -> None:
        """
        Email the invoice document to the client.

        Invoices without a client email are skipped with a warning.

        Raises:
            EmailGatewayError: On gateway failure
        """
        if not invoice.client_email:
            logger.warning(f"Invoice {invoice.invoice_number} has no client email, not sent")
            return

        body = (
            f"Hello {invoice.client_name},\n\n"
            f"Please find invoice {invoice.invoice_number} attached. "
            f"Amount due: {format_amount(invoice.amount_due_cents, invoice.currency)}, "
            f"due {invoice.due_date.isoformat()}.\n"
        )
        self.email_client.send_email(
            to=invoice.client_email,
            subject=f"Invoice {invoice.invoice_number}",
            body=body,
            attachments=[(
                f"{invoice.invoice_number}.txt",
                "text/plain",
                self.generate_document(invoice),
            )],
        )

    def send_receipt(self, invoice: Invoice, payment: Payment) -> None:
        """
        Email a payment receipt to the client.

        Raises:
            EmailGatewayError: On gateway failure
        """
        if not invoice.client_email:
            logger.warning(f"Invoice {invoice.invoice_number} has no client email, no receipt")
            return

        body = (
            f"Thank you! Payment of {format_amount(payment.amount_cents, invoice.currency)} "
            f"received for invoice {invoice.invoice_number}.\n"
            f"Remaining balance: {format_amount(invoice.amount_due_cents, invoice.currency)}.\n"
        )
        self.email_client.send_email(
            to=invoice.client_email,
            subject="Payment received",
            body=body,
        )
