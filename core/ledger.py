"""
Invoice ledger.

Pure functions over a single invoice: status derivation, totals, payment
application and lifecycle transitions. Nothing here touches storage or the
clock; callers pass `now` in. Every transition returns a new Invoice with
`version` bumped so the store can detect concurrent writers.

Status precedence, highest first:
    cancelled > draft > paid > partially_paid > overdue > viewed > sent

Draft and cancelled are only ever entered through explicit transitions.
Everything else is recomputed from amounts, due date and view history on
each evaluation, so an unpaid invoice turns overdue as time passes without
any write.
"""

from datetime import datetime, timedelta
from uuid import UUID, uuid4

from core.config import LedgerConfig
from core.exceptions import (
    AmountExceedsDueError,
    InvoiceAlreadyPaidError,
    InvoiceCancelledError,
    InvoiceNotDraftError,
    InvoiceNotSentError,
)
from core.models import (
    Invoice,
    InvoiceCreate,
    InvoiceStatus,
    InvoiceTotals,
    InvoiceUpdate,
    LineItem,
    LineItemCreate,
    Payment,
)
from core.money import line_amount_cents, to_cents_exact


def evaluate(invoice: Invoice, now: datetime) -> InvoiceStatus:
    """
    Derive the invoice's status at `now`.

    Deterministic and side-effect free. `now` should be expressed in the
    account's business timezone; its calendar date is compared to due_date.
    """
    if invoice.status in (InvoiceStatus.CANCELLED, InvoiceStatus.DRAFT):
        return invoice.status

    if invoice.amount_due_cents == 0:
        return InvoiceStatus.PAID

    if invoice.amount_paid_cents > 0:
        return InvoiceStatus.PARTIALLY_PAID

    if now.date() > invoice.due_date:
        return InvoiceStatus.OVERDUE

    if invoice.viewed_at is not None:
        return InvoiceStatus.VIEWED

    return InvoiceStatus.SENT


def is_overdue(invoice: Invoice, now: datetime) -> bool:
    """
    Whether an issued invoice still has a balance after its due date.

    Unlike evaluate(), true for partially paid invoices too.
    """
    if invoice.status in (InvoiceStatus.CANCELLED, InvoiceStatus.DRAFT):
        return False
    return invoice.amount_due_cents > 0 and now.date() > invoice.due_date


def totals(invoice: Invoice) -> InvoiceTotals:
    """Monetary summary of the invoice."""
    return InvoiceTotals(
        subtotal_cents=invoice.subtotal_cents,
        discount_cents=invoice.discount_cents,
        total_amount_cents=invoice.total_amount_cents,
        amount_paid_cents=invoice.amount_paid_cents,
        amount_due_cents=invoice.amount_due_cents,
    )


def refresh(invoice: Invoice, now: datetime) -> Invoice:
    """Read view of the invoice with status evaluated at `now`. Not a write."""
    status = evaluate(invoice, now)
    if status == invoice.status:
        return invoice
    return invoice.model_copy(update={"status": status})


def _next(invoice: Invoice, now: datetime, **changes) -> Invoice:
    updated = invoice.model_copy(update={
        **changes,
        "updated_at": now,
        "version": invoice.version + 1,
    })
    return updated.model_copy(update={"status": evaluate(updated, now)})


def ensure_payable(invoice: Invoice) -> None:
    """
    Raise unless the invoice can accept a payment at all.

    Raises:
        InvoiceCancelledError: Invoice is cancelled
        InvoiceNotSentError: Invoice is still a draft
    """
    if invoice.status == InvoiceStatus.CANCELLED:
        raise InvoiceCancelledError(f"Invoice {invoice.invoice_number} is cancelled")
    if invoice.status == InvoiceStatus.DRAFT:
        raise InvoiceNotSentError(
            f"Invoice {invoice.invoice_number} must be sent before it can accept payment"
        )


def apply_payment(invoice: Invoice, payment: Payment, now: datetime) -> Invoice:
    """
    Append a payment and re-derive the invoice state.

    The only way amount_paid changes. The input invoice is never modified.

    Raises:
        InvoiceCancelledError: Invoice is cancelled
        InvoiceNotSentError: Invoice is still a draft
        AmountExceedsDueError: Payment is larger than the remaining balance
    """
    ensure_payable(invoice)

    amount_due = invoice.amount_due_cents
    if payment.amount_cents > amount_due:
        raise AmountExceedsDueError(payment.amount_cents, amount_due)

    changes = {"payments": [*invoice.payments, payment]}
    if payment.amount_cents == amount_due:
        changes["paid_at"] = now

    return _next(invoice, now, **changes)


def mark_sent(invoice: Invoice, now: datetime) -> Invoice:
    """
    Issue the invoice, or record a re-send.

    issued_at is stamped on the first send only; sent_at on every send.

    Raises:
        InvoiceCancelledError: Invoice is cancelled
    """
    if invoice.status == InvoiceStatus.CANCELLED:
        raise InvoiceCancelledError(f"Invoice {invoice.invoice_number} is cancelled")

    changes = {"sent_at": now, "issued_at": invoice.issued_at or now}
    if invoice.status == InvoiceStatus.DRAFT:
        changes["status"] = InvoiceStatus.SENT

    return _next(invoice, now, **changes)


def mark_viewed(invoice: Invoice, now: datetime) -> Invoice:
    """
    Record the client's first view of the invoice.

    Cancelled and already-viewed invoices are returned unchanged.

    Raises:
        InvoiceNotSentError: Invoice is still a draft
    """
    if invoice.status == InvoiceStatus.DRAFT:
        raise InvoiceNotSentError(f"Invoice {invoice.invoice_number} has not been sent")

    if invoice.status == InvoiceStatus.CANCELLED or invoice.viewed_at is not None:
        return invoice

    return _next(invoice, now, viewed_at=now)


def cancel(invoice: Invoice, now: datetime) -> Invoice:
    """
    Cancel an unpaid or partially paid invoice. Terminal.

    Raises:
        InvoiceAlreadyPaidError: Invoice is fully paid
    """
    status = evaluate(invoice, now)
    if status == InvoiceStatus.CANCELLED:
        return invoice
    if status == InvoiceStatus.PAID:
        raise InvoiceAlreadyPaidError(
            f"Invoice {invoice.invoice_number} is paid and cannot be cancelled"
        )

    return _next(invoice, now, status=InvoiceStatus.CANCELLED, cancelled_at=now)


def ensure_draft(invoice: Invoice) -> None:
    """
    Raise unless the invoice is still a draft.

    Raises:
        InvoiceNotDraftError: Invoice has been sent or cancelled
    """
    if invoice.status != InvoiceStatus.DRAFT:
        raise InvoiceNotDraftError(
            f"Invoice {invoice.invoice_number} is {invoice.status.value}; "
            f"only drafts can be edited or deleted"
        )


def revise_draft(invoice: Invoice, data: InvoiceUpdate, now: datetime) -> Invoice:
    """
    Apply edits to a draft invoice.

    Only the fields set on `data` change. Invoice number, currency and
    account never change.

    Raises:
        InvoiceNotDraftError: Invoice is no longer a draft
        ValueError: If an amount is finer than one cent, discount exceeds
            subtotal, or a required field is cleared
    """
    ensure_draft(invoice)

    changes = data.model_dump(exclude_unset=True, exclude={"line_items", "discount"})
    if "line_items" in data.model_fields_set:
        if data.line_items is None:
            raise ValueError("line_items cannot be cleared")
        changes["line_items"] = _line_items(data.line_items)
    if "discount" in data.model_fields_set:
        changes["discount_cents"] = to_cents_exact(data.discount or 0)

    # Re-validated so a cleared required field or discount > subtotal is rejected
    revised = Invoice.model_validate({**invoice.model_dump(), **changes})
    return _next(revised, now)


def _line_items(items: list[LineItemCreate]) -> list[LineItem]:
    line_items = []
    for item in items:
        rate_cents = to_cents_exact(item.rate)
        line_items.append(LineItem(
            description=item.description,
            rate_cents=rate_cents,
            quantity=item.quantity,
            amount_cents=line_amount_cents(rate_cents, item.quantity),
        ))
    return line_items


def build_invoice(
    data: InvoiceCreate,
    account_id: UUID,
    invoice_number: str,
    now: datetime,
    config: LedgerConfig,
) -> Invoice:
    """
    Construct a new draft invoice.

    Rates and discount must be whole cents; line amounts are rate * quantity
    rounded half up. Without an explicit due date the invoice is due
    payment_terms_days after `now`.

    Raises:
        ValueError: If an amount is finer than one cent or discount exceeds subtotal
    """
    line_items = _line_items(data.line_items)

    subtotal_cents = sum(item.amount_cents for item in line_items)
    discount_cents = to_cents_exact(data.discount)
    if discount_cents > subtotal_cents:
        raise ValueError("Discount cannot exceed subtotal")

    due_date = data.due_date or now.date() + timedelta(days=config.payment_terms_days)

    return Invoice(
        id=uuid4(),
        account_id=account_id,
        invoice_number=invoice_number,
        client_id=data.client_id,
        client_name=data.client_name,
        client_email=data.client_email,
        title=data.title,
        status=InvoiceStatus.DRAFT,
        currency=data.currency or config.default_currency,
        line_items=line_items,
        discount_cents=discount_cents,
        due_date=due_date,
        payments=[],
        notes=data.notes,
        version=0,
        created_at=now,
        updated_at=now,
    )
