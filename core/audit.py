"""
Audit trail for invoice ledger changes.

Every transition of every invoice is logged here: creation, draft edits and
deletion, sends, views, payments and cancellation. The log is:
- Append-only (entries never modified or deleted)
- Account-attributed (which account made the change)
- Detailed (captures old and new values)

Payments are already an append-only history on the invoice itself; the
audit log additionally records who did what to the invoice and when.
"""

from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient
from core.models import Invoice
from utils.account_context import get_current_account_id
from utils.timezone import now_utc

AUDIT_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS ledger_audit_log (
    id UUID PRIMARY KEY,
    account_id UUID NOT NULL,
    invoice_id UUID NOT NULL,
    action TEXT NOT NULL,
    changes JSONB NOT NULL,
    created_at TIMESTAMPTZ NOT NULL
);

CREATE INDEX IF NOT EXISTS ledger_audit_log_invoice_idx
    ON ledger_audit_log (invoice_id, created_at DESC);
"""


class AuditAction(Enum):
    """Kind of change made to an invoice."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    SEND = "send"
    VIEW = "view"
    PAYMENT = "payment"
    CANCEL = "cancel"


def describe_transition(old: Invoice, new: Invoice) -> dict[str, dict[str, Any]]:
    """
    Changes between two states of the same invoice.

    Returns:
        {field: {"old": ..., "new": ...}} for the draft-editable fields, status,
        amount paid and the lifecycle timestamps that differ. Empty dict if
        nothing changed.
    """
    tracked = {
        "client_id": lambda inv: str(inv.client_id),
        "client_name": lambda inv: inv.client_name,
        "client_email": lambda inv: inv.client_email,
        "title": lambda inv: inv.title,
        "subtotal_cents": lambda inv: inv.subtotal_cents,
        "discount_cents": lambda inv: inv.discount_cents,
        "due_date": lambda inv: inv.due_date.isoformat(),
        "notes": lambda inv: inv.notes,
        "status": lambda inv: inv.status.value,
        "amount_paid_cents": lambda inv: inv.amount_paid_cents,
        "sent_at": lambda inv: inv.sent_at.isoformat() if inv.sent_at else None,
        "viewed_at": lambda inv: inv.viewed_at.isoformat() if inv.viewed_at else None,
        "paid_at": lambda inv: inv.paid_at.isoformat() if inv.paid_at else None,
        "cancelled_at": lambda inv: inv.cancelled_at.isoformat() if inv.cancelled_at else None,
    }

    changes = {}
    for field, read in tracked.items():
        old_val, new_val = read(old), read(new)
        if old_val != new_val:
            changes[field] = {"old": old_val, "new": new_val}
    return changes


class AuditLogger:
    """
    Append-only audit trail for invoices.

    Usage:
        audit = AuditLogger(postgres)

        audit.log_change(
            invoice_id=invoice.id,
            action=AuditAction.CREATE,
            changes={"created": invoice.model_dump(mode="json")}
        )

        audit.log_change(
            invoice_id=updated.id,
            action=AuditAction.PAYMENT,
            changes=describe_transition(current, updated)
        )

        history = audit.get_invoice_history(invoice.id)
    """

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def ensure_schema(self) -> None:
        self.postgres.execute(AUDIT_SCHEMA_SQL)

    def log_change(
        self,
        invoice_id: UUID,
        action: AuditAction,
        changes: dict[str, Any],
        account_id: UUID | None = None
    ) -> None:
        """
        Log an invoice change.

        Args:
            invoice_id: Invoice that changed
            action: What happened
            changes: JSON-serializable details of the change
            account_id: Acting account (defaults to current context)
        """
        if account_id is None:
            account_id = get_current_account_id()

        self.postgres.execute(
            """
            INSERT INTO ledger_audit_log (id, account_id, invoice_id, action, changes, created_at)
            VALUES (%s, %s, %s, %s, %s, %s)
            """,
            (
                uuid4(),
                account_id,
                invoice_id,
                action.value,
                Json(changes),
                now_utc()
            )
        )

    def get_invoice_history(self, invoice_id: UUID) -> list[dict[str, Any]]:
        """
        Full audit history for an invoice, newest first.
        """
        return self.postgres.execute(
            """
            SELECT id, account_id, invoice_id, action, changes, created_at
            FROM ledger_audit_log
            WHERE invoice_id = %s
            ORDER BY created_at DESC
            """,
            (invoice_id,)
        )
