"""
PostgreSQL-backed invoice store.

Invoices live in `invoices` with line items as JSONB; payments live in
`invoice_payments`, one row per payment, ordered by `position`. save() is a
single transaction: a version-checked UPDATE followed by INSERTs for the
payments appended since the stored version. Invoice numbers come from a
per-account counter row in `invoice_number_sequences`.
"""

import logging
from datetime import datetime
from typing import Any
from uuid import UUID

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient
from core.exceptions import ConcurrentModificationError, InvoiceNotFoundError
from core.models import Invoice, Payment

logger = logging.getLogger(__name__)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS invoices (
    id UUID PRIMARY KEY,
    account_id UUID NOT NULL,
    invoice_number TEXT NOT NULL,
    client_id UUID NOT NULL,
    client_name TEXT NOT NULL,
    client_email TEXT,
    title TEXT,
    status TEXT NOT NULL,
    currency CHAR(3) NOT NULL,
    line_items JSONB NOT NULL,
    discount_cents BIGINT NOT NULL DEFAULT 0 CHECK (discount_cents >= 0),
    due_date DATE NOT NULL,
    notes TEXT,
    issued_at TIMESTAMPTZ,
    sent_at TIMESTAMPTZ,
    viewed_at TIMESTAMPTZ,
    paid_at TIMESTAMPTZ,
    cancelled_at TIMESTAMPTZ,
    version INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMPTZ NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL,
    UNIQUE (account_id, invoice_number)
);

CREATE TABLE IF NOT EXISTS invoice_payments (
    id UUID PRIMARY KEY,
    invoice_id UUID NOT NULL REFERENCES invoices (id),
    position INTEGER NOT NULL,
    amount_cents BIGINT NOT NULL CHECK (amount_cents > 0),
    method TEXT NOT NULL,
    transaction_id TEXT,
    notes TEXT,
    recorded_at TIMESTAMPTZ NOT NULL,
    UNIQUE (invoice_id, position)
);

CREATE TABLE IF NOT EXISTS invoice_number_sequences (
    account_id UUID PRIMARY KEY,
    last_value INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS invoices_account_created_idx
    ON invoices (account_id, created_at DESC);
"""

_INVOICE_COLUMNS = (
    "id", "account_id", "invoice_number", "client_id", "client_name",
    "client_email", "title", "status", "currency", "line_items",
    "discount_cents", "due_date", "notes", "issued_at", "sent_at",
    "viewed_at", "paid_at", "cancelled_at", "version", "created_at", "updated_at",
)

# Fields the ledger can change after creation. The content fields up to
# notes only change while the invoice is a draft.
_MUTABLE_COLUMNS = (
    "client_id", "client_name", "client_email", "title", "line_items",
    "discount_cents", "due_date", "notes",
    "status", "issued_at", "sent_at", "viewed_at", "paid_at", "cancelled_at",
    "version", "updated_at",
)


class PostgresInvoiceStore:
    """InvoiceStore over PostgreSQL with optimistic versioning."""

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def ensure_schema(self) -> None:
        """Create tables if they do not exist."""
        self.postgres.execute(SCHEMA_SQL)

    def _invoice_values(self, invoice: Invoice, columns: tuple[str, ...]) -> list[Any]:
        data = invoice.model_dump(mode="python")
        values = []
        for column in columns:
            if column == "line_items":
                values.append(Json([item.model_dump(mode="json") for item in invoice.line_items]))
            elif column == "status":
                values.append(invoice.status.value)
            else:
                values.append(data[column])
        return values

    def _insert_payments(self, cur, invoice_id: UUID, payments: list[Payment], start: int) -> None:
        for position, payment in enumerate(payments, start=start):
            cur.execute(
                """
                INSERT INTO invoice_payments (
                    id, invoice_id, position, amount_cents, method,
                    transaction_id, notes, recorded_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    payment.id, invoice_id, position, payment.amount_cents,
                    payment.method.value, payment.transaction_id, payment.notes,
                    payment.recorded_at,
                )
            )

    def insert(self, invoice: Invoice) -> None:
        placeholders = ", ".join(["%s"] * len(_INVOICE_COLUMNS))
        with self.postgres.transaction() as cur:
            cur.execute(
                f"INSERT INTO invoices ({', '.join(_INVOICE_COLUMNS)}) VALUES ({placeholders})",
                self._invoice_values(invoice, _INVOICE_COLUMNS)
            )
            self._insert_payments(cur, invoice.id, invoice.payments, start=0)

    def load(self, invoice_id: UUID) -> Invoice:
        row = self.postgres.execute_single(
            "SELECT * FROM invoices WHERE id = %s",
            (invoice_id,)
        )
        if row is None:
            raise InvoiceNotFoundError(invoice_id)

        payments = self.postgres.execute(
            """
            SELECT id, amount_cents, method, transaction_id, notes, recorded_at
            FROM invoice_payments
            WHERE invoice_id = %s
            ORDER BY position
            """,
            (invoice_id,)
        )
        return Invoice.model_validate({**row, "payments": payments})

    def save(self, invoice: Invoice) -> None:
        """
        Raises:
            ConcurrentModificationError: If the stored version moved on
            ValueError: If stored payments would be rewritten
        """
        expected_version = invoice.version - 1
        assignments = ", ".join(f"{column} = %s" for column in _MUTABLE_COLUMNS)

        with self.postgres.transaction() as cur:
            cur.execute(
                f"UPDATE invoices SET {assignments} WHERE id = %s AND version = %s",
                (*self._invoice_values(invoice, _MUTABLE_COLUMNS), invoice.id, expected_version)
            )
            if cur.rowcount == 0:
                logger.warning(
                    f"Version conflict on invoice {invoice.id}: expected {expected_version}"
                )
                raise ConcurrentModificationError(invoice.id, expected_version)

            cur.execute(
                "SELECT id FROM invoice_payments WHERE invoice_id = %s ORDER BY position",
                (invoice.id,)
            )
            stored_ids = [row["id"] for row in cur.fetchall()]
            if [p.id for p in invoice.payments[:len(stored_ids)]] != stored_ids:
                raise ValueError(f"Payments on invoice {invoice.id} are append-only")

            self._insert_payments(
                cur, invoice.id, invoice.payments[len(stored_ids):], start=len(stored_ids)
            )

    def delete(self, invoice: Invoice) -> None:
        """
        Raises:
            ConcurrentModificationError: If the stored version moved on or the row is gone
        """
        with self.postgres.transaction() as cur:
            cur.execute(
                "DELETE FROM invoices WHERE id = %s AND version = %s",
                (invoice.id, invoice.version)
            )
            if cur.rowcount == 0:
                raise ConcurrentModificationError(invoice.id, invoice.version)

    def list_for_account(
        self,
        account_id: UUID,
        client_id: UUID | None = None,
        issued_from: datetime | None = None,
        issued_before: datetime | None = None,
        created_from: datetime | None = None,
        limit: int | None = None,
    ) -> list[Invoice]:
        """Invoices for an account, newest first, payments included."""
        conditions = ["i.account_id = %s"]
        params: list[Any] = [account_id]

        if client_id is not None:
            conditions.append("i.client_id = %s")
            params.append(client_id)
        if issued_from is not None:
            conditions.append("i.issued_at >= %s")
            params.append(issued_from)
        if issued_before is not None:
            conditions.append("i.issued_at < %s")
            params.append(issued_before)
        if created_from is not None:
            conditions.append("i.created_at >= %s")
            params.append(created_from)

        limit_clause = ""
        if limit is not None:
            limit_clause = "LIMIT %s"
            params.append(limit)

        rows = self.postgres.execute(
            f"""
            SELECT i.*,
                   COALESCE(
                       json_agg(
                           json_build_object(
                               'id', p.id,
                               'amount_cents', p.amount_cents,
                               'method', p.method,
                               'transaction_id', p.transaction_id,
                               'notes', p.notes,
                               'recorded_at', p.recorded_at
                           ) ORDER BY p.position
                       ) FILTER (WHERE p.id IS NOT NULL),
                       '[]'
                   ) AS payments
            FROM invoices i
            LEFT JOIN invoice_payments p ON p.invoice_id = i.id
            WHERE {' AND '.join(conditions)}
            GROUP BY i.id
            ORDER BY i.created_at DESC
            {limit_clause}
            """,
            tuple(params)
        )
        return [Invoice.model_validate(row) for row in rows]

    def next_sequence(self, account_id: UUID) -> int:
        """
        Allocate the account's next invoice sequence number.

        A single upsert on the account's counter row, so concurrent callers
        are serialised by the row lock and never receive the same value. The
        first allocation continues from the invoices already stored.
        """
        return self.postgres.execute_scalar(
            """
            INSERT INTO invoice_number_sequences (account_id, last_value)
            VALUES (%s, (SELECT COUNT(*) FROM invoices WHERE account_id = %s) + 1)
            ON CONFLICT (account_id)
            DO UPDATE SET last_value = invoice_number_sequences.last_value + 1
            RETURNING last_value
            """,
            (account_id, account_id)
        )
