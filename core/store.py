"""
Invoice storage.

The ledger never writes fields in place; it produces a new Invoice with
`version` one higher than the state it was derived from. save() accepts it
only if the stored version is still that predecessor, which serialises
concurrent writers per invoice: two payments validated against the same
stale balance cannot both land.
"""

import logging
import threading
from datetime import datetime
from typing import Protocol
from uuid import UUID

from core.exceptions import ConcurrentModificationError, InvoiceNotFoundError
from core.models import Invoice

logger = logging.getLogger(__name__)


class InvoiceStore(Protocol):
    """Storage collaborator for invoices."""

    def insert(self, invoice: Invoice) -> None: ...

    def load(self, invoice_id: UUID) -> Invoice: ...

    def save(self, invoice: Invoice) -> None: ...

    def delete(self, invoice: Invoice) -> None: ...

    def list_for_account(
        self,
        account_id: UUID,
        client_id: UUID | None = None,
        issued_from: datetime | None = None,
        issued_before: datetime | None = None,
        created_from: datetime | None = None,
        limit: int | None = None,
    ) -> list[Invoice]: ...

    def next_sequence(self, account_id: UUID) -> int: ...


def check_append_only(current: Invoice, updated: Invoice) -> None:
    """Raise ValueError if `updated` rewrites or drops any stored payment."""
    stored = len(current.payments)
    if updated.payments[:stored] != current.payments:
        raise ValueError(f"Payments on invoice {current.id} are append-only")


class InMemoryInvoiceStore:
    """
    Arena of invoices keyed by id.

    All access goes through one lock, so the version check and the write
    in save() happen as a single step. Invoices are copied on the way in
    and out so callers cannot reach stored state.
    """

    def __init__(self):
        self._invoices: dict[UUID, Invoice] = {}
        self._sequences: dict[UUID, int] = {}
        self._lock = threading.Lock()

    def insert(self, invoice: Invoice) -> None:
        """
        Store a new invoice.

        Raises:
            ValueError: If the id or the account's invoice number is taken
        """
        with self._lock:
            if invoice.id in self._invoices:
                raise ValueError(f"Invoice {invoice.id} already exists")
            for existing in self._invoices.values():
                if (existing.account_id == invoice.account_id
                        and existing.invoice_number == invoice.invoice_number):
                    raise ValueError(f"Invoice number {invoice.invoice_number} already exists")
            self._invoices[invoice.id] = invoice.model_copy(deep=True)

    def load(self, invoice_id: UUID) -> Invoice:
        """
        Raises:
            InvoiceNotFoundError: If no invoice has this id
        """
        with self._lock:
            invoice = self._invoices.get(invoice_id)
            if invoice is None:
                raise InvoiceNotFoundError(invoice_id)
            return invoice.model_copy(deep=True)

    def save(self, invoice: Invoice) -> None:
        """
        Replace the stored invoice if it is still the predecessor of `invoice`.

        Raises:
            InvoiceNotFoundError: If the invoice was never inserted
            ConcurrentModificationError: If another write got there first
            ValueError: If stored payments would be rewritten
        """
        expected_version = invoice.version - 1
        with self._lock:
            current = self._invoices.get(invoice.id)
            if current is None:
                raise InvoiceNotFoundError(invoice.id)
            if current.version != expected_version:
                logger.warning(
                    f"Version conflict on invoice {invoice.id}: "
                    f"stored {current.version}, expected {expected_version}"
                )
                raise ConcurrentModificationError(invoice.id, expected_version)
            check_append_only(current, invoice)
            self._invoices[invoice.id] = invoice.model_copy(deep=True)

    def delete(self, invoice: Invoice) -> None:
        """
        Remove the stored invoice if it is still at `invoice.version`.

        Raises:
            InvoiceNotFoundError: If the invoice is not stored
            ConcurrentModificationError: If it changed since `invoice` was loaded
        """
        with self._lock:
            current = self._invoices.get(invoice.id)
            if current is None:
                raise InvoiceNotFoundError(invoice.id)
            if current.version != invoice.version:
                raise ConcurrentModificationError(invoice.id, invoice.version)
            del self._invoices[invoice.id]

    def list_for_account(
        self,
        account_id: UUID,
        client_id: UUID | None = None,
        issued_from: datetime | None = None,
        issued_before: datetime | None = None,
        created_from: datetime | None = None,
        limit: int | None = None,
    ) -> list[Invoice]:
        """
        Invoices for an account, newest first.

        issued_from/issued_before bound issued_at (inclusive/exclusive) and
        exclude invoices never issued. No limit returns every match.
        """
        def matches(inv: Invoice) -> bool:
            if inv.account_id != account_id:
                return False
            if client_id is not None and inv.client_id != client_id:
                return False
            if issued_from is not None or issued_before is not None:
                if inv.issued_at is None:
                    return False
                if issued_from is not None and inv.issued_at < issued_from:
                    return False
                if issued_before is not None and inv.issued_at >= issued_before:
                    return False
            if created_from is not None and inv.created_at < created_from:
                return False
            return True

        with self._lock:
            found = [inv for inv in self._invoices.values() if matches(inv)]
        found.sort(key=lambda inv: inv.created_at, reverse=True)
        if limit is not None:
            found = found[:limit]
        return [inv.model_copy(deep=True) for inv in found]

    def next_sequence(self, account_id: UUID) -> int:
        """
        Allocate the account's next invoice sequence number.

        Numbers are never handed out twice, even after a draft is deleted.
        The first allocation continues from the invoices already stored.
        """
        with self._lock:
            last = self._sequences.get(account_id)
            if last is None:
                last = sum(1 for inv in self._invoices.values() if inv.account_id == account_id)
            self._sequences[account_id] = last + 1
            return last + 1
