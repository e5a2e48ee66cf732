"""Carry the owning account's identity through the call stack using contextvars."""

from contextlib import contextmanager
from contextvars import ContextVar
from uuid import UUID

_current_account_id: ContextVar[UUID | None] = ContextVar("current_account_id", default=None)


def get_current_account_id() -> UUID:
    """
    Get the account that owns the current request.

    Raises RuntimeError if no account context is set. Invoice numbers and
    invoice visibility are scoped per account, so running account-scoped
    code without one is a bug, not an empty result.
    """
    account_id = _current_account_id.get()
    if account_id is None:
        raise RuntimeError(
            "No account context set. Account-scoped ledger code was called "
            "outside of an authenticated request."
        )
    return account_id


def set_current_account_id(account_id: UUID) -> None:
    """Set the current account. Called by the API middleware per request."""
    _current_account_id.set(account_id)


def clear_current_account_id() -> None:
    """Clear the current account. Must run in a finally block."""
    _current_account_id.set(None)


@contextmanager
def account_context(account_id: UUID):
    """
    Temporarily act on behalf of an account.

    Used by tests and background jobs. Restores whatever account was
    active before the block.

    Example:
        with account_context(account_id):
            invoices = invoice_service.list_invoices(overdue=True)
    """
    previous = _current_account_id.get()
    set_current_account_id(account_id)
    try:
        yield account_id
    finally:
        if previous is None:
            clear_current_account_id()
        else:
            set_current_account_id(previous)
