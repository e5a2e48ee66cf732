"""GET /api/data — unified read endpoint, plus invoice document download."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query, Request
from starlette.responses import Response

from api.base import success_response
from core import ledger
from core.models import Invoice, InvoiceStatus


VALID_TYPES = {"invoices", "invoice_stats"}
VALID_FILTERS = {"unpaid", "overdue"}


def invoice_payload(invoice: Invoice, overdue: bool) -> dict:
    """Invoice as JSON with decimal totals alongside the stored cents."""
    data = invoice.model_dump(mode="json")
    data["totals"] = {
        key: str(value) for key, value in ledger.totals(invoice).as_decimals().items()
    }
    data["is_overdue"] = overdue
    return data


def create_data_router(services: dict) -> APIRouter:
    router = APIRouter()

    invoice_svc = services["invoice"]

    @router.get("/invoices/{invoice_id}/document")
    async def invoice_document(request: Request, invoice_id: UUID):
        invoice = invoice_svc.get_by_id(invoice_id)
        return Response(
            content=invoice_svc.render_document(invoice_id),
            media_type="text/plain; charset=utf-8",
            headers={
                "Content-Disposition": f'attachment; filename="{invoice.invoice_number}.txt"'
            },
        )

    @router.get("/data")
    async def get_data(
        request: Request,
        type: str | None = Query(None),
        id: str | None = Query(None),
        client_id: str | None = Query(None),
        status: str | None = Query(None),
        filter: str | None = Query(None),
        from_date: date | None = Query(None),
        to_date: date | None = Query(None),
        period: int = Query(30, ge=1, le=3650),
        limit: int = Query(50, ge=1, le=500),
    ):
        if type is None:
            raise ValueError("'type' query parameter is required")

        if type not in VALID_TYPES:
            raise ValueError(f"Unknown type '{type}'. Valid types: {', '.join(sorted(VALID_TYPES))}")

        request_id = getattr(request.state, "request_id", None)

        if type == "invoice_stats":
            data = invoice_svc.stats(period_days=period)
            return success_response(data, request_id).model_dump(mode="json")

        return _handle_invoices(
            invoice_svc, id, client_id, status, filter, from_date, to_date, limit, request_id
        )

    return router


def _handle_invoices(invoice_svc, id, client_id, status, filter, from_date, to_date, limit, request_id):
    if id:
        invoice = invoice_svc.get_by_id(UUID(id))
        data = invoice_payload(invoice, invoice_svc.is_overdue(invoice))
        return success_response(data, request_id).model_dump(mode="json")

    if filter is not None and filter not in VALID_FILTERS:
        raise ValueError(
            f"Unknown filter '{filter}'. Valid filters: {', '.join(sorted(VALID_FILTERS))}"
        )

    if filter == "unpaid":
        invoices = invoice_svc.list_unpaid(limit)
    else:
        invoices = invoice_svc.list_invoices(
            client_id=UUID(client_id) if client_id else None,
            status=InvoiceStatus(status) if status else None,
            overdue=filter == "overdue",
            from_date=from_date,
            to_date=to_date,
            limit=limit,
        )

    data = {
        "invoices": [invoice_payload(inv, invoice_svc.is_overdue(inv)) for inv in invoices],
        "summary": invoice_svc.summarize(invoices),
    }
    return success_response(data, request_id).model_dump(mode="json")
