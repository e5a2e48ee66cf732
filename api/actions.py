"""POST /api/actions — unified mutation endpoint."""

from uuid import UUID

from fastapi import APIRouter, Request
from pydantic import BaseModel

from api.base import success_response
from api.data import invoice_payload
from core.models import InvoiceCreate, InvoiceUpdate, PaymentRequest


class ActionRequest(BaseModel):
    domain: str
    action: str
    data: dict


def create_actions_router(services: dict) -> APIRouter:
    router = APIRouter()

    handlers = {
        "invoice": InvoiceHandler(services["invoice"]),
    }

    @router.post("/actions")
    async def perform_action(request: Request, body: ActionRequest):
        handler = handlers.get(body.domain)
        if handler is None:
            raise ValueError(
                f"Unknown domain '{body.domain}'. "
                f"Valid domains: {', '.join(sorted(handlers.keys()))}"
            )

        if body.action not in handler.ALLOWED_ACTIONS:
            raise ValueError(
                f"Action '{body.action}' not allowed on '{body.domain}'. "
                f"Allowed: {', '.join(sorted(handler.ALLOWED_ACTIONS))}"
            )

        method = getattr(handler, f"_handle_{body.action}")
        result = method(body.data)
        request_id = getattr(request.state, "request_id", None)
        return success_response(result, request_id).model_dump(mode="json")

    return router


# =============================================================================
# HANDLER CLASSES
# =============================================================================


def _invoice_id(data: dict) -> UUID:
    if "id" not in data:
        raise ValueError("'id' is required")
    return UUID(data["id"])


class InvoiceHandler:
    ALLOWED_ACTIONS = {
        "create", "update", "delete", "send", "mark_viewed", "cancel", "record_payment",
    }

    def __init__(self, service):
        self.service = service

    def _payload(self, invoice):
        return invoice_payload(invoice, self.service.is_overdue(invoice))

    def _handle_create(self, data: dict):
        invoice = self.service.create(InvoiceCreate(**data))
        return self._payload(invoice)

    def _handle_update(self, data: dict):
        invoice_id = _invoice_id(data)
        changes = InvoiceUpdate(**{k: v for k, v in data.items() if k != "id"})
        return self._payload(self.service.update(invoice_id, changes))

    def _handle_delete(self, data: dict):
        invoice_id = _invoice_id(data)
        self.service.delete(invoice_id)
        return {"id": str(invoice_id), "deleted": True}

    def _handle_send(self, data: dict):
        return self._payload(self.service.send(_invoice_id(data)))

    def _handle_mark_viewed(self, data: dict):
        return self._payload(self.service.mark_viewed(_invoice_id(data)))

    def _handle_cancel(self, data: dict):
        return self._payload(self.service.cancel(_invoice_id(data)))

    def _handle_record_payment(self, data: dict):
        invoice_id = _invoice_id(data)
        request = PaymentRequest(
            amount=data.get("amount"),
            method=data.get("method", ""),
            transaction_id=data.get("transaction_id"),
            notes=data.get("notes"),
        )
        return self._payload(self.service.record_payment(invoice_id, request))
