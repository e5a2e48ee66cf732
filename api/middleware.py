"""Request-scoped middleware for API requests."""

from uuid import UUID, uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
from utils.account_context import set_current_account_id, clear_current_account_id


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assigns a unique request ID to every request."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class AccountContextMiddleware(BaseHTTPMiddleware):
    """
    Sets the owning account for the request.

    Authentication happens upstream; the gateway forwards the authenticated
    account as the X-Account-ID header. Requests without a valid one are
    rejected, except on public paths.
    """

    HEADER = "X-Account-ID"
    PUBLIC_PATHS = ["/health", "/docs", "/openapi.json"]

    def _is_public_path(self, path: str) -> bool:
        return any(path == p or path.startswith(p + "/") for p in self.PUBLIC_PATHS)

    async def dispatch(self, request: Request, call_next):
        if self._is_public_path(request.url.path):
            return await call_next(request)

        raw = request.headers.get(self.HEADER)
        try:
            account_id = UUID(raw) if raw else None
        except ValueError:
            account_id = None

        if account_id is None:
            return JSONResponse(
                status_code=401,
                content=error_response(
                    ErrorCodes.NOT_AUTHENTICATED,
                    "Authentication required",
                    getattr(request.state, "request_id", None),
                ).model_dump(mode="json"),
            )

        set_current_account_id(account_id)
        request.state.account_id = account_id
        try:
            return await call_next(request)
        finally:
            clear_current_account_id()
