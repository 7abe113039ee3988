"""Shop isolation middleware using ContextVar.

Extracts the current shop domain from the X-Shop-Domain request header (or
the `shop` query parameter that app-proxy requests always carry). The shop is
stored in a ContextVar so that repositories, dependencies and log processors
can call get_current_shop() without explicit parameter passing.
"""

from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from core.logging import set_request_context

# ---------------------------------------------------------------------------
# Context variable: task-safe shop state
# ---------------------------------------------------------------------------

_current_shop: ContextVar[str] = ContextVar("current_shop", default="")


def get_current_shop() -> str:
    """Return the shop domain for the current request, or "" when unknown.

    Safe to call from any async context within the request lifecycle::

        shop = get_current_shop()
        report = await analytics.report(shop)
    """
    return _current_shop.get()


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

class ShopMiddleware(BaseHTTPMiddleware):
    """Extract the shop from request headers or query string.

    Priority:
    1. X-Shop-Domain header (embedded admin requests)
    2. `shop` query parameter (app proxy requests)
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        shop = request.headers.get("X-Shop-Domain") or request.query_params.get("shop") or ""
        shop = shop.strip().lower()

        request_id = set_request_context(
            shop=shop or None,
            request_id=request.headers.get("X-Request-ID"),
        )

        token = _current_shop.set(shop)
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            _current_shop.reset(token)
