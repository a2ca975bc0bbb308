"""ASGI middleware for the Sticky Add to Cart API.

Registered in create_app() (outermost → innermost):
  1. RequestIdMiddleware       : request ID + shop domain ContextVars
  2. SecurityHeadersMiddleware : adds security response headers
  3. SlowAPIASGIMiddleware     : rate limits (install entry point only)

All three are plain ASGI callables that pass `receive` through untouched.
Webhook signature verification needs the body bytes exactly as Shopify
sent them, and /auth/callback has to see the client's `http.disconnect`
to abandon a token exchange nobody is waiting for.
"""

import uuid
from contextvars import ContextVar

from starlette.datastructures import Headers, MutableHeaders, QueryParams
from starlette.types import ASGIApp, Message, Receive, Scope, Send

# ---------------------------------------------------------------------------
# ContextVars: shared across middleware and route handlers within one request
# ---------------------------------------------------------------------------

_request_id_var: ContextVar[str] = ContextVar("request_id", default="")
_shop_var: ContextVar[str] = ContextVar("shop", default="")


def get_request_id() -> str:
    """Return the current request's ID, or an empty string outside a request."""
    return _request_id_var.get()


def get_shop() -> str:
    """Return the shop domain the current request claims to come from.

    Unverified: this is for log correlation only, never for authorization.
    """
    return _shop_var.get()


# ---------------------------------------------------------------------------
# RequestIdMiddleware
# ---------------------------------------------------------------------------


class RequestIdMiddleware:
    """Read or generate X-Request-ID and make it available for the request lifetime.

    - X-Request-ID from the client wins.
    - Webhook deliveries fall back to X-Shopify-Webhook-Id, so retries of the
      same delivery share one ID across log lines.
    - Otherwise a fresh UUID4 is generated.

    The shop domain comes from X-Shopify-Shop-Domain (webhooks) or the
    ``shop`` query parameter (OAuth routes).
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        query = QueryParams(scope.get("query_string", b""))
        request_id = (
            headers.get("x-request-id")
            or headers.get("x-shopify-webhook-id")
            or str(uuid.uuid4())
        )
        shop = headers.get("x-shopify-shop-domain") or query.get("shop") or ""

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message)["X-Request-ID"] = request_id
            await send(message)

        request_token = _request_id_var.set(request_id)
        shop_token = _shop_var.set(shop)
        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            _shop_var.reset(shop_token)
            _request_id_var.reset(request_token)


# ---------------------------------------------------------------------------
# SecurityHeadersMiddleware
# ---------------------------------------------------------------------------

_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    # Nothing this service serves is meant to be framed; the embedded admin
    # surface is hosted by Shopify.
    "X-Frame-Options": "DENY",
    # OAuth callback URLs carry ``code`` and ``hmac``.
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "X-XSS-Protection": "0",
    # Redirects and webhook acks are per-request.
    "Cache-Control": "no-store",
}


class SecurityHeadersMiddleware:
    """Attach security-related headers to every outgoing response."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                for name, value in _SECURITY_HEADERS.items():
                    headers[name] = value
            await send(message)

        await self.app(scope, receive, send_wrapper)
