"""SlowAPI rate limiter singleton.

Only the OAuth entry point (`GET /auth`) is limited: it is the one public
route that mints redirect URLs and cookies on demand. Webhook deliveries
are never limited here; Shopify controls their rate and expects a 200.

Usage in route handlers:
    @router.get("/auth")
    @limiter.limit(INSTALL_RATE_LIMIT)
    async def begin_install(request: Request, ...):
        ...

The `Request` parameter is required by SlowAPI even if the handler doesn't
use it directly; it uses it to extract the key.
"""

from slowapi import Limiter

INSTALL_RATE_LIMIT = "30/minute"


def _shop_or_ip_key(request) -> str:
    """Key function: rate-limit per requested shop, falling back to client IP."""
    shop = request.query_params.get("shop")
    if shop:
        return f"shop:{shop.lower()}"
    return request.client.host if request.client else "unknown"


limiter = Limiter(key_func=_shop_or_ip_key, default_limits=[])
