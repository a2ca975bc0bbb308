"""Session token dependency for routes called from the embedded app.

Shopify App Bridge issues a short-lived session token (an HS256 JWT signed
with the app's client secret) to the embedded admin page, which sends it
as ``Authorization: Bearer <token>``. Claims of interest:

  aud        our client id
  dest       ``https://{shop}.myshopify.com``
  exp, nbf   validity window (one minute)

https://shopify.dev/docs/apps/build/authentication-authorization/session-tokens
"""

import logging

from fastapi import Header, HTTPException, Request, status
from jose import JWTError, jwt

from sticky_cart.core.config import Settings
from sticky_cart.shopify.install import InvalidShopDomain, validate_shop_domain

logger = logging.getLogger(__name__)

# Tolerate small clock drift between Shopify and us.
_LEEWAY_SECONDS = 10


def decode_session_token(token: str, settings: Settings) -> dict:
    """Verify signature, audience and validity window; return the claims."""
    return jwt.decode(
        token,
        settings.shopify_api_secret.get_secret_value(),
        algorithms=["HS256"],
        audience=settings.shopify_api_key,
        options={"leeway": _LEEWAY_SECONDS},
    )


def shop_from_claims(claims: dict) -> str:
    """Extract the shop domain from the ``dest`` claim."""
    dest = claims.get("dest") or ""
    return validate_shop_domain(dest.removeprefix("https://"))


async def get_session_shop(
    request: Request,
    authorization: str = Header(default=""),
) -> str:
    """Validate the bearer session token and return the shop it was issued for."""
    if not authorization.startswith("Bearer "):
        logger.warning("[SESSION TOKEN] Missing or malformed Authorization header")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized - No session token",
        )

    token = authorization.removeprefix("Bearer ").strip()
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized - No session token",
        )

    settings: Settings = request.app.state.settings
    try:
        claims = decode_session_token(token, settings)
        shop = shop_from_claims(claims)
    except (JWTError, InvalidShopDomain) as exc:
        logger.warning("[SESSION TOKEN] Verification failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid session token",
        )

    logger.info("[SESSION TOKEN] Verified for shop: %s", shop)
    return shop
