"""Shopify OAuth and webhook endpoints.

OAuth routes are public; /auth/callback is authenticated by the query HMAC.
The webhook route is public but authenticated by X-Shopify-Hmac-Sha256 over
the raw body. Error responses are plain text and never say which part of a
signature check failed.
"""

import logging

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import PlainTextResponse, RedirectResponse, Response
from starlette.background import BackgroundTask

from sticky_cart.core.limiter import INSTALL_RATE_LIMIT, limiter
from sticky_cart.shopify.install import (
    CALLBACK_PATH,
    WEBHOOK_PATH,
    InstallationCoordinator,
    InvalidShopDomain,
    MissingOAuthParameters,
    OAuthVerificationError,
    TokenExchangeError,
)
from sticky_cart.shopify.signatures import SignatureError
from sticky_cart.shopify.webhooks import RawWebhookDelivery, WebhookDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(tags=["shopify"])

STATE_COOKIE = "shopify_oauth_state"
STATE_COOKIE_MAX_AGE = 600

# nginx's "client closed request"; never seen by a connected client.
_CLIENT_CLOSED_REQUEST = 499


def get_installation_coordinator(request: Request) -> InstallationCoordinator:
    return request.app.state.installation_coordinator


def get_webhook_dispatcher(request: Request) -> WebhookDispatcher:
    return request.app.state.webhook_dispatcher


# ---------------------------------------------------------------------------
# Webhooks (public, signature-verified)
# ---------------------------------------------------------------------------


@router.post(WEBHOOK_PATH)
async def receive_webhook(
    request: Request,
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
) -> Response:
    """Single entry point for every webhook topic, compliance topics included.

    The body is read as bytes and verified before anything looks at it.
    The 200 goes out first; topic handlers are scheduled afterwards as a
    background task and can't change the response.
    """
    body = await request.body()
    delivery = RawWebhookDelivery.from_request(request.headers, body)

    try:
        webhook = dispatcher.verify(delivery)
    except SignatureError:
        return PlainTextResponse("Unauthorized", status_code=status.HTTP_401_UNAUTHORIZED)

    return PlainTextResponse(
        "OK",
        status_code=status.HTTP_200_OK,
        background=BackgroundTask(dispatcher.defer, webhook),
    )


# ---------------------------------------------------------------------------
# OAuth install
# ---------------------------------------------------------------------------


@router.get("/auth")
@limiter.limit(INSTALL_RATE_LIMIT)
async def begin_install(
    request: Request,
    coordinator: InstallationCoordinator = Depends(get_installation_coordinator),
) -> Response:
    """Start OAuth: redirect to Shopify's authorize page."""
    shop = request.query_params.get("shop")
    if not shop:
        return PlainTextResponse("Missing shop parameter", status_code=status.HTTP_400_BAD_REQUEST)

    try:
        install = coordinator.begin_install(shop)
    except InvalidShopDomain:
        logger.warning("[AUTH] Rejected install for malformed shop %r", shop[:100])
        return PlainTextResponse("Invalid shop parameter", status_code=status.HTTP_400_BAD_REQUEST)

    response = RedirectResponse(install.url, status_code=status.HTTP_302_FOUND)
    response.set_cookie(
        STATE_COOKIE,
        install.state,
        max_age=STATE_COOKIE_MAX_AGE,
        path="/auth",
        httponly=True,
        secure=request.app.state.settings.uses_https,
        samesite="lax",
    )
    return response


@router.get(CALLBACK_PATH)
async def complete_install(
    request: Request,
    coordinator: InstallationCoordinator = Depends(get_installation_coordinator),
) -> Response:
    """Finish OAuth and send the merchant into the Shopify admin."""
    query = dict(request.query_params)

    if await request.is_disconnected():
        # The token exchange would only produce a redirect nobody will read,
        # and it burns the single-use code.
        logger.info("[AUTH] Client went away before token exchange; abandoning")
        return Response(status_code=_CLIENT_CLOSED_REQUEST)

    # The state is single-use: whatever the outcome, the cookie is cleared.
    response: Response
    try:
        result = await coordinator.complete_install(
            query, expected_state=request.cookies.get(STATE_COOKIE)
        )
    except MissingOAuthParameters:
        response = PlainTextResponse("Missing OAuth parameters", status_code=status.HTTP_400_BAD_REQUEST)
    except InvalidShopDomain:
        response = PlainTextResponse("Invalid shop parameter", status_code=status.HTTP_400_BAD_REQUEST)
    except OAuthVerificationError:
        response = PlainTextResponse("Unauthorized", status_code=status.HTTP_401_UNAUTHORIZED)
    except TokenExchangeError:
        response = PlainTextResponse(
            "Failed to exchange token", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
        )
    else:
        response = RedirectResponse(result.redirect_url, status_code=status.HTTP_302_FOUND)

    response.delete_cookie(STATE_COOKIE, path="/auth")
    return response
