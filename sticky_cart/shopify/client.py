"""Shopify Admin API client for the install flow.

Uses httpx for async HTTP calls. Two operations are needed:
1. Exchange an OAuth authorization code for an offline access token
2. Register a webhook subscription with that token

Every call carries a bounded timeout and is made exactly once. Neither is
safe to retry blindly: an authorization code is single-use, and a repeated
registration is answered with 422.
"""

import httpx

from sticky_cart.shopify.schemas import AccessToken, WebhookRegistration


async def exchange_access_token(
    shop: str,
    code: str,
    *,
    client_id: str,
    client_secret: str,
    timeout: float,
) -> AccessToken:
    """POST /admin/oauth/access_token

    Raises `httpx.HTTPError` on transport failure, timeout or non-2xx, and
    `ValueError` (pydantic) when the body has no access token.
    """
    async with httpx.AsyncClient(timeout=timeout) as client:
        response = await client.post(
            f"https://{shop}/admin/oauth/access_token",
            headers={"Accept": "application/json"},
            json={
                "client_id": client_id,
                "client_secret": client_secret,
                "code": code,
            },
        )
        response.raise_for_status()
        return AccessToken.model_validate(response.json())


async def create_webhook(
    shop: str,
    access_token: str,
    *,
    registration: WebhookRegistration,
    api_version: str,
    timeout: float,
) -> dict:
    """POST /admin/api/{api_version}/webhooks.json

    Returns the created webhook object. A 422 means the topic/address pair
    is already subscribed (or the topic is not allowed); it surfaces as
    `httpx.HTTPStatusError` for the caller to classify.
    """
    async with httpx.AsyncClient(timeout=timeout) as client:
        response = await client.post(
            f"https://{shop}/admin/api/{api_version}/webhooks.json",
            headers=_auth_headers(access_token),
            json={"webhook": registration.model_dump()},
        )
        response.raise_for_status()
        return response.json().get("webhook", {})


def _auth_headers(access_token: str) -> dict[str, str]:
    return {
        "X-Shopify-Access-Token": access_token,
        "Accept": "application/json",
    }
