"""Shopify OAuth installation flow.

Install flow (authorization code grant):
1. GET /auth?shop=...        → redirect the merchant to Shopify's authorize
                               page with our client id, scopes, callback URL
                               and a random ``state``
2. GET /auth/callback?...    → verify the query HMAC (and ``state``),
                               exchange ``code`` for an offline access token
3. Register optional webhooks with that token (fire-and-forget)
4. Redirect the merchant into the Shopify admin, which loads the app

The access token is used for step 3 and then dropped; this service keeps no
merchant state. Compliance webhooks need no registration: Shopify delivers
them to the URLs configured in the Partner dashboard.
"""

from __future__ import annotations

import hmac
import logging
import re
import secrets
from dataclasses import dataclass
from typing import Mapping, Optional
from urllib.parse import urlencode

import httpx

from sticky_cart.core.config import COMPLIANCE_TOPICS, Settings
from sticky_cart.core.tasks import DeferredTaskRunner
from sticky_cart.shopify import client as shopify_client
from sticky_cart.shopify.schemas import WebhookRegistration
from sticky_cart.shopify.signatures import OAuthQueryVerifier, SignatureError

logger = logging.getLogger(__name__)

SHOP_DOMAIN_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9\-]*\.myshopify\.com$")

CALLBACK_PATH = "/auth/callback"
WEBHOOK_PATH = "/api/webhooks"


class InstallError(Exception):
    """Base class for install-flow failures."""


class InvalidShopDomain(InstallError, ValueError):
    pass


class MissingOAuthParameters(InstallError, ValueError):
    pass


class OAuthVerificationError(InstallError):
    """HMAC or state check failed on the callback."""


class TokenExchangeError(InstallError):
    """Shopify did not hand out an access token."""


def validate_shop_domain(shop: Optional[str]) -> str:
    """Return the normalised shop domain or raise `InvalidShopDomain`.

    Runs before any URL is built from `shop`, so a crafted value can never
    redirect the merchant or our token exchange somewhere else.
    """
    candidate = (shop or "").strip().lower()
    if not SHOP_DOMAIN_RE.fullmatch(candidate):
        raise InvalidShopDomain(f"invalid shop domain: {shop!r}")
    return candidate


@dataclass(frozen=True)
class InstallRedirect:
    url: str
    state: str


@dataclass(frozen=True)
class InstallResult:
    shop: str
    redirect_url: str


class InstallationCoordinator:
    """Drives one OAuth handshake per call. Holds no per-shop state."""

    def __init__(
        self,
        settings: Settings,
        verifier: OAuthQueryVerifier,
        runner: DeferredTaskRunner,
    ) -> None:
        self._settings = settings
        self._verifier = verifier
        self._runner = runner

    # -----------------------------------------------------------------------
    # Step 1
    # -----------------------------------------------------------------------

    def begin_install(self, shop: Optional[str]) -> InstallRedirect:
        """Build the authorize URL for `shop` with a fresh anti-forgery state."""
        shop = validate_shop_domain(shop)
        state = secrets.token_urlsafe(24)
        params = {
            "client_id": self._settings.shopify_api_key,
            "scope": ",".join(self._settings.scope_list),
            "redirect_uri": f"{self._settings.host}{CALLBACK_PATH}",
            "state": state,
        }
        url = f"https://{shop}/admin/oauth/authorize?{urlencode(params)}"
        logger.info("[AUTH] Redirecting %s to authorize page", shop)
        return InstallRedirect(url=url, state=state)

    # -----------------------------------------------------------------------
    # Step 2-4
    # -----------------------------------------------------------------------

    async def complete_install(
        self,
        query: Mapping[str, str],
        expected_state: Optional[str] = None,
    ) -> InstallResult:
        """Verify the callback, obtain a token and schedule webhook registration.

        Checks run cheapest first and nothing leaves the process until the
        HMAC has been verified.
        """
        if not query.get("shop") or not query.get("code"):
            raise MissingOAuthParameters("Missing OAuth parameters")

        shop = validate_shop_domain(query["shop"])

        try:
            self._verifier.verify(query)
        except SignatureError as exc:
            logger.warning("[AUTH] Callback HMAC rejected for %s: %s", shop, exc)
            raise OAuthVerificationError("Invalid OAuth HMAC") from exc

        if self._settings.enforce_oauth_state:
            self._check_state(shop, query.get("state"), expected_state)

        access_token = await self.exchange_token(shop, query["code"])

        self._runner.submit(
            self.register_webhooks(shop, access_token),
            name=f"register-webhooks:{shop}",
        )
        logger.info("[AUTH] Install completed for %s", shop)
        return InstallResult(shop=shop, redirect_url=self.admin_url(shop))

    def _check_state(
        self, shop: str, received: Optional[str], expected: Optional[str]
    ) -> None:
        if not received or not expected or not hmac.compare_digest(
            received.encode("utf-8"), expected.encode("utf-8")
        ):
            logger.warning("[AUTH] OAuth state mismatch for %s", shop)
            raise OAuthVerificationError("Invalid OAuth state")

    async def exchange_token(self, shop: str, code: str) -> str:
        """Trade the single-use code for an offline access token. Not retried."""
        try:
            token = await shopify_client.exchange_access_token(
                shop,
                code,
                client_id=self._settings.shopify_api_key,
                client_secret=self._settings.shopify_api_secret.get_secret_value(),
                timeout=self._settings.outbound_timeout,
            )
        except httpx.HTTPStatusError as exc:
            logger.error(
                "[AUTH] Token exchange for %s rejected: HTTP %s",
                shop,
                exc.response.status_code,
            )
            raise TokenExchangeError("Failed to exchange token") from exc
        except httpx.HTTPError as exc:
            logger.error("[AUTH] Token exchange for %s failed: %s", shop, type(exc).__name__)
            raise TokenExchangeError("Failed to exchange token") from exc
        except ValueError as exc:
            logger.error("[AUTH] Token exchange for %s returned no token", shop)
            raise TokenExchangeError("Failed to exchange token") from exc
        return token.access_token

    def admin_url(self, shop: str) -> str:
        """Where the merchant lands after install: the app inside Shopify admin."""
        store = shop.removesuffix(".myshopify.com")
        return f"https://admin.shopify.com/store/{store}/apps/{self._settings.shopify_api_key}"

    # -----------------------------------------------------------------------
    # Webhook registration
    # -----------------------------------------------------------------------

    async def register_webhooks(self, shop: str, access_token: str) -> list[str]:
        """Subscribe `shop` to each configured optional topic.

        Returns the topics that are subscribed afterwards (newly created or
        already present). Upstream failures are logged and skipped; the
        merchant's install has already succeeded by the time this runs.
        """
        address = f"{self._settings.host}{WEBHOOK_PATH}"
        subscribed: list[str] = []

        for topic in self._settings.webhook_topics:
            if topic in COMPLIANCE_TOPICS:
                logger.warning("[WEBHOOK] Skipping compliance topic %s", topic)
                continue

            try:
                await shopify_client.create_webhook(
                    shop,
                    access_token,
                    registration=WebhookRegistration(topic=topic, address=address),
                    api_version=self._settings.shopify_api_version,
                    timeout=self._settings.outbound_timeout,
                )
            except httpx.HTTPStatusError as exc:
                if exc.response.status_code == 422:
                    # Re-install: Shopify reports "address for this topic has
                    # already been taken".
                    logger.info("[WEBHOOK] %s already registered for %s", topic, shop)
                    subscribed.append(topic)
                else:
                    logger.error(
                        "[WEBHOOK] Registration of %s for %s failed: HTTP %s %s",
                        topic,
                        shop,
                        exc.response.status_code,
                        exc.response.text[:200],
                    )
                continue
            except httpx.HTTPError as exc:
                logger.error(
                    "[WEBHOOK] Registration of %s for %s failed: %s",
                    topic,
                    shop,
                    type(exc).__name__,
                )
                continue

            logger.info("[WEBHOOK] Registered %s for %s", topic, shop)
            subscribed.append(topic)

        return subscribed
