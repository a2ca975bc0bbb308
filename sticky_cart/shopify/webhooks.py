"""Shopify webhook dispatch.

Every delivery arrives on one endpoint and moves through:

    received → verifying → rejected            (401, nothing else happens)
                         → acknowledged        (200, sent immediately)
                             → idle                        (no handler)
                             → deferred-processing → done | failed (logged)

Verification always runs on the raw body. The only way to get at parsed
payload fields is `VerifiedWebhook.payload()`, and the only way to get a
`VerifiedWebhook` is `WebhookDispatcher.verify()`.

The response never waits on handler work. That matters most for the
three compliance topics (customers/data_request, customers/redact,
shop/redact): Shopify treats a slow or failing response as a compliance
failure during app review.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Optional

from sticky_cart.core.config import COMPLIANCE_TOPICS
from sticky_cart.core.tasks import DeferredTaskRunner
from sticky_cart.shopify.signatures import (
    WEBHOOK_HMAC_HEADER,
    MissingSignature,
    SignatureError,
    WebhookVerifier,
)

logger = logging.getLogger(__name__)

TOPIC_HEADER = "X-Shopify-Topic"
SHOP_DOMAIN_HEADER = "X-Shopify-Shop-Domain"
WEBHOOK_ID_HEADER = "X-Shopify-Webhook-Id"


class WebhookTopic(str, Enum):
    CUSTOMERS_DATA_REQUEST = "customers/data_request"
    CUSTOMERS_REDACT = "customers/redact"
    SHOP_REDACT = "shop/redact"
    APP_UNINSTALLED = "app/uninstalled"


def is_compliance_topic(topic: str) -> bool:
    return topic in COMPLIANCE_TOPICS


@dataclass(frozen=True)
class RawWebhookDelivery:
    """A delivery as received: headers plus the unparsed body bytes."""

    topic: str
    shop_domain: str
    signature: Optional[str]
    body: bytes = field(repr=False)
    webhook_id: str = ""

    @classmethod
    def from_request(cls, headers: Mapping[str, str], body: bytes) -> "RawWebhookDelivery":
        """Build from request headers (case-insensitive mapping) and raw body."""
        return cls(
            topic=headers.get(TOPIC_HEADER, ""),
            shop_domain=headers.get(SHOP_DOMAIN_HEADER, ""),
            signature=headers.get(WEBHOOK_HMAC_HEADER),
            body=body,
            webhook_id=headers.get(WEBHOOK_ID_HEADER, ""),
        )


_VERIFIED = object()


@dataclass(frozen=True)
class VerifiedWebhook:
    """A delivery whose signature has been checked against its raw body."""

    topic: str
    shop_domain: str
    body: bytes = field(repr=False)
    webhook_id: str = ""
    _key: object = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self._key is not _VERIFIED:
            raise TypeError("VerifiedWebhook is only created by WebhookDispatcher.verify()")

    @property
    def is_compliance(self) -> bool:
        return is_compliance_topic(self.topic)

    def payload(self) -> Any:
        """Parse the body as JSON. Safe to call only because we are verified."""
        return json.loads(self.body)


WebhookHandler = Callable[[VerifiedWebhook], Awaitable[None]]


# ---------------------------------------------------------------------------
# Default handlers: log only. This service stores no merchant or customer
# data, so there is nothing to export or erase. Each is idempotent: Shopify
# may deliver the same webhook more than once.
# ---------------------------------------------------------------------------


async def handle_compliance_request(webhook: VerifiedWebhook) -> None:
    logger.info(
        "[PRIVACY] %s for %s acknowledged; no customer data held",
        webhook.topic,
        webhook.shop_domain,
    )


async def handle_app_uninstalled(webhook: VerifiedWebhook) -> None:
    logger.info("App uninstalled from %s", webhook.shop_domain)


DEFAULT_HANDLERS: dict[str, WebhookHandler] = {
    WebhookTopic.CUSTOMERS_DATA_REQUEST.value: handle_compliance_request,
    WebhookTopic.CUSTOMERS_REDACT.value: handle_compliance_request,
    WebhookTopic.SHOP_REDACT.value: handle_compliance_request,
    WebhookTopic.APP_UNINSTALLED.value: handle_app_uninstalled,
}


class WebhookDispatcher:
    """Verifies deliveries and hands accepted ones to per-topic handlers."""

    def __init__(
        self,
        verifier: WebhookVerifier,
        runner: DeferredTaskRunner,
        handlers: Optional[Mapping[str, WebhookHandler]] = None,
    ) -> None:
        self._verifier = verifier
        self._runner = runner
        self._handlers: dict[str, WebhookHandler] = dict(
            DEFAULT_HANDLERS if handlers is None else handlers
        )

    def register(self, topic: str, handler: WebhookHandler) -> None:
        """Replace the handler for `topic`."""
        self._handlers[topic] = handler

    def verify(self, delivery: RawWebhookDelivery) -> VerifiedWebhook:
        """Check the delivery's signature; raise `SignatureError` on failure.

        The reason is logged with topic and shop so operators can tell a
        missing header from a bad secret. The caller's response must not.
        """
        try:
            self._verifier.verify(delivery.body, delivery.signature)
        except MissingSignature:
            logger.warning(
                "[WEBHOOK] Missing HMAC header topic=%s shop=%s",
                delivery.topic or "-",
                delivery.shop_domain or "-",
            )
            raise
        except SignatureError:
            logger.warning(
                "[WEBHOOK] HMAC verification failed topic=%s shop=%s",
                delivery.topic or "-",
                delivery.shop_domain or "-",
            )
            raise

        logger.info(
            "[WEBHOOK] Verified %s from %s", delivery.topic, delivery.shop_domain
        )
        return VerifiedWebhook(
            topic=delivery.topic,
            shop_domain=delivery.shop_domain,
            body=delivery.body,
            webhook_id=delivery.webhook_id,
            _key=_VERIFIED,
        )

    async def defer(self, webhook: VerifiedWebhook) -> None:
        """Schedule the topic handler. Runs only after the 200 has been sent.

        Returns as soon as the task is scheduled; the handler's outcome goes
        to the log through the task runner.
        """
        handler = self._handlers.get(webhook.topic)
        if handler is None:
            logger.info("[WEBHOOK] No handler for %s; nothing to do", webhook.topic)
            return
        name = f"webhook:{webhook.topic}:{webhook.webhook_id or webhook.shop_domain}"
        self._runner.submit(handler(webhook), name=name)
