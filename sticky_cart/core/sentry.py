"""Sentry SDK integration.

Captures exceptions without leaking secrets.

Key decisions:
  - `send_default_pii=False`: merchant and customer data stay out of events.
  - `before_send` hook scrubs any event field whose key contains a
    sensitive keyword (api_key, secret, password, token, dsn, hmac,
    authorization). Request headers are scrubbed too: webhook deliveries
    carry X-Shopify-Hmac-Sha256 and the session-token route carries
    Authorization.
  - No-op when SENTRY_DSN is empty (local dev, CI).
"""

from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger(__name__)

_SENSITIVE_KEYS = frozenset(
    {"api_key", "secret", "password", "token", "dsn", "hmac", "authorization"}
)


def _scrub_secrets(event: dict[str, Any], hint: Any) -> dict[str, Any]:
    """Sentry before_send hook: redact values for sensitive keys."""
    _scrub_dict(event.get("extra", {}))
    request = event.get("request", {})
    for section in ("data", "headers", "cookies"):
        value = request.get(section)
        if isinstance(value, dict):
            _scrub_dict(value)
    # The OAuth callback query string holds `code` and `hmac`.
    if request.get("query_string"):
        request["query_string"] = "[REDACTED]"
    return event


def _scrub_dict(d: dict[str, Any]) -> None:
    """Recursively redact sensitive values in-place."""
    for key in list(d.keys()):
        if any(sensitive in key.lower() for sensitive in _SENSITIVE_KEYS):
            d[key] = "[REDACTED]"
        elif isinstance(d[key], dict):
            _scrub_dict(d[key])


def init_sentry(dsn: str, environment: str = "development") -> None:
    """Initialise the Sentry SDK.

    Args:
        dsn: Sentry DSN string. Empty string disables Sentry entirely.
        environment: Sentry environment tag ("development" | "production").
    """
    if not dsn or not dsn.strip():
        logger.debug("Sentry DSN not configured: skipping initialisation")
        return

    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        integrations=[FastApiIntegration()],
        traces_sample_rate=0.1,
        send_default_pii=False,
        before_send=_scrub_secrets,
    )
    logger.info("Sentry initialised (environment=%s)", environment)
