"""Shopify HMAC signature verification.

Shopify signs two kinds of inbound request with the app's client secret,
using HMAC-SHA256 in two incompatible ways:

  Webhook deliveries
    message  = the raw request body bytes, exactly as sent
    encoding = base64, in the X-Shopify-Hmac-Sha256 header

  OAuth redirects (/auth/callback)
    message  = every query parameter except ``hmac``, sorted by key,
               rendered ``key=value`` and joined with ``&``
    encoding = hex, in the ``hmac`` query parameter

The two modes are separate classes on purpose. A digest computed the
webhook way never validates a callback and vice versa, and callers pick
the mode by type rather than by passing a flag.

Both verifiers compare digests with `hmac.compare_digest` so the time
taken does not reveal how many leading characters matched.

https://shopify.dev/docs/apps/build/webhooks/subscribe/https#step-5-verify-the-webhook
https://shopify.dev/docs/apps/build/authentication-authorization/access-tokens/authorization-code-grant
"""

import base64
import hashlib
import hmac
from typing import Mapping, Optional

WEBHOOK_HMAC_HEADER = "X-Shopify-Hmac-Sha256"
OAUTH_HMAC_PARAM = "hmac"


class SignatureError(Exception):
    """Request authenticity could not be established.

    Callers respond with the same 401 for every subclass; the subclass is
    for logs only.
    """


class MissingSignature(SignatureError):
    pass


class SignatureMismatch(SignatureError):
    pass


def _hmac_sha256(secret: bytes, message: bytes) -> bytes:
    return hmac.new(secret, message, hashlib.sha256).digest()


def _equal(computed: str, provided: str) -> bool:
    # compare_digest rejects non-ASCII str; compare the UTF-8 bytes instead.
    return hmac.compare_digest(computed.encode("utf-8"), provided.encode("utf-8"))


# ---------------------------------------------------------------------------
# Webhook-body mode
# ---------------------------------------------------------------------------


def compute_webhook_digest(secret: bytes, body: bytes) -> str:
    """Return base64(HMAC-SHA256(secret, body)).

    `body` must be the bytes Shopify transmitted. Decoding and re-encoding,
    or parsing and re-serializing JSON, changes the digest.
    """
    return base64.b64encode(_hmac_sha256(secret, body)).decode("ascii")


class WebhookVerifier:
    """Verifies X-Shopify-Hmac-Sha256 over a raw webhook body."""

    def __init__(self, secret: bytes) -> None:
        self._secret = secret

    def __repr__(self) -> str:
        return "WebhookVerifier(secret=***)"

    def verify(self, body: bytes, signature: Optional[str]) -> None:
        """Raise `SignatureError` unless `signature` matches `body`."""
        if not signature:
            raise MissingSignature(f"missing {WEBHOOK_HMAC_HEADER} header")
        if not _equal(compute_webhook_digest(self._secret, body), signature):
            raise SignatureMismatch("webhook HMAC does not match body")


# ---------------------------------------------------------------------------
# OAuth-query mode
# ---------------------------------------------------------------------------


def build_query_message(params: Mapping[str, str]) -> str:
    """Build the string Shopify signs for an OAuth redirect.

    Values are used verbatim (already percent-decoded by the framework);
    no further escaping is applied. Input order does not matter.
    """
    return "&".join(
        f"{key}={params[key]}"
        for key in sorted(params)
        if key != OAUTH_HMAC_PARAM
    )


def compute_query_digest(secret: bytes, params: Mapping[str, str]) -> str:
    """Return hex(HMAC-SHA256(secret, build_query_message(params)))."""
    message = build_query_message(params).encode("utf-8")
    return _hmac_sha256(secret, message).hex()


class OAuthQueryVerifier:
    """Verifies the ``hmac`` query parameter on OAuth redirects."""

    def __init__(self, secret: bytes) -> None:
        self._secret = secret

    def __repr__(self) -> str:
        return "OAuthQueryVerifier(secret=***)"

    def verify(self, params: Mapping[str, str]) -> None:
        """Raise `SignatureError` unless ``params["hmac"]`` signs the rest."""
        provided = params.get(OAUTH_HMAC_PARAM)
        if not provided:
            raise MissingSignature(f"missing {OAUTH_HMAC_PARAM} query parameter")
        if not _equal(compute_query_digest(self._secret, params), provided):
            raise SignatureMismatch("OAuth query HMAC does not match parameters")
