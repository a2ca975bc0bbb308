"""Tests for the Shopify Admin API client functions.

exchange_access_token and create_webhook are mocked at the
httpx.AsyncClient level so tests run without real network calls.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from pydantic import ValidationError

from sticky_cart.shopify.client import create_webhook, exchange_access_token
from sticky_cart.shopify.schemas import WebhookRegistration

SHOP = "test.myshopify.com"


def _make_response(status_code: int, json_data: dict) -> MagicMock:
    """Build a minimal mock httpx.Response."""
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = json_data

    def raise_for_status():
        if status_code >= 400:
            raise httpx.HTTPStatusError(
                f"HTTP {status_code}",
                request=MagicMock(),
                response=MagicMock(status_code=status_code),
            )

    resp.raise_for_status = raise_for_status
    return resp


def _patched_client(mock_resp: MagicMock):
    patcher = patch("httpx.AsyncClient")
    MockClient = patcher.start()
    MockClient.return_value.__aenter__ = AsyncMock(return_value=MockClient.return_value)
    MockClient.return_value.__aexit__ = AsyncMock(return_value=False)
    MockClient.return_value.post = AsyncMock(return_value=mock_resp)
    return patcher, MockClient


class TestExchangeAccessToken:
    async def test_posts_credentials_and_returns_token(self):
        patcher, MockClient = _patched_client(
            _make_response(200, {"access_token": "shpat_abc", "scope": "write_themes"})
        )
        try:
            token = await exchange_access_token(
                SHOP, "code-1", client_id="key", client_secret="secret", timeout=5.0
            )
        finally:
            patcher.stop()

        assert token.access_token == "shpat_abc"
        assert token.scope == "write_themes"
        MockClient.assert_called_once_with(timeout=5.0)
        call = MockClient.return_value.post.call_args
        assert call.args[0] == f"https://{SHOP}/admin/oauth/access_token"
        assert call.kwargs["json"] == {
            "client_id": "key",
            "client_secret": "secret",
            "code": "code-1",
        }

    async def test_non_2xx_raises_http_status_error(self):
        patcher, _ = _patched_client(_make_response(400, {"error": "invalid_request"}))
        try:
            with pytest.raises(httpx.HTTPStatusError):
                await exchange_access_token(
                    SHOP, "used-code", client_id="key", client_secret="secret", timeout=5.0
                )
        finally:
            patcher.stop()

    async def test_body_without_token_raises_validation_error(self):
        patcher, _ = _patched_client(_make_response(200, {"scope": "write_themes"}))
        try:
            with pytest.raises(ValidationError):
                await exchange_access_token(
                    SHOP, "code-1", client_id="key", client_secret="secret", timeout=5.0
                )
        finally:
            patcher.stop()

    async def test_is_called_once_only(self):
        patcher, MockClient = _patched_client(_make_response(502, {}))
        try:
            with pytest.raises(httpx.HTTPStatusError):
                await exchange_access_token(
                    SHOP, "code-1", client_id="key", client_secret="secret", timeout=5.0
                )
        finally:
            patcher.stop()

        assert MockClient.return_value.post.await_count == 1


class TestCreateWebhook:
    async def test_posts_registration_with_access_token(self):
        created = {"id": 42, "topic": "app/uninstalled"}
        patcher, MockClient = _patched_client(_make_response(201, {"webhook": created}))
        registration = WebhookRegistration(
            topic="app/uninstalled", address="https://sticky.example.com/api/webhooks"
        )
        try:
            result = await create_webhook(
                SHOP,
                "shpat_abc",
                registration=registration,
                api_version="2024-01",
                timeout=5.0,
            )
        finally:
            patcher.stop()

        assert result == created
        call = MockClient.return_value.post.call_args
        assert call.args[0] == f"https://{SHOP}/admin/api/2024-01/webhooks.json"
        assert call.kwargs["headers"]["X-Shopify-Access-Token"] == "shpat_abc"
        assert call.kwargs["json"] == {
            "webhook": {
                "topic": "app/uninstalled",
                "address": "https://sticky.example.com/api/webhooks",
                "format": "json",
            }
        }

    async def test_already_registered_surfaces_as_422(self):
        patcher, _ = _patched_client(_make_response(422, {"errors": {"address": ["taken"]}}))
        registration = WebhookRegistration(
            topic="app/uninstalled", address="https://sticky.example.com/api/webhooks"
        )
        try:
            with pytest.raises(httpx.HTTPStatusError) as exc_info:
                await create_webhook(
                    SHOP,
                    "shpat_abc",
                    registration=registration,
                    api_version="2024-01",
                    timeout=5.0,
                )
        finally:
            patcher.stop()

        assert exc_info.value.response.status_code == 422
