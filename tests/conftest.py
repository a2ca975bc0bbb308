"""Shared test fixtures for the Sticky Add to Cart API test suite.

`sticky_cart.main` builds an app at import time and refuses to start
without credentials, so placeholder values are exported before any test
module imports it. Tests that need specific settings build their own app
through the `app` fixture instead.
"""

import base64
import hashlib
import hmac
import os
from collections.abc import AsyncGenerator
from typing import Callable, Mapping

os.environ.setdefault("SHOPIFY_API_KEY", "env-api-key")
os.environ.setdefault("SHOPIFY_API_SECRET", "env-secret")
os.environ.setdefault("HOST", "https://env.example.com")

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from sticky_cart.core.config import Settings  # noqa: E402
from sticky_cart.main import create_app  # noqa: E402

TEST_API_KEY = "test-api-key"
TEST_SECRET = "shhh"
TEST_HOST = "https://sticky.example.com"
TEST_SHOP = "test.myshopify.com"


def _make_settings(**overrides) -> Settings:
    values = {
        "shopify_api_key": TEST_API_KEY,
        "shopify_api_secret": TEST_SECRET,
        "host": TEST_HOST,
        "sentry_dsn": "",
        "debug": False,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings() -> Settings:
    return _make_settings()


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    return _make_settings


@pytest.fixture
def sign_webhook() -> Callable[[bytes], str]:
    """Return a function producing a valid X-Shopify-Hmac-Sha256 for a body."""

    def _sign(body: bytes, secret: str = TEST_SECRET) -> str:
        digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
        return base64.b64encode(digest).decode()

    return _sign


@pytest.fixture
def sign_query() -> Callable[[Mapping[str, str]], str]:
    """Return a function producing a valid hex ``hmac`` for callback params."""

    def _sign(params: Mapping[str, str], secret: str = TEST_SECRET) -> str:
        message = "&".join(f"{k}={params[k]}" for k in sorted(params) if k != "hmac")
        return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()

    return _sign


@pytest.fixture
async def app(settings):
    """A fresh app per test.

    The SlowAPI limiter is a module-level singleton with in-memory storage,
    so its buckets are reset first. Deferred tasks still pending at the end
    of a test (e.g. deliberately hanging handlers) are cancelled.
    """
    from sticky_cart.core.limiter import limiter

    limiter.reset()

    test_app = create_app(settings)
    yield test_app
    await test_app.state.task_runner.shutdown()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
