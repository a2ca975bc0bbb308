"""Tests for structlog configuration.

structlog's own test suite covers the library; these only check that our
configuration wrapper and context processor behave.
"""

import io
import json
import logging

import structlog
from httpx import AsyncClient

from sticky_cart.core.logging import _inject_context_vars, build_formatter, configure_structlog
from sticky_cart.core.middleware import _request_id_var, _shop_var


class TestConfigureStructlog:
    def test_configure_does_not_raise_in_debug_mode(self) -> None:
        configure_structlog(debug=True)

    def test_configure_does_not_raise_in_prod_mode(self) -> None:
        configure_structlog(debug=False)

    def test_logger_usable_after_configure(self) -> None:
        configure_structlog(debug=True)
        logger = structlog.get_logger("test")
        logger.info("test message", key="value")

    def test_configure_multiple_times_is_safe(self) -> None:
        configure_structlog(debug=True)
        configure_structlog(debug=False)
        configure_structlog(debug=True)

    def test_stdlib_bridge_is_active_after_configure(self) -> None:
        configure_structlog(debug=False)
        logging.getLogger("test.stdlib").info("stdlib message")


class TestInjectContextVars:
    def test_adds_request_id_and_shop_when_bound(self) -> None:
        request_token = _request_id_var.set("req-1")
        shop_token = _shop_var.set("test.myshopify.com")
        try:
            event = _inject_context_vars(None, "info", {"event": "x"})
        finally:
            _shop_var.reset(shop_token)
            _request_id_var.reset(request_token)

        assert event["request_id"] == "req-1"
        assert event["shop"] == "test.myshopify.com"

    def test_leaves_event_alone_outside_a_request(self) -> None:
        assert _inject_context_vars(None, "info", {"event": "x"}) == {"event": "x"}

    def test_explicit_shop_wins(self) -> None:
        token = _shop_var.set("header.myshopify.com")
        try:
            event = _inject_context_vars(None, "info", {"event": "x", "shop": "bound.myshopify.com"})
        finally:
            _shop_var.reset(token)
        assert event["shop"] == "bound.myshopify.com"


class TestRootHandler:
    def test_reconfigure_replaces_our_handler(self) -> None:
        configure_structlog(debug=True)
        configure_structlog(debug=False)
        ours = [h for h in logging.getLogger().handlers if h.get_name() == "sticky_cart"]
        assert len(ours) == 1

    def test_stdlib_record_renders_as_json(self) -> None:
        stream = io.StringIO()
        handler = logging.StreamHandler(stream)
        handler.setFormatter(build_formatter(debug=False))
        logger = logging.getLogger("sticky_cart.test_render")
        logger.addHandler(handler)
        logger.propagate = False
        try:
            logger.warning("Registration of %s failed", "app/uninstalled")
        finally:
            logger.removeHandler(handler)
            logger.propagate = True

        line = json.loads(stream.getvalue().strip())
        assert line["event"] == "Registration of app/uninstalled failed"
        assert line["level"] == "warning"
        assert line["logger"] == "sticky_cart.test_render"


class TestRequestContextInOutput:
    async def test_request_log_line_carries_request_id_and_shop(self, client: AsyncClient) -> None:
        stream = io.StringIO()
        handler = logging.StreamHandler(stream)
        handler.setFormatter(build_formatter(debug=False))
        root = logging.getLogger()
        root.addHandler(handler)
        try:
            res = await client.post(
                "/api/webhooks",
                content=b"{}",
                headers={
                    "X-Request-ID": "r1",
                    "X-Shopify-Topic": "app/uninstalled",
                    "X-Shopify-Shop-Domain": "test.myshopify.com",
                },
            )
        finally:
            root.removeHandler(handler)

        assert res.status_code == 401
        lines = [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]
        missing_hmac = [line for line in lines if "Missing HMAC header" in line["event"]]
        assert missing_hmac
        assert missing_hmac[0]["request_id"] == "r1"
        assert missing_hmac[0]["shop"] == "test.myshopify.com"
