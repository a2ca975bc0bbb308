"""Structured logging via structlog.

Configured once from `create_app()`.

Renderer selection:
  debug=True   `ConsoleRenderer` for local development.
  debug=False  `JSONRenderer` for the hosting provider's log drain.

Modules log through the stdlib (`logging.getLogger(__name__)`). The root
handler formats those records with `structlog.stdlib.ProcessorFormatter`,
so stdlib and structlog lines share one processor chain and one renderer.

Every line carries `request_id` and, when the request names one, `shop`,
read from the ContextVars bound by `RequestIdMiddleware`. Log lines must
never contain the app secret, access tokens or computed digests.
"""

from __future__ import annotations

import logging
import sys

import structlog

from sticky_cart.core.middleware import get_request_id, get_shop

# Marks the handler we install so reconfiguring replaces it instead of
# stacking a second one.
_HANDLER_NAME = "sticky_cart"


def _inject_context_vars(
    logger: logging.Logger,
    method: str,
    event_dict: dict,
) -> dict:
    """Structlog processor: inject request_id and shop from ContextVars."""
    request_id = get_request_id()
    shop = get_shop()
    if request_id:
        event_dict["request_id"] = request_id
    if shop:
        event_dict.setdefault("shop", shop)
    return event_dict


def _shared_processors() -> list:
    return [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        _inject_context_vars,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def build_formatter(debug: bool = True) -> structlog.stdlib.ProcessorFormatter:
    """Return the formatter that renders stdlib records through structlog."""
    if debug:
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_shared_processors(),
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )


def configure_structlog(debug: bool = True) -> None:
    """Configure structlog and the root stdlib handler.

    Safe to call more than once (tests build several apps per process).
    """
    structlog.configure(
        processors=_shared_processors()
        + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(build_formatter(debug))

    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == _HANDLER_NAME:
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if debug else logging.INFO)
