"""Structured logging for VIP Pricing.

Configures structlog once per process with JSON output and correlation
context. The shop domain and request id are kept in ContextVars so that any
component (rule store, provisioner, sink worker) logs them without explicit
parameter passing.
"""

import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Any, Optional

import structlog

# ---------------------------------------------------------------------------
# Correlation context
# ---------------------------------------------------------------------------

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
shop_var: ContextVar[Optional[str]] = ContextVar("shop", default=None)


def add_correlation_context(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Attach request id and shop to every event, when set."""
    request_id = request_id_var.get()
    if request_id:
        event_dict.setdefault("request_id", request_id)

    shop = shop_var.get()
    if shop:
        event_dict.setdefault("shop", shop)

    return event_dict


def configure_logging(service_name: str = "vip_pricing", log_level: str = "info") -> None:
    """Configure structlog and the stdlib root logger."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_correlation_context,
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )
    structlog.get_logger(service_name).debug("Logging configured", level=log_level)


def set_request_context(shop: Optional[str] = None, request_id: Optional[str] = None) -> str:
    """Set correlation context for the current task. Returns the request id."""
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    if shop:
        shop_var.set(shop)
    return request_id


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
