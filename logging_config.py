"""structlog setup for the storefront API.

Every log line carries the request id bound by the HTTP middleware, so one
checkout can be followed across the cart, stock and order writes it makes.
"""

import logging
import sys

import structlog

import settings

# ENVIRONMENT -> default level; LOG_LEVEL overrides it
LEVELS = {
    "production": "INFO",
    "staging": "INFO",
    "development": "DEBUG",
    "test": "WARNING",
}
JSON_ENVIRONMENTS = ("production", "staging")


def get_log_level(environment=None, override=None) -> str:
    environment = environment or settings.ENVIRONMENT
    override = override if override is not None else settings.LOG_LEVEL
    return (override or LEVELS.get(environment, "INFO")).upper()


def configure_logging(environment=None) -> None:
    """Route structlog through a single stdout handler on the root logger."""
    environment = environment or settings.ENVIRONMENT
    level = get_log_level(environment)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)
    logging.getLogger("pymongo").setLevel(logging.WARNING)

    if environment in JSON_ENVIRONMENTS:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def bind_request(request_id: str, method: str, path: str) -> None:
    """Start a fresh log context for one HTTP request."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, method=method, path=path)
