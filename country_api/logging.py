import importlib.util
import logging
import time
from logging.config import dictConfig

from fastapi import Request
from sqlalchemy import event
from sqlalchemy.engine import Engine
from starlette.middleware.base import BaseHTTPMiddleware

from country_api.config import Settings, settings

COLORLOG_AVAILABLE = importlib.util.find_spec("colorlog") is not None

LOG_FORMAT = "[%(asctime)s] %(levelname)s [%(name)s] in %(module)s: %(message)s"
LOG_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "bold_red",
}


def _formatter() -> dict:
    if COLORLOG_AVAILABLE:
        return {
            "()": "colorlog.ColoredFormatter",
            "format": "%(log_color)s" + LOG_FORMAT,
            "log_colors": LOG_COLORS,
        }
    return {"format": LOG_FORMAT}


def build_logging_config(cfg: Settings = settings) -> dict:
    """dictConfig for the service.

    Every country_api.* logger writes to the console handler once; the
    refresh, gateway, db and request loggers take their own level so a noisy
    refresh can be turned up without flooding request logs.
    """
    app_loggers = {
        "country_api": cfg.LOG_LEVEL,
        "country_api.refresh": cfg.REFRESH_LOG_LEVEL,
        "country_api.gateway": cfg.GATEWAY_LOG_LEVEL,
        "country_api.db": cfg.DB_LOG_LEVEL,
        "country_api.request": cfg.REQUEST_LOG_LEVEL,
    }
    loggers = {
        name: {"level": level.upper(), "handlers": ["console"], "propagate": False}
        for name, level in app_loggers.items()
    }
    loggers.update({
        "uvicorn": {"level": "WARNING"},
        "uvicorn.error": {"level": "WARNING"},
        "uvicorn.access": {"level": "WARNING"},
        # Slow queries are reported through country_api.db instead
        "sqlalchemy.engine": {"level": "WARNING", "handlers": ["console"], "propagate": False},
        "httpx": {"level": "WARNING"},
    })
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"console": _formatter()},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "console",
                "level": cfg.CONSOLE_LOG_LEVEL.upper(),
            },
        },
        "loggers": loggers,
        "root": {"level": cfg.LOG_LEVEL.upper(), "handlers": ["console"]},
    }


def init_logging(cfg: Settings = settings) -> None:
    dictConfig(build_logging_config(cfg))


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One line per request; server errors are raised to warning."""

    async def dispatch(self, request: Request, call_next):
        logger = logging.getLogger("country_api.request")
        start = time.perf_counter()

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start) * 1000
        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        logger.log(
            level,
            "%s %s -> %s (%.2f ms)",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
        )
        return response


def setup_query_logging(engine: Engine, threshold_ms: float = settings.SLOW_QUERY_THRESHOLD_MS) -> None:
    """Time every cursor execution; statements above threshold_ms log a warning."""
    logger = logging.getLogger("country_api.db")

    @event.listens_for(engine, "before_cursor_execute")
    def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        conn.info.setdefault("query_start_time", []).append(time.perf_counter())

    @event.listens_for(engine, "after_cursor_execute")
    def after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        elapsed_ms = (time.perf_counter() - conn.info["query_start_time"].pop()) * 1000
        if elapsed_ms > threshold_ms:
            logger.warning("Slow query (%.2f ms): %s", elapsed_ms, statement)
        else:
            logger.debug("Query (%.2f ms): %s", elapsed_ms, statement)
