import logging
import logging.handlers
import contextvars
from pathlib import Path
from typing import Optional

from core.config import Settings
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request


def _ensure_log_dir(directory: Path) -> None:
    directory.mkdir(parents=True, exist_ok=True)


def map_log_level(level_name: str) -> int:
    level = logging.getLevelName((level_name or "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


user_id_var = contextvars.ContextVar("user_id", default="-")
api_var = contextvars.ContextVar("api", default="-")


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        # Inject per-request context variables
        record.user_id = user_id_var.get()
        record.api = api_var.get()
        return True


def _build_formatter() -> logging.Formatter:
    return logging.Formatter(
        fmt="%(levelname)s - %(asctime)s - %(user_id)s - %(api)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _build_rotating_file_handler(
    filename: str, level: int, formatter: logging.Formatter, log_dir: Path, ttl_days: int
) -> logging.Handler:
    handler = logging.handlers.TimedRotatingFileHandler(
        filename=str(log_dir / filename),
        when="midnight",
        interval=1,
        backupCount=max(int(ttl_days), 0),
        encoding="utf-8",
        utc=True,
    )
    handler.suffix = "%Y-%m-%d"
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(ContextFilter())
    return handler


def _build_handlers(settings: Settings, level: int) -> dict[str, list[logging.Handler]]:
    formatter = _build_formatter()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(ContextFilter())

    if not settings.LOG_TO_FILE:
        return {"app": [console_handler], "access": [console_handler]}

    log_dir = Path(settings.LOG_DIR)
    _ensure_log_dir(log_dir)
    app_file = _build_rotating_file_handler("app.log", level, formatter, log_dir, settings.LOG_TTL_DAYS)
    access_file = _build_rotating_file_handler("access.log", level, formatter, log_dir, settings.LOG_TTL_DAYS)
    error_file = _build_rotating_file_handler("error.log", logging.WARNING, formatter, log_dir, settings.LOG_TTL_DAYS)

    return {
        "app": [app_file, error_file, console_handler],
        "access": [access_file, console_handler],
    }


def _reset_handlers(target_logger: logging.Logger, handlers: list[logging.Handler], level: int) -> None:
    for h in list(target_logger.handlers):
        target_logger.removeHandler(h)
    for h in handlers:
        target_logger.addHandler(h)
    target_logger.setLevel(level)


def configure_logging(settings: Settings, app_logger_name: Optional[str] = None) -> logging.Logger:
    """Configure logging with daily rotation and TTL-based retention.

    - Rotates at midnight; keeps last LOG_TTL_DAYS files
    - LOG_TO_FILE=false logs to the console only
    - Applies handlers to root, app, and Uvicorn loggers
    """
    level = map_log_level(settings.LOG_LEVEL)
    handlers = _build_handlers(settings, level)

    root_logger = logging.getLogger()
    _reset_handlers(root_logger, handlers["app"], level)

    app_name = app_logger_name or "todo_api"
    app_logger = logging.getLogger(app_name)
    app_logger.propagate = False
    _reset_handlers(app_logger, handlers["app"], level)

    for name in ("uvicorn", "uvicorn.error", "fastapi"):
        lgr = logging.getLogger(name)
        lgr.propagate = False
        _reset_handlers(lgr, handlers["app"], level)
    # uvicorn.access -> access + console
    access_logger = logging.getLogger("uvicorn.access")
    access_logger.propagate = False
    _reset_handlers(access_logger, handlers["access"], level)

    return app_logger


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Sets the ``api`` log context per request; the auth guard fills in ``user_id``."""

    async def dispatch(self, request: Request, call_next):
        context_token_user = user_id_var.set("-")
        context_token_api = api_var.set(f"{request.method} {request.url.path}")
        try:
            return await call_next(request)
        finally:
            user_id_var.reset(context_token_user)
            api_var.reset(context_token_api)
