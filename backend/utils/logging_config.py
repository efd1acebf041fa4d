import logging
import logging.handlers
import contextvars
from pathlib import Path
from typing import Optional

from core.config import settings
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request


def map_log_level(level_name: str) -> int:
    level = getattr(logging, (level_name or "INFO").upper(), None)
    return level if isinstance(level, int) else logging.INFO


client_var = contextvars.ContextVar("client", default="-")
api_var = contextvars.ContextVar("api", default="-")


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        # Inject per-request context variables
        record.client = client_var.get()
        record.api = api_var.get()
        return True


def _build_rotating_file_handler(filename: str, level: int, formatter: logging.Formatter, log_dir: Path) -> logging.Handler:
    handler = logging.handlers.TimedRotatingFileHandler(
        filename=str(log_dir / filename),
        when="midnight",
        interval=1,
        backupCount=max(int(settings.LOG_TTL_DAYS), 0),
        encoding="utf-8",
        utc=True,
    )
    handler.suffix = "%Y-%m-%d"
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(ContextFilter())
    return handler


def _build_handlers(level: int, log_dir: Path) -> dict[str, logging.Handler]:
    formatter = logging.Formatter(
        fmt="%(levelname)s - %(asctime)s - %(client)s - %(api)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(ContextFilter())

    return {
        "app": _build_rotating_file_handler("app.log", level, formatter, log_dir),
        "access": _build_rotating_file_handler("access.log", level, formatter, log_dir),
        "error": _build_rotating_file_handler("error.log", logging.WARNING, formatter, log_dir),
        "console": console_handler,
    }


def _reset_handlers(target_logger: logging.Logger, handlers: list[logging.Handler], level: int) -> None:
    for h in list(target_logger.handlers):
        target_logger.removeHandler(h)
    for h in handlers:
        target_logger.addHandler(h)
    target_logger.setLevel(level)


def configure_logging(app_logger_name: Optional[str] = None, log_dir: Optional[str] = None) -> logging.Logger:
    """Configure logging with daily rotation and TTL-based retention.

    - Rotates at midnight; keeps last LOG_TTL_DAYS files
    - Applies handlers to root, app, and Uvicorn loggers
    """
    directory = Path(log_dir or settings.LOG_DIR)
    directory.mkdir(parents=True, exist_ok=True)

    level = map_log_level(settings.LOG_LEVEL)
    handlers = _build_handlers(level, directory)
    app_handlers = [handlers["app"], handlers["error"], handlers["console"]]

    _reset_handlers(logging.getLogger(), app_handlers, level)

    app_logger = logging.getLogger(app_logger_name or "salescentri")
    app_logger.propagate = False
    _reset_handlers(app_logger, app_handlers, level)

    for name in ("uvicorn", "uvicorn.error", "fastapi"):
        lgr = logging.getLogger(name)
        lgr.propagate = False
        _reset_handlers(lgr, app_handlers, level)
    # uvicorn.access -> access + console
    access_logger = logging.getLogger("uvicorn.access")
    access_logger.propagate = False
    _reset_handlers(access_logger, [handlers["access"], handlers["console"]], level)

    return app_logger


def client_address(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",", 1)[0].strip() or "-"
    return request.client.host if request.client else "-"


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        client_token = client_var.set(client_address(request))
        api_token = api_var.set(f"{request.method} {request.url.path}")
        try:
            return await call_next(request)
        finally:
            client_var.reset(client_token)
            api_var.reset(api_token)
