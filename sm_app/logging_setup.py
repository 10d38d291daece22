import sys
import logging
from typing import Any

from loguru import logger

from .config import Settings

_SENSITIVE_KEYS = ("key", "token", "secret", "password", "email")


def _mask(value: Any) -> Any:
    if isinstance(value, str):
        return value[:3] + "****" if len(value) > 6 else "****"
    if isinstance(value, dict):
        return {k: _mask(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_mask(v) for v in value]
    return value


def sensitive_data_filter(record: dict[str, Any]) -> bool:
    """Mask credentials and addresses bound into `extra` before they reach a sink."""
    extra = record.get("extra")
    if isinstance(extra, dict):
        for k in list(extra):
            if any(s in k.lower() for s in _SENSITIVE_KEYS):
                extra[k] = _mask(extra[k])
    return True


class InterceptHandler(logging.Handler):
    """Route stdlib logging (gspread, google-auth, urllib3) into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(settings: Settings) -> None:
    """Configures the loguru logger from settings."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.log_level.upper(),
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level>"
        ),
        colorize=True,
        backtrace=True,
        diagnose=False,
        filter=sensitive_data_filter,
    )
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    logger.info("Logging initialized with level: {}", settings.log_level)
