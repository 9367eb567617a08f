"""structlog setup: console output in debug, JSON lines otherwise.

Log calls throughout the package pass context as keyword arguments
(``logger.info("User signed in", user_id=..., provider=...)``). Secrets must
never reach a log line, so a redaction processor blanks any event key that
names one before rendering.
"""

import logging
import sys

import structlog

from accountkit.core.config import get_settings

_SECRET_KEYS = frozenset({
    "password",
    "current_password",
    "new_password",
    "access_token",
    "refresh_token",
    "code",
    "state",
})

_configured = False


def redact_secrets(logger, method_name: str, event_dict: dict) -> dict:
    for key in _SECRET_KEYS.intersection(event_dict):
        event_dict[key] = "***"
    return event_dict


def configure_logging(force: bool = False) -> None:
    """Install the structlog pipeline once per process (again with ``force``)."""
    global _configured
    if _configured and not force:
        return
    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        # add_logger_name needs the stdlib factory below
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
    ]
    if settings.app_debug:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    else:
        processors += [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    # uvicorn and sqlalchemy log through the stdlib
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    _configured = True


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    configure_logging()
    return structlog.get_logger(name)
