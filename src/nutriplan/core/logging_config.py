"""NutriPlan - Logging Configuration.

Structured logging shared by stdlib ``logging`` and ``structlog`` with
sensitive data masking, configured once per process.
"""

import logging
import logging.config
import re
import sys
from typing import Any

import structlog
from structlog.types import EventDict, WrappedLogger

from nutriplan.core.config import get_settings

# Configure logger
logger = logging.getLogger(__name__)

# Track if logging has been configured
_logging_configured = False

SENSITIVE_PATTERNS: list[tuple[re.Pattern[str], Any]] = [
    (re.compile(r'"password":\s*"[^"]*"', re.IGNORECASE), '"password": "***"'),
    (re.compile(r'"(new_?password)":\s*"[^"]*"', re.IGNORECASE), r'"\1": "***"'),
    (re.compile(r'"token":\s*"[^"]*"', re.IGNORECASE), '"token": "***"'),
    (re.compile(r'"firebaseToken":\s*"[^"]*"', re.IGNORECASE), '"firebaseToken": "***"'),
    (re.compile(r'"secret":\s*"[^"]*"', re.IGNORECASE), '"secret": "***"'),
    (re.compile(r"Bearer\s+[A-Za-z0-9\-_.]+"), "Bearer ***"),
    (
        re.compile(r"\b([a-zA-Z0-9._%+-]+)@([a-zA-Z0-9.-]+\.[a-zA-Z]{2,})\b"),
        lambda m: f"{m.group(1)[:2]}***@{m.group(2)}",
    ),
]


class SensitiveDataMasker:
    """Mask sensitive data in log messages."""

    def __init__(self, patterns: list[tuple[re.Pattern[str], Any]] | None = None):
        self.patterns = patterns or SENSITIVE_PATTERNS

    def mask(self, message: Any) -> Any:
        if not isinstance(message, str):
            return message
        for pattern, replacement in self.patterns:
            message = pattern.sub(replacement, message)
        return message

    def __call__(
        self, logger: WrappedLogger, method_name: str, event_dict: EventDict
    ) -> EventDict:
        """Structlog processor entry point."""
        event_dict["event"] = self.mask(event_dict.get("event"))
        return event_dict


def _shared_processors() -> list[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.ExtraAdder(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        SensitiveDataMasker(),
    ]


def setup_logging(force: bool = False) -> None:
    """Configure logging for the application based on environment settings.

    Args:
        force: If True, force reconfiguration even if already configured.
    """
    global _logging_configured  # noqa: PLW0603

    if _logging_configured and not force:
        return

    settings = get_settings()
    renderer: Any = (
        structlog.dev.ConsoleRenderer(colors=False)
        if settings.debug or settings.is_development()
        else structlog.processors.JSONRenderer()
    )

    logging_config: dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structured": {
                "()": structlog.stdlib.ProcessorFormatter,
                "foreign_pre_chain": _shared_processors(),
                "processors": [
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    renderer,
                ],
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": settings.log_level,
                "formatter": "structured",
                "stream": sys.stdout,
            },
        },
        "loggers": {
            "nutriplan": {
                "level": settings.log_level,
                "handlers": ["console"],
                "propagate": False,
            },
            "uvicorn": {
                "level": "INFO",
                "handlers": ["console"],
                "propagate": False,
            },
        },
        "root": {
            "level": settings.log_level,
            "handlers": ["console"],
        },
    }

    logging.config.dictConfig(logging_config)

    structlog.configure(
        processors=[
            *_shared_processors(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    _logging_configured = True
    logger.info(
        "Logging configured for %s environment with level %s",
        settings.environment,
        settings.log_level,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger bound to ``name``."""
    return structlog.get_logger(name)
