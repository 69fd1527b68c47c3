"""
Logging Configuration for Territory Revenue Attribution

Every module logs through ``structlog.get_logger(__name__)``, so the stdlib
logger hierarchy follows the package layout (``territory_revenue.dimensions``,
``territory_revenue.facts``, ...). Levels can be raised or lowered per subtree
with ``LOG_MODULE_LEVELS``; output is JSON or human-readable console text.
"""

import logging
import sys
from typing import Any, Dict, Mapping, Optional

import structlog
from structlog.processors import JSONRenderer, TimeStamper
from structlog.stdlib import add_log_level, ProcessorFormatter

from territory_revenue.config.settings import Settings, get_settings

# Third-party loggers routed to the application handler
ROUTED_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "sqlalchemy.engine")


def _app_context(settings: Settings):
    """Processor stamping every record with the application and environment"""
    def add_app_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict.setdefault("app", settings.app_name)
        event_dict.setdefault("environment", settings.app_env)
        return event_dict
    return add_app_context


def apply_module_levels(module_levels: Mapping[str, str]) -> Dict[str, int]:
    """
    Set stdlib levels on named loggers.

    A name covers its whole subtree, so ``territory_revenue.dimensions``
    applies to the territory, customer and calendar stores alike.

    Returns:
        Mapping of logger name to the numeric level applied
    """
    applied = {}
    for name, level in module_levels.items():
        numeric = logging.getLevelName(level.upper())
        if not isinstance(numeric, int):
            raise ValueError(f"Unknown log level {level!r} for logger {name!r}")
        logging.getLogger(name).setLevel(numeric)
        applied[name] = numeric
    return applied


def configure_logging(
    log_level: Optional[str] = None,
    module_levels: Optional[Mapping[str, str]] = None,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Override the root level (DEBUG, INFO, WARNING, ERROR)
        module_levels: Per-logger overrides merged over LOG_MODULE_LEVELS
    """
    settings = get_settings()
    level = (log_level or settings.monitoring.log_level).upper()
    numeric_level = getattr(logging, level, logging.INFO)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        add_log_level,
        _app_context(settings),
        TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    # filter_by_level needs a stdlib logger, which foreign records do not carry
    structlog.configure(
        processors=[structlog.stdlib.filter_by_level] + shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if settings.monitoring.log_format == "json":
        renderer = JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    formatter = ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=shared_processors,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)

    # Logger levels filter; the handler emits whatever reaches it
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    for name in ROUTED_LOGGERS:
        routed = logging.getLogger(name)
        routed.handlers = [handler]
        routed.propagate = False

    overrides = {**settings.monitoring.log_module_levels, **(module_levels or {})}
    applied = apply_module_levels(overrides)

    structlog.get_logger(__name__).info(
        "Logging configured",
        level=level,
        format=settings.monitoring.log_format,
        module_levels={name: logging.getLevelName(value) for name, value in applied.items()},
    )
