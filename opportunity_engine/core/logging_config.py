"""
structlog setup for optimization runs.

Every event carries the service name plus whatever run context is bound
(run_id, iteration; see core/context.py). ENVIRONMENT=production renders one
JSON object per line for the log pipeline; anything else renders for a
terminal, uncoloured under pytest.

Usage:
    from opportunity_engine.core.logging_config import get_logger

    logger = get_logger(__name__)
    logger.info("Iteration complete", avg_score=61.4, above_threshold=3)

    {"event": "Iteration complete", "avg_score": 61.4, "above_threshold": 3,
     "run_id": "run_a1b2c3d4e5f6a7b8", "iteration": 2,
     "service": "opportunity-engine", "level": "info", "timestamp": "..."}
"""

import logging
import sys
from typing import Any, MutableMapping

import structlog

from opportunity_engine.core.config import settings

SERVICE_NAME = "opportunity-engine"
IS_PRODUCTION = settings.ENVIRONMENT.lower() == "production"
IS_TEST = "pytest" in sys.modules

# Client libraries that log every request at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "openai", "sqlalchemy.engine")


def _add_service(logger: Any, method_name: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def _renderer() -> Any:
    if IS_PRODUCTION:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=not IS_TEST)


def configure_logging(level: str | None = None) -> None:
    log_level = logging.getLevelName((level or settings.LOG_LEVEL).upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        _add_service,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.dev.set_exc_info,
    ]
    if IS_PRODUCTION:
        processors.append(structlog.processors.format_exc_info)
    processors.append(_renderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # The circuit breaker logs through stdlib logging
    logging.basicConfig(
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stdout,
        level=log_level,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


configure_logging()
