"""
Exception taxonomy and error capture.

Exceptions:
    OpportunityEngineError   base for everything raised by this package
    CircuitOpenError         breaker rejected the call without invoking it
    UpstreamCallError        an external service call failed
    GeneratorParseError      AI output could not be decoded, even after repair
    ValidationBatchError     bulk keyword metrics call failed for a batch
    ConfigurationError       required credentials/settings are missing

capture_exception / capture_message always log through structlog with the
active run context, and also go to Sentry once `init_sentry()` succeeded.

Usage:
    capture_exception(exc, context={"keyword": "london food tours"})

    with ErrorHandler("persist_opportunity", context={"keyword": kw}):
        store.upsert(...)
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import sentry_sdk
import structlog
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from opportunity_engine.core.context import get_context_dict, get_run_id

logger = structlog.get_logger(__name__)

__all__ = [
    "OpportunityEngineError",
    "CircuitOpenError",
    "UpstreamCallError",
    "GeneratorParseError",
    "ValidationBatchError",
    "ConfigurationError",
    "init_sentry",
    "capture_exception",
    "capture_message",
    "ErrorHandler",
    "is_sentry_enabled",
]


class OpportunityEngineError(Exception):
    """Base class for opportunity engine errors."""


class CircuitOpenError(OpportunityEngineError):
    """
    Raised by CircuitBreaker.execute() while the circuit is OPEN.

    The guarded function was never invoked. `retry_after` is the epoch-ms
    timestamp after which a trial call will be allowed.
    """

    def __init__(self, service_name: str, retry_after: int):
        self.service_name = service_name
        self.retry_after = retry_after
        super().__init__(f"Circuit breaker is OPEN for {service_name}. Retry after {self.retry_after_datetime.isoformat()}")

    @property
    def retry_after_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.retry_after / 1000, tz=timezone.utc)


class UpstreamCallError(OpportunityEngineError):
    """An external service responded with an error or could not be reached."""

    def __init__(self, service: str, message: str, status_code: Optional[int] = None):
        self.service = service
        self.status_code = status_code
        super().__init__(f"{service}: {message}")


class GeneratorParseError(OpportunityEngineError):
    """AI response could not be coerced into a suggestion list."""

    def __init__(self, message: str, preview: str = ""):
        self.preview = preview
        super().__init__(f"{message}: {preview!r}" if preview else message)


class ValidationBatchError(OpportunityEngineError):
    """Bulk keyword metrics lookup failed; the batch contributes nothing."""

    def __init__(self, keyword_count: int, cause: BaseException):
        self.keyword_count = keyword_count
        self.cause = cause
        super().__init__(f"Keyword metrics unavailable for {keyword_count} keywords: {cause}")


class ConfigurationError(OpportunityEngineError):
    """A required credential or setting is missing."""


# Set by init_sentry(); scripts call it, library code and tests never do
_sentry_initialized: bool = False


def init_sentry(
    dsn: str,
    environment: str = "production",
    traces_sample_rate: float = 0.0,
    release: Optional[str] = None,
) -> bool:
    """
    Start forwarding captured errors to Sentry.

    Returns False (and stays log-only) when the DSN is empty or the SDK
    refuses to start.
    """
    global _sentry_initialized

    if not dsn:
        logger.info("Sentry disabled, errors are logged only")
        return False

    try:
        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            traces_sample_rate=traces_sample_rate,
            release=release,
            integrations=[
                SqlalchemyIntegration(),
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
            ],
            ignore_errors=[KeyboardInterrupt, SystemExit],
            before_send=_tag_run,
        )
    except Exception as e:
        logger.error("Sentry init failed", error=str(e))
        return False

    _sentry_initialized = True
    logger.info("Sentry initialized", environment=environment, release=release)
    return True


def _tag_run(event: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    run_id = get_run_id()
    if run_id:
        event.setdefault("tags", {})["run_id"] = run_id
    return event


def is_sentry_enabled() -> bool:
    return _sentry_initialized


def _enrich(context: Optional[Dict[str, Any]], **extra: Any) -> Dict[str, Any]:
    return {
        **get_context_dict(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        **extra,
        **(context or {}),
    }


def _send(
    send: Callable[[], Optional[str]],
    context: Dict[str, Any],
    level: str,
    tags: Optional[Dict[str, str]],
    fingerprint: Optional[list[str]] = None,
) -> Optional[str]:
    """Run `send` inside a Sentry scope carrying the context; None when disabled."""
    if not _sentry_initialized:
        return None
    try:
        with sentry_sdk.new_scope() as scope:
            for key, value in context.items():
                if value is not None:
                    scope.set_extra(key, value)
            for key, value in (tags or {}).items():
                scope.set_tag(key, value)
            if fingerprint:
                scope.fingerprint = fingerprint
            scope.level = level
            return send()
    except Exception as e:
        logger.warning("Sentry delivery failed", error=str(e))
        return None


def capture_exception(
    exc: BaseException,
    context: Optional[Dict[str, Any]] = None,
    level: str = "error",
    fingerprint: Optional[list[str]] = None,
    tags: Optional[Dict[str, str]] = None,
) -> Optional[str]:
    """
    Log `exc` with run context and report it to Sentry.

    Returns the Sentry event id, or None when Sentry is off.
    """
    enriched = _enrich(context, error_type=type(exc).__name__)
    getattr(logger, level, logger.error)("Exception captured", exc_info=exc, **enriched)
    return _send(lambda: sentry_sdk.capture_exception(exc), enriched, level, tags, fingerprint)


def capture_message(
    message: str,
    level: str = "info",
    context: Optional[Dict[str, Any]] = None,
    tags: Optional[Dict[str, str]] = None,
) -> Optional[str]:
    """Non-exception events: breaker state changes, partial-run summaries."""
    enriched = _enrich(context)
    getattr(logger, level, logger.info)(message, **enriched)
    return _send(lambda: sentry_sdk.capture_message(message, level=level), enriched, level, tags)


class ErrorHandler:
    """
    Capture (and by default suppress) any exception raised in the block.

    `error` holds the exception afterwards so callers can count failures.

    Usage:
        with ErrorHandler("persist_opportunity", context={"keyword": kw}) as handler:
            store.upsert(...)
        if handler.error is None:
            stored += 1

        with ErrorHandler("load_landscape", reraise=True):
            landscape = build_landscape()
    """

    def __init__(
        self,
        operation: str,
        context: Optional[Dict[str, Any]] = None,
        capture: bool = True,
        reraise: bool = False,
        fingerprint: Optional[list[str]] = None,
    ):
        self.operation = operation
        self.context = context or {}
        self.capture = capture
        self.reraise = reraise
        self.fingerprint = fingerprint or [operation]
        self.event_id: Optional[str] = None
        self.error: Optional[BaseException] = None

    def __enter__(self) -> "ErrorHandler":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        # KeyboardInterrupt / SystemExit always propagate
        if exc_val is None or not isinstance(exc_val, Exception):
            return False

        self.error = exc_val
        if self.capture:
            self.event_id = capture_exception(
                exc_val,
                context={"operation": self.operation, **self.context},
                fingerprint=self.fingerprint + [type(exc_val).__name__],
            )
        return not self.reraise
