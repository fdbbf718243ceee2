"""
Centralized logging configuration for the candlecast system.

This module provides standardized logging configuration using structlog
for all components. Session validation, capture cycles and prediction
emission each get a bound subsystem logger so their audit trail can be
filtered independently.
"""
import logging
import sys
from typing import TYPE_CHECKING, Any, Optional

import structlog
from structlog.types import FilteringBoundLogger

if TYPE_CHECKING:
    from ..prediction.models import PredictionRecord


def configure_logging(
    level: str = "INFO",
    format_json: bool = False,
    include_timestamp: bool = True,
    include_caller: bool = False,
    extra_processors: Optional[list] = None
) -> None:
    """
    Configure structlog for the entire application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_json: If True, output JSON format; otherwise human-readable
        include_timestamp: Include timestamp in log output
        include_caller: Include caller information (filename, line number)
        extra_processors: Additional structlog processors to include
    """
    log_level = getattr(logging, level.upper())

    logging.basicConfig(
        level=log_level,
        stream=sys.stdout,
        format="%(message)s"  # structlog will handle formatting
    )

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if include_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso"))

    if include_caller:
        processors.append(structlog.processors.CallsiteParameterAdder(
            parameters=[structlog.processors.CallsiteParameter.FILENAME,
                        structlog.processors.CallsiteParameter.LINENO]
        ))

    if extra_processors:
        processors.extend(extra_processors)

    if format_json:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> FilteringBoundLogger:
    """
    Get a configured structlog logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger instance
    """
    return structlog.get_logger(name)


def get_session_logger(name: str) -> FilteringBoundLogger:
    """Logger bound to the session cache subsystem."""
    return get_logger(name).bind(
        subsystem="session_cache",
        audit_trail=True
    )


def get_capture_logger(name: str) -> FilteringBoundLogger:
    """Logger bound to the capture scheduler subsystem."""
    return get_logger(name).bind(
        subsystem="capture",
        audit_trail=True
    )


def get_prediction_logger(name: str) -> FilteringBoundLogger:
    """Logger bound to the prediction engine subsystem."""
    return get_logger(name).bind(
        subsystem="prediction",
        audit_trail=True
    )


def log_session_validation(
    logger: FilteringBoundLogger,
    session_id: str,
    method: str,
    success: bool,
    message: str,
    context: Optional[dict[str, Any]] = None
) -> None:
    """
    Log a session validation decision with standardized format.

    Args:
        logger: Structlog logger instance
        session_id: Session being validated
        method: How the decision was reached (cached, fresh, system)
        success: Whether the session is usable
        message: Human-readable reason
        context: Additional context data
    """
    bound_logger = logger.bind(
        session_id=session_id,
        validation_method=method,
        validation_result="PASS" if success else "FAIL",
        reason=message,
    )

    if context:
        bound_logger = bound_logger.bind(context=context)

    if success:
        bound_logger.info("Session validation passed")
    else:
        bound_logger.warning("Session validation failed")


def log_cycle_outcome(
    logger: FilteringBoundLogger,
    session_id: str,
    outcome: str,
    duration_ms: Optional[int] = None,
    error: Optional[BaseException] = None,
    context: Optional[dict[str, Any]] = None
) -> None:
    """
    Log the outcome of one capture cycle.

    Failed cycles are logged at error level, skipped ones at warning,
    everything else at info.
    """
    bound_logger = logger.bind(
        session_id=session_id,
        cycle_outcome=outcome,
        duration_ms=duration_ms,
    )

    if context:
        bound_logger = bound_logger.bind(context=context)

    if error is not None:
        bound_logger.error(
            "Capture cycle failed",
            error=str(error),
            error_type=type(error).__name__
        )
    elif outcome.startswith("skipped") or outcome == "duplicate":
        bound_logger.warning("Capture cycle skipped")
    else:
        bound_logger.info("Capture cycle completed")


def log_prediction(logger: FilteringBoundLogger, record: "PredictionRecord") -> None:
    """Log an emitted prediction."""
    logger.info(
        "Prediction emitted",
        session_id=record.session_id,
        trading_pair=record.trading_pair,
        direction=record.direction.value,
        confidence=record.confidence,
        algorithm_used=record.algorithm_used.value,
        pattern_signature=record.pattern_signature,
        matches=len(record.matched_historical_outcomes),
    )
