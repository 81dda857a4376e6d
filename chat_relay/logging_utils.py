"""
Centralized logging and error handling utilities for the chat relay.

This module provides decorators and helper functions to standardize logging
and error classification across the relay and the client consumer.

Features:
- Structured logging with contextual information
- Error classification into HTTP status codes and categories
- Performance timing for async operations
- Context-aware loggers bound to a single chat turn
"""

from __future__ import annotations

import functools
import logging
import time
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, ParamSpec, TypeVar

import httpx
import structlog
from pydantic import ValidationError

from chat_relay.llm.exceptions import (
    NETWORK_MESSAGE,
    ConfigurationError,
    InvalidRequestError,
    LLMError,
    ProviderError,
    StreamingError,
)

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(colors=True),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

# Type variables for generic decorators
P = ParamSpec("P")
T = TypeVar("T")
AsyncCallable = Callable[P, Awaitable[T]]

logger = structlog.get_logger(__name__)

INTERNAL_ERROR_MESSAGE = "Internal server error"


def configure_logging(level: str = "INFO") -> None:
    """Route stdlib logging (and therefore structlog) at the given level."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO))
    logging.getLogger().setLevel(getattr(logging, level.upper(), logging.INFO))


class RelayErrorHandler:
    """Centralized error classification with structured logging."""

    @staticmethod
    def classify_error(error: Exception) -> tuple[int, str]:
        """
        Classify an error and return the HTTP status and error category.

        Args:
            error: The exception to classify

        Returns:
            Tuple of (http_status, error_category)
        """
        if isinstance(error, ConfigurationError):
            return 500, "configuration_error"
        if isinstance(error, InvalidRequestError):
            return 400, "invalid_request"
        if isinstance(error, ProviderError):
            return error.status_code or 502, "upstream_rejection"
        if isinstance(error, ValidationError):
            return 400, "validation_error"
        if isinstance(error, StreamingError | httpx.TransportError):
            return 502, "transport_error"
        if isinstance(error, TimeoutError):
            return 504, "timeout_error"
        if isinstance(error, LLMError):
            return error.status_code or 500, "llm_error"
        return 500, "unknown_error"

    @staticmethod
    def public_message(error: Exception) -> str:
        """Return the message that may be shown to the end user."""
        if isinstance(error, ConfigurationError):
            return error.public_message
        if isinstance(error, InvalidRequestError | ProviderError):
            return error.message
        if isinstance(error, StreamingError | httpx.TransportError | TimeoutError):
            return NETWORK_MESSAGE
        return INTERNAL_ERROR_MESSAGE

    @staticmethod
    def error_payload(
        error: Exception,
        operation: str,
        context: dict[str, Any] | None = None,
    ) -> tuple[int, dict[str, str]]:
        """
        Log an error with its classification and build the JSON error body.

        Args:
            error: Original exception
            operation: Description of the operation that failed
            context: Additional context for logging

        Returns:
            Tuple of (http_status, {"error": message})
        """
        status, category = RelayErrorHandler.classify_error(error)
        logger.error(
            "Operation failed",
            operation=operation,
            error_type=type(error).__name__,
            error_category=category,
            status_code=status,
            error_message=str(error),
            **(context or {}),
        )
        return status, {"error": RelayErrorHandler.public_message(error)}


def log_operation(
    operation: str,
    *,
    log_timing: bool = True,
    context: dict[str, Any] | None = None,
) -> Callable[[AsyncCallable[P, T]], AsyncCallable[P, T]]:
    """
    Decorator for logging async operations with structured context.

    Args:
        operation: Description of the operation being performed
        log_timing: Whether to log execution timing
        context: Additional context to include in logs

    Returns:
        Decorated function with logging
    """
    def decorator(func: AsyncCallable[P, T]) -> AsyncCallable[P, T]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            operation_logger = logger.bind(
                operation=operation,
                function=func.__name__,
                **(context or {}),
            )

            operation_logger.debug("Operation started")

            start_time = time.perf_counter() if log_timing else None

            try:
                result = await func(*args, **kwargs)

                end_log_data: dict[str, Any] = {}
                if log_timing and start_time is not None:
                    duration = round((time.perf_counter() - start_time) * 1000, 2)
                    end_log_data["duration_ms"] = duration

                operation_logger.debug(
                    "Operation completed successfully", **end_log_data
                )
                return result

            except Exception as e:
                error_log_data: dict[str, Any] = {
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                }
                if log_timing and start_time is not None:
                    duration = round((time.perf_counter() - start_time) * 1000, 2)
                    error_log_data["duration_ms"] = duration

                operation_logger.warning("Operation failed", **error_log_data)
                raise

        return wrapper
    return decorator


@asynccontextmanager
async def operation_context(
    operation: str,
    *,
    context: dict[str, Any] | None = None,
    log_timing: bool = True,
):
    """
    Async context manager for operation logging.

    Args:
        operation: Description of the operation
        context: Additional context for logging
        log_timing: Whether to log operation timing

    Yields:
        Bound logger for the operation
    """
    operation_logger = logger.bind(
        operation=operation,
        **(context or {}),
    )

    operation_logger.info("Operation started")
    start_time = time.perf_counter() if log_timing else None

    try:
        yield operation_logger

        log_data: dict[str, Any] = {}
        if log_timing and start_time is not None:
            duration = round((time.perf_counter() - start_time) * 1000, 2)
            log_data["duration_ms"] = duration

        operation_logger.info("Operation completed successfully", **log_data)

    except Exception as e:
        error_log_data: dict[str, Any] = {
            "error_type": type(e).__name__,
            "error_message": str(e),
        }
        if log_timing and start_time is not None:
            duration = round((time.perf_counter() - start_time) * 1000, 2)
            error_log_data["duration_ms"] = duration

        operation_logger.error("Operation failed", **error_log_data)
        raise


class ContextualLogger:
    """Logger that maintains context across related operations."""

    def __init__(self, base_context: dict[str, Any] | None = None):
        self.base_context = base_context or {}
        self._logger = logger.bind(**self.base_context)

    def bind(self, **context: Any) -> ContextualLogger:
        """Create a new logger with additional context."""
        merged_context = {**self.base_context, **context}
        return ContextualLogger(merged_context)

    def info(self, message: str, **context: Any) -> None:
        self._logger.info(message, **context)

    def warning(self, message: str, **context: Any) -> None:
        self._logger.warning(message, **context)

    def error(self, message: str, **context: Any) -> None:
        self._logger.error(message, **context)

    def debug(self, message: str, **context: Any) -> None:
        self._logger.debug(message, **context)
