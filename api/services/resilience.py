"""
Resilience utilities for Identity Search.

Provides:
- SourceUnavailableError for data sources that cannot be reached
- Retry logic for transient failures in HTTP-backed sources
- Graceful degradation so one failing source never fails a whole request
"""
import functools
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 30.0  # seconds
    exponential_base: float = 2.0
    retryable_exceptions: tuple = (Exception,)


DEFAULT_RETRY_CONFIG = RetryConfig()


class SourceUnavailableError(Exception):
    """Raised when a data source (database, API, token) cannot be read."""

    def __init__(self, source: str, message: str):
        self.source = source
        self.message = message
        super().__init__(f"{source}: {message}")


class TransientSourceError(SourceUnavailableError):
    """A source failure worth retrying (timeouts, 5xx, rate limits)."""


def retry_sync(
    config: Optional[RetryConfig] = None,
    on_retry: Optional[Callable[[int, Exception], None]] = None,
):
    """
    Decorator for sync functions with retry logic.

    Args:
        config: Retry configuration
        on_retry: Optional callback on each retry (retry_num, exception)
    """
    cfg = config or DEFAULT_RETRY_CONFIG

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> T:
            last_exception = None

            for attempt in range(cfg.max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except cfg.retryable_exceptions as e:
                    last_exception = e

                    if attempt < cfg.max_retries:
                        delay = min(
                            cfg.base_delay * (cfg.exponential_base ** attempt),
                            cfg.max_delay
                        )
                        logger.warning(
                            f"Retry {attempt + 1}/{cfg.max_retries} for {func.__name__}: {e}. "
                            f"Waiting {delay:.1f}s..."
                        )

                        if on_retry:
                            on_retry(attempt + 1, e)

                        time.sleep(delay)
                    else:
                        logger.error(
                            f"All {cfg.max_retries} retries exhausted for {func.__name__}: {e}"
                        )

            raise last_exception

        return wrapper
    return decorator


def graceful_degradation(
    service_name: str,
    fallback_factory: Callable[[], Any] = list,
    log_level: int = logging.WARNING,
):
    """
    Decorator for graceful degradation when a source fails.

    The fallback is built fresh on every failure so callers never share a
    mutable default.

    Args:
        service_name: Name of the source (for logging)
        fallback_factory: Callable producing the value to return on failure
        log_level: Log level for expected unavailability
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> T:
            try:
                return func(*args, **kwargs)
            except SourceUnavailableError as e:
                logger.log(log_level, f"{service_name} unavailable: {e.message}. Using fallback.")
                return fallback_factory()
            except Exception as e:
                logger.error(f"{service_name} failed unexpectedly: {e}", exc_info=True)
                return fallback_factory()

        return wrapper
    return decorator


def is_retryable_status(status_code: int) -> bool:
    """
    Check if HTTP status code is retryable.

    Args:
        status_code: HTTP status code

    Returns:
        True if the error is transient and retryable
    """
    # 5xx server errors (except 501 Not Implemented)
    if status_code >= 500 and status_code != 501:
        return True

    # 429 Too Many Requests
    if status_code == 429:
        return True

    # 408 Request Timeout
    if status_code == 408:
        return True

    return False


# Pre-configured retry configs for HTTP-backed sources
HTTP_SOURCE_RETRY = RetryConfig(
    max_retries=2,
    base_delay=1.0,
    max_delay=10.0,
    retryable_exceptions=(
        TransientSourceError,
        ConnectionError,
        TimeoutError,
    ),
)
