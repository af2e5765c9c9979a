"""
Error types and retry logic for the layers around the shadow state.

Provides:
- Exception hierarchy for device, catalog and request failures
- Error classification (retry or give up)
- Async retry with exponential backoff for device calls

The state core itself never raises; everything here belongs to the device
client, the effect catalog and the tool layer.
"""

import asyncio
import random
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

import aiohttp


class ErrorType(Enum):
    """Classification of error types."""
    TRANSIENT = "transient"  # Temporary, should retry
    PERMANENT = "permanent"  # Persistent, don't retry
    NETWORK = "network"      # Device unreachable, retry
    CONFIG = "config"        # Bad input or configuration, don't retry


class UfoError(Exception):
    """Base class for all ufo-mcp errors."""


class DeviceError(UfoError):
    """The device answered with a non-200 status."""

    def __init__(self, status: int, body: str = ""):
        self.status = status
        self.body = body
        super().__init__(f"UFO API error: {status} - {body}")


class DeviceUnavailableError(UfoError):
    """The device could not be reached at all."""


class EffectStoreError(UfoError):
    """Effect catalog lookup or persistence failed."""


class RequestValidationError(UfoError):
    """Tool arguments failed validation. The message is user-facing."""


@dataclass
class RetryConfig:
    """Configuration for retry logic."""
    max_attempts: int = 3
    initial_delay: float = 0.2  # seconds
    max_delay: float = 2.0  # seconds
    exponential_base: float = 2.0
    jitter: bool = True


T = TypeVar('T')


def classify_error(error: Exception) -> ErrorType:
    """
    Classify an exception into an error type.

    Args:
        error: The exception to classify

    Returns:
        ErrorType classification
    """
    if isinstance(error, (RequestValidationError, EffectStoreError)):
        return ErrorType.CONFIG

    if isinstance(error, DeviceError):
        # 5xx is the firmware hiccuping; 4xx is a query it will never accept
        return ErrorType.TRANSIENT if error.status >= 500 else ErrorType.PERMANENT

    if isinstance(error, (DeviceUnavailableError, aiohttp.ClientConnectionError, asyncio.TimeoutError)):
        return ErrorType.NETWORK

    error_str = str(error).lower()
    if any(x in error_str for x in ['network', 'connection', 'timeout', 'unreachable']):
        return ErrorType.NETWORK

    if any(x in error_str for x in ['config', 'invalid', 'missing', 'not found']):
        return ErrorType.CONFIG

    return ErrorType.TRANSIENT


def backoff_delay(attempt: int, config: RetryConfig) -> float:
    """Delay before retry number ``attempt`` (0-based)."""
    delay = min(
        config.initial_delay * (config.exponential_base ** attempt),
        config.max_delay
    )
    if config.jitter:
        delay = delay * (0.5 + random.random() * 0.5)
    return delay


async def retry_with_backoff_async(
    func: Callable[[], Awaitable[T]],
    config: Optional[RetryConfig] = None,
    error_filter: Optional[Callable[[Exception], bool]] = None,
    on_retry: Optional[Callable[[int, Exception], Any]] = None,
) -> T:
    """
    Retry an async function with exponential backoff.

    Args:
        func: Async function to retry (no arguments)
        config: Retry configuration
        error_filter: Optional function to filter which errors to retry
        on_retry: Called with (attempt, error) before each sleep

    Returns:
        Function result

    Raises:
        Last exception if all retries fail
    """
    if config is None:
        config = RetryConfig()

    last_error: Optional[Exception] = None

    for attempt in range(max(1, config.max_attempts)):
        try:
            return await func()
        except Exception as e:
            last_error = e

            if error_filter and not error_filter(e):
                raise

            error_type = classify_error(e)
            if error_type in (ErrorType.PERMANENT, ErrorType.CONFIG):
                raise

            if attempt == config.max_attempts - 1:
                break

            if on_retry is not None:
                on_retry(attempt + 1, e)
            await asyncio.sleep(backoff_delay(attempt, config))

    raise last_error
