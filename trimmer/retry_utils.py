#!/usr/bin/env python3
"""Retry utilities with exponential backoff for remote round trips."""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

import httpx

from connector.session import RemoteError


T = TypeVar("T")

LOGGER = logging.getLogger("versiontrim.retry")

# Placeholder classifier: the remote API reports holds as free text only.
POLICY_BLOCK_PATTERN = re.compile(r"retention|hold|record", re.IGNORECASE)


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 5
    backoff_base: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        return self.backoff_base ** attempt


def is_policy_block(error: BaseException) -> bool:
    """True when a failure reads like a retention/hold/records rejection."""
    return bool(POLICY_BLOCK_PATTERN.search(str(error)))


def _is_retryable_error(error: Exception) -> bool:
    """
    Determine if an error should trigger a retry.

    Args:
        error: The exception to check

    Returns:
        False for policy blocks and client errors other than timeouts and
        throttling; True for everything else, including network failures.
    """
    if is_policy_block(error):
        return False

    if isinstance(error, RemoteError) and error.status_code is not None:
        if error.status_code in (408, 429):
            return True
        if 400 <= error.status_code < 500:
            return False
        return True

    if isinstance(error, httpx.HTTPStatusError):
        code = error.response.status_code
        return code in (408, 429) or code >= 500

    return True


def with_retry(
    operation: Callable[[], T],
    config: Optional[RetryConfig] = None,
    operation_name: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Execute an operation with retry logic and exponential backoff.

    The delay after failed attempt ``n`` is ``backoff_base ** n`` seconds
    (2, 4, 8, ... with the defaults). There is no jitter.

    Args:
        operation: Function to execute (should take no arguments)
        config: Retry configuration (uses defaults if not provided)
        operation_name: Human-readable name for logging
        sleep: Sleep function, replaceable in tests

    Returns:
        Result of the operation

    Raises:
        The last failure, unchanged, once attempts are exhausted or as soon
        as a non-retryable failure occurs.
    """
    if config is None:
        config = RetryConfig()

    attempt = 1
    while True:
        try:
            return operation()
        except Exception as e:
            if not _is_retryable_error(e) or attempt >= config.max_attempts:
                raise

            delay = config.delay_for(attempt)
            LOGGER.warning(
                "%s attempt %d/%d failed: %s. Retrying in %.0fs",
                operation_name,
                attempt,
                config.max_attempts,
                e,
                delay,
                extra={"attempt": attempt, "delay_seconds": delay},
            )
            sleep(delay)
            attempt += 1
