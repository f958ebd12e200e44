"""Bounded retry for unreliable vSphere calls.

Every component wraps its remote calls in ``retry()``; nothing else in
labvsphere loops on failures.

Design Philosophy:
- One primitive: attempts, delay, backoff, retryable types, failure observer
- Bounded: the loop always ends after ``max_attempts``
- Early exit: the body raises ``StopRetry`` when there is nothing left to do
- Observable: each absorbed failure goes to ``on_failure`` (a warning log by default)

Usage:
    result = retry(
        lambda: client.power_on_vm(uuid),
        max_attempts=3,
        retryable=(RemoteFaultError, PowerOnError),
    )

    @retrying(max_attempts=5, retryable=(AffinityGroupError,))
    def add_to_group():
        ...
"""

import functools
import logging
import random
import time
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])
T = TypeVar("T")

FailureCallback = Callable[[Exception], None]


class StopRetry(Exception):  # noqa: N818 - control-flow signal, not an error
    """Raised inside a retried body to leave the loop without failing.

    The optional ``value`` becomes the return value of ``retry()``.
    """

    def __init__(self, value: Any = None):
        super().__init__("retry loop stopped early")
        self.value = value


def log_retry_failure(exception: Exception) -> None:
    """Default failure observer: log the absorbed exception as a warning."""
    logger.warning(f"Exception occurred in retry: {_safe_error_message(exception)}")


def retry(
    body: Callable[[], T],
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 1.0,
    max_delay: float | None = None,
    jitter: bool = False,
    retryable: tuple[type[Exception], ...] | None = None,
    fatal: tuple[type[Exception], ...] = (),
    on_failure: FailureCallback | None = log_retry_failure,
) -> T:
    """Run ``body`` until it succeeds or ``max_attempts`` is exhausted.

    Args:
        body: Zero-argument callable to run
        max_attempts: Total number of attempts (at least 1)
        delay: Seconds to sleep before the second attempt
        backoff: Multiplier applied to the delay after each failure (1.0 = fixed)
        max_delay: Upper bound for the delay (default: unbounded)
        jitter: Add ±25% random jitter to each delay
        retryable: Exception types to retry; None retries any Exception
        fatal: Exception types that end the loop at once, even if retryable
        on_failure: Called with each retried exception; None disables it

    Returns:
        Whatever ``body`` returns, or ``StopRetry.value`` on early exit

    Raises:
        The last exception once attempts are exhausted, or any
        non-retryable exception immediately
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    retry_on: tuple[type[Exception], ...] = retryable if retryable is not None else (Exception,)
    current_delay = delay

    for attempt in range(1, max_attempts + 1):
        try:
            result = body()
            if attempt > 1:
                logger.debug(f"Retried operation succeeded on attempt {attempt}/{max_attempts}")
            return result

        except StopRetry as stop:
            return stop.value

        except fatal:
            raise

        except retry_on as e:
            if on_failure is not None:
                on_failure(e)

            if attempt >= max_attempts:
                logger.debug(f"Giving up after {max_attempts} attempts: {_safe_error_message(e)}")
                raise

            actual_delay = current_delay
            if jitter and actual_delay > 0:
                jitter_amount = actual_delay * 0.25
                actual_delay += random.uniform(-jitter_amount, jitter_amount)
            if max_delay is not None:
                actual_delay = min(actual_delay, max_delay)

            if actual_delay > 0:
                time.sleep(actual_delay)

            current_delay *= backoff

    raise RuntimeError("retry loop exited without result")


def retrying(
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 1.0,
    retryable: tuple[type[Exception], ...] | None = None,
    fatal: tuple[type[Exception], ...] = (),
    on_failure: FailureCallback | None = log_retry_failure,
) -> Callable[[F], F]:
    """Decorator form of ``retry()``.

    Example:
        >>> @retrying(max_attempts=3, delay=0)
        ... def fetch():
        ...     return client.find_vm(uuid)
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            return retry(
                lambda: func(*args, **kwargs),
                max_attempts=max_attempts,
                delay=delay,
                backoff=backoff,
                retryable=retryable,
                fatal=fatal,
                on_failure=on_failure,
            )

        return wrapper  # type: ignore

    return decorator


def _safe_error_message(exception: Exception) -> str:
    """Create safe error message without leaking credentials.

    Guest operations carry guest passwords, so messages are truncated and
    anything after a credential marker is masked.
    """
    error_str = f"{type(exception).__name__}: {exception}"

    if len(error_str) > 200:
        error_str = error_str[:200] + "..."

    sensitive_patterns = [
        "password=",
        "pwd=",
        "secret=",
        "token=",
        "authorization:",
    ]

    for pattern in sensitive_patterns:
        index = error_str.lower().find(pattern)
        if index != -1:
            error_str = error_str[: index + len(pattern)] + "***"

    return error_str


__all__ = ["StopRetry", "log_retry_failure", "retry", "retrying"]
